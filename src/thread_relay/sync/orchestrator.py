"""Background catalog sync with single-run exclusion and unconditional tab cleanup."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from datetime import datetime, timezone
import logging

from thread_relay.browser.tabs import AutomationTab, TabLauncher
from thread_relay.config import SyncConfig
from thread_relay.errors import StoreUnavailable, SyncError
from thread_relay.models import SyncState, SyncStatus
from thread_relay.relay.destination import ReadinessProbe, wait_for_page_ready, wait_for_tab_load
from thread_relay.store.settings import CatalogRepository
from thread_relay.sync.catalog import CatalogDiscovery, refresh_catalog
from thread_relay.sync.status import describe_sync_status
from thread_relay.timing import with_timeout

logger = logging.getLogger(__name__)

NowFn = Callable[[], datetime]
SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class SyncOutcome:
    ran: bool
    reason: str
    model_count: int = 0


class BackgroundSyncOrchestrator:
    """Own the hidden automation tab for one sync run at a time.

    Triggers that arrive while a run holds the tab are dropped, not queued. Every
    stage is bounded by a timeout, and the tab is closed and the busy flag cleared
    on every exit path.
    """

    def __init__(
        self,
        launcher: TabLauncher,
        probe: ReadinessProbe,
        discovery: CatalogDiscovery,
        catalog: CatalogRepository,
        sync: SyncConfig,
        *,
        now_fn: NowFn | None = None,
        sleep_fn: SleepFn = asyncio.sleep,
    ) -> None:
        self._launcher = launcher
        self._probe = probe
        self._discovery = discovery
        self._catalog = catalog
        self._sync = sync
        self._now = now_fn or _utcnow
        self._sleep = sleep_fn
        self._state = SyncState()
        self._disposed = False

    @property
    def state(self) -> SyncState:
        return replace(self._state)

    @property
    def is_syncing(self) -> bool:
        return self._state.is_syncing

    def status(self) -> SyncStatus:
        """Best-known status; the catalog is consulted only before the first attempt."""
        catalog_updated = None
        if self._state.last_sync_time is None and not self._state.is_syncing:
            try:
                catalog_updated = self._catalog.load().last_updated
            except StoreUnavailable as exc:
                logger.warning("Catalog timestamp unavailable for sync status: %s", exc)
        return describe_sync_status(self.state, catalog_updated, self._now())

    async def manual_sync(self) -> SyncOutcome:
        """Run now regardless of spacing and staleness; failures propagate to the caller."""
        return await self.run_if_due(force=True)

    async def run_if_due(self, force: bool = False) -> SyncOutcome:
        if self._disposed:
            return SyncOutcome(ran=False, reason="disposed")
        if self._state.is_syncing:
            logger.info("Sync skipped: another run is in progress")
            return SyncOutcome(ran=False, reason="busy")

        now = self._now()
        if not force:
            last = self._state.last_success_time
            if last is not None and (now - last).total_seconds() < self._sync.min_spacing_seconds:
                logger.info("Sync skipped: last successful run was under %.0fs ago", self._sync.min_spacing_seconds)
                return SyncOutcome(ran=False, reason="too_soon")
            catalog = self._catalog.load()
            if catalog.is_fresh(now, self._sync.catalog_staleness_seconds):
                logger.info("Sync skipped: catalog is %.0fs old", catalog.age_seconds(now) or 0)
                return SyncOutcome(ran=False, reason="fresh")

        self._state.is_syncing = True
        self._state.last_sync_time = now
        self._state.runs_started += 1
        tab: AutomationTab | None = None
        try:
            logger.info("Background sync started (force=%s)", force)
            tab = await self._launcher.open_tab(self._sync.destination_url, active=False)
            outcome = await self._run_with_deadline(tab)
            self._state.last_error = None
            self._state.last_success_time = now
            logger.info("Background sync finished: %s", outcome.reason)
            return outcome
        except SyncError as exc:
            self._state.last_error = str(exc)
            logger.error("Background sync failed: %s", exc)
            raise
        except Exception as exc:
            self._state.last_error = str(exc)
            logger.error("Background sync failed: %s", exc)
            raise SyncError(f"Background sync failed: {exc}") from exc
        finally:
            if tab is not None:
                await self._close_tab(tab)
            self._state.is_syncing = False

    async def dispose(self) -> None:
        self._disposed = True

    async def _run_with_deadline(self, tab: AutomationTab) -> SyncOutcome:
        return await with_timeout(
            self._sync_with_tab(tab),
            self._sync.run_timeout_seconds,
            lambda: SyncError(f"Sync run exceeded {self._sync.run_timeout_seconds:.0f}s and was abandoned."),
        )

    async def _sync_with_tab(self, tab: AutomationTab) -> SyncOutcome:
        await wait_for_tab_load(tab, self._sync, sleep_fn=self._sleep)
        await wait_for_page_ready(tab, self._probe, self._sync, sleep_fn=self._sleep)

        now = self._now()
        catalog = self._catalog.load()
        if catalog.is_fresh(now, self._sync.recent_refresh_seconds):
            logger.info("Catalog was refreshed moments ago; skipping discovery")
            return SyncOutcome(ran=True, reason="recently_refreshed", model_count=len(catalog.models))

        refreshed = await refresh_catalog(
            tab,
            self._discovery,
            self._catalog,
            now,
            timeout_seconds=self._sync.discovery_timeout_seconds,
        )
        return SyncOutcome(ran=True, reason="completed", model_count=len(refreshed.models))

    async def _close_tab(self, tab: AutomationTab) -> None:
        try:
            await tab.close()
        except Exception as exc:
            logger.warning("Could not close sync tab %s: %s", tab.tab_id, exc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
