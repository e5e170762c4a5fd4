"""Background catalog sync: guards, single-run exclusion and tab cleanup on every exit path."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any

import pytest

from thread_relay.config import SyncConfig
from thread_relay.errors import DiscoveryFailure, PageNotReadyTimeout, StoreUnavailable, SyncError, TabLoadTimeout
from thread_relay.extract.selectors import default_selector_pack
from thread_relay.models import ModelOption
from thread_relay.relay.destination import READINESS_JS, ReadinessProbe
from thread_relay.store.base import MemoryKeyValueStore
from thread_relay.store.settings import CatalogRepository
from thread_relay.sync.orchestrator import BackgroundSyncOrchestrator, SyncOutcome
from thread_relay.testing import SteppingClock

START = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)
MODELS = [ModelOption("gemini-2.5-flash", "⚡ 2.5 Flash", "2.5 Flash"), ModelOption("gemini-2.5-pro", "🧠 2.5 Pro", "2.5 Pro")]


class FakeTab:
    def __init__(self, *, load_hangs: bool = False, ready: bool = True, close_error: Exception | None = None) -> None:
        self.tab_id = 41
        self.load_hangs = load_hangs
        self.ready = ready
        self.close_error = close_error
        self.close_calls = 0

    async def is_loaded(self) -> bool:
        return not self.load_hangs

    async def wait_for_load(self) -> None:
        await asyncio.Event().wait()

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        assert expression == READINESS_JS
        if self.ready:
            return {"isReady": True, "reason": "Input area found, visible and enabled"}
        return {"isReady": False, "reason": "Input area not found"}

    async def close(self) -> None:
        self.close_calls += 1
        if self.close_error is not None:
            raise self.close_error


class FakeLauncher:
    def __init__(self, tab: FakeTab | None = None, error: Exception | None = None) -> None:
        self.tab = tab or FakeTab()
        self.error = error
        self.opened: list[tuple[str, bool]] = []

    async def open_tab(self, url: str, *, active: bool = False) -> FakeTab:
        self.opened.append((url, active))
        if self.error is not None:
            raise self.error
        return self.tab


class FakeDiscovery:
    def __init__(self, models: list[ModelOption] | None = None, error: Exception | None = None) -> None:
        self.models = list(MODELS if models is None else models)
        self.error = error
        self.calls = 0
        self.started = asyncio.Event()
        self.release: asyncio.Event | None = None

    async def discover(self, tab: Any) -> list[ModelOption]:
        self.calls += 1
        self.started.set()
        if self.release is not None:
            await self.release.wait()
        if self.error is not None:
            raise self.error
        return list(self.models)


def _orchestrator(
    launcher: FakeLauncher,
    discovery: FakeDiscovery,
    *,
    clock: SteppingClock | None = None,
    store: MemoryKeyValueStore | None = None,
    **sync_overrides: Any,
) -> tuple[BackgroundSyncOrchestrator, CatalogRepository, SteppingClock]:
    clock = clock or SteppingClock(START)
    catalog = CatalogRepository(store or MemoryKeyValueStore())
    orchestrator = BackgroundSyncOrchestrator(
        launcher,
        ReadinessProbe(default_selector_pack()),
        discovery,
        catalog,
        SyncConfig(**sync_overrides),
        now_fn=clock.now,
        sleep_fn=clock.sleep,
    )
    return orchestrator, catalog, clock


@pytest.mark.asyncio
async def test_manual_sync_saves_catalog_in_hidden_tab_and_closes_it() -> None:
    launcher = FakeLauncher()
    orchestrator, catalog, clock = _orchestrator(launcher, FakeDiscovery())

    outcome = await orchestrator.manual_sync()

    assert outcome == SyncOutcome(ran=True, reason="completed", model_count=2)
    assert launcher.opened == [("https://gemini.google.com/app", False)]
    assert launcher.tab.close_calls == 1
    assert orchestrator.is_syncing is False
    assert catalog.load().models == tuple(MODELS)
    assert clock.sleeps == [1.0, 0.2]

    clock.advance(180)
    status = orchestrator.status()
    assert (status.status, status.message) == ("synced", "Sync just completed")


@pytest.mark.asyncio
async def test_concurrent_triggers_run_exactly_once() -> None:
    discovery = FakeDiscovery()
    discovery.release = asyncio.Event()
    launcher = FakeLauncher()
    orchestrator, _, _ = _orchestrator(launcher, discovery)

    first = asyncio.create_task(orchestrator.manual_sync())
    await discovery.started.wait()
    assert orchestrator.is_syncing is True
    assert orchestrator.status().status == "syncing"

    second = await orchestrator.manual_sync()
    discovery.release.set()
    completed = await first

    assert second == SyncOutcome(ran=False, reason="busy")
    assert completed.reason == "completed"
    assert len(launcher.opened) == 1
    assert discovery.calls == 1
    assert launcher.tab.close_calls == 1


@pytest.mark.asyncio
async def test_tab_load_timeout_releases_tab_and_flag() -> None:
    launcher = FakeLauncher(FakeTab(load_hangs=True))
    orchestrator, _, _ = _orchestrator(launcher, FakeDiscovery(), tab_load_timeout_seconds=0.01)

    with pytest.raises(TabLoadTimeout):
        await orchestrator.manual_sync()

    assert launcher.tab.close_calls == 1
    assert orchestrator.is_syncing is False
    assert orchestrator.state.last_error is not None
    status = orchestrator.status()
    assert (status.status, status.message) == ("error", "Last sync failed")


@pytest.mark.asyncio
async def test_readiness_timeout_releases_tab_and_flag() -> None:
    launcher = FakeLauncher(FakeTab(ready=False))
    discovery = FakeDiscovery()
    orchestrator, _, _ = _orchestrator(launcher, discovery, readiness_attempts=3)

    with pytest.raises(PageNotReadyTimeout, match="Input area not found"):
        await orchestrator.manual_sync()

    assert discovery.calls == 0
    assert launcher.tab.close_calls == 1
    assert orchestrator.is_syncing is False


@pytest.mark.asyncio
async def test_discovery_error_keeps_previous_catalog() -> None:
    store = MemoryKeyValueStore()
    previous = CatalogRepository(store).save([ModelOption("old", "Old")], START - timedelta(days=2))
    launcher = FakeLauncher()
    orchestrator, catalog, _ = _orchestrator(launcher, FakeDiscovery(error=RuntimeError("menu vanished")), store=store)

    with pytest.raises(DiscoveryFailure, match="menu vanished"):
        await orchestrator.manual_sync()

    assert catalog.load() == previous
    assert launcher.tab.close_calls == 1
    assert orchestrator.is_syncing is False


@pytest.mark.asyncio
async def test_empty_discovery_is_a_failure_not_an_empty_catalog() -> None:
    store = MemoryKeyValueStore()
    previous = CatalogRepository(store).save([ModelOption("old", "Old")], START - timedelta(days=2))
    orchestrator, catalog, _ = _orchestrator(FakeLauncher(), FakeDiscovery(models=[]), store=store)

    with pytest.raises(DiscoveryFailure, match="keeping the previous catalog"):
        await orchestrator.manual_sync()

    assert catalog.load() == previous


@pytest.mark.asyncio
async def test_run_deadline_abandons_hung_discovery() -> None:
    discovery = FakeDiscovery()
    discovery.release = asyncio.Event()
    launcher = FakeLauncher()
    orchestrator, _, _ = _orchestrator(launcher, discovery, run_timeout_seconds=0.05)

    with pytest.raises(SyncError, match="abandoned"):
        await orchestrator.manual_sync()

    assert launcher.tab.close_calls == 1
    assert orchestrator.is_syncing is False


@pytest.mark.asyncio
async def test_launch_failure_is_wrapped_and_clears_flag() -> None:
    launcher = FakeLauncher(error=RuntimeError("browser gone"))
    orchestrator, _, _ = _orchestrator(launcher, FakeDiscovery())

    with pytest.raises(SyncError, match="browser gone"):
        await orchestrator.manual_sync()

    assert orchestrator.is_syncing is False
    assert launcher.tab.close_calls == 0
    assert orchestrator.state.last_error == "browser gone"


@pytest.mark.asyncio
async def test_close_failure_does_not_mask_result() -> None:
    launcher = FakeLauncher(FakeTab(close_error=RuntimeError("already closed")))
    orchestrator, _, _ = _orchestrator(launcher, FakeDiscovery())

    outcome = await orchestrator.manual_sync()

    assert outcome.reason == "completed"
    assert launcher.tab.close_calls == 1


@pytest.mark.asyncio
async def test_scheduled_run_respects_spacing_and_staleness() -> None:
    launcher = FakeLauncher()
    orchestrator, _, clock = _orchestrator(launcher, FakeDiscovery())

    assert (await orchestrator.run_if_due()).reason == "completed"
    assert (await orchestrator.run_if_due()).reason == "too_soon"
    clock.advance(20)
    assert (await orchestrator.run_if_due()).reason == "fresh"
    clock.advance(1500)
    assert (await orchestrator.run_if_due()).reason == "completed"
    assert len(launcher.opened) == 2


@pytest.mark.asyncio
async def test_fresh_catalog_skips_without_opening_a_tab() -> None:
    store = MemoryKeyValueStore()
    CatalogRepository(store).save(MODELS, START - timedelta(seconds=100))
    launcher = FakeLauncher()
    orchestrator, _, _ = _orchestrator(launcher, FakeDiscovery(), store=store)

    assert await orchestrator.run_if_due() == SyncOutcome(ran=False, reason="fresh")
    assert launcher.opened == []
    assert orchestrator.state.runs_started == 0


@pytest.mark.asyncio
async def test_forced_run_skips_discovery_when_catalog_was_just_saved() -> None:
    store = MemoryKeyValueStore()
    CatalogRepository(store).save(MODELS, START)
    discovery = FakeDiscovery()
    launcher = FakeLauncher()
    orchestrator, _, _ = _orchestrator(launcher, discovery, store=store)

    outcome = await orchestrator.manual_sync()

    assert outcome == SyncOutcome(ran=True, reason="recently_refreshed", model_count=2)
    assert discovery.calls == 0
    assert launcher.tab.close_calls == 1


@pytest.mark.asyncio
async def test_disposed_orchestrator_refuses_to_run() -> None:
    launcher = FakeLauncher()
    orchestrator, _, _ = _orchestrator(launcher, FakeDiscovery())
    await orchestrator.dispose()

    assert await orchestrator.manual_sync() == SyncOutcome(ran=False, reason="disposed")
    assert launcher.opened == []


@pytest.mark.asyncio
async def test_success_clears_previous_error() -> None:
    discovery = FakeDiscovery(error=RuntimeError("flaky"))
    orchestrator, _, _ = _orchestrator(FakeLauncher(), discovery)
    with pytest.raises(DiscoveryFailure):
        await orchestrator.manual_sync()

    discovery.error = None
    await orchestrator.manual_sync()

    assert orchestrator.state.last_error is None
    assert orchestrator.state.runs_started == 2


@pytest.mark.asyncio
async def test_failed_run_does_not_delay_next_scheduled_run() -> None:
    discovery = FakeDiscovery(error=RuntimeError("flaky"))
    launcher = FakeLauncher()
    orchestrator, _, _ = _orchestrator(launcher, discovery)
    with pytest.raises(DiscoveryFailure):
        await orchestrator.run_if_due()

    discovery.error = None

    assert (await orchestrator.run_if_due()).reason == "completed"
    assert (await orchestrator.run_if_due()).reason == "too_soon"
    assert len(launcher.opened) == 2


class UnavailableStore(MemoryKeyValueStore):
    def get_many(self, keys: Any) -> dict[str, Any]:
        raise StoreUnavailable("database is locked")


def test_status_falls_back_to_best_known_state_when_store_is_down() -> None:
    orchestrator, _, _ = _orchestrator(FakeLauncher(), FakeDiscovery(), store=UnavailableStore())

    status = orchestrator.status()

    assert (status.status, status.message) == ("error", "Not synced yet")
