"""Explicit runtime context owning store, browser session, sync and relay services."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine, Sequence
from datetime import datetime, timezone
import logging
from typing import Any

from thread_relay.browser.dom import PlaywrightDomDetector
from thread_relay.browser.session import BrowserSessionManager, PlaywrightBrowserSession
from thread_relay.browser.tabs import PlaywrightTab, PlaywrightTabLauncher, TabRegistry
from thread_relay.collectors.thread import IncrementalCollector, ProgressCallback
from thread_relay.commands import CommandRouter, LineReader, serve_lines
from thread_relay.config import RuntimeConfig, resolve_store_path
from thread_relay.errors import BrowserError, CommandError
from thread_relay.extract.message import PlaywrightTextExtractor
from thread_relay.extract.processor import MessageProcessor
from thread_relay.extract.selectors import resolve_selector_pack
from thread_relay.models import Message, ModelCatalog
from thread_relay.relay.destination import DestinationRelay, InputInjector, ModelDiscovery, ReadinessProbe
from thread_relay.relay.prompt import format_transcript
from thread_relay.store.base import KeyValueStore
from thread_relay.store.settings import CatalogRepository, SettingsRepository
from thread_relay.store.sqlite import SqliteKeyValueStore
from thread_relay.sync.catalog import refresh_catalog
from thread_relay.sync.orchestrator import BackgroundSyncOrchestrator
from thread_relay.sync.trigger import PeriodicSyncTrigger

logger = logging.getLogger(__name__)

NowFn = Callable[[], datetime]
SleepFn = Callable[[float], Awaitable[None]]


class RelayContext:
    """Everything the long-lived relay process shares, built once and torn down once.

    Construction wires collaborators without touching the browser. ``open`` launches
    the browser session, ``start_background`` schedules the start-up due-check and the
    periodic sync alarm, and ``close`` stops the alarm, cancels outstanding relay tasks
    and releases the session and store.
    """

    def __init__(
        self,
        config: RuntimeConfig,
        *,
        store: KeyValueStore,
        session: BrowserSessionManager,
        now_fn: NowFn | None = None,
        sleep_fn: SleepFn = asyncio.sleep,
    ) -> None:
        self.config = config
        self.store = store
        self.session = session
        self._now = now_fn or _utcnow
        self._sleep = sleep_fn

        self.settings = SettingsRepository(store)
        self.catalog = CatalogRepository(store)
        self.selectors = resolve_selector_pack(config.selectors.override_path).selectors
        self.registry = TabRegistry()
        self.launcher = PlaywrightTabLauncher(session, self.registry)

        self.probe = ReadinessProbe(self.selectors)
        self.discovery = ModelDiscovery(self.selectors, sleep_fn=sleep_fn)
        self.injector = InputInjector(self.selectors, sleep_fn=sleep_fn)
        self.relay = DestinationRelay(
            self.launcher,
            self.probe,
            self.discovery,
            self.injector,
            config.sync,
            sleep_fn=sleep_fn,
        )
        self.orchestrator = BackgroundSyncOrchestrator(
            self.launcher,
            self.probe,
            self.discovery,
            self.catalog,
            config.sync,
            now_fn=self._now,
            sleep_fn=sleep_fn,
        )
        self.trigger = PeriodicSyncTrigger(
            self.orchestrator,
            config.sync.alarm_interval_seconds,
            sleep_fn=sleep_fn,
        )
        self.router = CommandRouter(self)
        self._pending: set[asyncio.Task[Any]] = set()
        self._closed = False

    @classmethod
    def from_config(cls, config: RuntimeConfig, *, headless: bool | None = None) -> RelayContext:
        store = SqliteKeyValueStore(resolve_store_path(config))
        session = PlaywrightBrowserSession(config, headless=headless)
        return cls(config, store=store, session=session)

    def now(self) -> datetime:
        return self._now()

    @property
    def pending_tasks(self) -> int:
        return len(self._pending)

    async def open(self) -> None:
        await self.session.open()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self.trigger.stop()
        await self.orchestrator.dispose()

        pending = list(self._pending)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._pending.clear()

        try:
            await self.session.close()
        finally:
            close_store = getattr(self.store, "close", None)
            if callable(close_store):
                close_store()

    async def __aenter__(self) -> RelayContext:
        await self.open()
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        try:
            await self.close()
        except BrowserError:
            if exc_type is None:
                raise
        return False

    def start_background(self) -> asyncio.Task[int]:
        """Run the start-up due-check, then keep the periodic alarm armed."""
        return self.trigger.start(run_on_start=True)

    async def serve(self, read_line: LineReader, write: Callable[[str], Any]) -> int:
        """Answer JSON request lines through the router; the active tab is the sender."""
        return await serve_lines(
            self.router,
            read_line,
            write,
            sender_tab_id=lambda: self.registry.active_tab_id,
        )

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task[Any]:
        """Schedule fire-and-forget work owned by this context; failures are logged."""
        task = asyncio.create_task(coro, name=name)
        self._pending.add(task)
        task.add_done_callback(self._task_done)
        return task

    async def open_page(self, url: str, *, wait_until: str = "domcontentloaded") -> int:
        page = await self.session.new_page()
        tab_id = self.registry.register(page, active=True)
        try:
            await page.goto(url, wait_until=wait_until)
        except Exception as exc:
            self.registry.remove(tab_id)
            await page.close()
            raise BrowserError(f"Could not open '{url}': {exc}") from exc
        logger.info("Opened thread tab %s at %s", tab_id, url)
        return tab_id

    def page_for(self, tab_id: int) -> Any:
        page = self.registry.get(tab_id)
        if page is None:
            raise CommandError(f"No open tab with id {tab_id}.")
        return page

    def collector_for(
        self,
        tab_id: int,
        *,
        progress_callback: ProgressCallback | None = None,
    ) -> IncrementalCollector:
        page = self.page_for(tab_id)
        return IncrementalCollector(
            PlaywrightDomDetector(page, self.selectors),
            PlaywrightTextExtractor(self.selectors),
            processor=MessageProcessor(),
            settings_source=self.settings,
            tuning=self.config.collection,
            progress_callback=progress_callback,
            sleep_fn=self._sleep,
        )

    async def has_thread(self, tab_id: int | None) -> bool:
        if tab_id is None or self.registry.get(tab_id) is None:
            return False
        detector = PlaywrightDomDetector(self.page_for(tab_id), self.selectors)
        if await detector.find_thread_container() is None:
            return False
        return bool(await detector.find_message_elements())

    async def collect_thread(self, tab_id: int) -> list[Message]:
        return await self.collector_for(tab_id).collect()

    async def relay_messages(self, messages: Sequence[Message], selected_model: str | None = None) -> int:
        text = format_transcript(messages, self.settings.get_custom_prompt())
        return await self.relay.open_with_messages(text, selected_model)

    async def sync_models_in_tab(self, tab_id: int) -> ModelCatalog:
        """Discover models in an already open destination tab, leaving the tab open."""
        tab = PlaywrightTab(tab_id, self.page_for(tab_id))
        return await refresh_catalog(
            tab,
            self.discovery,
            self.catalog,
            self._now(),
            timeout_seconds=self.config.sync.discovery_timeout_seconds,
        )

    def _task_done(self, task: asyncio.Task[Any]) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Background task %s failed: %s", task.get_name(), exc)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)
