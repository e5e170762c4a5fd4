"""Tab registry and automation-tab lifecycle over a shared browser session."""

from __future__ import annotations

from collections.abc import Callable
import itertools
import logging
from typing import Any, Protocol

from thread_relay.browser.session import BrowserSessionManager
from thread_relay.errors import BrowserError

logger = logging.getLogger(__name__)


class AutomationTab(Protocol):
    tab_id: int

    async def is_loaded(self) -> bool:
        """True once the document reports readyState 'complete'."""

    async def wait_for_load(self) -> None:
        """Wait for the load event of the current navigation."""

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        """Run an injected snippet in the page."""

    async def close(self) -> None:
        """Close the tab; repeated calls are no-ops."""


class TabLauncher(Protocol):
    async def open_tab(self, url: str, *, active: bool = False) -> AutomationTab:
        """Open a tab and start navigating to url."""


class TabRegistry:
    """Integer ids for open pages, mirroring how the command bus addresses tabs."""

    def __init__(self) -> None:
        self._pages: dict[int, Any] = {}
        self._ids = itertools.count(1)
        self._active_id: int | None = None

    def register(self, page: Any, *, active: bool = True) -> int:
        tab_id = next(self._ids)
        self._pages[tab_id] = page
        if active:
            self._active_id = tab_id
        return tab_id

    def get(self, tab_id: int) -> Any | None:
        return self._pages.get(tab_id)

    def remove(self, tab_id: int) -> None:
        self._pages.pop(tab_id, None)
        if self._active_id == tab_id:
            self._active_id = None

    @property
    def active_tab_id(self) -> int | None:
        return self._active_id

    def tab_ids(self) -> tuple[int, ...]:
        return tuple(self._pages)


class PlaywrightTab:
    def __init__(self, tab_id: int, page: Any, *, on_close: Callable[[int], None] | None = None) -> None:
        self.tab_id = tab_id
        self.page = page
        self._on_close = on_close
        self.closed = False

    async def is_loaded(self) -> bool:
        return await self.page.evaluate("document.readyState") == "complete"

    async def wait_for_load(self) -> None:
        await self.page.wait_for_load_state("load")

    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        return await self.page.evaluate(expression, arg)

    async def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            await self.page.close()
        finally:
            if self._on_close is not None:
                self._on_close(self.tab_id)


class PlaywrightTabLauncher:
    def __init__(self, session: BrowserSessionManager, registry: TabRegistry) -> None:
        self._session = session
        self._registry = registry

    async def open_tab(self, url: str, *, active: bool = False) -> PlaywrightTab:
        page = await self._session.new_page()
        tab_id = self._registry.register(page, active=active)
        tab = PlaywrightTab(tab_id, page, on_close=self._registry.remove)
        try:
            await page.goto(url, wait_until="commit")
        except Exception as exc:
            await tab.close()
            raise BrowserError(f"Could not start navigation to '{url}': {exc}") from exc
        logger.debug("Opened tab %s at %s (active=%s)", tab_id, url, active)
        return tab
