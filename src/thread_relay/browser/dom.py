"""Playwright-backed DOM detector and scroll container for thread pages."""

from __future__ import annotations

from collections.abc import Mapping, Sequence
import logging
from typing import Any

from thread_relay.extract.selectors import SelectorStrategy, first_match, strategies_for
from thread_relay.models import ScrollMetrics

logger = logging.getLogger(__name__)

# Output: {scrollTop, scrollHeight, clientHeight, overflowY, overflow}.
SCROLL_METRICS_JS = """
(el) => {
  const style = window.getComputedStyle(el);
  return {
    scrollTop: el.scrollTop,
    scrollHeight: el.scrollHeight,
    clientHeight: el.clientHeight,
    overflowY: style.overflowY,
    overflow: style.overflow,
  };
}
"""

SCROLL_TO_JS = "(el, top) => { el.scrollTop = top; }"
SCROLL_TO_BOTTOM_JS = "(el) => { el.scrollTop = el.scrollHeight; }"


class PlaywrightScrollContainer:
    """Scroll container over one Playwright element handle."""

    def __init__(self, handle: Any, *, label: str = "") -> None:
        self.handle = handle
        self.label = label

    async def metrics(self) -> ScrollMetrics:
        return ScrollMetrics.from_payload(await self.handle.evaluate(SCROLL_METRICS_JS))

    async def scroll_to(self, top: float) -> None:
        await self.handle.evaluate(SCROLL_TO_JS, top)

    async def scroll_to_bottom(self) -> None:
        await self.handle.evaluate(SCROLL_TO_BOTTOM_JS)


class PlaywrightDomDetector:
    """Locate the thread root, its scroll candidates and rendered message items."""

    def __init__(self, page: Any, selectors: Mapping[str, Sequence[str]]) -> None:
        self._page = page
        self._selectors = selectors
        self._root: PlaywrightScrollContainer | None = None

    async def find_thread_container(self) -> PlaywrightScrollContainer | None:
        async def resolve(strategy: SelectorStrategy) -> Any:
            handle = await self._page.query_selector(strategy.selector)
            if handle is None or not await _has_area(handle):
                return None
            return handle

        match = await first_match(strategies_for(self._selectors, "thread.container"), resolve)
        if match is None:
            logger.info("No thread container matched any selector")
            self._root = None
            return None
        strategy, handle = match
        self._root = PlaywrightScrollContainer(handle, label=strategy.selector)
        return self._root

    async def scroll_candidates(self, root: PlaywrightScrollContainer) -> list[PlaywrightScrollContainer]:
        candidates: list[PlaywrightScrollContainer] = []
        for strategy in strategies_for(self._selectors, "thread.scroll_container"):
            handle = await root.handle.query_selector(strategy.selector)
            if handle is not None:
                candidates.append(PlaywrightScrollContainer(handle, label=strategy.selector))
        return candidates

    async def find_message_elements(self, verbose: bool = False) -> list[Any]:
        scope = self._root.handle if self._root is not None else self._page

        async def resolve(strategy: SelectorStrategy) -> list[Any] | None:
            handles = await scope.query_selector_all(strategy.selector)
            return list(handles) or None

        match = await first_match(strategies_for(self._selectors, "thread.message"), resolve)
        if match is None:
            if verbose:
                logger.info("No message elements matched any selector")
            return []
        strategy, handles = match
        if verbose:
            logger.info("Found %s message elements with %s", len(handles), strategy.selector)
        return handles


async def _has_area(handle: Any) -> bool:
    box = await handle.bounding_box()
    return bool(box) and box["width"] > 0 and box["height"] > 0
