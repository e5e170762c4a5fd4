"""Browser session lifecycle manager and protocols."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol

from thread_relay.config import RuntimeConfig
from thread_relay.errors import BrowserError


class BrowserPage(Protocol):
    async def goto(self, url: str, **kwargs: Any) -> Any:
        """Navigate to a URL."""

    async def close(self) -> None:
        """Close the page."""


class BrowserSessionManager(Protocol):
    async def open(self) -> None:
        """Open browser resources."""

    async def close(self) -> None:
        """Close browser resources."""

    async def new_page(self) -> BrowserPage:
        """Create and return a page-like object."""


@dataclass(frozen=True)
class BrowserSessionOptions:
    engine: str
    headless: bool
    navigation_timeout_ms: int
    action_timeout_ms: int
    locale: str
    viewport_width: int
    viewport_height: int
    storage_state: str | dict[str, Any] | None = None


class PlaywrightBrowserSession:
    """One Playwright browser and context shared by every tab the relay opens.

    ``open`` is idempotent and ``new_page`` opens lazily. Teardown releases the
    context, the browser and the Playwright driver in that order and attempts every
    step even when an earlier one fails.
    """

    def __init__(
        self,
        config: RuntimeConfig,
        *,
        headless: bool | None = None,
        storage_state: str | Path | dict[str, Any] | None = None,
        playwright_factory: Callable[[], AbstractAsyncContextManager[Any]] | None = None,
    ) -> None:
        browser = config.browser
        if storage_state is None:
            storage_state = browser.storage_state
        self.options = BrowserSessionOptions(
            engine=browser.engine,
            headless=browser.headless if headless is None else headless,
            navigation_timeout_ms=browser.navigation_timeout_ms,
            action_timeout_ms=browser.action_timeout_ms,
            locale=browser.locale,
            viewport_width=browser.viewport_width,
            viewport_height=browser.viewport_height,
            storage_state=str(storage_state) if isinstance(storage_state, Path) else storage_state,
        )
        self._playwright_factory = playwright_factory or _default_playwright_factory
        self._playwright_cm: AbstractAsyncContextManager[Any] | None = None
        self._browser: Any | None = None
        self._context: Any | None = None

    @property
    def is_open(self) -> bool:
        return self._context is not None

    async def open(self) -> None:
        if self._context is not None:
            return
        try:
            self._playwright_cm = self._playwright_factory()
            playwright = await self._playwright_cm.__aenter__()
            engine = getattr(playwright, self.options.engine, None)
            if engine is None:
                raise BrowserError(f"Unsupported browser engine '{self.options.engine}' for Playwright session.")
            self._browser = await engine.launch(headless=self.options.headless)
            self._context = await self._browser.new_context(**self._context_kwargs())
            self._context.set_default_timeout(self.options.action_timeout_ms)
        except Exception as exc:
            await self._teardown(raise_on_error=False)
            if isinstance(exc, BrowserError):
                raise
            raise BrowserError(f"Failed to open browser session: {exc}") from exc

    async def new_page(self) -> BrowserPage:
        await self.open()
        if self._context is None:
            raise BrowserError("Browser session is not open.")
        try:
            page = await self._context.new_page()
        except Exception as exc:
            raise BrowserError(f"Failed to create browser page: {exc}") from exc
        page.set_default_navigation_timeout(self.options.navigation_timeout_ms)
        return page

    async def close(self) -> None:
        await self._teardown(raise_on_error=True)

    async def __aenter__(self) -> PlaywrightBrowserSession:
        await self.open()
        return self

    async def __aexit__(self, exc_type: object, exc: object, tb: object) -> bool:
        try:
            await self.close()
        except BrowserError:
            if exc_type is None:
                raise
        return False

    def _context_kwargs(self) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "locale": self.options.locale,
            "viewport": {"width": self.options.viewport_width, "height": self.options.viewport_height},
        }
        if self.options.storage_state is not None:
            kwargs["storage_state"] = self.options.storage_state
        return kwargs

    async def _teardown(self, *, raise_on_error: bool) -> None:
        releases: list[tuple[str, Callable[[], Awaitable[Any]]]] = []
        if self._context is not None:
            releases.append(("context close", self._context.close))
        if self._browser is not None:
            releases.append(("browser close", self._browser.close))
        if self._playwright_cm is not None:
            driver = self._playwright_cm
            releases.append(("playwright teardown", lambda: driver.__aexit__(None, None, None)))
        self._context = self._browser = self._playwright_cm = None

        errors: list[str] = []
        for label, release in releases:
            try:
                await release()
            except Exception as exc:
                errors.append(f"{label} failed: {exc}")
        if raise_on_error and errors:
            raise BrowserError("Errors occurred during browser session teardown: " + "; ".join(errors))


def _default_playwright_factory() -> AbstractAsyncContextManager[Any]:
    from playwright.async_api import async_playwright

    return async_playwright()
