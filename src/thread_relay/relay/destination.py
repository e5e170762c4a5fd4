"""Destination page automation: readiness, model discovery, mode switching and text injection.

Every page-side step is a JavaScript snippet evaluated in the tab. Each snippet takes
and returns plain JSON-serializable values, and the returned payload is validated by a
pure function here so the contract can be tested without a browser.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Mapping, Sequence
import logging
import re
from typing import Any

from thread_relay.browser.tabs import AutomationTab, TabLauncher
from thread_relay.config import SyncConfig
from thread_relay.errors import DestinationError, PageNotReadyTimeout, TabLoadTimeout
from thread_relay.models import ModelOption, ReadinessReport
from thread_relay.timing import poll_until, with_timeout

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]

AUTO_MODEL = "auto"
DEFAULT_MODEL_DISPLAY_NAME = "2.5 Pro"
MODEL_DISPLAY_MAP = {
    "gemini-2.5-flash": "2.5 Flash",
    "gemini-2.5-pro": "2.5 Pro",
}
MENU_OPEN_DELAY_SECONDS = 1.5
MENU_CLOSE_DELAY_SECONDS = 0.5
READINESS_FALLBACK_DELAY_SECONDS = 2.0
INJECT_ATTEMPTS = 10
INJECT_INTERVAL_SECONDS = 1.0

# Input: {input: string[], app: string[]}. Output: {isReady: bool, reason: string}.
READINESS_JS = """
(sel) => {
  if (document.readyState !== 'complete') return {isReady: false, reason: 'Document not loaded'};
  let input = null;
  for (const selector of sel.input) { input = document.querySelector(selector); if (input) break; }
  if (!input) return {isReady: false, reason: 'Input area not found'};
  const style = window.getComputedStyle(input);
  if (style.display === 'none' || style.visibility === 'hidden') {
    return {isReady: false, reason: 'Input area not visible'};
  }
  const loading = document.querySelector('.chat-container .loading, .chat-window .spinner, .input-area .loading');
  if (loading && window.getComputedStyle(loading).display !== 'none') {
    return {isReady: false, reason: 'Main chat interface still loading'};
  }
  if (input.hasAttribute('disabled') || input.getAttribute('aria-disabled') === 'true') {
    return {isReady: false, reason: 'Input area is disabled'};
  }
  if (!sel.app.some((selector) => document.querySelector(selector))) {
    return {isReady: false, reason: 'App components not loaded'};
  }
  return {isReady: true, reason: 'Input area found, visible and enabled'};
}
"""

# Input: switcher selectors. Output: bool, whether a switcher was clicked.
OPEN_MODE_MENU_JS = """
(selectors) => {
  for (const selector of selectors) {
    const button = document.querySelector(selector);
    if (button) { button.click(); return true; }
  }
  return false;
}
"""

# Input: option selectors. Output: visible option texts in menu order.
READ_MODE_OPTIONS_JS = """
(selectors) => {
  for (const selector of selectors) {
    const items = Array.from(document.querySelectorAll(selector))
      .filter((item) => item.offsetParent !== null)
      .map((item) => (item.textContent || '').trim())
      .filter((text) => text.length > 0);
    if (items.length > 0) return items;
  }
  return [];
}
"""

# Input: {selectors: string[], displayName: string}. Output: bool, whether an option was clicked.
CLICK_MODE_OPTION_JS = """
(args) => {
  for (const selector of args.selectors) {
    for (const item of document.querySelectorAll(selector)) {
      if ((item.textContent || '').includes(args.displayName)) { item.click(); return true; }
    }
  }
  return false;
}
"""

CLOSE_MENU_JS = "() => { document.body.click(); }"

# Input: {selectors: string[], text: string}. Output: bool, whether a visible input took the text.
INJECT_TEXT_JS = """
(args) => {
  let input = null;
  for (const selector of args.selectors) {
    const candidate = document.querySelector(selector);
    if (candidate && candidate.offsetParent !== null) { input = candidate; break; }
  }
  if (!input) return false;
  input.focus();
  if (input.tagName === 'TEXTAREA' || input.tagName === 'INPUT') {
    input.value = args.text;
  } else {
    input.textContent = args.text;
  }
  input.dispatchEvent(new Event('input', {bubbles: true}));
  input.dispatchEvent(new Event('change', {bubbles: true}));
  return true;
}
"""

_SLUG_SPACE_RE = re.compile(r"\s+")
_SLUG_STRIP_RE = re.compile(r"[^a-z0-9-]")


def parse_readiness_payload(payload: Any) -> ReadinessReport:
    if not isinstance(payload, Mapping) or not isinstance(payload.get("isReady"), bool):
        raise DestinationError(f"Readiness probe returned an unexpected payload: {payload!r}")
    return ReadinessReport(is_ready=payload["isReady"], reason=str(payload.get("reason") or ""))


def classify_model_option(text: str) -> ModelOption | None:
    """Map one mode-menu entry to a catalog option; blank entries yield None."""
    label = text.strip()
    if not label:
        return None
    lowered = label.lower()
    if "flash" in lowered:
        display_name = label if "⚡" in label else f"⚡ {label}"
        return ModelOption(value="gemini-2.5-flash", display_name=display_name, description=label)
    if "pro" in lowered:
        display_name = label if "🧠" in label else f"🧠 {label}"
        return ModelOption(value="gemini-2.5-pro", display_name=display_name, description=label)
    slug = _SLUG_STRIP_RE.sub("", _SLUG_SPACE_RE.sub("-", lowered))
    return ModelOption(value=slug, display_name=label, description=label)


def model_display_name(selected_model: str) -> str:
    return MODEL_DISPLAY_MAP.get(selected_model, DEFAULT_MODEL_DISPLAY_NAME)


def is_auto_model(selected_model: str | None) -> bool:
    return not selected_model or selected_model == AUTO_MODEL


class ReadinessProbe:
    def __init__(self, selectors: Mapping[str, Sequence[str]]) -> None:
        self._arg = {
            "input": list(selectors.get("destination.input", ())),
            "app": ["chat-app#app-root", "bard-sidenav-container", *selectors.get("destination.mode_switcher", ())],
        }

    async def check(self, tab: AutomationTab) -> ReadinessReport:
        return parse_readiness_payload(await tab.evaluate(READINESS_JS, self._arg))


class ModelDiscovery:
    def __init__(self, selectors: Mapping[str, Sequence[str]], *, sleep_fn: SleepFn = asyncio.sleep) -> None:
        self._switchers = list(selectors.get("destination.mode_switcher", ()))
        self._options = list(selectors.get("destination.mode_option", ()))
        self._sleep = sleep_fn

    async def discover(self, tab: AutomationTab) -> list[ModelOption]:
        if not await tab.evaluate(OPEN_MODE_MENU_JS, self._switchers):
            logger.info("No mode switcher found on destination page")
            return []
        await self._sleep(MENU_OPEN_DELAY_SECONDS)
        texts = await tab.evaluate(READ_MODE_OPTIONS_JS, self._options)
        await self._sleep(MENU_CLOSE_DELAY_SECONDS)
        await tab.evaluate(CLOSE_MENU_JS)
        if not isinstance(texts, list):
            raise DestinationError(f"Mode menu snippet returned an unexpected payload: {texts!r}")

        options: list[ModelOption] = []
        for text in texts:
            option = classify_model_option(str(text))
            if option is not None:
                options.append(option)
        logger.info("Discovered %s destination models", len(options))
        return options

    async def select(self, tab: AutomationTab, display_name: str) -> bool:
        """Open the mode menu and click the option containing ``display_name``."""
        if not await tab.evaluate(OPEN_MODE_MENU_JS, self._switchers):
            return False
        await self._sleep(MENU_OPEN_DELAY_SECONDS)
        clicked = await tab.evaluate(
            CLICK_MODE_OPTION_JS, {"selectors": self._options, "displayName": display_name}
        )
        if not clicked:
            await tab.evaluate(CLOSE_MENU_JS)
        await self._sleep(MENU_CLOSE_DELAY_SECONDS)
        return bool(clicked)


class InputInjector:
    def __init__(self, selectors: Mapping[str, Sequence[str]], *, sleep_fn: SleepFn = asyncio.sleep) -> None:
        self._selectors = list(selectors.get("destination.input", ()))
        self._sleep = sleep_fn

    async def inject(self, tab: AutomationTab, text: str) -> None:
        async def attempt() -> bool:
            return bool(await tab.evaluate(INJECT_TEXT_JS, {"selectors": self._selectors, "text": text}))

        injected = await poll_until(
            attempt,
            attempts=INJECT_ATTEMPTS,
            interval_seconds=INJECT_INTERVAL_SECONDS,
            sleep=self._sleep,
        )
        if not injected:
            raise DestinationError("Could not find a visible text input on the destination page.")


async def wait_for_tab_load(tab: AutomationTab, sync: SyncConfig, *, sleep_fn: SleepFn = asyncio.sleep) -> None:
    """Wait for the tab's load event, then settle; bounded by the tab load timeout."""

    async def load_and_settle() -> None:
        if await tab.is_loaded():
            await sleep_fn(sync.loaded_settle_seconds)
            return
        await tab.wait_for_load()
        await sleep_fn(sync.post_load_settle_seconds)

    await with_timeout(
        load_and_settle(),
        sync.tab_load_timeout_seconds,
        lambda: TabLoadTimeout(f"Tab did not finish loading within {sync.tab_load_timeout_seconds:.0f}s."),
    )


async def wait_for_page_ready(
    tab: AutomationTab,
    probe: ReadinessProbe,
    sync: SyncConfig,
    *,
    sleep_fn: SleepFn = asyncio.sleep,
) -> None:
    """Poll the readiness probe; probe failures spend attempts like not-ready reports."""
    last_reason = ""

    async def check() -> bool:
        nonlocal last_reason
        report = await probe.check(tab)
        last_reason = report.reason
        return report.is_ready

    def on_error(attempt: int, exc: Exception) -> None:
        nonlocal last_reason
        last_reason = f"probe failed: {exc}"
        logger.debug("Readiness probe attempt %s failed: %s", attempt, exc)

    ready = await poll_until(
        check,
        attempts=sync.readiness_attempts,
        interval_seconds=sync.readiness_interval_seconds,
        sleep=sleep_fn,
        on_error=on_error,
    )
    if not ready:
        raise PageNotReadyTimeout(
            f"Destination page not ready after {sync.readiness_attempts} checks ({last_reason or 'no reason'})."
        )
    await sleep_fn(sync.readiness_stabilize_seconds)


class DestinationRelay:
    """Open a visible destination tab, optionally switch model, then paste the transcript."""

    def __init__(
        self,
        launcher: TabLauncher,
        probe: ReadinessProbe,
        discovery: ModelDiscovery,
        injector: InputInjector,
        sync: SyncConfig,
        *,
        sleep_fn: SleepFn = asyncio.sleep,
    ) -> None:
        self._launcher = launcher
        self._probe = probe
        self._discovery = discovery
        self._injector = injector
        self._sync = sync
        self._sleep = sleep_fn

    async def open_with_messages(self, text: str, selected_model: str | None = AUTO_MODEL) -> int:
        tab = await self._launcher.open_tab(self._sync.destination_url, active=True)
        await wait_for_tab_load(tab, self._sync, sleep_fn=self._sleep)
        try:
            await wait_for_page_ready(tab, self._probe, self._sync, sleep_fn=self._sleep)
        except PageNotReadyTimeout as exc:
            logger.warning("%s Trying anyway after a short delay.", exc)
            await self._sleep(READINESS_FALLBACK_DELAY_SECONDS)

        if not is_auto_model(selected_model):
            display_name = model_display_name(selected_model or "")
            if not await self._discovery.select(tab, display_name):
                logger.warning("Model option '%s' not found; pasting with the current model.", display_name)

        await self._injector.inject(tab, text)
        logger.info("Relayed %s characters to tab %s", len(text), tab.tab_id)
        return tab.tab_id
