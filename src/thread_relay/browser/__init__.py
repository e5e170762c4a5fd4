"""Browser session, tab lifecycle and DOM access."""

from .dom import PlaywrightDomDetector, PlaywrightScrollContainer
from .session import PlaywrightBrowserSession
from .tabs import PlaywrightTab, PlaywrightTabLauncher, TabRegistry

__all__ = [
    "PlaywrightBrowserSession",
    "PlaywrightDomDetector",
    "PlaywrightScrollContainer",
    "PlaywrightTab",
    "PlaywrightTabLauncher",
    "TabRegistry",
]
