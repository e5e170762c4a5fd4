"""Error taxonomy for stable module boundaries."""


class ThreadRelayError(Exception):
    """Base exception for thread-relay."""


class ConfigError(ThreadRelayError):
    """Raised when configuration is invalid or missing."""


class BrowserError(ThreadRelayError):
    """Raised for browser/session management failures."""


class StoreUnavailable(ThreadRelayError):
    """Raised when the durable key/value store cannot be read or written."""


class CollectError(ThreadRelayError):
    """Raised for collection lifecycle failures."""


class ContainerNotFound(CollectError):
    """Raised when no thread or scroll container can be located."""


class ExtractionError(CollectError):
    """Raised when a single rendered item cannot be turned into a message."""


class ScrollStuck(CollectError):
    """Raised when the scroll offset stops advancing between iterations."""


class CollectionTimeout(CollectError):
    """Raised when a collection run exceeds its wall-clock budget."""


class SyncError(ThreadRelayError):
    """Raised when a background catalog sync run fails."""


class SyncInProgress(SyncError):
    """Raised when a sync is requested while another run holds the tab."""


class TabLoadTimeout(SyncError):
    """Raised when the automation tab does not finish loading in time."""


class PageNotReadyTimeout(SyncError):
    """Raised when the destination page never reports a ready input surface."""


class DiscoveryFailure(SyncError):
    """Raised when the model catalog cannot be discovered from the page."""


class DestinationError(ThreadRelayError):
    """Raised when text cannot be delivered to the destination page."""


class CommandError(ThreadRelayError):
    """Raised for malformed command-bus requests."""
