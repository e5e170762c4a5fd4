"""Request/response command router between front-ends and the relay context."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Coroutine, Mapping, Sequence
from datetime import datetime
import json
import logging
from typing import Any, Protocol

from thread_relay.errors import CommandError, SyncError
from thread_relay.models import UNKNOWN_USER, Message, ModelCatalog, SyncStatus, epoch_ms
from thread_relay.relay.destination import AUTO_MODEL
from thread_relay.store.settings import CatalogRepository
from thread_relay.sync.orchestrator import SyncOutcome

logger = logging.getLogger(__name__)

CURRENT_TAB = "current"
SYNC_TAB_REQUIRED = "Valid Tab ID is required for model sync"
READ_TAB_REQUIRED = "Valid Tab ID is required to read thread messages"


class SyncService(Protocol):
    async def manual_sync(self) -> SyncOutcome:
        """Run a forced sync."""

    def status(self) -> SyncStatus:
        """Describe the current sync state."""


class RelayServices(Protocol):
    orchestrator: SyncService
    catalog: CatalogRepository

    def now(self) -> datetime:
        """Current aware time."""

    def spawn(self, coro: Coroutine[Any, Any, Any], *, name: str | None = None) -> asyncio.Task[Any]:
        """Schedule fire-and-forget work."""

    async def has_thread(self, tab_id: int | None) -> bool:
        """Whether the tab shows a thread with rendered messages."""

    async def collect_thread(self, tab_id: int) -> list[Message]:
        """Collect the full thread rendered in the tab."""

    async def relay_messages(self, messages: Sequence[Message], selected_model: str | None = None) -> int:
        """Open the destination and paste the formatted transcript."""

    async def sync_models_in_tab(self, tab_id: int) -> ModelCatalog:
        """Discover and persist the catalog from an open destination tab."""


Handler = Callable[..., Awaitable[dict[str, Any]]]
LineReader = Callable[[], Awaitable[str]]


class CommandRouter:
    """Dispatch ``{"action": ..., ...}`` requests to handlers and always answer with a dict."""

    def __init__(self, services: RelayServices) -> None:
        self._services = services
        self._handlers: dict[str, Handler] = {
            "checkThreadAvailable": self._check_thread_available,
            "openGeminiWithMessages": self._open_with_messages,
            "getSlackThreadMessages": self._get_thread_messages,
            "syncGeminiModels": self._sync_models,
            "triggerBackgroundSync": self._trigger_background_sync,
            "getBackgroundSyncStatus": self._get_background_sync_status,
            "getAvailableModels": self._get_available_models,
        }

    @property
    def actions(self) -> tuple[str, ...]:
        return tuple(self._handlers)

    async def dispatch(self, request: Any, sender_tab_id: int | None = None) -> dict[str, Any]:
        if not isinstance(request, Mapping):
            return {"error": "Request must be an object with an 'action' key."}
        action = request.get("action")
        handler = self._handlers.get(action) if isinstance(action, str) else None
        if handler is None:
            logger.warning("Unknown command action: %r", action)
            return {"error": f"Unknown action: {action!r}"}

        logger.debug("Dispatching %s (sender tab %s)", action, sender_tab_id)
        try:
            return await handler(request, sender_tab_id)
        except Exception as exc:
            logger.error("Command %s failed: %s", action, exc)
            return {"error": str(exc) or type(exc).__name__}

    async def _check_thread_available(self, request: Mapping[str, Any], sender_tab_id: int | None) -> dict[str, Any]:
        tab_id = resolve_tab_id(request.get("tabId", CURRENT_TAB), sender_tab_id)
        try:
            return {"hasThread": await self._services.has_thread(tab_id)}
        except Exception as exc:
            logger.warning("Thread availability check failed: %s", exc)
            return {"hasThread": False, "error": str(exc)}

    async def _open_with_messages(self, request: Mapping[str, Any], sender_tab_id: int | None) -> dict[str, Any]:
        messages = parse_messages(request.get("messages"))
        selected_model = request.get("selectedModel") or AUTO_MODEL
        if not isinstance(selected_model, str):
            raise CommandError("selectedModel must be a string.")
        self._services.spawn(
            self._services.relay_messages(messages, selected_model),
            name="relay-to-destination",
        )
        return {"success": True}

    async def _get_thread_messages(self, request: Mapping[str, Any], sender_tab_id: int | None) -> dict[str, Any]:
        tab_id = resolve_tab_id(request.get("tabId"), sender_tab_id)
        if tab_id is None:
            return {"error": READ_TAB_REQUIRED}
        messages = await self._services.collect_thread(tab_id)
        return {"messages": [message.to_dict() for message in messages]}

    async def _sync_models(self, request: Mapping[str, Any], sender_tab_id: int | None) -> dict[str, Any]:
        tab_id = resolve_tab_id(request.get("tabId"), sender_tab_id)
        if tab_id is None:
            return {"error": SYNC_TAB_REQUIRED}
        await self._services.sync_models_in_tab(tab_id)
        return {"success": True}

    async def _trigger_background_sync(self, request: Mapping[str, Any], sender_tab_id: int | None) -> dict[str, Any]:
        try:
            outcome = await self._services.orchestrator.manual_sync()
        except SyncError as exc:
            return {
                "success": False,
                "error": str(exc) or "Manual sync failed",
                "timestamp": epoch_ms(self._services.now()),
            }
        if not outcome.ran:
            return {
                "success": False,
                "error": _SKIP_MESSAGES.get(outcome.reason, f"Sync skipped: {outcome.reason}"),
                "timestamp": epoch_ms(self._services.now()),
            }
        return {
            "success": True,
            "message": "Manual sync completed successfully",
            "timestamp": epoch_ms(self._services.now()),
        }

    async def _get_background_sync_status(
        self, request: Mapping[str, Any], sender_tab_id: int | None
    ) -> dict[str, Any]:
        return self._services.orchestrator.status().to_dict()

    async def _get_available_models(self, request: Mapping[str, Any], sender_tab_id: int | None) -> dict[str, Any]:
        catalog = self._services.catalog.load()
        return {"models": [model.to_dict() for model in catalog.models]}


_SKIP_MESSAGES = {
    "busy": "Background sync already in progress",
    "disposed": "Relay is shutting down",
}


def resolve_tab_id(value: Any, sender_tab_id: int | None) -> int | None:
    """Resolve ``"current"`` to the sender's tab; anything but a positive int is None."""
    if value == CURRENT_TAB:
        value = sender_tab_id
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        return None
    return value


def parse_messages(raw: Any) -> list[Message]:
    if not isinstance(raw, list):
        raise CommandError("messages must be a list of {user, text, timestamp} objects.")
    messages: list[Message] = []
    for index, entry in enumerate(raw):
        if not isinstance(entry, Mapping):
            raise CommandError(f"messages[{index}] must be an object.")
        text = entry.get("text")
        if not isinstance(text, str):
            raise CommandError(f"messages[{index}].text must be a string.")
        messages.append(
            Message(
                user=str(entry.get("user") or UNKNOWN_USER),
                text=text,
                timestamp=str(entry.get("timestamp") or ""),
            )
        )
    return messages


async def serve_lines(
    router: CommandRouter,
    read_line: LineReader,
    write: Callable[[str], Any],
    *,
    sender_tab_id: Callable[[], int | None] | None = None,
) -> int:
    """Answer newline-delimited JSON requests until ``read_line`` returns ``""``.

    Each request line gets exactly one JSON response line, in order. Blank lines are
    skipped. Returns the number of requests answered.
    """
    answered = 0
    while True:
        line = await read_line()
        if not line:
            return answered
        line = line.strip()
        if not line:
            continue
        try:
            request = json.loads(line)
        except ValueError as exc:
            response: dict[str, Any] = {"error": f"Invalid JSON request: {exc}"}
        else:
            sender = sender_tab_id() if sender_tab_id is not None else None
            response = await router.dispatch(request, sender)
        write(json.dumps(response, ensure_ascii=False))
        answered += 1
