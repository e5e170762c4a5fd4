"""Data model contracts for cross-module use."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
import re
from typing import Any

UNKNOWN_USER = "Unknown User"
MESSAGE_KEY_PREFIX_CHARS = 100

_WHITESPACE_RE = re.compile(r"\s+")


@dataclass(frozen=True)
class Message:
    user: str
    text: str
    timestamp: str

    def to_dict(self) -> dict[str, str]:
        return {"user": self.user, "text": self.text, "timestamp": self.timestamp}


def message_key(message: Message, *, prefix_chars: int = MESSAGE_KEY_PREFIX_CHARS) -> str:
    """Build the deduplication key for one captured message.

    The key is ``user:timestamp:prefix`` where prefix is the first ``prefix_chars``
    characters of the text with whitespace runs collapsed, so the same on-screen item
    captured at different scroll offsets yields the same key.
    """
    preview = _WHITESPACE_RE.sub(" ", message.text[:prefix_chars]).strip()
    user = message.user or "unknown"
    timestamp = message.timestamp or "no-time"
    return f"{user}:{timestamp}:{preview}"


@dataclass(frozen=True)
class ScrollSettings:
    scroll_delay: int = 400
    max_scroll_attempts: int = 300
    no_max_new_messages_count: int = 12
    scroll_step: int = 600
    min_scroll_amount: int = 100

    def to_store(self) -> dict[str, int]:
        return {
            "scrollDelay": self.scroll_delay,
            "maxScrollAttempts": self.max_scroll_attempts,
            "noMaxNewMessagesCount": self.no_max_new_messages_count,
            "scrollStep": self.scroll_step,
            "minScrollAmount": self.min_scroll_amount,
        }

    @classmethod
    def from_store(cls, raw: dict[str, Any] | None) -> ScrollSettings:
        payload = dict(raw or {})
        known = {
            _STORE_TO_FIELD[key]: value
            for key, value in payload.items()
            if key in _STORE_TO_FIELD and _is_positive_int(value)
        }
        return cls(**known)

    def merged(self, changes: dict[str, Any]) -> ScrollSettings:
        """Return settings with ``changes`` applied; keys may be store or field names."""
        values = asdict(self)
        valid_fields = {item.name for item in fields(self)}
        for key, value in changes.items():
            name = _STORE_TO_FIELD.get(key, key)
            if name not in valid_fields:
                raise ValueError(f"Unknown scroll setting '{key}'.")
            if not _is_positive_int(value):
                raise ValueError(f"Scroll setting '{key}' must be a positive integer.")
            values[name] = value
        return ScrollSettings(**values)


_STORE_TO_FIELD = {
    "scrollDelay": "scroll_delay",
    "maxScrollAttempts": "max_scroll_attempts",
    "noMaxNewMessagesCount": "no_max_new_messages_count",
    "scrollStep": "scroll_step",
    "minScrollAmount": "min_scroll_amount",
}


@dataclass(frozen=True)
class ModelOption:
    value: str
    display_name: str
    description: str | None = None

    def to_dict(self) -> dict[str, str]:
        payload = {"value": self.value, "displayName": self.display_name}
        if self.description:
            payload["description"] = self.description
        return payload

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> ModelOption:
        value = str(raw.get("value", "")).strip()
        display_name = str(raw.get("displayName", "") or value).strip()
        description = raw.get("description") or raw.get("originalText")
        return cls(
            value=value,
            display_name=display_name,
            description=str(description) if description else None,
        )


@dataclass(frozen=True)
class ModelCatalog:
    models: tuple[ModelOption, ...] = ()
    last_updated: datetime | None = None

    def age_seconds(self, now: datetime) -> float | None:
        if self.last_updated is None:
            return None
        return max(0.0, (now - self.last_updated).total_seconds())

    def is_fresh(self, now: datetime, max_age_seconds: float) -> bool:
        age = self.age_seconds(now)
        return bool(self.models) and age is not None and age < max_age_seconds


@dataclass
class SyncState:
    """Process-wide orchestrator state; mutated only by the orchestrator run."""

    is_syncing: bool = False
    last_sync_time: datetime | None = None
    last_success_time: datetime | None = None
    last_error: str | None = None
    runs_started: int = 0


@dataclass(frozen=True)
class SyncStatus:
    status: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return {"status": self.status, "message": self.message}


@dataclass(frozen=True)
class ReadinessReport:
    is_ready: bool
    reason: str = ""


def epoch_ms(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


def from_epoch_ms(value: Any) -> datetime | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return None
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


@dataclass(frozen=True)
class ScrollMetrics:
    scroll_top: float
    scroll_height: float
    client_height: float
    overflow_y: str = "visible"
    overflow: str = "visible"

    @property
    def max_scroll_top(self) -> float:
        return max(0.0, self.scroll_height - self.client_height)

    @classmethod
    def from_payload(cls, raw: Any) -> ScrollMetrics:
        if not isinstance(raw, dict):
            raise ValueError(f"Scroll metrics payload must be an object, got {type(raw).__name__}.")
        return cls(
            scroll_top=float(raw.get("scrollTop") or 0),
            scroll_height=float(raw.get("scrollHeight") or 0),
            client_height=float(raw.get("clientHeight") or 0),
            overflow_y=str(raw.get("overflowY") or "visible"),
            overflow=str(raw.get("overflow") or "visible"),
        )


_SCROLLABLE_OVERFLOW = frozenset({"auto", "scroll"})


def is_scrollable(metrics: ScrollMetrics) -> bool:
    """Content taller than the viewport and an overflow style that permits scrolling."""
    has_overflowing_content = metrics.scroll_height > metrics.client_height
    has_scrollable_style = (
        metrics.overflow_y in _SCROLLABLE_OVERFLOW or metrics.overflow in _SCROLLABLE_OVERFLOW
    )
    return has_overflowing_content and has_scrollable_style


@dataclass
class Transcript:
    """Insertion-ordered, first-write-wins mapping of message keys to messages."""

    _entries: dict[str, Message] = field(default_factory=dict)

    def add(self, message: Message) -> bool:
        key = message_key(message)
        if key in self._entries:
            return False
        self._entries[key] = message
        return True

    def add_all(self, messages: list[Message]) -> int:
        return sum(1 for message in messages if self.add(message))

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, message: object) -> bool:
        return isinstance(message, Message) and message_key(message) in self._entries

    def messages(self) -> list[Message]:
        return list(self._entries.values())
