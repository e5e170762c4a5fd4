"""Collection interfaces for virtualized thread lists."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any, Protocol

from thread_relay.models import Message, ScrollMetrics


@dataclass(frozen=True)
class CollectionStats:
    captures: int
    observed_messages: int
    scroll_rounds: int
    stagnation_rounds: int
    stuck_escalations: int
    stop_reason: str


@dataclass(frozen=True)
class CollectionBatch:
    messages: tuple[Message, ...]
    raw_count: int = 0
    stats: CollectionStats | None = None


class ScrollContainer(Protocol):
    async def metrics(self) -> ScrollMetrics:
        """Read scrollTop/scrollHeight/clientHeight and computed overflow."""

    async def scroll_to(self, top: float) -> None:
        """Set the scroll offset."""

    async def scroll_to_bottom(self) -> None:
        """Set the scroll offset to the full scroll height."""


class ItemElement(Protocol):
    async def bounding_box(self) -> dict[str, float] | None:
        """Rendered box, or None when the element is detached or hidden."""


class DomDetector(Protocol):
    async def find_thread_container(self) -> ScrollContainer | None:
        """Return the thread root, or None when no thread is open."""

    async def scroll_candidates(self, root: ScrollContainer) -> Sequence[ScrollContainer]:
        """Return ordered scrollable-ancestor candidates inside root."""

    async def find_message_elements(self, verbose: bool = False) -> Sequence[ItemElement]:
        """Return currently rendered message elements."""


class TextExtractor(Protocol):
    async def extract_single_message(self, element: Any) -> Message | None:
        """Extract one message, or None when the element is not a message."""


class TranscriptProcessor(Protocol):
    def process_messages(self, messages: Sequence[Message]) -> list[Message]:
        """Return a cleaned transcript."""
