"""Transcript post-processing: drop UI noise and fold continuation fragments."""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import replace
import logging
import re

from thread_relay.models import UNKNOWN_USER, Message

logger = logging.getLogger(__name__)

SYSTEM_MESSAGE_PATTERNS: tuple[re.Pattern[str], ...] = tuple(
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"\d+\s+replies?",
        r"also\s+send\s+to",
        r"\d+\s+people\s+will\s+be\s+notified",
        r"started\s+a\s+thread",
        r"joined\s+the\s+channel",
        r"left\s+the\s+channel",
        r"set\s+the\s+channel\s+topic",
        r"(un)?pinned\s+a\s+message",
        r"(uploaded|shared)\s+a\s+file",
        r"(added|removed)\s+an\s+integration",
        r"changed\s+the\s+channel\s+name",
        r"(un)?archived\s+this\s+channel",
        r"this\s+message\s+was\s+deleted",
        r"message\s+deleted",
        r"has\s+(joined|left)\s+the\s+conversation",
        r"view\s+\d+\s+replies?",
        r"show\s+(less|more)",
        r"load\s+more\s+messages",
        r"^\s*(…|\.\.\.)\s*$",
        r"^(reply|thread|view\s+thread|reply…|message)$",
        r"^reply\s+to\s+thread",
        r"^(type|send)\s+a\s+message",
        r"^compose\s+message",
    )
)

_BARE_NUMBER_RE = re.compile(r"^\s*[\d\s.\-+()]+\s*$")
_UI_WORD_RE = re.compile(r"^(reply|thread|view|show|load|more|less)$", re.IGNORECASE)
_SENTENCE_END_RE = re.compile(r"[.!?]$")
_DASH_END_RE = re.compile(r"[-–—]$")


def is_system_message(text: str) -> bool:
    clean = text.strip()
    if not clean:
        return True
    if any(pattern.search(clean) for pattern in SYSTEM_MESSAGE_PATTERNS):
        return True
    if len(clean) < 5 and not re.search(r"[A-Za-z]", clean):
        return True
    return bool(_BARE_NUMBER_RE.match(clean) or _UI_WORD_RE.match(clean))


def merge_message_texts(previous: str, continuation: str) -> str:
    prev = previous.strip()
    cont = continuation.strip()
    if _SENTENCE_END_RE.search(prev):
        return f"{prev} {cont}"
    if _DASH_END_RE.search(prev):
        return f"{prev}{cont}"
    return f"{prev} {cont}"


class MessageProcessor:
    """Clean a raw transcript; returns new ``Message`` values and never mutates its input."""

    def process_messages(self, messages: Sequence[Message]) -> list[Message]:
        filtered = [
            message
            for message in messages
            if message.user != UNKNOWN_USER or not is_system_message(message.text)
        ]
        merged = self._merge_continuations(filtered)
        logger.debug(
            "Processed %s raw messages: %s after filtering, %s after merging",
            len(messages),
            len(filtered),
            len(merged),
        )
        return merged

    def _merge_continuations(self, messages: Sequence[Message]) -> list[Message]:
        processed: list[Message] = []
        for message in messages:
            if message.user != UNKNOWN_USER:
                processed.append(message)
                continue
            if not processed:
                logger.debug("Dropping leading continuation: %r", message.text[:50])
                continue

            # processed only ever holds named messages, so the last one is the merge target
            target = processed[-1]
            timestamp = target.timestamp
            if message.timestamp and (not timestamp or message.timestamp > timestamp):
                timestamp = message.timestamp
            processed[-1] = replace(
                target,
                text=merge_message_texts(target.text, message.text),
                timestamp=timestamp,
            )
        return processed
