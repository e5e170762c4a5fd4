"""Selector packs, single-item extraction and transcript post-processing."""

from .message import PlaywrightTextExtractor, message_from_payload
from .processor import MessageProcessor
from .selectors import SelectorStrategy, first_match, resolve_selector_pack

__all__ = [
    "MessageProcessor",
    "PlaywrightTextExtractor",
    "SelectorStrategy",
    "first_match",
    "message_from_payload",
    "resolve_selector_pack",
]
