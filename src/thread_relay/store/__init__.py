"""Durable key/value persistence for settings, prompt and model catalog."""

from .base import KeyValueStore, MemoryKeyValueStore
from .settings import CatalogRepository, SettingsRepository
from .sqlite import SqliteKeyValueStore

__all__ = [
    "CatalogRepository",
    "KeyValueStore",
    "MemoryKeyValueStore",
    "SettingsRepository",
    "SqliteKeyValueStore",
]
