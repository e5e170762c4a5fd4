"""Storage interfaces for string-keyed JSON values."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
import copy
from typing import Any, Protocol


class KeyValueStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any:
        """Return the decoded value for key, or default when absent."""

    def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        """Return decoded values for the keys that exist."""

    def set_many(self, values: Mapping[str, Any]) -> None:
        """Persist all values together; last write wins per key."""

    def remove(self, keys: Iterable[str]) -> None:
        """Delete keys; missing keys are ignored."""


class MemoryKeyValueStore:
    """Process-local store used by tests and dry runs."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = copy.deepcopy(dict(initial or {}))

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._values:
            return default
        return copy.deepcopy(self._values[key])

    def get_many(self, keys: Iterable[str]) -> dict[str, Any]:
        return {key: copy.deepcopy(self._values[key]) for key in keys if key in self._values}

    def set_many(self, values: Mapping[str, Any]) -> None:
        for key, value in values.items():
            self._values[key] = copy.deepcopy(value)

    def remove(self, keys: Iterable[str]) -> None:
        for key in keys:
            self._values.pop(key, None)
