"""Key/value stores and the typed settings and catalog repositories."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from pathlib import Path
import sqlite3

import pytest

from thread_relay.errors import StoreUnavailable
from thread_relay.models import ModelOption, ScrollSettings
from thread_relay.store.base import MemoryKeyValueStore
from thread_relay.store.settings import (
    CUSTOM_PROMPT_KEY,
    MODELS_KEY,
    MODELS_UPDATED_KEY,
    SUMMARY_CONFIG_KEY,
    CatalogRepository,
    SettingsRepository,
)
from thread_relay.store.sqlite import SqliteKeyValueStore

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def test_sqlite_store_bootstraps_schema_and_tracks_migrations(tmp_path: Path) -> None:
    db_path = tmp_path / "nested" / "relay.sqlite3"
    store = SqliteKeyValueStore(db_path)
    try:
        assert store.migration_versions() == ("0001_initial_kv_schema",)
    finally:
        store.close()

    conn = sqlite3.connect(str(db_path))
    try:
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        assert {"schema_migrations", "kv_entries"} <= tables
    finally:
        conn.close()


def test_sqlite_store_persists_json_values_across_reopen(tmp_path: Path) -> None:
    db_path = tmp_path / "relay.sqlite3"
    store = SqliteKeyValueStore(db_path)
    try:
        store.set_many({"a": {"nested": [1, 2]}, "b": "text", "c": 3})
        store.set_many({"c": 4})
        store.remove(["b", "missing"])
    finally:
        store.close()

    reopened = SqliteKeyValueStore(db_path)
    try:
        assert reopened.get("a") == {"nested": [1, 2]}
        assert reopened.get("b", "gone") == "gone"
        assert reopened.get_many(["a", "c", "zzz"]) == {"a": {"nested": [1, 2]}, "c": 4}
        assert reopened.migration_versions() == ("0001_initial_kv_schema",)
    finally:
        reopened.close()


def test_sqlite_store_rejects_unserializable_values(tmp_path: Path) -> None:
    store = SqliteKeyValueStore(tmp_path / "relay.sqlite3")
    try:
        with pytest.raises(StoreUnavailable, match="JSON-serializable"):
            store.set_many({"bad": object()})
        assert store.get("bad") is None
    finally:
        store.close()


def test_sqlite_store_wraps_errors_after_close(tmp_path: Path) -> None:
    store = SqliteKeyValueStore(tmp_path / "relay.sqlite3")
    store.close()
    with pytest.raises(StoreUnavailable):
        store.get("anything")


def test_sqlite_store_reports_unusable_path(tmp_path: Path) -> None:
    blocker = tmp_path / "file"
    blocker.write_text("not a dir", encoding="utf-8")
    with pytest.raises(StoreUnavailable):
        SqliteKeyValueStore(blocker / "relay.sqlite3")


def test_memory_store_returns_copies() -> None:
    store = MemoryKeyValueStore({"config": {"x": 1}})
    value = store.get("config")
    value["x"] = 99
    assert store.get("config") == {"x": 1}


def test_scroll_settings_default_when_nothing_stored() -> None:
    repo = SettingsRepository(MemoryKeyValueStore())
    assert repo.get_scroll_settings() == ScrollSettings()


def test_update_scroll_settings_merges_and_keeps_other_config_keys() -> None:
    store = MemoryKeyValueStore({SUMMARY_CONFIG_KEY: {"theme": "dark", "scrollSettings": {"scrollDelay": 250}}})
    repo = SettingsRepository(store)

    updated = repo.update_scroll_settings({"scrollStep": 800})

    assert updated.scroll_delay == 250
    assert updated.scroll_step == 800
    stored = store.get(SUMMARY_CONFIG_KEY)
    assert stored["theme"] == "dark"
    assert stored["scrollSettings"]["scrollStep"] == 800
    assert repo.reset_scroll_settings() == ScrollSettings()
    assert store.get(SUMMARY_CONFIG_KEY)["scrollSettings"]["scrollDelay"] == 400


def test_update_scroll_settings_rejects_unknown_key_without_writing() -> None:
    store = MemoryKeyValueStore()
    repo = SettingsRepository(store)
    with pytest.raises(ValueError):
        repo.update_scroll_settings({"speed": 3})
    assert store.get(SUMMARY_CONFIG_KEY) is None


def test_custom_prompt_and_language_round_trip() -> None:
    store = MemoryKeyValueStore()
    repo = SettingsRepository(store)

    repo.set_custom_prompt("  Summarize {MESSAGES}  ")
    assert store.get(CUSTOM_PROMPT_KEY) == "Summarize {MESSAGES}"
    repo.clear_custom_prompt()
    assert repo.get_custom_prompt() == ""

    assert repo.get_language() == "en"
    repo.set_language("ja")
    assert repo.get_language() == "ja"
    with pytest.raises(ValueError, match="Unsupported language"):
        repo.set_language("xx")


def test_catalog_save_writes_models_and_timestamp_together() -> None:
    store = MemoryKeyValueStore()
    repo = CatalogRepository(store)
    models = [ModelOption("gemini-2.5-pro", "🧠 2.5 Pro", "2.5 Pro"), ModelOption("fast", "Fast")]

    saved = repo.save(models, NOW)

    assert saved.last_updated == NOW
    assert store.get(MODELS_KEY)[0] == {
        "value": "gemini-2.5-pro",
        "displayName": "🧠 2.5 Pro",
        "description": "2.5 Pro",
    }
    assert isinstance(store.get(MODELS_UPDATED_KEY), int)
    loaded = repo.load()
    assert loaded.models == tuple(models)
    assert loaded.last_updated == NOW
    assert repo.age_seconds(NOW + timedelta(minutes=2)) == 120


def test_catalog_load_skips_malformed_entries() -> None:
    store = MemoryKeyValueStore({MODELS_KEY: ["junk", {"value": ""}, {"value": "x", "displayName": "X"}]})
    catalog = CatalogRepository(store).load()
    assert [model.value for model in catalog.models] == ["x"]
    assert catalog.last_updated is None
