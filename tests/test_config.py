"""Config path resolution, template bootstrap and validation."""

from __future__ import annotations

from pathlib import Path

import pytest

from thread_relay.config import (
    CONFIG_ENV_VAR,
    CollectionConfig,
    SyncConfig,
    config_to_dict,
    default_config,
    init_default_config,
    load_runtime_config,
    resolve_config_path,
    resolve_store_path,
)
from thread_relay.errors import ConfigError


def test_default_template_round_trips_to_default_config(tmp_path: Path) -> None:
    config_path = init_default_config(tmp_path / "config.toml")
    assert load_runtime_config(config_path) == default_config()


def test_defaults_carry_collection_and_sync_tunables() -> None:
    collection = CollectionConfig()
    sync = SyncConfig()
    assert collection.virtual_list_grace_ms == 200
    assert collection.timeout_seconds == 300.0
    assert collection.long_thread_threshold == 50
    assert collection.long_thread_min_no_progress == 15
    assert sync.alarm_interval_seconds == 1800.0
    assert sync.min_spacing_seconds == 10.0
    assert sync.catalog_staleness_seconds == 1500.0
    assert sync.readiness_attempts == 8
    assert sync.destination_url == "https://gemini.google.com/app"


def test_init_refuses_to_overwrite_without_force(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text("[app]\n", encoding="utf-8")
    with pytest.raises(ConfigError, match="--force"):
        init_default_config(config_path)
    init_default_config(config_path, force=True)
    assert "[collection]" in config_path.read_text(encoding="utf-8")


def test_resolve_config_path_prefers_explicit_then_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    env_path = tmp_path / "env.toml"
    monkeypatch.setenv(CONFIG_ENV_VAR, str(env_path))
    assert resolve_config_path() == env_path
    assert resolve_config_path(tmp_path / "explicit.toml") == tmp_path / "explicit.toml"


def test_missing_config_is_actionable_unless_missing_ok(tmp_path: Path) -> None:
    missing = tmp_path / "missing.toml"
    with pytest.raises(ConfigError, match="thread-relay config init"):
        load_runtime_config(missing)
    assert load_runtime_config(missing, missing_ok=True) == default_config()


def test_partial_config_overrides_only_named_values(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text(
        """
[collection]
timeout_seconds = 45
stuck_streak = 4

[sync]
alarm_interval_seconds = 600
readiness_attempts = 3

[store]
path = "/tmp/relay-test.sqlite3"
""",
        encoding="utf-8",
    )
    config = load_runtime_config(config_path)
    assert config.collection.timeout_seconds == 45.0
    assert config.collection.stuck_streak == 4
    assert config.collection.bottom_margin_px == 50
    assert config.sync.alarm_interval_seconds == 600.0
    assert config.sync.readiness_attempts == 3
    assert resolve_store_path(config) == Path("/tmp/relay-test.sqlite3")


@pytest.mark.parametrize(
    "body, message",
    [
        ('[browser]\nengine = "lynx"\n', "browser.engine"),
        ("[collection]\nstuck_streak = 0\n", "collection.stuck_streak"),
        ("[collection]\ntall_viewport_ratio = 1.5\n", "tall_viewport_ratio"),
        ('[sync]\ndestination_url = "ftp://example.com"\n', "sync.destination_url"),
        ("[sync]\nreadiness_attempts = 2.5\n", "sync.readiness_attempts"),
        ("[app]\ndebug = 1\n", "app.debug"),
        ('app = "oops"\n', "[app]"),
        ("[app\n", "invalid TOML"),
    ],
)
def test_invalid_values_raise_config_error(tmp_path: Path, body: str, message: str) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text(body, encoding="utf-8")
    with pytest.raises(ConfigError) as exc_info:
        load_runtime_config(config_path)
    assert message in str(exc_info.value)


def test_config_to_dict_is_json_friendly() -> None:
    payload = config_to_dict(default_config())
    assert payload["sync"]["destination_url"] == "https://gemini.google.com/app"
    assert payload["collection"]["tall_viewport_ratio"] == 0.8
    assert payload["store"]["path"] is None
