"""Shared configuration contracts and validation helpers for thread-relay."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
import os
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir, user_data_dir

from .errors import ConfigError

APP_NAME = "thread-relay"
VALID_BROWSER_ENGINES = {"chromium", "firefox", "webkit"}
DEFAULT_CONFIG_FILENAME = "config.toml"
DEFAULT_STORE_FILENAME = "relay.sqlite3"
CONFIG_ENV_VAR = "THREAD_RELAY_CONFIG"

DEFAULT_CONFIG_TEMPLATE = """[app]
debug = false

[browser]
engine = "chromium"
headless = true
navigation_timeout_ms = 30000
action_timeout_ms = 10000
viewport_width = 1280
viewport_height = 900
locale = "en-US"
# storage_state = "~/.config/thread-relay/storage_state.json"

[collection]
virtual_list_grace_ms = 200
timeout_seconds = 300
long_thread_threshold = 50
long_thread_min_no_progress = 15
stuck_delta_px = 5
stuck_streak = 3
stuck_step_multiplier = 2
bottom_margin_px = 50
bottom_edge_px = 20
bottom_confirm_delta_px = 10
tall_viewport_px = 800
tall_viewport_ratio = 0.8

[sync]
destination_url = "https://gemini.google.com/app"
alarm_interval_seconds = 1800
min_spacing_seconds = 10
catalog_staleness_seconds = 1500
recent_refresh_seconds = 5
run_timeout_seconds = 60
tab_load_timeout_seconds = 30
post_load_settle_seconds = 3
loaded_settle_seconds = 1
readiness_attempts = 8
readiness_interval_seconds = 0.5
readiness_stabilize_seconds = 0.2
discovery_timeout_seconds = 30

[store]
# path = "~/.local/share/thread-relay/relay.sqlite3"

[selectors]
# override_path = "~/.config/thread-relay/selectors.toml"
"""


@dataclass(frozen=True)
class AppConfig:
    debug: bool = False


@dataclass(frozen=True)
class BrowserConfig:
    engine: str = "chromium"
    headless: bool = True
    navigation_timeout_ms: int = 30_000
    action_timeout_ms: int = 10_000
    viewport_width: int = 1280
    viewport_height: int = 900
    locale: str = "en-US"
    storage_state: str | None = None


@dataclass(frozen=True)
class CollectionConfig:
    virtual_list_grace_ms: int = 200
    timeout_seconds: float = 300.0
    long_thread_threshold: int = 50
    long_thread_min_no_progress: int = 15
    stuck_delta_px: int = 5
    stuck_streak: int = 3
    stuck_step_multiplier: int = 2
    bottom_margin_px: int = 50
    bottom_edge_px: int = 20
    bottom_confirm_delta_px: int = 10
    tall_viewport_px: int = 800
    tall_viewport_ratio: float = 0.8


@dataclass(frozen=True)
class SyncConfig:
    destination_url: str = "https://gemini.google.com/app"
    alarm_interval_seconds: float = 1800.0
    min_spacing_seconds: float = 10.0
    catalog_staleness_seconds: float = 1500.0
    recent_refresh_seconds: float = 5.0
    run_timeout_seconds: float = 60.0
    tab_load_timeout_seconds: float = 30.0
    post_load_settle_seconds: float = 3.0
    loaded_settle_seconds: float = 1.0
    readiness_attempts: int = 8
    readiness_interval_seconds: float = 0.5
    readiness_stabilize_seconds: float = 0.2
    discovery_timeout_seconds: float = 30.0


@dataclass(frozen=True)
class StoreConfig:
    path: str | None = None


@dataclass(frozen=True)
class SelectorsConfig:
    override_path: str | None = None


@dataclass(frozen=True)
class RuntimeConfig:
    app: AppConfig = field(default_factory=AppConfig)
    browser: BrowserConfig = field(default_factory=BrowserConfig)
    collection: CollectionConfig = field(default_factory=CollectionConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    selectors: SelectorsConfig = field(default_factory=SelectorsConfig)


def default_config() -> RuntimeConfig:
    return RuntimeConfig()


def default_config_toml() -> str:
    return DEFAULT_CONFIG_TEMPLATE


def resolve_config_path(config_path: str | Path | None = None) -> Path:
    if config_path:
        return Path(config_path).expanduser()

    env_value = os.getenv(CONFIG_ENV_VAR)
    if env_value:
        return Path(env_value).expanduser()

    config_dir = Path(user_config_dir(APP_NAME, appauthor=False))
    return config_dir / DEFAULT_CONFIG_FILENAME


def resolve_store_path(config: RuntimeConfig) -> Path:
    if config.store.path:
        return Path(config.store.path).expanduser()
    return Path(user_data_dir(APP_NAME, appauthor=False)) / DEFAULT_STORE_FILENAME


def init_default_config(config_path: str | Path | None = None, force: bool = False) -> Path:
    path = resolve_config_path(config_path)
    if path.exists() and path.is_dir():
        raise ConfigError(
            f"Config path '{path}' is a directory; expected a TOML file path (for example '{path / DEFAULT_CONFIG_FILENAME}')."
        )
    if path.exists() and not force:
        raise ConfigError(
            f"Config file already exists at '{path}'. Re-run with --force to overwrite."
        )

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(default_config_toml(), encoding="utf-8")
    except OSError as exc:
        raise ConfigError(
            f"Could not write config file at '{path}': {exc}. "
            "Check path permissions or choose a writable location with `--path`."
        ) from exc
    return path


def load_runtime_config(config_path: str | Path | None = None, *, missing_ok: bool = False) -> RuntimeConfig:
    """Load and validate the TOML config; ``missing_ok`` yields defaults for an absent file."""
    path = resolve_config_path(config_path)
    if not path.exists():
        if missing_ok:
            return default_config()
        raise ConfigError(
            f"Config file not found at '{path}'. Run `thread-relay config init --path \"{path}\"` to generate defaults."
        )
    if path.is_dir():
        raise ConfigError(
            f"Config path '{path}' is a directory; pass a file path ending in '{DEFAULT_CONFIG_FILENAME}'."
        )

    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(
            f"Could not read config file '{path}': {exc}. "
            "Check file permissions and that the path points to a readable TOML file."
        ) from exc
    raw = _load_toml(text, path)
    return _parse_runtime_config(raw)


def config_to_dict(config: RuntimeConfig) -> dict[str, Any]:
    return asdict(config)


def _load_toml(text: str, path: Path) -> dict[str, Any]:
    try:
        import tomllib  # Python 3.11+
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[no-redef]

    try:
        data = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(
            f"Config file '{path}' contains invalid TOML: {exc}. "
            "Fix the syntax or regenerate defaults with `thread-relay config init --force`."
        ) from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config file '{path}' must parse to a TOML table.")
    return data


def _parse_runtime_config(data: dict[str, Any]) -> RuntimeConfig:
    app_raw = _expect_table(data, "app")
    browser_raw = _expect_table(data, "browser")
    collection_raw = _expect_table(data, "collection")
    sync_raw = _expect_table(data, "sync")
    store_raw = _expect_table(data, "store")
    selectors_raw = _expect_table(data, "selectors")

    browser_defaults = BrowserConfig()
    browser_config = BrowserConfig(
        engine=_expect_string(
            browser_raw, "browser.engine", browser_defaults.engine, choices=VALID_BROWSER_ENGINES
        ),
        headless=_expect_bool(browser_raw, "browser.headless", browser_defaults.headless),
        navigation_timeout_ms=_expect_positive(
            browser_raw, "browser.navigation_timeout_ms", browser_defaults.navigation_timeout_ms
        ),
        action_timeout_ms=_expect_positive(
            browser_raw, "browser.action_timeout_ms", browser_defaults.action_timeout_ms
        ),
        viewport_width=_expect_positive(browser_raw, "browser.viewport_width", browser_defaults.viewport_width),
        viewport_height=_expect_positive(browser_raw, "browser.viewport_height", browser_defaults.viewport_height),
        locale=_expect_string(browser_raw, "browser.locale", browser_defaults.locale),
        storage_state=_expect_optional_path(browser_raw, "browser.storage_state"),
    )

    # Every collection tunable is a positive number of the same kind as its default.
    collection_config = CollectionConfig(
        **{
            name: _expect_positive(collection_raw, f"collection.{name}", default)
            for name, default in asdict(CollectionConfig()).items()
        }
    )
    if collection_config.tall_viewport_ratio > 1:
        raise _invalid("collection.tall_viewport_ratio", "a ratio in (0, 1]")

    sync_defaults = SyncConfig()
    sync_config = SyncConfig(
        destination_url=_expect_string(sync_raw, "sync.destination_url", sync_defaults.destination_url),
        **{
            name: _expect_positive(sync_raw, f"sync.{name}", default)
            for name, default in asdict(sync_defaults).items()
            if name != "destination_url"
        },
    )
    if not sync_config.destination_url.startswith(("http://", "https://")):
        raise _invalid("sync.destination_url", "an http(s) URL")

    return RuntimeConfig(
        app=AppConfig(debug=_expect_bool(app_raw, "app.debug", False)),
        browser=browser_config,
        collection=collection_config,
        sync=sync_config,
        store=StoreConfig(path=_expect_optional_path(store_raw, "store.path")),
        selectors=SelectorsConfig(override_path=_expect_optional_path(selectors_raw, "selectors.override_path")),
    )


def _expect_table(data: dict[str, Any], key: str) -> dict[str, Any]:
    value = data.get(key, {})
    if not isinstance(value, dict):
        raise ConfigError(f"Invalid [{key}] table: expected table, got {type(value).__name__}.")
    return value


def _lookup(table: dict[str, Any], key: str, default: Any) -> Any:
    return table.get(key.rpartition(".")[2], default)


def _invalid(key: str, expected: str) -> ConfigError:
    return ConfigError(f"Invalid value for '{key}': expected {expected}.")


def _expect_string(
    table: dict[str, Any],
    key: str,
    default: str,
    *,
    choices: set[str] | None = None,
) -> str:
    value = _lookup(table, key, default)
    if not isinstance(value, str) or not value.strip():
        raise _invalid(key, "non-empty string")
    if choices is not None and value not in choices:
        raise _invalid(key, f"one of [{', '.join(sorted(choices))}]")
    return value


def _expect_optional_path(table: dict[str, Any], key: str) -> str | None:
    value = _lookup(table, key, None)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise _invalid(key, "non-empty path string")
    return str(Path(value).expanduser())


def _expect_bool(table: dict[str, Any], key: str, default: bool) -> bool:
    value = _lookup(table, key, default)
    if not isinstance(value, bool):
        raise _invalid(key, "boolean true/false")
    return value


def _expect_positive(table: dict[str, Any], key: str, default: Any) -> Any:
    """Integer defaults demand integers; float defaults accept any positive number."""
    value = _lookup(table, key, default)
    integral = isinstance(default, int)
    allowed: tuple[type, ...] = (int,) if integral else (int, float)
    if isinstance(value, bool) or not isinstance(value, allowed) or value <= 0:
        raise _invalid(key, "positive integer" if integral else "positive number")
    return value if integral else float(value)
