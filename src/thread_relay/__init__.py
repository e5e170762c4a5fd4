"""thread_relay package."""

from .config import (
    AppConfig,
    BrowserConfig,
    CollectionConfig,
    RuntimeConfig,
    SelectorsConfig,
    StoreConfig,
    SyncConfig,
    config_to_dict,
    default_config,
    init_default_config,
    load_runtime_config,
    resolve_config_path,
)
from .models import Message, ModelCatalog, ModelOption, ScrollSettings

__all__ = [
    "AppConfig",
    "BrowserConfig",
    "CollectionConfig",
    "Message",
    "ModelCatalog",
    "ModelOption",
    "RuntimeConfig",
    "ScrollSettings",
    "SelectorsConfig",
    "StoreConfig",
    "SyncConfig",
    "config_to_dict",
    "default_config",
    "init_default_config",
    "load_runtime_config",
    "resolve_config_path",
]

__version__ = "0.1.0"
