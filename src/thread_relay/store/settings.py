"""Typed repositories over the persisted keys shared by the CLI and background sync."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
import logging
from typing import Any

from thread_relay.models import ModelCatalog, ModelOption, ScrollSettings, epoch_ms, from_epoch_ms

from .base import KeyValueStore

logger = logging.getLogger(__name__)

CUSTOM_PROMPT_KEY = "customSystemPrompt"
SUMMARY_CONFIG_KEY = "slack_summary_config"
MODELS_KEY = "availableGeminiModels"
MODELS_UPDATED_KEY = "modelsLastUpdated"
LANGUAGE_KEY = "selectedLanguage"

DEFAULT_LANGUAGE = "en"
SUPPORTED_LANGUAGES = ("en", "zh_CN", "zh_TW", "ja")


class SettingsRepository:
    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def get_scroll_settings(self) -> ScrollSettings:
        config = self._store.get(SUMMARY_CONFIG_KEY, {})
        raw = config.get("scrollSettings") if isinstance(config, dict) else None
        return ScrollSettings.from_store(raw if isinstance(raw, dict) else None)

    def update_scroll_settings(self, changes: dict[str, Any]) -> ScrollSettings:
        """Merge changes into the stored settings and persist the full result."""
        updated = self.get_scroll_settings().merged(changes)
        self._write_scroll_settings(updated)
        logger.info("Scroll settings updated: %s", updated.to_store())
        return updated

    def reset_scroll_settings(self) -> ScrollSettings:
        defaults = ScrollSettings()
        self._write_scroll_settings(defaults)
        return defaults

    def get_custom_prompt(self) -> str:
        value = self._store.get(CUSTOM_PROMPT_KEY, "")
        return value if isinstance(value, str) else ""

    def set_custom_prompt(self, prompt: str) -> None:
        self._store.set_many({CUSTOM_PROMPT_KEY: prompt.strip()})

    def clear_custom_prompt(self) -> None:
        self._store.remove([CUSTOM_PROMPT_KEY])

    def get_language(self) -> str:
        value = self._store.get(LANGUAGE_KEY, DEFAULT_LANGUAGE)
        return value if value in SUPPORTED_LANGUAGES else DEFAULT_LANGUAGE

    def set_language(self, language: str) -> None:
        if language not in SUPPORTED_LANGUAGES:
            choices = ", ".join(SUPPORTED_LANGUAGES)
            raise ValueError(f"Unsupported language '{language}'; expected one of [{choices}].")
        self._store.set_many({LANGUAGE_KEY: language})

    def _write_scroll_settings(self, settings: ScrollSettings) -> None:
        config = self._store.get(SUMMARY_CONFIG_KEY, {})
        if not isinstance(config, dict):
            config = {}
        config["scrollSettings"] = settings.to_store()
        self._store.set_many({SUMMARY_CONFIG_KEY: config})


class CatalogRepository:
    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def load(self) -> ModelCatalog:
        values = self._store.get_many([MODELS_KEY, MODELS_UPDATED_KEY])
        raw_models = values.get(MODELS_KEY)
        models: list[ModelOption] = []
        if isinstance(raw_models, list):
            for entry in raw_models:
                if not isinstance(entry, dict):
                    continue
                option = ModelOption.from_dict(entry)
                if option.value:
                    models.append(option)
        return ModelCatalog(
            models=tuple(models),
            last_updated=from_epoch_ms(values.get(MODELS_UPDATED_KEY)),
        )

    def save(self, models: Sequence[ModelOption], now: datetime) -> ModelCatalog:
        """Persist the catalog and its timestamp in one write."""
        self._store.set_many(
            {
                MODELS_KEY: [model.to_dict() for model in models],
                MODELS_UPDATED_KEY: epoch_ms(now),
            }
        )
        return ModelCatalog(models=tuple(models), last_updated=now)

    def age_seconds(self, now: datetime) -> float | None:
        return self.load().age_seconds(now)
