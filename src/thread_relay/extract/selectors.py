"""Selector-pack defaults, override resolution and ordered strategy lookup."""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterator, Mapping, Sequence
from dataclasses import dataclass
import json
import logging
from pathlib import Path
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

SelectorPack = dict[str, tuple[str, ...]]

DEFAULT_SELECTOR_PACK: dict[str, tuple[str, ...]] = {
    "thread.container": (
        '[data-qa="threads_flexpane"]',
        ".p-threads_flexpane",
        ".p-thread_view",
        ".p-threads_view",
        '[data-qa="thread_view"]',
    ),
    "thread.scroll_container": (
        '.c-virtual_list__scroll_container[role="list"]',
        ".c-virtual_list__scroll_container",
        ".c-scrollbar__hider",
        ".c-virtual_list.c-scrollbar",
        ".p-thread_view__messages",
        ".p-threads_flexpane__content",
    ),
    "thread.message": (
        '[data-qa="virtual-list-item"]',
        ".c-virtual_list__item",
        ".c-message_kit__message",
        '[data-qa="message"]',
    ),
    "message.user": (
        '[data-qa="message_sender_name"]',
        ".c-message__sender_link",
        ".c-message__sender",
        ".c-message_kit__sender",
        '[data-qa="message_sender"]',
    ),
    "message.timestamp": (
        ".c-timestamp",
        '[data-qa="message_timestamp"]',
        ".c-message__time",
    ),
    "message.content": (
        ".c-message_kit__blocks",
        ".c-message__message_blocks",
        ".p-block_kit_renderer",
        ".c-message__body",
        ".p-rich_text_section",
        '[data-qa="message_text"]',
    ),
    "destination.input": (
        'rich-textarea div[contenteditable="true"]',
        'div.ql-editor[contenteditable="true"]',
        'div[contenteditable="true"][role="textbox"]',
        "textarea",
    ),
    "destination.mode_switcher": (
        'button[data-test-id="bard-mode-menu-button"]',
        "bard-mode-switcher button",
        'button[aria-haspopup="menu"][aria-label*="model" i]',
    ),
    "destination.mode_option": (
        '[role="menuitemradio"]',
        '[role="menuitem"]',
        "mat-option",
    ),
}


@dataclass(frozen=True)
class SelectorPackResolution:
    selectors: SelectorPack
    warnings: tuple[str, ...] = ()
    loaded_override: bool = False


@dataclass(frozen=True)
class SelectorStrategy:
    """One named lookup candidate; ``name`` is what gets logged when it wins."""

    name: str
    selector: str


def default_selector_pack() -> SelectorPack:
    """Return a mutable copy of built-in selector defaults."""
    return {key: tuple(value) for key, value in DEFAULT_SELECTOR_PACK.items()}


def strategies_for(selectors: Mapping[str, Sequence[str]], key: str) -> tuple[SelectorStrategy, ...]:
    return tuple(
        SelectorStrategy(name=f"{key}[{index}]", selector=selector)
        for index, selector in enumerate(selectors.get(key, ()))
    )


async def first_match(
    strategies: Sequence[SelectorStrategy],
    resolve: Callable[[SelectorStrategy], Awaitable[T | None]],
) -> tuple[SelectorStrategy, T] | None:
    """Try strategies in order and return the first one that resolves to a value.

    A strategy whose resolver raises is logged and skipped.
    """
    for strategy in strategies:
        try:
            result = await resolve(strategy)
        except Exception as exc:
            logger.debug("Selector strategy %s failed: %s", strategy.name, exc)
            continue
        if result is not None:
            logger.debug("Selector strategy %s matched", strategy.name)
            return strategy, result
    return None


class SelectorOverrideError(ValueError):
    """An override file that cannot be used at all."""


def resolve_selector_pack(
    override_path: str | Path | None = None,
    *,
    override_data: Mapping[str, Any] | None = None,
) -> SelectorPackResolution:
    """Layer an override file, then inline override data, over the built-in pack.

    Each override key replaces the whole strategy list for that key. Problems are
    collected as warnings and the affected key (or the whole file) keeps its default.
    """
    selectors = default_selector_pack()
    warnings: list[str] = []
    layers: list[Mapping[str, Any]] = []

    if override_path is not None:
        try:
            layers.append(read_selector_override(Path(override_path).expanduser()))
        except SelectorOverrideError as exc:
            warnings.append(f"{exc} Using defaults.")
    if override_data is not None:
        layers.append(override_data)

    for layer in layers:
        warnings.extend(_apply_override(selectors, layer))
    for warning in warnings:
        logger.warning(warning)

    return SelectorPackResolution(
        selectors=selectors,
        warnings=tuple(warnings),
        loaded_override=bool(layers),
    )


def read_selector_override(path: Path) -> Mapping[str, Any]:
    suffix = path.suffix.lower()
    if suffix not in (".json", ".toml"):
        raise SelectorOverrideError(f"Selector override '{path}' must be a .json or .toml file.")
    if not path.is_file():
        raise SelectorOverrideError(f"Selector override file '{path}' was not found.")

    try:
        text = path.read_text(encoding="utf-8")
        data = json.loads(text) if suffix == ".json" else _parse_toml(text)
    except OSError as exc:
        raise SelectorOverrideError(f"Could not read selector override file '{path}': {exc}.") from exc
    except ValueError as exc:
        kind = suffix[1:].upper()
        raise SelectorOverrideError(f"Selector override file '{path}' contains invalid {kind}: {exc}.") from exc

    if not isinstance(data, Mapping):
        raise SelectorOverrideError(f"Selector override file '{path}' must hold a table at top level.")
    return data


def _parse_toml(text: str) -> dict[str, Any]:
    try:
        import tomllib  # Python 3.11+
    except ModuleNotFoundError:
        import tomli as tomllib  # type: ignore[no-redef]

    return tomllib.loads(text)


def _apply_override(selectors: SelectorPack, payload: Mapping[str, Any]) -> list[str]:
    section = payload.get("selectors", payload)
    if not isinstance(section, Mapping):
        return ["Selector override key 'selectors' must be a table; override ignored."]

    problems: list[str] = []
    for key, value in sorted(_dotted_items(section), key=lambda item: item[0]):
        if key not in DEFAULT_SELECTOR_PACK:
            problems.append(f"Unknown selector key '{key}' in override; ignored.")
            continue
        strategies = _as_strategy_list(value)
        if strategies is None:
            problems.append(f"Selector override for '{key}' must be a non-empty string or list of strings; ignored.")
            continue
        selectors[key] = strategies
    return problems


def _dotted_items(table: Mapping[str, Any], prefix: str = "") -> Iterator[tuple[str, Any]]:
    # Nested TOML tables and JSON objects both address "thread.message" style keys.
    for key, value in table.items():
        dotted = f"{prefix}{key}"
        if isinstance(value, Mapping):
            yield from _dotted_items(value, f"{dotted}.")
        else:
            yield dotted, value


def _as_strategy_list(value: Any) -> tuple[str, ...] | None:
    entries = [value] if isinstance(value, str) else value
    if not isinstance(entries, (list, tuple)) or not entries:
        return None
    if not all(isinstance(entry, str) and entry.strip() for entry in entries):
        return None
    return tuple(entry.strip() for entry in entries)
