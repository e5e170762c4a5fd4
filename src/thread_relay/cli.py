"""Typer CLI for thread-relay workflows."""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Coroutine
from datetime import datetime, timezone
import json
import sys
from typing import Any, NoReturn, TypeVar

import typer

from . import __version__
from .config import (
    RuntimeConfig,
    config_to_dict,
    init_default_config,
    load_runtime_config,
    resolve_config_path,
    resolve_store_path,
)
from .context import RelayContext
from .errors import CollectError, ThreadRelayError
from .logging import configure_logging
from .models import Message, SyncState
from .relay.destination import AUTO_MODEL
from .relay.prompt import DEFAULT_SYSTEM_PROMPT, thread_overview
from .store.settings import CatalogRepository, SettingsRepository
from .store.sqlite import SqliteKeyValueStore
from .sync.orchestrator import SyncOutcome
from .sync.status import describe_sync_status

T = TypeVar("T")

app = typer.Typer(help="Collect chat threads and relay them to an AI destination page.")

config_app = typer.Typer(help="Config commands.")
settings_app = typer.Typer(help="Scroll collection settings.")
prompt_app = typer.Typer(help="Custom summary prompt.")

app.add_typer(config_app, name="config")
app.add_typer(settings_app, name="settings")
app.add_typer(prompt_app, name="prompt")

PATH_HELP = "Optional config TOML path (defaults to platform config dir)."


@config_app.command("init")
def config_init(
    path: str | None = typer.Option(None, "--path", help=PATH_HELP),
    force: bool = typer.Option(False, "--force", help="Overwrite existing config file."),
) -> None:
    try:
        written_path = init_default_config(path, force=force)
    except ThreadRelayError as exc:
        _fail("Config init failed", exc)

    typer.echo(f"Wrote default config to {written_path}")


@config_app.command("show")
def config_show(
    path: str | None = typer.Option(None, "--path", help=PATH_HELP),
    as_json: bool = typer.Option(False, "--json", help="Render resolved config as JSON."),
) -> None:
    resolved_path = resolve_config_path(path)
    try:
        config = load_runtime_config(path)
    except ThreadRelayError as exc:
        _fail("Config show failed", exc)

    payload = {"path": str(resolved_path), "config": config_to_dict(config)}
    if as_json:
        typer.echo(json.dumps(payload, indent=2, sort_keys=True))
        return

    typer.echo(f"Resolved config path: {payload['path']}")
    typer.echo(f"Store path: {resolve_store_path(config)}")
    typer.echo(f"Destination: {config.sync.destination_url}")
    typer.echo(f"Browser: {config.browser.engine} (headless={config.browser.headless})")


@settings_app.command("show")
def settings_show(
    path: str | None = typer.Option(None, "--path", help=PATH_HELP),
) -> None:
    try:
        settings = _with_store(path, lambda store: SettingsRepository(store).get_scroll_settings())
    except ThreadRelayError as exc:
        _fail("Settings show failed", exc)
    typer.echo(json.dumps(settings.to_store(), indent=2, sort_keys=True))


@settings_app.command("set")
def settings_set(
    assignments: list[str] = typer.Argument(..., help="KEY=VALUE pairs, e.g. scrollDelay=500."),
    path: str | None = typer.Option(None, "--path", help=PATH_HELP),
) -> None:
    try:
        changes = _parse_assignments(assignments)
        settings = _with_store(path, lambda store: SettingsRepository(store).update_scroll_settings(changes))
    except (ThreadRelayError, ValueError) as exc:
        _fail("Settings set failed", exc)
    typer.echo(json.dumps(settings.to_store(), indent=2, sort_keys=True))


@settings_app.command("reset")
def settings_reset(
    path: str | None = typer.Option(None, "--path", help=PATH_HELP),
) -> None:
    try:
        settings = _with_store(path, lambda store: SettingsRepository(store).reset_scroll_settings())
    except ThreadRelayError as exc:
        _fail("Settings reset failed", exc)
    typer.echo("Scroll settings reset to defaults.")
    typer.echo(json.dumps(settings.to_store(), indent=2, sort_keys=True))


@prompt_app.command("show")
def prompt_show(
    path: str | None = typer.Option(None, "--path", help=PATH_HELP),
) -> None:
    try:
        prompt = _with_store(path, lambda store: SettingsRepository(store).get_custom_prompt())
    except ThreadRelayError as exc:
        _fail("Prompt show failed", exc)
    if prompt:
        typer.echo(prompt)
        return
    typer.echo("No custom prompt set; using the default:")
    typer.echo(DEFAULT_SYSTEM_PROMPT)


@prompt_app.command("set")
def prompt_set(
    text: str = typer.Argument(..., help="Prompt text; include {MESSAGES} to place the thread."),
    path: str | None = typer.Option(None, "--path", help=PATH_HELP),
) -> None:
    if not text.strip():
        typer.secho("Prompt set failed: prompt text is empty.", err=True, fg=typer.colors.RED)
        raise typer.Exit(2)
    try:
        _with_store(path, lambda store: SettingsRepository(store).set_custom_prompt(text))
    except ThreadRelayError as exc:
        _fail("Prompt set failed", exc)
    typer.echo("Custom prompt saved.")


@prompt_app.command("clear")
def prompt_clear(
    path: str | None = typer.Option(None, "--path", help=PATH_HELP),
) -> None:
    try:
        _with_store(path, lambda store: SettingsRepository(store).clear_custom_prompt())
    except ThreadRelayError as exc:
        _fail("Prompt clear failed", exc)
    typer.echo("Custom prompt cleared.")


@app.command("collect")
def collect(
    url: str = typer.Argument(..., help="URL of the page showing the thread."),
    path: str | None = typer.Option(None, "--path", help=PATH_HELP),
    headful: bool = typer.Option(False, "--headful", help="Show the browser window."),
    as_json: bool = typer.Option(False, "--json", help="Render collected messages as JSON."),
) -> None:
    try:
        config = _load_runtime(path)
        messages = _run(_collect_messages(config, url, headful=headful))
    except ThreadRelayError as exc:
        _fail("Collect failed", exc)

    if as_json:
        typer.echo(json.dumps([message.to_dict() for message in messages], indent=2, ensure_ascii=False))
        return

    overview = thread_overview(messages)
    typer.echo(
        f"Collected {overview.message_count} messages from {len(overview.participants)} participants "
        f"({overview.time_range}, {overview.length_bucket})."
    )
    for index, message in enumerate(messages, start=1):
        typer.echo(f"{index}. {message.user} ({message.timestamp}): {message.text}")


@app.command("send")
def send(
    url: str = typer.Argument(..., help="URL of the page showing the thread."),
    path: str | None = typer.Option(None, "--path", help=PATH_HELP),
    model: str = typer.Option(AUTO_MODEL, "--model", help="Destination model value, or 'auto'."),
    headless: bool = typer.Option(False, "--headless", help="Run without a visible browser window."),
) -> None:
    try:
        config = _load_runtime(path)
        count, tab_id = _run(_collect_and_relay(config, url, model=model, headless=headless))
    except ThreadRelayError as exc:
        _fail("Send failed", exc)
    typer.echo(f"Relayed {count} messages to destination tab {tab_id}.")


@app.command("sync")
def sync(
    path: str | None = typer.Option(None, "--path", help=PATH_HELP),
    force: bool = typer.Option(False, "--force", help="Sync even when the catalog is fresh."),
) -> None:
    try:
        config = _load_runtime(path)
        outcome = _run(_sync_once(config, force=force))
    except ThreadRelayError as exc:
        _fail("Sync failed", exc)

    if outcome.ran:
        typer.echo(f"Sync {outcome.reason}: {outcome.model_count} models in catalog.")
    else:
        typer.echo(f"Sync skipped: {outcome.reason}.")


@app.command("status")
def status(
    path: str | None = typer.Option(None, "--path", help=PATH_HELP),
    as_json: bool = typer.Option(False, "--json", help="Render status as JSON."),
) -> None:
    try:
        catalog = _with_store(path, lambda store: CatalogRepository(store).load())
    except ThreadRelayError as exc:
        _fail("Status failed", exc)

    result = describe_sync_status(SyncState(), catalog.last_updated, datetime.now(timezone.utc))
    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2, sort_keys=True))
        return
    typer.echo(f"{result.status}: {result.message}")


@app.command("models")
def models(
    path: str | None = typer.Option(None, "--path", help=PATH_HELP),
    as_json: bool = typer.Option(False, "--json", help="Render the catalog as JSON."),
) -> None:
    try:
        catalog = _with_store(path, lambda store: CatalogRepository(store).load())
    except ThreadRelayError as exc:
        _fail("Models failed", exc)

    if as_json:
        typer.echo(json.dumps([model.to_dict() for model in catalog.models], indent=2, ensure_ascii=False))
        return
    if not catalog.models:
        typer.echo("No models synced yet. Run `thread-relay sync --force`.")
        return
    for model in catalog.models:
        typer.echo(f"{model.value}\t{model.display_name}")


@app.command("daemon")
def daemon(
    path: str | None = typer.Option(None, "--path", help=PATH_HELP),
    max_cycles: int | None = typer.Option(
        None, "--max-cycles", min=0, help="Stop after this many alarm cycles (default: run until interrupted)."
    ),
) -> None:
    try:
        config = _load_runtime(path)
        completed = _run(_run_daemon(config, max_cycles=max_cycles))
    except ThreadRelayError as exc:
        _fail("Daemon failed", exc)
    except KeyboardInterrupt:
        typer.echo("Interrupted.")
        return
    typer.echo(f"Daemon stopped after {completed} completed sync runs.")


@app.command("serve")
def serve(
    urls: list[str] = typer.Option([], "--open", help="Open a thread page first; the last one opened is the current tab."),
    path: str | None = typer.Option(None, "--path", help=PATH_HELP),
    headful: bool = typer.Option(False, "--headful", help="Show the browser window."),
    background: bool = typer.Option(
        True, "--background/--no-background", help="Run the start-up sync check and the periodic sync alarm."
    ),
) -> None:
    """Answer newline-delimited JSON command requests from stdin, one JSON response per line."""
    try:
        config = _load_runtime(path)
        _run(_serve_requests(config, urls, headless=not headful, background=background))
    except ThreadRelayError as exc:
        _fail("Serve failed", exc)
    except KeyboardInterrupt:
        return


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show thread-relay version and exit."),
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging."),
) -> None:
    ctx.obj = {"debug": debug}
    if version:
        typer.echo(__version__)
        raise typer.Exit()
    configure_logging(debug)
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())


async def _collect_messages(config: RuntimeConfig, url: str, *, headful: bool) -> list[Message]:
    async with RelayContext.from_config(config, headless=not headful) as context:
        tab_id = await context.open_page(url)
        return await context.collect_thread(tab_id)


async def _collect_and_relay(
    config: RuntimeConfig,
    url: str,
    *,
    model: str,
    headless: bool,
) -> tuple[int, int]:
    async with RelayContext.from_config(config, headless=headless) as context:
        source_tab = await context.open_page(url)
        messages = await context.collect_thread(source_tab)
        if not messages:
            raise CollectError("No messages were collected from the thread.")
        tab_id = await context.relay_messages(messages, model)
        if not headless:
            await asyncio.to_thread(typer.pause, "Transcript pasted. Press any key to close the browser...")
        return len(messages), tab_id


async def _sync_once(config: RuntimeConfig, *, force: bool) -> SyncOutcome:
    async with RelayContext.from_config(config) as context:
        return await context.orchestrator.run_if_due(force=force)


async def _run_daemon(config: RuntimeConfig, *, max_cycles: int | None) -> int:
    async with RelayContext.from_config(config) as context:
        return await context.trigger.run(max_cycles=max_cycles, run_on_start=True)


async def _serve_requests(config: RuntimeConfig, urls: list[str], *, headless: bool, background: bool) -> int:
    async with RelayContext.from_config(config, headless=headless) as context:
        for url in urls:
            await context.open_page(url)
        if background:
            context.start_background()
        return await context.serve(_read_stdin_line, typer.echo)


async def _read_stdin_line() -> str:
    return await asyncio.to_thread(sys.stdin.readline)


def _load_runtime(path: str | None) -> RuntimeConfig:
    config = load_runtime_config(path, missing_ok=True)
    if config.app.debug:
        configure_logging(debug=True)
    return config


def _with_store(path: str | None, action: Callable[[SqliteKeyValueStore], T]) -> T:
    config = load_runtime_config(path, missing_ok=True)
    store = SqliteKeyValueStore(resolve_store_path(config))
    try:
        return action(store)
    finally:
        store.close()


def _parse_assignments(assignments: list[str]) -> dict[str, int]:
    changes: dict[str, int] = {}
    for raw in assignments:
        key, sep, value = raw.partition("=")
        if not sep or not key.strip():
            raise ValueError(f"Invalid assignment '{raw}'. Expected KEY=VALUE.")
        try:
            changes[key.strip()] = int(value)
        except ValueError as exc:
            raise ValueError(f"Value for '{key.strip()}' must be an integer, got '{value}'.") from exc
    return changes


def _run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


def _fail(prefix: str, exc: Exception) -> NoReturn:
    typer.secho(f"{prefix}: {exc}", err=True, fg=typer.colors.RED)
    raise typer.Exit(2) from exc
