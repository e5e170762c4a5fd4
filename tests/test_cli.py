"""CLI smoke tests for config, settings, prompt and catalog commands."""

from datetime import datetime, timedelta, timezone
import json
from pathlib import Path

import pytest

from thread_relay import __version__
from thread_relay.context import RelayContext
from thread_relay.models import ModelOption
from thread_relay.store.base import MemoryKeyValueStore
from thread_relay.store.settings import CatalogRepository
from thread_relay.store.sqlite import SqliteKeyValueStore

pytest.importorskip("typer")

from typer.testing import CliRunner

from thread_relay.cli import app

runner = CliRunner()


def _config_with_store(tmp_path: Path) -> tuple[Path, Path]:
    store_path = tmp_path / "relay.sqlite3"
    config_path = tmp_path / "config.toml"
    config_path.write_text(f'[store]\npath = "{store_path.as_posix()}"\n', encoding="utf-8")
    return config_path, store_path


def test_cli_help_lists_command_groups() -> None:
    result = runner.invoke(app, ["--help"])
    assert result.exit_code == 0
    for command in ("config", "settings", "prompt", "collect", "send", "sync", "status", "models", "daemon", "serve"):
        assert command in result.output
    assert "--debug" in result.output


def test_cli_version_flag_prints_package_version() -> None:
    result = runner.invoke(app, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_config_init_and_show_json(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"

    init_result = runner.invoke(app, ["config", "init", "--path", str(config_path)])
    assert init_result.exit_code == 0
    assert config_path.exists()

    show_result = runner.invoke(app, ["config", "show", "--path", str(config_path), "--json"])
    assert show_result.exit_code == 0
    payload = json.loads(show_result.output)
    assert payload["path"] == str(config_path)
    assert payload["config"]["sync"]["alarm_interval_seconds"] == 1800.0


def test_config_show_reports_actionable_error_for_missing_path(tmp_path: Path) -> None:
    result = runner.invoke(app, ["config", "show", "--path", str(tmp_path / "missing.toml")])
    assert result.exit_code == 2
    assert "Config show failed:" in result.output
    assert "thread-relay config init" in result.output


def test_config_init_reports_force_hint_when_file_exists(tmp_path: Path) -> None:
    config_path = tmp_path / "config.toml"
    config_path.write_text("existing", encoding="utf-8")
    result = runner.invoke(app, ["config", "init", "--path", str(config_path)])
    assert result.exit_code == 2
    assert "Config init failed:" in result.output
    assert "--force" in result.output


def test_settings_set_show_and_reset(tmp_path: Path) -> None:
    config_path, _ = _config_with_store(tmp_path)

    set_result = runner.invoke(
        app, ["settings", "set", "scrollDelay=250", "maxScrollAttempts=40", "--path", str(config_path)]
    )
    assert set_result.exit_code == 0
    assert json.loads(set_result.output)["scrollDelay"] == 250

    show_result = runner.invoke(app, ["settings", "show", "--path", str(config_path)])
    assert json.loads(show_result.output)["maxScrollAttempts"] == 40

    reset_result = runner.invoke(app, ["settings", "reset", "--path", str(config_path)])
    assert reset_result.exit_code == 0
    assert '"scrollDelay": 400' in reset_result.output


@pytest.mark.parametrize(
    "assignment, message",
    [
        ("scrollDelay=fast", "must be an integer"),
        ("scrollDelay", "Expected KEY=VALUE"),
        ("speed=3", "Unknown scroll setting"),
        ("scrollStep=0", "positive integer"),
    ],
)
def test_settings_set_rejects_bad_assignments(tmp_path: Path, assignment: str, message: str) -> None:
    config_path, _ = _config_with_store(tmp_path)
    result = runner.invoke(app, ["settings", "set", assignment, "--path", str(config_path)])
    assert result.exit_code == 2
    assert "Settings set failed:" in result.output
    assert message in result.output


def test_prompt_set_show_and_clear(tmp_path: Path) -> None:
    config_path, _ = _config_with_store(tmp_path)

    assert runner.invoke(app, ["prompt", "set", "TL;DR {MESSAGES}", "--path", str(config_path)]).exit_code == 0
    assert runner.invoke(app, ["prompt", "show", "--path", str(config_path)]).output.strip() == "TL;DR {MESSAGES}"

    assert runner.invoke(app, ["prompt", "clear", "--path", str(config_path)]).exit_code == 0
    shown = runner.invoke(app, ["prompt", "show", "--path", str(config_path)])
    assert "No custom prompt set" in shown.output
    assert "Please summarize the following Slack thread" in shown.output

    empty = runner.invoke(app, ["prompt", "set", "   ", "--path", str(config_path)])
    assert empty.exit_code == 2


def test_status_and_models_read_the_stored_catalog(tmp_path: Path) -> None:
    config_path, store_path = _config_with_store(tmp_path)

    empty_status = runner.invoke(app, ["status", "--path", str(config_path)])
    assert empty_status.exit_code == 0
    assert "error: Not synced yet" in empty_status.output
    assert "No models synced yet" in runner.invoke(app, ["models", "--path", str(config_path)]).output

    store = SqliteKeyValueStore(store_path)
    try:
        CatalogRepository(store).save(
            [ModelOption("gemini-2.5-pro", "🧠 2.5 Pro", "2.5 Pro")],
            datetime.now(timezone.utc) - timedelta(minutes=10),
        )
    finally:
        store.close()

    status_result = runner.invoke(app, ["status", "--path", str(config_path), "--json"])
    assert json.loads(status_result.output) == {"status": "synced", "message": "Models synced (< 1 hour ago)"}

    models_result = runner.invoke(app, ["models", "--path", str(config_path)])
    assert "gemini-2.5-pro\t🧠 2.5 Pro" in models_result.output


class BlankPage:
    async def goto(self, url: str, wait_until: str = "load") -> None:
        self.url = url

    async def close(self) -> None:
        pass

    async def query_selector(self, selector: str) -> None:
        return None

    async def query_selector_all(self, selector: str) -> list[object]:
        return []


class PageSession:
    def __init__(self) -> None:
        self.closed = 0

    async def open(self) -> None:
        pass

    async def close(self) -> None:
        self.closed += 1

    async def new_page(self) -> BlankPage:
        return BlankPage()


def test_serve_answers_one_json_line_per_request(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    config_path, _ = _config_with_store(tmp_path)
    contexts: list[RelayContext] = []

    def fake_from_config(config: object, *, headless: bool | None = None) -> RelayContext:
        context = RelayContext(config, store=MemoryKeyValueStore(), session=PageSession())
        contexts.append(context)
        return context

    monkeypatch.setattr("thread_relay.cli.RelayContext.from_config", fake_from_config)
    requests = [
        json.dumps({"action": "checkThreadAvailable"}),
        "not json",
        "",
        json.dumps({"action": "getBackgroundSyncStatus"}),
        json.dumps({"action": "getAvailableModels"}),
        json.dumps({"action": "explode"}),
    ]

    result = runner.invoke(
        app,
        ["serve", "--path", str(config_path), "--open", "https://chat.example/thread/1", "--no-background"],
        input="\n".join(requests) + "\n",
    )

    assert result.exit_code == 0, result.output
    responses = [json.loads(line) for line in result.output.splitlines() if line.startswith("{")]
    assert len(responses) == 5
    assert responses[0] == {"hasThread": False}
    assert responses[1]["error"].startswith("Invalid JSON request")
    assert responses[2] == {"status": "error", "message": "Not synced yet"}
    assert responses[3] == {"models": []}
    assert responses[4] == {"error": "Unknown action: 'explode'"}

    (context,) = contexts
    assert context.registry.active_tab_id == 1
    assert context.session.closed == 1
