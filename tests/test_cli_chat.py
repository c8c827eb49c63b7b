from __future__ import annotations

import json
from pathlib import Path

import pytest

from assistant.telemetry import MemoryMonitor
from cli import chat as cli_chat


@pytest.fixture
def offline_args(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> list[str]:
    monkeypatch.setenv("ASSIST_CONFIG", str(tmp_path / "missing.yaml"))
    monkeypatch.setattr(MemoryMonitor, "is_safe_to_run", lambda self: True)
    return [
        "--set", "model.mode=rules",
        "--set", "model.profile=rules",
        "--set", "hardware.min_memory_gb=0",
        "--set", f"privacy.state_dir={tmp_path / 'state'}",
    ]


def test_parser_wires_subcommands() -> None:
    parser = cli_chat.build_parser()
    args = parser.parse_args(["ask", "hello", "--no-context", "--set", "model.mode=rules"])
    assert args.func is cli_chat._ask
    assert args.no_context is True
    assert args.config_set == ["model.mode=rules"]

    with pytest.raises(SystemExit):
        parser.parse_args(["tldr"])


def test_override_helpers() -> None:
    target: dict = {}
    cli_chat._assign_override(target, cli_chat._normalize_override_path("Model.Runtime-Url"), "x")
    assert target == {"model": {"runtime_url": "x"}}
    with pytest.raises(SystemExit):
        cli_chat._split_assignment("no-equals")


def test_ask_prints_answer(offline_args: list[str], capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_chat.main(["ask", "what is asyncio", "--no-context", *offline_args]) == 0
    out = capsys.readouterr().out
    assert "You asked about: what is asyncio." in out


def test_stream_prints_fragments(offline_args: list[str], capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_chat.main(["stream", "tasks", "--no-context", *offline_args]) == 0
    assert capsys.readouterr().out.strip() == "You asked about: tasks."


def test_tldr_reads_page_file(
    offline_args: list[str], tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    page = tmp_path / "page.txt"
    page.write_text(
        "Python asyncio runs coroutines on loops. Tasks await futures politely. "
        "Cancellation propagates through tasks."
    )
    assert cli_chat.main(["tldr", "--page", str(page), "--title", "Asyncio", *offline_args]) == 0
    out = capsys.readouterr().out
    assert out.startswith("📰")
    assert "• Tasks await futures politely" in out


def test_status_reports_json(offline_args: list[str], capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_chat.main(["status", *offline_args]) == 0
    payload = json.loads(capsys.readouterr().out)
    assert payload["is_initialized"] is True
    assert payload["activity"] == {"kind": "idle", "message_id": None}
    assert "pressure_level" in payload["memory"]


def test_profiles_lists_support(offline_args: list[str], capsys: pytest.CaptureFixture[str]) -> None:
    assert cli_chat.main(["profiles", *offline_args]) == 0
    rows = [json.loads(line) for line in capsys.readouterr().out.splitlines()]
    by_id = {row["id"]: row for row in rows}
    assert by_id["rules"]["supported"] is True
    assert by_id["rules"]["selected"] is True


def test_assistant_errors_become_system_exit(offline_args: list[str]) -> None:
    with pytest.raises(SystemExit) as excinfo:
        cli_chat.main(["ask", "hi", *offline_args, "--set", "model.profile=tpu"])
    assert "Unsupported Hardware" in str(excinfo.value.code)
