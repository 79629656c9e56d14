"""Tests covering the application bootstrap helpers."""

from __future__ import annotations

import io
import json
from pathlib import Path
from typing import Any, Callable

import pytest

from pagepilot import app
from pagepilot.coordinator import TurnResult
from pagepilot.services.settings import Settings, SettingsStore


class _StubCoordinator:
    def __init__(self, fragments: list[str], error: str | None = None) -> None:
        self.fragments = fragments
        self.error = error
        self.prompts: list[str] = []
        self.closed = False

    async def send(self, prompt: str, on_delta: Callable[[str], None] | None = None) -> TurnResult:
        self.prompts.append(prompt)
        for fragment in self.fragments:
            if on_delta is not None:
                on_delta(fragment)
        if self.error:
            return TurnResult(conversation_key="example.com", error=self.error)
        return TurnResult(conversation_key="example.com", text="".join(self.fragments))

    async def aclose(self) -> None:
        self.closed = True


class _StubHistoryCoordinator:
    def __init__(self, entries: list[dict[str, Any]]) -> None:
        self.entries = entries
        self.limits: list[int | None] = []
        self.closed = False

    async def browse_history(self, limit: int | None = None) -> list[dict[str, Any]]:
        self.limits.append(limit)
        return self.entries

    async def aclose(self) -> None:
        self.closed = True


def test_cli_overrides_are_coerced_to_field_types() -> None:
    overrides = app._coerce_cli_overrides(
        [
            "model=gpt-5-mini",
            "temperature=0.2",
            "max_retries=3",
            "debug_logging=yes",
            "reasoning_effort=none",
            'default_headers={"X-App": "cli"}',
        ]
    )

    assert overrides == {
        "model": "gpt-5-mini",
        "temperature": 0.2,
        "max_retries": 3,
        "debug_logging": True,
        "reasoning_effort": None,
        "default_headers": {"X-App": "cli"},
    }


@pytest.mark.parametrize("entry", ["model", "=value", "unknown_field=1", "debug_logging=maybe", "default_headers={"])
def test_invalid_cli_overrides_raise(entry: str) -> None:
    with pytest.raises(ValueError):
        app._coerce_cli_overrides([entry])


def test_main_rejects_bad_override(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = app.main(["--settings", str(tmp_path / "settings.json"), "--set", "bogus"])

    assert exit_code == 2
    assert "Invalid --set override" in capsys.readouterr().err


def test_main_requires_url_and_prompt(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    exit_code = app.main(["--settings", str(tmp_path / "settings.json"), "https://example.com"])

    assert exit_code == 2
    assert "A URL and a prompt are required" in capsys.readouterr().err


def test_dump_settings_redacts_secrets(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "settings.json"

    exit_code = app.main(["--settings", str(path), "--set", "api_key=sk-secret-value", "--dump-settings"])

    assert exit_code == 0
    output = json.loads(capsys.readouterr().out)
    assert output["settings"]["api_key"] == "sk***********ue"
    assert output["settings"]["document_store_api_key"] == ""
    assert output["meta"]["path"] == str(path)
    assert output["meta"]["secret_backend"] == "fernet"
    assert output["meta"]["cli_overrides"] == ["api_key"]
    assert "PAGEPILOT_LOG_DIR" in output["meta"]["environment_variables"]
    assert output["meta"]["log_file"].endswith("pagepilot.log")


def test_main_runs_prompt_with_joined_words(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}

    async def _fake_run_prompt(settings: Settings, url: str, prompt: str) -> int:
        captured.update(settings=settings, url=url, prompt=prompt)
        return 0

    monkeypatch.setattr(app, "run_prompt", _fake_run_prompt)

    exit_code = app.main(
        ["--settings", str(tmp_path / "settings.json"), "--set", "model=local", "https://example.com/a", "what", "is", "this"]
    )

    assert exit_code == 0
    assert captured["url"] == "https://example.com/a"
    assert captured["prompt"] == "what is this"
    assert captured["settings"].model == "local"


def test_load_settings_falls_back_to_defaults() -> None:
    class _BrokenStore(SettingsStore):
        def load(self, *, overrides=None) -> Settings:
            raise OSError("unreadable")

    settings = app.load_settings(store=_BrokenStore(Path("/nonexistent/settings.json")))

    assert settings == Settings()


@pytest.mark.asyncio
async def test_run_prompt_streams_answer() -> None:
    stdout, stderr = io.StringIO(), io.StringIO()
    coordinator = _StubCoordinator(["Hel", "lo"])

    exit_code = await app.run_prompt(
        Settings(), "https://example.com", "hi", stdout=stdout, stderr=stderr, coordinator=coordinator  # type: ignore[arg-type]
    )

    assert exit_code == 0
    assert stdout.getvalue() == "Hello\n"
    assert stderr.getvalue() == ""
    assert coordinator.prompts == ["hi"]
    assert coordinator.closed


@pytest.mark.asyncio
async def test_run_prompt_reports_errors() -> None:
    stdout, stderr = io.StringIO(), io.StringIO()
    coordinator = _StubCoordinator([], error="Can't connect to the local AI server at http://localhost:8080.")

    exit_code = await app.run_prompt(
        Settings(), "https://example.com", "hi", stdout=stdout, stderr=stderr, coordinator=coordinator  # type: ignore[arg-type]
    )

    assert exit_code == 1
    assert stderr.getvalue().startswith("Can't connect")
    assert coordinator.closed


@pytest.mark.asyncio
async def test_list_history_prints_one_line_per_page() -> None:
    stdout = io.StringIO()
    coordinator = _StubHistoryCoordinator(
        [
            {"title": "First", "metadata": {"url": "https://a.example/x"}},
            {"id": "doc-2", "metadata": {}},
        ]
    )

    exit_code = await app.list_history(Settings(), 5, stdout=stdout, coordinator=coordinator)  # type: ignore[arg-type]

    assert exit_code == 0
    assert stdout.getvalue().splitlines() == ["First  https://a.example/x", "doc-2"]
    assert coordinator.limits == [5]
    assert coordinator.closed


def test_main_history_flag_defaults_to_twenty(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    captured: dict[str, Any] = {}

    async def _fake_list_history(settings: Settings, limit: int | None = None) -> int:
        captured["limit"] = limit
        return 0

    monkeypatch.setattr(app, "list_history", _fake_list_history)

    assert app.main(["--settings", str(tmp_path / "settings.json"), "--history"]) == 0
    assert captured["limit"] == 20
    assert app.main(["--settings", str(tmp_path / "settings.json"), "--history", "3"]) == 0
    assert captured["limit"] == 3
