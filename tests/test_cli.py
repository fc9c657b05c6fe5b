"""
Tests for the CLI interface.

Tests cover:
- Argument parsing
- Help and version output
- Exit codes for configuration errors
- Command execution through a patched client
"""
from __future__ import annotations

import json
import subprocess
import sys
from pathlib import Path
from typing import Any

import pytest

from xver.__main__ import create_parser, make_password_prompt, run_command
from xver.connection import ExecResult


def write_config(path: Path, servers: list[dict[str, Any]]) -> Path:
    path.write_text(json.dumps({"openssh": {"use_id": True}, "servers": servers}))
    return path


class TestArgumentParsing:
    """Tests for argument parsing."""

    def test_defaults(self) -> None:
        args = create_parser().parse_args(["xver.json"])
        assert args.config == "xver.json"
        assert args.command == []
        assert args.server is None
        assert not args.password
        assert args.connect_timeout == 30.0
        assert not args.events
        assert args.event_log is None
        assert args.verbose == 0
        assert not args.quiet

    def test_command_collects_remaining_words(self) -> None:
        args = create_parser().parse_args(["-s", "prod", "xver.json", "ls", "-la", "/tmp"])
        assert args.server == "prod"
        assert args.command == ["ls", "-la", "/tmp"]

    def test_flags(self) -> None:
        args = create_parser().parse_args([
            "--password", "--events", "--event-log", "e.jsonl",
            "-vv", "--connect-timeout", "5", "xver.json",
        ])
        assert args.password
        assert args.events
        assert args.event_log == "e.jsonl"
        assert args.verbose == 2
        assert args.connect_timeout == 5.0

    def test_password_prompt(self, monkeypatch: pytest.MonkeyPatch) -> None:
        prompts: list[str] = []

        def fake_getpass(prompt: str) -> str:
            prompts.append(prompt)
            return "pw"

        monkeypatch.setattr("xver.__main__.getpass.getpass", fake_getpass)
        assert make_password_prompt("deploy", "example.com")() == "pw"
        assert prompts == ["deploy@example.com's password: "]


class TestHelpOutput:
    """Tests for help and version output."""

    def run_module(self, *argv: str) -> subprocess.CompletedProcess[str]:
        return subprocess.run(
            [sys.executable, "-m", "xver", *argv],
            capture_output=True,
            text=True,
            cwd=Path(__file__).parent.parent,
            env={
                **subprocess.os.environ,
                "PYTHONPATH": str(Path(__file__).parent.parent / "src"),
            },
        )

    def test_help_output(self) -> None:
        result = self.run_module("--help")
        assert result.returncode == 0
        assert "xver" in result.stdout
        assert "--server" in result.stdout
        assert "--password" in result.stdout
        assert "--events" in result.stdout

    def test_version_output(self) -> None:
        result = self.run_module("--version")
        assert result.returncode == 0
        assert "0.1.0" in result.stdout


class FakeClient:
    """Replaces XverClient inside run_command."""

    instances: list["FakeClient"] = []

    def __init__(self, config: Any, event_collector: Any = None, event_log_path: Any = None) -> None:
        self.config = config
        self.server: Any = None
        self.commands: list[str] = []
        self.connect_kwargs: dict[str, Any] = {}
        FakeClient.instances.append(self)

    async def connect(self, server: Any = None, **kwargs: Any) -> None:
        from xver.config import find_default

        self.server = server or find_default(self.config.servers)
        self.connect_kwargs = kwargs

    async def run(self, command: str) -> ExecResult:
        self.commands.append(command)
        return ExecResult(stdout="hello\n", stderr="", exit_code=7)

    async def __aenter__(self) -> "FakeClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        pass


@pytest.fixture
def fake_client(monkeypatch: pytest.MonkeyPatch) -> type[FakeClient]:
    FakeClient.instances = []
    monkeypatch.setattr("xver.connection.XverClient", FakeClient)
    return FakeClient


class TestRunCommand:
    """run_command exit codes."""

    async def test_missing_config_file(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        args = create_parser().parse_args([str(tmp_path / "missing.json")])
        assert await run_command(args) == 1
        assert "Error:" in capsys.readouterr().err

    async def test_invalid_config(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        path = write_config(tmp_path / "xver.json", [{"label": "no host"}])
        args = create_parser().parse_args([str(path)])
        assert await run_command(args) == 1
        assert "needs either 'host' or 'hostname'" in capsys.readouterr().err

    async def test_no_servers(
        self, tmp_path: Path, fake_client: type[FakeClient], capsys: pytest.CaptureFixture[str],
    ) -> None:
        path = write_config(tmp_path / "xver.json", [])
        args = create_parser().parse_args([str(path)])
        assert await run_command(args) == 1
        assert "No server available" in capsys.readouterr().err

    async def test_unknown_label(self, tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
        path = write_config(tmp_path / "xver.json", [{"host": "a"}])
        args = create_parser().parse_args(["-s", "prod", str(path)])
        assert await run_command(args) == 1
        assert "No server labelled" in capsys.readouterr().err

    async def test_runs_command_and_propagates_exit_code(
        self, tmp_path: Path, fake_client: type[FakeClient], capsys: pytest.CaptureFixture[str],
    ) -> None:
        path = write_config(tmp_path / "xver.json", [
            {"host": "a.example", "label": "a"},
            {"host": "b.example", "label": "b", "default": True},
        ])
        args = create_parser().parse_args([str(path), "echo", "hello world"])

        assert await run_command(args) == 7

        (client,) = fake_client.instances
        assert client.server.hostname == "b.example"
        assert client.commands == ["echo 'hello world'"]
        assert client.connect_kwargs["password_provider"] is None
        assert capsys.readouterr().out == "hello\n"

    async def test_connect_only(
        self, tmp_path: Path, fake_client: type[FakeClient], capsys: pytest.CaptureFixture[str],
    ) -> None:
        path = write_config(tmp_path / "xver.json", [{"host": "a.example", "label": "a", "username": "deploy"}])
        args = create_parser().parse_args(["--password", "-s", "a", str(path)])

        assert await run_command(args) == 0

        (client,) = fake_client.instances
        assert client.commands == []
        assert client.connect_kwargs["password_provider"] is not None
        assert "Connected to deploy@a.example:22 (a)" in capsys.readouterr().err
