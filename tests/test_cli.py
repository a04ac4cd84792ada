"""Tests for agentpty.cli."""

from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from agentpty import __version__
from agentpty.cli import app, build_host
from agentpty.config import AgentptyConfig

runner = CliRunner()


@pytest.fixture(autouse=True)
def isolated_cwd(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    monkeypatch.chdir(tmp_path)
    for name in ("AGENTPTY_MAX_SESSIONS", "AGENTPTY_PROTECTED_COUNT", "AGENTPTY_BASE_DIR"):
        monkeypatch.delenv(name, raising=False)


class TestBuildHost:
    def test_registers_four_tools(self) -> None:
        host = build_host(AgentptyConfig())
        assert host.tools.names() == ["exec_command", "write_stdin", "kill_session", "list_sessions"]
        assert host.sessions.config.max_sessions == 20


class TestCommands:
    def test_version(self) -> None:
        result = runner.invoke(app, ["version"])
        assert result.exit_code == 0
        assert f"agentpty v{__version__}" in result.output

    def test_tools(self) -> None:
        result = runner.invoke(app, ["tools"])
        assert result.exit_code == 0
        assert '"name": "exec_command"' in result.output
        assert '"name": "list_sessions"' in result.output

    def test_run(self) -> None:
        result = runner.invoke(app, ["run", "echo from-cli", "--yield-ms", "5000"])
        assert result.exit_code == 0
        assert "from-cli" in result.output
        assert '"status": "exited"' in result.output

    def test_run_invalid_workdir(self) -> None:
        result = runner.invoke(app, ["run", "echo x", "--workdir", "/nonexistent/xyz"])
        assert result.exit_code == 1
        assert "invalid_workdir" in result.output

    def test_bad_configuration(self) -> None:
        result = runner.invoke(app, ["tools"], env={"AGENTPTY_PROTECTED_COUNT": "25"})
        assert result.exit_code == 2

    def test_serve(self) -> None:
        requests = [
            {"id": 1, "name": "list_sessions", "arguments": {}},
            {"id": 2, "name": "exec_command", "arguments": {"cmd": "echo served", "yield_time_ms": 5000}},
        ]
        stdin = "\n".join(json.dumps(r) for r in requests) + "\nnot json\n"
        result = runner.invoke(app, ["serve"], input=stdin)
        assert result.exit_code == 0

        responses = {}
        for line in result.output.splitlines():
            if line.startswith("{"):
                response = json.loads(line)
                responses[response["id"]] = response
        assert json.loads(responses[1]["content"])["tool"] == "list_sessions"
        assert "served" in json.loads(responses[2]["content"])["output"]
        assert responses[None]["is_error"] is True
        assert responses[None]["content"].startswith("Malformed request")
