"""Tests for agentpty.pty.process (real PTY processes)."""

from __future__ import annotations

import asyncio
import signal

import pytest

from agentpty.errors import SpawnError
from agentpty.pty.process import PtyProcess, resolve_shell


@pytest.fixture
def spawn(tmp_path):
    """Spawn helper that kills every process it started."""
    started: list[PtyProcess] = []

    def _spawn(cmd: str, **kwargs) -> PtyProcess:
        process = PtyProcess.spawn(cmd, str(tmp_path), **kwargs)
        started.append(process)
        return process

    yield _spawn
    for process in started:
        process.terminate()


# ---------------------------------------------------------------------------
# Spawning
# ---------------------------------------------------------------------------


class TestSpawn:
    def test_invalid_workdir(self, tmp_path) -> None:
        with pytest.raises(SpawnError) as exc_info:
            PtyProcess.spawn("echo hi", str(tmp_path / "missing"))
        assert exc_info.value.kind == "invalid_workdir"

    def test_missing_shell(self, tmp_path) -> None:
        with pytest.raises(SpawnError) as exc_info:
            PtyProcess.spawn("echo hi", str(tmp_path), shell="/nonexistent/shell")
        assert exc_info.value.kind == "spawn_failed"

    def test_resolve_default_shell(self) -> None:
        assert resolve_shell(None).startswith("/")

    def test_resolve_shell_on_path(self) -> None:
        assert resolve_shell("sh").endswith("/sh")

    def test_resolve_unknown_shell(self) -> None:
        with pytest.raises(SpawnError, match="not found on PATH"):
            resolve_shell("definitely-not-a-shell-xyz")

    async def test_runs_in_workdir(self, spawn, tmp_path) -> None:
        process = spawn("pwd")
        output = await process.collect(5.0)
        assert str(tmp_path).encode() in output

    async def test_term_is_dumb(self, spawn) -> None:
        process = spawn("echo $TERM")
        output = await process.collect(5.0)
        assert b"dumb" in output

    async def test_extra_env(self, spawn) -> None:
        process = spawn("echo $AGENTPTY_TEST_VAR", env={"AGENTPTY_TEST_VAR": "marker-42"})
        output = await process.collect(5.0)
        assert b"marker-42" in output


# ---------------------------------------------------------------------------
# Reading
# ---------------------------------------------------------------------------


class TestRead:
    async def test_collect_fast_command(self, spawn) -> None:
        process = spawn("echo hello")
        output = await process.collect(5.0)
        assert b"hello" in output
        assert not process.is_alive()
        assert process.exit_code == 0

    async def test_exit_code(self, spawn) -> None:
        process = spawn("exit 3")
        await process.collect(5.0)
        assert process.exit_code == 3

    async def test_output_captured_after_unobserved_exit(self, spawn) -> None:
        process = spawn("echo fast")
        # The process exits before anyone reads from it
        await asyncio.sleep(0.5)
        output = await process.read_available(0)
        assert b"fast" in output
        assert not process.is_alive()

    async def test_read_available_times_out_empty(self, spawn) -> None:
        process = spawn("sleep 5")
        loop = asyncio.get_running_loop()
        start = loop.time()
        output = await process.read_available(0.1)
        assert output == b""
        assert loop.time() - start >= 0.09
        assert process.is_alive()

    async def test_collect_respects_yield_time(self, spawn) -> None:
        process = spawn("sleep 5")
        loop = asyncio.get_running_loop()
        start = loop.time()
        await process.collect(0.2)
        elapsed = loop.time() - start
        assert 0.15 <= elapsed < 2.0
        assert process.is_alive()

    async def test_collect_gathers_multiple_writes(self, spawn) -> None:
        process = spawn("echo one; sleep 0.2; echo two")
        output = await process.collect(5.0)
        assert b"one" in output
        assert b"two" in output


# ---------------------------------------------------------------------------
# Writing
# ---------------------------------------------------------------------------


class TestWrite:
    async def test_write_to_cat(self, spawn) -> None:
        process = spawn("cat")
        await process.collect(0.1)
        written = await process.write(b"ping\n")
        assert written == 5
        output = await process.collect(0.5)
        assert b"ping" in output
        assert process.is_alive()

    async def test_write_after_terminate_raises(self, spawn) -> None:
        process = spawn("cat")
        process.terminate()
        with pytest.raises(OSError):
            await process.write(b"x")


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestTerminate:
    async def test_terminate_running(self, spawn) -> None:
        process = spawn("sleep 30")
        assert process.terminate() is True
        assert not process.is_alive()
        assert process.exit_code == -signal.SIGKILL

    async def test_terminate_is_idempotent(self, spawn) -> None:
        process = spawn("sleep 30")
        assert process.terminate() is True
        assert process.terminate() is False

    async def test_terminate_exited(self, spawn) -> None:
        process = spawn("true")
        await process.collect(5.0)
        assert process.terminate() is False
        assert process.exit_code == 0

    async def test_terminate_kills_process_group(self, spawn, tmp_path) -> None:
        marker = tmp_path / "child-alive"
        process = spawn(f"(sleep 1; touch {marker}) & wait")
        await asyncio.sleep(0.1)
        process.terminate()
        await asyncio.sleep(1.5)
        assert not marker.exists()

    async def test_read_after_terminate_returns(self, spawn) -> None:
        process = spawn("sleep 30")
        process.terminate()
        output = await process.read_available(1.0)
        assert output == b""

    async def test_close_is_idempotent(self, spawn) -> None:
        process = spawn("true")
        await process.collect(5.0)
        process.close()
        process.close()
