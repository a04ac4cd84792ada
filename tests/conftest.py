"""Shared fixtures for agentpty tests."""

from __future__ import annotations

from collections.abc import AsyncIterator

import pytest

from agentpty.config import AgentptyConfig, SessionConfig
from agentpty.pty.registry import SessionRegistry
from agentpty.pty.session import SessionMetadata
from agentpty.session.wire import Wire
from agentpty.tool.base import BaseTool
from agentpty.tool.builtin.terminal import create_terminal_tools


class FakeProcess:
    """Stands in for PtyProcess where only liveness and termination matter."""

    def __init__(self, alive: bool = True, exit_code: int | None = None) -> None:
        self.alive = alive
        self._exit_code = exit_code if not alive else None
        self.terminated = False
        self.closed = False

    def is_alive(self) -> bool:
        return self.alive and not self.terminated

    @property
    def exit_code(self) -> int | None:
        if self.terminated:
            return -9
        return None if self.alive else self._exit_code

    def die(self, exit_code: int = 0) -> None:
        self.alive = False
        self._exit_code = exit_code

    def terminate(self) -> bool:
        self.closed = True
        if self.terminated or not self.alive:
            return False
        self.terminated = True
        return True

    def close(self) -> None:
        self.closed = True


def add_fake(
    registry: SessionRegistry,
    last_used: float,
    alive: bool = True,
    command: str = "sleep 30",
) -> tuple[int, FakeProcess]:
    """Register a fake session whose recency is ``last_used``."""
    process = FakeProcess(alive=alive, exit_code=None if alive else 0)
    metadata = SessionMetadata(
        session_id=registry.next_session_id(),
        command=command,
        workdir="/tmp",
        created_at=last_used,
        last_used=last_used,
    )
    registry.register(process, metadata)  # type: ignore[arg-type]
    return metadata.session_id, process


@pytest.fixture
def wire() -> Wire:
    return Wire()


@pytest.fixture
def registry(wire: Wire) -> SessionRegistry:
    return SessionRegistry(SessionConfig(), wire=wire)


@pytest.fixture
async def live_registry() -> AsyncIterator[SessionRegistry]:
    """A registry for real PTY processes; every session is killed afterwards."""
    registry = SessionRegistry(SessionConfig())
    yield registry
    await registry.cleanup()


@pytest.fixture
def terminal_tools(live_registry: SessionRegistry, tmp_path) -> dict[str, BaseTool]:
    config = AgentptyConfig()
    tools = create_terminal_tools(live_registry, base_dir=str(tmp_path), config=config)
    return {t.name: t for t in tools}


@pytest.fixture
async def wired_tools(wire: Wire, tmp_path) -> AsyncIterator[dict[str, BaseTool]]:
    """Terminal tools over a real registry that publishes to ``wire``."""
    registry = SessionRegistry(SessionConfig(), wire=wire)
    tools = create_terminal_tools(registry, base_dir=str(tmp_path))
    yield {t.name: t for t in tools}
    await registry.cleanup()
