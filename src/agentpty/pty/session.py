"""Session records — a PTY process paired with its bookkeeping."""

from __future__ import annotations

import asyncio
import enum
import time
from dataclasses import dataclass, field, replace
from typing import Any

from agentpty.pty.process import PtyProcess


class SessionStatus(enum.Enum):
    """Lifecycle states for a registered session."""

    RUNNING = "running"
    EXITED = "exited"


@dataclass
class SessionMetadata:
    """Bookkeeping for one session.

    ``session_id`` is the identity and never changes. ``last_used`` only
    moves forward and never precedes ``created_at``.
    """

    session_id: int
    command: str
    workdir: str
    created_at: float = field(default_factory=time.time)
    last_used: float = 0.0
    status: SessionStatus = SessionStatus.RUNNING
    exit_code: int | None = None

    def __post_init__(self) -> None:
        self.last_used = max(self.last_used, self.created_at)

    def touch(self, now: float | None = None) -> None:
        """Record an interaction."""
        now = time.time() if now is None else now
        self.last_used = max(self.last_used, now)

    def mark_exited(self, exit_code: int | None) -> None:
        self.status = SessionStatus.EXITED
        self.exit_code = exit_code

    def to_dict(self, now: float | None = None) -> dict[str, Any]:
        now = time.time() if now is None else now
        return {
            "session_id": self.session_id,
            "status": self.status.value,
            "command": self.command,
            "workdir": self.workdir,
            "created_at": self.created_at,
            "last_used": self.last_used,
            "age_s": round(now - self.created_at, 3),
            "idle_s": round(now - self.last_used, 3),
            "exit_code": self.exit_code,
        }


@dataclass
class Session:
    """A registry entry: the process, its metadata, and its I/O lock.

    ``lock`` serializes tool calls on this one session so two reads or
    writes never race on the same PTY.
    """

    process: PtyProcess
    metadata: SessionMetadata
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def session_id(self) -> int:
        return self.metadata.session_id

    def snapshot(self) -> SessionMetadata:
        """A copy of the metadata with the status the process has right now."""
        meta = replace(self.metadata)
        if meta.status == SessionStatus.RUNNING and not self.process.is_alive():
            meta.mark_exited(self.process.exit_code)
        return meta

    def refresh_status(self) -> SessionStatus:
        """Sync ``metadata.status`` with the process's actual liveness."""
        if self.metadata.status == SessionStatus.RUNNING and not self.process.is_alive():
            self.metadata.mark_exited(self.process.exit_code)
        return self.metadata.status
