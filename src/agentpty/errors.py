"""Error taxonomy for the terminal session subsystem.

Nothing in here is meant to reach the agent loop as an exception: the tool
layer turns every one of these into a structured result payload.
"""

from __future__ import annotations


class AgentptyError(Exception):
    """Base class for all agentpty errors."""


class SpawnError(AgentptyError):
    """A command could not be started in a PTY.

    ``kind`` is machine-readable and ends up as the ``error_kind`` field of
    the tool result: ``"invalid_workdir"`` or ``"spawn_failed"``.
    """

    def __init__(self, message: str, kind: str = "spawn_failed") -> None:
        super().__init__(message)
        self.kind = kind


class SessionNotFound(AgentptyError, KeyError):
    """The session id is not (or no longer) in the registry."""

    def __init__(self, session_id: int) -> None:
        super().__init__(session_id)
        self.session_id = session_id

    def __str__(self) -> str:
        return f"Session {self.session_id} not found"


class StaleSession(AgentptyError):
    """The session's process exited since the session was last touched."""

    def __init__(self, session_id: int, exit_code: int | None = None) -> None:
        super().__init__(f"Session {session_id} has exited (code={exit_code})")
        self.session_id = session_id
        self.exit_code = exit_code


class ConfigurationError(AgentptyError, ValueError):
    """Invalid combination of session limits. Raised at startup."""
