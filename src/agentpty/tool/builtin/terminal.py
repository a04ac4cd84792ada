"""Terminal tools — exec_command, write_stdin, kill_session, list_sessions.

The agent drives long-lived PTY sessions through these four tools. Each one
returns a JSON payload with at least ``ok``, ``status``, ``output`` and, for
exec/write, ``session_id``. Failures are payloads too; nothing raises into
the agent loop.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Any, ClassVar

from pydantic import BaseModel, Field

from agentpty.config import AgentptyConfig
from agentpty.errors import SessionNotFound, SpawnError, StaleSession
from agentpty.pty.process import PtyProcess
from agentpty.pty.registry import SessionRegistry
from agentpty.pty.session import Session, SessionMetadata
from agentpty.tool.base import BaseTool, ToolError, ToolOk, ToolResult
from agentpty.tool.truncation import (
    OutputProjection,
    approx_token_count,
    chunk_text_by_bytes,
    clean_terminal_output,
    project_output,
)

logger = logging.getLogger(__name__)

RESPONSE_SCHEMA_VERSION = 1
EVENT_DELTA_MAX_BYTES = 8 * 1024

STATUS_RUNNING = "running"
STATUS_EXITED = "exited"
STATUS_KILLED = "killed"
STATUS_NOT_FOUND = "not_found"
STATUS_ERROR = "error"
STATUS_OK = "ok"


def _debug_enabled() -> bool:
    return os.environ.get("AGENTPTY_DEBUG_PTY", "") != ""


@dataclass
class TerminalContext:
    """State shared by the four terminal tools."""

    registry: SessionRegistry
    config: AgentptyConfig = field(default_factory=AgentptyConfig)
    base_dir: str = field(default_factory=os.getcwd)
    _event_ids: itertools.count = field(default_factory=lambda: itertools.count(1))

    def event(self, kind: str, session_id: int | None = None, **payload: Any) -> dict[str, Any]:
        event: dict[str, Any] = {
            "id": next(self._event_ids),
            "kind": kind,
            "timestamp": time.time(),
        }
        if session_id is not None:
            event["session_id"] = session_id
        event.update(payload)
        return event

    def output_events(self, session_id: int | None, output: str) -> list[dict[str, Any]]:
        return [
            self.event(
                "output_delta",
                session_id,
                delta=chunk,
                token_count_est=approx_token_count(chunk),
            )
            for chunk in chunk_text_by_bytes(output, EVENT_DELTA_MAX_BYTES)
        ]

    def publish_error(self, error: str, kind: str, session_id: int | None = None) -> None:
        if self.registry.wire:
            self.registry.wire.send_error(error, kind, session_id)

    def resolve_workdir(self, workdir: str | None) -> str:
        if workdir is None:
            return os.path.abspath(self.base_dir)
        return os.path.abspath(os.path.join(self.base_dir, os.path.expanduser(workdir)))

    def project(
        self, raw: bytes, max_lines: int | None, max_tokens: int | None
    ) -> OutputProjection:
        defaults = self.config.output
        return project_output(
            clean_terminal_output(raw),
            max_lines=defaults.max_output_lines if max_lines is None else max_lines,
            max_tokens=defaults.max_output_tokens if max_tokens is None else max_tokens,
        )


def _summary(
    status: str,
    wall_time_s: float,
    session_id: int | None,
    active_sessions: int,
    output: str,
    message: str | None,
) -> str:
    lines = [
        f"Wall time: {wall_time_s:.4f} seconds",
        f"Status: {status}",
    ]
    if session_id is not None and status == STATUS_RUNNING:
        lines.append(f"Session ID: {session_id}")
    if message:
        lines.append(message)
    lines.append(f"Active sessions: {active_sessions}")
    lines.append("Output:")
    lines.append(output if output else "(no output)")
    return "\n".join(lines)


def _render(
    tool: str,
    *,
    ok: bool = True,
    status: str = STATUS_OK,
    session_id: int | None = None,
    command: str | None = None,
    workdir: str | None = None,
    wall_time_s: float = 0.0,
    projection: OutputProjection | None = None,
    active_sessions: int = 0,
    exit_code: int | None = None,
    events: list[dict[str, Any]] | None = None,
    error_kind: str | None = None,
    message: str | None = None,
    **extra: Any,
) -> dict[str, Any]:
    projection = projection or OutputProjection()
    payload: dict[str, Any] = {
        "schema_version": RESPONSE_SCHEMA_VERSION,
        "tool": tool,
        "ok": ok,
        "status": status,
        "session_id": session_id,
        "command": command,
        "workdir": workdir,
        "wall_time_s": round(wall_time_s, 4),
        "active_sessions": active_sessions,
        "output": projection.output,
        **projection.to_dict(),
        "exit_code": exit_code,
        "events": events or [],
        "error_kind": error_kind,
        "message": message,
        "summary": _summary(
            status, wall_time_s, session_id, active_sessions, projection.output, message
        ),
    }
    payload.update(extra)
    return payload


def _ok(payload: dict[str, Any], brief: str) -> ToolResult:
    return ToolOk.from_payload(payload, brief=brief)


def _error(payload: dict[str, Any], brief: str) -> ToolResult:
    return ToolError.from_payload(payload, brief=brief)


# ---------------------------------------------------------------------------
# exec_command
# ---------------------------------------------------------------------------


class ExecCommandParams(BaseModel):
    cmd: str = Field(description="The shell command to execute.")
    workdir: str | None = Field(
        default=None,
        description="Working directory, absolute or relative to the base directory.",
    )
    shell: str | None = Field(
        default=None, description="Shell to run the command with. Defaults to bash."
    )
    yield_time_ms: int | None = Field(
        default=None,
        ge=0,
        description="How long to wait for output before returning (default 10000). "
        "The command keeps running after this.",
    )
    max_output_lines: int | None = Field(
        default=None, ge=0, description="Line cap on returned output (default 1000)."
    )
    max_output_tokens: int | None = Field(
        default=None, ge=1, description="Estimated token cap on returned output (default 10000)."
    )


class ExecCommandTool(BaseTool[ExecCommandParams]):
    """Start a command in a new PTY session.

    Commands that finish within the yield time are reported directly and
    never occupy a session slot. Commands still running are registered and
    their ``session_id`` returned for ``write_stdin``/``kill_session``.
    """

    name: ClassVar[str] = "exec_command"
    description: ClassVar[str] = (
        "Execute a shell command in a PTY session. Waits up to yield_time_ms for "
        "output. If the command is still running, returns a session_id that you can "
        "poll or send input to with write_stdin, and stop with kill_session. "
        "Returns structured JSON with status, output, and truncation metadata."
    )
    param_model: ClassVar[type[BaseModel]] = ExecCommandParams

    def __init__(self, context: TerminalContext) -> None:
        self._ctx = context

    async def execute(self, params: ExecCommandParams) -> ToolResult:
        ctx = self._ctx
        registry = ctx.registry
        start = time.monotonic()
        workdir = ctx.resolve_workdir(params.workdir)
        yield_ms = (
            ctx.config.tools.exec_yield_time_ms
            if params.yield_time_ms is None
            else params.yield_time_ms
        )
        if _debug_enabled():
            logger.debug("exec_command start: cmd=%s workdir=%s yield=%dms", params.cmd, workdir, yield_ms)

        try:
            process = PtyProcess.spawn(
                params.cmd,
                workdir,
                shell=params.shell or ctx.config.tools.shell,
                grace_period_ms=registry.config.grace_period_ms,
            )
        except SpawnError as e:
            logger.warning("exec_command failed to spawn %r: %s", params.cmd, e)
            ctx.publish_error(str(e), e.kind)
            return _error(
                _render(
                    self.name,
                    ok=False,
                    status=STATUS_ERROR,
                    command=params.cmd,
                    workdir=workdir,
                    wall_time_s=time.monotonic() - start,
                    active_sessions=registry.count(),
                    events=[ctx.event("error", message=str(e))],
                    error_kind=e.kind,
                    message=str(e),
                ),
                brief=f"Spawn failed: {params.cmd[:50]}",
            )

        events = [ctx.event("begin", command=params.cmd, workdir=workdir, yield_time_ms=yield_ms)]
        try:
            raw = await process.collect(yield_ms / 1000.0)
            alive = process.is_alive()
            if not alive:
                # Bytes written between the last poll and the exit are still in the PTY
                raw += await process.read_available(0)
        except asyncio.CancelledError:
            process.terminate()
            raise

        session_id: int | None = None
        exit_code: int | None = None
        message: str | None = None
        if alive:
            metadata = SessionMetadata(
                session_id=registry.next_session_id(),
                command=params.cmd,
                workdir=workdir,
            )
            session_id = registry.register(process, metadata)
            status = STATUS_RUNNING
            active = registry.count()
            if active >= registry.config.warning_threshold:
                message = (
                    f"{active} of {registry.config.max_sessions} sessions open. "
                    "Kill sessions you no longer need; the least recently used are evicted at the limit."
                )
        else:
            exit_code = process.exit_code
            process.close()
            status = STATUS_EXITED

        projection = ctx.project(raw, params.max_output_lines, params.max_output_tokens)
        events.extend(ctx.output_events(session_id, projection.output))
        if not alive:
            events.append(ctx.event("end", status=STATUS_EXITED, exit_code=exit_code))

        return _ok(
            _render(
                self.name,
                status=status,
                session_id=session_id,
                command=params.cmd,
                workdir=workdir,
                wall_time_s=time.monotonic() - start,
                projection=projection,
                active_sessions=registry.count(),
                exit_code=exit_code,
                events=events,
                message=message,
            ),
            brief=f"{status}: {params.cmd[:50]}",
        )


# ---------------------------------------------------------------------------
# write_stdin
# ---------------------------------------------------------------------------


class WriteStdinParams(BaseModel):
    session_id: int = Field(description="Session returned by exec_command.")
    chars: str = Field(
        default="",
        description="Characters to send. Include \\n for Enter. Empty string just polls for output.",
    )
    yield_time_ms: int | None = Field(
        default=None, ge=0, description="How long to wait for output (default 250)."
    )
    max_output_lines: int | None = Field(
        default=None, ge=0, description="Line cap on returned output (default 1000)."
    )
    max_output_tokens: int | None = Field(
        default=None, ge=1, description="Estimated token cap on returned output (default 10000)."
    )


class WriteStdinTool(BaseTool[WriteStdinParams]):
    """Send input to a running session and read what it prints back."""

    name: ClassVar[str] = "write_stdin"
    description: ClassVar[str] = (
        "Write characters to the stdin of a running PTY session, then return the "
        "output produced within yield_time_ms. Send an empty string to poll a "
        "long-running command. Sessions whose process has exited are removed and "
        "their final output returned."
    )
    param_model: ClassVar[type[BaseModel]] = WriteStdinParams

    def __init__(self, context: TerminalContext) -> None:
        self._ctx = context

    async def execute(self, params: WriteStdinParams) -> ToolResult:
        ctx = self._ctx
        registry = ctx.registry
        start = time.monotonic()
        if _debug_enabled():
            logger.debug("write_stdin start: session=%d chars=%r", params.session_id, params.chars)

        try:
            session = registry.get(params.session_id)
        except SessionNotFound as e:
            return self._not_found(e, start)

        async with session.lock:
            if params.session_id not in registry:
                # Killed or evicted while we waited for the lock
                return self._not_found(SessionNotFound(params.session_id), start)
            try:
                _ensure_alive(session)
            except StaleSession as e:
                return await self._reap_stale(session, e, params, start)
            return await self._interact(session, params, start)

    def _not_found(self, error: SessionNotFound, start: float) -> ToolResult:
        return _error(
            _render(
                self.name,
                ok=False,
                status=STATUS_NOT_FOUND,
                session_id=error.session_id,
                wall_time_s=time.monotonic() - start,
                active_sessions=self._ctx.registry.count(),
                error_kind="session_not_found",
                message=f"Session {error.session_id} not found. It may have exited or been killed.",
            ),
            brief=f"No session {error.session_id}",
        )

    async def _reap_stale(
        self,
        session: Session,
        error: StaleSession,
        params: WriteStdinParams,
        start: float,
    ) -> ToolResult:
        ctx = self._ctx
        raw = await session.process.read_available(0)
        ctx.registry.remove(session.session_id, terminate=False)
        projection = ctx.project(raw, params.max_output_lines, params.max_output_tokens)
        logger.info("Cleaned up exited session %d", session.session_id)

        events = ctx.output_events(session.session_id, projection.output)
        events.append(ctx.event("end", session.session_id, status=STATUS_EXITED, exit_code=error.exit_code))
        return _ok(
            _render(
                self.name,
                status=STATUS_EXITED,
                session_id=session.session_id,
                command=session.metadata.command,
                workdir=session.metadata.workdir,
                wall_time_s=time.monotonic() - start,
                projection=projection,
                active_sessions=ctx.registry.count(),
                exit_code=error.exit_code,
                events=events,
                message=(
                    f"Session {session.session_id} had already exited (code {error.exit_code}); "
                    "it has been cleaned up. Input was not sent."
                ),
                stale=True,
            ),
            brief=f"Session {session.session_id} exited",
        )

    async def _interact(
        self, session: Session, params: WriteStdinParams, start: float
    ) -> ToolResult:
        ctx = self._ctx
        registry = ctx.registry
        process = session.process
        session_id = session.session_id
        yield_ms = (
            ctx.config.tools.write_yield_time_ms
            if params.yield_time_ms is None
            else params.yield_time_ms
        )

        events: list[dict[str, Any]] = []
        try:
            if params.chars:
                data = params.chars.encode("utf-8")
                events.append(ctx.event("stdin", session_id, chars=params.chars))
                written = await process.write(data, timeout=max(1.0, min(5.0, yield_ms / 1000.0)))
                if written < len(data):
                    events.append(
                        ctx.event(
                            "warning",
                            session_id,
                            warning_kind="partial_write",
                            written=written,
                            requested=len(data),
                        )
                    )
            raw = await process.collect(yield_ms / 1000.0)
            alive = process.is_alive()
            if not alive:
                # Bytes written between the last poll and the exit are still in the PTY
                raw += await process.read_available(0)
        except OSError as e:
            logger.warning("I/O error on session %d: %s", session_id, e)
            ctx.publish_error(str(e), "session_io_error", session_id)
            registry.remove(session_id, reason="io_error")
            return _error(
                _render(
                    self.name,
                    ok=False,
                    status=STATUS_ERROR,
                    session_id=session_id,
                    command=session.metadata.command,
                    workdir=session.metadata.workdir,
                    wall_time_s=time.monotonic() - start,
                    active_sessions=registry.count(),
                    events=[*events, ctx.event("error", session_id, message=str(e))],
                    error_kind="session_io_error",
                    message=f"Session {session_id} I/O failed and was removed: {e}",
                ),
                brief=f"I/O error on session {session_id}",
            )

        try:
            registry.touch(session_id)
        except SessionNotFound:
            logger.debug("Session %d removed during write_stdin", session_id)

        projection = ctx.project(raw, params.max_output_lines, params.max_output_tokens)
        events.extend(ctx.output_events(session_id, projection.output))

        exit_code: int | None = None
        if alive:
            status = STATUS_RUNNING
        else:
            status = STATUS_EXITED
            exit_code = process.exit_code
            session.metadata.mark_exited(exit_code)
            registry.remove(session_id, terminate=False)
            events.append(ctx.event("end", session_id, status=STATUS_EXITED, exit_code=exit_code))

        return _ok(
            _render(
                self.name,
                status=status,
                session_id=session_id,
                command=session.metadata.command,
                workdir=session.metadata.workdir,
                wall_time_s=time.monotonic() - start,
                projection=projection,
                active_sessions=registry.count(),
                exit_code=exit_code,
                events=events,
            ),
            brief=f"{status}: session {session_id}",
        )


def _ensure_alive(session: Session) -> None:
    """Raise StaleSession if the session's process is gone."""
    if not session.process.is_alive():
        raise StaleSession(session.session_id, session.process.exit_code)


# ---------------------------------------------------------------------------
# kill_session
# ---------------------------------------------------------------------------


class KillSessionParams(BaseModel):
    session_id: int = Field(description="Session to terminate.")


class KillSessionTool(BaseTool[KillSessionParams]):
    """Terminate a session's process tree and drop it from the registry."""

    name: ClassVar[str] = "kill_session"
    description: ClassVar[str] = (
        "Terminate a PTY session by session_id and remove it. Use this for stuck "
        "processes or sessions you are done with. Returns structured JSON status."
    )
    param_model: ClassVar[type[BaseModel]] = KillSessionParams

    def __init__(self, context: TerminalContext) -> None:
        self._ctx = context

    async def execute(self, params: KillSessionParams) -> ToolResult:
        ctx = self._ctx
        start = time.monotonic()
        session = ctx.registry.remove(params.session_id, reason="killed")
        if session is None:
            return _error(
                _render(
                    self.name,
                    ok=False,
                    status=STATUS_NOT_FOUND,
                    session_id=params.session_id,
                    wall_time_s=time.monotonic() - start,
                    active_sessions=ctx.registry.count(),
                    error_kind="session_not_found",
                    message=f"Session {params.session_id} not found (may have already exited).",
                ),
                brief=f"No session {params.session_id}",
            )

        meta = session.metadata
        if meta.exit_code is not None:
            message = f"Session {params.session_id} had already exited; removed."
        else:
            message = f"Session {params.session_id} terminated."
        return _ok(
            _render(
                self.name,
                status=STATUS_KILLED,
                session_id=params.session_id,
                command=meta.command,
                workdir=meta.workdir,
                wall_time_s=time.monotonic() - start,
                active_sessions=ctx.registry.count(),
                exit_code=session.process.exit_code,
                events=[ctx.event("end", params.session_id, status=STATUS_KILLED, reason="kill_session")],
                message=message,
            ),
            brief=f"Killed session {params.session_id}",
        )


# ---------------------------------------------------------------------------
# list_sessions
# ---------------------------------------------------------------------------


class ListSessionsParams(BaseModel):
    pass


class ListSessionsTool(BaseTool[ListSessionsParams]):
    """Show every registered session. Does not count as using them."""

    name: ClassVar[str] = "list_sessions"
    description: ClassVar[str] = (
        "List all PTY sessions with their id, status, command, working directory, "
        "age and idle time."
    )
    param_model: ClassVar[type[BaseModel]] = ListSessionsParams

    def __init__(self, context: TerminalContext) -> None:
        self._ctx = context

    async def execute(self, params: ListSessionsParams) -> ToolResult:
        registry = self._ctx.registry
        now = time.time()
        sessions = [meta.to_dict(now) for meta in registry.list()]
        summary = (
            f"Active sessions: {len(sessions)}" if sessions else "No active sessions"
        )
        payload = {
            "schema_version": RESPONSE_SCHEMA_VERSION,
            "tool": self.name,
            "ok": True,
            "status": STATUS_OK,
            "active_sessions": len(sessions),
            "max_sessions": registry.config.max_sessions,
            "warning_threshold": registry.config.warning_threshold,
            "sessions": sessions,
            "summary": summary,
        }
        return _ok(payload, brief=summary)


def create_terminal_tools(
    registry: SessionRegistry,
    base_dir: str | None = None,
    config: AgentptyConfig | None = None,
) -> list[BaseTool]:
    """Build the four terminal tools around one shared registry."""
    config = config or AgentptyConfig()
    context = TerminalContext(
        registry=registry,
        config=config,
        base_dir=base_dir or config.base_dir,
    )
    return [
        ExecCommandTool(context),
        WriteStdinTool(context),
        KillSessionTool(context),
        ListSessionsTool(context),
    ]
