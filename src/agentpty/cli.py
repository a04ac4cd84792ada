"""CLI entry point for agentpty."""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from typing import Any

import typer

from agentpty import __version__
from agentpty.config import AgentptyConfig
from agentpty.errors import ConfigurationError
from agentpty.pty.registry import SessionRegistry
from agentpty.session.wire import Wire, WireEvent
from agentpty.tool.base import ToolCall
from agentpty.tool.builtin.terminal import create_terminal_tools
from agentpty.tool.registry import ToolRegistry

logger = logging.getLogger(__name__)

app = typer.Typer(
    name="agentpty",
    help="Managed PTY sessions for LLM agents: exec_command, write_stdin, kill_session, list_sessions.",
    no_args_is_help=True,
)


def setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
        stream=sys.stderr,
    )


@dataclass
class ToolHost:
    """Everything a process needs to serve the terminal tools."""

    config: AgentptyConfig
    wire: Wire
    sessions: SessionRegistry
    tools: ToolRegistry


def build_host(config: AgentptyConfig) -> ToolHost:
    """Wire one registry, one event bus, and the four tools together.

    Synchronous setup; raises ConfigurationError on bad session limits.
    """
    wire = Wire()
    sessions = SessionRegistry(config.sessions, wire=wire)
    tools = ToolRegistry()
    tools.register_many(create_terminal_tools(sessions, config=config))
    return ToolHost(config=config, wire=wire, sessions=sessions, tools=tools)


def _load_config(config_file: str | None) -> AgentptyConfig:
    try:
        return AgentptyConfig.load(config_file)
    except ConfigurationError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2)


@app.command()
def run(
    cmd: str = typer.Argument(help="Shell command to execute."),
    workdir: str | None = typer.Option(
        None, "--workdir", "-w", help="Working directory for the command."
    ),
    yield_ms: int = typer.Option(
        10_000, "--yield-ms", "-y", help="How long to wait for output."
    ),
    max_lines: int | None = typer.Option(
        None, "--max-lines", "-n", help="Line cap on the returned output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Run one command through exec_command and print the JSON result."""
    setup_logging(verbose)
    host = build_host(_load_config(config_file))
    arguments: dict[str, Any] = {"cmd": cmd, "yield_time_ms": yield_ms}
    if workdir is not None:
        arguments["workdir"] = workdir
    if max_lines is not None:
        arguments["max_output_lines"] = max_lines

    async def _run() -> tuple[str, bool]:
        try:
            return await host.tools.dispatch(ToolCall(id="cli", name="exec_command", arguments=arguments))
        finally:
            await host.sessions.cleanup()

    content, is_error = asyncio.run(_run())
    typer.echo(content)
    if is_error:
        raise typer.Exit(1)


@app.command()
def serve(
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Serve tool calls as JSON lines on stdin/stdout.

    Each input line is ``{"id": ..., "name": ..., "arguments": {...}}``; each
    output line is ``{"id": ..., "content": ..., "is_error": ...}``. Calls run
    concurrently, so match responses by id. All sessions are killed on EOF.
    """
    setup_logging(verbose)
    host = build_host(_load_config(config_file))
    logger.info("agentpty v%s serving tools: %s", __version__, ", ".join(host.tools.names()))
    asyncio.run(_serve(host))


async def _serve(host: ToolHost) -> None:
    loop = asyncio.get_running_loop()
    events = host.wire.subscribe()
    event_logger = asyncio.create_task(_log_events(events))
    pending: set[asyncio.Task] = set()

    try:
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            if not line.strip():
                continue
            task = asyncio.create_task(_handle_line(host.tools, line))
            pending.add(task)
            task.add_done_callback(pending.discard)
        if pending:
            await asyncio.gather(*pending)
    finally:
        await host.sessions.cleanup()
        host.wire.close()
        await event_logger


async def _handle_line(tools: ToolRegistry, line: str) -> None:
    call_id: Any = None
    try:
        request = json.loads(line)
        call_id = request.get("id")
        call = ToolCall(
            id=str(call_id or ""),
            name=request["name"],
            arguments=request.get("arguments") or {},
        )
    except (json.JSONDecodeError, KeyError, AttributeError, TypeError) as e:
        _emit({"id": call_id, "content": f"Malformed request: {e}", "is_error": True})
        return

    content, is_error = await tools.dispatch(call)
    _emit({"id": call_id, "content": content, "is_error": is_error})


def _emit(response: dict[str, Any]) -> None:
    sys.stdout.write(json.dumps(response) + "\n")
    sys.stdout.flush()


async def _log_events(queue: asyncio.Queue[WireEvent | None]) -> None:
    while True:
        event = await queue.get()
        if event is None:
            return
        logger.info("event %s %s", event.type.value, json.dumps(event.data, default=str))


@app.command()
def tools(
    config_file: str | None = typer.Option(
        None, "--config", "-c", help="Config file path."
    ),
) -> None:
    """Print the OpenAI function specs of the terminal tools."""
    host = build_host(_load_config(config_file))
    typer.echo(json.dumps(host.tools.get_specs(), indent=2))


@app.command()
def version() -> None:
    """Show the agentpty version."""
    typer.echo(f"agentpty v{__version__}")


def main() -> None:
    app()


if __name__ == "__main__":
    main()
