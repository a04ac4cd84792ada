"""Built-in tools: the terminal session surface."""

from agentpty.tool.builtin.terminal import (
    ExecCommandTool,
    KillSessionTool,
    ListSessionsTool,
    TerminalContext,
    WriteStdinTool,
    create_terminal_tools,
)

__all__ = [
    "ExecCommandTool",
    "WriteStdinTool",
    "KillSessionTool",
    "ListSessionsTool",
    "TerminalContext",
    "create_terminal_tools",
]
