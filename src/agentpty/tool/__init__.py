"""Tool system — base classes, registry, and output truncation."""

from agentpty.tool.base import BaseTool, ToolCall, ToolError, ToolOk, ToolResult
from agentpty.tool.registry import ToolRegistry
from agentpty.tool.truncation import HeadTailBuffer, project_output

__all__ = [
    "BaseTool",
    "ToolCall",
    "ToolResult",
    "ToolOk",
    "ToolError",
    "ToolRegistry",
    "HeadTailBuffer",
    "project_output",
]
