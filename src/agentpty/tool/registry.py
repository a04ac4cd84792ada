"""Tool registry — look tools up by name and dispatch calls to them."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Any

from agentpty.tool.base import BaseTool, ToolCall

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Name -> tool table.

    This is the seam the host agent's dispatcher talks to: it hands over a
    ``ToolCall`` and gets back ``(content, is_error)``. Registration order is
    kept, so specs and names come out in the order tools were added.
    """

    def __init__(self) -> None:
        self._by_name: dict[str, BaseTool] = {}

    def register(self, tool: BaseTool) -> None:
        if tool.name in self._by_name:
            logger.warning("Replacing already registered tool %s", tool.name)
        self._by_name[tool.name] = tool

    def register_many(self, tools: Iterable[BaseTool]) -> None:
        for tool in tools:
            self.register(tool)

    def get(self, name: str) -> BaseTool | None:
        return self._by_name.get(name)

    def names(self) -> list[str]:
        return list(self._by_name)

    def get_specs(self, names: Iterable[str] | None = None) -> list[dict[str, Any]]:
        """OpenAI function specs for every tool, or only those in ``names``."""
        wanted = None if names is None else set(names)
        return [
            tool.to_openai_spec()
            for tool in self._by_name.values()
            if wanted is None or tool.name in wanted
        ]

    async def dispatch(self, call: ToolCall) -> tuple[str, bool]:
        """Run ``call`` against the named tool.

        An unknown name is reported as an error result, never raised.
        """
        tool = self._by_name.get(call.name)
        if tool is None:
            logger.warning("Call %s asked for unknown tool %s", call.id, call.name)
            return f"Unknown tool: {call.name}. Available tools: {', '.join(self.names())}", True
        logger.debug("Dispatching call %s to %s", call.id, call.name)
        return await tool(call.arguments)

    def __len__(self) -> int:
        return len(self._by_name)

    def __contains__(self, name: str) -> bool:
        return name in self._by_name
