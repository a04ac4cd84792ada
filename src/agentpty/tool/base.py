"""Tool plumbing: validated parameters in, JSON payload out."""

from __future__ import annotations

import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, ClassVar, Generic, TypeVar

from pydantic import BaseModel, ValidationError

logger = logging.getLogger(__name__)

P = TypeVar("P", bound=BaseModel)


@dataclass
class ToolCall:
    """A tool invocation handed to us by the agent's dispatcher."""

    id: str
    name: str
    arguments: dict[str, Any]


@dataclass
class ToolResult:
    """Outcome of one tool call.

    ``data`` is the structured payload and ``output`` its JSON rendering,
    which is what the agent reads. ``brief`` is a one-line label for logs.
    """

    output: str = ""
    brief: str = ""
    is_error: bool = False
    data: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: dict[str, Any], brief: str = "") -> ToolResult:
        return cls(output=json.dumps(payload, default=str), brief=brief, data=payload)


@dataclass
class ToolOk(ToolResult):
    is_error: bool = False


@dataclass
class ToolError(ToolResult):
    is_error: bool = True


class BaseTool(ABC, Generic[P]):
    """A named operation the agent can call.

    Subclasses declare ``name``, ``description`` and a Pydantic
    ``param_model``, and implement ``execute``. Calling the tool validates
    the raw arguments first, so ``execute`` only ever sees a well-formed
    parameter object:

        class KillParams(BaseModel):
            session_id: int

        class KillTool(BaseTool[KillParams]):
            name = "kill_session"
            description = "Terminate a session"
            param_model = KillParams

            async def execute(self, params: KillParams) -> ToolResult:
                ...
    """

    name: ClassVar[str]
    description: ClassVar[str]
    param_model: ClassVar[type[BaseModel]]

    async def __call__(self, arguments: dict[str, Any]) -> tuple[str, bool]:
        """Validate ``arguments`` and run the tool. Never raises.

        Returns:
            (content, is_error) for the tool result message.
        """
        try:
            params = self.param_model.model_validate(arguments)
        except ValidationError as e:
            logger.info("Rejected %s call: %s", self.name, e.errors(include_url=False))
            return f"Invalid parameters: {e}", True

        start = time.monotonic()
        try:
            result = await self.execute(params)  # type: ignore[arg-type]
        except Exception as e:
            logger.error("Tool %s failed: %s", self.name, e, exc_info=True)
            return f"Error executing {self.name}: {e}", True

        logger.debug("%s -> %s (%.3fs)", self.name, result.brief, time.monotonic() - start)
        return result.output, result.is_error

    @abstractmethod
    async def execute(self, params: P) -> ToolResult:
        ...

    def to_openai_spec(self) -> dict[str, Any]:
        """Describe the tool as an OpenAI function-calling entry."""
        parameters = self.param_model.model_json_schema()
        # Pydantic's title and $defs mean nothing to the model
        parameters.pop("title", None)
        parameters.pop("$defs", None)
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }
