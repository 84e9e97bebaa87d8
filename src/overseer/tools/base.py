"""Tool protocol and the LangChain tool adapter.

Tools are the side-effecting capabilities the model can call. The agent
loop only sees the :class:`Tool` protocol; :class:`LangChainTool` adapts
any LangChain ``BaseTool`` (for example a function decorated with
``@tool``) to it and attaches a declared risk class.
"""

from __future__ import annotations

import json
import time
from contextlib import contextmanager
from contextvars import ContextVar
from typing import TYPE_CHECKING, Any, Iterator, Protocol, runtime_checkable

from pydantic import BaseModel, ValidationError

from overseer.models import ToolContext, ToolDefinition, ToolResult, ValidationResult
from overseer.permissions.base import RiskClass

if TYPE_CHECKING:
    from langchain_core.tools import BaseTool

__all__ = [
    "LangChainTool",
    "Tool",
    "ToolLookup",
    "current_tool_context",
    "get_tool_schema",
    "tool_context_scope",
]

_tool_context: ContextVar[ToolContext | None] = ContextVar("tool_context", default=None)


def current_tool_context() -> ToolContext:
    """Return the context of the tool call being executed.

    Built-in tools use this to resolve relative paths against the
    session's working directory. Outside a tool call a default context
    (current working directory) is returned.
    """
    return _tool_context.get() or ToolContext()


@contextmanager
def tool_context_scope(context: ToolContext) -> Iterator[ToolContext]:
    """Make ``context`` the current tool context for the enclosed block."""
    token = _tool_context.set(context)
    try:
        yield context
    finally:
        _tool_context.reset(token)


@runtime_checkable
class Tool(Protocol):
    """Protocol for tools callable by the agent loop.

    Attributes:
        name: Unique tool name offered to the model
        description: What the tool does
        parameter_schema: JSON schema of the arguments
        risk_level: Inherent risk class
    """

    name: str
    description: str
    parameter_schema: dict[str, Any]
    risk_level: RiskClass

    async def validate(
        self, arguments: dict[str, Any], context: ToolContext
    ) -> ValidationResult:
        """Check arguments before execution."""
        ...

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        """Run the tool. May raise; the agent loop converts errors to failed results."""
        ...


@runtime_checkable
class ToolLookup(Protocol):
    """Protocol for finding tools by name."""

    def get_all(self) -> list[Tool]:
        ...

    def try_get(self, name: str) -> Tool | None:
        ...


def get_tool_schema(tool: BaseTool) -> dict[str, Any]:
    """Extract JSON schema from a LangChain tool.

    Args:
        tool: LangChain BaseTool instance

    Returns:
        JSON schema dictionary for tool arguments

    Example:
        >>> from langchain_core.tools import tool
        >>> @tool
        ... def my_tool(x: int, y: str) -> str:
        ...     '''Example tool'''
        ...     return f"{y}: {x}"
        >>> schema = get_tool_schema(my_tool)
        >>> assert "properties" in schema
    """
    args_schema = getattr(tool, "args_schema", None)
    if isinstance(args_schema, dict):
        return args_schema
    if isinstance(args_schema, type) and issubclass(args_schema, BaseModel):
        return args_schema.model_json_schema()

    if hasattr(tool, "get_input_schema"):
        return tool.get_input_schema().model_json_schema()

    return {"type": "object", "properties": {}}


def _stringify(output: Any) -> str:
    if isinstance(output, str):
        return output
    if output is None:
        return ""
    if isinstance(output, (dict, list, tuple, int, float, bool)):
        return json.dumps(output, default=str)
    return str(output)


def _format_validation_error(error: ValidationError) -> list[str]:
    messages = []
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ())) or "arguments"
        messages.append(f"{location}: {item.get('msg', 'invalid value')}")
    return messages


class LangChainTool:
    """Adapter exposing a LangChain tool through the :class:`Tool` protocol.

    Validation uses the tool's pydantic ``args_schema``; execution goes
    through ``ainvoke`` with the call's :class:`ToolContext` installed as
    the current tool context.

    Example:
        >>> from langchain_core.tools import tool
        >>> @tool
        ... def word_count(text: str) -> int:
        ...     '''Count words in text'''
        ...     return len(text.split())
        >>> adapted = LangChainTool(word_count, risk_level=RiskClass.READ_ONLY)
        >>> result = await adapted.execute({"text": "a b c"}, ToolContext(tool_call_id="1"))
        >>> result.output
        '3'
    """

    def __init__(
        self,
        tool: BaseTool,
        risk_level: RiskClass | str | int = RiskClass.CRITICAL,
        tags: list[str] | None = None,
    ) -> None:
        name = tool.name
        if not name or not name.strip():
            raise ValueError("Tool name cannot be empty")
        if not tool.description:
            raise ValueError(f"Tool '{name}' must have a description")

        self.tool = tool
        self.name = name
        self.description = tool.description
        self.parameter_schema = get_tool_schema(tool)
        self.risk_level = RiskClass.parse(risk_level)
        self.tags = list(tags or [])

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters=self.parameter_schema,
        )

    async def validate(
        self, arguments: dict[str, Any], context: ToolContext
    ) -> ValidationResult:
        if not isinstance(arguments, dict):
            return ValidationResult.failure(
                f"Arguments for tool '{self.name}' must be an object"
            )

        args_schema = getattr(self.tool, "args_schema", None)
        if isinstance(args_schema, type) and issubclass(args_schema, BaseModel):
            try:
                args_schema.model_validate(arguments)
            except ValidationError as e:
                errors = _format_validation_error(e)
                return ValidationResult.failure(
                    f"Invalid arguments for tool '{self.name}': {'; '.join(errors)}",
                    errors=errors,
                )
        return ValidationResult.success()

    async def execute(self, arguments: dict[str, Any], context: ToolContext) -> ToolResult:
        start = time.perf_counter()
        with tool_context_scope(context):
            output = await self.tool.ainvoke(arguments)
        duration_ms = (time.perf_counter() - start) * 1000
        return ToolResult.ok(
            context.tool_call_id or "",
            _stringify(output),
            duration_ms=duration_ms,
        )

    def __repr__(self) -> str:
        return f"LangChainTool(name={self.name!r}, risk_level={self.risk_level!s})"
