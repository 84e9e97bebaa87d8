"""Tools callable by the agent loop."""

from overseer.tools.base import (
    LangChainTool,
    Tool,
    ToolLookup,
    current_tool_context,
    get_tool_schema,
    tool_context_scope,
)
from overseer.tools.registry import ToolRegistry

__all__ = [
    "LangChainTool",
    "Tool",
    "ToolLookup",
    "ToolRegistry",
    "current_tool_context",
    "get_tool_schema",
    "tool_context_scope",
]
