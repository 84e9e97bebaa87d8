"""Tool registry.

Provides centralized registration and lookup of tools for the agent loop,
and the tool definitions offered to the model.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from overseer.exceptions import ToolNotFoundError, ToolValidationError
from overseer.models import ToolDefinition
from overseer.permissions.base import RiskClass
from overseer.tools.base import LangChainTool, Tool

if TYPE_CHECKING:
    from langchain_core.tools import BaseTool

__all__ = ["ToolRegistry"]

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Central registry of tools available to the agent loop.

    Accepts both :class:`Tool` implementations and plain LangChain tools,
    which are wrapped in :class:`LangChainTool`. Disabled tools stay
    registered but are neither offered to the model nor returned by
    :meth:`try_get`.

    Example:
        >>> from langchain_core.tools import tool
        >>>
        >>> @tool
        ... def my_tool(x: int) -> int:
        ...     '''Example tool'''
        ...     return x * 2
        >>>
        >>> registry = ToolRegistry()
        >>> registry.register(my_tool, risk_level=RiskClass.READ_ONLY)
        >>> len(registry)
        1
    """

    def __init__(self) -> None:
        self._tools: dict[str, Tool] = {}
        self._disabled: set[str] = set()

    def register(
        self,
        tool: Tool | BaseTool,
        risk_level: RiskClass | str | None = None,
        tags: list[str] | None = None,
        enabled: bool = True,
    ) -> Tool:
        """Register a tool.

        Args:
            tool: A Tool, or a LangChain BaseTool (decorated with @tool)
            risk_level: Risk class for LangChain tools. Ignored for Tool
                implementations, which declare their own. Defaults to CRITICAL.
            tags: Optional tags for LangChain tools
            enabled: Whether the tool is offered and callable

        Returns:
            The registered Tool

        Raises:
            ToolValidationError: If the tool is invalid or already registered

        Example:
            >>> registry.register(run_shell, risk_level=RiskClass.DESTRUCTIVE)
        """
        if not isinstance(tool, Tool):
            try:
                tool = LangChainTool(
                    tool,  # type: ignore[arg-type]
                    risk_level=risk_level if risk_level is not None else RiskClass.CRITICAL,
                    tags=tags,
                )
            except ValueError as e:
                raise ToolValidationError(str(e)) from e

        name = tool.name
        if not name or not name.strip():
            raise ToolValidationError("Tool must have a non-empty name")
        if name in self._tools:
            raise ToolValidationError(
                f"Tool '{name}' is already registered. "
                "Unregister it first to re-register."
            )

        self._tools[name] = tool
        if not enabled:
            self._disabled.add(name)
        logger.debug(f"Registered tool '{name}' (risk={RiskClass.parse(tool.risk_level)})")
        return tool

    def unregister(self, tool_name: str) -> None:
        """Remove a tool from the registry.

        Raises:
            ToolNotFoundError: If tool is not registered
        """
        if tool_name not in self._tools:
            raise ToolNotFoundError(tool_name, list(self._tools))
        del self._tools[tool_name]
        self._disabled.discard(tool_name)

    def get_tool(self, tool_name: str) -> Tool:
        """Retrieve a tool by name, enabled or not.

        Raises:
            ToolNotFoundError: If tool is not registered
        """
        if tool_name not in self._tools:
            raise ToolNotFoundError(tool_name, list(self._tools))
        return self._tools[tool_name]

    def try_get(self, name: str) -> Tool | None:
        """Return an enabled tool by name, or None."""
        if name in self._disabled:
            return None
        return self._tools.get(name)

    def get_all(self) -> list[Tool]:
        """Return every enabled tool in registration order."""
        return [t for name, t in self._tools.items() if name not in self._disabled]

    def list_tools(
        self,
        enabled_only: bool = True,
        risk_level: RiskClass | None = None,
        tags: list[str] | None = None,
    ) -> list[Tool]:
        """List tools with optional filtering.

        Args:
            enabled_only: Only return enabled tools
            risk_level: Only return tools of this risk class
            tags: Only return tools carrying all of these tags

        Returns:
            Matching tools in registration order
        """
        tools = []
        for name, tool in self._tools.items():
            if enabled_only and name in self._disabled:
                continue
            if risk_level is not None and RiskClass.parse(tool.risk_level) != risk_level:
                continue
            if tags and not set(tags).issubset(getattr(tool, "tags", None) or []):
                continue
            tools.append(tool)
        return tools

    def set_enabled(self, tool_name: str, enabled: bool) -> None:
        """Enable or disable a registered tool.

        Raises:
            ToolNotFoundError: If tool is not registered
        """
        if tool_name not in self._tools:
            raise ToolNotFoundError(tool_name, list(self._tools))
        if enabled:
            self._disabled.discard(tool_name)
        else:
            self._disabled.add(tool_name)

    def definitions(self) -> list[ToolDefinition]:
        """Return definitions of every enabled tool, for offering to the model."""
        return [
            ToolDefinition(
                name=tool.name,
                description=tool.description,
                parameters=dict(tool.parameter_schema),
            )
            for tool in self.get_all()
        ]

    def risk_map(self) -> dict[str, Any]:
        """Return the declared risk class of every registered tool."""
        return {name: RiskClass.parse(t.risk_level) for name, t in self._tools.items()}

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, tool_name: str) -> bool:
        return tool_name in self._tools

    def __repr__(self) -> str:
        return f"ToolRegistry(tools={len(self._tools)}, enabled={len(self.get_all())})"
