"""Risk classification of tools by identity.

The classifier answers "how dangerous is this tool in general?" without
looking at arguments (that is the inspector's job). Unknown tools resolve
to CRITICAL so that a missing declaration can never under-classify.

Example:
    >>> classifier = RiskClassifier(declared={"read_file": RiskClass.READ_ONLY})
    >>> classifier.classify("read_file")
    <RiskClass.READ_ONLY: 0>
    >>> classifier.classify("mystery_tool")
    <RiskClass.CRITICAL: 3>
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Mapping

from overseer.permissions.base import RiskClass

if TYPE_CHECKING:
    from overseer.tools.base import Tool, ToolLookup

logger = logging.getLogger(__name__)

DEFAULT_RISK = RiskClass.CRITICAL


class RiskClassifier:
    """Maps tool names to their inherent risk class.

    Resolution order:
    1. ``overrides`` (usually ``PermissionConfig.risk_overrides``)
    2. The ``risk_level`` declared by a tool found through ``tools``
    3. The static ``declared`` mapping
    4. CRITICAL

    Attributes:
        tools: Optional tool lookup consulted for declared risk levels
        declared: Static name to risk mapping
        overrides: Name to risk mapping that wins over everything else
    """

    def __init__(
        self,
        tools: ToolLookup | None = None,
        declared: Mapping[str, Any] | None = None,
        overrides: Mapping[str, Any] | None = None,
    ) -> None:
        self.tools = tools
        self.declared = {k: RiskClass.parse(v) for k, v in (declared or {}).items()}
        self.overrides = {k: RiskClass.parse(v) for k, v in (overrides or {}).items()}

    def classify(self, tool_name: str) -> RiskClass:
        """Return the risk class of a tool.

        Args:
            tool_name: Name of the tool

        Returns:
            The resolved RiskClass, CRITICAL when nothing is known
        """
        if tool_name in self.overrides:
            return self.overrides[tool_name]

        if self.tools is not None:
            tool = self.tools.try_get(tool_name)
            if tool is not None:
                return RiskClass.parse(tool.risk_level)

        if tool_name in self.declared:
            return self.declared[tool_name]

        logger.debug(f"No risk declared for tool '{tool_name}', defaulting to {DEFAULT_RISK}")
        return DEFAULT_RISK

    def classify_tool(self, tool: Tool) -> RiskClass:
        """Return the risk class of a tool object, honoring overrides."""
        if tool.name in self.overrides:
            return self.overrides[tool.name]
        return RiskClass.parse(tool.risk_level)
