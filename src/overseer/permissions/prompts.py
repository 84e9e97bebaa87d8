"""Human permission prompts.

A prompt is consulted only when the judge answers ASK. It returns the
final decision together with a flag saying whether the decision should be
remembered for the rest of the session.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Protocol, runtime_checkable

from overseer.models import ToolCall
from overseer.permissions.base import InspectionResult, PermissionDecision, RiskClass

__all__ = ["CliPermissionPrompt", "PermissionPrompt", "StaticPermissionPrompt"]

logger = logging.getLogger(__name__)


@runtime_checkable
class PermissionPrompt(Protocol):
    """Protocol for asking a human whether a tool call may run.

    Implementations may block for as long as the human needs; the agent
    turn is suspended meanwhile. They must honor task cancellation.

    Example:
        >>> class WebPrompt:
        ...     async def prompt(self, tool_call, risk, inspection):
        ...         answer = await websocket.ask(tool_call.name)
        ...         return PermissionDecision(answer["decision"]), answer["remember"]
    """

    async def prompt(
        self,
        tool_call: ToolCall,
        risk: RiskClass,
        inspection: InspectionResult,
    ) -> tuple[PermissionDecision, bool]:
        """Ask for a decision.

        Args:
            tool_call: The call awaiting permission
            risk: Risk class of the tool
            inspection: Threats found in the call

        Returns:
            Tuple of (decision, remember)
        """
        ...


class StaticPermissionPrompt:
    """Prompt that answers every request the same way without asking.

    Suitable for headless services and tests. Defaults to DENY so that an
    unattended process never runs a call that policy wanted a human to see.

    Example:
        >>> prompt = StaticPermissionPrompt(PermissionDecision.ALLOW, remember=True)
    """

    def __init__(
        self,
        decision: PermissionDecision = PermissionDecision.DENY,
        remember: bool = False,
    ) -> None:
        self.decision = PermissionDecision(decision)
        self.remember = remember
        self.requests: list[ToolCall] = []

    async def prompt(
        self,
        tool_call: ToolCall,
        risk: RiskClass,
        inspection: InspectionResult,
    ) -> tuple[PermissionDecision, bool]:
        self.requests.append(tool_call)
        logger.debug(f"Static prompt answered {self.decision} for '{tool_call.name}'")
        return self.decision, self.remember


class CliPermissionPrompt:
    """Command-line permission prompt using input().

    Prints the tool name, risk class, arguments and detected threats,
    then asks whether to allow the call and whether to remember the
    answer. Input is read in a worker thread so the event loop keeps
    running while the human thinks.

    Example:
        >>> prompt = CliPermissionPrompt()
        >>> orchestrator = PermissionOrchestrator(config, prompt=prompt)
    """

    def __init__(
        self,
        *,
        show_arguments: bool = True,
        ask_remember: bool = True,
        input_func: Callable[[str], str] = input,
    ):
        """Initialize CLI permission prompt.

        Args:
            show_arguments: Whether to display tool arguments
            ask_remember: Whether to offer remembering the decision
            input_func: Function used to read answers
        """
        self.show_arguments = show_arguments
        self.ask_remember = ask_remember
        self.input_func = input_func

    def _render(
        self, tool_call: ToolCall, risk: RiskClass, inspection: InspectionResult
    ) -> str:
        lines = [
            "",
            "=" * 60,
            f"Permission Request: {tool_call.name}",
            "=" * 60,
            f"Risk: {str(risk).upper()}",
        ]

        if self.show_arguments and tool_call.arguments:
            lines.append("")
            lines.append("Arguments:")
            for key, value in tool_call.arguments.items():
                value_str = _truncate(value)
                lines.append(f"  {key}: {value_str}")

        if not inspection.is_safe:
            lines.append("")
            lines.append(f"Threats ({str(inspection.level).upper()}):")
            for threat in inspection.threats:
                lines.append(f"  - [{str(threat.level).upper()}] {threat.description}")
                if threat.recommendation:
                    lines.append(f"    {threat.recommendation}")

        lines.append("=" * 60)
        return "\n".join(lines)

    async def _ask_yes_no(self, question: str) -> bool:
        while True:
            answer = await asyncio.to_thread(self.input_func, f"{question} [y/N]: ")
            answer = answer.strip().lower()
            if answer in ("y", "yes"):
                return True
            if answer in ("", "n", "no"):
                return False
            print("Please enter 'y' or 'n'")

    async def prompt(
        self,
        tool_call: ToolCall,
        risk: RiskClass,
        inspection: InspectionResult,
    ) -> tuple[PermissionDecision, bool]:
        print(self._render(tool_call, risk, inspection))

        allowed = await self._ask_yes_no("Allow this tool call?")
        decision = PermissionDecision.ALLOW if allowed else PermissionDecision.DENY
        print("✓ Allowed" if allowed else "✗ Denied")

        remember = False
        if self.ask_remember:
            remember = await self._ask_yes_no(
                f"Remember this decision for '{tool_call.name}' in this session?"
            )
        return decision, remember


def _truncate(value: Any, limit: int = 100) -> str:
    value_str = str(value)
    if len(value_str) > limit:
        value_str = value_str[: limit - 3] + "..."
    return value_str
