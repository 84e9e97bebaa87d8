"""Permission orchestration for tool calls.

The orchestrator answers "may this call run now?" by combining remembered
decisions, threat inspection, the policy judge and, only when policy asks
for it, a human prompt. It is the sole writer of the decision store.

Flow for each request:
1. A remembered decision for the session and tool short-circuits
   everything else (the inspector still runs, for telemetry only).
2. Otherwise the inspector and the judge produce a candidate decision.
3. ASK is resolved through the permission prompt.
4. The final decision is remembered if the prompt asked for it and
   configuration allows it.
5. A ``permission.decision`` telemetry event is emitted.

Faults in the classifier, inspector or judge fail closed: the call is
denied rather than allowed on an indeterminate result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterable, Literal

from overseer.models import ToolCall
from overseer.permissions.base import (
    InspectionResult,
    PermissionDecision,
    RiskClass,
)
from overseer.permissions.classifier import RiskClassifier
from overseer.permissions.inspector import ThreatInspector, call_fingerprint
from overseer.permissions.judge import PermissionJudge
from overseer.permissions.prompts import PermissionPrompt, StaticPermissionPrompt
from overseer.permissions.store import DecisionStore
from overseer.telemetry import NullTelemetry, Telemetry, safe_increment, safe_track

if TYPE_CHECKING:
    from overseer.config.models import PermissionConfig
    from overseer.tools.base import Tool, ToolLookup

__all__ = ["PermissionOrchestrator", "PermissionOutcome"]

logger = logging.getLogger(__name__)

DecisionSource = Literal["store", "judge", "prompt", "error"]


@dataclass
class PermissionOutcome:
    """Final answer for one permission request.

    Attributes:
        decision: ALLOW or DENY
        remember: Whether the decision was requested to be remembered
        inspection: Inspection of the call, when one completed
        source: Where the decision came from
        reason: Human-readable explanation for denials
    """

    decision: PermissionDecision
    remember: bool = False
    inspection: InspectionResult | None = None
    source: DecisionSource = "judge"
    reason: str | None = field(default=None)

    @property
    def allowed(self) -> bool:
        return self.decision == PermissionDecision.ALLOW

    def __iter__(self):
        """Unpack as ``(decision, remember)``."""
        yield self.decision
        yield self.remember


class PermissionOrchestrator:
    """Coordinates classification, inspection, judging and prompting.

    Shared across sessions: all per-session state lives in the injected
    :class:`DecisionStore`.

    Example:
        >>> orchestrator = PermissionOrchestrator(
        ...     PermissionConfig(mode="smart_approve"),
        ...     prompt=CliPermissionPrompt(),
        ...     tools=registry,
        ... )
        >>> outcome = await orchestrator.authorize(tool_call, session_id="abc")
        >>> outcome.allowed
        True
    """

    def __init__(
        self,
        config: PermissionConfig | None = None,
        *,
        prompt: PermissionPrompt | None = None,
        store: DecisionStore | None = None,
        classifier: RiskClassifier | None = None,
        inspector: ThreatInspector | None = None,
        judge: PermissionJudge | None = None,
        telemetry: Telemetry | None = None,
        tools: ToolLookup | None = None,
    ) -> None:
        """Initialize the orchestrator.

        Args:
            config: Permission configuration (defaults to PermissionConfig())
            prompt: Human prompt used for ASK decisions. Defaults to a
                prompt that denies, for unattended use.
            store: Decision store (one is created from config if omitted)
            classifier: Risk classifier (built from ``tools`` and the
                config's risk overrides if omitted)
            inspector: Threat inspector
            judge: Policy judge (built from config if omitted)
            telemetry: Telemetry backend
            tools: Tool lookup used by the default classifier
        """
        if config is None:
            from overseer.config.models import PermissionConfig

            config = PermissionConfig()

        self.config = config
        self.prompt = prompt or StaticPermissionPrompt(PermissionDecision.DENY)
        self.store = (
            store
            if store is not None
            else DecisionStore(capacity=config.max_remembered_decisions)
        )
        self.classifier = classifier or RiskClassifier(
            tools=tools, overrides=config.risk_overrides
        )
        self.inspector = inspector or ThreatInspector(
            repetition_threshold=config.repetition_threshold
        )
        self.judge = judge or PermissionJudge.from_config(config)
        self.telemetry = telemetry or NullTelemetry()

    def _fingerprint(self, tool_call: ToolCall) -> str | None:
        if self.config.remember_scope == "arguments":
            return call_fingerprint(tool_call.name, tool_call.arguments)
        return None

    async def authorize(
        self,
        tool_call: ToolCall,
        session_id: str,
        *,
        tool: Tool | None = None,
        history: Iterable[ToolCall] = (),
    ) -> PermissionOutcome:
        """Classify a call's tool and decide whether the call may run.

        Args:
            tool_call: The requested call
            session_id: Session the call belongs to
            tool: The resolved tool, when the caller already looked it up
            history: Earlier tool calls of the session, oldest first

        Returns:
            PermissionOutcome with ALLOW or DENY
        """
        try:
            if tool is not None:
                risk = self.classifier.classify_tool(tool)
            else:
                risk = self.classifier.classify(tool_call.name)
        except Exception as e:
            logger.error(
                f"Risk classification failed for tool '{tool_call.name}', denying: {e}",
                exc_info=True,
            )
            outcome = PermissionOutcome(
                decision=PermissionDecision.DENY,
                source="error",
                reason=f"Risk classification failed: {e}",
            )
            self._emit(tool_call, None, session_id, outcome)
            return outcome

        return await self.request(tool_call, risk, session_id, history=history)

    async def request(
        self,
        tool_call: ToolCall,
        risk: RiskClass,
        session_id: str,
        *,
        history: Iterable[ToolCall] = (),
    ) -> PermissionOutcome:
        """Decide whether a call of known risk may run.

        Args:
            tool_call: The requested call
            risk: Risk class of the tool
            session_id: Session the call belongs to
            history: Earlier tool calls of the session, oldest first

        Returns:
            PermissionOutcome with ALLOW or DENY. Unpacks as
            ``(decision, remember)``.

        Raises:
            asyncio.CancelledError: If the turn is cancelled while the
                human prompt is pending. Nothing is remembered in that case.
        """
        history = list(history)
        fingerprint = self._fingerprint(tool_call)

        remembered = self.store.get(session_id, tool_call.name, fingerprint)
        if remembered is not None and remembered != PermissionDecision.ASK:
            inspection = self._inspect_quietly(tool_call, history)
            logger.debug(
                f"Using remembered decision {remembered} for '{tool_call.name}' "
                f"in session {session_id}"
            )
            outcome = PermissionOutcome(
                decision=remembered,
                remember=True,
                inspection=inspection,
                source="store",
                reason=None
                if remembered == PermissionDecision.ALLOW
                else "Denied by a remembered decision",
            )
            self._emit(tool_call, risk, session_id, outcome)
            return outcome

        try:
            inspection = self.inspector.inspect(tool_call, history=history)
            candidate = self.judge.decide(risk, inspection)
        except Exception as e:
            logger.error(
                f"Permission evaluation failed for tool '{tool_call.name}', denying: {e}",
                exc_info=True,
            )
            outcome = PermissionOutcome(
                decision=PermissionDecision.DENY,
                source="error",
                reason=f"Permission evaluation failed: {e}",
            )
            self._emit(tool_call, risk, session_id, outcome)
            return outcome

        remember = False
        source: DecisionSource = "judge"
        decision = candidate
        if candidate == PermissionDecision.ASK:
            try:
                decision, remember = await self.prompt.prompt(tool_call, risk, inspection)
                decision = PermissionDecision(decision)
            except Exception as e:
                logger.error(
                    f"Permission prompt failed for tool '{tool_call.name}', denying: {e}",
                    exc_info=True,
                )
                outcome = PermissionOutcome(
                    decision=PermissionDecision.DENY,
                    inspection=inspection,
                    source="error",
                    reason=f"Permission prompt failed: {e}",
                )
                self._emit(tool_call, risk, session_id, outcome)
                return outcome
            source = "prompt"
            if decision == PermissionDecision.ASK:
                logger.warning(
                    f"Permission prompt answered ASK for '{tool_call.name}', denying"
                )
                decision = PermissionDecision.DENY
                remember = False

        if remember and self.config.remember_decisions:
            self.store.save(session_id, tool_call.name, decision, fingerprint)

        reason = None
        if decision == PermissionDecision.DENY:
            reason = "Denied by user" if source == "prompt" else "Denied by policy"
            logger.warning(f"Tool call '{tool_call.name}' denied ({reason.lower()})")

        outcome = PermissionOutcome(
            decision=decision,
            remember=remember,
            inspection=inspection,
            source=source,
            reason=reason,
        )
        self._emit(tool_call, risk, session_id, outcome)
        return outcome

    def _inspect_quietly(
        self, tool_call: ToolCall, history: list[ToolCall]
    ) -> InspectionResult | None:
        """Inspect for telemetry; failures are logged and ignored."""
        try:
            return self.inspector.inspect(tool_call, history=history)
        except Exception as e:
            logger.debug(f"Telemetry inspection of '{tool_call.name}' failed: {e}")
            return None

    def _emit(
        self,
        tool_call: ToolCall,
        risk: RiskClass | None,
        session_id: str,
        outcome: PermissionOutcome,
    ) -> None:
        threat_level = outcome.inspection.level if outcome.inspection else None
        safe_track(
            self.telemetry,
            "permission.decision",
            {
                "tool": tool_call.name,
                "tool_call_id": tool_call.id,
                "session_id": session_id,
                "risk": str(risk) if risk is not None else None,
                "threat_level": str(threat_level) if threat_level is not None else None,
                "decision": outcome.decision.value,
                "source": outcome.source,
                "remembered": outcome.remember,
            },
        )
        safe_increment(
            self.telemetry,
            f"permission.{outcome.decision.value}",
            tags={"source": outcome.source},
        )

    def forget(self, session_id: str, tool_name: str) -> bool:
        """Revoke remembered decisions for a tool in a session."""
        return self.store.revoke(session_id, tool_name)

    def reset(self, session_id: str) -> None:
        """Forget every remembered decision of a session."""
        self.store.clear(session_id)

    def remembered(self, session_id: str) -> dict[str, PermissionDecision]:
        """Return the remembered decisions of a session."""
        return self.store.get_all(session_id)
