"""Policy decisions for tool calls.

The judge combines a tool's risk class, the inspection of its arguments
and the configured policy mode into a candidate decision. It never looks
at remembered decisions; that is the orchestrator's job.

Decision table:
    DENY           always DENY
    AUTO           always ALLOW, threats included (DANGEROUS)
    ASK            always ASK
    SMART_APPROVE  ASK if any threat was found; else ALLOW for READ_ONLY;
                   else ALLOW for READ_WRITE when auto_approve_read_write
                   is enabled; else ASK
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from overseer.permissions.base import (
    InspectionResult,
    PermissionDecision,
    PolicyMode,
    RiskClass,
)

if TYPE_CHECKING:
    from overseer.config.models import PermissionConfig

__all__ = ["PermissionJudge", "decide"]

logger = logging.getLogger(__name__)


def decide(
    risk: RiskClass,
    inspection: InspectionResult,
    mode: PolicyMode,
    auto_approve_read_write: bool = False,
) -> PermissionDecision:
    """Return the candidate decision for a tool call.

    Args:
        risk: Inherent risk class of the tool
        inspection: Threat inspection of the call's arguments
        mode: Configured policy mode
        auto_approve_read_write: Allow READ_WRITE tools without asking
            under SMART_APPROVE

    Returns:
        ALLOW, DENY or ASK

    Example:
        >>> decide(RiskClass.READ_ONLY, InspectionResult.safe(), PolicyMode.SMART_APPROVE)
        <PermissionDecision.ALLOW: 'allow'>
    """
    mode = PolicyMode(mode)

    if mode == PolicyMode.DENY:
        return PermissionDecision.DENY
    if mode == PolicyMode.AUTO:
        return PermissionDecision.ALLOW
    if mode == PolicyMode.ASK:
        return PermissionDecision.ASK

    if not inspection.is_safe:
        return PermissionDecision.ASK
    if risk == RiskClass.READ_ONLY:
        return PermissionDecision.ALLOW
    if risk == RiskClass.READ_WRITE and auto_approve_read_write:
        return PermissionDecision.ALLOW
    return PermissionDecision.ASK


class PermissionJudge:
    """Applies a fixed policy mode to tool calls.

    Attributes:
        mode: Policy mode
        auto_approve_read_write: Allow READ_WRITE tools under SMART_APPROVE

    Example:
        >>> judge = PermissionJudge(PolicyMode.DENY)
        >>> judge.decide(RiskClass.READ_ONLY, InspectionResult.safe())
        <PermissionDecision.DENY: 'deny'>
    """

    def __init__(
        self,
        mode: PolicyMode = PolicyMode.SMART_APPROVE,
        auto_approve_read_write: bool = False,
    ) -> None:
        self.mode = PolicyMode(mode)
        self.auto_approve_read_write = auto_approve_read_write

        if self.mode == PolicyMode.AUTO:
            logger.warning(
                "PermissionJudge created with mode=auto. All tool calls will be "
                "allowed without user interaction, including calls with detected "
                "threats. This is DANGEROUS outside fully trusted environments."
            )

    @classmethod
    def from_config(cls, config: PermissionConfig) -> PermissionJudge:
        return cls(
            mode=config.mode,
            auto_approve_read_write=config.auto_approve_read_write,
        )

    def decide(self, risk: RiskClass, inspection: InspectionResult) -> PermissionDecision:
        decision = decide(risk, inspection, self.mode, self.auto_approve_read_write)
        logger.debug(
            f"Judge decided {decision} (mode={self.mode}, risk={risk}, "
            f"threat={inspection.level})"
        )
        return decision
