"""Risk-aware permission subsystem.

Decides, for each tool call requested by the model, whether it may run:

- :class:`RiskClassifier` maps tools to an inherent risk class
- :class:`ThreatInspector` finds dangerous patterns in arguments
- :class:`DecisionStore` remembers decisions per session
- :func:`decide` / :class:`PermissionJudge` apply the policy mode
- :class:`PermissionOrchestrator` ties them together with a human prompt
"""

from overseer.permissions.base import (
    InspectionResult,
    PermissionDecision,
    PolicyMode,
    RiskClass,
    SecurityThreat,
    ThreatCategory,
    ThreatLevel,
)
from overseer.permissions.classifier import RiskClassifier
from overseer.permissions.inspector import ThreatInspector, call_fingerprint
from overseer.permissions.judge import PermissionJudge, decide
from overseer.permissions.orchestrator import PermissionOrchestrator, PermissionOutcome
from overseer.permissions.prompts import (
    CliPermissionPrompt,
    PermissionPrompt,
    StaticPermissionPrompt,
)
from overseer.permissions.store import DecisionStore

__all__ = [
    "CliPermissionPrompt",
    "DecisionStore",
    "InspectionResult",
    "PermissionDecision",
    "PermissionJudge",
    "PermissionOrchestrator",
    "PermissionOutcome",
    "PermissionPrompt",
    "PolicyMode",
    "RiskClass",
    "RiskClassifier",
    "SecurityThreat",
    "StaticPermissionPrompt",
    "ThreatCategory",
    "ThreatInspector",
    "ThreatLevel",
    "call_fingerprint",
    "decide",
]
