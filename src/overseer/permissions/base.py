"""Core types for the permission subsystem.

Risk classes and threat levels are integer-backed so they can be compared
and thresholded directly (``RiskClass.READ_ONLY < RiskClass.CRITICAL``).
Decisions and policy modes are string enums so they serialize cleanly to
config files and telemetry.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum
from typing import Any


class _NamedIntEnum(IntEnum):
    """IntEnum that also parses from case-insensitive member names."""

    @classmethod
    def parse(cls, value: Any):
        """Coerce a member, an int, or a member name into a member.

        Raises:
            ValueError: If the value does not name a member
        """
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            key = value.strip().upper().replace("-", "_")
            try:
                return cls[key]
            except KeyError:
                raise ValueError(f"Unknown {cls.__name__}: {value!r}") from None
        return cls(value)

    def __str__(self) -> str:
        return self.name.lower()


class RiskClass(_NamedIntEnum):
    """Inherent risk of a tool, independent of its arguments.

    Attributes:
        READ_ONLY: Observes state without changing it (read a file, list a directory)
        READ_WRITE: Changes user data in recoverable ways (write a file)
        DESTRUCTIVE: Can destroy data or run arbitrary commands (shell)
        CRITICAL: Unknown or system-level; the conservative default
    """

    READ_ONLY = 0
    READ_WRITE = 1
    DESTRUCTIVE = 2
    CRITICAL = 3


class ThreatLevel(_NamedIntEnum):
    """Severity of a threat detected in a tool call's arguments."""

    NONE = 0
    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4


class ThreatCategory(str, Enum):
    """Kind of dangerous pattern detected by the inspector."""

    MALICIOUS_COMMAND = "malicious_command"
    SENSITIVE_FILE_ACCESS = "sensitive_file_access"
    NETWORK_EXFILTRATION = "network_exfiltration"
    PRIVILEGE_ESCALATION = "privilege_escalation"
    CODE_EXECUTION = "code_execution"
    REPETITION = "repetition"
    SYSTEM_MODIFICATION = "system_modification"

    def __str__(self) -> str:
        return self.value


class PermissionDecision(str, Enum):
    """Outcome gating a tool call. ASK is never stored."""

    ALLOW = "allow"
    DENY = "deny"
    ASK = "ask"

    def __str__(self) -> str:
        return self.value


class PolicyMode(str, Enum):
    """How decisions are made without human input.

    Attributes:
        AUTO: Allow everything, threats included (DANGEROUS)
        ASK: Ask the human for every call
        SMART_APPROVE: Allow low-risk calls without threats, ask otherwise
        DENY: Deny everything
    """

    AUTO = "auto"
    ASK = "ask"
    SMART_APPROVE = "smart_approve"
    DENY = "deny"

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class SecurityThreat:
    """A dangerous pattern found in a tool call.

    Attributes:
        category: Kind of threat
        level: Severity
        description: Human-readable summary
        pattern: The pattern that matched, if any
        recommendation: Advice shown to the human deciding on the call
    """

    category: ThreatCategory
    level: ThreatLevel
    description: str
    pattern: str | None = None
    recommendation: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "level": str(self.level),
            "description": self.description,
            "pattern": self.pattern,
            "recommendation": self.recommendation,
        }


@dataclass(frozen=True)
class InspectionResult:
    """Threats found in one tool call.

    ``level`` and ``is_safe`` are derived from ``threats`` so they can
    never disagree with it.

    Example:
        >>> InspectionResult().is_safe
        True
        >>> result = InspectionResult(threats=(
        ...     SecurityThreat(ThreatCategory.REPETITION, ThreatLevel.MEDIUM, "repeat"),
        ... ))
        >>> result.level
        <ThreatLevel.MEDIUM: 2>
    """

    threats: tuple[SecurityThreat, ...] = field(default_factory=tuple)
    note: str | None = None

    @property
    def level(self) -> ThreatLevel:
        return max((t.level for t in self.threats), default=ThreatLevel.NONE)

    @property
    def is_safe(self) -> bool:
        return self.level == ThreatLevel.NONE

    @classmethod
    def safe(cls) -> InspectionResult:
        return cls()

    @classmethod
    def unsafe(cls, threats: list[SecurityThreat], note: str | None = None) -> InspectionResult:
        return cls(
            threats=tuple(threats),
            note=note or f"Detected {len(threats)} potential security threat(s)",
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_safe": self.is_safe,
            "level": str(self.level),
            "threats": [t.to_dict() for t in self.threats],
            "note": self.note,
        }
