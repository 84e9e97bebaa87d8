"""Pydantic configuration models for overseer.

The root :class:`OverseerConfig` groups permission policy, agent loop
limits, built-in tool settings, telemetry and session storage. Every
model forbids unknown keys so that typos in config files fail loudly.

Example:
    >>> config = OverseerConfig(
    ...     permissions=PermissionConfig(mode="smart_approve", auto_approve_read_write=True),
    ...     agent=AgentConfig(max_rounds=10),
    ... )
"""

from __future__ import annotations

import warnings
from pathlib import Path
from typing import Any, Literal

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_serializer,
    field_validator,
)

from overseer.permissions.base import PolicyMode, RiskClass

__all__ = [
    "AgentConfig",
    "OverseerConfig",
    "PermissionConfig",
    "SessionConfig",
    "TelemetryConfig",
    "ToolsConfig",
]


class PermissionConfig(BaseModel):
    """Configuration for the permission subsystem.

    Example:
        >>> config = PermissionConfig(
        ...     mode="smart_approve",
        ...     risk_overrides={"run_shell": "critical"},
        ...     remember_scope="arguments",
        ... )
    """

    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
    )

    mode: PolicyMode = Field(
        default=PolicyMode.SMART_APPROVE,
        description="Policy mode: 'auto' (allow everything - DANGEROUS), 'ask' (always ask), "
        "'smart_approve' (allow safe low-risk calls, ask otherwise), 'deny' (deny everything)",
    )
    auto_approve_read_write: bool = Field(
        default=False,
        description="Under smart_approve, allow read-write tools without asking when "
        "no threats are detected",
    )
    remember_decisions: bool = Field(
        default=True,
        description="Honor 'remember this decision' answers from the human prompt",
    )
    max_remembered_decisions: int = Field(
        default=100,
        ge=1,
        le=100_000,
        description="Maximum remembered decisions per session (least recently used evicted)",
    )
    remember_scope: Literal["tool", "arguments"] = Field(
        default="tool",
        description="Key remembered decisions by tool name only ('tool') or by tool name "
        "plus an argument fingerprint ('arguments')",
    )
    risk_overrides: dict[str, RiskClass] = Field(
        default_factory=dict,
        description="Per-tool risk class overrides, e.g. {'run_shell': 'critical'}",
    )
    repetition_threshold: int = Field(
        default=2,
        ge=1,
        le=100,
        description="Number of identical earlier calls in a session that flags a call "
        "as repeated",
    )

    @field_validator("risk_overrides", mode="before")
    @classmethod
    def parse_risk_overrides(cls, v: Any) -> Any:
        """Accept risk class names as well as integers."""
        if isinstance(v, dict):
            return {str(name): RiskClass.parse(risk) for name, risk in v.items()}
        return v

    @field_serializer("risk_overrides")
    def serialize_risk_overrides(self, v: dict[str, RiskClass]) -> dict[str, str]:
        return {name: str(risk) for name, risk in v.items()}

    @field_validator("mode")
    @classmethod
    def validate_mode(cls, v: PolicyMode) -> PolicyMode:
        """Warn when the auto mode is selected (security check)."""
        if v == PolicyMode.AUTO:
            warnings.warn(
                "Permission mode 'auto' is DANGEROUS: every tool call will be allowed "
                "without confirmation, including calls with detected threats.",
                UserWarning,
                stacklevel=2,
            )
        return v


class AgentConfig(BaseModel):
    """Configuration for the agent loop."""

    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
    )

    max_rounds: int = Field(
        default=25,
        ge=1,
        le=1000,
        description="Maximum model calls per user message before the turn ends with "
        "loop_limit_exceeded",
    )
    max_tool_calls: int = Field(
        default=100,
        ge=1,
        le=10_000,
        description="Maximum tool calls executed per user message",
    )
    system_prompt: str | None = Field(
        default=None,
        description="System prompt prepended to new conversations",
    )


class ToolsConfig(BaseModel):
    """Configuration for the built-in tools.

    Example:
        >>> config = ToolsConfig(shell_timeout=60, blocked_commands=[r"^sudo\\s"])
    """

    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
    )

    shell_timeout: int = Field(
        default=30,
        gt=0,
        le=600,
        description="Timeout for shell commands in seconds (max 10 minutes)",
    )
    blocked_commands: list[str] = Field(
        default_factory=lambda: [
            r":\(\)\{.*:\|:.*\};:",  # fork bomb
            r">\s*/dev/sd[a-z]",  # write to disk devices
            r"^mkfs",  # format filesystem
        ],
        description="Regex patterns for shell commands that are never executed",
    )
    max_read_bytes: int = Field(
        default=1_000_000,
        gt=0,
        description="Maximum bytes returned by read_file",
    )
    max_list_entries: int = Field(
        default=500,
        gt=0,
        description="Maximum entries returned by list_directory",
    )

    @field_validator("blocked_commands")
    @classmethod
    def validate_patterns(cls, v: list[str]) -> list[str]:
        """Ensure every blocked command pattern is a valid regex."""
        import re

        for pattern in v:
            try:
                re.compile(pattern)
            except re.error as e:
                raise ValueError(f"Invalid blocked command pattern {pattern!r}: {e}") from e
        return v


class TelemetryConfig(BaseModel):
    """Configuration for telemetry output."""

    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
    )

    enabled: bool = Field(
        default=True,
        description="Emit telemetry events for permission decisions and agent turns",
    )
    output: Literal["log", "file", "memory"] = Field(
        default="log",
        description="Telemetry backend: 'log' (standard logging), 'file' (JSONL), "
        "'memory' (kept in process)",
    )
    log_file: Path = Field(
        default=Path.home() / ".overseer" / "telemetry.jsonl",
        description="Path of the JSONL file used when output is 'file'",
    )


class SessionConfig(BaseModel):
    """Configuration for session persistence."""

    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
    )

    directory: Path = Field(
        default=Path.home() / ".overseer" / "sessions",
        description="Directory holding session and context files",
    )

    @field_validator("directory", mode="before")
    @classmethod
    def expand_directory(cls, v: Any) -> Any:
        if isinstance(v, str):
            return Path(v).expanduser()
        return v


class OverseerConfig(BaseModel):
    """Root configuration.

    Example:
        >>> config = OverseerConfig()
        >>> config.permissions.mode
        <PolicyMode.SMART_APPROVE: 'smart_approve'>
    """

    model_config = ConfigDict(
        extra="forbid",
        validate_assignment=True,
    )

    permissions: PermissionConfig = Field(default_factory=PermissionConfig)
    agent: AgentConfig = Field(default_factory=AgentConfig)
    tools: ToolsConfig = Field(default_factory=ToolsConfig)
    telemetry: TelemetryConfig = Field(default_factory=TelemetryConfig)
    sessions: SessionConfig = Field(default_factory=SessionConfig)
