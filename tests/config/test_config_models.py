"""Tests for configuration models."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from overseer.config import (
    AgentConfig,
    OverseerConfig,
    PermissionConfig,
    SessionConfig,
    TelemetryConfig,
    ToolsConfig,
)
from overseer.permissions import PolicyMode, RiskClass


class TestPermissionConfig:
    """PermissionConfig validation."""

    def test_defaults(self) -> None:
        config = PermissionConfig()
        assert config.mode == PolicyMode.SMART_APPROVE
        assert config.auto_approve_read_write is False
        assert config.remember_decisions is True
        assert config.max_remembered_decisions == 100
        assert config.remember_scope == "tool"
        assert config.risk_overrides == {}
        assert config.repetition_threshold == 2

    def test_auto_mode_warns(self) -> None:
        with pytest.warns(UserWarning, match="DANGEROUS"):
            PermissionConfig(mode="auto")

    def test_auto_mode_warns_on_assignment(self) -> None:
        config = PermissionConfig()
        with pytest.warns(UserWarning):
            config.mode = PolicyMode.AUTO

    def test_invalid_mode(self) -> None:
        with pytest.raises(ValidationError):
            PermissionConfig(mode="yolo")

    def test_capacity_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            PermissionConfig(max_remembered_decisions=0)

    def test_risk_overrides_parse_names(self) -> None:
        config = PermissionConfig(risk_overrides={"run_shell": "critical", "read_file": 0})
        assert config.risk_overrides == {
            "run_shell": RiskClass.CRITICAL,
            "read_file": RiskClass.READ_ONLY,
        }

    def test_risk_overrides_serialize_names(self) -> None:
        config = PermissionConfig(risk_overrides={"run_shell": RiskClass.CRITICAL})
        assert config.model_dump(mode="json")["risk_overrides"] == {"run_shell": "critical"}

    def test_unknown_risk_rejected(self) -> None:
        with pytest.raises(ValidationError):
            PermissionConfig(risk_overrides={"run_shell": "harmless"})

    def test_extra_fields_forbidden(self) -> None:
        with pytest.raises(ValidationError):
            PermissionConfig(mdoe="deny")


class TestOtherModels:
    """Agent, tools, telemetry and session settings."""

    def test_agent_limits(self) -> None:
        assert AgentConfig().max_rounds == 25
        assert AgentConfig().max_tool_calls == 100
        with pytest.raises(ValidationError):
            AgentConfig(max_rounds=0)

    def test_blocked_commands_must_be_regex(self) -> None:
        with pytest.raises(ValidationError):
            ToolsConfig(blocked_commands=["(unclosed"])

    def test_telemetry_output(self) -> None:
        assert TelemetryConfig().output == "log"
        with pytest.raises(ValidationError):
            TelemetryConfig(output="kafka")

    def test_session_directory_expanded(self) -> None:
        config = SessionConfig(directory="~/sessions")
        assert config.directory == Path.home() / "sessions"

    def test_root_defaults(self) -> None:
        config = OverseerConfig()
        assert isinstance(config.permissions, PermissionConfig)
        assert isinstance(config.agent, AgentConfig)
