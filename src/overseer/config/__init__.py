"""Configuration models and loading."""

from overseer.config.loader import load_config, save_config
from overseer.config.models import (
    AgentConfig,
    OverseerConfig,
    PermissionConfig,
    SessionConfig,
    TelemetryConfig,
    ToolsConfig,
)

__all__ = [
    "AgentConfig",
    "OverseerConfig",
    "PermissionConfig",
    "SessionConfig",
    "TelemetryConfig",
    "ToolsConfig",
    "load_config",
    "save_config",
]
