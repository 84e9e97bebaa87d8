"""Environment variable settings.

Settings are read from ``OVERSEER_*`` environment variables and an
optional ``.env`` file in the working directory.

Environment Variables:
    OVERSEER_PERMISSION_MODE: Policy mode (auto/ask/smart_approve/deny)
    OVERSEER_AUTO_APPROVE_READ_WRITE: Allow read-write tools under smart_approve
    OVERSEER_REMEMBER_DECISIONS: Honor "remember" answers from the prompt
    OVERSEER_MAX_ROUNDS: Maximum model calls per user message
    OVERSEER_MAX_TOOL_CALLS: Maximum tool calls per user message
    OVERSEER_SHELL_TIMEOUT: Shell tool timeout in seconds
    OVERSEER_TELEMETRY_OUTPUT: Telemetry backend (log/file/memory)
    OVERSEER_TELEMETRY_FILE: JSONL telemetry path
    OVERSEER_SESSION_DIR: Session storage directory
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["EnvSettings", "load_env_settings"]


class EnvSettings(BaseSettings):
    """Settings loaded from the environment.

    Every field is optional; unset fields do not override file config.

    Example:
        >>> settings = EnvSettings(permission_mode="deny")
        >>> settings.permission_mode
        'deny'
    """

    model_config = SettingsConfigDict(
        env_prefix="OVERSEER_",
        env_file=".env",
        extra="ignore",
    )

    permission_mode: str | None = Field(default=None, description="Policy mode")
    auto_approve_read_write: bool | None = Field(
        default=None, description="Allow read-write tools under smart_approve"
    )
    remember_decisions: bool | None = Field(
        default=None, description="Honor remember answers from the prompt"
    )
    max_rounds: int | None = Field(default=None, description="Maximum model calls per turn")
    max_tool_calls: int | None = Field(
        default=None, description="Maximum tool calls per turn"
    )
    shell_timeout: int | None = Field(default=None, description="Shell timeout in seconds")
    telemetry_output: str | None = Field(default=None, description="Telemetry backend")
    telemetry_file: Path | None = Field(default=None, description="JSONL telemetry path")
    session_dir: Path | None = Field(default=None, description="Session directory")


def load_env_settings() -> EnvSettings:
    """Load settings from the environment and ``.env``."""
    return EnvSettings()
