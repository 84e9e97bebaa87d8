"""Configuration loader with YAML support and precedence handling.

Precedence order (lowest to highest):
1. Defaults (model field defaults)
2. Global config (~/.overseer/config.yaml)
3. Project config (.overseer/config.yaml, searched upward from cwd)
4. Environment variables (OVERSEER_*)
5. Explicit overrides (passed as argument)
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from overseer.config.env import EnvSettings, load_env_settings
from overseer.config.models import OverseerConfig
from overseer.exceptions import ConfigError

__all__ = [
    "deep_merge",
    "find_config_files",
    "find_project_config",
    "load_config",
    "load_env_config",
    "load_yaml_config",
    "merge_configs",
    "save_config",
]

CONFIG_DIR_NAME = ".overseer"
CONFIG_FILE_NAME = "config.yaml"


def find_config_files() -> tuple[Path | None, Path | None]:
    """Find global and project config files.

    Returns:
        Tuple of (global_config_path, project_config_path).
        Either or both may be None if not found.
    """
    global_config_path = Path.home() / CONFIG_DIR_NAME / CONFIG_FILE_NAME
    global_config: Path | None = (
        global_config_path if global_config_path.exists() else None
    )
    return global_config, find_project_config()


def find_project_config(start: Path | None = None) -> Path | None:
    """Find project-specific config by walking up the directory tree.

    Searches for ``.overseer/config.yaml`` starting at ``start`` (default
    cwd) and stops at the git root or the filesystem root. The global
    config in the home directory is never returned as a project config.

    Returns:
        Path to project config file, or None if not found.
    """
    current = (start or Path.cwd()).resolve()
    home = Path.home().resolve()

    while True:
        config_path = current / CONFIG_DIR_NAME / CONFIG_FILE_NAME
        if current != home and config_path.exists():
            return config_path

        if (current / ".git").exists():
            break

        parent = current.parent
        if parent == current:
            break
        current = parent

    return None


def load_yaml_config(path: Path) -> dict[str, Any]:
    """Load and parse a YAML config file.

    Args:
        path: Path to YAML config file.

    Returns:
        Parsed configuration dictionary, or empty dict if the file doesn't exist.

    Raises:
        ConfigError: If the YAML is invalid, not a mapping, or unreadable.
    """
    if not path or not path.exists():
        return {}

    try:
        with path.open("r", encoding="utf-8") as f:
            content = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e}") from e

    if content is None:
        return {}
    if not isinstance(content, dict):
        raise ConfigError(
            f"Config file {path} must contain a YAML mapping, got {type(content).__name__}"
        )
    return content


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries.

    Nested dicts are merged recursively; lists and other values from
    ``override`` replace those in ``base``.
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def merge_configs(*configs: dict[str, Any] | None) -> dict[str, Any]:
    """Merge config dictionaries from lowest to highest precedence."""
    result: dict[str, Any] = {}
    for config in configs:
        if config:
            result = deep_merge(result, config)
    return result


def load_env_config(env_settings: EnvSettings | None = None) -> dict[str, Any]:
    """Convert ``OVERSEER_*`` settings into a config dictionary for merging.

    Args:
        env_settings: Optional settings instance. If None, loads fresh settings.

    Returns:
        Nested configuration dictionary containing only the variables that are set.
    """
    if env_settings is None:
        env_settings = load_env_settings()

    mapping = {
        "permission_mode": ("permissions", "mode"),
        "auto_approve_read_write": ("permissions", "auto_approve_read_write"),
        "remember_decisions": ("permissions", "remember_decisions"),
        "max_rounds": ("agent", "max_rounds"),
        "max_tool_calls": ("agent", "max_tool_calls"),
        "shell_timeout": ("tools", "shell_timeout"),
        "telemetry_output": ("telemetry", "output"),
        "telemetry_file": ("telemetry", "log_file"),
        "session_dir": ("sessions", "directory"),
    }

    env_config: dict[str, Any] = {}
    for field_name, (section, key) in mapping.items():
        value = getattr(env_settings, field_name)
        if value is not None:
            env_config.setdefault(section, {})[key] = value
    return env_config


def load_config(
    global_config_path: Path | None = None,
    project_config_path: Path | None = None,
    overrides: dict[str, Any] | None = None,
    env_settings: EnvSettings | None = None,
) -> OverseerConfig:
    """Load and merge configuration from all sources.

    Args:
        global_config_path: Optional path to the global config file.
            If None, the default location is used when it exists.
        project_config_path: Optional path to the project config file.
            If None, searches upward from cwd.
        overrides: Highest-precedence overrides, e.g. from a host application.
        env_settings: Optional pre-loaded environment settings.

    Returns:
        Validated OverseerConfig instance.

    Raises:
        ConfigError: If a file is invalid or the merged config fails validation.
    """
    if global_config_path is None or project_config_path is None:
        found_global, found_project = find_config_files()
        if global_config_path is None:
            global_config_path = found_global
        if project_config_path is None:
            project_config_path = found_project

    global_config = load_yaml_config(global_config_path) if global_config_path else {}
    project_config = (
        load_yaml_config(project_config_path) if project_config_path else {}
    )
    env_config = load_env_config(env_settings)

    merged = merge_configs(global_config, project_config, env_config, overrides)

    try:
        return OverseerConfig(**merged)
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}") from e


def save_config(config: OverseerConfig, path: Path) -> None:
    """Save configuration to a YAML file.

    Raises:
        ConfigError: If the file cannot be written.
    """
    config_dict = config.model_dump(mode="json")

    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        with path.open("w", encoding="utf-8") as f:
            yaml.safe_dump(
                config_dict,
                f,
                default_flow_style=False,
                sort_keys=False,
                allow_unicode=True,
            )
    except OSError as e:
        raise ConfigError(f"Cannot write config file {path}: {e}") from e
