"""Built-in tools and the default registry."""

from __future__ import annotations

from overseer.config.models import ToolsConfig
from overseer.permissions.base import RiskClass
from overseer.tools.implementations.files import (
    list_directory,
    read_file,
    set_files_config,
    write_file,
)
from overseer.tools.implementations.shell import run_shell, set_shell_config
from overseer.tools.registry import ToolRegistry

__all__ = [
    "BUILTIN_TOOLS",
    "create_default_registry",
    "list_directory",
    "read_file",
    "run_shell",
    "write_file",
]

BUILTIN_TOOLS = [
    (read_file, RiskClass.READ_ONLY, ["filesystem", "readonly"]),
    (list_directory, RiskClass.READ_ONLY, ["filesystem", "readonly"]),
    (write_file, RiskClass.READ_WRITE, ["filesystem"]),
    (run_shell, RiskClass.DESTRUCTIVE, ["shell"]),
]


def create_default_registry(config: ToolsConfig | None = None) -> ToolRegistry:
    """Create a registry holding the built-in tools.

    Args:
        config: Settings for the built-in tools

    Returns:
        ToolRegistry with read_file, list_directory, write_file and run_shell
    """
    config = config or ToolsConfig()
    set_files_config(config)
    set_shell_config(config)

    registry = ToolRegistry()
    for tool, risk, tags in BUILTIN_TOOLS:
        registry.register(tool, risk_level=risk, tags=tags)
    return registry
