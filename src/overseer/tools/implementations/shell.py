"""Shell command execution tool.

Runs commands through ``/bin/bash -c`` in the working directory of the
current tool context, with a configurable timeout and a list of command
patterns that are never executed regardless of permission decisions.
"""

from __future__ import annotations

import os
import re
import subprocess
from pathlib import Path

from langchain_core.tools import tool

from overseer.config.models import ToolsConfig
from overseer.exceptions import ToolExecutionError
from overseer.tools.base import current_tool_context

_TOOL_CONFIG: ToolsConfig | None = None


def set_shell_config(config: ToolsConfig) -> None:
    """Set the module-level config used by run_shell."""
    global _TOOL_CONFIG
    _TOOL_CONFIG = config


def get_shell_config() -> ToolsConfig:
    """Return the configured ToolsConfig, or a default instance if unset."""
    return _TOOL_CONFIG if _TOOL_CONFIG is not None else ToolsConfig()


def check_blocked(command: str, config: ToolsConfig) -> None:
    """Raise if the command matches a blocked pattern.

    Raises:
        ToolExecutionError: If the command is blocked

    Example:
        >>> check_blocked("ls -la", ToolsConfig())  # OK
        >>> check_blocked(":(){:|:&};:", ToolsConfig())  # Raises
    """
    for pattern in config.blocked_commands:
        if re.search(pattern, command, re.IGNORECASE):
            raise ToolExecutionError(f"Command blocked: matches pattern '{pattern}'")


def _run_command(
    command: str,
    timeout: int,
    working_directory: str,
    environment: dict[str, str],
) -> tuple[str, str, int]:
    """Run a command with /bin/bash and capture its output.

    Returns:
        Tuple of (stdout, stderr, exit_code)

    Raises:
        ToolExecutionError: If the directory is invalid, the command
            times out, or the process cannot be started
    """
    cwd = Path(working_directory)
    if not cwd.is_dir():
        raise ToolExecutionError(f"Working directory does not exist: {working_directory}")

    env = {**os.environ, **environment} if environment else None
    try:
        result = subprocess.run(
            ["/bin/bash", "-c", command],
            capture_output=True,
            text=True,
            timeout=timeout,
            cwd=str(cwd),
            env=env,
        )
    except subprocess.TimeoutExpired as e:
        raise ToolExecutionError(
            f"Command timed out after {timeout} seconds: {command}"
        ) from e
    except OSError as e:
        raise ToolExecutionError(f"Failed to execute command: {e}") from e
    return result.stdout, result.stderr, result.returncode


@tool  # type: ignore[misc]
def run_shell(command: str, timeout: int | None = None) -> str:
    """Execute a shell command and return its output.

    Args:
        command: The bash command to execute
        timeout: Optional timeout in seconds (default from config)

    Returns:
        Standard output of the command, followed by standard error if any.
    """
    config = get_shell_config()
    check_blocked(command, config)

    context = current_tool_context()
    actual_timeout = timeout if timeout is not None else config.shell_timeout
    stdout, stderr, exit_code = _run_command(
        command,
        actual_timeout,
        context.working_directory,
        context.environment,
    )

    if exit_code != 0:
        detail = stderr.strip() or stdout.strip() or "(no output)"
        raise ToolExecutionError(f"Command failed with exit code {exit_code}:\n{detail}")

    output = stdout
    if stderr.strip():
        output = f"{stdout}\n[stderr]\n{stderr}" if stdout else f"[stderr]\n{stderr}"
    return output or "(no output)"
