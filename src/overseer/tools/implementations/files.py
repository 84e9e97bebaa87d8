"""File system tools: read, write and list.

Relative paths resolve against the working directory of the current tool
context, so each session can run in its own directory.
"""

from __future__ import annotations

from pathlib import Path

from langchain_core.tools import tool

from overseer.config.models import ToolsConfig
from overseer.exceptions import ToolExecutionError
from overseer.tools.base import current_tool_context

_TOOL_CONFIG: ToolsConfig | None = None


def set_files_config(config: ToolsConfig) -> None:
    """Set the module-level config used by the file tools."""
    global _TOOL_CONFIG
    _TOOL_CONFIG = config


def get_files_config() -> ToolsConfig:
    """Return the configured ToolsConfig, or a default instance if unset."""
    return _TOOL_CONFIG if _TOOL_CONFIG is not None else ToolsConfig()


def resolve_path(path: str) -> Path:
    """Resolve a user-supplied path against the current working directory.

    Args:
        path: Absolute, home-relative or relative path

    Returns:
        Absolute Path
    """
    candidate = Path(path).expanduser()
    if not candidate.is_absolute():
        candidate = Path(current_tool_context().working_directory) / candidate
    return candidate.resolve()


def _is_binary_file(path: Path) -> bool:
    """Check if a file is likely binary by looking for null bytes."""
    with path.open("rb") as f:
        return b"\x00" in f.read(8192)


@tool  # type: ignore[misc]
def read_file(path: str, offset: int = 1, limit: int | None = None) -> str:
    """Read a text file and return its contents with line numbers.

    Args:
        path: Path of the file to read
        offset: First line to return (1-based)
        limit: Maximum number of lines to return

    Returns:
        File contents, one numbered line per line (cat -n style).
    """
    config = get_files_config()
    file_path = resolve_path(path)

    if not file_path.exists():
        raise ToolExecutionError(f"File not found: {path}")
    if not file_path.is_file():
        raise ToolExecutionError(f"Not a file: {path}")
    if offset < 1:
        raise ToolExecutionError("offset must be 1 or greater")

    try:
        if _is_binary_file(file_path):
            raise ToolExecutionError(f"Cannot read binary file: {path}")
        with file_path.open("r", encoding="utf-8", errors="replace") as f:
            text = f.read(config.max_read_bytes + 1)
    except OSError as e:
        raise ToolExecutionError(f"Cannot read {path}: {e}") from e

    truncated = len(text) > config.max_read_bytes
    lines = text[: config.max_read_bytes].splitlines()
    end = len(lines) if limit is None else min(len(lines), offset - 1 + limit)
    selected = lines[offset - 1 : end]

    if not selected:
        return "(empty file)" if not lines else f"(no lines at offset {offset})"

    width = len(str(end))
    rendered = "\n".join(
        f"{number:>{width}}\t{line}" for number, line in enumerate(selected, start=offset)
    )
    if truncated:
        rendered += f"\n... (truncated at {config.max_read_bytes} bytes)"
    return rendered


@tool  # type: ignore[misc]
def write_file(path: str, content: str, append: bool = False) -> str:
    """Write text to a file, creating parent directories as needed.

    Args:
        path: Path of the file to write
        content: Text to write
        append: Append instead of overwriting

    Returns:
        Confirmation with the number of characters written.
    """
    file_path = resolve_path(path)
    if file_path.is_dir():
        raise ToolExecutionError(f"Path is a directory: {path}")

    try:
        file_path.parent.mkdir(parents=True, exist_ok=True)
        with file_path.open("a" if append else "w", encoding="utf-8") as f:
            f.write(content)
    except OSError as e:
        raise ToolExecutionError(f"Cannot write {path}: {e}") from e

    action = "Appended" if append else "Wrote"
    return f"{action} {len(content)} characters to {file_path}"


@tool  # type: ignore[misc]
def list_directory(path: str = ".", show_hidden: bool = False) -> str:
    """List the entries of a directory.

    Args:
        path: Directory to list (default: working directory)
        show_hidden: Include entries starting with a dot

    Returns:
        One entry per line, directories suffixed with '/'.
    """
    config = get_files_config()
    dir_path = resolve_path(path)

    if not dir_path.exists():
        raise ToolExecutionError(f"Directory not found: {path}")
    if not dir_path.is_dir():
        raise ToolExecutionError(f"Not a directory: {path}")

    try:
        entries = sorted(dir_path.iterdir(), key=lambda p: p.name)
    except OSError as e:
        raise ToolExecutionError(f"Cannot list {path}: {e}") from e

    names = [
        f"{entry.name}/" if entry.is_dir() else entry.name
        for entry in entries
        if show_hidden or not entry.name.startswith(".")
    ]
    if not names:
        return "(empty directory)"

    if len(names) > config.max_list_entries:
        hidden = len(names) - config.max_list_entries
        names = names[: config.max_list_entries] + [f"... ({hidden} more entries)"]
    return "\n".join(names)
