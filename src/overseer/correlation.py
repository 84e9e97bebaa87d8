"""Correlation ID management for tracing agent turns.

Each call to the agent loop runs under a turn id stored in a contextvar,
so permission decisions, tool executions and telemetry events emitted
during that turn can be linked together without threading the id through
every signature.

Example:
    >>> from overseer.correlation import set_correlation_id, get_correlation_id
    >>> turn_id = set_correlation_id()  # Generates turn-abc123def456
    >>> get_correlation_id() == turn_id
    True
"""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator

__all__ = [
    "clear_correlation_id",
    "correlation_scope",
    "get_correlation_id",
    "set_correlation_id",
]

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def set_correlation_id(correlation_id: str | None = None) -> str:
    """Set correlation ID for the current context (auto-generate if None).

    Args:
        correlation_id: Existing id, or None to generate a new one

    Returns:
        The correlation ID that was set
    """
    id_ = correlation_id or f"turn-{uuid.uuid4().hex[:12]}"
    _correlation_id.set(id_)
    return id_


def get_correlation_id() -> str | None:
    """Get the current correlation ID, or None if unset."""
    return _correlation_id.get()


def clear_correlation_id() -> None:
    """Clear the correlation ID from the current context."""
    _correlation_id.set(None)


@contextmanager
def correlation_scope(correlation_id: str | None = None) -> Iterator[str]:
    """Run a block under a correlation ID, restoring the previous one after.

    Example:
        >>> with correlation_scope() as turn_id:
        ...     assert get_correlation_id() == turn_id
    """
    previous = _correlation_id.get()
    token = _correlation_id.set(correlation_id or f"turn-{uuid.uuid4().hex[:12]}")
    try:
        yield _correlation_id.get()  # type: ignore[misc]
    finally:
        try:
            _correlation_id.reset(token)
        except ValueError:
            # Closed from another context, e.g. an abandoned async generator
            _correlation_id.set(previous)
