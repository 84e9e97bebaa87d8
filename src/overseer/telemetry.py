"""Telemetry for permission decisions and agent turns.

Provides pluggable, fire-and-forget telemetry backends. Emitting an event
never blocks the turn and never raises: backends swallow their own
failures, and callers go through :func:`safe_track` and
:func:`safe_increment` so that a misbehaving custom backend cannot abort
tool execution either.

Example (JSONL file):
    >>> from pathlib import Path
    >>> telemetry = JsonlTelemetry(Path.home() / ".overseer" / "telemetry.jsonl")
    >>> telemetry.track_event("permission.decision", {"tool": "run_shell"})

Example (custom backend):
    >>> class StatsdTelemetry:
    ...     def track_event(self, name, attributes=None): ...
    ...     def increment_counter(self, name, value=1, tags=None):
    ...         statsd.incr(name, value)
    ...     def record_metric(self, name, value, tags=None):
    ...         statsd.gauge(name, value)
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from collections import defaultdict
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

from overseer.correlation import get_correlation_id

if TYPE_CHECKING:
    from overseer.config.models import TelemetryConfig

logger = logging.getLogger(__name__)

__all__ = [
    "InMemoryTelemetry",
    "JsonlTelemetry",
    "LoggingTelemetry",
    "NullTelemetry",
    "Telemetry",
    "TelemetryEvent",
    "create_telemetry",
    "safe_increment",
    "safe_metric",
    "safe_track",
]


@dataclass
class TelemetryEvent:
    """A named telemetry event with an attribute map.

    Attributes:
        name: Event name, e.g. ``permission.decision``
        attributes: Event attributes
        timestamp: Event timestamp (UTC)
        correlation_id: Turn id active when the event was created
    """

    name: str
    attributes: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    correlation_id: str | None = field(default_factory=get_correlation_id)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp"] = self.timestamp.isoformat()
        return data


@runtime_checkable
class Telemetry(Protocol):
    """Protocol for telemetry backends.

    Implementations should not raise; errors are handled internally.
    """

    def track_event(self, name: str, attributes: dict[str, Any] | None = None) -> None:
        """Record a named event."""
        ...

    def increment_counter(
        self, name: str, value: int = 1, tags: dict[str, str] | None = None
    ) -> None:
        """Increment a named counter."""
        ...

    def record_metric(
        self, name: str, value: float, tags: dict[str, str] | None = None
    ) -> None:
        """Record a numeric measurement."""
        ...


class NullTelemetry:
    """Telemetry backend that discards everything."""

    def track_event(self, name: str, attributes: dict[str, Any] | None = None) -> None:
        pass

    def increment_counter(
        self, name: str, value: int = 1, tags: dict[str, str] | None = None
    ) -> None:
        pass

    def record_metric(
        self, name: str, value: float, tags: dict[str, str] | None = None
    ) -> None:
        pass


def _counter_key(name: str, tags: dict[str, str] | None) -> str:
    if not tags:
        return name
    rendered = ",".join(f"{k}={v}" for k, v in sorted(tags.items()))
    return f"{name}[{rendered}]"


class InMemoryTelemetry:
    """Telemetry backend that keeps everything in memory.

    Useful for tests and for hosts that want to inspect what happened
    during a turn.

    Example:
        >>> telemetry = InMemoryTelemetry()
        >>> telemetry.increment_counter("permission.allow")
        >>> telemetry.counters["permission.allow"]
        1
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.events: list[TelemetryEvent] = []
        self.counters: dict[str, int] = defaultdict(int)
        self.metrics: dict[str, list[float]] = defaultdict(list)

    def track_event(self, name: str, attributes: dict[str, Any] | None = None) -> None:
        with self._lock:
            self.events.append(TelemetryEvent(name=name, attributes=dict(attributes or {})))

    def increment_counter(
        self, name: str, value: int = 1, tags: dict[str, str] | None = None
    ) -> None:
        with self._lock:
            self.counters[_counter_key(name, tags)] += value

    def record_metric(
        self, name: str, value: float, tags: dict[str, str] | None = None
    ) -> None:
        with self._lock:
            self.metrics[_counter_key(name, tags)].append(value)

    def events_named(self, name: str) -> list[TelemetryEvent]:
        """Return recorded events with the given name, oldest first."""
        with self._lock:
            return [event for event in self.events if event.name == name]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()
            self.counters.clear()
            self.metrics.clear()


class LoggingTelemetry:
    """Telemetry backend that writes events to the standard logger."""

    def __init__(self, level: int = logging.INFO) -> None:
        self.level = level

    def track_event(self, name: str, attributes: dict[str, Any] | None = None) -> None:
        event = TelemetryEvent(name=name, attributes=dict(attributes or {}))
        logger.log(self.level, f"event {name} {json.dumps(event.to_dict(), default=str)}")

    def increment_counter(
        self, name: str, value: int = 1, tags: dict[str, str] | None = None
    ) -> None:
        logger.log(self.level, f"counter {_counter_key(name, tags)} += {value}")

    def record_metric(
        self, name: str, value: float, tags: dict[str, str] | None = None
    ) -> None:
        logger.log(self.level, f"metric {_counter_key(name, tags)} = {value}")


class JsonlTelemetry:
    """File-based telemetry using JSONL format.

    Appends one JSON object per line. Inside a running event loop the
    write is handed to the default executor and not awaited; outside one
    it happens inline. Write failures are logged and otherwise ignored.

    Example:
        >>> telemetry = JsonlTelemetry(Path("telemetry.jsonl"))
        >>> telemetry.track_event("agent.turn.completed", {"rounds": 2})
    """

    def __init__(self, log_file: Path | str) -> None:
        self.log_file = Path(log_file).expanduser()
        self._lock = threading.Lock()

    def _write_sync(self, line: str) -> None:
        try:
            with self._lock:
                self.log_file.parent.mkdir(parents=True, exist_ok=True)
                with self.log_file.open("a", encoding="utf-8") as f:
                    f.write(line + "\n")
        except OSError as e:
            logger.warning(f"Telemetry write to {self.log_file} failed: {e}")

    def _emit(self, record: dict[str, Any]) -> None:
        try:
            line = json.dumps(record, default=str)
        except (TypeError, ValueError) as e:
            logger.warning(f"Telemetry record could not be serialized: {e}")
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._write_sync(line)
            return
        loop.run_in_executor(None, self._write_sync, line)

    def track_event(self, name: str, attributes: dict[str, Any] | None = None) -> None:
        event = TelemetryEvent(name=name, attributes=dict(attributes or {}))
        self._emit({"type": "event", **event.to_dict()})

    def increment_counter(
        self, name: str, value: int = 1, tags: dict[str, str] | None = None
    ) -> None:
        self._emit({"type": "counter", "name": name, "value": value, "tags": tags or {}})

    def record_metric(
        self, name: str, value: float, tags: dict[str, str] | None = None
    ) -> None:
        self._emit({"type": "metric", "name": name, "value": value, "tags": tags or {}})


def safe_track(
    telemetry: Telemetry | None, name: str, attributes: dict[str, Any] | None = None
) -> None:
    """Emit an event, ignoring any failure of the backend."""
    if telemetry is None:
        return
    try:
        telemetry.track_event(name, attributes)
    except Exception as e:
        logger.debug(f"Telemetry backend failed on event {name}: {e}")


def safe_increment(
    telemetry: Telemetry | None,
    name: str,
    value: int = 1,
    tags: dict[str, str] | None = None,
) -> None:
    """Increment a counter, ignoring any failure of the backend."""
    if telemetry is None:
        return
    try:
        telemetry.increment_counter(name, value, tags)
    except Exception as e:
        logger.debug(f"Telemetry backend failed on counter {name}: {e}")


def safe_metric(
    telemetry: Telemetry | None,
    name: str,
    value: float,
    tags: dict[str, str] | None = None,
) -> None:
    """Record a metric, ignoring any failure of the backend."""
    if telemetry is None:
        return
    try:
        telemetry.record_metric(name, value, tags)
    except Exception as e:
        logger.debug(f"Telemetry backend failed on metric {name}: {e}")


def create_telemetry(config: TelemetryConfig | None) -> Telemetry:
    """Build the telemetry backend described by a TelemetryConfig.

    Args:
        config: Telemetry configuration, or None for no telemetry

    Returns:
        NullTelemetry when disabled, otherwise the configured backend
    """
    if config is None or not config.enabled:
        return NullTelemetry()
    if config.output == "file":
        return JsonlTelemetry(config.log_file)
    if config.output == "memory":
        return InMemoryTelemetry()
    return LoggingTelemetry()
