"""Storage of remembered permission decisions.

Decisions are kept per session, keyed by tool name and optionally by an
argument fingerprint. Each session holds at most ``capacity`` entries;
when a save would exceed it, the least recently used entry is evicted.

Thread-safe: every session has its own lock, and a global lock guards
only the creation and removal of sessions, so concurrent turns in
different sessions never contend on the same lock for long.

Example:
    >>> store = DecisionStore(capacity=100)
    >>> store.save("session-1", "write_file", PermissionDecision.ALLOW)
    >>> store.get("session-1", "write_file")
    <PermissionDecision.ALLOW: 'allow'>
    >>> store.get("session-2", "write_file") is None
    True
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict

from overseer.permissions.base import PermissionDecision

__all__ = ["DecisionStore"]

logger = logging.getLogger(__name__)

_Key = tuple[str, str | None]


def _render_key(key: _Key) -> str:
    tool_name, fingerprint = key
    return tool_name if fingerprint is None else f"{tool_name}#{fingerprint}"


class DecisionStore:
    """In-memory, capacity-bounded store of remembered decisions.

    Attributes:
        capacity: Maximum remembered decisions per session
    """

    def __init__(self, capacity: int = 100) -> None:
        """Initialize the store.

        Args:
            capacity: Maximum remembered decisions per session

        Raises:
            ValueError: If capacity is less than 1
        """
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._sessions: dict[str, OrderedDict[_Key, PermissionDecision]] = {}
        self._locks: dict[str, threading.Lock] = {}
        self._global_lock = threading.Lock()

    def _session(self, session_id: str, create: bool):
        with self._global_lock:
            entries = self._sessions.get(session_id)
            if entries is None:
                if not create:
                    return None, None
                entries = self._sessions[session_id] = OrderedDict()
            lock = self._locks.setdefault(session_id, threading.Lock())
        return entries, lock

    def save(
        self,
        session_id: str,
        tool_name: str,
        decision: PermissionDecision,
        fingerprint: str | None = None,
    ) -> None:
        """Remember a decision.

        Args:
            session_id: Session the decision belongs to
            tool_name: Tool the decision applies to
            decision: ALLOW or DENY
            fingerprint: Argument fingerprint when remembering per arguments

        Raises:
            ValueError: If decision is ASK
        """
        decision = PermissionDecision(decision)
        if decision == PermissionDecision.ASK:
            raise ValueError("ASK is not a storable decision")

        entries, lock = self._session(session_id, create=True)
        key = (tool_name, fingerprint)
        with lock:
            entries[key] = decision
            entries.move_to_end(key)
            while len(entries) > self.capacity:
                evicted, _ = entries.popitem(last=False)
                logger.debug(
                    f"Evicted remembered decision for '{_render_key(evicted)}' "
                    f"in session {session_id}"
                )
        logger.debug(f"Remembered {decision} for '{tool_name}' in session {session_id}")

    def get(
        self,
        session_id: str,
        tool_name: str,
        fingerprint: str | None = None,
    ) -> PermissionDecision | None:
        """Return a remembered decision, refreshing its recency.

        Returns:
            The decision, or None if nothing is remembered
        """
        entries, lock = self._session(session_id, create=False)
        if entries is None:
            return None
        key = (tool_name, fingerprint)
        with lock:
            decision = entries.get(key)
            if decision is not None:
                entries.move_to_end(key)
            return decision

    def get_all(self, session_id: str) -> dict[str, PermissionDecision]:
        """Return every remembered decision of a session, oldest first.

        Keys are tool names, suffixed with ``#<fingerprint>`` for
        argument-scoped entries.
        """
        entries, lock = self._session(session_id, create=False)
        if entries is None:
            return {}
        with lock:
            return {_render_key(key): decision for key, decision in entries.items()}

    def revoke(self, session_id: str, tool_name: str) -> bool:
        """Forget every decision for a tool in a session.

        Returns:
            True if anything was removed
        """
        entries, lock = self._session(session_id, create=False)
        if entries is None:
            return False
        with lock:
            doomed = [key for key in entries if key[0] == tool_name]
            for key in doomed:
                del entries[key]
        if doomed:
            logger.debug(f"Revoked decisions for '{tool_name}' in session {session_id}")
        return bool(doomed)

    def clear(self, session_id: str) -> None:
        """Forget every decision of a session."""
        with self._global_lock:
            entries = self._sessions.pop(session_id, None)
            lock = self._locks.pop(session_id, None)
        if entries is not None and lock is not None:
            with lock:
                entries.clear()
            logger.debug(f"Cleared remembered decisions for session {session_id}")

    def sessions(self) -> list[str]:
        """Return ids of sessions with remembered decisions."""
        with self._global_lock:
            return [sid for sid, entries in self._sessions.items() if entries]

    def __len__(self) -> int:
        with self._global_lock:
            return sum(len(entries) for entries in self._sessions.values())

    def __repr__(self) -> str:
        return f"DecisionStore(capacity={self.capacity}, sessions={len(self.sessions())})"
