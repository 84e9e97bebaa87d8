"""Session storage protocols and implementations.

Sessions are stored as two JSON documents: the :class:`Session` metadata
and the serialized :class:`ConversationContext`. Listing only reads
metadata.

Key Features:
    - Protocol-based design for flexible storage backends
    - JSON-only serialization
    - Per-session locking for concurrent access safety
    - Atomic file writes (temp file, then rename)

Example:
    >>> store = FileSessionStore("~/.overseer/sessions")
    >>> session = store.create(Session(name="Refactor parser"))
    >>> context = ConversationContext(session_id=session.id)
    >>> store.save_context(session.id, context)
    >>> restored = store.load_context(session.id)
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from pydantic import ValidationError

from overseer.exceptions import SessionError, SessionExistsError, SessionNotFoundError
from overseer.models import ConversationContext, MessageRole
from overseer.sessions.models import Session, SessionQuery, SessionSummary

__all__ = ["FileSessionStore", "MemorySessionStore", "SessionStore"]

logger = logging.getLogger(__name__)


@runtime_checkable
class SessionStore(Protocol):
    """Protocol for session storage backends.

    Implementations must be thread-safe.
    """

    def create(self, session: Session) -> Session:
        """Store a new session.

        Raises:
            SessionExistsError: If a session with the same id exists
        """
        ...

    def get(self, session_id: str) -> Session | None:
        """Return a session, or None if it does not exist."""
        ...

    def update(self, session: Session) -> Session:
        """Replace an existing session, bumping ``updated_at``.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        ...

    def delete(self, session_id: str) -> bool:
        """Delete a session and its context. Returns True if it existed."""
        ...

    def list(self, query: SessionQuery | None = None) -> list[SessionSummary]:
        """Return matching sessions, most recently updated first."""
        ...

    def load_context(self, session_id: str) -> ConversationContext | None:
        """Return the stored conversation, or None if none was saved."""
        ...

    def save_context(self, session_id: str, context: ConversationContext) -> None:
        """Store the conversation of an existing session.

        Raises:
            SessionNotFoundError: If the session does not exist
        """
        ...


def _context_counts(context: ConversationContext) -> tuple[int, int]:
    messages = len(context.messages)
    tool_calls = sum(
        len(m.tool_calls) for m in context.messages if m.role == MessageRole.ASSISTANT
    )
    return messages, tool_calls


def _apply_query(
    sessions: list[Session], query: SessionQuery | None
) -> list[SessionSummary]:
    query = query or SessionQuery()
    matching = [s for s in sessions if query.matches(s)]
    matching.sort(key=lambda s: s.updated_at, reverse=True)
    if query.limit is not None:
        matching = matching[: query.limit]
    return [s.summary() for s in matching]


class _LockingStore:
    """Shared locking, archive and restore logic for the concrete stores."""

    def __init__(self) -> None:
        self._locks: dict[str, threading.Lock] = {}
        self._global_lock = threading.Lock()

    def _lock_for(self, session_id: str) -> threading.Lock:
        with self._global_lock:
            if session_id not in self._locks:
                self._locks[session_id] = threading.Lock()
            return self._locks[session_id]

    def _drop_lock(self, session_id: str) -> None:
        with self._global_lock:
            self._locks.pop(session_id, None)

    def get(self, session_id: str) -> Session | None:  # pragma: no cover
        raise NotImplementedError

    def update(self, session: Session) -> Session:  # pragma: no cover
        raise NotImplementedError

    def _require(self, session_id: str) -> Session:
        session = self.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session '{session_id}' not found")
        return session

    def archive(self, session_id: str) -> Session:
        """Mark a session archived, hiding it from default listings."""
        session = self._require(session_id)
        session.is_archived = True
        return self.update(session)

    def restore(self, session_id: str) -> Session:
        """Un-archive a session."""
        session = self._require(session_id)
        session.is_archived = False
        return self.update(session)


class MemorySessionStore(_LockingStore):
    """In-memory session storage.

    Suitable for tests and single-process hosts. Data is lost when the
    process terminates.

    Example:
        >>> store = MemorySessionStore()
        >>> store.create(Session(id="abc", name="Scratch"))
        >>> store.get("abc").name
        'Scratch'
    """

    def __init__(self) -> None:
        super().__init__()
        self._sessions: dict[str, Session] = {}
        self._contexts: dict[str, dict[str, Any]] = {}

    def create(self, session: Session) -> Session:
        with self._lock_for(session.id):
            if session.id in self._sessions:
                raise SessionExistsError(f"Session '{session.id}' already exists")
            self._sessions[session.id] = session.model_copy(deep=True)
        logger.debug(f"Created session {session.id} in memory")
        return session

    def get(self, session_id: str) -> Session | None:
        with self._lock_for(session_id):
            session = self._sessions.get(session_id)
            return session.model_copy(deep=True) if session is not None else None

    def update(self, session: Session) -> Session:
        with self._lock_for(session.id):
            if session.id not in self._sessions:
                raise SessionNotFoundError(f"Session '{session.id}' not found")
            session.touch()
            self._sessions[session.id] = session.model_copy(deep=True)
        return session

    def delete(self, session_id: str) -> bool:
        with self._lock_for(session_id):
            existed = self._sessions.pop(session_id, None) is not None
            self._contexts.pop(session_id, None)
        self._drop_lock(session_id)
        if existed:
            logger.debug(f"Deleted session {session_id} from memory")
        return existed

    def list(self, query: SessionQuery | None = None) -> list[SessionSummary]:
        with self._global_lock:
            sessions = [s.model_copy(deep=True) for s in self._sessions.values()]
        return _apply_query(sessions, query)

    def load_context(self, session_id: str) -> ConversationContext | None:
        with self._lock_for(session_id):
            data = self._contexts.get(session_id)
        return ConversationContext.from_dict(data) if data is not None else None

    def save_context(self, session_id: str, context: ConversationContext) -> None:
        data = context.to_dict()
        with self._lock_for(session_id):
            session = self._sessions.get(session_id)
            if session is None:
                raise SessionNotFoundError(f"Session '{session_id}' not found")
            self._contexts[session_id] = data
            session.message_count, session.tool_call_count = _context_counts(context)
            session.touch()


class FileSessionStore(_LockingStore):
    """File-based session storage with JSON serialization.

    Stores each session as ``<id>.json`` and its conversation as
    ``<id>.context.json`` in ``storage_dir``. Writes go to a temp file
    that is then renamed over the target, so readers never see a partial
    document.

    Attributes:
        storage_dir: Directory holding the session files

    Security Notes:
        - Session ids containing anything but letters, digits, '_' and '-'
          are rejected, so ids map to files one-to-one and cannot traverse paths
        - Use unguessable session ids (the default is a UUID)
    """

    def __init__(self, storage_dir: str | Path) -> None:
        """Initialize file-based session store.

        Args:
            storage_dir: Directory path for session files

        Raises:
            SessionError: If the directory cannot be created
        """
        super().__init__()
        self.storage_dir = Path(storage_dir).expanduser()
        try:
            self.storage_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise SessionError(f"Failed to create session directory: {e}") from e
        logger.debug(f"Initialized file session store at {self.storage_dir}")

    @staticmethod
    def _safe_id(session_id: str) -> str:
        safe_id = "".join(c for c in session_id if c.isalnum() or c in "_-")
        if not safe_id or safe_id != session_id:
            raise SessionError(
                f"Invalid session id: {session_id!r} "
                "(only letters, digits, '_' and '-' are allowed)"
            )
        return session_id

    def _session_path(self, session_id: str) -> Path:
        return self.storage_dir / f"{self._safe_id(session_id)}.json"

    def _context_path(self, session_id: str) -> Path:
        return self.storage_dir / f"{self._safe_id(session_id)}.context.json"

    def _write(self, path: Path, data: dict[str, Any]) -> None:
        temp_path = path.with_suffix(".tmp")
        try:
            with open(temp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            temp_path.replace(path)
        except (OSError, TypeError, ValueError) as e:
            temp_path.unlink(missing_ok=True)
            raise SessionError(f"Failed to write {path.name}: {e}") from e

    def _read(self, path: Path) -> dict[str, Any] | None:
        if not path.exists():
            return None
        try:
            with open(path, encoding="utf-8") as f:
                data: dict[str, Any] = json.load(f)
        except json.JSONDecodeError as e:
            logger.error(f"Failed to decode {path}: {e}")
            return None
        except OSError as e:
            raise SessionError(f"Failed to read {path.name}: {e}") from e
        return data

    def _read_session(self, path: Path) -> Session | None:
        data = self._read(path)
        if data is None:
            return None
        try:
            return Session.model_validate(data)
        except ValidationError as e:
            logger.error(f"Invalid session file {path}: {e}")
            return None

    def create(self, session: Session) -> Session:
        path = self._session_path(session.id)
        with self._lock_for(session.id):
            if path.exists():
                raise SessionExistsError(f"Session '{session.id}' already exists")
            self._write(path, session.model_dump(mode="json"))
        logger.debug(f"Created session {session.id} at {path}")
        return session

    def get(self, session_id: str) -> Session | None:
        path = self._session_path(session_id)
        with self._lock_for(session_id):
            return self._read_session(path)

    def update(self, session: Session) -> Session:
        path = self._session_path(session.id)
        with self._lock_for(session.id):
            if not path.exists():
                raise SessionNotFoundError(f"Session '{session.id}' not found")
            session.touch()
            self._write(path, session.model_dump(mode="json"))
        return session

    def delete(self, session_id: str) -> bool:
        path = self._session_path(session_id)
        context_path = self._context_path(session_id)
        with self._lock_for(session_id):
            existed = path.exists()
            try:
                path.unlink(missing_ok=True)
                context_path.unlink(missing_ok=True)
            except OSError as e:
                raise SessionError(f"Failed to delete session {session_id}: {e}") from e
        self._drop_lock(session_id)
        if existed:
            logger.debug(f"Deleted session {session_id} from {self.storage_dir}")
        return existed

    def list(self, query: SessionQuery | None = None) -> list[SessionSummary]:
        sessions = []
        for path in self.storage_dir.glob("*.json"):
            if path.name.endswith(".context.json"):
                continue
            session = self._read_session(path)
            if session is not None:
                sessions.append(session)
        return _apply_query(sessions, query)

    def load_context(self, session_id: str) -> ConversationContext | None:
        path = self._context_path(session_id)
        with self._lock_for(session_id):
            data = self._read(path)
        if data is None:
            return None
        try:
            return ConversationContext.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            raise SessionError(f"Corrupt conversation for session {session_id}: {e}") from e

    def save_context(self, session_id: str, context: ConversationContext) -> None:
        path = self._session_path(session_id)
        with self._lock_for(session_id):
            session = self._read_session(path)
            if session is None:
                raise SessionNotFoundError(f"Session '{session_id}' not found")
            self._write(self._context_path(session_id), context.to_dict())
            session.message_count, session.tool_call_count = _context_counts(context)
            session.touch()
            self._write(path, session.model_dump(mode="json"))
        logger.debug(f"Saved conversation for session {session_id}")
