"""Session persistence: metadata plus the stored conversation."""

from overseer.sessions.models import Session, SessionQuery, SessionSummary
from overseer.sessions.store import FileSessionStore, MemorySessionStore, SessionStore

__all__ = [
    "FileSessionStore",
    "MemorySessionStore",
    "Session",
    "SessionQuery",
    "SessionStore",
    "SessionSummary",
]
