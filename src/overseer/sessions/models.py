"""Session metadata models.

A session pairs a :class:`~overseer.models.ConversationContext` with the
metadata needed to find it again: a name, timestamps, tags and counts.
The metadata is stored separately from the transcript so that listing
sessions never loads conversations.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

__all__ = ["Session", "SessionQuery", "SessionSummary"]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Session(BaseModel):
    """Metadata of a persisted conversation."""

    model_config = ConfigDict(extra="forbid", validate_assignment=True)

    id: str = Field(
        default_factory=lambda: uuid.uuid4().hex,
        min_length=1,
        description="Session identifier, shared with the ConversationContext",
    )
    name: str = Field(default="", description="Human-readable session name")
    description: str = Field(default="", description="Optional longer description")
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)
    provider: str | None = Field(
        default=None, description="Name of the model provider used by the session"
    )
    working_directory: str | None = Field(
        default=None, description="Directory tools run in for this session"
    )
    metadata: dict[str, Any] = Field(default_factory=dict)
    tags: list[str] = Field(default_factory=list)
    message_count: int = Field(default=0, ge=0)
    tool_call_count: int = Field(default=0, ge=0)
    is_archived: bool = False

    def touch(self) -> None:
        """Bump ``updated_at`` to now."""
        self.updated_at = _utcnow()

    def summary(self) -> SessionSummary:
        return SessionSummary(
            id=self.id,
            name=self.name,
            created_at=self.created_at,
            updated_at=self.updated_at,
            provider=self.provider,
            tags=list(self.tags),
            message_count=self.message_count,
            is_archived=self.is_archived,
        )


class SessionSummary(BaseModel):
    """Lightweight view of a session returned by ``list``."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    created_at: datetime
    updated_at: datetime
    provider: str | None = None
    tags: list[str] = Field(default_factory=list)
    message_count: int = 0
    is_archived: bool = False


class SessionQuery(BaseModel):
    """Filters for listing sessions.

    Every filter is optional; tags match when the session carries all of
    them, and the search term is matched case-insensitively against name
    and description.
    """

    model_config = ConfigDict(extra="forbid")

    include_archived: bool = False
    provider: str | None = None
    tags: list[str] = Field(default_factory=list)
    created_after: datetime | None = None
    created_before: datetime | None = None
    search_term: str | None = None
    limit: int | None = Field(default=None, ge=1)

    def matches(self, session: Session) -> bool:
        if session.is_archived and not self.include_archived:
            return False
        if self.provider is not None and session.provider != self.provider:
            return False
        if self.tags and not set(self.tags).issubset(session.tags):
            return False
        if self.created_after is not None and session.created_at < self.created_after:
            return False
        if self.created_before is not None and session.created_at > self.created_before:
            return False
        if self.search_term:
            needle = self.search_term.lower()
            haystack = f"{session.name}\n{session.description}".lower()
            if needle not in haystack:
                return False
        return True
