"""Records kept by the memory store.

All timestamps are ISO-8601 UTC strings so records serialise to JSON as-is
and sort chronologically as plain strings.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return uuid.uuid4().hex


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class ProjectStatus(str, Enum):
    ACTIVE = "active"
    ARCHIVED = "archived"
    COMPLETED = "completed"


@dataclass
class Conversation:
    """A thread of messages between the user and the assistant."""

    title: str
    id: str = field(default_factory=_new_id)
    summary: str = ""
    is_archived: bool = False
    metadata: dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)


@dataclass
class Message:
    """One message in a conversation.

    ``tool_used`` names the domain that produced an assistant reply and
    ``tool_result`` holds its JSON-encoded payload.
    """

    conversation_id: str
    role: str
    content: str
    id: str = field(default_factory=_new_id)
    tool_used: str | None = None
    tool_result: str | None = None
    created_at: str = field(default_factory=_now)


@dataclass
class Project:
    name: str
    path: str
    id: str = field(default_factory=_new_id)
    description: str = ""
    tech_stack: list[str] = field(default_factory=list)
    status: str = ProjectStatus.ACTIVE.value
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)


@dataclass
class Knowledge:
    """A remembered fact.  ``importance`` ranges from 1 to 10."""

    category: str
    title: str
    content: str
    id: str = field(default_factory=_new_id)
    source: str = ""
    tags: list[str] = field(default_factory=list)
    importance: int = 5
    created_at: str = field(default_factory=_now)
    updated_at: str = field(default_factory=_now)


@dataclass
class ContextEntry:
    """A keyed value in the context store, optionally expiring."""

    context_type: str
    key: str
    value: Any
    expires_at: str | None = None
    created_at: str = field(default_factory=_now)

    def is_expired(self, now: datetime | None = None) -> bool:
        if not self.expires_at:
            return False
        return datetime.fromisoformat(self.expires_at) <= (now or datetime.now(timezone.utc))


@dataclass(frozen=True, slots=True)
class SearchHit:
    """One result of :meth:`~aide.memory.store.MemoryStore.search`."""

    kind: str
    id: str
    title: str
    content: str
    relevance: float
