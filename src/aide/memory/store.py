"""Durable memory for the assistant.

The :class:`MemoryStore` keeps conversations, messages, projects, knowledge,
preferences and expiring context entries.  It is Redis-backed and falls back
to process memory when Redis is unreachable, so the assistant keeps working
(without persistence across restarts) on a machine with no Redis running.

Redis layout (all values are JSON):

- ``aide:conversation:<id>`` plus the index set ``aide:conversations``
- ``aide:messages:<conversation id>``: list, oldest first
- ``aide:messages:recent``: list of the latest messages across conversations
- ``aide:project:<id>`` plus the index set ``aide:projects``
- ``aide:knowledge:<id>`` plus the index set ``aide:knowledge``
- ``aide:preferences``: hash of preference key to JSON value
- ``aide:context:<type>:<key>``: context entry, expiring with the entry

Usage::

    store = MemoryStore(redis_url="redis://localhost:6379/0")
    await store.connect()

    conv = await store.create_conversation("Release prep")
    await store.add_message(conv.id, "user", "Tag v2.1 tonight")
    facts = await store.search_knowledge("release")
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from aide.memory.entities import (
    ContextEntry,
    Conversation,
    Knowledge,
    Message,
    Project,
    SearchHit,
)

log = logging.getLogger(__name__)

# Redis key prefixes
_CONVERSATION_PREFIX = "aide:conversation:"
_CONVERSATION_INDEX = "aide:conversations"
_MESSAGES_PREFIX = "aide:messages:"
_RECENT_MESSAGES = "aide:messages:recent"
_PROJECT_PREFIX = "aide:project:"
_PROJECT_INDEX = "aide:projects"
_KNOWLEDGE_PREFIX = "aide:knowledge:"
_KNOWLEDGE_INDEX = "aide:knowledge"
_PREFERENCES = "aide:preferences"
_CONTEXT_PREFIX = "aide:context:"

# Cross-conversation message history kept for context without a conversation.
_RECENT_MESSAGES_MAX = 500

_PROJECT_MATCH_RELEVANCE = 0.7


def _matches(query: str, *fields: str) -> bool:
    needle = query.casefold()
    return any(needle in (value or "").casefold() for value in fields)


def _knowledge_rank(item: Knowledge) -> tuple[int, str]:
    return (-item.importance, item.created_at)


class MemoryStore:
    """Redis-backed store for everything the assistant remembers.

    Falls back to in-memory storage when Redis is unavailable, logging a
    warning on the failed connection attempt.

    Args:
        redis_url: Redis connection string.
    """

    def __init__(self, redis_url: str = "redis://localhost:6379/0") -> None:
        self._redis_url = redis_url
        self._redis: Any = None  # redis.asyncio.Redis instance
        self._connected: bool = False

        # In-memory fallback
        self._mem_conversations: dict[str, Conversation] = {}
        self._mem_messages: dict[str, list[Message]] = {}
        self._mem_recent: list[Message] = []
        self._mem_projects: dict[str, Project] = {}
        self._mem_knowledge: dict[str, Knowledge] = {}
        self._mem_preferences: dict[str, Any] = {}
        self._mem_context: dict[tuple[str, str], ContextEntry] = {}

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    async def connect(self) -> bool:
        """Attempt to connect to Redis.  Returns ``True`` on success."""
        try:
            self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
            await self._redis.ping()
            self._connected = True
            log.info("MemoryStore connected to Redis at %s", self._redis_url)
            return True
        except (RedisError, OSError, ValueError) as exc:
            log.warning(
                "MemoryStore Redis connection failed (%s); using in-memory fallback.",
                exc,
            )
            self._redis = None
            self._connected = False
            return False

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def backend(self) -> str:
        return "redis" if self._connected else "memory"

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        self._connected = False

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def create_conversation(
        self, title: str, metadata: dict[str, Any] | None = None
    ) -> Conversation:
        conversation = Conversation(title=title, metadata=dict(metadata or {}))
        await self._save_conversation(conversation)
        log.info("Conversation created: %s (%s)", conversation.id, title)
        return conversation

    async def _save_conversation(self, conversation: Conversation) -> None:
        if self._connected:
            await self._redis.set(
                f"{_CONVERSATION_PREFIX}{conversation.id}",
                json.dumps(asdict(conversation)),
            )
            await self._redis.sadd(_CONVERSATION_INDEX, conversation.id)
        else:
            self._mem_conversations[conversation.id] = conversation

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        if self._connected:
            raw = await self._redis.get(f"{_CONVERSATION_PREFIX}{conversation_id}")
            if raw is None:
                return None
            return Conversation(**json.loads(raw))
        return self._mem_conversations.get(conversation_id)

    async def list_conversations(
        self, limit: int = 50, include_archived: bool = False
    ) -> list[Conversation]:
        """Return conversations, most recently updated first."""
        if self._connected:
            ids = await self._redis.smembers(_CONVERSATION_INDEX)
            conversations = [c for c in [await self.get_conversation(i) for i in ids] if c]
        else:
            conversations = list(self._mem_conversations.values())
        if not include_archived:
            conversations = [c for c in conversations if not c.is_archived]
        conversations.sort(key=lambda c: (c.updated_at, c.id), reverse=True)
        return conversations[:limit]

    async def update_conversation(self, conversation_id: str, **fields: Any) -> bool:
        """Update specific fields on a conversation.  Returns ``True`` on success."""
        conversation = await self.get_conversation(conversation_id)
        if conversation is None:
            return False
        for key, value in fields.items():
            if hasattr(conversation, key) and key not in ("id", "created_at"):
                setattr(conversation, key, value)
        conversation.updated_at = datetime.now(timezone.utc).isoformat()
        await self._save_conversation(conversation)
        return True

    async def delete_conversation(self, conversation_id: str) -> bool:
        """Delete a conversation and its messages."""
        if self._connected:
            removed = await self._redis.delete(f"{_CONVERSATION_PREFIX}{conversation_id}")
            await self._redis.srem(_CONVERSATION_INDEX, conversation_id)
            await self._redis.delete(f"{_MESSAGES_PREFIX}{conversation_id}")
            for raw in await self._redis.lrange(_RECENT_MESSAGES, 0, -1):
                if json.loads(raw).get("conversation_id") == conversation_id:
                    await self._redis.lrem(_RECENT_MESSAGES, 0, raw)
            return bool(removed)

        existed = self._mem_conversations.pop(conversation_id, None) is not None
        self._mem_messages.pop(conversation_id, None)
        self._mem_recent = [m for m in self._mem_recent if m.conversation_id != conversation_id]
        return existed

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def add_message(
        self,
        conversation_id: str,
        role: str,
        content: str,
        tool_used: str | None = None,
        tool_result: str | None = None,
    ) -> Message:
        """Append a message and bump the conversation's ``updated_at``."""
        message = Message(
            conversation_id=conversation_id,
            role=role,
            content=content,
            tool_used=tool_used,
            tool_result=tool_result,
        )
        if self._connected:
            payload = json.dumps(asdict(message))
            await self._redis.rpush(f"{_MESSAGES_PREFIX}{conversation_id}", payload)
            await self._redis.rpush(_RECENT_MESSAGES, payload)
            await self._redis.ltrim(_RECENT_MESSAGES, -_RECENT_MESSAGES_MAX, -1)
        else:
            self._mem_messages.setdefault(conversation_id, []).append(message)
            self._mem_recent.append(message)
            if len(self._mem_recent) > _RECENT_MESSAGES_MAX:
                self._mem_recent = self._mem_recent[-_RECENT_MESSAGES_MAX:]

        await self.update_conversation(conversation_id)
        return message

    async def get_messages(self, conversation_id: str, limit: int = 100) -> list[Message]:
        """Return the latest *limit* messages of a conversation, oldest first."""
        if limit <= 0:
            return []
        if self._connected:
            rows = await self._redis.lrange(f"{_MESSAGES_PREFIX}{conversation_id}", -limit, -1)
            return [Message(**json.loads(row)) for row in rows]
        return list(self._mem_messages.get(conversation_id, [])[-limit:])

    async def get_recent_messages(self, limit: int = 50) -> list[Message]:
        """Return the latest *limit* messages across conversations, oldest first."""
        if limit <= 0:
            return []
        if self._connected:
            rows = await self._redis.lrange(_RECENT_MESSAGES, -limit, -1)
            return [Message(**json.loads(row)) for row in rows]
        return list(self._mem_recent[-limit:])

    # ------------------------------------------------------------------
    # Projects
    # ------------------------------------------------------------------

    async def create_project(
        self,
        name: str,
        path: str,
        description: str = "",
        tech_stack: list[str] | None = None,
    ) -> Project:
        project = Project(
            name=name,
            path=path,
            description=description,
            tech_stack=list(tech_stack or []),
        )
        await self._save_project(project)
        log.info("Project registered: %s at %s", name, path)
        return project

    async def _save_project(self, project: Project) -> None:
        if self._connected:
            await self._redis.set(f"{_PROJECT_PREFIX}{project.id}", json.dumps(asdict(project)))
            await self._redis.sadd(_PROJECT_INDEX, project.id)
        else:
            self._mem_projects[project.id] = project

    async def get_project(self, project_id: str) -> Project | None:
        if self._connected:
            raw = await self._redis.get(f"{_PROJECT_PREFIX}{project_id}")
            if raw is None:
                return None
            return Project(**json.loads(raw))
        return self._mem_projects.get(project_id)

    async def list_projects(self, status: str | None = None) -> list[Project]:
        """Return projects (optionally filtered by *status*), oldest first."""
        if self._connected:
            ids = await self._redis.smembers(_PROJECT_INDEX)
            projects = [p for p in [await self.get_project(i) for i in ids] if p]
        else:
            projects = list(self._mem_projects.values())
        if status is not None:
            projects = [p for p in projects if p.status == status]
        return sorted(projects, key=lambda p: (p.created_at, p.id))

    async def update_project(self, project_id: str, **fields: Any) -> bool:
        project = await self.get_project(project_id)
        if project is None:
            return False
        for key, value in fields.items():
            if hasattr(project, key) and key not in ("id", "created_at"):
                setattr(project, key, value)
        project.updated_at = datetime.now(timezone.utc).isoformat()
        await self._save_project(project)
        return True

    # ------------------------------------------------------------------
    # Knowledge
    # ------------------------------------------------------------------

    async def add_knowledge(
        self,
        category: str,
        title: str,
        content: str,
        source: str = "",
        tags: list[str] | None = None,
        importance: int = 5,
    ) -> Knowledge:
        item = Knowledge(
            category=category,
            title=title,
            content=content,
            source=source,
            tags=list(tags or []),
            importance=max(1, min(10, importance)),
        )
        if self._connected:
            await self._redis.set(f"{_KNOWLEDGE_PREFIX}{item.id}", json.dumps(asdict(item)))
            await self._redis.sadd(_KNOWLEDGE_INDEX, item.id)
        else:
            self._mem_knowledge[item.id] = item
        log.debug("Knowledge stored: [%s] %s", category, title)
        return item

    async def get_knowledge(self, knowledge_id: str) -> Knowledge | None:
        if self._connected:
            raw = await self._redis.get(f"{_KNOWLEDGE_PREFIX}{knowledge_id}")
            if raw is None:
                return None
            return Knowledge(**json.loads(raw))
        return self._mem_knowledge.get(knowledge_id)

    async def delete_knowledge(self, knowledge_id: str) -> bool:
        if self._connected:
            await self._redis.srem(_KNOWLEDGE_INDEX, knowledge_id)
            return bool(await self._redis.delete(f"{_KNOWLEDGE_PREFIX}{knowledge_id}"))
        return self._mem_knowledge.pop(knowledge_id, None) is not None

    async def _all_knowledge(self) -> list[Knowledge]:
        if self._connected:
            ids = await self._redis.smembers(_KNOWLEDGE_INDEX)
            return [k for k in [await self.get_knowledge(i) for i in ids] if k]
        return list(self._mem_knowledge.values())

    async def search_knowledge(self, query: str, category: str | None = None) -> list[Knowledge]:
        """Knowledge whose title or content contains *query*, most important first.

        Matching is case-insensitive.  Equal importance falls back to
        creation order.
        """
        items = [
            item
            for item in await self._all_knowledge()
            if (category is None or item.category == category)
            and _matches(query, item.title, item.content)
        ]
        return sorted(items, key=_knowledge_rank)

    # ------------------------------------------------------------------
    # Preferences
    # ------------------------------------------------------------------

    async def set_preference(self, key: str, value: Any) -> None:
        if self._connected:
            await self._redis.hset(_PREFERENCES, key, json.dumps(value))
        else:
            self._mem_preferences[key] = value

    async def get_preference(self, key: str, default: Any = None) -> Any:
        if self._connected:
            raw = await self._redis.hget(_PREFERENCES, key)
            return default if raw is None else json.loads(raw)
        return self._mem_preferences.get(key, default)

    async def get_all_preferences(self) -> dict[str, Any]:
        if self._connected:
            raw = await self._redis.hgetall(_PREFERENCES)
            return {key: json.loads(value) for key, value in raw.items()}
        return dict(self._mem_preferences)

    async def delete_preference(self, key: str) -> bool:
        if self._connected:
            return bool(await self._redis.hdel(_PREFERENCES, key))
        return self._mem_preferences.pop(key, None) is not None

    # ------------------------------------------------------------------
    # Context entries
    # ------------------------------------------------------------------

    async def set_context(
        self,
        context_type: str,
        key: str,
        value: Any,
        expires_at: datetime | None = None,
    ) -> None:
        """Store *value* under (*context_type*, *key*), replacing any previous value."""
        entry = ContextEntry(
            context_type=context_type,
            key=key,
            value=value,
            expires_at=expires_at.astimezone(timezone.utc).isoformat() if expires_at else None,
        )
        if entry.is_expired():
            await self._drop_context(context_type, key)
            return

        if self._connected:
            redis_key = f"{_CONTEXT_PREFIX}{context_type}:{key}"
            payload = json.dumps(asdict(entry))
            if expires_at is not None:
                await self._redis.set(redis_key, payload, pxat=int(expires_at.timestamp() * 1000))
            else:
                await self._redis.set(redis_key, payload)
        else:
            self._mem_context[(context_type, key)] = entry

    async def get_context(self, context_type: str, key: str, default: Any = None) -> Any:
        """Return the stored value, or *default* when missing or expired."""
        if self._connected:
            raw = await self._redis.get(f"{_CONTEXT_PREFIX}{context_type}:{key}")
            entry = ContextEntry(**json.loads(raw)) if raw is not None else None
        else:
            entry = self._mem_context.get((context_type, key))

        if entry is None:
            return default
        if entry.is_expired():
            await self._drop_context(context_type, key)
            return default
        return entry.value

    async def _drop_context(self, context_type: str, key: str) -> None:
        if self._connected:
            await self._redis.delete(f"{_CONTEXT_PREFIX}{context_type}:{key}")
        else:
            self._mem_context.pop((context_type, key), None)

    # ------------------------------------------------------------------
    # Search and stats
    # ------------------------------------------------------------------

    async def search(self, query: str, limit: int = 10) -> list[SearchHit]:
        """Search knowledge and projects, most relevant first.

        Knowledge relevance is its importance scaled to 0-1; a project whose
        name or description matches scores a flat 0.7.
        """
        hits = [
            SearchHit(
                kind="knowledge",
                id=item.id,
                title=item.title,
                content=item.content,
                relevance=item.importance / 10,
            )
            for item in await self.search_knowledge(query)
        ]
        hits.extend(
            SearchHit(
                kind="project",
                id=project.id,
                title=project.name,
                content=project.description or project.path,
                relevance=_PROJECT_MATCH_RELEVANCE,
            )
            for project in await self.list_projects()
            if _matches(query, project.name, project.description)
        )
        hits.sort(key=lambda h: h.relevance, reverse=True)
        return hits[:limit]

    async def stats(self) -> dict[str, Any]:
        """Entity counts and the active backend."""
        if self._connected:
            conversations = await self._redis.scard(_CONVERSATION_INDEX)
            projects = await self._redis.scard(_PROJECT_INDEX)
            knowledge = await self._redis.scard(_KNOWLEDGE_INDEX)
            preferences = await self._redis.hlen(_PREFERENCES)
        else:
            conversations = len(self._mem_conversations)
            projects = len(self._mem_projects)
            knowledge = len(self._mem_knowledge)
            preferences = len(self._mem_preferences)
        return {
            "backend": self.backend,
            "conversations": conversations,
            "projects": projects,
            "knowledge": knowledge,
            "preferences": preferences,
        }
