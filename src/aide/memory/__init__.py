"""Persistent memory and context assembly."""

from aide.memory.context import ContextAssembler, ContextBundle, ContextLimits
from aide.memory.entities import (
    ContextEntry,
    Conversation,
    Knowledge,
    Message,
    MessageRole,
    Project,
    ProjectStatus,
    SearchHit,
)
from aide.memory.store import MemoryStore

__all__ = [
    "ContextAssembler",
    "ContextBundle",
    "ContextEntry",
    "ContextLimits",
    "Conversation",
    "Knowledge",
    "MemoryStore",
    "Message",
    "MessageRole",
    "Project",
    "ProjectStatus",
    "SearchHit",
]
