"""Bounded snapshots of memory used to ground conversational replies.

:class:`ContextAssembler` selects recent messages, matching facts, active
projects and preferences from the :class:`~aide.memory.store.MemoryStore`,
clips each item to a character budget, and returns an immutable
:class:`ContextBundle`.  :meth:`ContextAssembler.render` turns a bundle into
the grounding prompt sent ahead of the user's request.

Building is read-only: two builds over unchanged memory produce equal
bundles, and rendering an equal bundle produces the same text.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from aide.memory.entities import MessageRole, ProjectStatus

log = logging.getLogger(__name__)

_DEFAULT_USER_NAME = "User"
_DEFAULT_USER_ROLE = "Developer"

# Knowledge categories never used as grounding facts (the dispatcher's request log).
_EXCLUDED_FACT_CATEGORIES = frozenset({"tasks"})


def _clip(text: str, budget: int) -> str:
    if len(text) <= budget:
        return text
    return text[:budget] + "..."


@dataclass(frozen=True, slots=True)
class ContextLimits:
    """How much of memory a bundle may carry.

    Attributes:
        conversation_messages: Messages taken from the active conversation.
        recent_messages: Messages taken across conversations when there is
            no active conversation.
        facts: Matching knowledge items kept, by importance.
        projects: Active projects kept.
        fact_chars: Character budget per fact.
        message_chars: Character budget per message.
        rendered_messages: Messages shown in the rendered prompt (the last
            ones of the bundle).
    """

    conversation_messages: int = 20
    recent_messages: int = 10
    facts: int = 5
    projects: int = 5
    fact_chars: int = 500
    message_chars: int = 200
    rendered_messages: int = 10

    @classmethod
    def from_settings(cls, settings: Any) -> ContextLimits:
        return cls(
            conversation_messages=settings.CONTEXT_CONVERSATION_MESSAGES,
            recent_messages=settings.CONTEXT_RECENT_MESSAGES,
            facts=settings.CONTEXT_FACT_LIMIT,
            projects=settings.CONTEXT_PROJECT_LIMIT,
            fact_chars=settings.CONTEXT_FACT_CHARS,
            message_chars=settings.CONTEXT_MESSAGE_CHARS,
        )


@dataclass(frozen=True, slots=True)
class MessageSnippet:
    role: str
    content: str


@dataclass(frozen=True, slots=True)
class FactSnippet:
    title: str
    content: str
    importance: int


@dataclass(frozen=True, slots=True)
class ProjectSnippet:
    name: str
    path: str
    description: str
    tech_stack: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ContextBundle:
    """Read-only projection of memory for one request."""

    messages: tuple[MessageSnippet, ...] = ()
    facts: tuple[FactSnippet, ...] = ()
    projects: tuple[ProjectSnippet, ...] = ()
    preferences: tuple[tuple[str, Any], ...] = ()
    user_name: str = _DEFAULT_USER_NAME
    user_role: str = _DEFAULT_USER_ROLE
    conversation_title: str | None = None

    @property
    def is_empty(self) -> bool:
        return not (self.messages or self.facts or self.projects or self.preferences)


class ContextAssembler:
    """Builds and renders :class:`ContextBundle` objects.

    Args:
        memory: The memory store to read from.
        limits: Size policy; defaults to :class:`ContextLimits`.
    """

    def __init__(self, memory: Any, limits: ContextLimits | None = None) -> None:
        self._memory = memory
        self.limits = limits or ContextLimits()

    async def build(
        self,
        conversation_id: str | None = None,
        query: str | None = None,
    ) -> ContextBundle:
        """Collect the context for *conversation_id* and *query*.

        With a conversation, its latest messages and title are used;
        otherwise the latest messages across all conversations.  Facts are
        only looked up when *query* is given, and never include the
        ``tasks`` request log.
        """
        limits = self.limits
        conversation_title: str | None = None

        if conversation_id:
            messages = await self._memory.get_messages(
                conversation_id, limit=limits.conversation_messages
            )
            conversation = await self._memory.get_conversation(conversation_id)
            if conversation is not None:
                conversation_title = conversation.title
        else:
            messages = await self._memory.get_recent_messages(limit=limits.recent_messages)

        facts = []
        if query:
            matches = await self._memory.search_knowledge(query)
            facts = [k for k in matches if k.category not in _EXCLUDED_FACT_CATEGORIES][
                : limits.facts
            ]

        projects = (await self._memory.list_projects(status=ProjectStatus.ACTIVE.value))[
            : limits.projects
        ]
        preferences = await self._memory.get_all_preferences()
        user_name = await self._memory.get_context("user", "name") or _DEFAULT_USER_NAME
        user_role = await self._memory.get_context("user", "role") or _DEFAULT_USER_ROLE

        bundle = ContextBundle(
            messages=tuple(
                MessageSnippet(role=m.role, content=_clip(m.content, limits.message_chars))
                for m in messages
            ),
            facts=tuple(
                FactSnippet(
                    title=f.title,
                    content=_clip(f.content, limits.fact_chars),
                    importance=f.importance,
                )
                for f in facts
            ),
            projects=tuple(
                ProjectSnippet(
                    name=p.name,
                    path=p.path,
                    description=p.description,
                    tech_stack=tuple(p.tech_stack),
                )
                for p in projects
            ),
            preferences=tuple(sorted(preferences.items())),
            user_name=str(user_name),
            user_role=str(user_role),
            conversation_title=conversation_title,
        )
        log.debug(
            "Context built: %d messages, %d facts, %d projects, %d preferences",
            len(bundle.messages),
            len(bundle.facts),
            len(bundle.projects),
            len(bundle.preferences),
        )
        return bundle

    def render(self, bundle: ContextBundle) -> str:
        """Render *bundle* as a grounding prompt.

        Blocks appear in a fixed order (user, projects, facts, conversation)
        and empty blocks are left out.  The user block is always present.
        """
        parts: list[str] = [
            "## User",
            f"- Name: {bundle.user_name}",
            f"- Role: {bundle.user_role}",
        ]
        parts.extend(f"- {key}: {value}" for key, value in bundle.preferences)
        parts.append("")

        if bundle.projects:
            parts.append("## Active projects")
            for project in bundle.projects:
                parts.append(f"- **{project.name}**: {project.description or 'No description'}")
                parts.append(f"  Path: {project.path}")
                if project.tech_stack:
                    parts.append(f"  Stack: {', '.join(project.tech_stack)}")
            parts.append("")

        if bundle.facts:
            parts.append("## Relevant facts")
            for fact in bundle.facts:
                parts.append(f"### {fact.title}")
                parts.append(fact.content)
                parts.append("")

        if bundle.messages:
            header = "## Recent conversation"
            if bundle.conversation_title:
                header += f" ({bundle.conversation_title})"
            parts.append(header)
            for message in bundle.messages[-self.limits.rendered_messages :]:
                speaker = "User" if message.role == MessageRole.USER.value else "Assistant"
                parts.append(f"**{speaker}**: {message.content}")

        return "\n".join(parts).rstrip()
