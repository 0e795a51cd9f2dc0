"""The personal agent: top-level entry point of the orchestration core.

:class:`PersonalAgent` persists every inbound message, routes it through the
:class:`~aide.orchestrator.dispatch.Dispatcher`, persists the reply (failed
or not) and turns the outcome into an :class:`AgentResponse`.  It also
exposes the memory, conversation and background-task accessors a caller
needs.

Within one conversation, messages are stored in ``chat`` arrival order: the
user message is written before dispatch starts and the reply after it
finishes.

Usage::

    agent = PersonalAgent.from_settings(get_settings())
    await agent.initialize()
    response = await agent.chat("run: git status")
    print(response.message)
    await agent.close()
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Awaitable

from aide.execution.registry import ManagedTask, TaskRegistry
from aide.execution.shell import ShellExecutor
from aide.memory.context import ContextAssembler, ContextLimits
from aide.memory.entities import MessageRole, Project, ProjectStatus, SearchHit
from aide.memory.store import MemoryStore
from aide.models.openrouter import OpenRouterClient
from aide.models.reasoning import ReasoningService
from aide.orchestrator.adapters import CodingAdapter, ConversationAdapter, ExecutionAdapter
from aide.orchestrator.classifier import Domain, TaskClassifier
from aide.orchestrator.dispatch import Dispatcher, OutcomeRecord, UnsupportedDomainError, resolve_domain

log = logging.getLogger(__name__)

RETRY_SUGGESTIONS: tuple[str, ...] = ("Try again", "Rephrase the request")


@dataclass(slots=True)
class AgentResponse:
    """What the caller gets back from :meth:`PersonalAgent.chat`."""

    success: bool
    message: str
    domain: Domain | None = None
    data: dict[str, Any] | None = None
    suggestions: list[str] = field(default_factory=list)


@dataclass(frozen=True, slots=True)
class AgentMessage:
    """One entry of a conversation history."""

    role: str
    content: str
    timestamp: datetime
    tool: str | None = None


def _build_message(payload: dict[str, Any]) -> str:
    kind = payload.get("type")
    if kind in ("command", "ai_generated_command"):
        message = payload.get("output") or "Command finished with no output."
        if kind == "ai_generated_command":
            message = f"Ran: {payload.get('command')}\n\n{message}"
        if payload.get("error"):
            message += f"\n\nWarning: {payload['error']}"
        return message
    if kind == "background_task":
        return (
            f"Started background task {payload.get('task_id')}: {payload.get('command')}\n"
            "Ask for its status with the task id."
        )
    if kind == "project":
        return f"Created {payload.get('kind')} project '{payload.get('name')}' at {payload.get('path')}."
    if kind == "open":
        return f"Opened: {payload.get('path')}"
    if kind == "code_generation":
        return payload.get("code") or "No code was generated."
    if kind == "conversation":
        return payload.get("response") or "No reply."
    return json.dumps(payload, indent=2, ensure_ascii=False)


class PersonalAgent:
    """Conversation-facing orchestrator.

    Args:
        memory: Memory store.
        dispatcher: Request dispatcher.
        registry: Background task registry.
        reasoning: Reasoning service (reported in :meth:`status`, closed in
            :meth:`close`).
        user_name: Stored as the ``user``/``name`` context entry.
        user_role: Stored as the ``user``/``role`` context entry.
        language: Stored as the ``language`` preference.
        connect_memory: Connect the memory store to Redis in
            :meth:`initialize`.  Off by default so a store built for tests
            stays in-memory.
    """

    def __init__(
        self,
        memory: MemoryStore,
        dispatcher: Dispatcher,
        registry: TaskRegistry,
        reasoning: ReasoningService | None = None,
        user_name: str | None = None,
        user_role: str | None = None,
        language: str | None = None,
        connect_memory: bool = False,
    ) -> None:
        self.memory = memory
        self.dispatcher = dispatcher
        self.registry = registry
        self.reasoning = reasoning
        self._user_name = user_name
        self._user_role = user_role
        self._language = language
        self._connect_memory = connect_memory
        self._conversation_id: str | None = None
        self._initialized = False

    @classmethod
    def from_settings(cls, settings: Any) -> PersonalAgent:
        """Wire the full component graph from :class:`~aide.config.AideSettings`."""
        client = OpenRouterClient(
            api_key=settings.OPENROUTER_API_KEY,
            base_url=settings.OPENROUTER_BASE_URL,
        )
        reasoning = ReasoningService(
            client,
            model=settings.REASONING_MODEL,
            timeout=settings.REASONING_TIMEOUT,
            temperature=settings.REASONING_TEMPERATURE,
            max_tokens=settings.REASONING_MAX_TOKENS,
        )
        memory = MemoryStore(redis_url=settings.REDIS_URL)
        executor = ShellExecutor(workdir=settings.SHELL_WORKDIR, timeout=settings.SHELL_TIMEOUT)
        registry = TaskRegistry(
            executor,
            retention=settings.TASK_RETENTION,
            output_max_chars=settings.TASK_OUTPUT_MAX_CHARS,
        )
        assembler = ContextAssembler(memory, ContextLimits.from_settings(settings))
        dispatcher = Dispatcher(
            TaskClassifier(reasoning, threshold=settings.CLASSIFIER_CONFIDENCE_THRESHOLD),
            memory,
            {
                Domain.EXECUTION: ExecutionAdapter(executor, reasoning, registry),
                Domain.CODING: CodingAdapter(
                    executor,
                    reasoning,
                    memory,
                    editor_command=settings.EDITOR_COMMAND,
                    projects_root=settings.PROJECTS_ROOT,
                ),
                Domain.CONVERSATION: ConversationAdapter(reasoning, assembler),
            },
        )
        return cls(
            memory,
            dispatcher,
            registry,
            reasoning,
            user_name=settings.USER_NAME,
            user_role=settings.USER_ROLE,
            language=settings.LANGUAGE,
            connect_memory=True,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Connect memory, store the user's identity and open a conversation.

        Memory write failures are logged and skipped.  When no conversation
        could be opened, :meth:`chat` still dispatches but stores nothing.
        """
        if self._initialized:
            return
        if self._connect_memory and not self.memory.is_connected:
            await self.memory.connect()
        if self._user_name:
            await self._best_effort("store user name", self.remember("name", self._user_name))
        if self._user_role:
            await self._best_effort("store user role", self.remember("role", self._user_role))
        if self._language:
            await self._best_effort(
                "store language preference",
                self.remember_preference("language", self._language),
            )
        await self._best_effort("start a conversation", self.start_new_conversation())
        self._initialized = True
        log.info("Agent initialised (memory backend: %s).", self.memory.backend)

    async def _best_effort(self, action: str, awaitable: Awaitable[Any]) -> Any:
        try:
            return await awaitable
        except Exception as exc:
            log.warning("Could not %s: %s", action, exc)
            return None

    async def close(self) -> None:
        if self.reasoning is not None:
            await self.reasoning.close()
        await self.memory.close()
        self._initialized = False
        log.info("Agent closed.")

    # ------------------------------------------------------------------
    # Chat
    # ------------------------------------------------------------------

    async def _persist(self, conversation_id: str, role: MessageRole, content: str, **extra: Any) -> None:
        await self._best_effort(
            f"persist {role.value} message",
            self.memory.add_message(conversation_id, role.value, content, **extra),
        )

    async def chat(
        self,
        message: str,
        forced_domain: str | Domain | None = None,
        conversation_id: str | None = None,
    ) -> AgentResponse:
        """Handle one user message and return the reply.

        An unknown *forced_domain* is rejected before anything is stored or
        run.  Every other failure comes back as an unsuccessful response
        whose message is also stored in the conversation.
        """
        if forced_domain is not None:
            try:
                forced_domain = resolve_domain(forced_domain)
            except UnsupportedDomainError as exc:
                return AgentResponse(success=False, message=str(exc))

        if not self._initialized:
            await self.initialize()

        conversation = conversation_id or self._conversation_id
        if conversation:
            await self._persist(conversation, MessageRole.USER, message)

        outcome = await self.dispatcher.route_and_execute(
            message, forced_domain=forced_domain, conversation_id=conversation
        )
        response = self._build_response(outcome)

        if conversation:
            await self._persist(
                conversation,
                MessageRole.ASSISTANT,
                response.message,
                tool_used=outcome.domain.value,
                tool_result=json.dumps(
                    outcome.result if outcome.result is not None else {"error": outcome.error},
                    ensure_ascii=False,
                    default=str,
                ),
            )
        return response

    def _build_response(self, outcome: OutcomeRecord) -> AgentResponse:
        if not outcome.success:
            return AgentResponse(
                success=False,
                message=f"Something went wrong: {outcome.error or 'unknown error'}",
                domain=outcome.domain,
                data=outcome.result,
                suggestions=list(RETRY_SUGGESTIONS),
            )
        payload = outcome.result or {}
        return AgentResponse(
            success=True,
            message=_build_message(payload),
            domain=outcome.domain,
            data=payload,
        )

    # ------------------------------------------------------------------
    # Memory accessors
    # ------------------------------------------------------------------

    async def remember(self, key: str, value: Any) -> None:
        """Store a fact about the user."""
        await self.memory.set_context("user", key, value)

    async def recall(self, key: str) -> Any:
        return await self.memory.get_context("user", key)

    async def remember_preference(self, key: str, value: Any) -> None:
        await self.memory.set_preference(key, value)

    async def remember_fact(
        self,
        category: str,
        title: str,
        content: str,
        tags: list[str] | None = None,
        importance: int = 5,
    ) -> str:
        """Store a knowledge item and return its id."""
        item = await self.memory.add_knowledge(
            category, title, content, source="user", tags=tags, importance=importance
        )
        return item.id

    async def register_project(
        self,
        name: str,
        path: str,
        description: str = "",
        tech_stack: list[str] | None = None,
    ) -> Project:
        return await self.memory.create_project(name, path, description, tech_stack)

    async def get_projects(self) -> list[Project]:
        """Active projects."""
        return await self.memory.list_projects(status=ProjectStatus.ACTIVE.value)

    async def search(self, query: str) -> list[SearchHit]:
        return await self.memory.search(query)

    # ------------------------------------------------------------------
    # Conversations
    # ------------------------------------------------------------------

    async def start_new_conversation(self, title: str | None = None) -> str:
        conversation = await self.memory.create_conversation(
            title or f"Conversation {date.today().isoformat()}"
        )
        self._conversation_id = conversation.id
        return conversation.id

    @property
    def current_conversation_id(self) -> str | None:
        return self._conversation_id

    async def get_conversation_history(
        self, conversation_id: str | None = None, limit: int = 100
    ) -> list[AgentMessage]:
        target = conversation_id or self._conversation_id
        if not target:
            return []
        messages = await self.memory.get_messages(target, limit=limit)
        return [
            AgentMessage(
                role=m.role,
                content=m.content,
                timestamp=datetime.fromisoformat(m.created_at),
                tool=m.tool_used,
            )
            for m in messages
        ]

    # ------------------------------------------------------------------
    # Background tasks
    # ------------------------------------------------------------------

    async def start_task(self, command: str, cwd: str | None = None, name: str | None = None) -> str:
        return await self.registry.start(command, cwd=cwd, name=name)

    def task_status(self, task_id: str) -> ManagedTask | None:
        return self.registry.status(task_id)

    def list_tasks(self) -> list[ManagedTask]:
        return self.registry.list_tasks()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    async def status(self) -> dict[str, Any]:
        return {
            "initialized": self._initialized,
            "conversation_id": self._conversation_id,
            "reasoning": self.reasoning.info() if self.reasoning is not None else None,
            "memory": await self.memory.stats(),
            "tasks": self.registry.counts(),
        }
