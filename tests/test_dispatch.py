"""Tests for Dispatcher routing, recording and outcome normalisation."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from aide.memory.context import ContextAssembler
from aide.models.reasoning import Completion
from aide.orchestrator.adapters import (
    CodingAdapter,
    ConversationAdapter,
    DispatchError,
    ExecutionAdapter,
)
from aide.orchestrator.classifier import Category, Domain, TaskClassifier
from aide.orchestrator.dispatch import (
    Dispatcher,
    UnsupportedDomainError,
    resolve_domain,
)


@pytest.fixture
def adapters(shell, mock_reasoning, registry, memory, tmp_path):
    return {
        Domain.EXECUTION: ExecutionAdapter(shell, mock_reasoning, registry),
        Domain.CODING: CodingAdapter(
            shell, mock_reasoning, memory, editor_command="true", projects_root=str(tmp_path)
        ),
        Domain.CONVERSATION: ConversationAdapter(mock_reasoning, ContextAssembler(memory)),
    }


@pytest.fixture
def dispatcher(mock_reasoning, memory, adapters):
    return Dispatcher(TaskClassifier(mock_reasoning), memory, adapters)


def test_resolve_domain_aliases():
    assert resolve_domain("manus") is Domain.EXECUTION
    assert resolve_domain("Cursor") is Domain.CODING
    assert resolve_domain(Domain.CONVERSATION) is Domain.CONVERSATION
    with pytest.raises(UnsupportedDomainError):
        resolve_domain("telepathy")


def test_missing_adapter_is_rejected(mock_reasoning, memory, adapters):
    del adapters[Domain.CODING]
    with pytest.raises(ValueError, match="coding"):
        Dispatcher(TaskClassifier(mock_reasoning), memory, adapters)


@pytest.mark.asyncio
async def test_execution_request_runs_without_reasoning(dispatcher, mock_reasoning):
    outcome = await dispatcher.route_and_execute("نفذ: echo hello")

    assert outcome.success is True
    assert outcome.domain is Domain.EXECUTION
    assert outcome.result["output"].strip() == "hello"
    assert outcome.error is None
    assert outcome.duration_ms >= 0
    assert outcome.classification.category is Category.EXECUTION
    mock_reasoning.complete.assert_not_called()


@pytest.mark.asyncio
async def test_conversation_request_with_empty_memory(dispatcher, mock_reasoning):
    mock_reasoning.complete = AsyncMock(return_value=Completion(success=True, text="Nice weather."))

    outcome = await dispatcher.route_and_execute("لخص هذا النص: الطقس جميل اليوم")

    assert outcome.success is True
    assert outcome.domain is Domain.CONVERSATION
    assert outcome.result["response"] == "Nice weather."
    mock_reasoning.complete.assert_awaited_once()
    system_prompt = mock_reasoning.complete.call_args.kwargs["system_prompt"]
    assert "## User\n- Name: User\n- Role: Developer" in system_prompt
    assert "## Relevant facts" not in system_prompt
    assert "## Recent conversation" not in system_prompt


@pytest.mark.asyncio
async def test_conversation_failure_is_mirrored(dispatcher, mock_reasoning):
    mock_reasoning.complete = AsyncMock(
        return_value=Completion(success=False, error="Reasoning service timed out after 60s")
    )

    outcome = await dispatcher.route_and_execute("لخص هذا النص: الطقس جميل اليوم")

    assert outcome.success is False
    assert outcome.error == "Reasoning service timed out after 60s"
    assert outcome.result["type"] == "conversation"


@pytest.mark.asyncio
async def test_forced_domain_skips_classifier(memory, adapters):
    classifier = MagicMock()
    classifier.classify = AsyncMock()
    dispatcher = Dispatcher(classifier, memory, adapters)

    outcome = await dispatcher.route_and_execute("run: echo forced", forced_domain="shell")

    assert outcome.domain is Domain.EXECUTION
    assert outcome.classification is None
    assert outcome.success is True
    classifier.classify.assert_not_awaited()


@pytest.mark.asyncio
async def test_unknown_forced_domain_has_no_side_effects(dispatcher, memory):
    with pytest.raises(UnsupportedDomainError):
        await dispatcher.route_and_execute("run: echo nope", forced_domain="telepathy")
    assert await memory.search_knowledge("echo", category="tasks") == []


@pytest.mark.asyncio
async def test_request_is_recorded_with_tags(dispatcher, memory):
    await dispatcher.route_and_execute("نفذ: echo hello")

    recorded = await memory.search_knowledge("echo hello", category="tasks")
    assert len(recorded) == 1
    assert recorded[0].title == "Last task"
    assert recorded[0].tags == ["execution", "execution"]


@pytest.mark.asyncio
async def test_adapter_exception_becomes_failed_outcome(mock_reasoning, memory, adapters):
    broken = MagicMock()
    broken.handle = AsyncMock(side_effect=DispatchError("no command"))
    adapters[Domain.EXECUTION] = broken
    dispatcher = Dispatcher(TaskClassifier(mock_reasoning), memory, adapters)

    outcome = await dispatcher.route_and_execute("git status")

    assert outcome.success is False
    assert outcome.result is None
    assert outcome.error == "no command"
    assert outcome.domain is Domain.EXECUTION


@pytest.mark.asyncio
async def test_unsuccessful_payload_without_error_gets_default(mock_reasoning, memory, adapters):
    quiet = MagicMock()
    quiet.handle = AsyncMock(return_value={"type": "open", "success": False})
    adapters[Domain.CODING] = quiet
    dispatcher = Dispatcher(TaskClassifier(mock_reasoning), memory, adapters)

    outcome = await dispatcher.route_and_execute("anything", forced_domain="coding")

    assert outcome.success is False
    assert outcome.error == "The request did not succeed."


@pytest.mark.asyncio
async def test_memory_failure_does_not_block_dispatch(mock_reasoning, adapters):
    memory = MagicMock()
    memory.add_knowledge = AsyncMock(side_effect=ConnectionError("redis down"))
    dispatcher = Dispatcher(TaskClassifier(mock_reasoning), memory, adapters)

    outcome = await dispatcher.route_and_execute("نفذ: echo still works")

    assert outcome.success is True
    assert outcome.result["output"].strip() == "still works"
