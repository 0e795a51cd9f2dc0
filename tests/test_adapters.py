"""Tests for the execution, coding and conversation adapters."""

import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from aide.execution.registry import TaskRegistry, TaskState
from aide.memory.context import ContextAssembler
from aide.models.reasoning import Completion
from aide.orchestrator.adapters import (
    CodingAdapter,
    ConversationAdapter,
    DispatchError,
    ExecutionAdapter,
)


@pytest.fixture
def execution(shell, mock_reasoning, registry):
    return ExecutionAdapter(shell, mock_reasoning, registry)


@pytest.fixture
def coding(shell, mock_reasoning, memory, tmp_path):
    return CodingAdapter(
        shell,
        mock_reasoning,
        memory,
        editor_command="true",
        projects_root=str(tmp_path / "projects"),
    )


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_extracted_command_runs(execution, mock_reasoning):
    payload = await execution.handle("نفذ: echo hello")
    assert payload["type"] == "command"
    assert payload["command"] == "echo hello"
    assert payload["output"] == "hello\n"
    assert payload["success"] is True
    mock_reasoning.complete.assert_not_called()


@pytest.mark.asyncio
async def test_failed_command_is_reported(execution):
    payload = await execution.handle("run: exit 4")
    assert payload["success"] is False
    assert payload["exit_code"] == 4


@pytest.mark.asyncio
async def test_synthesised_command_is_tagged(execution, mock_reasoning):
    mock_reasoning.complete = AsyncMock(
        return_value=Completion(success=True, text="```bash\necho synthesised\n```")
    )
    payload = await execution.handle("list the files here")
    assert payload["type"] == "ai_generated_command"
    assert payload["command"] == "echo synthesised"
    assert payload["output"] == "synthesised\n"


@pytest.mark.asyncio
async def test_synthesis_failure_raises(execution, mock_reasoning):
    mock_reasoning.complete = AsyncMock(return_value=Completion(success=False, error="offline"))
    with pytest.raises(DispatchError, match="offline"):
        await execution.handle("list the files here")


@pytest.mark.asyncio
async def test_empty_synthesis_raises(execution, mock_reasoning):
    mock_reasoning.complete = AsyncMock(return_value=Completion(success=True, text="```\n```"))
    with pytest.raises(DispatchError):
        await execution.handle("list the files here")


@pytest.mark.asyncio
async def test_background_request_starts_task(execution, registry):
    payload = await execution.handle("run: sleep 0.2; echo bg in the background")
    assert payload["type"] == "background_task"
    assert payload["command"] == "sleep 0.2; echo bg"
    assert payload["state"] == "running"
    assert payload["success"] is True

    final = await registry.wait(payload["task_id"], timeout=10)
    assert final.state is TaskState.COMPLETED
    assert final.output == "bg\n"


# ---------------------------------------------------------------------------
# Coding
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_python_project(coding, memory, tmp_path):
    target = tmp_path / "demo"
    payload = await coding.handle(f"create a new python project at {target}")

    assert payload["type"] == "project"
    assert payload["kind"] == "python"
    assert payload["path"] == str(target)
    assert payload["opened"] is True
    assert sorted(p.name for p in target.iterdir()) == [
        ".gitignore", "README.md", "main.py", "requirements.txt",
    ]
    projects = await memory.list_projects()
    assert [(p.name, p.tech_stack) for p in projects] == [("demo", ["python"])]


@pytest.mark.asyncio
async def test_create_node_project_in_default_root(coding, tmp_path):
    payload = await coding.handle("أنشئ مشروع جديد")
    root = tmp_path / "projects" / "new-project"
    assert payload["path"] == str(root)
    assert payload["kind"] == "node"
    package = json.loads((root / "package.json").read_text())
    assert package["name"] == "new-project"
    assert package["scripts"]["start"] == "node index.js"


@pytest.mark.asyncio
async def test_project_word_alone_is_not_scaffolding(coding, mock_reasoning):
    mock_reasoning.complete = AsyncMock(return_value=Completion(success=True, text="print(1)"))
    payload = await coding.handle("fix the bug in this project")
    assert payload["type"] == "code_generation"


@pytest.mark.asyncio
async def test_open_path(coding, tmp_path):
    payload = await coding.handle(f"open {tmp_path}")
    assert payload == {"type": "open", "path": str(tmp_path), "success": True, "error": None}


@pytest.mark.asyncio
async def test_open_reports_editor_failure(shell, mock_reasoning, memory, tmp_path):
    adapter = CodingAdapter(shell, mock_reasoning, memory, editor_command="false")
    payload = await adapter.handle(f"open {tmp_path}")
    assert payload["success"] is False


@pytest.mark.asyncio
async def test_open_without_path_generates_code(coding, mock_reasoning):
    mock_reasoning.complete = AsyncMock(return_value=Completion(success=True, text="code"))
    payload = await coding.handle("open a socket in python")
    assert payload["type"] == "code_generation"
    assert payload["code"] == "code"


@pytest.mark.asyncio
async def test_code_generation_mirrors_reasoning(coding, mock_reasoning):
    mock_reasoning.complete = AsyncMock(return_value=Completion(success=False, error="timeout"))
    payload = await coding.handle("write a python function to add numbers")
    assert payload["type"] == "code_generation"
    assert payload["success"] is False
    assert payload["error"] == "timeout"


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_conversation_is_grounded(memory, mock_reasoning):
    adapter = ConversationAdapter(mock_reasoning, ContextAssembler(memory))
    conv = await memory.create_conversation("c")
    await memory.add_message(conv.id, "user", "my server is called atlas")
    mock_reasoning.complete = AsyncMock(return_value=Completion(success=True, text="Atlas."))

    payload = await adapter.handle("what is my server called?", conversation_id=conv.id)

    assert payload == {"type": "conversation", "response": "Atlas.", "success": True, "error": None}
    args, kwargs = mock_reasoning.complete.call_args
    assert args[0] == "what is my server called?"
    assert "my server is called atlas" in kwargs["system_prompt"]


@pytest.mark.asyncio
async def test_background_spawn_failure_with_no_retention(shell, mock_reasoning):
    spawner = MagicMock()
    spawner.spawn_detached = AsyncMock(side_effect=OSError("fork failed"))
    adapter = ExecutionAdapter(shell, mock_reasoning, TaskRegistry(spawner, retention=0))

    payload = await adapter.handle("run: ls in the background")

    assert payload["type"] == "background_task"
    assert payload["state"] == "unknown"
    assert payload["success"] is False
    assert payload["error"]


@pytest.mark.asyncio
async def test_scaffolding_refuses_non_empty_directory(coding, memory, tmp_path):
    target = tmp_path / "busy"
    target.mkdir()
    (target / "notes.txt").write_text("keep me")

    payload = await coding.handle(f"create a new python project at {target}")

    assert payload["success"] is False
    assert "not empty" in payload["error"]
    assert sorted(p.name for p in target.iterdir()) == ["notes.txt"]
    assert await memory.list_projects() == []


@pytest.mark.asyncio
async def test_home_relative_paths_are_expanded(coding, memory, tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))

    opened = await coding.handle("open ~/notes")
    assert opened["path"] == str(tmp_path / "notes")

    created = await coding.handle("create a new project at ~/demo")
    assert created["path"] == str(tmp_path / "demo")
    assert (tmp_path / "demo" / "package.json").is_file()
    projects = await memory.list_projects()
    assert [p.path for p in projects] == [str(tmp_path / "demo")]
