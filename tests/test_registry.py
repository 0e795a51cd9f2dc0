"""Tests for the background task registry lifecycle."""

import asyncio
import re
from unittest.mock import AsyncMock, MagicMock

import pytest

from aide.execution.registry import TaskRegistry, TaskState, _TaskRecord


@pytest.mark.asyncio
async def test_start_then_status_is_running(registry):
    task_id = await registry.start("sleep 0.3; echo done")
    snapshot = registry.status(task_id)
    assert snapshot.state is TaskState.RUNNING
    assert snapshot.exit_code is None
    assert snapshot.finished_at is None
    assert snapshot.output == ""

    final = await registry.wait(task_id, timeout=10)
    assert final.state is TaskState.COMPLETED
    assert final.exit_code == 0
    assert final.output == "done\n"


@pytest.mark.asyncio
async def test_nonzero_exit_fails_and_stays_failed(registry):
    task_id = await registry.start("printf a; sleep 0.3; exit 1")
    states = []
    for _ in range(50):
        snapshot = registry.status(task_id)
        states.append(snapshot.state)
        if snapshot.is_terminal:
            break
        await asyncio.sleep(0.05)

    assert states[0] is TaskState.RUNNING
    assert states[-1] is TaskState.FAILED
    assert TaskState.COMPLETED not in states

    await asyncio.sleep(0.1)
    final = registry.status(task_id)
    assert final.state is TaskState.FAILED
    assert final.exit_code == 1
    assert final.output == "a"


@pytest.mark.asyncio
async def test_stderr_is_accumulated(registry):
    task_id = await registry.start("echo oops 1>&2")
    final = await registry.wait(task_id, timeout=10)
    assert final.error == "oops\n"
    assert final.output == ""


def test_unknown_id_is_none(registry):
    assert registry.status("task_999_0") is None


@pytest.mark.asyncio
async def test_ids_are_unique(registry):
    first = await registry.start("true")
    second = await registry.start("true")
    assert first != second
    assert re.fullmatch(r"task_\d+_\d+", first)
    await registry.wait(first, timeout=10)
    await registry.wait(second, timeout=10)


@pytest.mark.asyncio
async def test_default_name_is_command_prefix(registry):
    command = "echo " + "x" * 100
    task_id = await registry.start(command)
    assert registry.status(task_id).name == command[:50]
    named = await registry.start("true", name="noop")
    assert registry.status(named).name == "noop"
    await registry.wait(task_id, timeout=10)
    await registry.wait(named, timeout=10)


@pytest.mark.asyncio
async def test_snapshots_do_not_change(registry):
    task_id = await registry.start("echo hi")
    before = registry.status(task_id)
    await registry.wait(task_id, timeout=10)
    assert before.state is TaskState.RUNNING
    assert before.output == ""
    assert registry.status(task_id).state is TaskState.COMPLETED


@pytest.mark.asyncio
async def test_spawn_failure_is_failed_task():
    executor = MagicMock()
    executor.spawn_detached = AsyncMock(side_effect=FileNotFoundError("no such directory"))
    registry = TaskRegistry(executor)

    task_id = await registry.start("ls", cwd="/nope")
    snapshot = registry.status(task_id)
    assert snapshot.state is TaskState.FAILED
    assert snapshot.exit_code is None
    assert "no such directory" in snapshot.error


@pytest.mark.asyncio
async def test_nul_byte_command_is_failed_task(registry):
    task_id = await registry.start("echo a\x00b")

    snapshot = registry.status(task_id)
    assert snapshot.state is TaskState.FAILED
    assert snapshot.exit_code is None
    assert registry.counts() == {"running": 0, "completed": 0, "failed": 1}


@pytest.mark.asyncio
async def test_output_is_capped(shell):
    registry = TaskRegistry(shell, output_max_chars=5)
    task_id = await registry.start("printf 0123456789")
    final = await registry.wait(task_id, timeout=10)
    assert final.output == "01234"
    assert final.truncated is True


@pytest.mark.asyncio
async def test_oldest_finished_task_is_evicted(shell):
    registry = TaskRegistry(shell, retention=1)
    first = await registry.start("true")
    await registry.wait(first, timeout=10)
    second = await registry.start("true")
    await registry.wait(second, timeout=10)

    assert registry.status(first) is None
    assert registry.status(second) is not None


@pytest.mark.asyncio
async def test_running_tasks_are_never_evicted(shell):
    registry = TaskRegistry(shell, retention=0)
    running = await registry.start("sleep 0.3")
    done = await registry.start("true")
    await registry.wait(done, timeout=10)

    assert registry.status(running).state is TaskState.RUNNING
    await registry.wait(running, timeout=10)


@pytest.mark.asyncio
async def test_list_and_counts(registry):
    ok = await registry.start("true")
    bad = await registry.start("exit 3")
    await registry.wait(ok, timeout=10)
    await registry.wait(bad, timeout=10)

    assert [t.id for t in registry.list_tasks()] == [ok, bad]
    assert registry.counts() == {"running": 0, "completed": 1, "failed": 1}


def test_no_writes_after_terminal_state():
    record = _TaskRecord(id="t", name="t", command="c", max_chars=100)
    record.append("stdout", "before")
    record.finish(0)
    record.append("stdout", "after")
    record.finish(1)

    snapshot = record.snapshot()
    assert snapshot.output == "before"
    assert snapshot.state is TaskState.COMPLETED
    assert snapshot.exit_code == 0
