"""Supervision of long-running shell commands.

The :class:`TaskRegistry` starts commands detached from the request that
asked for them and tracks each one as a :class:`ManagedTask`:

- ``running`` is the only non-terminal state.  When the process exits the
  task moves to ``completed`` (exit status 0) or ``failed`` (anything else)
  and its exit code is frozen.
- Standard output and error are pumped into per-task buffers as the process
  writes them.  Buffers only grow while the task is running and are capped
  per stream; output past the cap is dropped and the task is flagged as
  truncated.
- Readers never see the live record.  :meth:`TaskRegistry.status` and
  :meth:`TaskRegistry.list_tasks` return frozen snapshots.

Each task has a single writer: the supervisor coroutine spawned by
:meth:`TaskRegistry.start`.  Appends and the terminal transition are plain
synchronous method calls, so they never interleave on the event loop.

Usage::

    registry = TaskRegistry(ShellExecutor())
    task_id = await registry.start("npm run build", cwd="~/Projects/site")
    snapshot = registry.status(task_id)
    print(snapshot.state, snapshot.output[-200:])
"""

from __future__ import annotations

import asyncio
import codecs
import collections
import itertools
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any

log = logging.getLogger(__name__)

_READ_CHUNK = 4096
_DEFAULT_NAME_CHARS = 50


class TaskState(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class ManagedTask:
    """Point-in-time view of a background task.

    Attributes:
        id: Registry-unique identifier (``task_<n>_<epoch-ms>``).
        name: Display name; defaults to the start of the command.
        command: The shell command being run.
        state: Lifecycle state.
        output: Standard output accumulated so far.
        error: Standard error accumulated so far, or the reason the process
            could not be started.
        started_at: When the task was registered (UTC).
        exit_code: Process exit status, only set once the task is terminal.
        finished_at: When the task reached a terminal state.
        truncated: Whether output was dropped because a buffer hit its cap.
    """

    id: str
    name: str
    command: str
    state: TaskState
    output: str
    error: str
    started_at: datetime
    exit_code: int | None = None
    finished_at: datetime | None = None
    truncated: bool = False

    @property
    def is_terminal(self) -> bool:
        return self.state is not TaskState.RUNNING

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "command": self.command,
            "state": self.state.value,
            "output": self.output,
            "error": self.error,
            "started_at": self.started_at.isoformat(),
            "exit_code": self.exit_code,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "truncated": self.truncated,
        }


@dataclass(slots=True)
class _TaskRecord:
    """Mutable state behind a :class:`ManagedTask`.  Owned by the registry."""

    id: str
    name: str
    command: str
    max_chars: int
    started_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    state: TaskState = TaskState.RUNNING
    exit_code: int | None = None
    finished_at: datetime | None = None
    truncated: bool = False
    _chunks: dict[str, list[str]] = field(
        default_factory=lambda: {"stdout": [], "stderr": []}
    )
    _sizes: dict[str, int] = field(default_factory=lambda: {"stdout": 0, "stderr": 0})

    def append(self, stream: str, text: str) -> None:
        """Add *text* to *stream* unless the task is terminal or the buffer is full."""
        if self.state is not TaskState.RUNNING or not text:
            return
        room = self.max_chars - self._sizes[stream]
        if room <= 0:
            self.truncated = True
            return
        if len(text) > room:
            text = text[:room]
            self.truncated = True
        self._chunks[stream].append(text)
        self._sizes[stream] += len(text)

    def finish(self, exit_code: int) -> None:
        if self.state is not TaskState.RUNNING:
            return
        self.exit_code = exit_code
        self.state = TaskState.COMPLETED if exit_code == 0 else TaskState.FAILED
        self.finished_at = datetime.now(timezone.utc)

    def fail(self, reason: str) -> None:
        """Mark the task failed without an exit code (spawn or supervision error)."""
        if self.state is not TaskState.RUNNING:
            return
        self.append("stderr", reason)
        self.state = TaskState.FAILED
        self.finished_at = datetime.now(timezone.utc)

    def snapshot(self) -> ManagedTask:
        return ManagedTask(
            id=self.id,
            name=self.name,
            command=self.command,
            state=self.state,
            output="".join(self._chunks["stdout"]),
            error="".join(self._chunks["stderr"]),
            started_at=self.started_at,
            exit_code=self.exit_code,
            finished_at=self.finished_at,
            truncated=self.truncated,
        )


class TaskRegistry:
    """Starts and tracks background shell commands.

    Args:
        executor: Execution collaborator providing ``spawn_detached(command,
            cwd)`` (normally :class:`~aide.execution.shell.ShellExecutor`).
        retention: Number of finished tasks kept for status queries.  The
            oldest finished tasks are evicted first; running tasks are never
            evicted.
        output_max_chars: Per-stream buffer cap for each task.
    """

    def __init__(
        self,
        executor: Any,
        retention: int = 100,
        output_max_chars: int = 1_000_000,
    ) -> None:
        self._executor = executor
        self._retention = retention
        self._output_max_chars = output_max_chars
        self._counter = itertools.count(1)
        self._tasks: dict[str, _TaskRecord] = {}
        self._finished: collections.deque[str] = collections.deque()
        self._supervisors: dict[str, asyncio.Task[None]] = {}

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _next_id(self) -> str:
        return f"task_{next(self._counter)}_{int(time.time() * 1000)}"

    async def start(
        self,
        command: str,
        cwd: str | Path | None = None,
        name: str | None = None,
    ) -> str:
        """Start *command* in the background and return its task id.

        Returns as soon as the process has been spawned.  A command that
        cannot be spawned still gets an id; its task is immediately
        ``failed`` with the spawn error and no exit code.
        """
        record = _TaskRecord(
            id=self._next_id(),
            name=name or command[:_DEFAULT_NAME_CHARS],
            command=command,
            max_chars=self._output_max_chars,
        )
        self._tasks[record.id] = record

        try:
            process = await self._executor.spawn_detached(command, cwd=cwd)
        except (OSError, ValueError) as exc:
            log.warning("Background task %s could not start: %s", record.id, exc)
            record.fail(str(exc) or type(exc).__name__)
            self._retire(record.id)
            return record.id

        log.info("Background task %s started: %s", record.id, command)
        supervisor = asyncio.create_task(
            self._supervise(record, process), name=f"supervise-{record.id}"
        )
        self._supervisors[record.id] = supervisor
        supervisor.add_done_callback(lambda _t, tid=record.id: self._supervisors.pop(tid, None))
        return record.id

    async def _pump(self, record: _TaskRecord, stream: str, reader: asyncio.StreamReader | None) -> None:
        if reader is None:
            return
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            chunk = await reader.read(_READ_CHUNK)
            if not chunk:
                break
            record.append(stream, decoder.decode(chunk))
        record.append(stream, decoder.decode(b"", final=True))

    async def _supervise(self, record: _TaskRecord, process: Any) -> None:
        try:
            await asyncio.gather(
                self._pump(record, "stdout", process.stdout),
                self._pump(record, "stderr", process.stderr),
            )
            exit_code = await process.wait()
        except asyncio.CancelledError:
            record.fail("Supervision cancelled")
            self._retire(record.id)
            raise
        except Exception as exc:
            log.error("Background task %s lost: %s", record.id, exc, exc_info=True)
            record.fail(str(exc))
            self._retire(record.id)
            return

        record.finish(exit_code)
        log.info(
            "Background task %s %s (exit=%d).",
            record.id,
            record.state.value,
            exit_code,
        )
        self._retire(record.id)

    def _retire(self, task_id: str) -> None:
        """Queue a terminal task for eviction and drop the oldest beyond retention."""
        self._finished.append(task_id)
        while len(self._finished) > self._retention:
            evicted = self._finished.popleft()
            self._tasks.pop(evicted, None)
            log.debug("Evicted finished task %s", evicted)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def status(self, task_id: str) -> ManagedTask | None:
        """Return a snapshot of *task_id*, or ``None`` if it is unknown."""
        record = self._tasks.get(task_id)
        if record is None:
            return None
        return record.snapshot()

    def list_tasks(self) -> list[ManagedTask]:
        """Snapshots of every tracked task, oldest first."""
        return [record.snapshot() for record in self._tasks.values()]

    def counts(self) -> dict[str, int]:
        """Number of tracked tasks per state."""
        totals = {state.value: 0 for state in TaskState}
        for record in self._tasks.values():
            totals[record.state.value] += 1
        return totals

    async def wait(self, task_id: str, timeout: float | None = None) -> ManagedTask | None:
        """Wait until *task_id* is terminal and return its final snapshot.

        Returns the current snapshot if *timeout* expires first, and ``None``
        for unknown ids.
        """
        supervisor = self._supervisors.get(task_id)
        if supervisor is not None:
            try:
                await asyncio.wait_for(asyncio.shield(supervisor), timeout=timeout)
            except asyncio.TimeoutError:
                pass
        return self.status(task_id)
