"""Shell execution and background task supervision."""

from aide.execution.registry import ManagedTask, TaskRegistry, TaskState
from aide.execution.shell import CommandResult, ShellExecutor

__all__ = [
    "CommandResult",
    "ManagedTask",
    "ShellExecutor",
    "TaskRegistry",
    "TaskState",
]
