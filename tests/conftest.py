"""Shared fixtures for the Aide test suite."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from aide.execution.registry import TaskRegistry
from aide.execution.shell import ShellExecutor
from aide.memory.store import MemoryStore
from aide.models.reasoning import Completion


@pytest.fixture
def mock_openrouter():
    """Mock OpenRouter client."""
    client = AsyncMock()
    client.session_cost = 0.0
    client.chat = AsyncMock()
    client.close = AsyncMock()
    return client


@pytest.fixture
def mock_reasoning():
    """Mock reasoning service that answers every prompt with "ok"."""
    service = MagicMock()
    service.complete = AsyncMock(return_value=Completion(success=True, text="ok"))
    service.info = MagicMock(return_value={"model": "test/model", "timeout_seconds": 5.0})
    service.close = AsyncMock()
    return service


@pytest.fixture
def memory():
    """Memory store that was never connected, so it runs in-memory."""
    return MemoryStore(redis_url="redis://localhost:1/0")


@pytest.fixture
def shell(tmp_path):
    return ShellExecutor(workdir=tmp_path, timeout=10.0)


@pytest.fixture
def registry(shell):
    return TaskRegistry(shell)
