"""Tests for MemoryStore (in-memory fallback backend)."""

from datetime import datetime, timedelta, timezone

import pytest

from aide.memory.entities import ProjectStatus
from aide.memory.store import MemoryStore


def test_not_connected_before_connect(memory):
    assert memory.is_connected is False
    assert memory.backend == "memory"


@pytest.mark.asyncio
async def test_connect_failure_falls_back_to_memory():
    store = MemoryStore(redis_url="redis://127.0.0.1:1/0")
    assert await store.connect() is False
    assert store.is_connected is False

    conv = await store.create_conversation("offline")
    assert (await store.get_conversation(conv.id)).title == "offline"
    await store.close()


# ---------------------------------------------------------------------------
# Conversations and messages
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_conversation_crud(memory):
    conv = await memory.create_conversation("First", metadata={"origin": "test"})
    assert await memory.update_conversation(conv.id, title="Renamed") is True
    assert (await memory.get_conversation(conv.id)).title == "Renamed"

    assert await memory.delete_conversation(conv.id) is True
    assert await memory.get_conversation(conv.id) is None
    assert await memory.update_conversation(conv.id, title="x") is False


@pytest.mark.asyncio
async def test_list_conversations_hides_archived(memory):
    keep = await memory.create_conversation("keep")
    archived = await memory.create_conversation("old")
    await memory.update_conversation(archived.id, is_archived=True)

    assert [c.id for c in await memory.list_conversations()] == [keep.id]
    assert len(await memory.list_conversations(include_archived=True)) == 2


@pytest.mark.asyncio
async def test_messages_keep_order_and_limit(memory):
    conv = await memory.create_conversation("chat")
    for i in range(5):
        await memory.add_message(conv.id, "user", f"m{i}")

    latest = await memory.get_messages(conv.id, limit=3)
    assert [m.content for m in latest] == ["m2", "m3", "m4"]
    assert await memory.get_messages(conv.id, limit=0) == []


@pytest.mark.asyncio
async def test_add_message_bumps_updated_at(memory):
    conv = await memory.create_conversation("chat")
    before = conv.updated_at
    message = await memory.add_message(conv.id, "assistant", "hi", tool_used="execution")
    assert message.tool_used == "execution"
    assert (await memory.get_conversation(conv.id)).updated_at >= before


@pytest.mark.asyncio
async def test_recent_messages_span_conversations(memory):
    a = await memory.create_conversation("a")
    b = await memory.create_conversation("b")
    await memory.add_message(a.id, "user", "one")
    await memory.add_message(b.id, "user", "two")
    await memory.add_message(a.id, "user", "three")

    assert [m.content for m in await memory.get_recent_messages(2)] == ["two", "three"]

    await memory.delete_conversation(a.id)
    assert [m.content for m in await memory.get_recent_messages(10)] == ["two"]


# ---------------------------------------------------------------------------
# Projects and knowledge
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_projects_filter_by_status(memory):
    site = await memory.create_project("site", "/srv/site", tech_stack=["node"])
    old = await memory.create_project("old", "/srv/old")
    await memory.update_project(old.id, status=ProjectStatus.ARCHIVED.value)

    active = await memory.list_projects(status="active")
    assert [p.id for p in active] == [site.id]
    assert len(await memory.list_projects()) == 2


@pytest.mark.asyncio
async def test_search_knowledge_substring_by_importance(memory):
    await memory.add_knowledge("notes", "Deploy steps", "use the staging box", importance=3)
    await memory.add_knowledge("notes", "Backups", "Deploy happens after backup", importance=9)
    await memory.add_knowledge("notes", "Unrelated", "lunch menu", importance=10)

    found = await memory.search_knowledge("deploy")
    assert [k.title for k in found] == ["Backups", "Deploy steps"]


@pytest.mark.asyncio
async def test_search_knowledge_category_filter(memory):
    await memory.add_knowledge("tasks", "Last task", "run: make deploy")
    await memory.add_knowledge("notes", "deploy", "notes about deploy")
    found = await memory.search_knowledge("deploy", category="tasks")
    assert [k.category for k in found] == ["tasks"]


@pytest.mark.asyncio
async def test_importance_is_clamped(memory):
    item = await memory.add_knowledge("notes", "t", "c", importance=42)
    assert item.importance == 10


@pytest.mark.asyncio
async def test_search_ranks_knowledge_and_projects(memory):
    await memory.add_knowledge("notes", "Billing API", "rate limits", importance=9)
    await memory.add_knowledge("notes", "Billing retro", "lessons", importance=2)
    await memory.create_project("billing-service", "/srv/billing")

    hits = await memory.search("billing")
    assert [(h.kind, h.relevance) for h in hits] == [
        ("knowledge", 0.9),
        ("project", 0.7),
        ("knowledge", 0.2),
    ]


# ---------------------------------------------------------------------------
# Preferences and context
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_preferences(memory):
    await memory.set_preference("language", "ar")
    await memory.set_preference("editor", {"name": "cursor"})
    assert await memory.get_preference("language") == "ar"
    assert await memory.get_preference("missing", "default") == "default"
    assert await memory.get_all_preferences() == {"language": "ar", "editor": {"name": "cursor"}}
    assert await memory.delete_preference("language") is True


@pytest.mark.asyncio
async def test_context_entries_expire(memory):
    now = datetime.now(timezone.utc)
    await memory.set_context("user", "name", "Sara")
    await memory.set_context("session", "token", "abc", expires_at=now + timedelta(hours=1))
    await memory.set_context("session", "stale", "old", expires_at=now - timedelta(seconds=1))

    assert await memory.get_context("user", "name") == "Sara"
    assert await memory.get_context("session", "token") == "abc"
    assert await memory.get_context("session", "stale") is None


@pytest.mark.asyncio
async def test_stats(memory):
    await memory.create_conversation("c")
    await memory.add_knowledge("notes", "t", "c")
    stats = await memory.stats()
    assert stats == {
        "backend": "memory",
        "conversations": 1,
        "projects": 0,
        "knowledge": 1,
        "preferences": 0,
    }
