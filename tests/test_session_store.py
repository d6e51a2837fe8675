"""
Tests for Session Store implementations.
Runs the same contract against InMemorySessionStore, SqlSessionStore (SQLite)
and RedisSessionStore (skipped when no Redis server is reachable).
"""
import pytest
import asyncio
import uuid
from datetime import datetime, timedelta, timezone

from livechat.exceptions import SessionNotFound, StaleAssignment
from livechat.models.chat import ChatSession, Sender, SessionStatus, utc_now
from livechat.session import (
    InMemorySessionStore,
    RedisSessionStore,
    SqlSessionStore,
    create_session_store,
)

NOTICE = "Queued for {email}"


# ===========================
# Fixtures
# ===========================

@pytest.fixture
async def in_memory_store():
    """Create in-memory session store for testing."""
    store = InMemorySessionStore(max_sessions=100)
    yield store
    await store.close()


@pytest.fixture
async def sql_store(tmp_path):
    """SQLite-backed store in a throwaway file."""
    store = SqlSessionStore(database_url=f"sqlite:///{tmp_path / 'livechat.db'}")
    yield store
    await store.close()


@pytest.fixture
async def redis_store():
    """Create Redis session store for testing (if available)."""
    store = RedisSessionStore(
        redis_url="redis://localhost:6379/15",  # Use test DB
        key_prefix=f"test:{uuid.uuid4().hex[:8]}:",
        lock_timeout=5
    )

    if not await store.ping():
        await store.close()
        pytest.skip("Redis not running")

    yield store

    for session in await store.list_sessions():
        await store.delete(session.id)
    client = await store._ensure_connection()
    await client.delete(store._presence_key())
    await store.close()


@pytest.fixture(params=[
    "in_memory",
    "sql",
    pytest.param("redis", marks=pytest.mark.requires_redis),
])
def session_store(request):
    """Parametrized fixture to test every store implementation."""
    return request.getfixturevalue(f"{request.param}_store")


def _new(session_id):
    def mutator(current):
        return current or ChatSession(id=session_id)
    return mutator


# ===========================
# Contract Tests
# ===========================

@pytest.mark.asyncio
async def test_get_missing_returns_none(session_store):
    assert await session_store.get("chat-missing") is None
    assert await session_store.exists("chat-missing") is False


@pytest.mark.asyncio
async def test_require_missing_raises(session_store):
    with pytest.raises(SessionNotFound):
        await session_store.require("chat-missing")


@pytest.mark.asyncio
async def test_get_or_create(session_store):
    created = await session_store.get_or_create("chat-100", user_email="user@example.com")
    assert created.status == SessionStatus.BOT_HANDLED
    assert created.user_email == "user@example.com"

    again = await session_store.get_or_create("chat-100", user_email="other@example.com")
    assert again.user_email == "user@example.com"
    assert await session_store.exists("chat-100")


@pytest.mark.asyncio
async def test_modify_persists_transition(session_store):
    await session_store.modify("chat-101", _new("chat-101"))
    await session_store.modify("chat-101", lambda s: s.append(Sender.USER, "hello"))
    await session_store.modify(
        "chat-101",
        lambda s: s.escalate(contact_email="u@example.com", notice_text=NOTICE)
    )

    stored = await session_store.get("chat-101")
    assert stored.status == SessionStatus.PENDING_ADMIN
    assert [m.text for m in stored.messages] == ["hello", "Queued for u@example.com"]


@pytest.mark.asyncio
async def test_modify_returning_same_object_is_noop(session_store):
    first = await session_store.modify("chat-102", _new("chat-102"))
    second = await session_store.modify("chat-102", lambda s: s)
    assert second == first


@pytest.mark.asyncio
async def test_mutator_error_leaves_session_untouched(session_store):
    await session_store.modify("chat-103", _new("chat-103"))

    def failing(current):
        current.append(Sender.USER, "lost")
        raise StaleAssignment("chat-103", "admin-9")

    with pytest.raises(StaleAssignment):
        await session_store.modify("chat-103", failing)

    assert (await session_store.get("chat-103")).message_count == 0


@pytest.mark.asyncio
async def test_concurrent_appends_are_not_lost(session_store):
    await session_store.modify("chat-104", _new("chat-104"))

    async def append(i):
        await session_store.modify("chat-104", lambda s: s.append(Sender.USER, f"message {i}"))

    await asyncio.gather(*(append(i) for i in range(20)))

    stored = await session_store.get("chat-104")
    assert stored.message_count == 20
    ids = [m.id for m in stored.messages]
    assert ids == sorted(ids)
    assert len(set(ids)) == 20


@pytest.mark.asyncio
async def test_concurrent_claims_first_writer_wins(session_store):
    await session_store.modify("chat-105", _new("chat-105"))
    await session_store.modify(
        "chat-105",
        lambda s: s.escalate(contact_email="u@example.com", notice_text=NOTICE)
    )

    async def claim(admin_id):
        try:
            await session_store.modify("chat-105", lambda s: s.claim(admin_id))
            return admin_id
        except StaleAssignment:
            return None

    results = await asyncio.gather(claim("admin-a"), claim("admin-b"))
    winners = [r for r in results if r]

    assert len(winners) == 1
    assert (await session_store.get("chat-105")).assigned_admin_id == winners[0]


@pytest.mark.asyncio
async def test_list_sessions_by_status(session_store):
    for session_id in ("chat-200", "chat-201", "chat-202"):
        await session_store.modify(session_id, _new(session_id))
    await session_store.modify(
        "chat-201",
        lambda s: s.escalate(contact_email="u@example.com", notice_text=NOTICE)
    )

    pending = await session_store.list_sessions([SessionStatus.PENDING_ADMIN])
    assert [s.id for s in pending] == ["chat-201"]

    everything = await session_store.list_sessions()
    assert {s.id for s in everything} >= {"chat-200", "chat-201", "chat-202"}


@pytest.mark.asyncio
async def test_delete(session_store):
    await session_store.modify("chat-300", _new("chat-300"))
    assert await session_store.delete("chat-300") is True
    assert await session_store.get("chat-300") is None
    assert await session_store.delete("chat-300") is False


@pytest.mark.asyncio
async def test_cleanup_only_removes_old_resolved_sessions(session_store):
    old = utc_now() - timedelta(days=3)

    await session_store.modify(
        "chat-400",
        lambda s: ChatSession(id="chat-400", created_at=old, last_activity_at=old)
    )
    await session_store.modify(
        "chat-400",
        lambda s: s.escalate(contact_email="u@example.com", notice_text=NOTICE, now=old)
                   .resolve("admin-1", "bye", now=old)
    )
    await session_store.modify("chat-401", _new("chat-401"))

    removed = await session_store.cleanup_expired(retention_seconds=3600)

    assert removed == 1
    assert await session_store.get("chat-400") is None
    assert await session_store.get("chat-401") is not None


@pytest.mark.asyncio
async def test_presence_records(session_store):
    at = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    await session_store.record_heartbeat("admin-1", at)
    await session_store.record_heartbeat("admin-1", at + timedelta(seconds=30))
    await session_store.record_heartbeat("admin-2", at)

    presence = await session_store.get_presence("admin-1")
    assert presence.last_heartbeat_at == at + timedelta(seconds=30)
    assert {p.admin_id for p in await session_store.list_presence()} == {"admin-1", "admin-2"}
    assert await session_store.get_presence("admin-unknown") is None


@pytest.mark.asyncio
async def test_health_check(session_store):
    health = await session_store.health_check()
    assert health["healthy"] is True


@pytest.mark.asyncio
async def test_stats(session_store):
    await session_store.modify("chat-500", _new("chat-500"))
    stats = await session_store.get_stats()
    assert stats["total_sessions"] >= 1
    assert stats["sessions_by_status"]["bot_handled"] >= 1


# ===========================
# Store-specific Tests
# ===========================

@pytest.mark.unit
@pytest.mark.asyncio
async def test_in_memory_evicts_oldest_resolved():
    store = InMemorySessionStore(max_sessions=2)
    old = utc_now() - timedelta(hours=1)

    await store.modify("chat-a", _new("chat-a"))
    await store.modify(
        "chat-a",
        lambda s: s.escalate(contact_email="u@example.com", notice_text=NOTICE, now=old)
                   .resolve("admin-1", "bye", now=old)
    )
    await store.modify("chat-b", _new("chat-b"))
    await store.modify("chat-c", _new("chat-c"))

    assert await store.get("chat-a") is None
    assert await store.get("chat-b") is not None
    assert await store.get("chat-c") is not None


@pytest.mark.integration
@pytest.mark.asyncio
async def test_sql_store_survives_reopen(tmp_path):
    url = f"sqlite:///{tmp_path / 'reopen.db'}"
    first = SqlSessionStore(database_url=url)
    await first.modify("chat-600", _new("chat-600"))
    await first.modify("chat-600", lambda s: s.append(Sender.USER, "persist me"))
    await first.close()

    second = SqlSessionStore(database_url=url)
    try:
        stored = await second.get("chat-600")
        assert stored.messages[0].text == "persist me"
    finally:
        await second.close()


@pytest.mark.unit
def test_factory_builds_each_store(tmp_path):
    assert isinstance(create_session_store("in_memory"), InMemorySessionStore)
    assert isinstance(
        create_session_store("sql", database_url=f"sqlite:///{tmp_path / 'f.db'}"),
        SqlSessionStore
    )
    assert isinstance(create_session_store("redis", redis_url="redis://localhost:6379/15"), RedisSessionStore)

    with pytest.raises(ValueError):
        create_session_store("mongo")
