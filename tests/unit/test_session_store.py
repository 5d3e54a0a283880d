"""
Session Store Tests
===================
Creation, history cap, expiry sweep and the oracle context view.
"""

from unittest.mock import AsyncMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from app.conversation.models import ConversationMessage, ExtractedTravelParams, MessageRole, Session
from app.conversation.session_store import RedisSessionStore, SessionStore
from fakes import NOW, ManualDateTimeClock, build_flight
from services.exceptions import NotFoundError


def _message(i: int) -> ConversationMessage:
    return ConversationMessage(role=MessageRole.USER, content=f"message {i}")


def test_get_or_create_returns_same_session(session_store):
    first = session_store.get_or_create("s1", user_id="u1")
    second = session_store.get_or_create("s1")

    assert first is second
    assert second.user_id == "u1"
    assert len(session_store) == 1


def test_require_unknown_session_raises_not_found(session_store):
    with pytest.raises(NotFoundError) as exc:
        session_store.require("missing")
    assert exc.value.message == "Session not found"


def test_history_is_capped_oldest_first():
    store = SessionStore(max_history=3)
    store.get_or_create("s1")
    for i in range(5):
        store.append("s1", _message(i))

    history = store.require("s1").conversation_history
    assert [m.content for m in history] == ["message 2", "message 3", "message 4"]


def test_sweep_removes_only_idle_sessions(dt_clock):
    store = SessionStore(ttl_minutes=60, clock=dt_clock)
    store.get_or_create("old")
    dt_clock.advance(minutes=45)
    store.get_or_create("fresh")
    dt_clock.advance(minutes=30)

    assert store.sweep_expired() == 1
    assert "old" not in store
    assert "fresh" in store


def test_activity_extends_session_lifetime(dt_clock):
    store = SessionStore(ttl_minutes=60, clock=dt_clock)
    store.get_or_create("s1")
    dt_clock.advance(minutes=50)
    store.touch("s1")
    dt_clock.advance(minutes=50)

    assert store.sweep_expired() == 0


def test_clear_reports_whether_session_existed(session_store):
    session_store.get_or_create("s1")

    assert session_store.clear("s1") is True
    assert session_store.clear("s1") is False


def test_context_holds_query_results_and_recent_messages():
    store = SessionStore(context_window=2, clock=ManualDateTimeClock(NOW))
    store.get_or_create("s1")
    flight = build_flight()
    store.set_query("s1", ExtractedTravelParams(origin="JFK", destination="LHR"))
    store.set_results("s1", [flight])
    for i in range(4):
        store.append("s1", _message(i))

    context = store.context("s1")
    assert context.current_query.origin == "JFK"
    assert context.search_results == [flight]
    assert context.recent_messages == [
        {"role": "user", "content": "message 2"},
        {"role": "user", "content": "message 3"},
    ]


def test_update_booking_keeps_other_fields(session_store):
    session_store.get_or_create("s1")
    session_store.update_booking("s1", booking_reference="FBREF")
    booking = session_store.update_booking("s1", passengers=[])

    assert booking.booking_reference == "FBREF"


def test_stats_counts_sessions(session_store):
    session_store.get_or_create("a")
    session_store.get_or_create("b")

    stats = session_store.stats()
    assert stats["total_sessions"] == 2
    assert stats["active_sessions"] == 2


# ============================================================
# REDIS PERSISTENCE
# ============================================================

def _redis_store(client, dt_clock) -> RedisSessionStore:
    return RedisSessionStore("redis://localhost", client=client, ttl_minutes=60, clock=dt_clock)


@pytest.mark.asyncio
async def test_redis_save_writes_document_with_ttl(dt_clock):
    client = AsyncMock()
    store = _redis_store(client, dt_clock)
    store.get_or_create("s1", user_id="u1")
    store.append("s1", _message(1))

    assert await store.save("s1")

    key, payload = client.set.call_args.args
    assert key == "session:s1"
    assert client.set.call_args.kwargs == {"ex": 3600}
    saved = Session.model_validate_json(payload)
    assert saved.user_id == "u1"
    assert [m.content for m in saved.conversation_history] == ["message 1"]


@pytest.mark.asyncio
async def test_redis_load_restores_session_into_working_set(dt_clock):
    stored = Session(session_id="s1", user_id="u1", search_results=[build_flight("F1")])
    client = AsyncMock()
    client.get.return_value = stored.model_dump_json()
    store = _redis_store(client, dt_clock)

    session = await store.load("s1")

    assert session.user_id == "u1"
    assert session.last_activity == NOW
    assert store.require("s1").search_results[0].id == "F1"
    # Later loads are served from the working copy
    await store.load("s1")
    client.get.assert_awaited_once_with("session:s1")


@pytest.mark.asyncio
async def test_redis_load_of_expired_or_unreachable_session(dt_clock):
    client = AsyncMock()
    client.get.return_value = None
    store = _redis_store(client, dt_clock)

    assert await store.load("gone") is None

    client.get.side_effect = RedisConnectionError("connection refused")
    assert await store.load("gone") is None
    assert "gone" not in store


@pytest.mark.asyncio
async def test_redis_delete_removes_key_and_working_copy(dt_clock):
    client = AsyncMock()
    client.delete.return_value = 1
    store = _redis_store(client, dt_clock)
    store.get_or_create("s1")

    assert await store.delete("s1")

    client.delete.assert_awaited_once_with("session:s1")
    assert "s1" not in store


@pytest.mark.asyncio
async def test_in_memory_persistence_hooks(session_store):
    assert await session_store.load("s1") is None
    session_store.get_or_create("s1")

    assert (await session_store.load("s1")).session_id == "s1"
    assert await session_store.save("s1")
    assert await session_store.delete("s1")
    assert not await session_store.save("s1")
