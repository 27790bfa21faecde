"""Tests for the in-memory and Redis session stores."""

from __future__ import annotations

import asyncio
import json
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from langchain_core.messages import AIMessage, HumanMessage, ToolMessage
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import LockError

from chatbot.errors import SessionStoreError
from chatbot.services.session_store import (
    MemorySessionStore,
    RedisSessionStore,
    create_session_store,
    dump_snapshot,
    load_snapshot,
)
from chatbot.state import Intent, initial_turn_state


def _conversation():
    return [
        HumanMessage(content="Weather in Paris?"),
        AIMessage(
            content="",
            tool_calls=[{"name": "get_weather", "args": {"location": "Paris"}, "id": "w1"}],
        ),
        ToolMessage(content="[Requesting clarification]", tool_call_id="w1", name="get_weather"),
        AIMessage(content='I found that "Paris" could refer to multiple cities.'),
    ]


def _turn_state(**overrides):
    state = {
        "intent": Intent.QUESTION,
        "exchange_count": 1,
        "needs_approval": True,
        "pending_tool_calls": [
            {"name": "get_weather", "args": {"location": "Paris"}, "id": "w1", "type": "tool_call"},
        ],
        "approval_prompt": 'I found that "Paris" could refer to multiple cities.',
    }
    state.update(overrides)
    return state


# ── Serialisation ────────────────────────────────────────────────────


class TestSnapshotSerialisation:
    def test_round_trip_preserves_messages_and_state(self):
        messages, turn_state = _conversation(), _turn_state()
        snapshot = load_snapshot(dump_snapshot(messages, turn_state))

        assert snapshot.messages == messages
        assert snapshot.turn_state == turn_state
        assert snapshot.turn_state["intent"] is Intent.QUESTION
        assert snapshot.messages[1].tool_calls[0]["id"] == "w1"
        assert snapshot.messages[2].tool_call_id == "w1"

    def test_unknown_version_is_rejected(self):
        raw = json.loads(dump_snapshot([], initial_turn_state()))
        raw["version"] = 99
        with pytest.raises(ValueError, match="version"):
            load_snapshot(json.dumps(raw))


# ── MemorySessionStore ───────────────────────────────────────────────


class TestMemorySessionStore:
    @pytest.mark.asyncio
    async def test_unknown_session_is_none(self):
        assert await MemorySessionStore().load("nope") is None

    @pytest.mark.asyncio
    async def test_save_then_load(self):
        store = MemorySessionStore()
        await store.save("s1", _conversation(), _turn_state())

        snapshot = await store.load("s1")

        assert snapshot.messages == _conversation()
        assert snapshot.turn_state["exchange_count"] == 1
        assert store.session_count == 1
        assert store.current_bytes > 0

    @pytest.mark.asyncio
    async def test_loaded_copies_are_independent(self):
        store = MemorySessionStore()
        await store.save("s1", _conversation(), _turn_state())

        first = await store.load("s1")
        first.messages.append(HumanMessage(content="mutated"))
        first.turn_state["exchange_count"] = 99

        second = await store.load("s1")
        assert len(second.messages) == 4
        assert second.turn_state["exchange_count"] == 1

    @pytest.mark.asyncio
    async def test_save_replaces_previous_snapshot(self):
        store = MemorySessionStore()
        await store.save("s1", _conversation()[:1], _turn_state(exchange_count=0))
        await store.save("s1", _conversation(), _turn_state())

        snapshot = await store.load("s1")
        assert len(snapshot.messages) == 4
        assert store.session_count == 1
        assert store.current_bytes == len(
            dump_snapshot(_conversation(), _turn_state()).encode("utf-8")
        )

    @pytest.mark.asyncio
    async def test_delete(self):
        store = MemorySessionStore()
        await store.save("s1", _conversation(), _turn_state())
        await store.delete("s1")
        await store.delete("s1")  # deleting twice is fine
        assert await store.load("s1") is None
        assert store.current_bytes == 0

    @pytest.mark.asyncio
    async def test_least_recently_used_is_evicted(self):
        size = len(dump_snapshot(_conversation(), _turn_state()).encode("utf-8"))
        store = MemorySessionStore(max_bytes=size * 2 + 10)

        await store.save("a", _conversation(), _turn_state())
        await store.save("b", _conversation(), _turn_state())
        await store.load("a")  # a is now more recent than b
        await store.save("c", _conversation(), _turn_state())

        assert await store.load("b") is None
        assert await store.load("a") is not None
        assert await store.load("c") is not None
        assert store.session_count == 2

    @pytest.mark.asyncio
    async def test_oversized_session_is_rejected(self):
        store = MemorySessionStore(max_bytes=100)
        with pytest.raises(SessionStoreError, match="larger than the store limit"):
            await store.save("s1", _conversation(), _turn_state())
        assert store.session_count == 0

    @pytest.mark.asyncio
    async def test_idle_session_expires(self):
        store = MemorySessionStore(ttl_seconds=60)
        with patch("chatbot.services.session_store.time.monotonic", return_value=1000.0):
            await store.save("s1", _conversation(), _turn_state())
        with patch("chatbot.services.session_store.time.monotonic", return_value=1030.0):
            assert await store.load("s1") is not None
        with patch("chatbot.services.session_store.time.monotonic", return_value=1080.0):
            assert await store.load("s1") is not None  # touched at 1030, still fresh
        with patch("chatbot.services.session_store.time.monotonic", return_value=1200.0):
            assert await store.load("s1") is None
        assert store.current_bytes == 0

    @pytest.mark.asyncio
    async def test_lock_serialises_holders_of_one_session(self):
        store = MemorySessionStore()
        events = []

        async def hold(name):
            async with store.lock("s1"):
                events.append(f"{name} in")
                await asyncio.sleep(0.02)
                events.append(f"{name} out")

        await asyncio.gather(hold("a"), hold("b"))
        assert events == ["a in", "a out", "b in", "b out"]

    @pytest.mark.asyncio
    async def test_lock_does_not_block_other_sessions(self):
        store = MemorySessionStore()
        async with store.lock("s1"):
            await asyncio.wait_for(self._enter(store, "s2"), timeout=1)

    @staticmethod
    async def _enter(store, session_id):
        async with store.lock(session_id):
            pass


# ── RedisSessionStore ────────────────────────────────────────────────


@pytest.fixture
def mock_redis():
    client = MagicMock()
    client.get = AsyncMock(return_value=None)
    client.set = AsyncMock(return_value=True)
    client.delete = AsyncMock(return_value=1)
    client.aclose = AsyncMock()
    redis_lock = MagicMock()
    redis_lock.acquire = AsyncMock(return_value=True)
    redis_lock.release = AsyncMock()
    client.lock = MagicMock(return_value=redis_lock)
    return client


@pytest.fixture
def redis_store(mock_redis):
    store = RedisSessionStore("redis://localhost:6379/0", ttl_seconds=3600)
    store._client = mock_redis
    return store


class TestRedisSessionStore:
    @pytest.mark.asyncio
    async def test_save_writes_one_key_with_ttl(self, redis_store, mock_redis):
        await redis_store.save("s1", _conversation(), _turn_state())

        mock_redis.set.assert_awaited_once()
        args, kwargs = mock_redis.set.call_args
        assert args[0] == "chatbot:session:s1"
        assert kwargs["ex"] == 3600
        assert load_snapshot(args[1]).messages == _conversation()

    @pytest.mark.asyncio
    async def test_save_without_ttl(self, mock_redis):
        store = RedisSessionStore("redis://localhost:6379/0")
        store._client = mock_redis
        await store.save("s1", [], initial_turn_state())
        assert "ex" not in mock_redis.set.call_args.kwargs

    @pytest.mark.asyncio
    async def test_load_missing_session(self, redis_store, mock_redis):
        assert await redis_store.load("s1") is None
        mock_redis.get.assert_awaited_once_with("chatbot:session:s1")

    @pytest.mark.asyncio
    async def test_load_existing_session(self, redis_store, mock_redis):
        mock_redis.get.return_value = dump_snapshot(_conversation(), _turn_state())
        snapshot = await redis_store.load("s1")
        assert snapshot.messages == _conversation()
        assert snapshot.turn_state["needs_approval"] is True

    @pytest.mark.asyncio
    async def test_corrupt_document_raises_store_error(self, redis_store, mock_redis):
        mock_redis.get.return_value = "{not json"
        with pytest.raises(SessionStoreError, match="corrupt"):
            await redis_store.load("s1")

    @pytest.mark.asyncio
    async def test_delete(self, redis_store, mock_redis):
        await redis_store.delete("s1")
        mock_redis.delete.assert_awaited_once_with("chatbot:session:s1")

    @pytest.mark.asyncio
    @pytest.mark.parametrize("operation", ["load", "save", "delete"])
    async def test_redis_errors_become_store_errors(self, redis_store, mock_redis, operation):
        for method in (mock_redis.get, mock_redis.set, mock_redis.delete):
            method.side_effect = RedisConnectionError("connection refused")

        call = {
            "load": lambda: redis_store.load("s1"),
            "save": lambda: redis_store.save("s1", [], initial_turn_state()),
            "delete": lambda: redis_store.delete("s1"),
        }[operation]

        with pytest.raises(SessionStoreError) as exc_info:
            await call()
        assert exc_info.value.session_id == "s1"
        assert isinstance(exc_info.value.__cause__, RedisConnectionError)

    @pytest.mark.asyncio
    async def test_lock_takes_a_redis_lock_per_session(self, mock_redis):
        store = RedisSessionStore("redis://localhost:6379/0", lock_timeout=120, lock_wait=5)
        store._client = mock_redis
        redis_lock = mock_redis.lock.return_value

        async with store.lock("s1"):
            redis_lock.release.assert_not_awaited()

        mock_redis.lock.assert_called_once_with(
            "chatbot:session:s1:lock", timeout=120, blocking_timeout=5,
        )
        redis_lock.acquire.assert_awaited_once()
        redis_lock.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_lock_is_released_when_the_turn_fails(self, redis_store, mock_redis):
        with pytest.raises(RuntimeError):
            async with redis_store.lock("s1"):
                raise RuntimeError("turn failed")
        mock_redis.lock.return_value.release.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_lock_wait_timeout_raises_store_error(self, redis_store, mock_redis):
        mock_redis.lock.return_value.acquire.return_value = False
        with pytest.raises(SessionStoreError, match="Timed out") as exc_info:
            async with redis_store.lock("s1"):
                pytest.fail("lock should not have been entered")
        assert exc_info.value.session_id == "s1"
        mock_redis.lock.return_value.release.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_lock_connection_error_raises_store_error(self, redis_store, mock_redis):
        mock_redis.lock.return_value.acquire.side_effect = RedisConnectionError("refused")
        with pytest.raises(SessionStoreError, match="Could not lock") as exc_info:
            async with redis_store.lock("s1"):
                pass
        assert isinstance(exc_info.value.__cause__, RedisConnectionError)

    @pytest.mark.asyncio
    async def test_expired_lock_on_release_is_not_an_error(self, redis_store, mock_redis):
        mock_redis.lock.return_value.release.side_effect = LockError("lock expired")
        async with redis_store.lock("s1"):
            pass

    @pytest.mark.asyncio
    async def test_close_releases_client(self, redis_store, mock_redis):
        await redis_store.close()
        mock_redis.aclose.assert_awaited_once()
        assert redis_store._client is None


class TestCreateSessionStore:
    def test_memory_by_default(self):
        with patch("chatbot.config.SESSION_STORE", "memory"):
            assert isinstance(create_session_store(), MemorySessionStore)

    def test_redis(self):
        with patch("chatbot.config.SESSION_STORE", "redis"):
            assert isinstance(create_session_store(), RedisSessionStore)

    def test_unknown_backend_falls_back_to_memory(self):
        with patch("chatbot.config.SESSION_STORE", "cassandra"):
            assert isinstance(create_session_store(), MemorySessionStore)
