"""Session persistence: one conversation log + turn state per session id.

Two backends share the ``SessionStore`` protocol:

* ``MemorySessionStore`` — in-process, LRU-evicted once the serialised
  snapshots exceed a byte ceiling, with an optional idle TTL.  Lost on
  restart.
* ``RedisSessionStore`` — ``redis.asyncio`` backed, survives restarts and
  can be shared by several server processes.

Both store a session as a single JSON document and replace it in one
write, so a reader sees either the previous turn's snapshot or the new one,
never a mix.  ``load`` always returns freshly deserialised objects: callers
can mutate what they get back without touching the stored copy.

A turn reads, rewrites and saves the whole document, so it must hold the
store's ``lock(session_id)`` from load to save.  The memory store locks
within the process; the Redis store takes a Redis lock, which serialises
turns across every process that shares the server.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import time
import weakref
from collections import OrderedDict
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from dataclasses import dataclass
from typing import Protocol

from langchain_core.messages import AnyMessage, messages_from_dict, messages_to_dict
from redis.asyncio import Redis
from redis.exceptions import LockError, RedisError

from chatbot import config
from chatbot.errors import SessionStoreError
from chatbot.services.metrics import metrics
from chatbot.state import Intent, TurnState

logger = logging.getLogger(__name__)

SNAPSHOT_VERSION = 1


@dataclass
class SessionSnapshot:
    """Everything persisted for one session."""

    messages: list[AnyMessage]
    turn_state: TurnState


class SessionStore(Protocol):
    """Load/save/delete contract the engine depends on."""

    async def load(self, session_id: str) -> SessionSnapshot | None: ...

    async def save(
        self, session_id: str, messages: list[AnyMessage], turn_state: TurnState,
    ) -> None: ...

    async def delete(self, session_id: str) -> None: ...

    def lock(self, session_id: str) -> AbstractAsyncContextManager[None]: ...


# ── Serialisation ────────────────────────────────────────────────────


def dump_snapshot(messages: list[AnyMessage], turn_state: TurnState) -> str:
    """Serialise a session to a JSON document."""
    payload = {
        "version": SNAPSHOT_VERSION,
        "messages": messages_to_dict(messages),
        "turn_state": {
            "intent": str(turn_state["intent"]),
            "exchange_count": turn_state["exchange_count"],
            "needs_approval": turn_state["needs_approval"],
            "pending_tool_calls": [dict(tc) for tc in turn_state["pending_tool_calls"]],
            "approval_prompt": turn_state["approval_prompt"],
        },
    }
    return json.dumps(payload, ensure_ascii=False)


def load_snapshot(raw: str) -> SessionSnapshot:
    """Inverse of ``dump_snapshot``."""
    payload = json.loads(raw)
    if payload.get("version") != SNAPSHOT_VERSION:
        raise ValueError(f"Unsupported snapshot version: {payload.get('version')!r}")

    ts = payload["turn_state"]
    return SessionSnapshot(
        messages=messages_from_dict(payload["messages"]),
        turn_state={
            "intent": Intent(ts["intent"]),
            "exchange_count": int(ts["exchange_count"]),
            "needs_approval": bool(ts["needs_approval"]),
            "pending_tool_calls": list(ts["pending_tool_calls"]),
            "approval_prompt": ts["approval_prompt"],
        },
    )


# ── In-memory backend ────────────────────────────────────────────────


class MemorySessionStore:
    """Sessions kept in process memory, bounded by total serialised size.

    ``OrderedDict`` order is recency: ``load`` and ``save`` promote a
    session, and when a save pushes the total past ``max_bytes`` the least
    recently used sessions are dropped.  A session that has not been
    touched for ``ttl_seconds`` is treated as absent.
    """

    def __init__(
        self,
        max_bytes: int = config.SESSION_CACHE_MAX_BYTES,
        ttl_seconds: float | None = None,
    ) -> None:
        self._max_bytes = max_bytes
        self._ttl = ttl_seconds
        self._current_bytes = 0
        # session_id → (json document, size in bytes, last touched)
        self._store: OrderedDict[str, tuple[str, int, float]] = OrderedDict()
        self._lock = threading.Lock()
        self._session_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    async def load(self, session_id: str) -> SessionSnapshot | None:
        with self._lock:
            entry = self._store.get(session_id)
            if entry is None:
                return None
            raw, size, touched = entry
            if self._expired(touched):
                self._drop(session_id)
                logger.debug("Session %s expired", session_id)
                return None
            self._store[session_id] = (raw, size, time.monotonic())
            self._store.move_to_end(session_id)

        try:
            return load_snapshot(raw)
        except (ValueError, KeyError) as exc:
            raise SessionStoreError(
                f"Stored session is corrupt: {exc}", session_id=session_id,
            ) from exc

    async def save(
        self, session_id: str, messages: list[AnyMessage], turn_state: TurnState,
    ) -> None:
        try:
            raw = dump_snapshot(messages, turn_state)
        except (TypeError, ValueError) as exc:
            raise SessionStoreError(
                f"Session could not be serialised: {exc}", session_id=session_id,
            ) from exc

        size = len(raw.encode("utf-8"))
        if size > self._max_bytes:
            raise SessionStoreError(
                f"Session is {size} bytes, larger than the store limit of {self._max_bytes}",
                session_id=session_id,
            )

        with self._lock:
            if session_id in self._store:
                self._drop(session_id)
            while self._current_bytes + size > self._max_bytes and self._store:
                evicted, (_, evicted_size, _) = self._store.popitem(last=False)
                self._current_bytes -= evicted_size
                logger.info("Evicted session %s (%d bytes)", evicted, evicted_size)
            self._store[session_id] = (raw, size, time.monotonic())
            self._current_bytes += size

    async def delete(self, session_id: str) -> None:
        with self._lock:
            if session_id in self._store:
                self._drop(session_id)

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        """Hold the session exclusively within this process."""
        session_lock = self._session_locks.get(session_id)
        if session_lock is None:
            session_lock = asyncio.Lock()
            self._session_locks[session_id] = session_lock
        async with session_lock:
            yield

    @property
    def current_bytes(self) -> int:
        return self._current_bytes

    @property
    def session_count(self) -> int:
        return len(self._store)

    def _expired(self, touched: float) -> bool:
        return self._ttl is not None and time.monotonic() - touched > self._ttl

    def _drop(self, session_id: str) -> None:
        _, size, _ = self._store.pop(session_id)
        self._current_bytes -= size


# ── Redis backend ────────────────────────────────────────────────────


class RedisSessionStore:
    """Sessions stored as one JSON string per key in Redis."""

    KEY_PREFIX = "chatbot:session:"

    def __init__(
        self,
        url: str,
        ttl_seconds: int | None = None,
        lock_timeout: float = config.SESSION_LOCK_TIMEOUT_SECONDS,
        lock_wait: float = config.SESSION_LOCK_WAIT_SECONDS,
    ) -> None:
        self._url = url
        self._ttl = ttl_seconds
        self._lock_timeout = lock_timeout
        self._lock_wait = lock_wait
        self._client: Redis | None = None

    def _key(self, session_id: str) -> str:
        return f"{self.KEY_PREFIX}{session_id}"

    def _get_client(self) -> Redis:
        if self._client is None:
            self._client = Redis.from_url(self._url, decode_responses=True)
            logger.info("Redis session store at %s", self._url.split("@")[-1])
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    @asynccontextmanager
    async def lock(self, session_id: str) -> AsyncIterator[None]:
        """Hold the session exclusively across every process using this Redis.

        The lock expires after ``lock_timeout`` seconds so a crashed holder
        cannot block the session forever.  Waiting longer than ``lock_wait``
        raises ``SessionStoreError``.
        """
        redis_lock = self._get_client().lock(
            f"{self._key(session_id)}:lock",
            timeout=self._lock_timeout,
            blocking_timeout=self._lock_wait,
        )
        t0 = time.perf_counter()
        try:
            acquired = await redis_lock.acquire()
        except RedisError as exc:
            self._fail("lock", exc, t0)
            raise SessionStoreError(
                f"Could not lock session: {exc}", session_id=session_id,
            ) from exc
        if not acquired:
            metrics.record_call(
                "session_store", "lock", (time.perf_counter() - t0) * 1000,
                error_type="LockTimeout",
            )
            raise SessionStoreError(
                f"Timed out after {self._lock_wait:g}s waiting for the session lock",
                session_id=session_id,
            )
        metrics.record_call("session_store", "lock", (time.perf_counter() - t0) * 1000)

        try:
            yield
        finally:
            try:
                await redis_lock.release()
            except (LockError, RedisError) as exc:
                # the lock expired or Redis went away; it frees itself either way
                logger.warning("Could not release lock for session %s: %s", session_id, exc)

    async def load(self, session_id: str) -> SessionSnapshot | None:
        t0 = time.perf_counter()
        try:
            raw = await self._get_client().get(self._key(session_id))
        except RedisError as exc:
            self._fail("load", exc, t0)
            raise SessionStoreError(
                f"Could not load session: {exc}", session_id=session_id,
            ) from exc
        metrics.record_call("session_store", "load", (time.perf_counter() - t0) * 1000)

        if raw is None:
            return None
        try:
            return load_snapshot(raw)
        except (ValueError, KeyError) as exc:
            raise SessionStoreError(
                f"Stored session is corrupt: {exc}", session_id=session_id,
            ) from exc

    async def save(
        self, session_id: str, messages: list[AnyMessage], turn_state: TurnState,
    ) -> None:
        try:
            raw = dump_snapshot(messages, turn_state)
        except (TypeError, ValueError) as exc:
            raise SessionStoreError(
                f"Session could not be serialised: {exc}", session_id=session_id,
            ) from exc

        t0 = time.perf_counter()
        try:
            if self._ttl:
                await self._get_client().set(self._key(session_id), raw, ex=self._ttl)
            else:
                await self._get_client().set(self._key(session_id), raw)
        except RedisError as exc:
            self._fail("save", exc, t0)
            raise SessionStoreError(
                f"Could not save session: {exc}", session_id=session_id,
            ) from exc
        metrics.record_call("session_store", "save", (time.perf_counter() - t0) * 1000)

    async def delete(self, session_id: str) -> None:
        t0 = time.perf_counter()
        try:
            await self._get_client().delete(self._key(session_id))
        except RedisError as exc:
            self._fail("delete", exc, t0)
            raise SessionStoreError(
                f"Could not delete session: {exc}", session_id=session_id,
            ) from exc
        metrics.record_call("session_store", "delete", (time.perf_counter() - t0) * 1000)

    @staticmethod
    def _fail(operation: str, exc: Exception, t0: float) -> None:
        elapsed = (time.perf_counter() - t0) * 1000
        metrics.record_call(
            "session_store", operation, elapsed, error_type=type(exc).__name__,
        )
        logger.warning("Redis session %s failed: %s", operation, exc)


def create_session_store() -> SessionStore:
    """Build the store selected by ``SESSION_STORE``."""
    if config.SESSION_STORE == "redis":
        return RedisSessionStore(config.REDIS_URL, ttl_seconds=config.SESSION_TTL_SECONDS)
    if config.SESSION_STORE != "memory":
        logger.warning(
            "Unknown SESSION_STORE %r, using the in-memory store", config.SESSION_STORE,
        )
    return MemorySessionStore(ttl_seconds=config.SESSION_TTL_SECONDS)
