"""TTL cache with single-flight refresh and stale fallback.

One instance is created per process (or per test) and injected into the
sources and API routes that need it.

    cache = TtlCache()
    entry = await cache.single_flight("points", fetch_points, ttl=3600)
    if entry.is_stale:
        ...  # refresh failed, entry holds the last good value

At most one producer runs per key, as its own task; every caller (the one that
started it included) awaits it through `asyncio.shield`, so a cancelled caller
does not cancel the fetch for the rest. Values are stored only after the
producer succeeds.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    stored_at: float
    expires_at: float
    is_stale: bool = False
    # True when the value came from the store rather than a fresh produce call
    from_cache: bool = True
    error: str = ""

    def expires_in(self, now: float) -> float:
        return max(self.expires_at - now, 0.0)


class TtlCache:
    def __init__(
        self,
        default_ttl: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: dict[str, CacheEntry[Any]] = {}
        self._inflight: dict[str, asyncio.Task] = {}
        self._lock = asyncio.Lock()

    def now(self) -> float:
        return self._clock()

    def get(self, key: str) -> CacheEntry[Any] | None:
        """Fresh entry for key, or None. Never blocks."""
        entry = self._entries.get(key)
        if entry is None or self.now() >= entry.expires_at:
            return None
        return entry

    def get_stale(self, key: str) -> CacheEntry[Any] | None:
        """Last stored entry regardless of expiry, flagged stale if expired."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self.now() >= entry.expires_at:
            return CacheEntry(entry.value, entry.stored_at, entry.expires_at, is_stale=True)
        return entry

    def put(self, key: str, value: Any, ttl: float | None = None) -> CacheEntry[Any]:
        now = self.now()
        entry = CacheEntry(value, now, now + (ttl if ttl is not None else self.default_ttl))
        self._entries[key] = entry
        return entry

    def invalidate(self, key: str) -> None:
        self._entries.pop(key, None)

    async def single_flight(
        self,
        key: str,
        producer: Callable[[], Awaitable[T]],
        ttl: float | None = None,
    ) -> CacheEntry[T]:
        fresh = self.get(key)
        if fresh is not None:
            return fresh

        async with self._lock:
            fresh = self.get(key)
            if fresh is not None:
                return fresh
            task = self._inflight.get(key)
            owner = task is None
            if owner:
                task = asyncio.ensure_future(self._produce(key, producer, ttl))
                task.add_done_callback(_consume_result)
                self._inflight[key] = task
            else:
                logger.debug("Joining in-flight fetch for %s", key)

        try:
            entry = await asyncio.shield(task)
        except Exception as exc:
            return self._stale_or_raise(key, exc)
        if owner:
            return entry
        return self._entries.get(key) or entry

    async def _produce(
        self,
        key: str,
        producer: Callable[[], Awaitable[T]],
        ttl: float | None,
    ) -> CacheEntry[T]:
        try:
            value = await producer()
            entry = self.put(key, value, ttl)
            return CacheEntry(entry.value, entry.stored_at, entry.expires_at, from_cache=False)
        finally:
            if self._inflight.get(key) is asyncio.current_task():
                del self._inflight[key]

    def _stale_or_raise(self, key: str, exc: Exception) -> CacheEntry[Any]:
        stale = self._entries.get(key)
        if stale is None:
            raise exc
        logger.warning("Refresh of %s failed (%s); serving stale value", key, exc)
        return CacheEntry(
            stale.value,
            stale.stored_at,
            stale.expires_at,
            is_stale=True,
            error=str(exc),
        )


def _consume_result(task: asyncio.Task) -> None:
    # Every caller may have been cancelled; retrieve the outcome so asyncio does not warn
    if not task.cancelled():
        task.exception()
