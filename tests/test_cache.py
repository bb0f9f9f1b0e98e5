"""Tests for the TTL cache and single-flight refresh."""
from __future__ import annotations

import asyncio

import pytest

from pointscope.core.cache import TtlCache


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


async def test_put_and_get_respect_ttl():
    clock = FakeClock()
    cache = TtlCache(default_ttl=60, clock=clock)
    cache.put("k", "v")
    entry = cache.get("k")
    assert entry is not None and entry.value == "v"
    assert not entry.is_stale
    assert entry.expires_in(clock.now) == 60

    clock.now += 61
    assert cache.get("k") is None
    stale = cache.get_stale("k")
    assert stale is not None and stale.is_stale and stale.value == "v"


async def test_fresh_value_skips_producer():
    cache = TtlCache(default_ttl=60, clock=FakeClock())
    calls = 0

    async def producer():
        nonlocal calls
        calls += 1
        return calls

    first = await cache.single_flight("k", producer)
    second = await cache.single_flight("k", producer)
    assert first.value == second.value == 1
    assert not first.from_cache
    assert second.from_cache
    assert calls == 1


async def test_concurrent_callers_share_one_producer_call():
    cache = TtlCache(default_ttl=60)
    calls = 0
    release = asyncio.Event()

    async def producer():
        nonlocal calls
        calls += 1
        await release.wait()
        return "value"

    tasks = [asyncio.create_task(cache.single_flight("k", producer)) for _ in range(5)]
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    release.set()
    entries = await asyncio.gather(*tasks)
    assert calls == 1
    assert {e.value for e in entries} == {"value"}


async def test_failure_serves_stale_value():
    clock = FakeClock()
    cache = TtlCache(default_ttl=60, clock=clock)
    cache.put("k", "old")
    clock.now += 120

    async def failing():
        raise RuntimeError("upstream down")

    entry = await cache.single_flight("k", failing)
    assert entry.value == "old"
    assert entry.is_stale
    assert "upstream down" in entry.error


async def test_failure_without_stale_value_propagates():
    cache = TtlCache()

    async def failing():
        raise RuntimeError("upstream down")

    with pytest.raises(RuntimeError, match="upstream down"):
        await cache.single_flight("k", failing)
    # Nothing cached from a failed produce
    assert cache.get_stale("k") is None


async def test_waiters_see_owner_failure():
    cache = TtlCache()
    release = asyncio.Event()

    async def failing():
        await release.wait()
        raise RuntimeError("boom")

    tasks = [asyncio.create_task(cache.single_flight("k", failing)) for _ in range(3)]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*tasks, return_exceptions=True)
    assert all(isinstance(r, RuntimeError) for r in results)


async def test_cancelled_starter_does_not_cancel_joiners():
    cache = TtlCache(default_ttl=60)
    calls = 0
    release = asyncio.Event()

    async def producer():
        nonlocal calls
        calls += 1
        await release.wait()
        return "value"

    starter = asyncio.create_task(cache.single_flight("k", producer))
    await asyncio.sleep(0)
    joiner = asyncio.create_task(cache.single_flight("k", producer))
    await asyncio.sleep(0)

    starter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await starter

    release.set()
    entry = await joiner
    assert entry.value == "value"
    assert not joiner.cancelled()
    assert calls == 1
    assert cache.get("k").value == "value"


async def test_invalidate():
    cache = TtlCache()
    cache.put("k", 1)
    cache.invalidate("k")
    assert cache.get("k") is None
