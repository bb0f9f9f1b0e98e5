"""Tests for the HTTP API."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import httpx
import pytest

from pointscope.api.app import create_app
from pointscope.config import Settings
from pointscope.core.cache import TtlCache
from pointscope.core.errors import UpstreamUnavailable
from pointscope.sources.base import UpstreamSource
from pointscope.sources.points import PointsFigures
from pointscope.storage.models import Snapshot, SummaryAggregate
from pointscope.storage.sql import SqlSnapshotStore

T0 = datetime(2026, 1, 1, 9, 0, tzinfo=timezone.utc)
SECRET = "s3cret"


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


class CountingSource(UpstreamSource):
    def __init__(self, name: str, result=None) -> None:
        self.name = name
        self.result = result
        self.error: Exception | None = None
        self.calls = 0

    async def fetch(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.result


@pytest.fixture
async def env(tmp_path):
    store = SqlSnapshotStore(f"sqlite+aiosqlite:///{tmp_path / 'api.db'}")
    clock = FakeClock()
    points = CountingSource("points", PointsFigures(2_500_000, 77, 28, T0))
    tvl = CountingSource("tvl", {"nusd": {"holdTvl": 1000.0}, "upnusd": {"tvl": 10.0}})
    app = create_app(
        store=store,
        cache=TtlCache(clock=clock),
        tvl_source=tvl,
        points_source=points,
        config=Settings(cron_secret=SECRET, points_cache_ttl_seconds=3600, tvl_cache_ttl_seconds=600),
    )
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://api.test") as client:
        yield client, store, clock, points, tvl
    await store.close()


def snapshot_body(day: int, points: float) -> dict:
    return {
        "capturedAt": (T0 + timedelta(days=day)).isoformat(),
        "summary": {
            "cumulativePoints": points,
            "participantCount": 5,
            "totalRawTvl": 1_000_000,
            "totalWeightedTvl": 10_000,
        },
        "tableCondensed": [],
    }


async def test_health(env):
    client, *_ = env
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


async def test_post_requires_secret(env):
    client, store, *_ = env
    resp = await client.post("/snapshots", json=snapshot_body(0, 1000))
    assert resp.status_code == 401
    resp = await client.post(
        "/snapshots", json=snapshot_body(0, 1000), headers={"Authorization": "Bearer nope"}
    )
    assert resp.status_code == 401
    assert await store.count() == 0


async def test_post_and_read_snapshots(env):
    client, *_ = env
    auth = {"Authorization": f"Bearer {SECRET}"}
    for day, points in ((1, 1_100_000), (0, 1_000_000)):
        resp = await client.post("/snapshots", json=snapshot_body(day, points), headers=auth)
        assert resp.status_code == 200
        assert resp.json()["success"] is True

    rows = (await client.get("/snapshots")).json()
    assert [r["summary"]["cumulativePoints"] for r in rows] == [1_000_000, 1_100_000]
    assert rows[0]["id"] is not None

    latest = (await client.get("/snapshots", params={"mode": "latest"})).json()
    assert latest["summary"]["cumulativePoints"] == 1_100_000
    assert (await client.get("/snapshots", params={"mode": "count"})).json() == {"count": 2}
    assert len((await client.get("/snapshots", params={"limit": 1})).json()) == 1


async def test_post_missing_fields_rejected(env):
    client, *_ = env
    auth = {"Authorization": f"Bearer {SECRET}"}
    resp = await client.post("/snapshots", json={"capturedAt": T0.isoformat()}, headers=auth)
    assert resp.status_code == 422
    body = snapshot_body(0, 1)
    del body["summary"]["totalRawTvl"]
    resp = await client.post("/snapshots", json=body, headers=auth)
    assert resp.status_code == 400


async def test_latest_on_empty_store_is_404(env):
    client, *_ = env
    resp = await client.get("/snapshots", params={"mode": "latest"})
    assert resp.status_code == 404


async def test_inflation_needs_two_snapshots(env):
    client, store, *_ = env
    await store.append(
        Snapshot.at(T0, SummaryAggregate(1_000_000, 5, 1_000_000, 10_000))
    )
    resp = await client.get("/inflation")
    assert resp.status_code == 400
    assert "at least 2" in resp.json()["detail"]


async def test_inflation_report(env):
    client, store, *_ = env
    await store.append(Snapshot.at(T0, SummaryAggregate(1_000_000, 5, 1_000_000, 10_000)))
    await store.append(
        Snapshot.at(T0 + timedelta(days=10), SummaryAggregate(1_100_000, 8, 1_100_000, 10_000))
    )
    body = (await client.get("/inflation")).json()
    assert body["inflation"]["actualDailyRate"] == 10_000
    assert body["dataRange"]["totalDays"] == 10
    assert body["growthRates"]["pointsDailyGrowthRate"] == pytest.approx(0.957, abs=0.001)


async def test_inflation_reads_whole_history(tmp_path):
    store = SqlSnapshotStore(f"sqlite+aiosqlite:///{tmp_path / 'history.db'}")
    for day, points in ((0, 1_000_000), (10, 1_100_000), (20, 1_300_000)):
        await store.append(
            Snapshot.at(T0 + timedelta(days=day), SummaryAggregate(points, 5, 1_000_000, 10_000))
        )
    app = create_app(
        store=store,
        cache=TtlCache(),
        tvl_source=CountingSource("tvl"),
        points_source=CountingSource("points"),
        config=Settings(snapshot_read_limit=2),
    )
    async with httpx.AsyncClient(
        transport=httpx.ASGITransport(app=app), base_url="http://api.test"
    ) as client:
        body = (await client.get("/inflation")).json()
    await store.close()

    assert body["dataRange"]["snapshotCount"] == 3
    assert body["dataRange"]["to"].startswith("2026-01-21")
    assert body["currentState"]["cumulativePoints"] == 1_300_000


async def test_points_cached_then_stale(env):
    client, _, clock, points, _ = env
    first = (await client.get("/points")).json()
    second = (await client.get("/points")).json()
    assert points.calls == 1
    assert first["totalPoints"] == 2_500_000
    assert first["totalPointsFormatted"] == "2.50M"
    assert not first["cached"] and second["cached"]

    clock.now += 3601
    points.error = UpstreamUnavailable("points", "HTTP 429")
    stale = (await client.get("/points")).json()
    assert stale["stale"] is True
    assert stale["totalPoints"] == 2_500_000
    assert points.calls == 2


async def test_points_failure_without_cache_is_502(env):
    client, _, _, points, _ = env
    points.error = UpstreamUnavailable("points", "HTTP 404")
    resp = await client.get("/points")
    assert resp.status_code == 502


async def test_tvl_table(env):
    client, _, _, _, tvl = env
    body = (await client.get("/tvl")).json()
    await client.get("/tvl")
    assert tvl.calls == 1
    # hold-nusd 1000 × 5 + upNUSD 10 × 28
    assert body["totalWeightedTvl"] == pytest.approx(5_280)
    assert "lock-nusd-3mo" in body["missingRows"]
    hold = next(
        row for cat in body["categories"] for row in cat["rows"] if row["id"] == "hold-nusd"
    )
    assert hold["boost"] == "5x"
