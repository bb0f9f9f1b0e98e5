"""Tests for the upstream sources and their retry policy."""
from __future__ import annotations

import httpx
import pytest

from pointscope.config import Settings
from pointscope.core.cache import TtlCache
from pointscope.core.errors import UpstreamShapeChanged, UpstreamUnavailable
from pointscope.sources.base import WarmingUp, with_backoff
from pointscope.sources.points import PointsSource, cached_points, parse_points
from pointscope.sources.tvl import (
    ASSET_BUCKETS,
    ASSET_LOCKED_TOPIC,
    CURVE_BUCKETS,
    CURVE_POOL,
    NUSD_CONTRACTS,
    SNUSD_CONTRACTS,
    TvlSource,
    bucket_for,
    decode_lock_logs,
)

PROGRAM = "ethereum-1-seasonProgram-Season_Neutrl_Origin"
NOW = 1_767_225_600  # 2026-01-01


class FakeSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def make_settings(**overrides) -> Settings:
    base = dict(
        etherscan_api_key="test-key",
        etherscan_api_base="https://explorer.test/api",
        pendle_api_base="https://pendle.test",
        points_api_url="https://points.test/api",
        points_season_program_id=PROGRAM,
        etherscan_rate_limit_delay=0,
        tvl_max_attempts=3,
        points_max_attempts=3,
        tvl_retry_base_delay=2.0,
        points_retry_base_delay=2.0,
    )
    base.update(overrides)
    return Settings(**base)


def points_body(total: str = "123456789.5", participants: str = "4200") -> dict:
    return {
        "data": {
            "seasonPrograms": [
                {"id": "plasma-9745-seasonProgram-Season_Neutrl_Origin", "state": {"totalPoints": "1"}},
                {
                    "id": PROGRAM,
                    "state": {
                        "totalPoints": total,
                        "participantCount": participants,
                        "upNusdMultiplier": "28",
                    },
                },
            ]
        }
    }


# ── retry policy ──────────────────────────────────────────────────────────────


async def test_backoff_doubles_delay_then_succeeds():
    sleep = FakeSleep()
    attempts = 0

    async def flaky():
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise httpx.ConnectError("refused")
        return "ok"

    assert await with_backoff("tvl", flaky, max_attempts=4, base_delay=2.0, sleep=sleep) == "ok"
    assert sleep.delays == [2.0, 4.0]


async def test_backoff_exhaustion_raises_unavailable():
    sleep = FakeSleep()

    async def warming():
        raise WarmingUp("cold")

    with pytest.raises(UpstreamUnavailable, match="gave up after 3 attempts"):
        await with_backoff("tvl", warming, max_attempts=3, base_delay=1.0, sleep=sleep)
    assert sleep.delays == [1.0, 2.0]


async def test_backoff_does_not_retry_shape_change():
    sleep = FakeSleep()

    async def changed():
        raise UpstreamShapeChanged("points", "gone")

    with pytest.raises(UpstreamShapeChanged):
        await with_backoff("points", changed, max_attempts=3, base_delay=1.0, sleep=sleep)
    assert sleep.delays == []


# ── points ────────────────────────────────────────────────────────────────────


def test_parse_points_picks_configured_program():
    figures = parse_points(points_body(), PROGRAM)
    assert figures.cumulative_points == 123456789.5
    assert figures.participant_count == 4200
    assert figures.up_nusd_multiplier == 28


def test_parse_points_missing_program():
    body = {"data": {"seasonPrograms": []}}
    with pytest.raises(UpstreamShapeChanged, match="not in response"):
        parse_points(body, PROGRAM)


@pytest.mark.parametrize(
    "programs",
    [
        "not-a-list",
        ["junk", 7],
        [{"id": PROGRAM, "state": "broken"}],
        [{"id": PROGRAM, "state": ["totalPoints", 1]}],
    ],
)
def test_parse_points_malformed_entries(programs):
    with pytest.raises(UpstreamShapeChanged):
        parse_points({"data": {"seasonPrograms": programs}}, PROGRAM)


async def test_points_source_retries_429():
    responses = iter(
        [httpx.Response(429), httpx.Response(503), httpx.Response(200, json=points_body())]
    )
    sleep = FakeSleep()
    transport = httpx.MockTransport(lambda request: next(responses))
    async with httpx.AsyncClient(transport=transport) as client:
        source = PointsSource(client=client, config=make_settings(), sleep=sleep)
        figures = await source.fetch()
    assert figures.participant_count == 4200
    assert sleep.delays == [2.0, 4.0]


async def test_points_source_404_not_retried():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(404)

    sleep = FakeSleep()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        source = PointsSource(client=client, config=make_settings(), sleep=sleep)
        with pytest.raises(UpstreamUnavailable, match="HTTP 404"):
            await source.fetch()
    assert calls == 1
    assert sleep.delays == []


async def test_points_source_sends_browser_headers():
    seen: dict[str, str] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen.update(request.headers)
        return httpx.Response(200, json=points_body())

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        await PointsSource(client=client, config=make_settings(points_user_agent="UA/1")).fetch()
    assert seen["user-agent"] == "UA/1"


async def test_cached_points_single_upstream_call():
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json=points_body())

    cache = TtlCache()
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        source = PointsSource(client=client, config=make_settings())
        first = await cached_points(source, cache, ttl=3600)
        second = await cached_points(source, cache, ttl=3600)
    assert calls == 1
    assert not first.from_cache and second.from_cache


# ── TVL ───────────────────────────────────────────────────────────────────────


def lock_log(asset: str, amount: float, locked_at: int, unlock_at: int) -> dict:
    data = "0x" + format(int(amount * 1e18), "064x") + format(unlock_at, "064x")
    return {
        "topics": [ASSET_LOCKED_TOPIC, "0x" + "0" * 64, "0x" + asset.lower()[2:].rjust(64, "0")],
        "data": data,
        "timeStamp": hex(locked_at),
    }


def test_bucket_boundaries():
    assert bucket_for(89, ASSET_BUCKETS) is None
    assert bucket_for(90, ASSET_BUCKETS) == "3mo"
    assert bucket_for(179, ASSET_BUCKETS) == "3mo"
    assert bucket_for(180, ASSET_BUCKETS) == "6mo"
    assert bucket_for(270, ASSET_BUCKETS) == "9mo"
    assert bucket_for(365, ASSET_BUCKETS) == "12mo"
    assert bucket_for(149, CURVE_BUCKETS) == "3mo"
    assert bucket_for(150, CURVE_BUCKETS) == "6mo"


def test_decode_lock_logs_groups_and_skips_expired():
    day = 86400
    logs = [
        lock_log(NUSD_CONTRACTS["underlying"], 100, NOW - 10 * day, NOW + 170 * day),
        lock_log(NUSD_CONTRACTS["underlying"], 50, NOW - 400 * day, NOW - 5 * day),
        lock_log(SNUSD_CONTRACTS["underlying"], 30, NOW, NOW + 365 * day),
        lock_log(CURVE_POOL, 7, NOW, NOW + 160 * day),
        lock_log("0x" + "ab" * 20, 999, NOW, NOW + 365 * day),
    ]
    locks = decode_lock_logs(logs, NOW)
    assert locks["nusd"].total_locked == pytest.approx(100)
    assert locks["nusd"].buckets["6mo"].amount == pytest.approx(100)
    assert locks["nusd"].buckets["3mo"].count == 0
    assert locks["snusd"].buckets["12mo"].amount == pytest.approx(30)
    assert locks["curveLp"].buckets["6mo"].count == 1


def explorer_handler(overrides: dict | None = None):
    """Route Pendle and Etherscan requests to canned answers."""
    overrides = overrides or {}
    market = {
        "totalLp": 1000,
        "totalPt": 400,
        "totalSy": 600,
        "liquidity": {"usd": 2000},
        "lp": {"price": {"usd": 2}},
        "pt": {"price": {"usd": 0.95}},
        "yt": {"price": {"usd": 0.05}},
        "underlyingAsset": {"price": {"usd": 1.0}},
        "impliedApy": 0.1,
        "underlyingApy": 0.05,
    }

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "pendle.test":
            return httpx.Response(200, json=market)
        params = request.url.params
        action = params["action"]
        if action in overrides:
            return overrides[action](request)
        if action == "tokensupply":
            return httpx.Response(200, json={"status": "1", "result": str(10_000 * 10**18)})
        if action == "tokenbalance":
            decimals = 6 if params["contractaddress"].lower().startswith("0xa0b8") else 18
            return httpx.Response(200, json={"status": "1", "result": str(1_000 * 10**decimals)})
        if action == "getLogs":
            logs = [lock_log(NUSD_CONTRACTS["underlying"], 500, NOW, NOW + 100 * 86400)]
            return httpx.Response(200, json={"status": "1", "result": logs})
        return httpx.Response(400)

    return handler


async def test_tvl_source_builds_payload():
    async with httpx.AsyncClient(transport=httpx.MockTransport(explorer_handler())) as client:
        source = TvlSource(client=client, config=make_settings(), sleep=FakeSleep(), clock=lambda: NOW)
        payload = await source.fetch()

    nusd = payload["nusd"]
    assert nusd["ytTotalSupply"] == 10_000
    assert nusd["lpSyTvl"] == 600
    # total - sy balance - curve balance - locked
    assert nusd["circulatingSupply"] == pytest.approx(10_000 - 1_000 - 1_000 - 500)
    assert payload["snusd"]["circulatingSupply"] == pytest.approx(10_000 - 1_000)
    assert payload["upnusd"]["tvl"] == 10_000
    assert payload["curve"]["totalTvl"] == pytest.approx(2_000)
    assert payload["curve"]["lpPrice"] == pytest.approx(0.2)
    assert payload["locks"]["nusd"]["buckets"]["3mo"]["tvl"] == pytest.approx(500)


async def test_tvl_explorer_error_fails_the_fetch():
    calls = 0

    def failing_balance(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json={"status": "0", "message": "NOTOK", "result": "Invalid API Key"})

    sleep = FakeSleep()
    handler = explorer_handler({"tokenbalance": failing_balance})
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        source = TvlSource(client=client, config=make_settings(), sleep=sleep, clock=lambda: NOW)
        with pytest.raises(UpstreamUnavailable, match="Invalid API Key"):
            await source.fetch()
    # Not transient, so no second attempt
    assert calls == 1


async def test_tvl_explorer_rate_limit_is_retried():
    answers = iter(
        [
            httpx.Response(200, json={"status": "0", "message": "NOTOK", "result": "Max rate limit reached"}),
        ]
    )

    def limited_once(request: httpx.Request) -> httpx.Response:
        try:
            return next(answers)
        except StopIteration:
            return httpx.Response(200, json={"status": "1", "result": str(1_000 * 10**18)})

    sleep = FakeSleep()
    handler = explorer_handler({"tokenbalance": limited_once})
    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        source = TvlSource(client=client, config=make_settings(), sleep=sleep, clock=lambda: NOW)
        payload = await source.fetch()
    assert payload["nusd"]["syUnderlyingBalance"] is not None
    assert 2.0 in sleep.delays


async def test_tvl_missing_pendle_market_is_shape_change():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "pendle.test":
            return httpx.Response(404)
        return explorer_handler()(request)

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        source = TvlSource(client=client, config=make_settings(), sleep=FakeSleep(), clock=lambda: NOW)
        with pytest.raises(UpstreamShapeChanged, match="not found"):
            await source.fetch()


async def test_tvl_server_errors_exhaust_retries():
    sleep = FakeSleep()
    transport = httpx.MockTransport(lambda request: httpx.Response(502))
    async with httpx.AsyncClient(transport=transport) as client:
        source = TvlSource(client=client, config=make_settings(), sleep=sleep)
        with pytest.raises(UpstreamUnavailable):
            await source.fetch()
    assert sleep.delays == [2.0, 4.0]


async def test_tvl_without_api_key_is_unavailable():
    source = TvlSource(config=make_settings(etherscan_api_key=""))
    assert not await source.is_available()
    with pytest.raises(UpstreamUnavailable, match="not configured"):
        await source.fetch()
