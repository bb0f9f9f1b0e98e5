"""On-chain TVL source — Pendle market API + Etherscan explorer API.

Builds the aggregate TVL payload the valuation layer consumes: per-market
token supplies and prices, Curve pool balances, upNUSD supply, and
lock-contract balances grouped into duration buckets.

Every lookup must succeed for a payload to be returned. Transport failures,
5xx responses and explorer rate-limit messages abort the attempt and are
retried as a whole by `with_backoff`. Any other explorer-level error
(status "0", e.g. a rejected API key) raises UpstreamUnavailable and an
unknown Pendle market raises UpstreamShapeChanged, neither retried.
"""
from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import httpx

from pointscope.config import Settings, settings as default_settings
from pointscope.core.errors import UpstreamShapeChanged, UpstreamUnavailable
from pointscope.sources.base import Sleep, UpstreamSource, with_backoff

logger = logging.getLogger(__name__)

LOCK_CONTRACT = "0x99161BA892ECae335616624c84FAA418F64FF9A6"
ASSET_LOCKED_TOPIC = "0x268464d6ecafe069c26e10a65fd45bb8ab70b43c6d40afb2423a6b47af771a55"
LOG_PAGE_SIZE = 1000

NUSD_CONTRACTS = {
    "market": "0x6d520a943a4da0784917a2e71defe95248a1daa1",
    "sy": "0x29ac34026c369d21fe3b2c7735ec986e2880b347",
    "pt": "0x215a6a2a0d1c563d0cb55ebd8d126f3bc0b92cf2",
    "yt": "0x38fdf2dbaae0e1e42499a4c6dfecae3b5cb35c59",
    "underlying": "0xe556aba6fe6036275ec1f87eda296be72c811bce",
}
SNUSD_CONTRACTS = {
    "market": "0x6d8c4de7071d5aee27fc3a810764e62a4a00ceb9",
    "sy": "0x10c5e7711eaddc1b6b64e40ef1976fc462666409",
    "pt": "0x54bf2659b5cdfd86b75920e93c0844c0364f5166",
    "yt": "0x08903411e7a3eb500e30aac3bdd44775055b8c00",
    "underlying": "0x08efcc2f3e61185d0ea7f8830b3fec9bfa2ee313",
}
UPNUSD_CONTRACT = "0xd852a101B7C6e0C647C8418A763394A37Dd72bCa"
CURVE_POOL = "0x7E19F0253A564e026C63eeAA9338d6DBddeF3b09"
USDC_CONTRACT = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"

# (lower bound in days, bucket), checked top-down, first match wins
ASSET_BUCKETS = ((365, "12mo"), (270, "9mo"), (180, "6mo"), (90, "3mo"))
CURVE_BUCKETS = ((150, "6mo"), (90, "3mo"))

ASSET_LOCK_BOOSTS = {
    "nusd": {"3mo": 6, "6mo": 15, "9mo": 25, "12mo": 30},
    "snusd": {"3mo": 8, "6mo": 20, "9mo": 30, "12mo": 40},
    "curveLp": {"3mo": 4, "6mo": 10},
}


def _hex_int(value: str | int) -> int:
    if isinstance(value, int):
        return value
    return int(value, 16) if value.startswith("0x") else int(value)


def _topic_for(address: str) -> str:
    return "0x" + address.lower().removeprefix("0x").rjust(64, "0")


def bucket_for(duration_days: int, buckets: tuple[tuple[int, str], ...]) -> str | None:
    for lower, name in buckets:
        if duration_days >= lower:
            return name
    return None


@dataclass
class LockBucket:
    count: int = 0
    amount: float = 0.0


@dataclass
class AssetLocks:
    bucket_names: tuple[str, ...]
    total_locked: float = 0.0
    buckets: dict[str, LockBucket] = field(default_factory=dict)

    def __post_init__(self) -> None:
        for name in self.bucket_names:
            self.buckets.setdefault(name, LockBucket())

    def add(self, bucket: str | None, amount: float) -> None:
        # Locks shorter than the smallest bucket still count toward the total
        self.total_locked += amount
        if bucket is not None:
            self.buckets[bucket].count += 1
            self.buckets[bucket].amount += amount

    def to_json(self, price: float | None, boosts: dict[str, int]) -> dict[str, Any]:
        return {
            "totalLocked": self.total_locked,
            "totalLockedTvl": self.total_locked * price if price is not None else None,
            "buckets": {
                name: {
                    "count": b.count,
                    "amount": b.amount,
                    "tvl": b.amount * price if price is not None else None,
                    "boost": boosts[name],
                }
                for name, b in self.buckets.items()
            },
        }


def decode_lock_logs(logs: list[dict[str, Any]], now: int) -> dict[str, AssetLocks]:
    """Group live AssetLocked events by asset and lock duration."""
    locks = {
        "nusd": AssetLocks(("3mo", "6mo", "9mo", "12mo")),
        "snusd": AssetLocks(("3mo", "6mo", "9mo", "12mo")),
        "curveLp": AssetLocks(("3mo", "6mo")),
    }
    topics = {
        _topic_for(NUSD_CONTRACTS["underlying"]): ("nusd", ASSET_BUCKETS),
        _topic_for(SNUSD_CONTRACTS["underlying"]): ("snusd", ASSET_BUCKETS),
        _topic_for(CURVE_POOL): ("curveLp", CURVE_BUCKETS),
    }
    for log in logs:
        log_topics = log.get("topics") or []
        if len(log_topics) < 3:
            continue
        target = topics.get(log_topics[2].lower())
        if target is None:
            continue
        data = log["data"]
        amount = int(data[2:66], 16) / 1e18
        unlock_time = int(data[66:130], 16)
        if unlock_time <= now:
            continue
        duration_days = round((unlock_time - _hex_int(log["timeStamp"])) / 86400)
        asset, buckets = target
        locks[asset].add(bucket_for(duration_days, buckets), amount)
    return locks


@dataclass
class PendleMarket:
    total_lp: float
    total_pt: float
    total_sy: float
    liquidity_usd: float
    lp_price: float | None
    pt_price: float | None
    yt_price: float | None
    underlying_price: float | None
    implied_apy: float | None
    underlying_apy: float | None

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "PendleMarket":
        def price(key: str) -> float | None:
            value = (data.get(key) or {}).get("price", {}).get("usd")
            return None if value is None else float(value)

        return cls(
            total_lp=float(data.get("totalLp") or 0),
            total_pt=float(data.get("totalPt") or 0),
            total_sy=float(data.get("totalSy") or 0),
            liquidity_usd=float((data.get("liquidity") or {}).get("usd") or 0),
            lp_price=price("lp"),
            pt_price=price("pt"),
            yt_price=price("yt"),
            underlying_price=price("underlyingAsset"),
            implied_apy=data.get("impliedApy"),
            underlying_apy=data.get("underlyingApy"),
        )


def _mul(a: float | None, b: float | None) -> float | None:
    return None if a is None or b is None else a * b


class TvlSource(UpstreamSource):
    """Aggregates TVL for both Pendle markets and the hold/lock positions."""

    name = "tvl"

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        config: Settings | None = None,
        sleep: Sleep = asyncio.sleep,
        clock=time.time,
    ) -> None:
        self.config = config or default_settings
        self._client = client
        self._sleep = sleep
        self._clock = clock

    async def is_available(self) -> bool:
        return bool(self.config.etherscan_api_key)

    async def fetch(self) -> dict[str, Any]:
        if not self.config.etherscan_api_key:
            raise UpstreamUnavailable(self.name, "Etherscan API key not configured")
        return await with_backoff(
            self.name,
            self._fetch_once,
            max_attempts=self.config.tvl_max_attempts,
            base_delay=self.config.tvl_retry_base_delay,
            sleep=self._sleep,
        )

    async def _fetch_once(self) -> dict[str, Any]:
        if self._client is not None:
            return await self._collect(self._client)
        async with httpx.AsyncClient(timeout=self.config.tvl_timeout_seconds) as client:
            return await self._collect(client)

    # ── upstream calls ────────────────────────────────────────────────────────

    async def _pendle_market(self, client: httpx.AsyncClient, market: str) -> PendleMarket:
        url = f"{self.config.pendle_api_base}/core/v1/{self.config.chain_id}/markets/{market}"
        resp = await client.get(url)
        if resp.status_code == 404:
            raise UpstreamShapeChanged(self.name, f"Pendle market {market} not found")
        resp.raise_for_status()
        return PendleMarket.from_json(resp.json())

    async def _etherscan(self, client: httpx.AsyncClient, **params: Any) -> Any:
        resp = await client.get(
            self.config.etherscan_api_base,
            params={"chainid": self.config.chain_id, "apikey": self.config.etherscan_api_key, **params},
        )
        resp.raise_for_status()
        body = resp.json()
        await self._sleep(self.config.etherscan_rate_limit_delay)
        if body.get("status") != "1":
            message = body.get("message", "")
            if "rate limit" in str(body.get("result", "")).lower():
                # Explorer answers 200 with a rate-limit message; retry it like a 429
                limited = httpx.Response(429, request=resp.request)
                raise httpx.HTTPStatusError("Etherscan rate limit", request=resp.request, response=limited)
            if params.get("action") == "getLogs" and message == "No records found":
                return []
            detail = f"Etherscan {params.get('action')} failed: {body.get('result') or message}"
            logger.error(detail)
            raise UpstreamUnavailable(self.name, detail)
        return body.get("result")

    async def _token_supply(self, client: httpx.AsyncClient, contract: str, decimals: int = 18) -> float:
        result = await self._etherscan(
            client, module="stats", action="tokensupply", contractaddress=contract
        )
        return float(result) / 10**decimals

    async def _token_balance(
        self, client: httpx.AsyncClient, token: str, holder: str, decimals: int = 18
    ) -> float:
        result = await self._etherscan(
            client,
            module="account",
            action="tokenbalance",
            contractaddress=token,
            address=holder,
            tag="latest",
        )
        return float(result) / 10**decimals

    async def _lock_logs(self, client: httpx.AsyncClient) -> list[dict[str, Any]]:
        logs: list[dict[str, Any]] = []
        page = 1
        while True:
            result = await self._etherscan(
                client,
                module="logs",
                action="getLogs",
                address=LOCK_CONTRACT,
                topic0=ASSET_LOCKED_TOPIC,
                fromBlock=0,
                toBlock="latest",
                page=page,
                offset=LOG_PAGE_SIZE,
            )
            if not isinstance(result, list):
                raise UpstreamShapeChanged(self.name, "getLogs result is not a list")
            logs.extend(result)
            if len(result) < LOG_PAGE_SIZE:
                return logs
            page += 1

    # ── assembly ──────────────────────────────────────────────────────────────

    async def _collect(self, client: httpx.AsyncClient) -> dict[str, Any]:
        logger.info("Fetching TVL data")
        nusd_market, snusd_market = await asyncio.gather(
            self._pendle_market(client, NUSD_CONTRACTS["market"]),
            self._pendle_market(client, SNUSD_CONTRACTS["market"]),
        )

        # Explorer calls run sequentially to stay under the rate limit
        supplies = {}
        for key, contract in (
            ("yt_nusd", NUSD_CONTRACTS["yt"]),
            ("yt_snusd", SNUSD_CONTRACTS["yt"]),
            ("pt_nusd", NUSD_CONTRACTS["pt"]),
            ("pt_snusd", SNUSD_CONTRACTS["pt"]),
            ("nusd", NUSD_CONTRACTS["underlying"]),
            ("snusd", SNUSD_CONTRACTS["underlying"]),
            ("upnusd", UPNUSD_CONTRACT),
            ("curve_lp", CURVE_POOL),
        ):
            supplies[key] = await self._token_supply(client, contract)

        sy_nusd = await self._token_balance(client, NUSD_CONTRACTS["underlying"], NUSD_CONTRACTS["sy"])
        sy_snusd = await self._token_balance(client, SNUSD_CONTRACTS["underlying"], SNUSD_CONTRACTS["sy"])
        curve_nusd = await self._token_balance(client, NUSD_CONTRACTS["underlying"], CURVE_POOL)
        curve_usdc = await self._token_balance(client, USDC_CONTRACT, CURVE_POOL, decimals=6)

        locks = decode_lock_logs(await self._lock_logs(client), int(self._clock()))

        nusd_price = nusd_market.underlying_price
        snusd_price = snusd_market.underlying_price

        curve_total = None
        if nusd_price is not None:
            curve_total = curve_nusd * nusd_price + curve_usdc  # USDC at $1
        curve_lp_price = None
        if curve_total is not None and supplies["curve_lp"]:
            curve_lp_price = curve_total / supplies["curve_lp"]
        curve_locked_tvl = _mul(locks["curveLp"].total_locked, curve_lp_price)

        def market_payload(
            market: PendleMarket,
            contracts: dict[str, str],
            yt: float,
            pt: float,
            total: float,
            sy_balance: float,
            locked: float,
            pooled: float,
        ) -> dict[str, Any]:
            price = market.underlying_price
            circulating = max(total - sy_balance - pooled - locked, 0.0)
            return {
                "market": contracts["market"],
                "ytTotalSupply": yt,
                "ptTotalSupply": pt,
                "lpTotalSupply": market.total_lp,
                "syUnderlyingBalance": sy_balance,
                "totalSupply": total,
                "circulatingSupply": circulating,
                "underlyingPrice": price,
                "ytPrice": market.yt_price,
                "ptPrice": market.pt_price,
                "lpPrice": market.lp_price,
                "syTvl": _mul(sy_balance, price),
                "lpTvl": market.liquidity_usd,
                # Only the SY side of the LP earns points
                "lpSyTvl": _mul(market.total_sy, price),
                "holdTvl": _mul(circulating, price),
                "impliedApy": market.implied_apy,
                "underlyingApy": market.underlying_apy,
            }

        payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "nusd": market_payload(
                nusd_market,
                NUSD_CONTRACTS,
                supplies["yt_nusd"],
                supplies["pt_nusd"],
                supplies["nusd"],
                sy_nusd,
                locks["nusd"].total_locked,
                curve_nusd,
            ),
            "snusd": market_payload(
                snusd_market,
                SNUSD_CONTRACTS,
                supplies["yt_snusd"],
                supplies["pt_snusd"],
                supplies["snusd"],
                sy_snusd,
                locks["snusd"].total_locked,
                0.0,  # sNUSD has no Curve pool
            ),
            "upnusd": {
                "contract": UPNUSD_CONTRACT,
                "totalSupply": supplies["upnusd"],
                # Stablecoin derivative valued at $1
                "tvl": supplies["upnusd"],
            },
            "curve": {
                "pool": CURVE_POOL,
                "nusdBalance": curve_nusd,
                "usdcBalance": curve_usdc,
                "nusdTvl": _mul(curve_nusd, nusd_price),
                "usdcTvl": curve_usdc,
                "totalTvl": curve_total,
                "lpTotalSupply": supplies["curve_lp"],
                "lpPrice": curve_lp_price,
                "lockedLpTokens": locks["curveLp"].total_locked,
                "lockedTvl": curve_locked_tvl,
                "unlockedTvl": (
                    curve_total - curve_locked_tvl
                    if curve_total is not None and curve_locked_tvl is not None
                    else None
                ),
            },
            "locks": {
                "nusd": locks["nusd"].to_json(nusd_price, ASSET_LOCK_BOOSTS["nusd"]),
                "snusd": locks["snusd"].to_json(snusd_price, ASSET_LOCK_BOOSTS["snusd"]),
                "curveLp": locks["curveLp"].to_json(curve_lp_price, ASSET_LOCK_BOOSTS["curveLp"]),
            },
        }
        logger.info("TVL data fetched")
        return payload
