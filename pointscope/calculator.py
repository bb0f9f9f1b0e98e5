"""Position calculator — points and yield for a YT position held to expiry."""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum


class MarketKey(StrEnum):
    NUSD = "NUSD"
    SNUSD = "sNUSD"


@dataclass(frozen=True)
class Market:
    key: MarketKey
    address: str
    points_multiplier: float
    has_underlying_yield: bool
    expiry: datetime
    description: str


MARKETS: dict[MarketKey, Market] = {
    MarketKey.NUSD: Market(
        key=MarketKey.NUSD,
        address="0x6d520a943a4da0784917a2e71defe95248a1daa1",
        points_multiplier=50,
        has_underlying_yield=False,
        expiry=datetime(2026, 2, 26, tzinfo=timezone.utc),
        description="50X YT Neutral Points",
    ),
    MarketKey.SNUSD: Market(
        key=MarketKey.SNUSD,
        address="0x6d8c4de7071d5aee27fc3a810764e62a4a00ceb9",
        points_multiplier=25,
        has_underlying_yield=True,
        expiry=datetime(2026, 3, 5, tzinfo=timezone.utc),
        description="25X YT Neutral Points + Underlying Yield",
    ),
}


def days_to_expiry(expiry: datetime, now: datetime | None = None) -> int:
    """Whole days left, rounded up; 0 once expired."""
    now = now or datetime.now(timezone.utc)
    seconds = (expiry - now).total_seconds()
    return max(0, math.ceil(seconds / 86400))


def daily_points(yt_amount: float, market: MarketKey) -> float:
    return yt_amount * MARKETS[market].points_multiplier


def total_points(yt_amount: float, market: MarketKey, days: int) -> float:
    return daily_points(yt_amount, market) * days


def estimated_yield(yt_amount: float, underlying_apy: float, days: int) -> float:
    # underlying_apy is a fraction (0.12 == 12%)
    return yt_amount * underlying_apy * (days / 365)


def effective_leverage(input_amount: float, yt_received: float) -> float:
    if input_amount == 0:
        return 0.0
    return yt_received / input_amount
