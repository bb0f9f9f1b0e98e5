"""Tests for the position calculator."""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from pointscope.calculator import (
    MARKETS,
    MarketKey,
    daily_points,
    days_to_expiry,
    effective_leverage,
    estimated_yield,
    total_points,
)


def test_daily_points_use_market_multiplier():
    assert daily_points(100, MarketKey.NUSD) == 5_000
    assert daily_points(100, MarketKey.SNUSD) == 2_500


def test_total_points():
    assert total_points(10, MarketKey.NUSD, 30) == 15_000


def test_estimated_yield():
    assert estimated_yield(1_000, 0.1, 365) == pytest.approx(100)
    assert estimated_yield(1_000, 0.1, 0) == 0


def test_effective_leverage():
    assert effective_leverage(100, 2_500) == 25
    assert effective_leverage(0, 2_500) == 0


def test_days_to_expiry_rounds_up_and_floors_at_zero():
    expiry = MARKETS[MarketKey.NUSD].expiry
    assert days_to_expiry(expiry, expiry - timedelta(days=2, hours=1)) == 3
    assert days_to_expiry(expiry, expiry) == 0
    assert days_to_expiry(expiry, expiry + timedelta(days=5)) == 0


def test_market_table():
    assert MARKETS[MarketKey.SNUSD].has_underlying_yield
    assert MARKETS[MarketKey.NUSD].expiry == datetime(2026, 2, 26, tzinfo=timezone.utc)
