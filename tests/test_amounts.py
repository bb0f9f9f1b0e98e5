"""Tests for mapping the TVL payload onto row amounts."""
from __future__ import annotations

import pytest

from pointscope.valuation.amounts import amounts_from_tvl


def market(yt=1000.0, price=1.0, lp_sy=500.0, pt=200.0, pt_price=0.9, hold=300.0) -> dict:
    return {
        "ytTotalSupply": yt,
        "underlyingPrice": price,
        "lpSyTvl": lp_sy,
        "ptTotalSupply": pt,
        "ptPrice": pt_price,
        "holdTvl": hold,
    }


def bucket(tvl: float) -> dict:
    return {"count": 1, "amount": tvl, "tvl": tvl, "boost": 1}


def full_payload() -> dict:
    return {
        "nusd": market(),
        "snusd": market(yt=2000.0, price=1.02),
        "upnusd": {"tvl": 50.0},
        "curve": {"unlockedTvl": 80.0, "nusdTvl": 60.0, "usdcTvl": 40.0},
        "locks": {
            "nusd": {"buckets": {b: bucket(10.0) for b in ("3mo", "6mo", "9mo", "12mo")}},
            "snusd": {"buckets": {b: bucket(20.0) for b in ("3mo", "6mo", "9mo", "12mo")}},
            "curveLp": {"buckets": {b: bucket(5.0) for b in ("3mo", "6mo")}},
        },
    }


def test_market_rows_split_fee_and_lp_exclusion():
    sheet = amounts_from_tvl(full_payload())
    a = sheet.amounts
    assert a["yt-nusd-feb26"] == 1000
    assert a["pendle-fee-nusd"] == pytest.approx(50)
    assert a["yt-nusd-feb26-net"] == pytest.approx(950)
    assert a["lp-excluded-nusd"] == pytest.approx(100)
    assert a["lp-nusd-feb26-net"] == pytest.approx(400)
    assert a["pt-nusd-feb26"] == pytest.approx(180)
    assert a["yt-snusd-mar26"] == pytest.approx(2040)
    assert a["hold-upnusd"] == 50
    assert a["lock-snusd-9mo"] == 20
    assert a["lock-curve-6mo"] == 5
    assert not sheet.missing


def test_missing_sections_are_marked_not_zeroed():
    payload = full_payload()
    del payload["locks"]
    payload["snusd"]["ptPrice"] = None
    sheet = amounts_from_tvl(payload)
    assert "lock-nusd-3mo" in sheet.missing
    assert "lock-curve-3mo" in sheet.missing
    assert "pt-snusd-mar26" in sheet.missing
    assert "lock-nusd-3mo" not in sheet.amounts
    # Everything else still maps
    assert sheet.amounts["hold-nusd"] == 300


def test_empty_payload_marks_every_row_missing():
    sheet = amounts_from_tvl({})
    assert not sheet.amounts
    assert {"hold-upnusd", "hold-curve-lp", "yt-nusd-feb26"} <= sheet.missing
