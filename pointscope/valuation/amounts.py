"""Map an aggregate TVL payload onto per-row raw amounts.

Sections that the upstream payload lacks are recorded as missing rather than
silently zeroed, so a capture can tell "no data" from "nothing locked".
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

logger = logging.getLogger(__name__)

PENDLE_FEE_SHARE = 0.05
LP_EXCLUDED_SHARE = 0.20

# market key in the TVL payload -> row ids of that market's category
_MARKET_ROWS = {
    "nusd": {
        "yt": "yt-nusd-feb26",
        "fee": "pendle-fee-nusd",
        "yt_net": "yt-nusd-feb26-net",
        "lp": "lp-nusd-feb26",
        "lp_excluded": "lp-excluded-nusd",
        "lp_net": "lp-nusd-feb26-net",
        "pt": "pt-nusd-feb26",
        "hold": "hold-nusd",
    },
    "snusd": {
        "yt": "yt-snusd-mar26",
        "fee": "pendle-fee-snusd",
        "yt_net": "yt-snusd-mar26-net",
        "lp": "lp-snusd-mar26",
        "lp_excluded": "lp-excluded-snusd",
        "lp_net": "lp-snusd-mar26-net",
        "pt": "pt-snusd-mar26",
        "hold": "hold-snusd",
    },
}

_LOCK_ROWS = {
    "nusd": {b: f"lock-nusd-{b}" for b in ("3mo", "6mo", "9mo", "12mo")},
    "snusd": {b: f"lock-snusd-{b}" for b in ("3mo", "6mo", "9mo", "12mo")},
    "curveLp": {"3mo": "lock-curve-3mo", "6mo": "lock-curve-6mo"},
}


@dataclass
class AmountSheet:
    amounts: dict[str, float] = field(default_factory=dict)
    missing: set[str] = field(default_factory=set)

    def set(self, row_id: str, value: Any) -> None:
        if value is None:
            self.missing.add(row_id)
            return
        self.amounts[row_id] = max(float(value), 0.0)

    def mark_missing(self, *row_ids: str) -> None:
        self.missing.update(row_ids)


def _num(section: Mapping[str, Any], key: str) -> float | None:
    value = section.get(key)
    return None if value is None else float(value)


def _mul(a: float | None, b: float | None) -> float | None:
    if a is None or b is None:
        return None
    return a * b


def amounts_from_tvl(payload: Mapping[str, Any]) -> AmountSheet:
    sheet = AmountSheet()

    for market, ids in _MARKET_ROWS.items():
        data = payload.get(market)
        if not data:
            sheet.mark_missing(*ids.values())
            continue
        # 1 YT counts as 1 underlying token for points
        yt_gross = _mul(_num(data, "ytTotalSupply"), _num(data, "underlyingPrice"))
        sheet.set(ids["yt"], yt_gross)
        sheet.set(ids["fee"], _mul(yt_gross, PENDLE_FEE_SHARE))
        sheet.set(ids["yt_net"], _mul(yt_gross, 1 - PENDLE_FEE_SHARE))

        lp_sy = _num(data, "lpSyTvl")
        sheet.set(ids["lp"], lp_sy)
        sheet.set(ids["lp_excluded"], _mul(lp_sy, LP_EXCLUDED_SHARE))
        sheet.set(ids["lp_net"], _mul(lp_sy, 1 - LP_EXCLUDED_SHARE))

        sheet.set(ids["pt"], _mul(_num(data, "ptTotalSupply"), _num(data, "ptPrice")))
        sheet.set(ids["hold"], _num(data, "holdTvl"))

    upnusd = payload.get("upnusd")
    sheet.set("hold-upnusd", _num(upnusd, "tvl") if upnusd else None)

    curve = payload.get("curve")
    if curve:
        sheet.set("hold-curve-lp", _num(curve, "unlockedTvl"))
        sheet.set("curve-nusd-breakdown", _num(curve, "nusdTvl"))
        sheet.set("curve-usdc-breakdown", _num(curve, "usdcTvl"))
    else:
        sheet.mark_missing("hold-curve-lp", "curve-nusd-breakdown", "curve-usdc-breakdown")

    locks = payload.get("locks")
    for asset, buckets in _LOCK_ROWS.items():
        asset_locks = (locks or {}).get(asset)
        for bucket, row_id in buckets.items():
            entry = (asset_locks or {}).get("buckets", {}).get(bucket)
            sheet.set(row_id, _num(entry, "tvl") if entry else None)

    if sheet.missing:
        logger.warning(
            "TVL payload missing data for %d rows: %s",
            len(sheet.missing), ", ".join(sorted(sheet.missing)),
        )
    return sheet
