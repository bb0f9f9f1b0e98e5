"""Analytics endpoints — inflation report, live points, valued TVL table."""
from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from pointscope.api.app import Services, services
from pointscope.core.cache import CacheEntry
from pointscope.core.errors import CaptureError, InsufficientHistory, ProjectionError
from pointscope.core.formatting import format_large_number
from pointscope.projection.report import build_inflation_report
from pointscope.sources.points import cached_points
from pointscope.storage.base import StoreError
from pointscope.valuation.amounts import amounts_from_tvl
from pointscope.valuation.engine import evaluate, summarize
from pointscope.valuation.rows import PROGRAM_TABLE

logger = logging.getLogger(__name__)

router = APIRouter(tags=["analytics"])

TVL_CACHE_KEY = "tvl"


def _cache_meta(entry: CacheEntry[Any], now: float) -> dict[str, Any]:
    return {
        "cached": entry.from_cache,
        "stale": entry.is_stale,
        "expiresIn": round(entry.expires_in(now)),
        **({"error": entry.error} if entry.error else {}),
    }


@router.get("/inflation")
async def inflation(svc: Services = Depends(services)) -> dict:
    try:
        history = await svc.store.read_all()
    except StoreError as exc:
        logger.error("Reading snapshots failed: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to fetch snapshots") from exc
    try:
        report = build_inflation_report(history)
    except InsufficientHistory as exc:
        raise HTTPException(
            status_code=400,
            detail=f"Need at least {exc.required} snapshots to calculate inflation, have {exc.count}",
        ) from exc
    except ProjectionError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    return report.to_json()


@router.get("/points")
async def points(svc: Services = Depends(services)) -> dict:
    try:
        entry = await cached_points(
            svc.points_source, svc.cache, svc.config.points_cache_ttl_seconds
        )
    except CaptureError as exc:
        logger.warning("Points fetch failed with nothing cached: %s", exc)
        raise HTTPException(status_code=502, detail=f"Failed to fetch points data: {exc}") from exc
    figures = entry.value
    return {
        **figures.to_json(),
        "totalPointsFormatted": format_large_number(figures.cumulative_points),
        **_cache_meta(entry, svc.cache.now()),
    }


@router.get("/tvl")
async def tvl(svc: Services = Depends(services)) -> dict:
    try:
        entry = await svc.cache.single_flight(
            TVL_CACHE_KEY, svc.tvl_source.fetch, ttl=svc.config.tvl_cache_ttl_seconds
        )
    except CaptureError as exc:
        logger.warning("TVL fetch failed with nothing cached: %s", exc)
        raise HTTPException(status_code=502, detail=f"Failed to fetch TVL data: {exc}") from exc

    sheet = amounts_from_tvl(entry.value)
    values = evaluate(PROGRAM_TABLE, sheet.amounts)
    summary = summarize(values, None, None)
    return {
        "tvl": entry.value,
        "totalRawTvl": summary.total_raw_tvl,
        "totalWeightedTvl": summary.total_weighted_tvl,
        "estDailyPoints": summary.est_daily_points,
        "missingRows": sorted(sheet.missing),
        "categories": [
            {
                "id": cat.id,
                "title": cat.title,
                "rows": [
                    {
                        "id": row.id,
                        "name": row.display_name,
                        "kind": str(row.kind),
                        "status": str(row.inclusion_status),
                        "boost": row.boost.describe(),
                        "source": row.source_category,
                        "rawAmount": values[row.id].raw_amount,
                        "weightedValue": values[row.id].weighted_value,
                        "shareOfTotal": values[row.id].share_of_total,
                    }
                    for row in cat.rows
                ],
            }
            for cat in PROGRAM_TABLE.categories
        ],
        **_cache_meta(entry, svc.cache.now()),
    }
