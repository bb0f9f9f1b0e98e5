"""Inflation report — observed emission and growth over the snapshot history.

Compares the points actually issued between the oldest and newest snapshot
with the emission the weighted TVL predicted, and extrapolates the observed
daily rate linearly.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Sequence

from pointscope.core.errors import UndefinedGrowth
from pointscope.core.formatting import format_large_number
from pointscope.projection.emission import EmissionModel, project
from pointscope.projection.growth import (
    GrowthRate,
    Metric,
    calendar_date,
    calendar_days_between,
    compound_daily_rate,
    days_for_rate,
    ordered,
)
from pointscope.storage.models import Snapshot

logger = logging.getLogger(__name__)

PROJECTION_HORIZONS = (7, 30, 90)


def _pct(change: float, base: float) -> float | None:
    return change / base * 100 if base else None


@dataclass
class TimelinePoint:
    captured_at: datetime
    date: date
    cumulative_points: float
    total_raw_tvl: float
    total_weighted_tvl: float
    est_daily_points: float
    participant_count: int
    points_change: float


@dataclass
class InflationReport:
    oldest: Snapshot
    newest: Snapshot
    total_days: int
    days_for_calc: int
    snapshot_count: int
    points_issued: float
    actual_daily_rate: float
    avg_est_daily_points: float
    efficiency_rate: float | None
    tvl_change: float
    tvl_change_percent: float | None
    weighted_tvl_change: float
    weighted_tvl_change_percent: float | None
    participant_change: int
    growth: dict[Metric, GrowthRate | None] = field(default_factory=dict)
    timeline: list[TimelinePoint] = field(default_factory=list)

    @property
    def current_total(self) -> float:
        return self.newest.summary.cumulative_points

    def inflation_percent(self, days: int = 1) -> float | None:
        return _pct(self.actual_daily_rate * days, self.current_total)

    def projected_total(self, days: int) -> float:
        return self.current_total + self.actual_daily_rate * days

    def emission_projection(self, days: int) -> float | None:
        """Total after `days` if emission tracks weighted TVL, 1 weighted unit = 1 point/day.

        None when the weighted TVL growth rate is undefined.
        """
        rate = self.growth.get(Metric.WEIGHTED_TVL)
        if rate is None:
            return None
        return project(
            self.current_total,
            rate,
            days,
            EmissionModel.TVL_SCALED_EMISSION,
            current_daily_emission=self.newest.summary.est_daily_points,
        )

    def growth_rate(self, metric: Metric) -> float | None:
        rate = self.growth.get(metric)
        return rate.daily_rate_percent if rate else None

    def to_json(self) -> dict[str, Any]:
        latest = self.newest.summary
        daily_pct = self.inflation_percent(1)
        growth_rates: dict[str, float | None] = {}
        for metric, key in (
            (Metric.TVL, "tvl"),
            (Metric.WEIGHTED_TVL, "weightedTvl"),
            (Metric.POINTS, "points"),
        ):
            rate = self.growth_rate(metric)
            growth_rates[f"{key}DailyGrowthRate"] = rate
            growth_rates[f"{key}WeeklyGrowthRate"] = rate * 7 if rate is not None else None

        projections: dict[str, Any] = {
            "dailyInflation": self.actual_daily_rate,
            "dailyInflationFormatted": format_large_number(self.actual_daily_rate),
            "dailyInflationPercent": daily_pct,
            "weeklyInflation": self.actual_daily_rate * 7,
            "weeklyInflationFormatted": format_large_number(self.actual_daily_rate * 7),
            "weeklyInflationPercent": self.inflation_percent(7),
            "monthlyInflation": self.actual_daily_rate * 30,
            "monthlyInflationFormatted": format_large_number(self.actual_daily_rate * 30),
            "monthlyInflationPercent": self.inflation_percent(30),
            "annualizedInflation": self.actual_daily_rate * 365,
            "annualizedInflationFormatted": format_large_number(self.actual_daily_rate * 365),
            "annualizedInflationPercent": daily_pct * 365 if daily_pct is not None else None,
        }
        for days in PROJECTION_HORIZONS:
            projections[f"projectedIn{days}Days"] = self.projected_total(days)
            projections[f"projectedIn{days}DaysFormatted"] = format_large_number(
                self.projected_total(days)
            )

        return {
            "dataRange": {
                "from": self.oldest.captured_at.isoformat(),
                "to": self.newest.captured_at.isoformat(),
                "fromDate": calendar_date(self.oldest.captured_at).isoformat(),
                "toDate": calendar_date(self.newest.captured_at).isoformat(),
                "totalDays": self.total_days,
                "snapshotCount": self.snapshot_count,
            },
            "currentState": latest.to_json(),
            "inflation": {
                "pointsIssuedInPeriod": self.points_issued,
                "pointsIssuedInPeriodFormatted": format_large_number(self.points_issued),
                "actualDailyRate": self.actual_daily_rate,
                "actualDailyRateFormatted": format_large_number(self.actual_daily_rate),
                "avgEstDailyPoints": self.avg_est_daily_points,
                "avgEstDailyPointsFormatted": format_large_number(self.avg_est_daily_points),
                "efficiencyRate": self.efficiency_rate,
            },
            "tvlChanges": {
                "totalTvlChange": self.tvl_change,
                "totalTvlChangeFormatted": format_large_number(abs(self.tvl_change)),
                "totalTvlChangePercent": self.tvl_change_percent,
                "weightedTvlChange": self.weighted_tvl_change,
                "weightedTvlChangeFormatted": format_large_number(abs(self.weighted_tvl_change)),
                "weightedTvlChangePercent": self.weighted_tvl_change_percent,
                "participantChange": self.participant_change,
            },
            "projections": projections,
            "growthRates": growth_rates,
            "timeline": [
                {
                    "capturedAt": p.captured_at.isoformat(),
                    "date": p.date.isoformat(),
                    "cumulativePoints": p.cumulative_points,
                    "cumulativePointsFormatted": format_large_number(p.cumulative_points),
                    "totalRawTvl": p.total_raw_tvl,
                    "totalWeightedTvl": p.total_weighted_tvl,
                    "estDailyPoints": p.est_daily_points,
                    "participantCount": p.participant_count,
                    "pointsChange": p.points_change,
                    "pointsChangeFormatted": format_large_number(p.points_change),
                }
                for p in self.timeline
            ],
        }


def _timeline(snapshots: Sequence[Snapshot]) -> list[TimelinePoint]:
    points = []
    prev: Snapshot | None = None
    for snap in snapshots:
        s = snap.summary
        points.append(
            TimelinePoint(
                captured_at=snap.captured_at,
                date=calendar_date(snap.captured_at),
                cumulative_points=s.cumulative_points,
                total_raw_tvl=s.total_raw_tvl,
                total_weighted_tvl=s.total_weighted_tvl,
                est_daily_points=s.est_daily_points,
                participant_count=s.participant_count,
                points_change=s.cumulative_points - prev.summary.cumulative_points if prev else 0.0,
            )
        )
        prev = snap
    return points


def build_inflation_report(history: Sequence[Snapshot]) -> InflationReport:
    # Snapshots captured while the points source was down carry zero points
    usable = [s for s in history if s.summary.points_available]
    if len(usable) < len(history):
        logger.warning(
            "Ignoring %d snapshots captured without points data", len(history) - len(usable)
        )
    snapshots = ordered(usable)
    oldest, newest = snapshots[0], snapshots[-1]
    total_days = calendar_days_between(oldest.captured_at, newest.captured_at)
    days = days_for_rate(oldest, newest)

    points_issued = newest.summary.cumulative_points - oldest.summary.cumulative_points
    actual_daily = points_issued / days
    avg_est = (oldest.summary.est_daily_points + newest.summary.est_daily_points) / 2

    growth: dict[Metric, GrowthRate | None] = {}
    for metric in Metric:
        try:
            rate = compound_daily_rate(
                metric.value_of(oldest), metric.value_of(newest), days, str(metric)
            )
            growth[metric] = GrowthRate(metric, rate, days)
        except UndefinedGrowth as exc:
            logger.warning("Skipping growth rate: %s", exc)
            growth[metric] = None

    tvl_change = newest.summary.total_raw_tvl - oldest.summary.total_raw_tvl
    weighted_change = newest.summary.total_weighted_tvl - oldest.summary.total_weighted_tvl

    return InflationReport(
        oldest=oldest,
        newest=newest,
        total_days=total_days,
        days_for_calc=days,
        snapshot_count=len(snapshots),
        points_issued=points_issued,
        actual_daily_rate=actual_daily,
        avg_est_daily_points=avg_est,
        efficiency_rate=_pct(actual_daily, avg_est),
        tvl_change=tvl_change,
        tvl_change_percent=_pct(tvl_change, oldest.summary.total_raw_tvl),
        weighted_tvl_change=weighted_change,
        weighted_tvl_change_percent=_pct(weighted_change, oldest.summary.total_weighted_tvl),
        participant_change=newest.summary.participant_count - oldest.summary.participant_count,
        growth=growth,
        timeline=_timeline(snapshots),
    )
