"""Per-calendar-day compound growth between two snapshots."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import StrEnum
from typing import Sequence

from pointscope.core.errors import InsufficientHistory, UndefinedGrowth
from pointscope.storage.models import Snapshot


class Metric(StrEnum):
    TVL = "tvl"
    WEIGHTED_TVL = "weighted_tvl"
    POINTS = "points"

    def value_of(self, snapshot: Snapshot) -> float:
        summary = snapshot.summary
        if self is Metric.TVL:
            return summary.total_raw_tvl
        if self is Metric.WEIGHTED_TVL:
            return summary.total_weighted_tvl
        return summary.cumulative_points


@dataclass(frozen=True)
class GrowthRate:
    metric: Metric
    daily_rate_percent: float
    calendar_days: int

    @property
    def weekly_rate_percent(self) -> float:
        return self.daily_rate_percent * 7


def calendar_date(ts: datetime):
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).date()


def calendar_days_between(start: datetime, end: datetime) -> int:
    """Whole UTC calendar days between two instants (time of day ignored)."""
    return (calendar_date(end) - calendar_date(start)).days


def ordered(history: Sequence[Snapshot]) -> list[Snapshot]:
    if len(history) < 2:
        raise InsufficientHistory(len(history))
    return sorted(history, key=lambda s: s.captured_at_unix)


def days_for_rate(oldest: Snapshot, newest: Snapshot) -> int:
    # Same-day snapshots are treated as one day apart
    return max(calendar_days_between(oldest.captured_at, newest.captured_at), 1)


def compound_daily_rate(start: float, end: float, days: int, metric: str = "value") -> float:
    if start == 0:
        raise UndefinedGrowth(metric)
    return ((end / start) ** (1 / days) - 1) * 100


def compute_growth(history: Sequence[Snapshot], metric: Metric) -> GrowthRate:
    snapshots = ordered(history)
    oldest, newest = snapshots[0], snapshots[-1]
    days = days_for_rate(oldest, newest)
    rate = compound_daily_rate(metric.value_of(oldest), metric.value_of(newest), days, str(metric))
    return GrowthRate(metric=metric, daily_rate_percent=rate, calendar_days=days)
