"""Snapshot records — the unit persisted by every snapshot store.

Records serialize to the camelCase JSON layout used by the hosted
`tvl_snapshots` table so SQL and Supabase backends store identical payloads.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from pointscope.core.formatting import format_large_number


@dataclass(frozen=True)
class SummaryAggregate:
    cumulative_points: float
    participant_count: int
    total_raw_tvl: float
    total_weighted_tvl: float
    # False when the points source could not be reached during capture
    points_available: bool = True

    @property
    def est_daily_points(self) -> float:
        # 1 weighted-TVL unit earns 1 point per day
        return self.total_weighted_tvl

    @property
    def est_weekly_points(self) -> float:
        return self.total_weighted_tvl * 7

    @property
    def est_monthly_points(self) -> float:
        return self.total_weighted_tvl * 30

    def to_json(self) -> dict[str, Any]:
        return {
            "cumulativePoints": self.cumulative_points,
            "cumulativePointsFormatted": (
                format_large_number(self.cumulative_points) if self.points_available else "N/A"
            ),
            "participantCount": self.participant_count,
            "pointsAvailable": self.points_available,
            "totalRawTvl": self.total_raw_tvl,
            "totalRawTvlFormatted": format_large_number(self.total_raw_tvl),
            "totalWeightedTvl": self.total_weighted_tvl,
            "totalWeightedTvlFormatted": format_large_number(self.total_weighted_tvl),
            "estDailyPoints": self.est_daily_points,
            "estDailyPointsFormatted": format_large_number(self.est_daily_points),
            "estWeeklyPoints": self.est_weekly_points,
            "estWeeklyPointsFormatted": format_large_number(self.est_weekly_points),
            "estMonthlyPoints": self.est_monthly_points,
            "estMonthlyPointsFormatted": format_large_number(self.est_monthly_points),
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "SummaryAggregate":
        """Accepts current keys and the legacy s1RewardsIssued/totalTvl/weightedTvl ones."""
        points = data.get("cumulativePoints", data.get("s1RewardsIssued"))
        raw = data.get("totalRawTvl", data.get("totalTvl"))
        weighted = data.get("totalWeightedTvl", data.get("weightedTvl"))
        missing = [
            name
            for name, value in (
                ("cumulativePoints", points),
                ("totalRawTvl", raw),
                ("totalWeightedTvl", weighted),
            )
            if value is None
        ]
        if missing:
            raise ValueError(f"summary missing fields: {', '.join(missing)}")
        return cls(
            cumulative_points=float(points),
            participant_count=int(data.get("participantCount") or 0),
            total_raw_tvl=float(raw),
            total_weighted_tvl=float(weighted),
            points_available=bool(data.get("pointsAvailable", True)),
        )


@dataclass(frozen=True)
class CondensedRow:
    id: str
    raw_amount: float
    weighted_value: float
    share_of_total: float

    def to_json(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "rawAmount": self.raw_amount,
            "weightedValue": self.weighted_value,
            "shareOfTotal": self.share_of_total,
        }

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "CondensedRow":
        return cls(
            id=data["id"],
            raw_amount=float(data.get("rawAmount", data.get("tvlAmount", 0))),
            weighted_value=float(data.get("weightedValue", data.get("weightedTvl", 0))),
            share_of_total=float(data.get("shareOfTotal", data.get("share", 0))),
        )


@dataclass(frozen=True)
class CategoryResult:
    category: str
    rows: tuple[CondensedRow, ...] = ()

    def to_json(self) -> dict[str, Any]:
        return {"category": self.category, "rows": [r.to_json() for r in self.rows]}

    @classmethod
    def from_json(cls, data: dict[str, Any]) -> "CategoryResult":
        return cls(
            category=data.get("category", ""),
            rows=tuple(CondensedRow.from_json(r) for r in data.get("rows", [])),
        )


@dataclass(frozen=True)
class Snapshot:
    captured_at: datetime
    captured_at_unix: int
    summary: SummaryAggregate
    table_condensed: tuple[CategoryResult, ...] = ()
    # Assigned by the store
    id: int | None = None
    created_at: datetime | None = None

    @classmethod
    def at(
        cls,
        captured_at: datetime,
        summary: SummaryAggregate,
        table_condensed: tuple[CategoryResult, ...] = (),
    ) -> "Snapshot":
        if captured_at.tzinfo is None:
            captured_at = captured_at.replace(tzinfo=timezone.utc)
        return cls(
            captured_at=captured_at,
            captured_at_unix=int(captured_at.timestamp()),
            summary=summary,
            table_condensed=table_condensed,
        )

    def to_record(self) -> dict[str, Any]:
        """Row payload for insertion (store-assigned columns omitted)."""
        return {
            "captured_at": self.captured_at.isoformat(),
            "captured_at_unix": self.captured_at_unix,
            "summary": self.summary.to_json(),
            "table_condensed": [c.to_json() for c in self.table_condensed],
        }

    def to_json(self) -> dict[str, Any]:
        """Body accepted by POST /snapshots."""
        return {
            "capturedAt": self.captured_at.isoformat(),
            "capturedAtUnix": self.captured_at_unix,
            "summary": self.summary.to_json(),
            "tableCondensed": [c.to_json() for c in self.table_condensed],
        }

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> "Snapshot":
        captured_at = _parse_ts(record["captured_at"])
        unix = record.get("captured_at_unix")
        created = record.get("created_at")
        return cls(
            captured_at=captured_at,
            captured_at_unix=int(unix) if unix is not None else int(captured_at.timestamp()),
            summary=SummaryAggregate.from_json(record["summary"]),
            table_condensed=tuple(
                CategoryResult.from_json(c) for c in record.get("table_condensed") or []
            ),
            id=record.get("id"),
            created_at=_parse_ts(created) if created else None,
        )


def _parse_ts(value: str | datetime) -> datetime:
    if isinstance(value, datetime):
        ts = value
    else:
        # PostgREST emits "+00:00"; JS clients emit a trailing "Z"
        ts = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


@dataclass
class SnapshotPage:
    """Convenience wrapper returned by API listings."""

    snapshots: list[Snapshot] = field(default_factory=list)

    def to_json(self) -> list[dict[str, Any]]:
        out = []
        for s in self.snapshots:
            rec = s.to_record()
            rec["id"] = s.id
            rec["created_at"] = s.created_at.isoformat() if s.created_at else None
            out.append(rec)
        return out
