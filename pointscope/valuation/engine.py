"""Row valuation — weighted TVL and share-of-total per row.

weighted = raw_amount × effective multiplier (0 for excluded rows)
share    = 100 × weighted / Σ weighted over active + locked rows

Display-only rows are valued like any other row so the breakdown can show
them, but they never enter the total.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Mapping

from pointscope.storage.models import CategoryResult, CondensedRow, SummaryAggregate
from pointscope.valuation.rows import InclusionStatus, RowDefinition, RowTable


@dataclass(frozen=True)
class RowValue:
    definition_id: str
    raw_amount: float
    effective_multiplier: float
    weighted_value: float
    share_of_total: float
    counted: bool


def evaluate(
    rows: Iterable[RowDefinition],
    raw_amounts: Mapping[str, float],
) -> dict[str, RowValue]:
    """Value every row; ids absent from raw_amounts count as zero."""
    rows = list(rows)
    weighted: dict[str, float] = {}
    total_weighted = 0.0

    for row in rows:
        amount = raw_amounts.get(row.id, 0.0)
        if amount < 0:
            raise ValueError(f"raw amount for {row.id} is negative: {amount}")
        if row.inclusion_status is InclusionStatus.EXCLUDED:
            weighted[row.id] = 0.0
        else:
            weighted[row.id] = amount * row.boost.multiplier
        if row.inclusion_status.counts_toward_total:
            total_weighted += weighted[row.id]

    values: dict[str, RowValue] = {}
    for row in rows:
        counted = row.inclusion_status.counts_toward_total
        share = 0.0
        if counted and total_weighted > 0:
            share = weighted[row.id] / total_weighted * 100
        values[row.id] = RowValue(
            definition_id=row.id,
            raw_amount=raw_amounts.get(row.id, 0.0),
            effective_multiplier=row.boost.multiplier,
            weighted_value=weighted[row.id],
            share_of_total=share,
            counted=counted,
        )
    return values


def summarize(
    values: Mapping[str, RowValue],
    cumulative_points: float | None,
    participant_count: int | None,
) -> SummaryAggregate:
    """Collapse row values into the persisted summary.

    None for the points figures means the points source was unavailable;
    the summary records zeros with points_available=False.
    """
    total_raw = sum(v.raw_amount for v in values.values() if v.counted)
    total_weighted = sum(v.weighted_value for v in values.values() if v.counted)
    available = cumulative_points is not None
    return SummaryAggregate(
        cumulative_points=cumulative_points if cumulative_points is not None else 0.0,
        participant_count=participant_count if participant_count is not None else 0,
        total_raw_tvl=total_raw,
        total_weighted_tvl=total_weighted,
        points_available=available,
    )


def condense(table: RowTable, values: Mapping[str, RowValue]) -> tuple[CategoryResult, ...]:
    return tuple(
        CategoryResult(
            category=cat.title,
            rows=tuple(
                CondensedRow(
                    id=row.id,
                    raw_amount=values[row.id].raw_amount,
                    weighted_value=values[row.id].weighted_value,
                    share_of_total=values[row.id].share_of_total,
                )
                for row in cat.rows
            ),
        )
        for cat in table.categories
    )
