"""Points predictor — expected season total on a chosen date."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from enum import StrEnum

from pointscope.projection.emission import average_multiplier, growth_multiplier
from pointscope.projection.growth import Metric, calendar_date
from pointscope.projection.report import InflationReport


class TvlMode(StrEnum):
    SAME = "same"      # TVL stays flat
    CUSTOM = "custom"  # caller supplies total growth over the horizon
    AUTO = "auto"      # observed daily TVL growth keeps compounding


@dataclass(frozen=True)
class GrowthInputs:
    current_points: float
    current_tvl: float
    current_weighted_tvl: float
    actual_daily_rate: float
    tvl_daily_growth_rate: float
    data_to_date: date

    @classmethod
    def from_report(cls, report: InflationReport) -> "GrowthInputs":
        latest = report.newest.summary
        return cls(
            current_points=latest.cumulative_points,
            current_tvl=latest.total_raw_tvl,
            current_weighted_tvl=latest.total_weighted_tvl,
            actual_daily_rate=report.actual_daily_rate,
            tvl_daily_growth_rate=report.growth_rate(Metric.TVL) or 0.0,
            data_to_date=calendar_date(report.newest.captured_at),
        )


@dataclass(frozen=True)
class Prediction:
    target_date: date
    days_between: int
    is_valid: bool
    predicted_points: float
    predicted_tvl: float
    predicted_weighted_tvl: float
    points_growth: float
    points_growth_percent: float | None
    tvl_growth: float
    tvl_growth_percent: float | None
    tvl_growth_rate_used: float


def predict_points(
    inputs: GrowthInputs,
    target_date: date,
    tvl_mode: TvlMode = TvlMode.AUTO,
    custom_total_growth_pct: float = 0.0,
) -> Prediction:
    days = (target_date - inputs.data_to_date).days
    if days <= 0:
        return Prediction(
            target_date=target_date,
            days_between=0,
            is_valid=False,
            predicted_points=inputs.current_points,
            predicted_tvl=inputs.current_tvl,
            predicted_weighted_tvl=inputs.current_weighted_tvl,
            points_growth=0.0,
            points_growth_percent=0.0,
            tvl_growth=0.0,
            tvl_growth_percent=0.0,
            tvl_growth_rate_used=0.0,
        )

    if tvl_mode is TvlMode.SAME:
        multiplier = 1.0
    elif tvl_mode is TvlMode.CUSTOM:
        multiplier = 1 + custom_total_growth_pct / 100
    else:
        multiplier = growth_multiplier(inputs.tvl_daily_growth_rate, days)

    if multiplier <= 0:
        raise ValueError(f"TVL growth of {custom_total_growth_pct}% leaves no TVL")

    equivalent_daily = (multiplier ** (1 / days) - 1) * 100
    predicted_tvl = inputs.current_tvl * multiplier
    predicted_points = (
        inputs.current_points
        + inputs.actual_daily_rate * average_multiplier(multiplier) * days
    )
    points_growth = predicted_points - inputs.current_points
    tvl_growth = predicted_tvl - inputs.current_tvl

    return Prediction(
        target_date=target_date,
        days_between=days,
        is_valid=True,
        predicted_points=predicted_points,
        predicted_tvl=predicted_tvl,
        predicted_weighted_tvl=inputs.current_weighted_tvl * multiplier,
        points_growth=points_growth,
        points_growth_percent=(
            points_growth / inputs.current_points * 100 if inputs.current_points else None
        ),
        tvl_growth=tvl_growth,
        tvl_growth_percent=tvl_growth / inputs.current_tvl * 100 if inputs.current_tvl else None,
        tvl_growth_rate_used=equivalent_daily,
    )
