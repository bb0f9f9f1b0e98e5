"""Future point totals under two growth models.

DIRECT_COMPOUND extrapolates the points total along its own historical
compound rate. TVL_SCALED_EMISSION treats daily emission as proportional to
weighted TVL while weighted TVL compounds, and integrates emission over the
horizon with the exact mean of an exponential:

    g   = (1 + r/100) ** days
    avg = (g - 1) / ln(g)        (avg = 1 when g == 1)
    new = daily_emission × avg × days
"""
from __future__ import annotations

import math
from enum import StrEnum

from pointscope.projection.growth import GrowthRate


class EmissionModel(StrEnum):
    DIRECT_COMPOUND = "direct_compound"
    TVL_SCALED_EMISSION = "tvl_scaled_emission"


def growth_multiplier(daily_rate_percent: float, days: float) -> float:
    return (1 + daily_rate_percent / 100) ** days


def average_multiplier(total_multiplier: float) -> float:
    """Mean of e^(kt) over [0, T] expressed through g = e^(kT)."""
    if total_multiplier == 1:
        return 1.0
    if total_multiplier <= 0:
        raise ValueError(f"growth multiplier must be positive, got {total_multiplier}")
    return (total_multiplier - 1) / math.log(total_multiplier)


def project(
    current_total: float,
    rate: GrowthRate | float,
    horizon_days: int,
    model: EmissionModel = EmissionModel.DIRECT_COMPOUND,
    current_daily_emission: float | None = None,
) -> float:
    if horizon_days < 0:
        raise ValueError(f"horizon_days must be >= 0, got {horizon_days}")
    daily_rate = rate.daily_rate_percent if isinstance(rate, GrowthRate) else float(rate)
    g = growth_multiplier(daily_rate, horizon_days)

    if model is EmissionModel.DIRECT_COMPOUND:
        return current_total * g

    if current_daily_emission is None:
        raise ValueError("current_daily_emission is required for TVL_SCALED_EMISSION")
    new_points = current_daily_emission * average_multiplier(g) * horizon_days
    return current_total + new_points
