"""Human-readable number formatting for summaries and reports."""
from __future__ import annotations

_SUFFIXES = (
    (1e12, "T"),
    (1e9, "B"),
    (1e6, "M"),
    (1e3, "K"),
)


def format_large_number(value: float, decimals: int = 2) -> str:
    """1234567 -> '1.23M'. Negative values keep their sign."""
    sign = "-" if value < 0 else ""
    magnitude = abs(value)
    for threshold, suffix in _SUFFIXES:
        if magnitude >= threshold:
            return f"{sign}{magnitude / threshold:.{decimals}f}{suffix}"
    return f"{sign}{magnitude:.{decimals}f}"


def format_percent(value: float | None, decimals: int = 2) -> str:
    if value is None:
        return "n/a"
    return f"{value:.{decimals}f}%"
