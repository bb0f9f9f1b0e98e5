"""Static row table for the points program.

Every position that can earn (or is shown next to positions that earn)
season points is one RowDefinition. Rows are grouped into categories that
mirror the program's published breakdown: one per Pendle market, plus the
hold/lock section.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Iterator, Sequence, Union


class RowKind(StrEnum):
    ROW = "row"
    SUBROW = "subrow"


class InclusionStatus(StrEnum):
    ACTIVE = "active"
    LOCKED = "locked"
    EXCLUDED = "excluded"
    # Shown for breakdown purposes only (gross parents, excluded LP share)
    DISPLAY_ONLY = "display"

    @property
    def counts_toward_total(self) -> bool:
        return self in (InclusionStatus.ACTIVE, InclusionStatus.LOCKED)


@dataclass(frozen=True)
class SimpleBoost:
    value: float

    def __post_init__(self) -> None:
        if self.value < 0:
            raise ValueError(f"boost must be non-negative, got {self.value}")

    @property
    def multiplier(self) -> float:
        return self.value

    def describe(self) -> str:
        return f"{self.value:g}x"


@dataclass(frozen=True)
class CompoundBoost:
    """Category base boost scaled by a position boost (lock duration)."""

    base: float
    factor: float

    def __post_init__(self) -> None:
        if self.base < 0 or self.factor < 0:
            raise ValueError(f"boost must be non-negative, got {self.base} x {self.factor}")

    @property
    def multiplier(self) -> float:
        return self.base * self.factor

    def describe(self) -> str:
        return f"{self.base:g}x × {self.factor:g}x = {self.multiplier:g}x"


Boost = Union[SimpleBoost, CompoundBoost]

NO_BOOST = SimpleBoost(0)


@dataclass(frozen=True)
class RowDefinition:
    id: str
    display_name: str
    kind: RowKind
    inclusion_status: InclusionStatus
    boost: Boost = NO_BOOST
    # Protocol the position lives on (pendle, neutrl, curve, k3)
    source_category: str = ""

    @property
    def is_lock_subrow(self) -> bool:
        return isinstance(self.boost, CompoundBoost)


@dataclass(frozen=True)
class Category:
    id: str
    title: str
    rows: tuple[RowDefinition, ...]


class RowTable:
    """Ordered, id-unique collection of categories."""

    def __init__(self, categories: Sequence[Category]) -> None:
        self.categories: tuple[Category, ...] = tuple(categories)
        self._by_id: dict[str, RowDefinition] = {}
        for cat in self.categories:
            for row in cat.rows:
                if row.id in self._by_id:
                    raise ValueError(f"duplicate row id {row.id!r} in category {cat.id!r}")
                self._by_id[row.id] = row

    def __iter__(self) -> Iterator[RowDefinition]:
        for cat in self.categories:
            yield from cat.rows

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, row_id: object) -> bool:
        return row_id in self._by_id

    def get(self, row_id: str) -> RowDefinition:
        return self._by_id[row_id]

    @property
    def ids(self) -> list[str]:
        return list(self._by_id)


def _row(
    id: str,
    name: str,
    status: InclusionStatus,
    boost: Boost = NO_BOOST,
    category: str = "",
) -> RowDefinition:
    return RowDefinition(id, name, RowKind.ROW, status, boost, category)


def _sub(
    id: str,
    name: str,
    status: InclusionStatus,
    boost: Boost = NO_BOOST,
    category: str = "",
) -> RowDefinition:
    return RowDefinition(id, name, RowKind.SUBROW, status, boost, category)


A, L, X, D = (
    InclusionStatus.ACTIVE,
    InclusionStatus.LOCKED,
    InclusionStatus.EXCLUDED,
    InclusionStatus.DISPLAY_ONLY,
)

# Gross YT/LP parents are display-only; their fee and net children each carry
# the market boost separately and are the rows that actually count.
PROGRAM_CATEGORIES: tuple[Category, ...] = (
    Category(
        "feb-2026",
        "FEBRUARY 26, 2026 MARKET [ACTIVE]",
        (
            _row("yt-nusd-feb26", "YT NUSD Feb 26 (Gross)", D, SimpleBoost(50), "pendle"),
            _sub("pendle-fee-nusd", "Pendle Fee (5%)", A, SimpleBoost(50)),
            _sub("yt-nusd-feb26-net", "YT NUSD Feb 26 NET", A, SimpleBoost(50)),
            _row("lp-nusd-feb26", "LP NUSD Feb 26 (SY Portion)", D, SimpleBoost(50), "pendle"),
            _sub("lp-excluded-nusd", "Excluded (20%)", D, SimpleBoost(0)),
            _sub("lp-nusd-feb26-net", "LP NUSD Feb 26 (80%)", A, SimpleBoost(50)),
            _row("pt-nusd-feb26", "PT NUSD Feb 26", X, NO_BOOST, "pendle"),
        ),
    ),
    Category(
        "mar-2026",
        "MARCH 5, 2026 MARKET [ACTIVE]",
        (
            _row("yt-snusd-mar26", "YT sNUSD Mar 5 (Gross)", D, SimpleBoost(25), "pendle"),
            _sub("pendle-fee-snusd", "Pendle Fee (5%)", A, SimpleBoost(25)),
            _sub("yt-snusd-mar26-net", "YT sNUSD Mar 5 NET", A, SimpleBoost(25)),
            _row("lp-snusd-mar26", "LP sNUSD Mar 5 (SY Portion)", D, SimpleBoost(25), "pendle"),
            _sub("lp-excluded-snusd", "Excluded (20%)", D, SimpleBoost(0)),
            _sub("lp-snusd-mar26-net", "LP sNUSD Mar 5 (80%)", A, SimpleBoost(25)),
            _row("pt-snusd-mar26", "PT sNUSD Mar 5", X, NO_BOOST, "pendle"),
        ),
    ),
    Category(
        "hold",
        "HOLD",
        (
            _row("hold-nusd", "Hold NUSD (unlocked)", A, SimpleBoost(5), "neutrl"),
            _sub("lock-nusd-3mo", "Lock NUSD (3 mo)", L, CompoundBoost(5, 6), "neutrl"),
            _sub("lock-nusd-6mo", "Lock NUSD (6 mo)", L, CompoundBoost(5, 15), "neutrl"),
            _sub("lock-nusd-9mo", "Lock NUSD (9 mo)", L, CompoundBoost(5, 25), "neutrl"),
            _sub("lock-nusd-12mo", "Lock NUSD (12 mo)", L, CompoundBoost(5, 30), "neutrl"),
            _row("hold-snusd", "Hold sNUSD (unlocked)", A, SimpleBoost(1), "neutrl"),
            _sub("lock-snusd-3mo", "Lock sNUSD (3 mo)", L, CompoundBoost(1, 8), "neutrl"),
            _sub("lock-snusd-6mo", "Lock sNUSD (6 mo)", L, CompoundBoost(1, 20), "neutrl"),
            _sub("lock-snusd-9mo", "Lock sNUSD (9 mo)", L, CompoundBoost(1, 30), "neutrl"),
            _sub("lock-snusd-12mo", "Lock sNUSD (12 mo)", L, CompoundBoost(1, 40), "neutrl"),
            _row("hold-curve-lp", "Curve LP (unlocked)", A, SimpleBoost(5), "curve"),
            _sub("curve-nusd-breakdown", "NUSD in pool", D, SimpleBoost(5), "curve"),
            _sub("curve-usdc-breakdown", "USDC in pool", D, SimpleBoost(5), "curve"),
            _sub("lock-curve-3mo", "Lock Curve LP (3 mo)", L, CompoundBoost(5, 4), "curve"),
            _sub("lock-curve-6mo", "Lock Curve LP (5-6 mo Max)", L, CompoundBoost(5, 10), "curve"),
            _row("hold-upnusd", "Hold upNUSD", A, SimpleBoost(28), "k3"),
        ),
    ),
)

PROGRAM_TABLE = RowTable(PROGRAM_CATEGORIES)
