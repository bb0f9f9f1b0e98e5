"""Snapshot capture — fetch, value, persist.

    Idle → Warmup → FetchingTvl → FetchingPoints → Valuating → Persisting → Done

Any step may move to Aborted. TVL is mandatory: if it cannot be fetched the
capture aborts and nothing is written. Points are optional: a failed points
fetch is logged and the snapshot is stored with points_available=False.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import StrEnum
from typing import Callable

from pointscope.core.errors import CaptureError, PersistenceFailure
from pointscope.sources.base import UpstreamSource
from pointscope.sources.points import PointsFigures
from pointscope.storage.base import SnapshotStore, StoreError
from pointscope.storage.models import Snapshot
from pointscope.valuation.amounts import amounts_from_tvl
from pointscope.valuation.engine import condense, evaluate, summarize
from pointscope.valuation.rows import PROGRAM_TABLE, RowTable

logger = logging.getLogger(__name__)


class CaptureState(StrEnum):
    IDLE = "idle"
    WARMUP = "warmup"
    FETCHING_TVL = "fetching_tvl"
    FETCHING_POINTS = "fetching_points"
    VALUATING = "valuating"
    PERSISTING = "persisting"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class CaptureResult:
    snapshot: Snapshot
    points_error: str = ""
    missing_rows: set[str] = field(default_factory=set)

    @property
    def degraded(self) -> bool:
        return bool(self.points_error or self.missing_rows)


class CaptureOrchestrator:
    """Runs one capture at a time; create a fresh instance per capture."""

    def __init__(
        self,
        tvl_source: UpstreamSource,
        store: SnapshotStore,
        points_source: UpstreamSource | None = None,
        table: RowTable = PROGRAM_TABLE,
        warmup: bool = True,
        now: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.tvl_source = tvl_source
        self.points_source = points_source
        self.store = store
        self.table = table
        self.warmup = warmup
        self._now = now
        self.state = CaptureState.IDLE
        self.transitions: list[CaptureState] = [CaptureState.IDLE]
        self.last_result: CaptureResult | None = None

    def _enter(self, state: CaptureState) -> None:
        logger.debug("capture: %s -> %s", self.state, state)
        self.state = state
        self.transitions.append(state)

    async def capture_once(self) -> Snapshot:
        try:
            result = await self._run()
        except CaptureError as exc:
            self._enter(CaptureState.ABORTED)
            logger.error("Capture aborted: %s", exc)
            raise
        self._enter(CaptureState.DONE)
        self.last_result = result
        return result.snapshot

    async def _run(self) -> CaptureResult:
        if self.warmup:
            self._enter(CaptureState.WARMUP)
            if not await self.tvl_source.is_available():
                logger.warning("TVL source reports unavailable; trying anyway")

        self._enter(CaptureState.FETCHING_TVL)
        tvl_payload = await self.tvl_source.fetch()

        figures: PointsFigures | None = None
        points_error = ""
        if self.points_source is not None:
            self._enter(CaptureState.FETCHING_POINTS)
            try:
                figures = await self.points_source.fetch()
            except CaptureError as exc:
                points_error = str(exc)
                logger.warning("Points unavailable, recording snapshot without them: %s", exc)
        else:
            points_error = "no points source configured"

        self._enter(CaptureState.VALUATING)
        sheet = amounts_from_tvl(tvl_payload)
        values = evaluate(self.table, sheet.amounts)
        summary = summarize(
            values,
            figures.cumulative_points if figures else None,
            figures.participant_count if figures else None,
        )
        snapshot = Snapshot.at(self._now(), summary, condense(self.table, values))

        self._enter(CaptureState.PERSISTING)
        try:
            stored = await self.store.append(snapshot)
        except StoreError as exc:
            raise PersistenceFailure(str(exc), snapshot) from exc

        shown = summary.to_json()
        logger.info(
            "Captured snapshot %s: raw TVL %s, weighted TVL %s, points %s",
            stored.id,
            shown["totalRawTvlFormatted"],
            shown["totalWeightedTvlFormatted"],
            shown["cumulativePointsFormatted"],
        )
        return CaptureResult(stored, points_error, set(sheet.missing))
