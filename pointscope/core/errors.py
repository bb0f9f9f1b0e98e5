"""Error taxonomy shared by the capture, projection and storage layers.

Fetch-layer errors are retried inside the sources and only escape once the
retry budget is spent. Projection errors come from pure arithmetic and are
raised straight to the caller.
"""
from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from pointscope.storage.models import Snapshot


class PointscopeError(Exception):
    """Base class for every error raised by pointscope."""


# ── capture ───────────────────────────────────────────────────────────────────


class CaptureError(PointscopeError):
    """A snapshot capture could not complete."""

    exit_code: int = 1


class UpstreamUnavailable(CaptureError):
    """An upstream source was unreachable or answered with a failure status."""

    exit_code = 2

    def __init__(self, source: str, detail: str = "") -> None:
        self.source = source
        self.detail = detail
        super().__init__(f"{source} unavailable: {detail}" if detail else f"{source} unavailable")


class UpstreamShapeChanged(CaptureError):
    """An upstream answered successfully but without the fields we rely on."""

    exit_code = 3

    def __init__(self, source: str, detail: str = "") -> None:
        self.source = source
        self.detail = detail
        super().__init__(f"{source} response shape changed: {detail}")


class PersistenceFailure(CaptureError):
    """The snapshot store rejected an append.

    The computed snapshot rides along so an operator (or a retrying cron) can
    resubmit it.
    """

    exit_code = 4

    def __init__(self, detail: str, snapshot: "Snapshot | None" = None) -> None:
        self.detail = detail
        self.snapshot = snapshot
        super().__init__(f"persisting snapshot failed: {detail}")


# ── projection ────────────────────────────────────────────────────────────────


class ProjectionError(PointscopeError):
    """Growth or projection arithmetic cannot produce a number."""

    exit_code: int = 5


class UndefinedGrowth(ProjectionError, ZeroDivisionError):
    def __init__(self, metric: str) -> None:
        self.metric = metric
        super().__init__(f"growth of {metric} is undefined: baseline value is zero")


class InsufficientHistory(ProjectionError):
    def __init__(self, count: int, required: int = 2) -> None:
        self.count = count
        self.required = required
        super().__init__(f"need at least {required} snapshots, have {count}")
