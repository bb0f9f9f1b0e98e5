"""Snapshot history endpoints.

GET  /snapshots?mode=all|latest|count&limit=N
POST /snapshots   (Authorization: Bearer <cron secret>)
"""
from __future__ import annotations

import hmac
import logging
from datetime import datetime
from enum import StrEnum
from typing import Any

from fastapi import APIRouter, Depends, Header, HTTPException, Query
from pydantic import BaseModel, ConfigDict, Field

from pointscope.api.app import Services, services
from pointscope.storage.base import StoreError
from pointscope.storage.models import CategoryResult, Snapshot, SnapshotPage, SummaryAggregate

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/snapshots", tags=["snapshots"])


class ReadMode(StrEnum):
    ALL = "all"
    LATEST = "latest"
    COUNT = "count"


class SnapshotIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    captured_at: datetime = Field(alias="capturedAt")
    captured_at_unix: int | None = Field(default=None, alias="capturedAtUnix")
    summary: dict[str, Any]
    table_condensed: list[dict[str, Any]] = Field(alias="tableCondensed")


def require_secret(
    svc: Services = Depends(services),
    authorization: str | None = Header(default=None),
) -> None:
    secret = svc.config.cron_secret
    provided = (authorization or "").removeprefix("Bearer ").strip()
    # No configured secret means writes are disabled
    if not secret or not hmac.compare_digest(provided.encode(), secret.encode()):
        raise HTTPException(status_code=401, detail="Unauthorized")


@router.get("")
async def read_snapshots(
    mode: ReadMode = ReadMode.ALL,
    limit: int | None = Query(default=None, ge=1),
    svc: Services = Depends(services),
) -> Any:
    try:
        if mode is ReadMode.LATEST:
            latest = await svc.store.latest()
            if latest is None:
                raise HTTPException(status_code=404, detail="No snapshots found")
            return SnapshotPage([latest]).to_json()[0]
        if mode is ReadMode.COUNT:
            return {"count": await svc.store.count()}
        snapshots = await svc.store.read_all(limit or svc.config.snapshot_read_limit)
    except StoreError as exc:
        logger.error("Reading snapshots failed: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to fetch snapshots") from exc
    return SnapshotPage(snapshots).to_json()


@router.post("", dependencies=[Depends(require_secret)])
async def write_snapshot(body: SnapshotIn, svc: Services = Depends(services)) -> dict:
    try:
        summary = SummaryAggregate.from_json(body.summary)
        table = tuple(CategoryResult.from_json(c) for c in body.table_condensed)
    except (KeyError, TypeError, ValueError) as exc:
        raise HTTPException(status_code=400, detail=f"Invalid snapshot: {exc}") from exc

    snapshot = Snapshot.at(body.captured_at, summary, table)
    if body.captured_at_unix is not None:
        snapshot = Snapshot(
            captured_at=snapshot.captured_at,
            captured_at_unix=body.captured_at_unix,
            summary=summary,
            table_condensed=table,
        )
    try:
        stored = await svc.store.append(snapshot)
    except StoreError as exc:
        logger.error("Saving snapshot failed: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to save snapshot") from exc
    return {"success": True, "message": "Snapshot saved successfully", "id": stored.id}
