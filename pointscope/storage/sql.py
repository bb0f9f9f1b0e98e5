"""SQL snapshot store — SQLAlchemy async engine, SQLite by default.

The `tvl_snapshots` table mirrors the hosted layout so a database dump can
move between backends unchanged.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import JSON, BigInteger, DateTime, func, select
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from pointscope.storage.base import SnapshotStore, StoreError
from pointscope.storage.models import Snapshot

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


class SnapshotRow(Base):
    """One captured snapshot."""

    __tablename__ = "tvl_snapshots"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    captured_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    captured_at_unix: Mapped[int] = mapped_column(BigInteger)
    summary: Mapped[dict] = mapped_column(JSON)
    table_condensed: Mapped[list] = mapped_column(JSON, default=list)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True))

    def to_snapshot(self) -> Snapshot:
        return Snapshot.from_record(
            {
                "id": self.id,
                "captured_at": _utc(self.captured_at),
                "captured_at_unix": self.captured_at_unix,
                "summary": self.summary,
                "table_condensed": self.table_condensed,
                "created_at": _utc(self.created_at) if self.created_at else None,
            }
        )


def _utc(ts: datetime) -> datetime:
    # SQLite drops the offset on the way back out
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


class SqlSnapshotStore(SnapshotStore):
    name = "sql"

    def __init__(self, url: str) -> None:
        self.url = url
        self._engine: AsyncEngine | None = None
        self._session: async_sessionmaker[AsyncSession] | None = None

    # ── setup ─────────────────────────────────────────────────────────────────

    async def init(self) -> None:
        if self._engine is not None:
            return
        url = make_url(self.url)
        if url.get_backend_name() == "sqlite" and url.database not in (None, "", ":memory:"):
            Path(url.database).parent.mkdir(parents=True, exist_ok=True)

        self._engine = create_async_engine(self.url, echo=False)
        self._session = async_sessionmaker(self._engine, expire_on_commit=False)
        try:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
        except SQLAlchemyError as exc:
            raise StoreError(f"creating snapshot table failed: {exc}") from exc
        logger.info("Snapshot DB ready at %s", url.render_as_string(hide_password=True))

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session = None

    async def _sessions(self) -> async_sessionmaker[AsyncSession]:
        if self._session is None:
            await self.init()
        return self._session  # type: ignore[return-value]

    # ── operations ────────────────────────────────────────────────────────────

    async def append(self, snapshot: Snapshot) -> Snapshot:
        record = snapshot.to_record()
        row = SnapshotRow(
            captured_at=snapshot.captured_at,
            captured_at_unix=snapshot.captured_at_unix,
            summary=record["summary"],
            table_condensed=record["table_condensed"],
            created_at=datetime.now(timezone.utc),
        )
        sessions = await self._sessions()
        try:
            async with sessions() as session:
                session.add(row)
                await session.commit()
                return row.to_snapshot()
        except SQLAlchemyError as exc:
            raise StoreError(f"insert failed: {exc}") from exc

    async def read_all(self, limit: int | None = None) -> list[Snapshot]:
        query = select(SnapshotRow).order_by(SnapshotRow.captured_at.asc(), SnapshotRow.id.asc())
        if limit is not None:
            query = query.limit(limit)
        return await self._select(query)

    async def latest(self) -> Snapshot | None:
        rows = await self._select(
            select(SnapshotRow)
            .order_by(SnapshotRow.captured_at.desc(), SnapshotRow.id.desc())
            .limit(1)
        )
        return rows[0] if rows else None

    async def count(self) -> int:
        sessions = await self._sessions()
        try:
            async with sessions() as session:
                result = await session.execute(select(func.count()).select_from(SnapshotRow))
                return int(result.scalar_one())
        except SQLAlchemyError as exc:
            raise StoreError(f"count failed: {exc}") from exc

    async def read_range(self, start: datetime, end: datetime) -> list[Snapshot]:
        return await self._select(
            select(SnapshotRow)
            .where(SnapshotRow.captured_at_unix >= int(start.timestamp()))
            .where(SnapshotRow.captured_at_unix <= int(end.timestamp()))
            .order_by(SnapshotRow.captured_at.asc(), SnapshotRow.id.asc())
        )

    async def _select(self, query) -> list[Snapshot]:
        sessions = await self._sessions()
        try:
            async with sessions() as session:
                result = await session.execute(query)
                return [row.to_snapshot() for row in result.scalars().all()]
        except SQLAlchemyError as exc:
            raise StoreError(f"read failed: {exc}") from exc
