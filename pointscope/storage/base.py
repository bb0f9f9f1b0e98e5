"""Snapshot store interface and backend selection."""
from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime

from pointscope.config import Settings, settings as default_settings
from pointscope.storage.models import Snapshot


class StoreError(Exception):
    """The backing store failed to read or write."""


class SnapshotStore(ABC):
    """Append-only, time-ordered sequence of snapshots.

    Reads always return snapshots oldest first, ordered by captured_at.
    """

    name: str = "base"

    async def init(self) -> None:
        """Prepare the backend (create tables, open pools)."""

    async def close(self) -> None:
        """Release backend resources."""

    @abstractmethod
    async def append(self, snapshot: Snapshot) -> Snapshot:
        """Persist one snapshot and return it with store-assigned fields set."""
        ...

    @abstractmethod
    async def read_all(self, limit: int | None = None) -> list[Snapshot]:
        """Oldest-first snapshots; with a limit, the oldest `limit` ones."""
        ...

    @abstractmethod
    async def latest(self) -> Snapshot | None:
        ...

    @abstractmethod
    async def count(self) -> int:
        ...

    @abstractmethod
    async def read_range(self, start: datetime, end: datetime) -> list[Snapshot]:
        """Snapshots with start <= captured_at <= end, oldest first."""
        ...


def build_store(config: Settings | None = None) -> SnapshotStore:
    """Supabase when its URL and service key are configured, SQL otherwise."""
    config = config or default_settings
    if config.uses_supabase:
        from pointscope.storage.supabase import SupabaseSnapshotStore

        return SupabaseSnapshotStore(config.supabase_url, config.supabase_service_key)

    from pointscope.storage.sql import SqlSnapshotStore

    return SqlSnapshotStore(config.sql_url)
