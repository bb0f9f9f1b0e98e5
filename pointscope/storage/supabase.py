"""Supabase snapshot store — PostgREST over httpx."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

import httpx

from pointscope.storage.base import SnapshotStore, StoreError
from pointscope.storage.models import Snapshot

logger = logging.getLogger(__name__)

TABLE = "tvl_snapshots"


class SupabaseSnapshotStore(SnapshotStore):
    name = "supabase"

    def __init__(
        self,
        url: str,
        service_key: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 20.0,
    ) -> None:
        self.endpoint = f"{url.rstrip('/')}/rest/v1/{TABLE}"
        self._headers = {
            "apikey": service_key,
            "Authorization": f"Bearer {service_key}",
            "Content-Type": "application/json",
        }
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    async def init(self) -> None:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        params: Any = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        await self.init()
        try:
            resp = await self._client.request(  # type: ignore[union-attr]
                method,
                self.endpoint,
                params=params,
                json=json,
                headers={**self._headers, **(headers or {})},
            )
            resp.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise StoreError(
                f"{method} {TABLE} returned {exc.response.status_code}: {exc.response.text[:200]}"
            ) from exc
        except httpx.HTTPError as exc:
            raise StoreError(f"{method} {TABLE} failed: {exc}") from exc
        return resp

    async def append(self, snapshot: Snapshot) -> Snapshot:
        resp = await self._request(
            "POST",
            json=snapshot.to_record(),
            headers={"Prefer": "return=representation"},
        )
        rows = resp.json()
        if not rows:
            raise StoreError("insert returned no row")
        return Snapshot.from_record(rows[0])

    async def read_all(self, limit: int | None = None) -> list[Snapshot]:
        params: dict[str, Any] = {"select": "*", "order": "captured_at.asc"}
        if limit is not None:
            params["limit"] = limit
        resp = await self._request("GET", params=params)
        return [Snapshot.from_record(r) for r in resp.json()]

    async def latest(self) -> Snapshot | None:
        resp = await self._request(
            "GET", params={"select": "*", "order": "captured_at.desc", "limit": 1}
        )
        rows = resp.json()
        return Snapshot.from_record(rows[0]) if rows else None

    async def count(self) -> int:
        resp = await self._request(
            "HEAD",
            params={"select": "id"},
            headers={"Prefer": "count=exact", "Range": "0-0"},
        )
        # Content-Range: 0-0/42  (or */0 when empty)
        content_range = resp.headers.get("content-range", "")
        total = content_range.rpartition("/")[2]
        if not total.isdigit():
            raise StoreError(f"unexpected Content-Range {content_range!r}")
        return int(total)

    async def read_range(self, start: datetime, end: datetime) -> list[Snapshot]:
        resp = await self._request(
            "GET",
            params=[
                ("select", "*"),
                ("captured_at_unix", f"gte.{int(start.timestamp())}"),
                ("captured_at_unix", f"lte.{int(end.timestamp())}"),
                ("order", "captured_at.asc"),
            ],
        )
        return [Snapshot.from_record(r) for r in resp.json()]
