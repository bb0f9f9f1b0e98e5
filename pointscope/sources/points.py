"""Season points source — cumulative points and participants for one program.

The analytics endpoint returns every season program the query names; we pick
the configured one by id. A 503 or a `warming` flag in the body means the
upstream cache is still filling and the request is retried.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx

from pointscope.config import Settings, settings as default_settings
from pointscope.core.cache import CacheEntry, TtlCache
from pointscope.core.errors import UpstreamShapeChanged
from pointscope.sources.base import Sleep, UpstreamSource, WarmingUp, with_backoff

logger = logging.getLogger(__name__)

CACHE_KEY = "points"


@dataclass(frozen=True)
class PointsFigures:
    cumulative_points: float
    participant_count: int
    up_nusd_multiplier: float | None
    fetched_at: datetime

    def to_json(self) -> dict[str, Any]:
        return {
            "totalPoints": self.cumulative_points,
            "participantCount": self.participant_count,
            "upNusdMultiplier": self.up_nusd_multiplier,
            "fetchedAt": self.fetched_at.isoformat(),
        }


def parse_points(body: Any, program_id: str) -> PointsFigures:
    """Pull the configured program out of an analytics response body."""
    try:
        programs = body["data"]["seasonPrograms"]
    except (KeyError, TypeError) as exc:
        raise UpstreamShapeChanged("points", "no data.seasonPrograms in response") from exc
    if not isinstance(programs, list):
        raise UpstreamShapeChanged("points", "data.seasonPrograms is not a list")
    program = next(
        (p for p in programs if isinstance(p, dict) and p.get("id") == program_id), None
    )
    if program is None:
        raise UpstreamShapeChanged("points", f"season program {program_id!r} not in response")
    state = program.get("state") or {}
    if not isinstance(state, dict):
        raise UpstreamShapeChanged("points", f"state of {program_id!r} is not an object")
    try:
        multiplier = state.get("upNusdMultiplier")
        return PointsFigures(
            cumulative_points=float(state["totalPoints"]),
            participant_count=int(state.get("participantCount") or 0),
            up_nusd_multiplier=float(multiplier) if multiplier is not None else None,
            fetched_at=datetime.now(timezone.utc),
        )
    except (KeyError, TypeError, ValueError) as exc:
        raise UpstreamShapeChanged("points", f"bad program state: {exc}") from exc


class PointsSource(UpstreamSource):
    name = "points"

    def __init__(
        self,
        client: httpx.AsyncClient | None = None,
        config: Settings | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.config = config or default_settings
        self._client = client
        self._sleep = sleep

    async def fetch(self) -> PointsFigures:
        return await with_backoff(
            self.name,
            self._fetch_once,
            max_attempts=self.config.points_max_attempts,
            base_delay=self.config.points_retry_base_delay,
            sleep=self._sleep,
        )

    async def _fetch_once(self) -> PointsFigures:
        if self._client is not None:
            return await self._request(self._client)
        async with httpx.AsyncClient(
            timeout=self.config.points_timeout_seconds, follow_redirects=True
        ) as client:
            return await self._request(client)

    async def _request(self, client: httpx.AsyncClient) -> PointsFigures:
        resp = await client.get(
            self.config.points_api_url,
            headers={
                "User-Agent": self.config.points_user_agent,
                "Accept": "application/json",
            },
        )
        if resp.status_code == 503:
            raise WarmingUp("points endpoint returned 503")
        resp.raise_for_status()
        try:
            body = resp.json()
        except ValueError as exc:
            raise UpstreamShapeChanged(self.name, "response is not JSON") from exc
        if isinstance(body, dict) and body.get("warming"):
            raise WarmingUp("points endpoint is warming up")
        figures = parse_points(body, self.config.points_season_program_id)
        logger.info(
            "Points: %.0f total, %d participants",
            figures.cumulative_points, figures.participant_count,
        )
        return figures


async def cached_points(
    source: UpstreamSource,
    cache: TtlCache,
    ttl: float,
) -> CacheEntry[PointsFigures]:
    """Points through the cache: one upstream call per TTL window, stale on failure."""
    return await cache.single_flight(CACHE_KEY, source.fetch, ttl=ttl)
