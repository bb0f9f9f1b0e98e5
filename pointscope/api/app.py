"""FastAPI application — snapshot history, analytics and health."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI, Request

from pointscope.config import Settings, settings as default_settings
from pointscope.core.cache import TtlCache
from pointscope.sources.base import UpstreamSource
from pointscope.sources.points import PointsSource
from pointscope.sources.tvl import TvlSource
from pointscope.storage.base import SnapshotStore, build_store

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@dataclass
class Services:
    """Everything the routes need, hung off app.state."""

    config: Settings
    store: SnapshotStore
    cache: TtlCache
    tvl_source: UpstreamSource
    points_source: UpstreamSource


def services(request: Request) -> Services:
    return request.app.state.services


def create_app(
    store: SnapshotStore | None = None,
    cache: TtlCache | None = None,
    tvl_source: UpstreamSource | None = None,
    points_source: UpstreamSource | None = None,
    config: Settings | None = None,
) -> FastAPI:
    from pointscope.api.analytics import router as analytics_router
    from pointscope.api.snapshots import router as snapshots_router

    config = config or default_settings
    svc = Services(
        config=config,
        store=store or build_store(config),
        cache=cache or TtlCache(default_ttl=config.tvl_cache_ttl_seconds),
        tvl_source=tvl_source or TvlSource(config=config),
        points_source=points_source or PointsSource(config=config),
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("pointscope API starting (store: %s)", svc.store.name)
        await svc.store.init()
        yield
        await svc.store.close()
        logger.info("pointscope API stopping")

    app = FastAPI(
        title="pointscope",
        description="TVL aggregation and points-emission projection",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.services = svc
    app.include_router(snapshots_router)
    app.include_router(analytics_router)

    @app.get("/health")
    async def health():
        return {"status": "ok", "version": VERSION, "store": svc.store.name}

    return app
