"""StaySync API: FastAPI application factory.

The app factory creates a FastAPI instance with:
- CORS middleware (configurable origins)
- Lifespan handler for startup/shutdown of the DB pool and feed fetcher
- Health endpoint at GET /api/health
- Sync, export and cleaning routers
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from staysync import __version__
from staysync.api.deps import init_services, shutdown_services, wire_dependencies
from staysync.api.middleware import register_error_handlers
from staysync.api.models import HealthResponse
from staysync.api.routers.cleaning import router as cleaning_router
from staysync.api.routers.export import router as export_router
from staysync.api.routers.sync import router as sync_router
from staysync.config import StaySyncConfig

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the database pool and engines; close them on shutdown."""
    config: StaySyncConfig = app.state.config
    try:
        await init_services(config)
        wire_dependencies(app)
        logger.info("StaySync services initialized for database %s", config.db_name)
    except Exception:
        logger.warning(
            "Failed to initialize StaySync services; DB endpoints will be unavailable",
            exc_info=True,
        )

    yield

    await shutdown_services()


def create_app(
    config: StaySyncConfig | None = None,
    cors_origins: list[str] | None = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Parameters
    ----------
    config:
        Runtime configuration. Defaults to :class:`StaySyncConfig` defaults.
    cors_origins:
        Allowed CORS origins. Defaults to ``config.api.cors_origins``.
    """
    config = config or StaySyncConfig()
    if cors_origins is None:
        cors_origins = config.api.cors_origins

    app = FastAPI(
        title="StaySync API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.router.redirect_slashes = False

    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)

    app.include_router(sync_router)
    app.include_router(export_router)
    app.include_router(cleaning_router)

    @app.get("/api/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(version=__version__)

    return app
