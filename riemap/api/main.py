"""FastAPI application entry point for RieMap.

Builds the PortalService in the lifespan hook, so importing this module
never touches the database or the data directory.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog
from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import text

from riemap import __version__
from riemap.api.dependencies import get_portal
from riemap.api.downloads import router as downloads_router
from riemap.api.jobs import router as jobs_router
from riemap.api.regions import router as regions_router
from riemap.api.reports import router as reports_router
from riemap.config.settings import Environment, Settings, get_settings
from riemap.db.session import create_engine_for, make_session_factory
from riemap.service import PortalService

settings = get_settings()

_LOG_NAME_TO_LEVEL: dict[str, int] = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

# --- Structured logging ---
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer() if settings.ENVIRONMENT == Environment.DEV
        else structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(
        _LOG_NAME_TO_LEVEL[settings.LOG_LEVEL.value],
    ),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)
logging.basicConfig(level=_LOG_NAME_TO_LEVEL[settings.LOG_LEVEL.value])

logger: structlog.stdlib.BoundLogger = structlog.get_logger()


def create_app(app_settings: Settings | None = None) -> FastAPI:
    """Build the application; the lifespan wires storage, jobs and reports."""
    app_settings = app_settings or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        engine = None
        session_factory = None
        if app_settings.DATABASE_URL:
            engine = create_engine_for(app_settings)
            session_factory = make_session_factory(engine)
        portal = PortalService.from_settings(app_settings, session_factory=session_factory)
        await portal.orchestrator.recover_interrupted()
        app.state.portal = portal
        app.state.session_factory = session_factory
        logger.info(
            "riemap_started",
            regions=len(portal.catalog),
            data_dir=app_settings.DATA_DIR,
            database=bool(session_factory),
        )
        try:
            yield
        finally:
            await portal.orchestrator.shutdown()
            if engine is not None:
                await engine.dispose()
            logger.info("riemap_stopped")

    app = FastAPI(
        title="RieMap API",
        description="Regional map extract ingestion, versioning and quality assessment.",
        version=__version__,
        lifespan=lifespan,
    )

    # --- CORS middleware ---
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if app_settings.ENVIRONMENT == Environment.DEV else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # --- Routers ---
    app.include_router(regions_router)
    app.include_router(reports_router)
    app.include_router(jobs_router)
    app.include_router(downloads_router)

    # --- Infrastructure Endpoints ---

    @app.get("/health")
    async def health_check(portal: PortalService = Depends(get_portal)) -> dict:
        """Liveness check with per-component health.

        Returns 200 always (degraded status if components are down).
        """
        checks: dict[str, bool] = {"api": True, "storage": portal.store.root.is_dir()}
        session_factory = getattr(app.state, "session_factory", None)
        if session_factory is not None:
            try:
                async with session_factory() as session:
                    await session.execute(text("SELECT 1"))
                checks["database"] = True
            except Exception:
                checks["database"] = False

        return {
            "status": "ok" if all(checks.values()) else "degraded",
            "version": __version__,
            "environment": app_settings.ENVIRONMENT.value,
            "checks": checks,
        }

    @app.get("/api/version")
    async def api_version() -> dict:
        """Return API version info."""
        return {"version": __version__, "name": "RieMap"}

    @app.get("/api/stats")
    async def get_stats(portal: PortalService = Depends(get_portal)) -> dict:
        """Catalog, storage and job totals."""
        return await portal.stats()

    return app


app = create_app()
