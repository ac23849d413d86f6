"""FastAPI application entry point for turnkeeper."""

import asyncio
import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.api.middleware.error_handler import global_exception_handler
from src.api.middleware.logging import StructuredLoggingMiddleware
from src.api.routes.analytics import router as analytics_router
from src.api.routes.groups import router as groups_router
from src.api.routes.health import router as health_router
from src.api.routes.turns import router as turns_router
from src.config import settings
from src.container import Services, build_services
from src.domains.turns.errors import TurnDomainError
from src.shared.logging import setup_logging
from src.workers.expiry import ExpirySweeper

logger = structlog.get_logger()

# Track app start time for uptime calculation
APP_START_TIME: float = 0.0


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown logic."""
    global APP_START_TIME
    APP_START_TIME = time.time()
    setup_logging(settings.log_level, settings.log_format)

    logger.info(
        "turnkeeper_starting",
        app_name=settings.app_name,
        version=settings.app_version,
        debug=settings.debug,
    )

    if app.state.services is None:
        from src.db.database import init_db

        init_db()
        app.state.services = build_services()

    # Periodic expiry of turns left active past the window
    sweeper_task: asyncio.Task | None = None
    if settings.expiry_sweep_enabled:
        sweeper = ExpirySweeper(
            app.state.services.lifecycle,
            interval_seconds=settings.expiry_sweep_interval_seconds,
        )
        app.state.sweeper = sweeper
        sweeper_task = asyncio.create_task(sweeper.run())

    yield

    if sweeper_task is not None:
        app.state.sweeper.stop()
        await sweeper_task
    logger.info("turnkeeper_shutting_down")


def create_app(services: Services | None = None) -> FastAPI:
    """Build the app. Passing ``services`` skips database setup at startup."""
    app = FastAPI(
        title="turnkeeper",
        description="Turn assignment, lifecycle and analytics for shared groups",
        version=settings.app_version,
        lifespan=lifespan,
    )
    app.state.services = services
    app.state.sweeper = None

    # CORS for local development
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Structured logging middleware
    app.add_middleware(StructuredLoggingMiddleware)

    # Expected errors are handled inside the router stack, the rest at the edge
    for exc_class in (TurnDomainError, ValueError, PermissionError, LookupError):
        app.add_exception_handler(exc_class, global_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)

    app.include_router(health_router)
    app.include_router(groups_router)
    app.include_router(turns_router)
    app.include_router(analytics_router)
    return app


app = create_app()


def get_uptime() -> int:
    """Get application uptime in seconds."""
    if APP_START_TIME == 0.0:
        return 0
    return int(time.time() - APP_START_TIME)
