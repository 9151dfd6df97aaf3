"""
FastAPI application entry point.

Run with:
    uvicorn notification_engine.app.main:app --reload --port 8000
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI

# ── Core infrastructure ──
from notification_engine.app.core.config import Settings, settings as default_settings
from notification_engine.app.core.logging_config import setup_logging, get_logger
from notification_engine.app.core.errors import register_error_handlers

# ── Dispatch engine ──
from notification_engine.app.notifications.system import NotificationSystem

# ── API routers ──
from notification_engine.app.api.v1.notifications import router as notification_router

logger = get_logger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    system: Optional[NotificationSystem] = None,
) -> FastAPI:
    """
    Build the application.

    ``system`` lets callers (tests) supply a pre-built NotificationSystem;
    otherwise one is built from ``settings`` at startup.
    """
    settings = settings or default_settings

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Own the dispatch engine for the lifetime of the app."""
        logger.info(
            "Starting %s v%s [%s]",
            settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT,
        )
        notifications = system or NotificationSystem.from_config(settings.dispatch_config())
        app.state.notifications = notifications
        await notifications.initialize()
        yield
        await notifications.shutdown()
        logger.info("Shutting down %s", settings.APP_NAME)

    app = FastAPI(
        title=settings.APP_NAME,
        description=(
            "Notification dispatch engine: multi-channel delivery with "
            "per-channel exponential-backoff retries, a rate-limited "
            "dispatch queue and outcome events."
        ),
        version=settings.APP_VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # ── Error handlers ──
    register_error_handlers(app, settings)

    # ── Register routers ──
    app.include_router(notification_router)

    @app.get("/", tags=["root"])
    async def root():
        return {
            "service": settings.APP_NAME,
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "docs": "/docs",
        }

    @app.get("/health", tags=["health"])
    async def health_check():
        """Dispatch worker and channel status."""
        stats = app.state.notifications.get_stats()
        healthy = stats["is_processing"] and bool(stats["active_channels"])
        return {
            "status": "healthy" if healthy else "degraded",
            "version": settings.APP_VERSION,
            "environment": settings.ENVIRONMENT,
            "worker_running": stats["is_processing"],
            "active_channels": stats["active_channels"],
            "queue_length": stats["queue_length"],
        }

    @app.get("/health/live", tags=["health"])
    async def liveness():
        """Liveness probe."""
        return {"status": "alive"}

    return app


# ── Initialise logging ──
setup_logging()

app = create_app()
