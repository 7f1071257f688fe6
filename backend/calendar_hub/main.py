"""
Student Calendar Hub - FastAPI Application Entry Point.

Feature-based modular architecture:
  Each feature in calendar_hub/features/ has its own router, schemas and service.
  calendar: unified event feed (manual + derived + imported events)
  sync:     sync settings and Google / Apple (CalDAV) push & pull
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware

from calendar_hub.config import get_settings
from calendar_hub.core.exceptions import (
    AppBaseError,
    app_error_handler,
    request_validation_handler,
)

# ── Feature Routers ──────────────────────────────────────
from calendar_hub.features.calendar.router import router as calendar_router
from calendar_hub.features.sync.router import router as sync_router

logger = logging.getLogger("calendar_hub")


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup & shutdown."""
    settings = get_settings()
    logger.info(f"{settings.APP_NAME} v{settings.APP_VERSION} starting...")
    logger.info(f"Supabase: {settings.SUPABASE_URL[:40]}...")
    yield
    logger.info("Shutting down...")


def create_app() -> FastAPI:
    """Application factory."""
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL)

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Unified student calendar with Google / Apple calendar sync",
        lifespan=lifespan,
    )

    # ── CORS ─────────────────────────────────────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Error Handlers ───────────────────────────────────
    app.add_exception_handler(AppBaseError, app_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)

    # ── Register Feature Routers ─────────────────────────
    app.include_router(calendar_router, prefix="/api/calendar", tags=["Calendar"])
    app.include_router(sync_router, prefix="/api/calendar/sync", tags=["Calendar Sync"])

    # ── Health Check ─────────────────────────────────────
    @app.get("/health", tags=["System"])
    async def health_check():
        return {
            "status": "healthy",
            "app": settings.APP_NAME,
            "version": settings.APP_VERSION,
        }

    return app


app = create_app()
