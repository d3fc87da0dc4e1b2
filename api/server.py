"""
MODE OS API Server - REST API for the mode engine.
"""
# ruff: noqa: S104
# S104: Development server binding (guarded by __name__ check)

import logging
import os
from contextlib import asynccontextmanager
from pathlib import Path

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api.auth import TOKEN_ENV, is_auth_enabled
from api.mode_router import mode_router, set_scheduler
from modeos import config
from modeos.modes import (
    CalendarSource,
    EvaluationScheduler,
    StaticCalendarSource,
    file_calendar_source,
)
from modeos.observability import configure_logging

logger = logging.getLogger(__name__)


def default_calendar_source(events_file: str | Path | None = None) -> CalendarSource:
    """File-backed source when MODEOS_EVENTS_FILE is set, else an empty calendar."""
    events_file = events_file or config.EVENTS_FILE
    if events_file:
        logger.info(f"Calendar events file: {events_file}")
        return file_calendar_source(events_file)
    logger.info("No events file configured, starting with an empty calendar")
    return StaticCalendarSource(())


def create_app(scheduler: EvaluationScheduler | None = None) -> FastAPI:
    """
    Build the API app.

    The lifespan starts the scheduler (app_open + periodic boundary checks)
    and stops it on shutdown.
    """
    scheduler = scheduler or EvaluationScheduler(default_calendar_source())

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        set_scheduler(scheduler)
        logger.info("=== MODE OS Startup ===")
        if not is_auth_enabled():
            logger.warning(f"{TOKEN_ENV} not set - mutating endpoints are unauthenticated")
        await scheduler.start()
        try:
            yield
        finally:
            await scheduler.stop()
            set_scheduler(None)
            logger.info("=== MODE OS Shutdown ===")

    app = FastAPI(
        title="MODE OS API",
        description="Calendar-driven mode selection with explanations",
        version="1.0.0",
        lifespan=lifespan,
    )

    # CORS middleware - configurable via CORS_ORIGINS env var
    cors_origins_env = os.getenv("CORS_ORIGINS", "*")
    cors_origins = (
        ["*"] if cors_origins_env == "*" else [o.strip() for o in cors_origins_env.split(",")]
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(mode_router, prefix="/api")
    app.state.scheduler = scheduler
    return app


def main():
    """Run the server."""
    configure_logging(config.LOG_LEVEL, config.LOG_JSON)
    port = int(os.environ.get("PORT", 8420))
    uvicorn.run(create_app(), host="0.0.0.0", port=port)


if __name__ == "__main__":
    main()
