"""Hospital scheduling API: FastAPI app, lifespan wiring and logging setup.

Usage:
    python -m hospital.main

Starts the scheduling API and, unless disabled, the periodic no-show sweep.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import sys
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
import uvicorn
from fastapi import FastAPI

from hospital.api.appointments import router as appointments_router
from hospital.api.errors import register_exception_handlers
from hospital.audit import audit_on_event
from hospital.config import settings
from hospital.db.engine import db_lifespan
from hospital.events import start_event_system, stop_event_system, subscribe, unsubscribe
from hospital.scheduling.sweep import run_no_show_loop

# ── Logging setup ────────────────────────────────────────────────────

logging.basicConfig(
    level=getattr(logging, settings.log_level),
    format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
    stream=sys.stdout,
)
structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        # Machine-readable lines in production, coloured console locally
        structlog.processors.JSONRenderer() if settings.is_production else structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
)

logger = logging.getLogger(__name__)

# ── FastAPI lifespan ─────────────────────────────────────────────────


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application startup and shutdown lifecycle."""
    logger.info("Starting hospital scheduling API (env=%s)", settings.environment)

    # 1. Database
    async with db_lifespan():
        logger.info("Database initialized")

        # 2. Event system + audit trail
        subscribe(audit_on_event)
        await start_event_system()

        # 3. No-show sweep
        sweep_task: asyncio.Task[None] | None = None
        if settings.scheduling.no_show_sweep_enabled:
            sweep_task = asyncio.create_task(run_no_show_loop())
        else:
            logger.warning("No-show sweep disabled — appointments will not be auto-marked")

        try:
            yield
        finally:
            logger.info("Shutting down hospital scheduling API...")

            if sweep_task is not None:
                sweep_task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await sweep_task

            await stop_event_system()
            unsubscribe(audit_on_event)

    logger.info("Shutdown complete")


# ── FastAPI app ──────────────────────────────────────────────────────

app = FastAPI(
    title="Hospital Scheduling API",
    description="Appointment lifecycle, availability and no-show handling",
    version="0.1.0",
    lifespan=lifespan,
)
app.include_router(appointments_router)
register_exception_handlers(app)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {
        "status": "ok",
        "environment": settings.environment,
    }


# ── Entry point ──────────────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run(
        "hospital.main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.environment == "development",
        log_level=settings.log_level.lower(),
    )
