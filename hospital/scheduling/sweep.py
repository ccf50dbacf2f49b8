"""Periodic no-show sweep.

Marks appointments that ended more than the configured grace period ago
and are still SCHEDULED or CONFIRMED. Each run uses its own session and
commits once; rows locked by in-flight requests are skipped and retried
on the next tick.

Wired into the FastAPI lifespan via ``run_no_show_loop``.
"""

from __future__ import annotations

import asyncio
import logging

from hospital.config import settings
from hospital.db.engine import async_session_factory
from hospital.events import defer, discard_pending, publish_pending
from hospital.schemas.appointments import NoShowSweepResult
from hospital.schemas.events import EventType, SystemEvent
from hospital.scheduling.service import SchedulingService, scheduling_service

logger = logging.getLogger(__name__)


async def run_no_show_sweep(
    service: SchedulingService | None = None,
    grace_period_minutes: int | None = None,
) -> NoShowSweepResult | None:
    """Run one sweep in a fresh transaction. Returns None if the sweep failed.

    Safe to call on every tick: already-marked appointments are never
    fetched again. No event leaves the sweep unless its commit succeeded.
    """
    service = service or scheduling_service
    async with async_session_factory() as db:
        try:
            result = await service.process_no_show_appointments(db, grace_period_minutes)
            defer(db, SystemEvent(
                event_type=EventType.SYSTEM_MAINTENANCE,
                actor_id="system",
                actor_role="system",
                data={"action": "no_show_sweep", "marked": result.marked, "threshold": result.threshold.isoformat()},
                source_module="scheduling.sweep",
            ))
            await db.commit()
        except Exception:
            logger.exception("No-show sweep failed")
            discard_pending(db)
            return None
        await publish_pending(db)
    return result


async def run_no_show_loop(interval_seconds: int | None = None) -> None:
    """Sweep forever, sleeping ``interval_seconds`` between runs. Cancel to stop."""
    interval = interval_seconds or settings.scheduling.no_show_sweep_interval_seconds
    logger.info("No-show sweep loop started (every %ds)", interval)
    while True:
        try:
            await run_no_show_sweep()
            await asyncio.sleep(interval)
        except asyncio.CancelledError:
            logger.info("No-show sweep loop stopped")
            break
