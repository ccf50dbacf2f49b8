"""In-process async pub/sub for SystemEvents.

Scheduling operations defer an event per transition onto their session;
the session owner publishes them once the transaction commits. The audit logger
(and any subscriber wired at startup) consumes them off a queue so a
slow subscriber never holds up a request.

Usage:
    from hospital.events import defer, emit, publish_pending, subscribe

    defer(db, event)              # held until commit
    await db.commit()
    await publish_pending(db)

    await emit(SystemEvent(
        event_type=EventType.APPOINTMENT_CONFIRMED,
        entity_id=appointment.id,
    ))

    subscribe(handler)                                    # every event
    subscribe(handler, [EventType.APPOINTMENT_CANCELED])  # only cancellations
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import TYPE_CHECKING, Any

from hospital.schemas.events import EventType, SystemEvent

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

EventHandler = Callable[[SystemEvent], Coroutine[Any, Any, None]]

# ── Registry and queue ───────────────────────────────────────────────

_global_handlers: list[EventHandler] = []
_typed_handlers: dict[EventType, list[EventHandler]] = {}
_queue: asyncio.Queue[SystemEvent] | None = None
_worker: asyncio.Task[None] | None = None


def subscribe(handler: EventHandler, event_types: list[EventType] | None = None) -> None:
    """Register ``handler`` for all events, or only for ``event_types``."""
    if event_types is None:
        _global_handlers.append(handler)
        logger.info("Subscribed %s to all events", handler.__name__)
        return
    for event_type in event_types:
        _typed_handlers.setdefault(event_type, []).append(handler)
    logger.info("Subscribed %s to %s", handler.__name__, [t.value for t in event_types])


def unsubscribe(handler: EventHandler) -> None:
    """Remove ``handler`` wherever it is registered."""
    if handler in _global_handlers:
        _global_handlers.remove(handler)
    for handlers in _typed_handlers.values():
        if handler in handlers:
            handlers.remove(handler)


def clear_subscribers() -> None:
    """Drop every registered handler."""
    _global_handlers.clear()
    _typed_handlers.clear()


async def emit(event: SystemEvent) -> None:
    """Queue ``event`` for delivery; starts the worker lazily."""
    global _queue
    if _queue is None:
        _queue = asyncio.Queue()
    _ensure_worker()
    await _queue.put(event)
    logger.debug("Event queued: %s (entity=%s)", event.event_type.value, event.entity_id)


# ── Publish after commit ─────────────────────────────────────────────

_PENDING_KEY = "pending_events"


def defer(db: AsyncSession, event: SystemEvent) -> None:
    """Hold ``event`` on the session until its transaction commits.

    Whoever owns the commit calls ``publish_pending`` afterwards, or
    ``discard_pending`` when the transaction rolls back, so subscribers
    never see a change that was not persisted.
    """
    db.info.setdefault(_PENDING_KEY, []).append(event)


def pending(db: AsyncSession) -> list[SystemEvent]:
    return list(db.info.get(_PENDING_KEY, []))


def discard_pending(db: AsyncSession) -> None:
    dropped = db.info.pop(_PENDING_KEY, [])
    if dropped:
        logger.info("Discarded %d unpublished event(s) after rollback", len(dropped))


async def publish_pending(db: AsyncSession) -> int:
    """Emit the events held on ``db`` in the order they were deferred."""
    events = db.info.pop(_PENDING_KEY, [])
    for event in events:
        await emit(event)
    return len(events)


async def dispatch(event: SystemEvent) -> None:
    """Deliver ``event`` to its subscribers now, bypassing the queue."""
    handlers = list(_global_handlers) + _typed_handlers.get(event.event_type, [])
    if not handlers:
        return

    results = await asyncio.gather(*(handler(event) for handler in handlers), return_exceptions=True)
    for handler, result in zip(handlers, results, strict=True):
        if isinstance(result, Exception):
            logger.error(
                "Subscriber %s failed on %s: %s",
                handler.__name__,
                event.event_type.value,
                result,
            )


# ── Worker ───────────────────────────────────────────────────────────


def _ensure_worker() -> None:
    global _worker
    if _worker is None or _worker.done():
        _worker = asyncio.create_task(_drain())
        logger.info("Event worker started")


async def _drain() -> None:
    """Pull events off the queue forever; one failing event never stops the loop."""
    while _queue is not None:
        try:
            event = await _queue.get()
        except asyncio.CancelledError:
            logger.info("Event worker shutting down")
            break
        try:
            await dispatch(event)
        except Exception:
            logger.exception("Error dispatching %s", event.event_type.value)
        finally:
            _queue.task_done()


# ── Lifecycle ────────────────────────────────────────────────────────


async def start_event_system() -> None:
    """Create the queue and worker. Call during FastAPI lifespan startup."""
    global _queue
    _queue = asyncio.Queue()
    _ensure_worker()
    logger.info(
        "Event system started with %d global + %d typed subscribers",
        len(_global_handlers),
        sum(len(v) for v in _typed_handlers.values()),
    )


async def stop_event_system() -> None:
    """Flush pending events, then stop the worker. Call during lifespan shutdown."""
    global _worker, _queue

    if _queue is not None:
        await _queue.join()

    if _worker is not None and not _worker.done():
        _worker.cancel()
        try:
            await _worker
        except asyncio.CancelledError:
            pass

    _worker = None
    _queue = None
    logger.info("Event system stopped")
