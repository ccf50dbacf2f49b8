"""Audit log subscriber — persists every SystemEvent to the audit_log table.

Registered as a global subscriber at startup. Never raises: a failed
write is logged and dropped so auditing cannot break scheduling.
"""

from __future__ import annotations

import logging

from hospital.db.engine import async_session_factory
from hospital.models.audit import AuditLog
from hospital.schemas.events import SystemEvent

logger = logging.getLogger(__name__)


async def audit_on_event(event: SystemEvent) -> None:
    """Write ``event`` to audit_log in its own short transaction."""
    try:
        async with async_session_factory() as db:
            db.add(AuditLog(
                event_type=event.event_type.value,
                entity_id=event.entity_id,
                actor_id=event.actor_id,
                actor_role=event.actor_role,
                data=event.model_dump(mode="json", include={"data", "timestamp", "source_module"}),
            ))
            await db.commit()
    except Exception:
        logger.exception(
            "Failed to persist audit event: %s (entity=%s)",
            event.event_type.value,
            event.entity_id,
        )
