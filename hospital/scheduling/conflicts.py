"""Conflict validator — keeps a doctor from being double-booked.

Creation and reschedule run the same check; reschedule only adds the
appointment being moved to the exclusion.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime

from sqlalchemy.ext.asyncio import AsyncSession

from hospital.models.appointment import Appointment
from hospital.scheduling.errors import AppointmentValidationError
from hospital.scheduling.repository import AppointmentRepository

logger = logging.getLogger(__name__)

CONFLICT_MESSAGE = "Doctor is not available at the requested time. Conflicting appointments found."


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open overlap of [a_start, a_end) and [b_start, b_end); touching windows do not overlap."""
    return a_start < b_end and a_end > b_start


class ConflictValidator:
    """Looks up overlapping active appointments for a doctor."""

    def __init__(self, appointments: AppointmentRepository | None = None) -> None:
        self.appointments = appointments or AppointmentRepository()

    async def find_conflicts(
        self,
        db: AsyncSession,
        doctor_id: uuid.UUID,
        start: datetime,
        end: datetime,
        exclude_id: uuid.UUID | None = None,
    ) -> list[Appointment]:
        return await self.appointments.find_overlapping(db, doctor_id, start, end, exclude_id)

    async def has_conflict(
        self,
        db: AsyncSession,
        doctor_id: uuid.UUID,
        start: datetime,
        end: datetime,
        exclude_id: uuid.UUID | None = None,
    ) -> bool:
        return bool(await self.find_conflicts(db, doctor_id, start, end, exclude_id))

    async def ensure_no_conflict(
        self,
        db: AsyncSession,
        doctor_id: uuid.UUID,
        start: datetime,
        end: datetime,
        exclude_id: uuid.UUID | None = None,
    ) -> None:
        """Raise AppointmentValidationError if the window is taken."""
        conflicts = await self.find_conflicts(db, doctor_id, start, end, exclude_id)
        if conflicts:
            logger.info(
                "Conflict for doctor=%s window=%s..%s: %s",
                doctor_id,
                start.isoformat(),
                end.isoformat(),
                [str(a.id) for a in conflicts],
            )
            raise AppointmentValidationError(CONFLICT_MESSAGE)
