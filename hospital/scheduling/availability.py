"""Availability calendar — a doctor's weekly working hours.

Schedule windows are wall-clock times in the clinic timezone; appointment
instants are converted to that zone before the weekday and time of day
are compared.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from hospital.config import settings
from hospital.models.doctor import DoctorSchedule
from hospital.models.enums import DayOfWeek
from hospital.schemas.appointments import AvailableSlot
from hospital.scheduling.conflicts import intervals_overlap
from hospital.scheduling.errors import AppointmentValidationError, NotFoundError
from hospital.scheduling.repository import AppointmentRepository, DoctorRepository

logger = logging.getLogger(__name__)


def is_within_working_hours(schedules: Iterable[DoctorSchedule], day: DayOfWeek, moment: time) -> bool:
    """True iff ``moment`` lies in an active [start, end) window on ``day``."""
    return any(s.active and s.day_of_week == day and s.contains(moment) for s in schedules)


def slot_duration_for(schedules: Iterable[DoctorSchedule], day: DayOfWeek) -> int | None:
    """Slot length of the first active window on ``day``, if any."""
    for schedule in schedules:
        if schedule.active and schedule.day_of_week == day:
            return schedule.slot_duration_minutes
    return None


def to_clinic_time(instant: datetime, tz: ZoneInfo) -> tuple[DayOfWeek, time]:
    local = instant.astimezone(tz)
    return DayOfWeek.from_weekday(local.weekday()), local.time().replace(tzinfo=None)


class AvailabilityCalendar:
    """Answers "is the doctor working then?" and lists free slots."""

    def __init__(
        self,
        doctors: DoctorRepository | None = None,
        appointments: AppointmentRepository | None = None,
        tz: ZoneInfo | None = None,
    ) -> None:
        self.doctors = doctors or DoctorRepository()
        self.appointments = appointments or AppointmentRepository()
        self.tz = tz or settings.scheduling.tz

    async def load_schedule(self, db: AsyncSession, doctor_id: uuid.UUID) -> list[DoctorSchedule]:
        """The doctor's schedule entries; NotFoundError if the doctor is unknown."""
        doctor = await self.doctors.find_by_id(db, doctor_id)
        if doctor is None:
            raise NotFoundError("Doctor", doctor_id)
        return await self.doctors.get_work_schedule(db, doctor_id)

    async def is_within_working_hours(
        self,
        db: AsyncSession,
        doctor_id: uuid.UUID,
        day: DayOfWeek,
        moment: time,
    ) -> bool:
        schedules = await self.load_schedule(db, doctor_id)
        return is_within_working_hours(schedules, day, moment)

    async def ensure_within_working_hours(
        self,
        db: AsyncSession,
        doctor_id: uuid.UUID,
        start: datetime,
    ) -> None:
        day, moment = to_clinic_time(start, self.tz)
        if not await self.is_within_working_hours(db, doctor_id, day, moment):
            raise AppointmentValidationError(
                f"Doctor is not available on {day.value} at {moment:%H:%M}"
            )

    async def slot_duration(self, db: AsyncSession, doctor_id: uuid.UUID, start: datetime) -> int | None:
        """Slot length the doctor uses on ``start``'s weekday, if they work that day."""
        day, _ = to_clinic_time(start, self.tz)
        return slot_duration_for(await self.load_schedule(db, doctor_id), day)

    async def available_slots(
        self,
        db: AsyncSession,
        doctor_id: uuid.UUID,
        on: date,
        now: datetime | None = None,
    ) -> list[AvailableSlot]:
        """Every slot of the doctor's active windows on ``on``.

        A slot is unavailable when it has already started or overlaps an
        active appointment.
        """
        now = now or datetime.now(UTC)
        day = DayOfWeek.from_weekday(on.weekday())
        windows = [
            s for s in await self.load_schedule(db, doctor_id)
            if s.active and s.day_of_week == day
        ]
        if not windows:
            return []

        day_start = datetime.combine(on, time.min, tzinfo=self.tz)
        booked = await self.appointments.find_overlapping(
            db, doctor_id, day_start, day_start + timedelta(days=1)
        )

        slots: list[AvailableSlot] = []
        for window in sorted(windows, key=lambda s: s.start_time):
            step = timedelta(minutes=window.slot_duration_minutes)
            cursor = datetime.combine(on, window.start_time, tzinfo=self.tz)
            window_end = datetime.combine(on, window.end_time, tzinfo=self.tz)
            while cursor + step <= window_end:
                slot_end = cursor + step
                taken = any(intervals_overlap(a.start_at, a.end_at, cursor, slot_end) for a in booked)
                slots.append(AvailableSlot(
                    start_time=cursor.time(),
                    end_time=slot_end.time(),
                    available=not taken and cursor > now,
                    location=window.location,
                ))
                cursor = slot_end

        logger.debug(
            "Computed %d slots for doctor=%s on %s (%d free)",
            len(slots),
            doctor_id,
            on,
            sum(s.available for s in slots),
        )
        return slots
