"""Read-side appointment queries for the API and dashboards."""

from __future__ import annotations

import uuid
from datetime import UTC, date, datetime, time, timedelta
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from hospital.config import settings
from hospital.models.appointment import Appointment
from hospital.models.enums import AppointmentStatus
from hospital.schemas.appointments import AppointmentSearchCriteria, AvailableSlot
from hospital.scheduling.availability import AvailabilityCalendar
from hospital.scheduling.errors import NotFoundError
from hospital.scheduling.repository import AppointmentRepository, DoctorRepository


class AppointmentQueryService:
    """Lookups that never change appointment state."""

    def __init__(
        self,
        appointments: AppointmentRepository | None = None,
        doctors: DoctorRepository | None = None,
        calendar: AvailabilityCalendar | None = None,
        tz: ZoneInfo | None = None,
    ) -> None:
        self.appointments = appointments or AppointmentRepository()
        self.doctors = doctors or DoctorRepository()
        self.calendar = calendar or AvailabilityCalendar(self.doctors, self.appointments)
        self.tz = tz or settings.scheduling.tz

    async def get_appointment(self, db: AsyncSession, appointment_id: uuid.UUID) -> Appointment:
        appointment = await self.appointments.find_by_id(db, appointment_id)
        if appointment is None:
            raise NotFoundError("Appointment", appointment_id)
        return appointment

    async def search(
        self,
        db: AsyncSession,
        criteria: AppointmentSearchCriteria,
        page: int = 1,
        per_page: int = 25,
    ) -> tuple[list[Appointment], int]:
        return await self.appointments.search(db, criteria, page=page, per_page=per_page)

    async def get_patient_appointments(
        self,
        db: AsyncSession,
        patient_id: uuid.UUID,
        page: int = 1,
        per_page: int = 25,
    ) -> tuple[list[Appointment], int]:
        criteria = AppointmentSearchCriteria(patient_id=patient_id)
        return await self.appointments.search(db, criteria, page=page, per_page=per_page)

    async def get_doctor_appointments(
        self,
        db: AsyncSession,
        doctor_id: uuid.UUID,
        page: int = 1,
        per_page: int = 25,
    ) -> tuple[list[Appointment], int]:
        criteria = AppointmentSearchCriteria(doctor_id=doctor_id)
        return await self.appointments.search(db, criteria, page=page, per_page=per_page)

    async def get_today_appointments(
        self,
        db: AsyncSession,
        doctor_id: uuid.UUID,
        now: datetime | None = None,
    ) -> list[Appointment]:
        """The doctor's appointments starting today (clinic time), earliest first."""
        today = (now or datetime.now(UTC)).astimezone(self.tz).date()
        day_start = datetime.combine(today, time.min, tzinfo=self.tz)
        criteria = AppointmentSearchCriteria(
            doctor_id=doctor_id,
            start_from=day_start,
            start_to=day_start + timedelta(days=1),
        )
        appointments, _ = await self.appointments.search(db, criteria, page=1, per_page=200)
        return sorted(appointments, key=lambda a: a.start_at)

    async def get_next_appointment(
        self,
        db: AsyncSession,
        patient_id: uuid.UUID,
        now: datetime | None = None,
    ) -> Appointment | None:
        return await self.appointments.find_next_for_patient(db, patient_id, now or datetime.now(UTC))

    async def get_available_slots(
        self,
        db: AsyncSession,
        doctor_id: uuid.UUID,
        on: date,
    ) -> list[AvailableSlot]:
        return await self.calendar.available_slots(db, doctor_id, on)

    async def get_status_counts(self, db: AsyncSession) -> dict[AppointmentStatus, int]:
        return await self.appointments.count_by_status(db)


# Module-level singleton
appointment_queries = AppointmentQueryService()
