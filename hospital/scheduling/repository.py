"""Storage collaborators for the scheduling core.

Thin async query helpers over SQLAlchemy. Each call takes the caller's
``AsyncSession`` so every lookup, lock and write of one operation shares
a single transaction.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from hospital.models.appointment import ACTIVE_STATUSES, Appointment
from hospital.models.doctor import Doctor, DoctorSchedule
from hospital.models.enums import AppointmentStatus
from hospital.models.patient import Patient
from hospital.schemas.appointments import AppointmentSearchCriteria


def contains_pattern(text: str) -> str:
    """LIKE pattern matching ``text`` literally anywhere; pair with ``escape="\\"``."""
    escaped = text.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


class DoctorRepository:
    """Read-only access to doctors and their work schedules."""

    async def find_by_id(
        self,
        db: AsyncSession,
        doctor_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> Doctor | None:
        """Load a doctor; ``for_update`` row-locks it until the transaction ends.

        Locking the doctor row serialises every booking and reschedule for
        that doctor, so two overlapping requests cannot both pass the
        conflict check.
        """
        query = select(Doctor).where(Doctor.id == doctor_id)
        if for_update:
            query = query.with_for_update()
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def get_work_schedule(self, db: AsyncSession, doctor_id: uuid.UUID) -> list[DoctorSchedule]:
        result = await db.execute(
            select(DoctorSchedule)
            .where(DoctorSchedule.doctor_id == doctor_id)
            .order_by(DoctorSchedule.day_of_week, DoctorSchedule.start_time)
        )
        return list(result.scalars().all())


class PatientRepository:
    async def find_by_id(self, db: AsyncSession, patient_id: uuid.UUID) -> Patient | None:
        result = await db.execute(select(Patient).where(Patient.id == patient_id))
        return result.scalar_one_or_none()


class AppointmentRepository:
    """Queries and writes for the appointments table."""

    async def save(self, db: AsyncSession, appointment: Appointment) -> Appointment:
        db.add(appointment)
        await db.flush()
        return appointment

    async def find_by_id(
        self,
        db: AsyncSession,
        appointment_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> Appointment | None:
        query = select(Appointment).where(Appointment.id == appointment_id)
        if for_update:
            # Re-read under the lock even if the identity map already holds it
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await db.execute(query)
        return result.scalar_one_or_none()

    async def find_overlapping(
        self,
        db: AsyncSession,
        doctor_id: uuid.UUID,
        start: datetime,
        end: datetime,
        exclude_id: uuid.UUID | None = None,
    ) -> list[Appointment]:
        """Active appointments of ``doctor_id`` intersecting [start, end).

        Half-open test: ``existing.start < end AND existing.end > start``,
        so back-to-back appointments do not overlap. Terminal appointments
        never block a window.
        """
        query = select(Appointment).where(
            Appointment.doctor_id == doctor_id,
            Appointment.status.in_(ACTIVE_STATUSES),
            Appointment.start_at < end,
            Appointment.end_at > start,
        )
        if exclude_id is not None:
            query = query.where(Appointment.id != exclude_id)
        result = await db.execute(query.order_by(Appointment.start_at))
        return list(result.scalars().all())

    async def find_non_terminal_before(
        self,
        db: AsyncSession,
        threshold: datetime,
        *,
        limit: int | None = None,
    ) -> list[Appointment]:
        """Active appointments that ended before ``threshold``, oldest first.

        Rows another transaction holds locked are skipped rather than waited
        on; the next sweep picks them up.
        """
        query = (
            select(Appointment)
            .where(
                Appointment.status.in_(ACTIVE_STATUSES),
                Appointment.end_at < threshold,
            )
            .order_by(Appointment.end_at)
            .with_for_update(skip_locked=True)
        )
        if limit is not None:
            query = query.limit(limit)
        result = await db.execute(query)
        return list(result.scalars().all())

    async def search(
        self,
        db: AsyncSession,
        criteria: AppointmentSearchCriteria,
        page: int = 1,
        per_page: int = 25,
    ) -> tuple[list[Appointment], int]:
        """Filter appointments by ``criteria``, newest start first.

        Returns (appointments, total_count).
        """
        conditions = []
        if criteria.doctor_id:
            conditions.append(Appointment.doctor_id == criteria.doctor_id)
        if criteria.patient_id:
            conditions.append(Appointment.patient_id == criteria.patient_id)
        if criteria.status:
            conditions.append(Appointment.status == criteria.status)
        if criteria.start_from:
            conditions.append(Appointment.start_at >= criteria.start_from)
        if criteria.start_to:
            conditions.append(Appointment.start_at < criteria.start_to)
        if criteria.reason_contains:
            conditions.append(Appointment.reason.ilike(contains_pattern(criteria.reason_contains), escape="\\"))
        if criteria.confirmed is not None:
            conditions.append(Appointment.confirmed.is_(criteria.confirmed))
        if criteria.location:
            conditions.append(Appointment.location == criteria.location)

        result = await db.execute(select(func.count(Appointment.id)).where(*conditions))
        total = result.scalar() or 0

        offset = (page - 1) * per_page
        result = await db.execute(
            select(Appointment)
            .where(*conditions)
            .order_by(Appointment.start_at.desc())
            .offset(offset)
            .limit(per_page)
        )
        return list(result.scalars().all()), total

    async def find_next_for_patient(
        self,
        db: AsyncSession,
        patient_id: uuid.UUID,
        after: datetime,
    ) -> Appointment | None:
        result = await db.execute(
            select(Appointment)
            .where(
                Appointment.patient_id == patient_id,
                Appointment.status.in_(ACTIVE_STATUSES),
                Appointment.start_at > after,
            )
            .order_by(Appointment.start_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def count_by_status(self, db: AsyncSession) -> dict[AppointmentStatus, int]:
        """Appointment counts per status; statuses with no rows report 0."""
        result = await db.execute(
            select(Appointment.status, func.count(Appointment.id)).group_by(Appointment.status)
        )
        counts = {status: 0 for status in AppointmentStatus}
        for status, count in result.all():
            counts[AppointmentStatus(status)] = count
        return counts
