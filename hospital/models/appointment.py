"""Appointment model — a booked visit between one doctor and one patient.

Status and the side-data fields are only changed through
``hospital.scheduling.state_machine``; rows are never deleted.
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, Enum, ForeignKey, Index, String
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from hospital.models.base import Base, TimestampMixin
from hospital.models.enums import AppointmentStatus

TERMINAL_STATUSES: frozenset[AppointmentStatus] = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELED,
    AppointmentStatus.NO_SHOW,
})

ACTIVE_STATUSES: frozenset[AppointmentStatus] = frozenset(AppointmentStatus) - TERMINAL_STATUSES


class Appointment(TimestampMixin, Base):
    """A scheduled appointment between a patient and a doctor."""

    __tablename__ = "appointments"
    __table_args__ = (
        CheckConstraint("end_at > start_at", name="time_order"),
        Index("ix_appointments_doctor_window", "doctor_id", "start_at", "end_at"),
    )

    # Participants (immutable after creation)
    doctor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("doctors.id"), nullable=False, index=True
    )
    patient_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("patients.id"), nullable=False, index=True
    )

    # Time window [start_at, end_at)
    start_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    status: Mapped[AppointmentStatus] = mapped_column(
        Enum(AppointmentStatus, name="appointment_status", native_enum=False, length=20),
        default=AppointmentStatus.SCHEDULED,
        nullable=False,
        index=True,
    )

    # Annotations
    reason: Mapped[str] = mapped_column(String(255), nullable=False)
    notes: Mapped[str | None] = mapped_column(String(1000))
    location: Mapped[str | None] = mapped_column(String(50))

    # Confirmation
    confirmed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    confirmed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))

    @property
    def duration_minutes(self) -> int:
        return int((self.end_at - self.start_at).total_seconds() // 60)

    def is_overdue_at(self, now: datetime) -> bool:
        """Past its end time but still SCHEDULED or CONFIRMED."""
        return self.status in ACTIVE_STATUSES and now > self.end_at

    @property
    def is_overdue(self) -> bool:
        return self.is_overdue_at(datetime.now(UTC))

    def __repr__(self) -> str:
        return f"<Appointment id={self.id} status={self.status.value} at={self.start_at}>"
