"""Doctor and weekly work-schedule models.

Both are owned by the doctor-management side of the hospital; the
scheduling core only reads them.
"""

from __future__ import annotations

import uuid
from datetime import time

from sqlalchemy import Boolean, CheckConstraint, Enum, ForeignKey, Integer, String, Time
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from hospital.models.base import Base, TimestampMixin
from hospital.models.enums import DayOfWeek


class Doctor(TimestampMixin, Base):
    """A doctor who can be booked for appointments."""

    __tablename__ = "doctors"

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    license_number: Mapped[str | None] = mapped_column(String(50), unique=True)

    # Account that receives notifications (optional)
    user_id: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), ForeignKey("users.id"), unique=True
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Doctor id={self.id} name={self.full_name}>"


class DoctorSchedule(TimestampMixin, Base):
    """One weekly availability window for a doctor."""

    __tablename__ = "doctor_schedules"
    __table_args__ = (
        CheckConstraint("end_time > start_time", name="window_order"),
        CheckConstraint("slot_duration_minutes > 0", name="slot_positive"),
    )

    doctor_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("doctors.id"), nullable=False, index=True
    )
    day_of_week: Mapped[DayOfWeek] = mapped_column(
        Enum(DayOfWeek, name="day_of_week", native_enum=False, length=10),
        nullable=False,
    )
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    slot_duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=30)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    location: Mapped[str | None] = mapped_column(String(50), comment="Consultation room")

    def contains(self, moment: time) -> bool:
        """True if ``moment`` falls in the half-open window [start_time, end_time)."""
        return self.start_time <= moment < self.end_time

    def __repr__(self) -> str:
        return (
            f"<DoctorSchedule doctor={self.doctor_id} {self.day_of_week.value} "
            f"{self.start_time:%H:%M}-{self.end_time:%H:%M} active={self.active}>"
        )
