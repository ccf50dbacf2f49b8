"""SQLAlchemy ORM models for the hospital scheduling core.

Import all models here so Alembic and Base.metadata.create_all() discover them.
"""

from __future__ import annotations

from hospital.models.appointment import ACTIVE_STATUSES, TERMINAL_STATUSES, Appointment
from hospital.models.audit import AuditLog
from hospital.models.base import Base
from hospital.models.doctor import Doctor, DoctorSchedule
from hospital.models.enums import (
    AppointmentStatus,
    DayOfWeek,
    EntityType,
    NotificationStatus,
    NotificationType,
    UserRole,
)
from hospital.models.notification import Notification
from hospital.models.patient import Patient
from hospital.models.user import User

__all__ = [
    # Base
    "Base",
    # Models
    "User",
    "Doctor",
    "DoctorSchedule",
    "Patient",
    "Appointment",
    "Notification",
    "AuditLog",
    # Enums
    "AppointmentStatus",
    "DayOfWeek",
    "UserRole",
    "NotificationType",
    "NotificationStatus",
    "EntityType",
    # Status groups
    "ACTIVE_STATUSES",
    "TERMINAL_STATUSES",
]
