"""Domain enums used across SQLAlchemy models and Pydantic schemas.

All enums use str mixin for JSON serialization. Values are stored as-is
in non-native SQL enum columns.
"""

from __future__ import annotations

from enum import Enum


class AppointmentStatus(str, Enum):
    """Appointment lifecycle states."""

    SCHEDULED = "SCHEDULED"
    CONFIRMED = "CONFIRMED"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"
    NO_SHOW = "NO_SHOW"


class DayOfWeek(str, Enum):
    """Weekday of a doctor's schedule entry.

    Declared in ``datetime.weekday()`` order so ``DayOfWeek.from_weekday``
    is a plain index lookup.
    """

    MONDAY = "MONDAY"
    TUESDAY = "TUESDAY"
    WEDNESDAY = "WEDNESDAY"
    THURSDAY = "THURSDAY"
    FRIDAY = "FRIDAY"
    SATURDAY = "SATURDAY"
    SUNDAY = "SUNDAY"

    @classmethod
    def from_weekday(cls, weekday: int) -> DayOfWeek:
        return list(cls)[weekday]


class UserRole(str, Enum):
    """Role of an authenticated account."""

    ADMIN = "ADMIN"
    DOCTOR = "DOCTOR"
    PATIENT = "PATIENT"
    STAFF = "STAFF"


class NotificationType(str, Enum):
    """Kind of user-facing notification."""

    APPOINTMENT_SCHEDULED = "APPOINTMENT_SCHEDULED"
    APPOINTMENT_CONFIRMATION = "APPOINTMENT_CONFIRMATION"
    APPOINTMENT_CANCELLATION = "APPOINTMENT_CANCELLATION"
    APPOINTMENT_RESCHEDULE = "APPOINTMENT_RESCHEDULE"


class NotificationStatus(str, Enum):
    """Inbox read-state; this core only ever writes UNREAD."""

    UNREAD = "UNREAD"
    READ = "READ"
    DELETED = "DELETED"


class EntityType(str, Enum):
    """Entity a notification links to."""

    APPOINTMENT = "APPOINTMENT"
