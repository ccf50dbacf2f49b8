"""Pydantic schemas for appointment requests and responses."""

from __future__ import annotations

import uuid
from datetime import datetime, time

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from hospital.models.enums import AppointmentStatus


def _require_aware(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        msg = "Datetime must include a timezone offset"
        raise ValueError(msg)
    return value


class AppointmentCreate(BaseModel):
    """Body of a scheduling request."""

    doctor_id: uuid.UUID
    patient_id: uuid.UUID
    start_at: datetime
    end_at: datetime | None = None
    reason: str = Field(min_length=1, max_length=255)
    notes: str | None = Field(default=None, max_length=1000)
    location: str | None = Field(default=None, max_length=50)

    @field_validator("start_at", "end_at")
    @classmethod
    def validate_timezone(cls, v: datetime | None) -> datetime | None:
        return _require_aware(v)

    @field_validator("reason")
    @classmethod
    def validate_reason(cls, v: str) -> str:
        """Reason must contain something besides whitespace."""
        stripped = v.strip()
        if not stripped:
            msg = "Reason is required"
            raise ValueError(msg)
        return stripped


class AppointmentReschedule(BaseModel):
    start_at: datetime
    end_at: datetime | None = None

    @field_validator("start_at", "end_at")
    @classmethod
    def validate_timezone(cls, v: datetime | None) -> datetime | None:
        return _require_aware(v)


class AppointmentCancel(BaseModel):
    reason: str = Field(min_length=1, max_length=255)


class AppointmentComplete(BaseModel):
    notes: str | None = Field(default=None, max_length=1000)


class AppointmentOut(BaseModel):
    """Appointment as returned to API callers."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    doctor_id: uuid.UUID
    patient_id: uuid.UUID
    start_at: datetime
    end_at: datetime
    status: AppointmentStatus
    reason: str
    notes: str | None = None
    location: str | None = None
    confirmed: bool = False
    confirmed_at: datetime | None = None
    duration_minutes: int
    is_overdue: bool


class AppointmentSearchCriteria(BaseModel):
    """Optional filters for appointment search; unset fields are ignored."""

    doctor_id: uuid.UUID | None = None
    patient_id: uuid.UUID | None = None
    status: AppointmentStatus | None = None
    start_from: datetime | None = None
    start_to: datetime | None = None
    reason_contains: str | None = None
    confirmed: bool | None = None
    location: str | None = None

    @model_validator(mode="after")
    def validate_range(self) -> AppointmentSearchCriteria:
        if self.start_from and self.start_to and self.start_to < self.start_from:
            msg = "start_to must not be before start_from"
            raise ValueError(msg)
        return self


class AppointmentPage(BaseModel):
    items: list[AppointmentOut]
    total: int
    page: int
    per_page: int


class AvailableSlot(BaseModel):
    """One bookable slot inside a doctor's working window."""

    start_time: time
    end_time: time
    available: bool
    location: str | None = None


class NoShowSweepResult(BaseModel):
    threshold: datetime
    marked: int
    appointment_ids: list[uuid.UUID] = Field(default_factory=list)
