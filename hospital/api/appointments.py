"""Appointment REST endpoints.

Thin layer over SchedulingService and AppointmentQueryService. Every
route requires HTTP Basic Auth via verify_staff; each request is one
database transaction (see get_session).
"""
# ruff: noqa: B008

from __future__ import annotations

import uuid
from datetime import date, datetime

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from hospital.api.auth import verify_staff
from hospital.db.engine import get_session
from hospital.models.appointment import Appointment
from hospital.models.enums import AppointmentStatus
from hospital.schemas.appointments import (
    AppointmentCancel,
    AppointmentComplete,
    AppointmentCreate,
    AppointmentOut,
    AppointmentPage,
    AppointmentReschedule,
    AppointmentSearchCriteria,
    AvailableSlot,
    NoShowSweepResult,
)
from hospital.scheduling.queries import appointment_queries
from hospital.scheduling.service import scheduling_service

router = APIRouter(tags=["appointments"])


def _out(appointment: Appointment) -> AppointmentOut:
    return AppointmentOut.model_validate(appointment)


# ── Queries ──────────────────────────────────────────────────────────


@router.get("/appointments", response_model=AppointmentPage)
async def search_appointments(
    doctor_id: uuid.UUID | None = None,
    patient_id: uuid.UUID | None = None,
    status_: AppointmentStatus | None = Query(default=None, alias="status"),
    start_from: datetime | None = None,
    start_to: datetime | None = None,
    reason_contains: str | None = None,
    confirmed: bool | None = None,
    location: str | None = None,
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=25, ge=1, le=200),
    db: AsyncSession = Depends(get_session),
    staff: str = Depends(verify_staff),
) -> AppointmentPage:
    """Paged search; newest appointments first."""
    criteria = AppointmentSearchCriteria(
        doctor_id=doctor_id,
        patient_id=patient_id,
        status=status_,
        start_from=start_from,
        start_to=start_to,
        reason_contains=reason_contains,
        confirmed=confirmed,
        location=location,
    )
    items, total = await appointment_queries.search(db, criteria, page=page, per_page=per_page)
    return AppointmentPage(items=[_out(a) for a in items], total=total, page=page, per_page=per_page)


@router.get("/appointments/stats/status", response_model=dict[str, int])
async def appointment_status_counts(
    db: AsyncSession = Depends(get_session),
    staff: str = Depends(verify_staff),
) -> dict[str, int]:
    counts = await appointment_queries.get_status_counts(db)
    return {status_.value: count for status_, count in counts.items()}


@router.get("/appointments/{appointment_id}", response_model=AppointmentOut)
async def get_appointment(
    appointment_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    staff: str = Depends(verify_staff),
) -> AppointmentOut:
    return _out(await appointment_queries.get_appointment(db, appointment_id))


@router.get("/doctors/{doctor_id}/available-slots", response_model=list[AvailableSlot])
async def available_slots(
    doctor_id: uuid.UUID,
    on: date = Query(..., alias="date", description="Day to list slots for (clinic time)"),
    db: AsyncSession = Depends(get_session),
    staff: str = Depends(verify_staff),
) -> list[AvailableSlot]:
    return await appointment_queries.get_available_slots(db, doctor_id, on)


@router.get("/doctors/{doctor_id}/appointments", response_model=AppointmentPage)
async def doctor_appointments(
    doctor_id: uuid.UUID,
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=25, ge=1, le=200),
    db: AsyncSession = Depends(get_session),
    staff: str = Depends(verify_staff),
) -> AppointmentPage:
    items, total = await appointment_queries.get_doctor_appointments(db, doctor_id, page=page, per_page=per_page)
    return AppointmentPage(items=[_out(a) for a in items], total=total, page=page, per_page=per_page)


@router.get("/patients/{patient_id}/appointments", response_model=AppointmentPage)
async def patient_appointments(
    patient_id: uuid.UUID,
    page: int = Query(default=1, ge=1),
    per_page: int = Query(default=25, ge=1, le=200),
    db: AsyncSession = Depends(get_session),
    staff: str = Depends(verify_staff),
) -> AppointmentPage:
    items, total = await appointment_queries.get_patient_appointments(db, patient_id, page=page, per_page=per_page)
    return AppointmentPage(items=[_out(a) for a in items], total=total, page=page, per_page=per_page)


@router.get("/doctors/{doctor_id}/appointments/today", response_model=list[AppointmentOut])
async def today_appointments(
    doctor_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    staff: str = Depends(verify_staff),
) -> list[AppointmentOut]:
    return [_out(a) for a in await appointment_queries.get_today_appointments(db, doctor_id)]


@router.get("/patients/{patient_id}/appointments/next", response_model=AppointmentOut | None)
async def next_appointment(
    patient_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    staff: str = Depends(verify_staff),
) -> AppointmentOut | None:
    appointment = await appointment_queries.get_next_appointment(db, patient_id)
    return _out(appointment) if appointment else None


# ── Commands ─────────────────────────────────────────────────────────


@router.post("/appointments", response_model=AppointmentOut, status_code=status.HTTP_201_CREATED)
async def schedule_appointment(
    body: AppointmentCreate,
    db: AsyncSession = Depends(get_session),
    staff: str = Depends(verify_staff),
) -> AppointmentOut:
    appointment = await scheduling_service.schedule_appointment(
        db,
        doctor_id=body.doctor_id,
        patient_id=body.patient_id,
        start=body.start_at,
        end=body.end_at,
        reason=body.reason,
        notes=body.notes,
        location=body.location,
        actor=staff,
    )
    return _out(appointment)


@router.post("/appointments/no-show-sweep", response_model=NoShowSweepResult)
async def no_show_sweep(
    grace_period_minutes: int | None = Query(default=None, ge=0),
    db: AsyncSession = Depends(get_session),
    staff: str = Depends(verify_staff),
) -> NoShowSweepResult:
    """Run the no-show sweep now instead of waiting for the background loop."""
    return await scheduling_service.process_no_show_appointments(db, grace_period_minutes)


@router.post("/appointments/{appointment_id}/confirm", response_model=AppointmentOut)
async def confirm_appointment(
    appointment_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    staff: str = Depends(verify_staff),
) -> AppointmentOut:
    return _out(await scheduling_service.confirm_appointment(db, appointment_id, actor=staff))


@router.post("/appointments/{appointment_id}/cancel", response_model=AppointmentOut)
async def cancel_appointment(
    appointment_id: uuid.UUID,
    body: AppointmentCancel,
    db: AsyncSession = Depends(get_session),
    staff: str = Depends(verify_staff),
) -> AppointmentOut:
    return _out(await scheduling_service.cancel_appointment(db, appointment_id, body.reason, actor=staff))


@router.post("/appointments/{appointment_id}/reschedule", response_model=AppointmentOut)
async def reschedule_appointment(
    appointment_id: uuid.UUID,
    body: AppointmentReschedule,
    db: AsyncSession = Depends(get_session),
    staff: str = Depends(verify_staff),
) -> AppointmentOut:
    appointment = await scheduling_service.reschedule_appointment(
        db, appointment_id, body.start_at, body.end_at, actor=staff
    )
    return _out(appointment)


@router.post("/appointments/{appointment_id}/complete", response_model=AppointmentOut)
async def complete_appointment(
    appointment_id: uuid.UUID,
    body: AppointmentComplete,
    db: AsyncSession = Depends(get_session),
    staff: str = Depends(verify_staff),
) -> AppointmentOut:
    return _out(await scheduling_service.complete_appointment(db, appointment_id, body.notes, actor=staff))


@router.post("/appointments/{appointment_id}/no-show", response_model=AppointmentOut)
async def mark_no_show(
    appointment_id: uuid.UUID,
    db: AsyncSession = Depends(get_session),
    staff: str = Depends(verify_staff),
) -> AppointmentOut:
    return _out(await scheduling_service.mark_as_no_show(db, appointment_id, actor=staff))
