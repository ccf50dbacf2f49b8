"""Scheduling service — books, moves and closes out appointments.

Composes the availability calendar, the conflict validator and the
appointment state machine. Every public method runs inside the caller's
``AsyncSession`` transaction: validation happens before anything is
written, and a failure anywhere rolls the whole operation back.

Errors:
    NotFoundError / AppointmentValidationError propagate unchanged.
    Anything else is logged and re-raised as SchedulingFailure.
"""

from __future__ import annotations

import contextlib
import logging
import uuid
from collections.abc import Callable, Iterator
from datetime import UTC, datetime, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from hospital.config import settings
from hospital.events import defer
from hospital.models.appointment import Appointment
from hospital.models.doctor import Doctor
from hospital.models.enums import AppointmentStatus, NotificationType
from hospital.models.patient import Patient
from hospital.schemas.appointments import NoShowSweepResult
from hospital.schemas.events import EventType, SystemEvent
from hospital.scheduling.availability import AvailabilityCalendar
from hospital.scheduling.conflicts import ConflictValidator
from hospital.scheduling.errors import (
    AppointmentValidationError,
    NotFoundError,
    SchedulingError,
    SchedulingFailure,
)
from hospital.scheduling.notifications import (
    DatabaseNotificationSink,
    NotificationEmitter,
    NotificationSink,
)
from hospital.scheduling.repository import AppointmentRepository, DoctorRepository, PatientRepository
from hospital.scheduling.state_machine import AppointmentStateMachine, TransitionResult
from hospital.scheduling.states import AppointmentEvent

logger = logging.getLogger(__name__)

REASON_MAX = 255

_EVENT_TYPES: dict[AppointmentEvent, EventType] = {
    AppointmentEvent.CONFIRM: EventType.APPOINTMENT_CONFIRMED,
    AppointmentEvent.CANCEL: EventType.APPOINTMENT_CANCELED,
    AppointmentEvent.RESCHEDULE: EventType.APPOINTMENT_RESCHEDULED,
    AppointmentEvent.COMPLETE: EventType.APPOINTMENT_COMPLETED,
    AppointmentEvent.MARK_NO_SHOW: EventType.APPOINTMENT_NO_SHOW,
}


def resolve_end_time(start: datetime, end: datetime | None, duration_minutes: int) -> datetime:
    """The caller's end if given, otherwise ``start + duration_minutes``."""
    if end is not None:
        return end
    return start + timedelta(minutes=duration_minutes)


@contextlib.contextmanager
def _failure_context(operation: str, **context: object) -> Iterator[None]:
    """Pass domain errors through; wrap anything else as SchedulingFailure."""
    try:
        yield
    except SchedulingError:
        raise
    except Exception as exc:
        logger.exception("Unexpected error during %s %s", operation, context)
        msg = f"Error during {operation}: {exc}"
        raise SchedulingFailure(msg) from exc


class SchedulingService:
    """Orchestrates the appointment lifecycle."""

    def __init__(
        self,
        doctors: DoctorRepository | None = None,
        patients: PatientRepository | None = None,
        appointments: AppointmentRepository | None = None,
        calendar: AvailabilityCalendar | None = None,
        conflicts: ConflictValidator | None = None,
        emitter: NotificationEmitter | None = None,
        clock: Callable[[], datetime] | None = None,
        default_duration_minutes: int | None = None,
    ) -> None:
        self.doctors = doctors or DoctorRepository()
        self.patients = patients or PatientRepository()
        self.appointments = appointments or AppointmentRepository()
        self.calendar = calendar or AvailabilityCalendar(self.doctors, self.appointments)
        self.conflicts = conflicts or ConflictValidator(self.appointments)
        self.emitter = emitter or NotificationEmitter()
        self.state_machine = AppointmentStateMachine(clock)
        self.default_duration_minutes = (
            default_duration_minutes or settings.scheduling.default_duration_minutes
        )

    def now(self) -> datetime:
        return self.state_machine.now()

    # ── Booking ──────────────────────────────────────────────────────

    async def schedule_appointment(
        self,
        db: AsyncSession,
        doctor_id: uuid.UUID,
        patient_id: uuid.UUID,
        start: datetime,
        reason: str,
        end: datetime | None = None,
        notes: str | None = None,
        location: str | None = None,
        *,
        sink: NotificationSink | None = None,
        actor: str | None = None,
    ) -> Appointment:
        """Book a new SCHEDULED appointment.

        Steps, each failing fast:
        1. resolve doctor (row-locked) and patient,
        2. compute the end time and check the window,
        3. check the doctor's working hours,
        4. check for overlapping appointments,
        5. persist and notify both participants.
        """
        with _failure_context("schedule", doctor_id=doctor_id, patient_id=patient_id):
            doctor = await self._lock_doctor(db, doctor_id)
            patient = await self._get_patient(db, patient_id)
            reason = self._validate_reason(reason)

            if end is None:
                slot = await self.calendar.slot_duration(db, doctor_id, start)
                end = resolve_end_time(start, None, slot or self.default_duration_minutes)
            self._validate_window(start, end)

            await self.calendar.ensure_within_working_hours(db, doctor_id, start)
            await self.conflicts.ensure_no_conflict(db, doctor_id, start, end)

            appointment = Appointment(
                id=uuid.uuid4(),
                doctor_id=doctor.id,
                patient_id=patient.id,
                start_at=start,
                end_at=end,
                status=AppointmentStatus.SCHEDULED,
                reason=reason,
                notes=notes,
                location=location,
                confirmed=False,
            )
            await self.appointments.save(db, appointment)

            await self.emitter.dispatch(
                sink or DatabaseNotificationSink(db),
                (NotificationType.APPOINTMENT_SCHEDULED,),
                appointment,
                doctor,
                patient,
            )
            defer(db, SystemEvent(
                event_type=EventType.APPOINTMENT_SCHEDULED,
                entity_id=appointment.id,
                actor_id=actor,
                actor_role="staff" if actor else "system",
                data={
                    "doctor_id": str(doctor.id),
                    "patient_id": str(patient.id),
                    "start_at": start.isoformat(),
                    "end_at": end.isoformat(),
                },
                source_module="scheduling.service",
            ))

            logger.info(
                "Appointment scheduled: id=%s doctor=%s patient=%s at=%s",
                appointment.id,
                doctor.id,
                patient.id,
                start.isoformat(),
            )
            return appointment

    async def reschedule_appointment(
        self,
        db: AsyncSession,
        appointment_id: uuid.UUID,
        new_start: datetime,
        new_end: datetime | None = None,
        *,
        sink: NotificationSink | None = None,
        actor: str | None = None,
    ) -> Appointment:
        """Move an appointment to a new window.

        Runs the same checks as booking, excluding the appointment itself
        from the conflict search. Without ``new_end`` the current duration
        is kept.
        """
        with _failure_context("reschedule", appointment_id=appointment_id):
            current = await self._get_appointment(db, appointment_id)
            self.state_machine.check_reschedulable(current)

            # Lock order: doctor row, then appointment row
            await self._lock_doctor(db, current.doctor_id)
            appointment = await self._get_appointment(db, appointment_id, for_update=True)
            self.state_machine.check_reschedulable(appointment)

            if new_end is None:
                new_end = resolve_end_time(new_start, None, appointment.duration_minutes)
            self._validate_window(new_start, new_end)

            await self.calendar.ensure_within_working_hours(db, appointment.doctor_id, new_start)
            await self.conflicts.ensure_no_conflict(
                db, appointment.doctor_id, new_start, new_end, exclude_id=appointment.id
            )

            previous_start = appointment.start_at
            result = self.state_machine.reschedule(appointment, new_start, new_end)
            await self._finish(
                db, appointment, result, sink, actor,
                extra={"previous_start_at": previous_start.isoformat(), "start_at": new_start.isoformat()},
            )
            return appointment

    # ── Lifecycle transitions ────────────────────────────────────────

    async def confirm_appointment(
        self,
        db: AsyncSession,
        appointment_id: uuid.UUID,
        *,
        sink: NotificationSink | None = None,
        actor: str | None = None,
    ) -> Appointment:
        with _failure_context("confirm", appointment_id=appointment_id):
            appointment = await self._get_appointment(db, appointment_id, for_update=True)
            result = self.state_machine.confirm(appointment)
            await self._finish(db, appointment, result, sink, actor)
            return appointment

    async def cancel_appointment(
        self,
        db: AsyncSession,
        appointment_id: uuid.UUID,
        reason: str,
        *,
        sink: NotificationSink | None = None,
        actor: str | None = None,
    ) -> Appointment:
        """Cancel and notify both participants (those with a user account)."""
        with _failure_context("cancel", appointment_id=appointment_id):
            appointment = await self._get_appointment(db, appointment_id, for_update=True)
            result = self.state_machine.cancel(appointment, reason)
            await self._finish(db, appointment, result, sink, actor, extra={"reason": reason})
            return appointment

    async def complete_appointment(
        self,
        db: AsyncSession,
        appointment_id: uuid.UUID,
        notes: str | None = None,
        *,
        actor: str | None = None,
    ) -> Appointment:
        with _failure_context("complete", appointment_id=appointment_id):
            appointment = await self._get_appointment(db, appointment_id, for_update=True)
            result = self.state_machine.complete(appointment, notes)
            await self._finish(db, appointment, result, None, actor)
            return appointment

    async def mark_as_no_show(
        self,
        db: AsyncSession,
        appointment_id: uuid.UUID,
        *,
        actor: str | None = None,
    ) -> Appointment:
        """Mark an appointment that has already ended as NO_SHOW. No notification."""
        with _failure_context("mark_no_show", appointment_id=appointment_id):
            appointment = await self._get_appointment(db, appointment_id, for_update=True)
            result = self.state_machine.mark_no_show(appointment)
            await self._finish(db, appointment, result, None, actor)
            return appointment

    async def process_no_show_appointments(
        self,
        db: AsyncSession,
        grace_period_minutes: int | None = None,
    ) -> NoShowSweepResult:
        """Mark every active appointment that ended more than the grace period ago.

        Idempotent: appointments already NO_SHOW are not fetched again.
        """
        if grace_period_minutes is None:
            grace_period_minutes = settings.scheduling.no_show_grace_minutes
        if grace_period_minutes < 0:
            raise AppointmentValidationError("Grace period cannot be negative")

        with _failure_context("no_show_sweep", grace_period_minutes=grace_period_minutes):
            threshold = self.now() - timedelta(minutes=grace_period_minutes)
            candidates = await self.appointments.find_non_terminal_before(db, threshold)

            marked: list[uuid.UUID] = []
            for appointment in candidates:
                try:
                    result = self.state_machine.mark_no_show(appointment, grace_period_minutes)
                except AppointmentValidationError as exc:
                    logger.warning("Skipping no-show for %s: %s", appointment.id, exc)
                    continue
                await self._finish(db, appointment, result, None, None)
                marked.append(appointment.id)

            logger.info(
                "No-show sweep: %d of %d candidates marked (threshold=%s)",
                len(marked),
                len(candidates),
                threshold.isoformat(),
            )
            return NoShowSweepResult(threshold=threshold, marked=len(marked), appointment_ids=marked)

    # ── Internals ────────────────────────────────────────────────────

    async def _finish(
        self,
        db: AsyncSession,
        appointment: Appointment,
        result: TransitionResult,
        sink: NotificationSink | None,
        actor: str | None,
        extra: dict[str, str] | None = None,
    ) -> None:
        """Persist a transition, send its notices and defer its audit event to commit."""
        await db.flush()

        if result.notices:
            doctor = await self.doctors.find_by_id(db, appointment.doctor_id)
            patient = await self.patients.find_by_id(db, appointment.patient_id)
            if doctor is not None and patient is not None:
                await self.emitter.dispatch(
                    sink or DatabaseNotificationSink(db),
                    result.notices,
                    appointment,
                    doctor,
                    patient,
                )

        defer(db, SystemEvent(
            event_type=_EVENT_TYPES[result.event],
            entity_id=appointment.id,
            actor_id=actor,
            actor_role="staff" if actor else "system",
            data={
                "from_status": result.from_status.value,
                "to_status": result.to_status.value,
                **(extra or {}),
            },
            source_module="scheduling.service",
        ))

    async def _lock_doctor(self, db: AsyncSession, doctor_id: uuid.UUID) -> Doctor:
        doctor = await self.doctors.find_by_id(db, doctor_id, for_update=True)
        if doctor is None:
            logger.warning("Doctor not found: %s", doctor_id)
            raise NotFoundError("Doctor", doctor_id)
        return doctor

    async def _get_patient(self, db: AsyncSession, patient_id: uuid.UUID) -> Patient:
        patient = await self.patients.find_by_id(db, patient_id)
        if patient is None:
            logger.warning("Patient not found: %s", patient_id)
            raise NotFoundError("Patient", patient_id)
        return patient

    async def _get_appointment(
        self,
        db: AsyncSession,
        appointment_id: uuid.UUID,
        *,
        for_update: bool = False,
    ) -> Appointment:
        appointment = await self.appointments.find_by_id(db, appointment_id, for_update=for_update)
        if appointment is None:
            raise NotFoundError("Appointment", appointment_id)
        return appointment

    def _validate_window(self, start: datetime, end: datetime) -> None:
        if start.tzinfo is None or end.tzinfo is None:
            raise AppointmentValidationError("Appointment times must include a timezone")
        if start < self.now():
            raise AppointmentValidationError("Appointment date cannot be in the past")
        if end <= start:
            raise AppointmentValidationError("End time must be after start time")

    @staticmethod
    def _validate_reason(reason: str) -> str:
        reason = (reason or "").strip()
        if not reason:
            raise AppointmentValidationError("Reason is required")
        if len(reason) > REASON_MAX:
            raise AppointmentValidationError(f"Reason must not exceed {REASON_MAX} characters")
        return reason


# Module-level singleton
scheduling_service = SchedulingService(clock=lambda: datetime.now(UTC))
