"""Tests for the scheduling service.

Covers:
- Booking: default end, working hours, conflicts, past dates, missing participants
- Confirm → complete, cancel rules and single notification per cancel
- Reschedule with self-exclusion and kept duration
- No-show sweep (grace period, idempotence)
- Failure wrapping into SchedulingFailure
"""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, time, timedelta
from unittest.mock import AsyncMock, MagicMock, patch
from zoneinfo import ZoneInfo

import pytest

from hospital.events import pending
from hospital.models.appointment import ACTIVE_STATUSES, Appointment
from hospital.models.doctor import Doctor, DoctorSchedule
from hospital.models.enums import AppointmentStatus, DayOfWeek, NotificationType
from hospital.models.patient import Patient
from hospital.schemas.events import EventType
from hospital.scheduling.availability import AvailabilityCalendar
from hospital.scheduling.conflicts import CONFLICT_MESSAGE, ConflictValidator, intervals_overlap
from hospital.scheduling.errors import (
    AppointmentValidationError,
    InvalidTransitionError,
    NotFoundError,
    SchedulingFailure,
)
from hospital.scheduling.notifications import NotificationEmitter
from hospital.scheduling.service import SchedulingService, resolve_end_time

UTC_ZONE = ZoneInfo("UTC")

# Monday morning; "tomorrow" is Tuesday 2030-03-05
NOW = datetime(2030, 3, 4, 8, 0, tzinfo=UTC)
TOMORROW_10 = datetime(2030, 3, 5, 10, 0, tzinfo=UTC)


# ── Helpers ──────────────────────────────────────────────────────────


class FakeAppointmentRepository:
    """In-memory stand-in for AppointmentRepository."""

    def __init__(self) -> None:
        self.rows: dict[uuid.UUID, Appointment] = {}

    async def save(self, db, appointment):
        self.rows[appointment.id] = appointment
        return appointment

    async def find_by_id(self, db, appointment_id, *, for_update=False):
        return self.rows.get(appointment_id)

    async def find_overlapping(self, db, doctor_id, start, end, exclude_id=None):
        return sorted(
            (
                a for a in self.rows.values()
                if a.doctor_id == doctor_id
                and a.status in ACTIVE_STATUSES
                and a.id != exclude_id
                and intervals_overlap(a.start_at, a.end_at, start, end)
            ),
            key=lambda a: a.start_at,
        )

    async def find_non_terminal_before(self, db, threshold, *, limit=None):
        return sorted(
            (a for a in self.rows.values() if a.status in ACTIVE_STATUSES and a.end_at < threshold),
            key=lambda a: a.end_at,
        )


class RecordingSink:
    def __init__(self) -> None:
        self.sent: list[tuple] = []

    async def emit(self, recipient_user_id, title, body, type, related_entity_id):  # noqa: A002
        self.sent.append((recipient_user_id, title, body, type, related_entity_id))


def _make_doctor(user_id: uuid.UUID | None = None) -> Doctor:
    return Doctor(id=uuid.uuid4(), first_name="Gregory", last_name="House", user_id=user_id)


def _make_patient(user_id: uuid.UUID | None = None) -> Patient:
    return Patient(id=uuid.uuid4(), first_name="Jane", last_name="Doe", user_id=user_id)


def _workday(doctor: Doctor, day: DayOfWeek = DayOfWeek.TUESDAY, slot: int = 30) -> DoctorSchedule:
    return DoctorSchedule(
        id=uuid.uuid4(),
        doctor_id=doctor.id,
        day_of_week=day,
        start_time=time(9, 0),
        end_time=time(17, 0),
        slot_duration_minutes=slot,
        active=True,
    )


def _make_db() -> AsyncMock:
    db = AsyncMock()
    db.add = MagicMock()
    db.flush = AsyncMock()
    db.info = {}
    return db


class Clinic:
    """One doctor, one patient, a Tuesday schedule and a wired service."""

    def __init__(
        self,
        *,
        doctor_user: bool = True,
        patient_user: bool = True,
        schedules: list[DoctorSchedule] | None = None,
        slot: int = 30,
    ) -> None:
        self.doctor = _make_doctor(uuid.uuid4() if doctor_user else None)
        self.patient = _make_patient(uuid.uuid4() if patient_user else None)
        self.schedules = schedules if schedules is not None else [_workday(self.doctor, slot=slot)]
        self.now = NOW

        self.doctors = MagicMock()
        self.doctors.find_by_id = AsyncMock(
            side_effect=lambda db, doctor_id, for_update=False: self.doctor if doctor_id == self.doctor.id else None
        )
        self.doctors.get_work_schedule = AsyncMock(side_effect=lambda db, doctor_id: list(self.schedules))
        self.patients = MagicMock()
        self.patients.find_by_id = AsyncMock(
            side_effect=lambda db, patient_id: self.patient if patient_id == self.patient.id else None
        )
        self.appointments = FakeAppointmentRepository()

        self.service = SchedulingService(
            doctors=self.doctors,
            patients=self.patients,
            appointments=self.appointments,
            calendar=AvailabilityCalendar(self.doctors, self.appointments, tz=UTC_ZONE),
            conflicts=ConflictValidator(self.appointments),
            emitter=NotificationEmitter(tz=UTC_ZONE),
            clock=lambda: self.now,
            default_duration_minutes=30,
        )
        self.db = _make_db()
        self.sink = RecordingSink()

    async def book(
        self,
        start: datetime = TOMORROW_10,
        end: datetime | None = None,
        reason: str = "Checkup",
        **kwargs,
    ) -> Appointment:
        return await self.service.schedule_appointment(
            self.db, self.doctor.id, self.patient.id, start, reason, end=end, sink=self.sink, **kwargs
        )


# ── resolve_end_time ─────────────────────────────────────────────────


class TestResolveEndTime:
    def test_explicit_end_kept(self):
        end = TOMORROW_10 + timedelta(minutes=50)
        assert resolve_end_time(TOMORROW_10, end, 30) == end

    def test_default_duration(self):
        assert resolve_end_time(TOMORROW_10, None, 30) == TOMORROW_10 + timedelta(minutes=30)


# ── Booking ──────────────────────────────────────────────────────────


class TestScheduleAppointment:
    """Test SchedulingService.schedule_appointment."""

    @pytest.mark.asyncio()
    async def test_schedule_defaults_end_to_slot(self):
        """No end given → end = start + slot duration, SCHEDULED, unconfirmed."""
        clinic = Clinic()

        appt = await clinic.book()

        assert appt.status == AppointmentStatus.SCHEDULED
        assert appt.end_at == datetime(2030, 3, 5, 10, 30, tzinfo=UTC)
        assert appt.confirmed is False
        assert appt.id in clinic.appointments.rows

        event = pending(clinic.db)[-1]
        assert event.event_type == EventType.APPOINTMENT_SCHEDULED
        assert event.entity_id == appt.id

    @pytest.mark.asyncio()
    async def test_schedule_uses_doctor_slot_duration(self):
        clinic = Clinic(slot=20)

        appt = await clinic.book()

        assert appt.duration_minutes == 20

    @pytest.mark.asyncio()
    async def test_schedule_notifies_both_participants(self):
        clinic = Clinic()

        appt = await clinic.book(location="Room 4")

        recipients = {sent[0] for sent in clinic.sink.sent}
        assert recipients == {clinic.doctor.user_id, clinic.patient.user_id}
        assert all(sent[3] == NotificationType.APPOINTMENT_SCHEDULED for sent in clinic.sink.sent)
        assert all(sent[4] == appt.id for sent in clinic.sink.sent)

    @pytest.mark.asyncio()
    async def test_overlapping_booking_rejected(self):
        """A second booking at 10:15 overlaps the 10:00–10:30 one."""
        clinic = Clinic()

        await clinic.book()
        with pytest.raises(AppointmentValidationError) as exc_info:
            await clinic.book(start=TOMORROW_10 + timedelta(minutes=15))

        assert str(exc_info.value) == CONFLICT_MESSAGE
        assert len(clinic.appointments.rows) == 1

    @pytest.mark.asyncio()
    async def test_back_to_back_booking_allowed(self):
        clinic = Clinic()

        await clinic.book()
        second = await clinic.book(start=TOMORROW_10 + timedelta(minutes=30))

        assert second.status == AppointmentStatus.SCHEDULED
        assert len(clinic.appointments.rows) == 2

    @pytest.mark.asyncio()
    async def test_canceled_appointment_frees_window(self):
        clinic = Clinic()

        first = await clinic.book()
        await clinic.service.cancel_appointment(clinic.db, first.id, "Patient request", sink=clinic.sink)
        second = await clinic.book()

        assert second.id != first.id

    @pytest.mark.asyncio()
    async def test_past_date_rejected(self):
        clinic = Clinic()

        with pytest.raises(AppointmentValidationError, match="Appointment date cannot be in the past"):
            await clinic.book(start=NOW - timedelta(days=1))

        assert pending(clinic.db) == []
        assert clinic.appointments.rows == {}
        assert clinic.sink.sent == []

    @pytest.mark.asyncio()
    async def test_inverted_window_rejected(self):
        clinic = Clinic()

        with pytest.raises(AppointmentValidationError, match="End time must be after start time"):
            await clinic.book(end=TOMORROW_10 - timedelta(minutes=5))

    @pytest.mark.asyncio()
    async def test_outside_working_hours_rejected(self):
        clinic = Clinic()

        with pytest.raises(AppointmentValidationError, match="Doctor is not available on TUESDAY at 18:00"):
            await clinic.book(start=datetime(2030, 3, 5, 18, 0, tzinfo=UTC))

    @pytest.mark.asyncio()
    async def test_day_without_schedule_rejected(self):
        clinic = Clinic()

        with pytest.raises(AppointmentValidationError, match="WEDNESDAY"):
            await clinic.book(start=datetime(2030, 3, 6, 10, 0, tzinfo=UTC))

    @pytest.mark.asyncio()
    async def test_unknown_doctor(self):
        clinic = Clinic()
        missing = uuid.uuid4()

        with pytest.raises(NotFoundError) as exc_info:
            await clinic.service.schedule_appointment(
                clinic.db, missing, clinic.patient.id, TOMORROW_10, "Checkup", sink=clinic.sink
            )

        assert str(exc_info.value) == f"Doctor not found with ID: {missing}"

    @pytest.mark.asyncio()
    async def test_unknown_patient(self):
        clinic = Clinic()

        with pytest.raises(NotFoundError, match="Patient not found with ID"):
            await clinic.service.schedule_appointment(
                clinic.db, clinic.doctor.id, uuid.uuid4(), TOMORROW_10, "Checkup", sink=clinic.sink
            )

    @pytest.mark.asyncio()
    async def test_blank_reason_rejected(self):
        clinic = Clinic()

        with pytest.raises(AppointmentValidationError, match="Reason is required"):
            await clinic.book(reason="   ")

    @pytest.mark.asyncio()
    async def test_doctor_row_locked(self):
        clinic = Clinic()

        await clinic.book()

        first_call = clinic.doctors.find_by_id.await_args_list[0]
        assert first_call.kwargs == {"for_update": True}

    @pytest.mark.asyncio()
    async def test_unexpected_error_wrapped(self):
        clinic = Clinic()
        clinic.appointments.save = AsyncMock(side_effect=RuntimeError("connection reset"))

        with pytest.raises(SchedulingFailure) as exc_info:
            await clinic.book()

        assert "connection reset" in str(exc_info.value)
        assert isinstance(exc_info.value.__cause__, RuntimeError)


# ── Lifecycle ────────────────────────────────────────────────────────


class TestLifecycle:
    @pytest.mark.asyncio()
    async def test_confirm_then_complete(self):
        clinic = Clinic()

        appt = await clinic.book()
        clinic.sink.sent.clear()

        await clinic.service.confirm_appointment(clinic.db, appt.id, sink=clinic.sink)
        assert appt.status == AppointmentStatus.CONFIRMED
        assert appt.confirmed_at == NOW
        assert {s[3] for s in clinic.sink.sent} == {NotificationType.APPOINTMENT_CONFIRMATION}

        await clinic.service.complete_appointment(clinic.db, appt.id, "Checkup done")

        assert appt.status == AppointmentStatus.COMPLETED
        assert appt.notes == "Checkup done"
        event_types = [e.event_type for e in pending(clinic.db)]
        assert event_types == [
            EventType.APPOINTMENT_SCHEDULED,
            EventType.APPOINTMENT_CONFIRMED,
            EventType.APPOINTMENT_COMPLETED,
        ]
        completed = pending(clinic.db)[-1]
        assert completed.data["from_status"] == "CONFIRMED"
        assert completed.data["to_status"] == "COMPLETED"

    @pytest.mark.asyncio()
    async def test_cancel_after_complete_rejected(self):
        clinic = Clinic()

        appt = await clinic.book()
        await clinic.service.complete_appointment(clinic.db, appt.id)

        with pytest.raises(InvalidTransitionError, match="Cannot cancel a completed appointment"):
            await clinic.service.cancel_appointment(clinic.db, appt.id, "Too late", sink=clinic.sink)

        assert appt.status == AppointmentStatus.COMPLETED

    @pytest.mark.asyncio()
    async def test_double_cancel_notifies_once(self):
        clinic = Clinic()

        appt = await clinic.book()
        clinic.sink.sent.clear()

        await clinic.service.cancel_appointment(clinic.db, appt.id, "Patient sick", sink=clinic.sink)
        with pytest.raises(InvalidTransitionError, match="Appointment is already canceled"):
            await clinic.service.cancel_appointment(clinic.db, appt.id, "Again", sink=clinic.sink)

        assert appt.notes == "Canceled: Patient sick"
        assert len(clinic.sink.sent) == 2
        assert all("Reason: Patient sick" in s[2] for s in clinic.sink.sent)

    @pytest.mark.asyncio()
    async def test_cancel_skips_participant_without_account(self):
        clinic = Clinic(patient_user=False)

        appt = await clinic.book()
        clinic.sink.sent.clear()
        await clinic.service.cancel_appointment(clinic.db, appt.id, "Doctor away", sink=clinic.sink)

        assert [s[0] for s in clinic.sink.sent] == [clinic.doctor.user_id]

    @pytest.mark.asyncio()
    async def test_transition_on_missing_appointment(self):
        clinic = Clinic()
        missing = uuid.uuid4()

        with pytest.raises(NotFoundError, match=f"Appointment not found with ID: {missing}"):
            await clinic.service.confirm_appointment(clinic.db, missing, sink=clinic.sink)

    @pytest.mark.asyncio()
    async def test_manual_no_show_before_end_rejected(self):
        clinic = Clinic()

        appt = await clinic.book()
        with pytest.raises(AppointmentValidationError, match="before"):
            await clinic.service.mark_as_no_show(clinic.db, appt.id)

        assert appt.status == AppointmentStatus.SCHEDULED

    @pytest.mark.asyncio()
    async def test_manual_no_show_after_end(self):
        clinic = Clinic()

        appt = await clinic.book()
        clinic.sink.sent.clear()
        clinic.now = appt.end_at + timedelta(minutes=1)
        await clinic.service.mark_as_no_show(clinic.db, appt.id, actor="nurse")

        assert appt.status == AppointmentStatus.NO_SHOW
        assert clinic.sink.sent == []
        event = pending(clinic.db)[-1]
        assert event.event_type == EventType.APPOINTMENT_NO_SHOW
        assert event.actor_id == "nurse"
        assert event.actor_role == "staff"


# ── Reschedule ───────────────────────────────────────────────────────


class TestReschedule:
    @pytest.mark.asyncio()
    async def test_reschedule_keeps_duration_and_resets_confirmation(self):
        clinic = Clinic()

        appt = await clinic.book(end=TOMORROW_10 + timedelta(minutes=45))
        await clinic.service.confirm_appointment(clinic.db, appt.id, sink=clinic.sink)
        clinic.sink.sent.clear()

        new_start = TOMORROW_10 + timedelta(hours=3)
        await clinic.service.reschedule_appointment(clinic.db, appt.id, new_start, sink=clinic.sink)

        assert appt.status == AppointmentStatus.SCHEDULED
        assert appt.start_at == new_start
        assert appt.duration_minutes == 45
        assert appt.confirmed is False
        assert appt.confirmed_at is None
        assert {s[3] for s in clinic.sink.sent} == {NotificationType.APPOINTMENT_RESCHEDULE}

        event = pending(clinic.db)[-1]
        assert event.event_type == EventType.APPOINTMENT_RESCHEDULED
        assert event.data["previous_start_at"] == TOMORROW_10.isoformat()

    @pytest.mark.asyncio()
    async def test_overlapping_own_window_allowed(self):
        """Shifting by 15 minutes overlaps only the appointment being moved."""
        clinic = Clinic()

        appt = await clinic.book()
        await clinic.service.reschedule_appointment(
            clinic.db, appt.id, TOMORROW_10 + timedelta(minutes=15), sink=clinic.sink
        )

        assert appt.start_at == TOMORROW_10 + timedelta(minutes=15)

    @pytest.mark.asyncio()
    async def test_reschedule_into_other_booking_rejected(self):
        clinic = Clinic()

        first = await clinic.book()
        second = await clinic.book(start=TOMORROW_10 + timedelta(hours=1))

        with pytest.raises(AppointmentValidationError, match="Conflicting appointments found"):
            await clinic.service.reschedule_appointment(
                clinic.db, second.id, TOMORROW_10 + timedelta(minutes=10), sink=clinic.sink
            )

        assert second.start_at == TOMORROW_10 + timedelta(hours=1)
        assert first.status == AppointmentStatus.SCHEDULED

    @pytest.mark.asyncio()
    async def test_reschedule_outside_working_hours_rejected(self):
        clinic = Clinic()

        appt = await clinic.book()
        with pytest.raises(AppointmentValidationError, match="not available on TUESDAY at 07:00"):
            await clinic.service.reschedule_appointment(
                clinic.db, appt.id, datetime(2030, 3, 5, 7, 0, tzinfo=UTC), sink=clinic.sink
            )

        assert appt.start_at == TOMORROW_10

    @pytest.mark.asyncio()
    async def test_reschedule_terminal_rejected(self):
        clinic = Clinic()

        appt = await clinic.book()
        await clinic.service.cancel_appointment(clinic.db, appt.id, "No longer needed", sink=clinic.sink)

        with pytest.raises(InvalidTransitionError, match="Cannot reschedule appointment. Current status: CANCELED"):
            await clinic.service.reschedule_appointment(
                clinic.db, appt.id, TOMORROW_10 + timedelta(hours=2), sink=clinic.sink
            )


# ── No-show sweep ────────────────────────────────────────────────────


class TestNoShowSweep:
    @pytest.mark.asyncio()
    async def test_sweep_marks_overdue_and_is_idempotent(self):
        clinic = Clinic()

        overdue = await clinic.book()
        recent = await clinic.book(start=TOMORROW_10 + timedelta(hours=2))

        # Two hours after the first ends; the second ended 30 minutes ago
        clinic.now = overdue.end_at + timedelta(hours=2)
        recent.start_at = clinic.now - timedelta(minutes=60)
        recent.end_at = clinic.now - timedelta(minutes=30)

        first = await clinic.service.process_no_show_appointments(clinic.db, grace_period_minutes=60)
        second = await clinic.service.process_no_show_appointments(clinic.db, grace_period_minutes=60)

        assert overdue.status == AppointmentStatus.NO_SHOW
        assert recent.status == AppointmentStatus.SCHEDULED
        assert first.marked == 1
        assert first.appointment_ids == [overdue.id]
        assert first.threshold == clinic.now - timedelta(minutes=60)
        assert second.marked == 0

    @pytest.mark.asyncio()
    async def test_sweep_ignores_terminal(self):
        clinic = Clinic()

        appt = await clinic.book()
        await clinic.service.complete_appointment(clinic.db, appt.id)
        clinic.now = appt.end_at + timedelta(days=1)

        result = await clinic.service.process_no_show_appointments(clinic.db, grace_period_minutes=0)

        assert result.marked == 0
        assert appt.status == AppointmentStatus.COMPLETED

    @pytest.mark.asyncio()
    async def test_sweep_default_grace_from_settings(self):
        clinic = Clinic()

        with patch("hospital.scheduling.service.settings") as mock_settings:
            mock_settings.scheduling.no_show_grace_minutes = 15
            result = await clinic.service.process_no_show_appointments(clinic.db)

        assert result.threshold == NOW - timedelta(minutes=15)

    @pytest.mark.asyncio()
    async def test_negative_grace_rejected(self):
        clinic = Clinic()

        with pytest.raises(AppointmentValidationError, match="cannot be negative"):
            await clinic.service.process_no_show_appointments(clinic.db, grace_period_minutes=-1)

    @pytest.mark.asyncio()
    async def test_sweep_holds_events_for_the_commit(self):
        """Marking happens in the caller's transaction; nothing is published yet."""
        clinic = Clinic()
        appt = await clinic.book()
        clinic.now = appt.end_at + timedelta(hours=1)

        with patch("hospital.events.emit", new_callable=AsyncMock) as mock_emit:
            await clinic.service.process_no_show_appointments(clinic.db, grace_period_minutes=0)

        mock_emit.assert_not_awaited()
        no_show = pending(clinic.db)[-1]
        assert no_show.event_type == EventType.APPOINTMENT_NO_SHOW
        assert no_show.entity_id == appt.id
        assert no_show.actor_role == "system"
