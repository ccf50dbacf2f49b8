"""Tests for NotificationEmitter and DatabaseNotificationSink."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, MagicMock, patch
from zoneinfo import ZoneInfo

import pytest

from hospital.events import pending
from hospital.models.appointment import Appointment
from hospital.models.doctor import Doctor
from hospital.models.enums import AppointmentStatus, EntityType, NotificationStatus, NotificationType
from hospital.models.patient import Patient
from hospital.schemas.events import EventType
from hospital.scheduling.notifications import (
    BODY_MAX,
    DatabaseNotificationSink,
    NotificationEmitter,
)

START = datetime(2030, 3, 5, 9, 0, tzinfo=UTC)


# ── Helpers ──────────────────────────────────────────────────────────


def _participants(doctor_user: bool = True, patient_user: bool = True) -> tuple[Doctor, Patient]:
    doctor_user_id = uuid.uuid4() if doctor_user else None
    patient_user_id = uuid.uuid4() if patient_user else None
    doctor = Doctor(id=uuid.uuid4(), first_name="Lisa", last_name="Cuddy", user_id=doctor_user_id)
    patient = Patient(id=uuid.uuid4(), first_name="John", last_name="Smith", user_id=patient_user_id)
    return doctor, patient


def _make_appointment(location: str | None = "Room 2", notes: str | None = None) -> Appointment:
    return Appointment(
        id=uuid.uuid4(),
        doctor_id=uuid.uuid4(),
        patient_id=uuid.uuid4(),
        start_at=START,
        end_at=START + timedelta(minutes=30),
        status=AppointmentStatus.SCHEDULED,
        reason="Checkup",
        notes=notes,
        location=location,
        confirmed=False,
    )


# ── Emitter ──────────────────────────────────────────────────────────


class TestBuild:
    def test_one_draft_per_linked_participant(self):
        doctor, patient = _participants()
        appt = _make_appointment()

        drafts = NotificationEmitter(tz=ZoneInfo("UTC")).build(
            NotificationType.APPOINTMENT_CONFIRMATION, appt, doctor, patient
        )

        assert [d.recipient_user_id for d in drafts] == [doctor.user_id, patient.user_id]
        assert all(d.related_entity_id == appt.id for d in drafts)
        assert "John Smith" in drafts[0].body
        assert "Dr. Lisa Cuddy" in drafts[1].body
        assert "05/03/2030 09:00 in Room 2" in drafts[1].body

    def test_participants_without_account_skipped(self):
        doctor, patient = _participants(doctor_user=False)

        drafts = NotificationEmitter(tz=ZoneInfo("UTC")).build(
            NotificationType.APPOINTMENT_SCHEDULED, _make_appointment(), doctor, patient
        )

        assert [d.recipient_user_id for d in drafts] == [patient.user_id]

    def test_time_rendered_in_clinic_zone(self):
        doctor, patient = _participants()
        emitter = NotificationEmitter(tz=ZoneInfo("Europe/Rome"))
        assert emitter.format_when(START) == "05/03/2030 10:00"

    def test_cancellation_carries_reason_without_prefix(self):
        doctor, patient = _participants()
        appt = _make_appointment(notes="Canceled: Doctor unavailable")

        drafts = NotificationEmitter(tz=ZoneInfo("UTC")).build(
            NotificationType.APPOINTMENT_CANCELLATION, appt, doctor, patient
        )

        assert drafts[0].body.endswith("Reason: Doctor unavailable")

    def test_body_truncated(self):
        doctor, patient = _participants()
        appt = _make_appointment(notes="Canceled: " + "x" * 900)

        drafts = NotificationEmitter(tz=ZoneInfo("UTC")).build(
            NotificationType.APPOINTMENT_CANCELLATION, appt, doctor, patient
        )

        assert all(len(d.body) == BODY_MAX for d in drafts)


class TestDispatch:
    @pytest.mark.asyncio()
    async def test_dispatch_counts_messages(self):
        doctor, patient = _participants()
        sink = MagicMock()
        sink.emit = AsyncMock()

        sent = await NotificationEmitter(tz=ZoneInfo("UTC")).dispatch(
            sink, (NotificationType.APPOINTMENT_RESCHEDULE,), _make_appointment(), doctor, patient
        )

        assert sent == 2
        assert sink.emit.await_count == 2

    @pytest.mark.asyncio()
    async def test_nobody_linked_sends_nothing(self):
        doctor, patient = _participants(doctor_user=False, patient_user=False)
        sink = MagicMock()
        sink.emit = AsyncMock()

        sent = await NotificationEmitter(tz=ZoneInfo("UTC")).dispatch(
            sink, (NotificationType.APPOINTMENT_CANCELLATION,), _make_appointment(), doctor, patient
        )

        assert sent == 0
        sink.emit.assert_not_awaited()


# ── Database sink ────────────────────────────────────────────────────


class TestDatabaseSink:
    @pytest.mark.asyncio()
    async def test_adds_unread_row_and_defers_event(self):
        db = AsyncMock()
        db.add = MagicMock()
        db.info = {}
        user_id = uuid.uuid4()
        appt_id = uuid.uuid4()

        with patch("hospital.events.emit", new_callable=AsyncMock) as mock_emit:
            await DatabaseNotificationSink(db).emit(
                user_id, "Appointment canceled", "body", NotificationType.APPOINTMENT_CANCELLATION, appt_id
            )

        mock_emit.assert_not_awaited()

        row = db.add.call_args.args[0]
        assert row.user_id == user_id
        assert row.type == NotificationType.APPOINTMENT_CANCELLATION
        assert row.status == NotificationStatus.UNREAD
        assert row.entity_type == EntityType.APPOINTMENT
        assert row.entity_id == appt_id

        (event,) = pending(db)
        assert event.event_type == EventType.NOTIFICATION_CREATED
        assert event.data["recipient_user_id"] == str(user_id)
