"""Notification emitter — turns appointment transitions into inbox messages.

The state machine only says *which* notices a transition produces; this
module writes the wording and hands one message per linked participant
to a ``NotificationSink``. A doctor or patient without a user account is
skipped without error.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Protocol
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from hospital.config import settings
from hospital.events import defer
from hospital.models.appointment import Appointment
from hospital.models.doctor import Doctor
from hospital.models.enums import EntityType, NotificationStatus, NotificationType
from hospital.models.notification import Notification
from hospital.models.patient import Patient
from hospital.schemas.events import EventType, SystemEvent
from hospital.scheduling.state_machine import CANCEL_NOTE_PREFIX

logger = logging.getLogger(__name__)

TITLE_MAX = 100
BODY_MAX = 500


class NotificationSink(Protocol):
    """Delivers one message to one user."""

    async def emit(
        self,
        recipient_user_id: uuid.UUID,
        title: str,
        body: str,
        type: NotificationType,  # noqa: A002
        related_entity_id: uuid.UUID,
    ) -> None: ...


@dataclass(frozen=True)
class NotificationDraft:
    recipient_user_id: uuid.UUID
    title: str
    body: str
    type: NotificationType
    related_entity_id: uuid.UUID


# {notice: (doctor title, doctor body, patient title, patient body)}
# Bodies are formatted with: patient, doctor, when, where, reason.
_TEMPLATES: dict[NotificationType, tuple[str, str, str, str]] = {
    NotificationType.APPOINTMENT_SCHEDULED: (
        "New appointment scheduled",
        "An appointment with {patient} has been scheduled for {when}{where}.",
        "Appointment scheduled",
        "Your appointment with Dr. {doctor} is scheduled for {when}{where}.",
    ),
    NotificationType.APPOINTMENT_CONFIRMATION: (
        "Appointment confirmed",
        "The appointment with {patient} on {when}{where} has been confirmed.",
        "Appointment confirmed",
        "Your appointment with Dr. {doctor} on {when}{where} is confirmed.",
    ),
    NotificationType.APPOINTMENT_CANCELLATION: (
        "Appointment canceled",
        "The appointment with {patient} on {when} has been canceled. Reason: {reason}",
        "Appointment canceled",
        "Your appointment with Dr. {doctor} on {when} has been canceled. Reason: {reason}",
    ),
    NotificationType.APPOINTMENT_RESCHEDULE: (
        "Appointment rescheduled",
        "The appointment with {patient} has been moved to {when}{where}.",
        "Appointment rescheduled",
        "Your appointment with Dr. {doctor} has been moved to {when}{where}.",
    ),
}


class NotificationEmitter:
    """Builds and dispatches participant notifications."""

    def __init__(self, tz: ZoneInfo | None = None) -> None:
        self.tz = tz or settings.scheduling.tz

    def format_when(self, instant: datetime) -> str:
        return instant.astimezone(self.tz).strftime("%d/%m/%Y %H:%M")

    def build(
        self,
        notice: NotificationType,
        appointment: Appointment,
        doctor: Doctor,
        patient: Patient,
    ) -> list[NotificationDraft]:
        """Drafts for every participant with a linked user account."""
        doctor_title, doctor_body, patient_title, patient_body = _TEMPLATES[notice]
        context = {
            "patient": patient.full_name,
            "doctor": doctor.full_name,
            "when": self.format_when(appointment.start_at),
            "where": f" in {appointment.location}" if appointment.location else "",
            "reason": _cancel_reason(appointment.notes),
        }

        drafts: list[NotificationDraft] = []
        for user_id, title, body in (
            (doctor.user_id, doctor_title, doctor_body),
            (patient.user_id, patient_title, patient_body),
        ):
            if user_id is None:
                continue
            drafts.append(NotificationDraft(
                recipient_user_id=user_id,
                title=title[:TITLE_MAX],
                body=body.format(**context)[:BODY_MAX],
                type=notice,
                related_entity_id=appointment.id,
            ))
        return drafts

    async def dispatch(
        self,
        sink: NotificationSink,
        notices: tuple[NotificationType, ...],
        appointment: Appointment,
        doctor: Doctor,
        patient: Patient,
    ) -> int:
        """Send every notice to ``sink``; returns how many messages went out."""
        sent = 0
        for notice in notices:
            for draft in self.build(notice, appointment, doctor, patient):
                await sink.emit(
                    draft.recipient_user_id,
                    draft.title,
                    draft.body,
                    draft.type,
                    draft.related_entity_id,
                )
                sent += 1
        if notices and not sent:
            logger.debug("No linked user accounts for appointment %s, nothing sent", appointment.id)
        return sent


class DatabaseNotificationSink:
    """Stores notifications in the caller's transaction.

    The rows commit or roll back together with the transition that caused
    them, so a failed operation never leaves an orphan notification.
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def emit(
        self,
        recipient_user_id: uuid.UUID,
        title: str,
        body: str,
        type: NotificationType,  # noqa: A002
        related_entity_id: uuid.UUID,
    ) -> None:
        self.db.add(Notification(
            user_id=recipient_user_id,
            title=title,
            body=body,
            type=type,
            status=NotificationStatus.UNREAD,
            entity_type=EntityType.APPOINTMENT,
            entity_id=related_entity_id,
        ))
        defer(self.db, SystemEvent(
            event_type=EventType.NOTIFICATION_CREATED,
            entity_id=related_entity_id,
            data={"recipient_user_id": str(recipient_user_id), "type": type.value},
            source_module="scheduling.notifications",
        ))


def _cancel_reason(notes: str | None) -> str:
    if not notes:
        return ""
    return notes.removeprefix(CANCEL_NOTE_PREFIX)
