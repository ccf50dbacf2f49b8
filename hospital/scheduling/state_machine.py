"""Appointment state machine.

Owns the legal status transitions of one appointment and the side-data
each transition writes. It performs no I/O: callers load the appointment,
call a transition, persist, then dispatch the returned notices.

A transition either applies every field it owns or raises before
touching any of them.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from hospital.models.appointment import Appointment
from hospital.models.enums import AppointmentStatus, NotificationType
from hospital.scheduling.errors import AppointmentValidationError, InvalidTransitionError
from hospital.scheduling.states import TRANSITIONS, AppointmentEvent

logger = logging.getLogger(__name__)

CANCEL_NOTE_PREFIX = "Canceled: "

_CANCEL_REJECTIONS: dict[AppointmentStatus, str] = {
    AppointmentStatus.COMPLETED: "Cannot cancel a completed appointment",
    AppointmentStatus.CANCELED: "Appointment is already canceled",
    AppointmentStatus.NO_SHOW: "Cannot cancel an appointment marked as no-show",
}


@dataclass(frozen=True)
class TransitionResult:
    """Outcome of a successful transition.

    ``notices`` lists the notifications both participants should get once
    the change is persisted.
    """

    appointment_id: uuid.UUID
    event: AppointmentEvent
    from_status: AppointmentStatus
    to_status: AppointmentStatus
    notices: tuple[NotificationType, ...] = field(default_factory=tuple)


def allowed_events(status: AppointmentStatus) -> list[AppointmentEvent]:
    """Events accepted from ``status``; empty for terminal statuses."""
    return list(TRANSITIONS[status])


def can_apply(appointment: Appointment, event: AppointmentEvent) -> bool:
    return event in TRANSITIONS[appointment.status]


class AppointmentStateMachine:
    """Applies lifecycle events to appointments."""

    def __init__(self, clock: Callable[[], datetime] | None = None) -> None:
        self._clock = clock or (lambda: datetime.now(UTC))

    def now(self) -> datetime:
        return self._clock()

    # ── Transitions ──────────────────────────────────────────────────

    def confirm(self, appointment: Appointment) -> TransitionResult:
        """SCHEDULED → CONFIRMED, stamping the confirmation time."""
        self._require(
            appointment,
            AppointmentEvent.CONFIRM,
            f"Only scheduled appointments can be confirmed. Current status: {appointment.status.value}",
        )
        confirmed_at = self.now()
        return self._apply(
            appointment,
            AppointmentEvent.CONFIRM,
            {"confirmed": True, "confirmed_at": confirmed_at},
            notices=(NotificationType.APPOINTMENT_CONFIRMATION,),
        )

    def cancel(self, appointment: Appointment, reason: str) -> TransitionResult:
        """SCHEDULED/CONFIRMED → CANCELED, recording the reason in notes."""
        reason = (reason or "").strip()
        if not reason:
            raise AppointmentValidationError("A cancellation reason is required")

        message = _CANCEL_REJECTIONS.get(
            appointment.status,
            f"Cannot cancel appointment. Current status: {appointment.status.value}",
        )
        self._require(appointment, AppointmentEvent.CANCEL, message)

        return self._apply(
            appointment,
            AppointmentEvent.CANCEL,
            {"notes": f"{CANCEL_NOTE_PREFIX}{reason}"[:1000]},
            notices=(NotificationType.APPOINTMENT_CANCELLATION,),
        )

    def reschedule(
        self,
        appointment: Appointment,
        new_start: datetime,
        new_end: datetime,
    ) -> TransitionResult:
        """Move a non-terminal appointment to a new window.

        Availability and conflict checks belong to the caller; this only
        guards the status and the window's ordering. A confirmed
        appointment drops back to SCHEDULED and must be confirmed again.
        """
        self.check_reschedulable(appointment)
        if new_end <= new_start:
            raise AppointmentValidationError("End time must be after start time")

        return self._apply(
            appointment,
            AppointmentEvent.RESCHEDULE,
            {"start_at": new_start, "end_at": new_end, "confirmed": False, "confirmed_at": None},
            notices=(NotificationType.APPOINTMENT_RESCHEDULE,),
        )

    def check_reschedulable(self, appointment: Appointment) -> None:
        """Raise unless the appointment may still be moved."""
        self._require(
            appointment,
            AppointmentEvent.RESCHEDULE,
            f"Cannot reschedule appointment. Current status: {appointment.status.value}",
        )

    def complete(self, appointment: Appointment, notes: str | None = None) -> TransitionResult:
        """SCHEDULED/CONFIRMED → COMPLETED; non-blank notes replace existing ones."""
        self._require(
            appointment,
            AppointmentEvent.COMPLETE,
            "Only confirmed or scheduled appointments can be completed. "
            f"Current status: {appointment.status.value}",
        )
        changes: dict[str, object] = {}
        if notes and notes.strip():
            changes["notes"] = notes.strip()
        return self._apply(appointment, AppointmentEvent.COMPLETE, changes)

    def mark_no_show(self, appointment: Appointment, grace_period_minutes: int = 0) -> TransitionResult:
        """SCHEDULED/CONFIRMED → NO_SHOW once ``end + grace`` has passed."""
        self._require(
            appointment,
            AppointmentEvent.MARK_NO_SHOW,
            f"Cannot mark appointment as no-show. Current status: {appointment.status.value}",
        )
        eligible_after = appointment.end_at + timedelta(minutes=grace_period_minutes)
        if self.now() <= eligible_after:
            raise AppointmentValidationError(
                "Appointment cannot be marked as no-show before "
                f"{eligible_after.isoformat(timespec='minutes')}"
            )
        return self._apply(appointment, AppointmentEvent.MARK_NO_SHOW, {})

    # ── Internals ────────────────────────────────────────────────────

    @staticmethod
    def _require(appointment: Appointment, event: AppointmentEvent, message: str) -> None:
        if not can_apply(appointment, event):
            logger.info(
                "Rejected transition: %s --%s--> ??? (appointment=%s)",
                appointment.status.value,
                event.value,
                appointment.id,
            )
            raise InvalidTransitionError(message, appointment.status.value, event.value)

    @staticmethod
    def _apply(
        appointment: Appointment,
        event: AppointmentEvent,
        changes: dict[str, object],
        notices: tuple[NotificationType, ...] = (),
    ) -> TransitionResult:
        from_status = appointment.status
        to_status = TRANSITIONS[from_status][event]

        for attr, value in changes.items():
            setattr(appointment, attr, value)
        appointment.status = to_status

        logger.info(
            "Appointment transition: %s --%s--> %s (appointment=%s)",
            from_status.value,
            event.value,
            to_status.value,
            appointment.id,
        )
        return TransitionResult(
            appointment_id=appointment.id,
            event=event,
            from_status=from_status,
            to_status=to_status,
            notices=notices,
        )
