"""Appointment transition map.

Status changes are only legal along these edges; everything else is
rejected by ``AppointmentStateMachine``.
"""

from __future__ import annotations

from enum import Enum

from hospital.models.enums import AppointmentStatus


class AppointmentEvent(str, Enum):
    """Events that move an appointment between statuses."""

    CONFIRM = "confirm"
    CANCEL = "cancel"
    RESCHEDULE = "reschedule"
    COMPLETE = "complete"
    MARK_NO_SHOW = "mark_no_show"


# Transition map: {current_status: {event: next_status}}
TRANSITIONS: dict[AppointmentStatus, dict[AppointmentEvent, AppointmentStatus]] = {
    AppointmentStatus.SCHEDULED: {
        AppointmentEvent.CONFIRM: AppointmentStatus.CONFIRMED,
        AppointmentEvent.CANCEL: AppointmentStatus.CANCELED,
        AppointmentEvent.RESCHEDULE: AppointmentStatus.SCHEDULED,
        AppointmentEvent.COMPLETE: AppointmentStatus.COMPLETED,
        AppointmentEvent.MARK_NO_SHOW: AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.CONFIRMED: {
        AppointmentEvent.CANCEL: AppointmentStatus.CANCELED,
        # a moved appointment has to be confirmed again
        AppointmentEvent.RESCHEDULE: AppointmentStatus.SCHEDULED,
        AppointmentEvent.COMPLETE: AppointmentStatus.COMPLETED,
        AppointmentEvent.MARK_NO_SHOW: AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.COMPLETED: {},
    AppointmentStatus.CANCELED: {},
    AppointmentStatus.NO_SHOW: {},
}
