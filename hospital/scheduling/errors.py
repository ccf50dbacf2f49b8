"""Errors raised by the scheduling core.

``NotFoundError`` and ``AppointmentValidationError`` mean the request was
wrong and are passed to the caller untouched. ``SchedulingFailure`` wraps
anything else (database down, a bug) so callers can tell "your request
was invalid" apart from "the system failed".
"""

from __future__ import annotations

import uuid


class SchedulingError(Exception):
    """Base class for every error this package raises."""


class NotFoundError(SchedulingError):
    """A referenced doctor, patient or appointment does not exist."""

    def __init__(self, entity: str, entity_id: uuid.UUID | str) -> None:
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found with ID: {entity_id}")


class AppointmentValidationError(SchedulingError):
    """A business rule rejected the request; the message names the rule."""


class InvalidTransitionError(AppointmentValidationError):
    """The appointment's current status does not allow the requested event."""

    def __init__(self, message: str, current_status: str, event: str) -> None:
        self.current_status = current_status
        self.event = event
        super().__init__(message)


class SchedulingFailure(SchedulingError):
    """An unexpected infrastructure or collaborator failure."""
