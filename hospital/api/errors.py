"""Map scheduling errors to HTTP responses."""

from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from hospital.scheduling.errors import (
    AppointmentValidationError,
    InvalidTransitionError,
    NotFoundError,
    SchedulingFailure,
)

logger = logging.getLogger(__name__)


async def _not_found(request: Request, exc: NotFoundError) -> JSONResponse:
    return JSONResponse(status_code=status.HTTP_404_NOT_FOUND, content={"detail": str(exc)})


async def _invalid(request: Request, exc: AppointmentValidationError) -> JSONResponse:
    content: dict[str, str] = {"detail": str(exc)}
    if isinstance(exc, InvalidTransitionError):
        content["current_status"] = exc.current_status
        content["event"] = exc.event
    return JSONResponse(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, content=content)


async def _failure(request: Request, exc: SchedulingFailure) -> JSONResponse:
    # Already logged with traceback where it was wrapped
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "The scheduling system failed to process the request"},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(NotFoundError, _not_found)  # type: ignore[arg-type]
    app.add_exception_handler(AppointmentValidationError, _invalid)  # type: ignore[arg-type]
    app.add_exception_handler(SchedulingFailure, _failure)  # type: ignore[arg-type]
