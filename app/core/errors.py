"""
Custom exception hierarchy for the engagement engine.

Rule: every HTTP error has a machine-readable `code` string so clients
can branch on it without parsing human messages.

Several of these never reach HTTP: the inbound message path resolves
CheckinReplyError, OnboardingReplyError, DuplicateEventError and
DownstreamUnavailableError locally and always answers with a
`{success, error?}` result.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Any

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette import status

from app.schemas.common import FieldError

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exception classes
# ---------------------------------------------------------------------------

class EngageException(Exception):
    """Base class for all application-level errors."""
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    code: str = "INTERNAL_ERROR"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        payload: dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            payload["details"] = self.details
        return payload


class CheckinReplyError(EngageException):
    """A check-in reply did not match the expected answer shape for its step."""
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "CHECKIN_REPLY_INVALID"

    def __init__(self, step: str, hint: str):
        self.step = step
        self.hint = hint
        super().__init__(
            message=hint,
            details={"step": step},
        )


class PatientNotFoundError(EngageException):
    http_status = status.HTTP_404_NOT_FOUND
    code = "PATIENT_NOT_FOUND"

    def __init__(self, patient_id: int | None = None, phone_number: str | None = None):
        ref = patient_id if patient_id is not None else phone_number
        details: dict[str, Any] = {}
        if patient_id is not None:
            details["patient_id"] = patient_id
        if phone_number is not None:
            details["phone_number"] = phone_number
        super().__init__(message=f"Patient {ref} not found.", details=details)


class DuplicateEventError(EngageException):
    http_status = status.HTTP_409_CONFLICT
    code = "DUPLICATE_EVENT"

    def __init__(self, external_id: str):
        self.external_id = external_id
        super().__init__(
            message=f"Inbound event {external_id} was already processed.",
            details={"external_id": external_id},
        )


class DownstreamUnavailableError(EngageException):
    http_status = status.HTTP_503_SERVICE_UNAVAILABLE
    code = "DOWNSTREAM_UNAVAILABLE"

    def __init__(self, service: str, reason: str):
        super().__init__(
            message=f"{service} unavailable: {reason}",
            details={"service": service},
        )


class CheckinAlreadyStartedError(EngageException):
    http_status = status.HTTP_409_CONFLICT
    code = "CHECKIN_ALREADY_STARTED"

    def __init__(self, patient_id: int, day: date):
        super().__init__(
            message=f"Check-in for patient {patient_id} already exists on {day}.",
            details={"patient_id": patient_id, "day": str(day)},
        )


class CheckinNotAvailableError(EngageException):
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "CHECKIN_NOT_AVAILABLE"

    def __init__(self, plan: str):
        super().__init__(
            message=f"Daily check-ins are not available on the {plan} plan.",
            details={"plan": plan},
        )


class OnboardingReplyError(EngageException):
    """An onboarding reply did not answer the current question."""
    http_status = status.HTTP_422_UNPROCESSABLE_ENTITY
    code = "ONBOARDING_REPLY_INVALID"

    def __init__(self, step: str, hint: str):
        self.step = step
        self.hint = hint
        super().__init__(message=hint, details={"step": step})


class OnboardingAlreadyStartedError(EngageException):
    http_status = status.HTTP_409_CONFLICT
    code = "ONBOARDING_ALREADY_STARTED"

    def __init__(self, patient_id: int, completed: bool = False):
        state = "completed" if completed else "in progress"
        super().__init__(
            message=f"Onboarding for patient {patient_id} is already {state}.",
            details={"patient_id": patient_id, "completed": completed},
        )


class UnauthorizedJobError(EngageException):
    http_status = status.HTTP_401_UNAUTHORIZED
    code = "UNAUTHORIZED"

    def __init__(self):
        super().__init__(message="Missing or invalid job credentials.")


# ---------------------------------------------------------------------------
# FastAPI exception handlers
# ---------------------------------------------------------------------------

async def engage_exception_handler(request: Request, exc: EngageException) -> JSONResponse:
    if exc.http_status >= 500:
        logger.error("%s on %s %s: %s", exc.code, request.method, request.url.path, exc.message)
    else:
        logger.info("%s on %s %s", exc.code, request.method, request.url.path)
    return JSONResponse(status_code=exc.http_status, content=exc.to_dict())


def _field_errors(exc: RequestValidationError) -> list[dict]:
    # "body" / "query" / "path" prefixes are noise for clients
    return [
        FieldError(
            field=".".join(str(loc) for loc in error["loc"][1:]) or str(error["loc"][0]),
            message=error["msg"],
            type=error["type"],
        ).model_dump()
        for error in exc.errors()
    ]


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """422 with one `{field, message, type}` entry per rejected field."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "code": "VALIDATION_ERROR",
            "message": "Request validation failed.",
            "details": {"errors": _field_errors(exc)},
        },
    )


async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "code": "INTERNAL_ERROR",
            "message": "An unexpected error occurred.",
        },
    )
