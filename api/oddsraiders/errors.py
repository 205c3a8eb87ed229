# api/oddsraiders/errors.py
from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class OddsRaidersError(Exception):
    """Base class for every domain error raised by the service layer."""

    status_code = 500

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


# ---------- billing / access ----------

class ConflictError(OddsRaidersError):
    """User already has an open (pending or active) subscription."""
    status_code = 409


class NotFoundError(OddsRaidersError):
    """Unknown payment or subscription reference."""
    status_code = 404


class ForbiddenError(OddsRaidersError):
    """Caller tried to act on another user's subscription."""
    status_code = 403


class MalformedPayloadError(OddsRaidersError):
    """Webhook notification is missing a required field."""
    status_code = 400


class VerificationError(OddsRaidersError):
    """Webhook signature/origin check failed. Logged and acknowledged, never propagated."""
    status_code = 400


# ---------- ingestion ----------

class FetchError(OddsRaidersError):
    """Remote provider unreachable, rate-limited or answered with an error."""

    def __init__(self, resource: str, message: str = ""):
        super().__init__(f"{resource}: {message}" if message else resource)
        self.resource = resource


class InvalidRecordError(OddsRaidersError):
    """A provider row could not be mapped (missing natural key or required field)."""


class DanglingReferenceError(OddsRaidersError):
    """A record points at an external entity that has not been upserted yet.

    This means the ingestion order is wrong, not that the data is bad.
    """

    def __init__(self, resource: str, field: str, value):
        super().__init__(f"{resource}.{field} -> {value!r} not present locally")
        self.resource = resource
        self.field = field
        self.value = value


# ---------- FastAPI glue ----------

async def domain_error_handler(request: Request, exc: OddsRaidersError):
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": type(exc).__name__,
            "message": exc.message or str(exc),
            "path": request.url.path,
        },
    )


def register_exception_handlers(app) -> None:
    for exc_type in (ConflictError, NotFoundError, ForbiddenError, MalformedPayloadError):
        app.add_exception_handler(exc_type, domain_error_handler)
