"""
Custom exception classes for unified error handling.

Every error carries the HTTP status it maps to; the handlers registered in
main.py render them with a consistent JSON body.
"""

from fastapi import Request, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse


class AppBaseError(Exception):
    """Base exception for all application errors."""
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, detail: str | None = None):
        self.message = message
        self.detail = detail
        super().__init__(message)


class UnauthorizedError(AppBaseError):
    """Raised when no user identity could be resolved from the request."""
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message=message, detail="Sign in again to get a fresh token.")


class ValidationError(AppBaseError):
    """Raised for bad or missing input (category, dates, fields)."""
    status_code = status.HTTP_400_BAD_REQUEST


class InvalidRangeError(ValidationError):
    """Raised when startDate is after endDate."""
    def __init__(self, start, end):
        super().__init__(
            message="Invalid date range",
            detail=f"startDate ({start}) must not be after endDate ({end}).",
        )


class InvalidProviderError(ValidationError):
    """Raised when a sync request names an unknown calendar service."""
    def __init__(self, service: str | None):
        super().__init__(
            message="Invalid service. Must be google or apple",
            detail=f"Got {service!r}.",
        )


class NotFoundError(AppBaseError):
    """Raised when an event id is unknown."""
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, message: str = "Event not found"):
        super().__init__(message=message)


class ForbiddenError(AppBaseError):
    """Raised when the event belongs to another user."""
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Forbidden"):
        super().__init__(message=message)


class ImmutableSourceError(AppBaseError):
    """Raised on an attempt to modify or delete a non-manual event."""
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, source: str):
        super().__init__(
            message="Cannot modify auto-generated events",
            detail=f"Events with source '{source}' are read-only.",
        )


class NotConnectedError(AppBaseError):
    """Raised when a sync operation targets a disconnected provider."""
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, provider: str):
        super().__init__(
            message=f"{provider} calendar is not connected",
            detail="Connect the calendar in Settings > Calendar sync first.",
        )


class MissingCredentialsError(AppBaseError):
    """Raised when a connect call lacks required credential fields."""
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, provider: str, missing: list[str]):
        super().__init__(
            message=f"Missing required fields: {', '.join(missing)}",
            detail=f"{provider} calendar needs: {', '.join(missing)}.",
        )


class ExternalServiceError(AppBaseError):
    """Raised when a calendar provider fails (network, auth, bad response).

    `transient` errors may be retried at the connector boundary; `auth`
    errors mean the stored credentials must be reconnected.
    """
    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        provider: str,
        message: str,
        transient: bool = False,
        auth: bool = False,
    ):
        self.provider = provider
        self.transient = transient
        self.auth = auth
        detail = (
            "Credentials were rejected, reconnect the calendar."
            if auth
            else "The calendar provider may be unavailable, try again later."
        )
        super().__init__(message=f"{provider}: {message}", detail=detail)


class StoreUnavailableError(AppBaseError):
    """Raised when the database cannot be reached."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, original_error: str):
        super().__init__(message="Database not available", detail=original_error)


# ── Handlers (registered in main.py) ─────────────────────

async def app_error_handler(request: Request, exc: AppBaseError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.message,
            "detail": exc.detail,
            "type": type(exc).__name__,
        },
    )


async def request_validation_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Report body/query validation failures as 400 in the app error format."""
    errors = jsonable_encoder(exc.errors())
    first = errors[0] if errors else {}
    location = ".".join(str(p) for p in first.get("loc", []) if p != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "error": f"{location}: {message}" if location else message,
            "detail": errors,
            "type": ValidationError.__name__,
        },
    )
