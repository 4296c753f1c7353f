"""
Application error hierarchy and FastAPI exception handlers.

AppError is the base for all typed errors. Each subclass pins a taxonomy
``kind``, an HTTP status and a default machine-readable ``error_code``; a
single raise can narrow the code with ``code=`` (e.g. ``SESSION_EXPIRED``
on an AuthenticationError). The global exception handler converts AppError
subclasses to consistent JSON responses.

Non-AppError exceptions bubble up as 500s (with Sentry reporting in production).
"""

from __future__ import annotations

from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from shared.logging import get_logger

log = get_logger(__name__)


class AppError(Exception):
    """Base application error. All typed errors inherit from this."""

    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"
    kind: str = "internal"

    def __init__(
        self,
        message: str,
        *,
        code: Optional[str] = None,
        field: Optional[str] = None,
        details: Optional[Any] = None,
        retry_after: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.error_code = code
        self.field = field
        self.details = details
        self.retry_after = retry_after

    def to_dict(self) -> dict:
        payload: dict = {"error": self.message, "code": self.error_code}
        if self.field is not None:
            payload["field"] = self.field
        if self.details is not None:
            payload["details"] = self.details
        if self.retry_after is not None:
            payload["retry_after"] = self.retry_after
        return payload


class ValidationError(AppError):
    status_code = 400
    error_code = "VALIDATION_ERROR"
    kind = "validation"


class OtpVerificationError(AppError):
    """Wrong, expired, consumed or exhausted OTP."""

    status_code = 400
    error_code = "INVALID_OTP"
    kind = "invalid_credential"


class AuthenticationError(AppError):
    status_code = 401
    error_code = "AUTHENTICATION_ERROR"
    kind = "unauthenticated"


class InvalidCredentialsError(AuthenticationError):
    error_code = "INVALID_CREDENTIALS"
    kind = "invalid_credential"


class ForbiddenError(AppError):
    status_code = 403
    error_code = "FORBIDDEN"
    kind = "forbidden"


class NotFoundError(AppError):
    status_code = 404
    error_code = "NOT_FOUND"
    kind = "not_found"


class ConflictError(AppError):
    status_code = 409
    error_code = "CONFLICT"
    kind = "conflict"


class RateLimitError(AppError):
    status_code = 429
    error_code = "RATE_LIMIT_EXCEEDED"
    kind = "throttling"


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers on the FastAPI app."""

    @app.exception_handler(AppError)
    async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
        headers = None
        if exc.retry_after is not None:
            headers = {"Retry-After": str(exc.retry_after)}
        return JSONResponse(
            status_code=exc.status_code, content=exc.to_dict(), headers=headers
        )

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        loc = [str(p) for p in first.get("loc", ()) if p != "body"]
        err = ValidationError(
            first.get("msg", "Validation failed"),
            field=".".join(loc) or None,
            details=[
                {"loc": [str(p) for p in e.get("loc", ())], "msg": e.get("msg")}
                for e in errors
            ],
        )
        return JSONResponse(status_code=err.status_code, content=err.to_dict())

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(
        request: Request, exc: Exception
    ) -> JSONResponse:
        # Sentry integration: if sentry_sdk is initialized it will auto-capture
        # unhandled exceptions before this handler fires.
        log.error(
            "unhandled_exception",
            path=request.url.path,
            error=str(exc),
            error_type=type(exc).__name__,
        )
        return JSONResponse(
            status_code=500,
            content={"error": "An internal server error occurred.", "code": "INTERNAL_ERROR"},
        )
