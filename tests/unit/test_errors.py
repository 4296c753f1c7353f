"""Unit tests for the AppError hierarchy and the FastAPI error handlers."""

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from pydantic import BaseModel

from errors import (
    AppError,
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    InvalidCredentialsError,
    NotFoundError,
    OtpVerificationError,
    RateLimitError,
    ValidationError,
    register_error_handlers,
)


@pytest.mark.parametrize(
    "cls, status, code, kind",
    [
        (ValidationError, 400, "VALIDATION_ERROR", "validation"),
        (OtpVerificationError, 400, "INVALID_OTP", "invalid_credential"),
        (AuthenticationError, 401, "AUTHENTICATION_ERROR", "unauthenticated"),
        (InvalidCredentialsError, 401, "INVALID_CREDENTIALS", "invalid_credential"),
        (ForbiddenError, 403, "FORBIDDEN", "forbidden"),
        (NotFoundError, 404, "NOT_FOUND", "not_found"),
        (ConflictError, 409, "CONFLICT", "conflict"),
        (RateLimitError, 429, "RATE_LIMIT_EXCEEDED", "throttling"),
    ],
)
def test_subclass_defaults(cls, status, code, kind):
    e = cls("message")
    assert e.status_code == status
    assert e.error_code == code
    assert e.kind == kind
    assert e.message == "message"
    assert isinstance(e, AppError)


def test_invalid_credentials_is_authentication_error():
    assert issubclass(InvalidCredentialsError, AuthenticationError)


def test_code_override_is_per_instance():
    e = AuthenticationError("expired", code="SESSION_EXPIRED")
    assert e.error_code == "SESSION_EXPIRED"
    assert AuthenticationError("other").error_code == "AUTHENTICATION_ERROR"


class TestAppErrorToDict:
    def test_basic(self):
        e = NotFoundError("otp request not found")
        assert e.to_dict() == {"error": "otp request not found", "code": "NOT_FOUND"}

    @pytest.mark.parametrize(
        "kwargs, key, value",
        [
            ({"field": "phone"}, "field", "phone"),
            ({"details": {"attempts_left": 3}}, "details", {"attempts_left": 3}),
            ({"retry_after": 42}, "retry_after", 42),
        ],
        ids=["with_field", "with_details", "with_retry_after"],
    )
    def test_optional_key_present(self, kwargs, key, value):
        e = ValidationError("invalid", **kwargs)
        assert e.to_dict()[key] == value

    def test_no_optional_keys_when_absent(self):
        d = NotFoundError("missing").to_dict()
        assert "field" not in d
        assert "details" not in d
        assert "retry_after" not in d


# ── Handlers ──────────────────────────────────────────────────────────────────


class _Body(BaseModel):
    phone: str


def _app() -> FastAPI:
    app = FastAPI()
    register_error_handlers(app)

    @app.get("/throttled")
    async def throttled():
        raise RateLimitError("slow down", code="OTP_COOLDOWN", retry_after=30)

    @app.get("/boom")
    async def boom():
        raise RuntimeError("kaboom")

    @app.post("/validate")
    async def validate(body: _Body):
        return {"ok": True}

    return app


class TestErrorHandlers:
    def test_app_error_rendered_with_retry_after_header(self):
        with TestClient(_app()) as client:
            resp = client.get("/throttled")
        assert resp.status_code == 429
        assert resp.headers["Retry-After"] == "30"
        assert resp.json() == {
            "error": "slow down",
            "code": "OTP_COOLDOWN",
            "retry_after": 30,
        }

    def test_request_validation_rendered_as_400(self):
        with TestClient(_app()) as client:
            resp = client.post("/validate", json={})
        assert resp.status_code == 400
        body = resp.json()
        assert body["code"] == "VALIDATION_ERROR"
        assert body["field"] == "phone"
        assert body["details"]

    def test_unhandled_exception_is_500(self):
        with TestClient(_app(), raise_server_exceptions=False) as client:
            resp = client.get("/boom")
        assert resp.status_code == 500
        assert resp.json()["code"] == "INTERNAL_ERROR"
        assert "kaboom" not in resp.text
