"""
Request DTOs for authentication endpoints.

OtpRequestBody       — POST /auth/otp/request
OtpVerifyRequest     — POST /auth/otp/verify
PasswordLoginRequest — POST /auth/password/login
SetPasswordRequest   — POST /auth/password/set
RefreshRequest       — POST /auth/refresh   (body optional, cookie fallback)
LogoutRequest        — POST /auth/logout    (body optional, cookie fallback)

JSON field names are camelCase; snake_case is accepted as well.
Phones are normalized to ``+989XXXXXXXXX`` during validation.
"""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from schemas.models.identity import Role
from schemas.models.otp_request import OtpPurpose
from shared.phone import normalize_phone
from shared.validators import (
    PASSWORD_MAX_LENGTH,
    password_policy_violation,
    validate_otp_code,
)


class _AuthRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class _PhoneRequest(_AuthRequest):
    phone: str

    @field_validator("phone", mode="before")
    @classmethod
    def _normalize_phone(cls, v):
        if not isinstance(v, str):
            raise ValueError("Phone must be a string")
        return normalize_phone(v)


class OtpRequestBody(_PhoneRequest):
    """Request body for POST /auth/otp/request."""

    purpose: OtpPurpose


class OtpVerifyRequest(_AuthRequest):
    """Request body for POST /auth/otp/verify.

    ``role`` is only honoured for ``register`` requests.
    """

    request_id: str = Field(min_length=1)
    code: str
    role: Optional[Role] = None

    @field_validator("code")
    @classmethod
    def _check_code(cls, v: str) -> str:
        if not validate_otp_code(v):
            raise ValueError("OTP code must be exactly 6 digits")
        return v


class PasswordLoginRequest(_PhoneRequest):
    """Request body for POST /auth/password/login.

    The password is not checked against the policy here; a policy change
    must not lock out existing passwords.
    """

    password: str = Field(min_length=1, max_length=PASSWORD_MAX_LENGTH)


class SetPasswordRequest(_AuthRequest):
    """Request body for POST /auth/password/set."""

    new_password: str

    @field_validator("new_password")
    @classmethod
    def _check_policy(cls, v: str) -> str:
        violation = password_policy_violation(v)
        if violation is not None:
            raise ValueError(violation)
        return v


class RefreshRequest(_AuthRequest):
    """Request body for POST /auth/refresh. Falls back to the cookie."""

    refresh_token: Optional[str] = None


class LogoutRequest(_AuthRequest):
    """Request body for POST /auth/logout. Falls back to the cookie."""

    refresh_token: Optional[str] = None
