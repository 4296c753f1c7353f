"""
Response DTOs for authentication endpoints.

UserResponse          — identity summary embedded in several responses
OtpRequestResponse    — POST /auth/otp/request  (200)
AuthSessionResponse   — POST /auth/otp/verify, POST /auth/password/login  (200)
RefreshResponse       — POST /auth/refresh  (200)
MeResponse            — GET /auth/me  (200)

Serialized with camelCase keys (route handlers dump with by_alias=True).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from schemas.models.identity import IdentityDoc, IdentityStatus, Role


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class UserResponse(_CamelModel):
    """Identity summary. Never carries the password hash or lockout state."""

    id: str
    phone: str
    is_phone_verified: bool
    status: IdentityStatus
    roles: list[Role]
    password_set: bool
    last_login_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    @classmethod
    def from_identity(cls, identity: IdentityDoc) -> "UserResponse":
        return cls(
            id=str(identity.id),
            phone=identity.phone,
            is_phone_verified=identity.phone_verified,
            status=identity.status,
            roles=list(identity.roles),
            password_set=identity.password_set,
            last_login_at=identity.last_login_at,
            created_at=identity.created_at,
        )


class OtpRequestResponse(_CamelModel):
    """Response body for POST /auth/otp/request (200)."""

    request_id: str
    message: str
    expires_at: datetime


class AuthSessionResponse(_CamelModel):
    """Response body for a successful OTP or password login (200)."""

    user: UserResponse
    access_token: str
    refresh_token: str


class RefreshResponse(_CamelModel):
    """Response body for POST /auth/refresh (200)."""

    access_token: str
    refresh_token: str


class MeResponse(_CamelModel):
    """Response body for GET /auth/me (200)."""

    user: UserResponse
