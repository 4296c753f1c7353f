"""
Identity document model.

Maps to the `users` MongoDB collection — the auth-only account record,
one per phone number. Role-specific profile data lives elsewhere.

password_hash is None for OTP-only identities that never set a password.
password_version starts at 0 and is incremented on every password change;
access tokens embed it and are rejected once it moves on. session_epoch is
incremented by logout-all; refresh tokens minted under an older epoch are
refused even if a revoke missed them.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import Field

from schemas.models.base import MongoBaseModel

STATUS_ACTIVE = "active"
STATUS_SUSPENDED = "suspended"
IdentityStatus = Literal["active", "inactive", "suspended"]

Role = Literal["seeker", "recruiter"]


class IdentityDoc(MongoBaseModel):
    """Document model for the `users` collection."""

    phone: str
    password_hash: Optional[str] = None
    phone_verified: bool = False
    status: IdentityStatus = STATUS_ACTIVE
    roles: list[Role] = []
    last_login_at: Optional[datetime] = None
    password_version: int = Field(default=0, ge=0)
    session_epoch: int = Field(default=0, ge=0)
    failed_login_count: int = Field(default=0, ge=0)
    locked_until: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.status == STATUS_ACTIVE

    @property
    def password_set(self) -> bool:
        return self.password_hash is not None
