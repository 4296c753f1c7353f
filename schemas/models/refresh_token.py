"""
Refresh token document model.

Maps to the `refresh-tokens` MongoDB collection.

token_hash stores SHA-256(token) — the plain token is returned to the
client once and never persisted. revoked_at is a soft revoke used by
rotation, logout and logout-all. rotated_from points at the predecessor in
a rotation chain (None for the first token of a session).

password_version and session_epoch copy the identity's values when the
session starts and are inherited unchanged through rotation; a refresh
whose stamp no longer matches the identity is refused.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import Field

from schemas.models.base import MongoBaseModel, PyObjectId


class RefreshTokenDoc(MongoBaseModel):
    """Document model for the `refresh-tokens` collection."""

    identity_id: PyObjectId
    token_hash: str
    expires_at: datetime
    revoked_at: Optional[datetime] = None
    ip: str = ""
    user_agent: str = ""
    rotated_from: Optional[PyObjectId] = None
    password_version: int = Field(default=0, ge=0)
    session_epoch: int = Field(default=0, ge=0)
    created_at: Optional[datetime] = None

    @property
    def is_revoked(self) -> bool:
        return self.revoked_at is not None
