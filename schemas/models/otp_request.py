"""
OTP request document model.

Maps to the `otp-requests` MongoDB collection, one document per issuance.

code_hash stores SHA-256(otp_code) — the plain OTP is never stored.
used_at is None until the code is consumed (set exactly once).
attempts_left only ever decreases; at 0 the request is dead regardless of
the code presented.
identity_id links the request to the identity it verified, if any; a
register request precedes the identity, so ownership is by phone.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import Field

from schemas.models.base import MongoBaseModel, PyObjectId

PURPOSE_REGISTER = "register"
OtpPurpose = Literal["login", "register"]


class OtpRequestDoc(MongoBaseModel):
    """Document model for the `otp-requests` collection."""

    phone: str
    purpose: OtpPurpose
    code_hash: str
    expires_at: datetime
    attempts_left: int = Field(ge=0)
    resend_available_at: datetime
    request_ip: str = ""
    user_agent: str = ""
    used_at: Optional[datetime] = None
    identity_id: Optional[PyObjectId] = None
    created_at: Optional[datetime] = None
