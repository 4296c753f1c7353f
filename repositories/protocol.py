"""Store protocols — services depend on these, not on the Mongo implementations.

Every method that mutates state is a single conditional update: the guard
and the write happen together in the store, never as read-modify-write in
the caller. In-memory fakes used by the tests implement the same contract.
"""

from datetime import datetime
from typing import Optional, Protocol

from bson import ObjectId

from schemas.models.identity import IdentityDoc
from schemas.models.otp_request import OtpRequestDoc
from schemas.models.refresh_token import RefreshTokenDoc


class IdentityStore(Protocol):
    async def find_by_id(self, identity_id: ObjectId) -> Optional[IdentityDoc]: ...

    async def find_by_phone(self, phone: str) -> Optional[IdentityDoc]: ...

    async def upsert_verified_login(self, phone: str, now: datetime) -> IdentityDoc:
        """Find-or-create by phone; mark verified, stamp login, reset failures."""
        ...

    async def record_login(
        self, identity_id: ObjectId, now: datetime
    ) -> Optional[IdentityDoc]:
        """Stamp last login and clear the failed-login counter and lockout."""
        ...

    async def record_failed_login(
        self,
        identity_id: ObjectId,
        now: datetime,
        max_failures: int,
        locked_until: datetime,
    ) -> Optional[IdentityDoc]:
        """Increment failures; on reaching *max_failures* lock until *locked_until*."""
        ...

    async def set_password(
        self, identity_id: ObjectId, password_hash: str, now: datetime
    ) -> Optional[IdentityDoc]:
        """Replace the hash and increment password_version in one write."""
        ...

    async def bump_session_epoch(
        self, identity_id: ObjectId, now: datetime
    ) -> Optional[IdentityDoc]:
        """Increment session_epoch; refresh tokens stamped earlier stop working."""
        ...

    async def add_role(
        self, identity_id: ObjectId, role: str, now: datetime
    ) -> Optional[IdentityDoc]: ...


class OtpStore(Protocol):
    async def insert(self, doc: OtpRequestDoc) -> OtpRequestDoc: ...

    async def get(self, request_id: ObjectId) -> Optional[OtpRequestDoc]: ...

    async def claim_resend_slot(
        self, phone: str, request_id: ObjectId, now: datetime, until: datetime
    ) -> Optional[datetime]:
        """Take the resend slot for *phone* until *until* on behalf of *request_id*.

        Succeeds iff the slot is free (elapsed or released). Returns ``None``
        on success, otherwise the time the current holder frees it.
        """
        ...

    async def release_resend_slot(self, phone: str, request_id: ObjectId) -> None:
        """Free the slot early, iff *request_id* still holds it."""
        ...

    async def consume_attempt(
        self, request_id: ObjectId, now: datetime
    ) -> Optional[OtpRequestDoc]:
        """Decrement attempts_left iff unused, unexpired and attempts_left > 0.

        Returns the updated document, or ``None`` when the guard failed.
        """
        ...

    async def mark_used(
        self, request_id: ObjectId, now: datetime
    ) -> Optional[OtpRequestDoc]:
        """Set used_at iff it is still unset. ``None`` when already consumed."""
        ...

    async def link_identity(self, request_id: ObjectId, identity_id: ObjectId) -> None: ...


class RefreshTokenStore(Protocol):
    async def insert(self, doc: RefreshTokenDoc) -> RefreshTokenDoc: ...

    async def find_by_hash(self, token_hash: str) -> Optional[RefreshTokenDoc]: ...

    async def find_successor(self, token_id: ObjectId) -> Optional[RefreshTokenDoc]: ...

    async def revoke_if_active(
        self, token_id: ObjectId, now: datetime
    ) -> Optional[RefreshTokenDoc]:
        """Revoke iff not revoked and not expired; ``None`` when the guard failed."""
        ...

    async def revoke_by_hash(self, token_hash: str, now: datetime) -> bool:
        """Revoke iff present and not revoked. True when a token was revoked."""
        ...

    async def revoke_all_for_identity(self, identity_id: ObjectId, now: datetime) -> int: ...
