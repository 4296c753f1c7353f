"""
AuthService — composes the OTP engine, the token engine and the identity
store into the user-facing flows.

Flows:
    request_otp            → OtpService.create_otp_request
    verify_otp_and_login   → verify OTP, find-or-create identity, mint tokens
    password_login         → check password (with lockout), mint tokens
    set_password           → new hash + password_version bump, revoke sessions
    refresh                → rotate refresh token, new access token
    logout / logout_all    → revoke one / every refresh token
    authenticate           → the bearer-token gate for protected endpoints

Password-login failures are generic ("Invalid phone or password") for both
an unknown phone and a wrong password. Two answers do depend on the account
existing: PASSWORD_NOT_SET (409) sends an OTP-only user back to OTP login,
and ACCOUNT_LOCKED (429) is reported before the password is checked, so a
locked account costs no argon2 work and an attacker gains nothing from
further guesses. An unknown phone never locks and always gets the 401.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from bson import ObjectId

from config import LoginSettings
from errors import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    InvalidCredentialsError,
    NotFoundError,
    RateLimitError,
    ValidationError,
)
from repositories.protocol import IdentityStore
from schemas.models.base import parse_object_id
from schemas.models.identity import IdentityDoc
from schemas.models.otp_request import PURPOSE_REGISTER
from schemas.models.refresh_token import RefreshTokenDoc
from services.otp_service import OtpIssued, OtpService
from services.token_service import AccessTokenClaims, AuthTokens, TokenService
from shared.crypto import hash_password, verify_password
from shared.datetime_utils import Clock, as_utc, seconds_until, utc_now
from shared.logging import get_logger, hash_ip, mask_phone
from shared.validators import password_policy_violation

log = get_logger(__name__)

INVALID_CREDENTIALS_MESSAGE = "Invalid phone or password"


@dataclass(frozen=True)
class AuthResult:
    identity: IdentityDoc
    tokens: AuthTokens


@dataclass(frozen=True)
class Principal:
    """The authenticated caller attached to a protected request."""

    identity: IdentityDoc
    claims: AccessTokenClaims

    @property
    def roles(self) -> list[str]:
        return self.identity.roles


class AuthService:
    def __init__(
        self,
        identity_store: IdentityStore,
        otp_service: OtpService,
        token_service: TokenService,
        settings: Optional[LoginSettings] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._identities = identity_store
        self._otp = otp_service
        self._tokens = token_service
        self._settings = settings or LoginSettings()
        self._clock = clock

    # ── OTP flow ──────────────────────────────────────────────────────────

    async def request_otp(
        self, phone: str, purpose: str, ip: str, user_agent: str
    ) -> OtpIssued:
        return await self._otp.create_otp_request(phone, purpose, ip, user_agent)

    async def verify_otp_and_login(
        self,
        request_id: str,
        code: str,
        ip: str,
        user_agent: str,
        role: Optional[str] = None,
    ) -> AuthResult:
        verified = await self._otp.verify_otp(request_id, code)

        now = self._clock()
        identity = await self._identities.upsert_verified_login(verified.phone, now)

        if (
            verified.purpose == PURPOSE_REGISTER
            and role is not None
            and role not in identity.roles
        ):
            identity = await self._identities.add_role(identity.id, role, now) or identity
            log.info("identity_role_granted", identity_id=str(identity.id), role=role)

        self._ensure_active(identity)
        await self._otp.attach_identity(request_id, identity.id)

        tokens = await self._tokens.generate_tokens(identity, ip, user_agent)
        log.info(
            "otp_login_succeeded",
            identity_id=str(identity.id),
            phone=mask_phone(identity.phone),
            purpose=verified.purpose,
            ip_hash=hash_ip(ip),
        )
        return AuthResult(identity=identity, tokens=tokens)

    # ── Password flow ─────────────────────────────────────────────────────

    async def password_login(
        self, phone: str, password: str, ip: str, user_agent: str
    ) -> AuthResult:
        identity = await self._identities.find_by_phone(phone)
        if identity is None:
            log.info(
                "password_login_failed",
                phone=mask_phone(phone),
                reason="unknown_phone",
                ip_hash=hash_ip(ip),
            )
            raise InvalidCredentialsError(INVALID_CREDENTIALS_MESSAGE)

        if not identity.password_set:
            raise ConflictError(
                "Password is not set for this account. Please login with OTP",
                code="PASSWORD_NOT_SET",
            )

        now = self._clock()
        locked_until = as_utc(identity.locked_until)
        if locked_until is not None and locked_until > now:
            retry_after = max(1, seconds_until(locked_until, now))
            log.warning(
                "password_login_locked",
                identity_id=str(identity.id),
                retry_after=retry_after,
            )
            raise RateLimitError(
                "Too many failed login attempts. Try again later",
                code="ACCOUNT_LOCKED",
                retry_after=retry_after,
            )

        # argon2 is CPU-bound; keep it off the event loop
        matches = await asyncio.to_thread(
            verify_password, password, identity.password_hash
        )
        if not matches:
            updated = await self._identities.record_failed_login(
                identity.id,
                now,
                self._settings.login_max_failures,
                now + timedelta(seconds=self._settings.login_lockout_seconds),
            )
            log.info(
                "password_login_failed",
                identity_id=str(identity.id),
                reason="wrong_password",
                locked=bool(updated is not None and updated.locked_until),
                ip_hash=hash_ip(ip),
            )
            raise InvalidCredentialsError(INVALID_CREDENTIALS_MESSAGE)

        self._ensure_active(identity)

        identity = await self._identities.record_login(identity.id, now) or identity
        tokens = await self._tokens.generate_tokens(identity, ip, user_agent)
        log.info(
            "password_login_succeeded",
            identity_id=str(identity.id),
            ip_hash=hash_ip(ip),
        )
        return AuthResult(identity=identity, tokens=tokens)

    async def set_password(self, identity_id: ObjectId, new_password: str) -> IdentityDoc:
        """Set or replace the password and end every existing session.

        Bumping password_version rejects outstanding access tokens; revoking
        all refresh tokens stops them from being renewed. The bump lands
        before the revoke-all, which is what lets a concurrent refresh notice
        it (see refresh).
        """
        violation = password_policy_violation(new_password)
        if violation is not None:
            raise ValidationError(violation, field="newPassword")

        password_hash = await asyncio.to_thread(hash_password, new_password)
        identity = await self._identities.set_password(
            identity_id, password_hash, self._clock()
        )
        if identity is None:
            raise NotFoundError("User not found", code="USER_NOT_FOUND")

        revoked = await self._tokens.revoke_all_for_identity(identity.id)
        log.info(
            "password_set",
            identity_id=str(identity.id),
            password_version=identity.password_version,
            sessions_revoked=revoked,
        )
        return identity

    # ── Sessions ──────────────────────────────────────────────────────────

    async def refresh(
        self, refresh_token: Optional[str], ip: str, user_agent: str
    ) -> AuthTokens:
        if not refresh_token:
            raise AuthenticationError(
                "Refresh token is required", code="REFRESH_TOKEN_REQUIRED"
            )

        record = await self._tokens.verify_refresh_token(refresh_token)
        identity = await self._identities.find_by_id(record.identity_id)
        if identity is None:
            raise AuthenticationError("User not found", code="USER_NOT_FOUND")
        self._ensure_active(identity)
        self._ensure_session_current(record, identity)

        issued = await self._tokens.rotate_refresh_token(
            refresh_token, identity, ip, user_agent
        )

        # A password change or logout-all landing between the revoke of the
        # old token and the insert of its successor misses the successor in
        # its revoke-all; the identity re-read here catches it.
        try:
            current = await self._identities.find_by_id(identity.id)
            if current is None:
                raise AuthenticationError("User not found", code="USER_NOT_FOUND")
            self._ensure_session_current(issued.record, current)
        except AuthenticationError:
            await self._tokens.revoke_refresh_token(issued.token)
            raise

        access_token = self._tokens.generate_access_token(
            str(current.id), current.phone, current.password_version
        )
        return AuthTokens(
            access_token=access_token,
            refresh_token=issued.token,
            refresh_expires_at=issued.expires_at,
        )

    async def logout(self, refresh_token: Optional[str]) -> None:
        if refresh_token:
            await self._tokens.revoke_refresh_token(refresh_token)

    async def logout_all(self, identity_id: ObjectId) -> int:
        """Revoke every refresh token of *identity_id*.

        The session epoch moves first, so a rotation already past its revoke
        step cannot leave a usable successor behind.
        """
        await self._identities.bump_session_epoch(identity_id, self._clock())
        return await self._tokens.revoke_all_for_identity(identity_id)

    async def get_current_identity(self, identity_id: ObjectId) -> IdentityDoc:
        identity = await self._identities.find_by_id(identity_id)
        if identity is None:
            raise NotFoundError("User not found", code="USER_NOT_FOUND")
        return identity

    async def authenticate(self, access_token: str) -> Principal:
        """Resolve a bearer token to the current identity.

        Raises:
            AuthenticationError: ``TOKEN_EXPIRED``, ``INVALID_TOKEN``,
                ``USER_NOT_FOUND`` or ``SESSION_EXPIRED``.
            ForbiddenError: ``ACCOUNT_DISABLED``.
        """
        claims = self._tokens.verify_access_token(access_token)

        identity_id = parse_object_id(claims.identity_id)
        identity = None
        if identity_id is not None:
            identity = await self._identities.find_by_id(identity_id)
        if identity is None:
            raise AuthenticationError("User not found", code="USER_NOT_FOUND")

        if identity.password_version != claims.password_version:
            raise AuthenticationError(
                "Session expired. Please login again", code="SESSION_EXPIRED"
            )

        self._ensure_active(identity)
        return Principal(identity=identity, claims=claims)

    @staticmethod
    def _ensure_active(identity: IdentityDoc) -> None:
        if not identity.is_active:
            log.warning(
                "inactive_identity_rejected",
                identity_id=str(identity.id),
                status=identity.status,
            )
            raise ForbiddenError("Account is disabled", code="ACCOUNT_DISABLED")

    @staticmethod
    def _ensure_session_current(record: RefreshTokenDoc, identity: IdentityDoc) -> None:
        if (
            record.password_version != identity.password_version
            or record.session_epoch != identity.session_epoch
        ):
            log.info(
                "refresh_session_superseded",
                identity_id=str(identity.id),
                token_id=str(record.id),
            )
            raise AuthenticationError(
                "Session expired. Please login again", code="SESSION_EXPIRED"
            )
