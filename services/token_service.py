"""
Token engine — access JWTs and rotating refresh tokens.

Access tokens are stateless PyJWT tokens carrying the identity id, phone
and the password version at mint time. They are never stored; they die by
expiry or when the caller notices the password version moved on.

Refresh tokens are opaque random strings. Only their SHA-256 is stored
(`refresh-tokens`), together with expiry, revocation and rotation lineage.
Rotation revokes the presented token with a conditional update before the
successor is minted, so two concurrent refreshes on one token cannot both
succeed. Every refresh token is stamped with the identity's password version
and session epoch at login; successors inherit the stamp, so a chain started
before a password change or logout-all can be told apart from a fresh one.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from bson import ObjectId

from config import JWTSettings
from errors import AuthenticationError
from repositories.protocol import RefreshTokenStore
from schemas.models.identity import IdentityDoc
from schemas.models.refresh_token import RefreshTokenDoc
from shared.crypto import hash_token
from shared.datetime_utils import Clock, as_utc, utc_now
from shared.generators import RandomSource, SecureRandomSource
from shared.logging import get_logger, hash_ip

log = get_logger(__name__)

ACCESS_TOKEN_TYPE = "access"
REFRESH_TOKEN_BYTES = 32


@dataclass(frozen=True)
class AccessTokenClaims:
    identity_id: str
    phone: str
    password_version: int
    expires_at: datetime


@dataclass(frozen=True)
class IssuedRefreshToken:
    token: str
    expires_at: datetime
    record: RefreshTokenDoc


@dataclass(frozen=True)
class AuthTokens:
    access_token: str
    refresh_token: str
    refresh_expires_at: datetime


class TokenService:
    def __init__(
        self,
        settings: JWTSettings,
        store: RefreshTokenStore,
        random_source: Optional[RandomSource] = None,
        clock: Clock = utc_now,
    ) -> None:
        self._settings = settings
        self._store = store
        self._random = random_source or SecureRandomSource()
        self._clock = clock

        if settings.use_rs256:
            # Support keys provided via env with literal \n sequences
            self._algorithm = "RS256"
            self._signing_key = settings.jwt_private_key.replace("\\n", "\n")
            self._verify_key = settings.jwt_public_key.replace("\\n", "\n")
        else:
            if not settings.jwt_secret:
                raise RuntimeError(
                    "JWT_SECRET must be set when RS256 keys are not provided"
                )
            self._algorithm = "HS256"
            self._signing_key = self._verify_key = settings.jwt_secret

    # ── Access tokens ─────────────────────────────────────────────────────

    def generate_access_token(
        self, identity_id: str, phone: str, password_version: int
    ) -> str:
        now = self._clock()
        claims = {
            "iss": self._settings.jwt_issuer,
            "aud": self._settings.jwt_audience,
            "sub": str(identity_id),
            "phone": phone,
            "pv": password_version,
            "type": ACCESS_TOKEN_TYPE,
            "iat": int(now.timestamp()),
            "exp": int(
                (now + timedelta(seconds=self._settings.access_token_ttl_seconds)).timestamp()
            ),
        }
        return jwt.encode(claims, self._signing_key, algorithm=self._algorithm)

    def verify_access_token(self, token: str) -> AccessTokenClaims:
        """Check signature, issuer, audience and expiry.

        The password version is returned, not checked: the token engine has
        no view of current identity state.

        Raises:
            AuthenticationError: ``TOKEN_EXPIRED`` or ``INVALID_TOKEN``.
        """
        try:
            # Expiry is checked below against the injected clock
            claims = jwt.decode(
                token,
                self._verify_key,
                algorithms=[self._algorithm],
                audience=self._settings.jwt_audience,
                issuer=self._settings.jwt_issuer,
                options={
                    "require": ["exp", "iat", "sub"],
                    "verify_exp": False,
                    "verify_iat": False,
                },
            )
        except jwt.PyJWTError:
            raise AuthenticationError(
                "Invalid or expired access token", code="INVALID_TOKEN"
            ) from None

        password_version = claims.get("pv")
        exp = claims.get("exp")
        if (
            claims.get("type") != ACCESS_TOKEN_TYPE
            or not isinstance(password_version, int)
            or isinstance(password_version, bool)
            or not isinstance(claims.get("phone"), str)
            or not isinstance(exp, int)
        ):
            raise AuthenticationError(
                "Invalid or expired access token", code="INVALID_TOKEN"
            )

        expires_at = datetime.fromtimestamp(exp, tz=timezone.utc)
        if self._clock() >= expires_at:
            raise AuthenticationError("Access token has expired", code="TOKEN_EXPIRED")

        return AccessTokenClaims(
            identity_id=claims["sub"],
            phone=claims["phone"],
            password_version=password_version,
            expires_at=expires_at,
        )

    # ── Refresh tokens ────────────────────────────────────────────────────

    async def generate_refresh_token(
        self,
        identity: IdentityDoc,
        ip: str,
        user_agent: str,
        parent: Optional[RefreshTokenDoc] = None,
    ) -> IssuedRefreshToken:
        """Mint and persist a refresh token. The plaintext is returned once.

        A successor (*parent* given) keeps the parent's session stamp rather
        than the identity's current one.
        """
        now = self._clock()
        token = self._random.secure_token(REFRESH_TOKEN_BYTES)
        ttl_days = self._random.randint(
            self._settings.refresh_token_min_ttl_days,
            self._settings.refresh_token_max_ttl_days,
        )
        expires_at = now + timedelta(days=ttl_days)

        record = await self._store.insert(
            RefreshTokenDoc(
                identity_id=identity.id,
                token_hash=hash_token(token),
                expires_at=expires_at,
                ip=ip,
                user_agent=user_agent,
                rotated_from=parent.id if parent else None,
                password_version=(
                    parent.password_version if parent else identity.password_version
                ),
                session_epoch=parent.session_epoch if parent else identity.session_epoch,
                created_at=now,
            )
        )
        return IssuedRefreshToken(token=token, expires_at=expires_at, record=record)

    async def verify_refresh_token(self, token: str) -> RefreshTokenDoc:
        """Resolve a usable refresh token by hash.

        Raises:
            AuthenticationError: ``INVALID_REFRESH_TOKEN``,
                ``REFRESH_TOKEN_REVOKED`` or ``REFRESH_TOKEN_EXPIRED``.
        """
        record = await self._store.find_by_hash(hash_token(token))
        if record is None:
            raise AuthenticationError(
                "Invalid refresh token", code="INVALID_REFRESH_TOKEN"
            )

        if record.is_revoked:
            successor = await self._store.find_successor(record.id)
            if successor is not None:
                log.warning(
                    "refresh_token_reuse_detected",
                    token_id=str(record.id),
                    identity_id=str(record.identity_id),
                    successor_id=str(successor.id),
                )
            raise AuthenticationError(
                "Refresh token has been revoked", code="REFRESH_TOKEN_REVOKED"
            )

        if self._clock() > as_utc(record.expires_at):
            raise AuthenticationError(
                "Refresh token has expired", code="REFRESH_TOKEN_EXPIRED"
            )

        return record

    async def rotate_refresh_token(
        self, old_token: str, identity: IdentityDoc, ip: str, user_agent: str
    ) -> IssuedRefreshToken:
        old = await self.verify_refresh_token(old_token)
        if old.identity_id != identity.id:
            log.warning(
                "refresh_token_owner_mismatch",
                token_id=str(old.id),
                identity_id=str(identity.id),
            )
            raise AuthenticationError(
                "Invalid refresh token", code="INVALID_REFRESH_TOKEN"
            )

        revoked = await self._store.revoke_if_active(old.id, self._clock())
        if revoked is None:
            # Lost a race with a concurrent rotation, logout or expiry
            log.warning(
                "refresh_token_rotation_conflict",
                token_id=str(old.id),
                identity_id=str(identity.id),
            )
            raise AuthenticationError(
                "Refresh token has been revoked", code="REFRESH_TOKEN_REVOKED"
            )

        issued = await self.generate_refresh_token(
            identity, ip, user_agent, parent=old
        )
        log.info(
            "refresh_token_rotated",
            identity_id=str(identity.id),
            old_token_id=str(old.id),
            new_token_id=str(issued.record.id),
            ip_hash=hash_ip(ip),
        )
        return issued

    async def revoke_refresh_token(self, token: str) -> None:
        """Idempotent: unknown or already-revoked tokens are ignored silently."""
        revoked = await self._store.revoke_by_hash(hash_token(token), self._clock())
        if revoked:
            log.info("refresh_token_revoked")

    async def revoke_all_for_identity(self, identity_id: ObjectId) -> int:
        count = await self._store.revoke_all_for_identity(identity_id, self._clock())
        log.info(
            "refresh_tokens_revoked_all", identity_id=str(identity_id), count=count
        )
        return count

    async def generate_tokens(
        self, identity: IdentityDoc, ip: str, user_agent: str
    ) -> AuthTokens:
        access_token = self.generate_access_token(
            str(identity.id), identity.phone, identity.password_version
        )
        issued = await self.generate_refresh_token(identity, ip, user_agent)
        return AuthTokens(
            access_token=access_token,
            refresh_token=issued.token,
            refresh_expires_at=issued.expires_at,
        )
