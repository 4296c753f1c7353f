"""
OTP engine — issues and verifies phone one-time codes.

Lifecycle of an OTP request: issued → consumed | expired | attempts-exhausted.
All three end states are terminal.

Verification order (fixed, before anything is written):
    1. unknown request id  → OTP_REQUEST_NOT_FOUND
    2. already consumed    → OTP_ALREADY_USED
    3. past expires_at     → OTP_EXPIRED
    4. attempts_left <= 0  → OTP_ATTEMPTS_EXHAUSTED
Only then is an attempt consumed (conditional decrement in the store) and
the code compared. An expired or consumed request therefore never loses an
attempt.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta

from bson import ObjectId

from config import OtpSettings
from errors import NotFoundError, OtpVerificationError, RateLimitError
from infrastructure.sms.protocol import SmsProvider
from repositories.protocol import OtpStore
from schemas.models.base import parse_object_id
from schemas.models.otp_request import OtpRequestDoc
from shared.crypto import hash_token, token_matches
from shared.datetime_utils import Clock, as_utc, seconds_until, utc_now
from shared.generators import RandomSource, SecureRandomSource
from shared.logging import get_logger, hash_ip, mask_phone

log = get_logger(__name__)


@dataclass(frozen=True)
class OtpIssued:
    request_id: str
    expires_at: datetime


@dataclass(frozen=True)
class VerifiedOtp:
    request_id: str
    phone: str
    purpose: str


class OtpService:
    def __init__(
        self,
        settings: OtpSettings,
        store: OtpStore,
        sms_provider: SmsProvider,
        random_source: RandomSource | None = None,
        clock: Clock = utc_now,
    ) -> None:
        self._settings = settings
        self._store = store
        self._sms = sms_provider
        self._random = random_source or SecureRandomSource()
        self._clock = clock
        self._deliveries: set[asyncio.Task] = set()

    async def create_otp_request(
        self, phone: str, purpose: str, request_ip: str, user_agent: str
    ) -> OtpIssued:
        """Issue a code for *phone* (already canonical) and hand it to SMS.

        The per-phone resend slot is claimed in one write before anything
        else happens, so of several concurrent requests only one issues a
        code. Consuming the code frees the slot early.

        Raises:
            RateLimitError: ``OTP_COOLDOWN`` while an unconsumed request for
                the phone is inside its resend window.
        """
        now = self._clock()
        oid = ObjectId()
        resend_available_at = now + timedelta(
            seconds=self._settings.otp_resend_cooldown_seconds
        )

        busy_until = await self._store.claim_resend_slot(
            phone, oid, now, resend_available_at
        )
        if busy_until is not None:
            retry_after = max(1, seconds_until(busy_until, now))
            log.info(
                "otp_request_throttled",
                phone=mask_phone(phone),
                retry_after=retry_after,
            )
            raise RateLimitError(
                f"Please wait {retry_after} seconds before requesting a new OTP",
                code="OTP_COOLDOWN",
                retry_after=retry_after,
            )

        code = self._random.otp_code(self._settings.otp_code_length)
        ttl_seconds = self._random.randint(
            self._settings.otp_min_ttl_seconds, self._settings.otp_max_ttl_seconds
        )
        expires_at = now + timedelta(seconds=ttl_seconds)

        doc = await self._store.insert(
            OtpRequestDoc(
                _id=oid,
                phone=phone,
                purpose=purpose,
                code_hash=hash_token(code),
                expires_at=expires_at,
                attempts_left=self._settings.otp_max_attempts,
                resend_available_at=resend_available_at,
                request_ip=request_ip,
                user_agent=user_agent,
                created_at=now,
            )
        )
        request_id = str(doc.id)
        log.info(
            "otp_request_created",
            request_id=request_id,
            phone=mask_phone(phone),
            purpose=purpose,
            ttl_seconds=ttl_seconds,
            ip_hash=hash_ip(request_ip),
        )

        self._schedule_delivery(request_id, phone, code)
        return OtpIssued(request_id=request_id, expires_at=expires_at)

    async def verify_otp(self, request_id: str, code: str) -> VerifiedOtp:
        """Consume one attempt against *request_id* and check *code*.

        Raises:
            NotFoundError: ``OTP_REQUEST_NOT_FOUND``.
            OtpVerificationError: ``OTP_ALREADY_USED``, ``OTP_EXPIRED``,
                ``OTP_ATTEMPTS_EXHAUSTED`` or ``INVALID_OTP``.
        """
        oid = parse_object_id(request_id)
        doc = await self._store.get(oid) if oid is not None else None
        if doc is None:
            raise NotFoundError("Invalid OTP request", code="OTP_REQUEST_NOT_FOUND")

        now = self._clock()
        self._ensure_verifiable(doc, now)

        attempted = await self._store.consume_attempt(doc.id, now)
        if attempted is None:
            # Someone else changed the request between our read and the
            # guarded decrement; report the state they left behind.
            current = await self._store.get(doc.id)
            if current is not None:
                self._ensure_verifiable(current, now)
            raise OtpVerificationError(
                "Maximum verification attempts exceeded",
                code="OTP_ATTEMPTS_EXHAUSTED",
            )

        if not token_matches(code, attempted.code_hash):
            log.info(
                "otp_verification_failed",
                request_id=request_id,
                attempts_left=attempted.attempts_left,
            )
            if attempted.attempts_left <= 0:
                raise OtpVerificationError(
                    "Invalid OTP code. Maximum attempts exceeded",
                    code="OTP_ATTEMPTS_EXHAUSTED",
                    details={"attempts_left": 0},
                )
            raise OtpVerificationError(
                f"Invalid OTP code. {attempted.attempts_left} attempts remaining",
                details={"attempts_left": attempted.attempts_left},
            )

        consumed = await self._store.mark_used(doc.id, now)
        if consumed is None:
            raise OtpVerificationError(
                "OTP has already been used", code="OTP_ALREADY_USED"
            )

        await self._store.release_resend_slot(consumed.phone, consumed.id)
        log.info(
            "otp_verified",
            request_id=request_id,
            phone=mask_phone(consumed.phone),
            purpose=consumed.purpose,
        )
        return VerifiedOtp(
            request_id=request_id, phone=consumed.phone, purpose=consumed.purpose
        )

    async def attach_identity(self, request_id: str, identity_id: ObjectId) -> None:
        """Record which identity a consumed request ended up verifying."""
        oid = parse_object_id(request_id)
        if oid is not None:
            await self._store.link_identity(oid, identity_id)

    async def wait_for_deliveries(self) -> None:
        """Wait for in-flight SMS sends (shutdown and tests)."""
        if self._deliveries:
            await asyncio.gather(*self._deliveries, return_exceptions=True)

    @staticmethod
    def _ensure_verifiable(doc: OtpRequestDoc, now: datetime) -> None:
        if doc.used_at is not None:
            raise OtpVerificationError(
                "OTP has already been used", code="OTP_ALREADY_USED"
            )
        if now > as_utc(doc.expires_at):
            raise OtpVerificationError("OTP has expired", code="OTP_EXPIRED")
        if doc.attempts_left <= 0:
            raise OtpVerificationError(
                "Maximum verification attempts exceeded",
                code="OTP_ATTEMPTS_EXHAUSTED",
            )

    def _schedule_delivery(self, request_id: str, phone: str, code: str) -> None:
        task = asyncio.create_task(self._deliver(request_id, phone, code))
        self._deliveries.add(task)
        task.add_done_callback(self._deliveries.discard)

    async def _deliver(self, request_id: str, phone: str, code: str) -> None:
        # The code is already stored and valid; a failed send only means the
        # user asks again after the cooldown.
        try:
            sent = await self._sms.send_otp(phone, code)
        except Exception as e:
            log.error(
                "otp_delivery_error",
                request_id=request_id,
                phone=mask_phone(phone),
                error=str(e),
                error_type=type(e).__name__,
            )
            return
        if not sent:
            log.warning(
                "otp_delivery_failed", request_id=request_id, phone=mask_phone(phone)
            )
