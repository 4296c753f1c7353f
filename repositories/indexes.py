"""Collection names and index bootstrap for the auth collections."""

from __future__ import annotations

from pymongo import ASCENDING, DESCENDING
from pymongo.asynchronous.database import AsyncDatabase

from shared.logging import get_logger

log = get_logger(__name__)

USERS_COLLECTION = "users"
OTP_REQUESTS_COLLECTION = "otp-requests"
OTP_COOLDOWNS_COLLECTION = "otp-cooldowns"
REFRESH_TOKENS_COLLECTION = "refresh-tokens"

# Expired OTP requests linger an hour for auditing before Mongo drops them
OTP_REQUEST_RETENTION_SECONDS = 3600


async def ensure_indexes(db: AsyncDatabase) -> None:
    users = db[USERS_COLLECTION]
    otp_requests = db[OTP_REQUESTS_COLLECTION]
    refresh_tokens = db[REFRESH_TOKENS_COLLECTION]
    otp_cooldowns = db[OTP_COOLDOWNS_COLLECTION]

    # users
    await users.create_index([("phone", ASCENDING)], unique=True)
    await users.create_index([("status", ASCENDING)])

    # otp-requests: per-phone and per-IP audit, TTL cleanup
    await otp_requests.create_index([("phone", ASCENDING), ("created_at", DESCENDING)])
    await otp_requests.create_index(
        [("request_ip", ASCENDING), ("created_at", DESCENDING)]
    )
    await otp_requests.create_index(
        [("expires_at", ASCENDING)], expireAfterSeconds=OTP_REQUEST_RETENTION_SECONDS
    )

    # otp-cooldowns: _id is the phone; a slot document is dropped once it lapses
    await otp_cooldowns.create_index(
        [("resend_available_at", ASCENDING)], expireAfterSeconds=0
    )

    # refresh-tokens: hash lookup, revoke-all, rotation chain, TTL cleanup
    await refresh_tokens.create_index([("token_hash", ASCENDING)], unique=True)
    await refresh_tokens.create_index(
        [("identity_id", ASCENDING), ("revoked_at", ASCENDING)]
    )
    await refresh_tokens.create_index([("rotated_from", ASCENDING)])
    await refresh_tokens.create_index([("expires_at", ASCENDING)], expireAfterSeconds=0)

    log.info("mongo_indexes_ensured")
