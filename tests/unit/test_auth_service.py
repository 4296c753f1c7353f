"""Unit tests for AuthService — the user-facing auth flows."""

import asyncio

import pytest
from bson import ObjectId

from errors import (
    AuthenticationError,
    ConflictError,
    ForbiddenError,
    InvalidCredentialsError,
    NotFoundError,
    OtpVerificationError,
    RateLimitError,
    ValidationError,
)
from schemas.models.identity import STATUS_SUSPENDED
from shared.crypto import hash_password, verify_password

PHONE = "+989121234567"
PASSWORD = "Str0ng!pass"


# ── Helpers ───────────────────────────────────────────────────────────────────


async def _otp_login(auth_service, purpose="login", role=None, phone=PHONE):
    issued = await auth_service.request_otp(phone, purpose, "1.2.3.4", "pytest")
    return await auth_service.verify_otp_and_login(
        issued.request_id, "123456", "1.2.3.4", "pytest", role=role
    )


def _with_password(identity_store, **fields):
    fields.setdefault("phone", PHONE)
    fields.setdefault("phone_verified", True)
    return identity_store.add(password_hash=hash_password(PASSWORD), **fields)


async def _end_sessions(auth_service, how, identity_id):
    if how == "set_password":
        await auth_service.set_password(identity_id, PASSWORD)
    else:
        await auth_service.logout_all(identity_id)


def _hold_successor_insert(monkeypatch, refresh_store):
    """Pause rotation after the old token is revoked, before the new one is stored."""
    reached, release = asyncio.Event(), asyncio.Event()
    insert = refresh_store.insert

    async def held_insert(doc):
        reached.set()
        await release.wait()
        return await insert(doc)

    monkeypatch.setattr(refresh_store, "insert", held_insert)
    return reached, release


# ── OTP login / register ──────────────────────────────────────────────────────


class TestVerifyOtpAndLogin:
    async def test_register_creates_verified_identity(
        self, auth_service, identity_store, token_service
    ):
        result = await _otp_login(auth_service, purpose="register", role="seeker")

        assert result.identity.phone == PHONE
        assert result.identity.phone_verified is True
        assert result.identity.roles == ["seeker"]
        assert result.identity.password_set is False
        assert len(identity_store.docs) == 1

        claims = token_service.verify_access_token(result.tokens.access_token)
        assert claims.identity_id == str(result.identity.id)
        assert claims.password_version == 0
        record = await token_service.verify_refresh_token(result.tokens.refresh_token)
        assert record.identity_id == result.identity.id

    async def test_login_reuses_existing_identity(
        self, auth_service, identity_store, clock
    ):
        first = await _otp_login(auth_service)
        clock.advance(minutes=2)
        second = await _otp_login(auth_service)
        assert second.identity.id == first.identity.id
        assert second.identity.last_login_at == clock()
        assert len(identity_store.docs) == 1

    async def test_role_ignored_for_login_purpose(self, auth_service):
        result = await _otp_login(auth_service, purpose="login", role="recruiter")
        assert result.identity.roles == []

    async def test_register_adds_second_role(self, auth_service, clock):
        await _otp_login(auth_service, purpose="register", role="seeker")
        clock.advance(minutes=2)
        result = await _otp_login(auth_service, purpose="register", role="recruiter")
        assert result.identity.roles == ["seeker", "recruiter"]

    async def test_links_otp_request_to_identity(self, auth_service, otp_store):
        result = await _otp_login(auth_service)
        stored = next(iter(otp_store.docs.values()))
        assert stored["identity_id"] == result.identity.id

    async def test_suspended_identity_rejected(self, auth_service, identity_store):
        identity_store.add(phone=PHONE, status=STATUS_SUSPENDED)
        with pytest.raises(ForbiddenError) as exc:
            await _otp_login(auth_service)
        assert exc.value.error_code == "ACCOUNT_DISABLED"

    async def test_wrong_code_creates_nothing(self, auth_service, identity_store):
        issued = await auth_service.request_otp(PHONE, "register", "ip", "ua")
        with pytest.raises(OtpVerificationError):
            await auth_service.verify_otp_and_login(
                issued.request_id, "000000", "ip", "ua"
            )
        assert identity_store.docs == {}


# ── Password login ────────────────────────────────────────────────────────────


class TestPasswordLogin:
    async def test_success(self, auth_service, identity_store, clock):
        identity = _with_password(identity_store)
        result = await auth_service.password_login(PHONE, PASSWORD, "ip", "ua")
        assert result.identity.id == identity.id
        assert result.identity.last_login_at == clock()
        assert result.tokens.access_token

    async def test_unknown_phone_is_generic(self, auth_service):
        with pytest.raises(InvalidCredentialsError) as exc:
            await auth_service.password_login(PHONE, PASSWORD, "ip", "ua")
        assert exc.value.status_code == 401
        assert exc.value.message == "Invalid phone or password"

    async def test_unknown_phone_never_locks(self, auth_service):
        for _ in range(10):
            with pytest.raises(InvalidCredentialsError) as exc:
                await auth_service.password_login(PHONE, "Wr0ng!pass", "ip", "ua")
            assert exc.value.status_code == 401

    async def test_wrong_password_is_generic(self, auth_service, identity_store):
        _with_password(identity_store)
        with pytest.raises(InvalidCredentialsError) as exc:
            await auth_service.password_login(PHONE, "Wr0ng!pass", "ip", "ua")
        assert exc.value.message == "Invalid phone or password"
        assert exc.value.error_code == "INVALID_CREDENTIALS"

    async def test_password_not_set(self, auth_service):
        await _otp_login(auth_service)
        with pytest.raises(ConflictError) as exc:
            await auth_service.password_login(PHONE, PASSWORD, "ip", "ua")
        assert exc.value.status_code == 409
        assert exc.value.error_code == "PASSWORD_NOT_SET"

    async def test_lockout_after_max_failures(
        self, auth_service, identity_store, clock
    ):
        _with_password(identity_store)
        for _ in range(5):
            with pytest.raises(InvalidCredentialsError):
                await auth_service.password_login(PHONE, "Wr0ng!pass", "ip", "ua")

        with pytest.raises(RateLimitError) as exc:
            await auth_service.password_login(PHONE, PASSWORD, "ip", "ua")
        assert exc.value.error_code == "ACCOUNT_LOCKED"
        assert exc.value.retry_after == 900

        clock.advance(seconds=900)
        result = await auth_service.password_login(PHONE, PASSWORD, "ip", "ua")
        assert result.identity.failed_login_count == 0
        assert result.identity.locked_until is None

    async def test_lockout_window_counts_from_last_failure(
        self, auth_service, identity_store, clock
    ):
        _with_password(identity_store)
        for _ in range(5):
            with pytest.raises(InvalidCredentialsError):
                await auth_service.password_login(PHONE, "Wr0ng!pass", "ip", "ua")
        clock.advance(seconds=600)
        with pytest.raises(RateLimitError) as exc:
            await auth_service.password_login(PHONE, PASSWORD, "ip", "ua")
        assert exc.value.retry_after == 300

    async def test_success_resets_failures(self, auth_service, identity_store):
        identity = _with_password(identity_store)
        for _ in range(3):
            with pytest.raises(InvalidCredentialsError):
                await auth_service.password_login(PHONE, "Wr0ng!pass", "ip", "ua")
        assert identity_store.docs[identity.id]["failed_login_count"] == 3
        await auth_service.password_login(PHONE, PASSWORD, "ip", "ua")
        assert identity_store.docs[identity.id]["failed_login_count"] == 0

    async def test_suspended_identity_rejected(self, auth_service, identity_store):
        _with_password(identity_store, status=STATUS_SUSPENDED)
        with pytest.raises(ForbiddenError) as exc:
            await auth_service.password_login(PHONE, PASSWORD, "ip", "ua")
        assert exc.value.error_code == "ACCOUNT_DISABLED"


# ── Set password ──────────────────────────────────────────────────────────────


class TestSetPassword:
    async def test_sets_hash_and_bumps_version(self, auth_service, identity_store):
        result = await _otp_login(auth_service)
        updated = await auth_service.set_password(result.identity.id, PASSWORD)
        assert updated.password_version == 1
        assert verify_password(PASSWORD, identity_store.docs[updated.id]["password_hash"])

    async def test_invalidates_earlier_access_tokens(self, auth_service):
        result = await _otp_login(auth_service)
        await auth_service.set_password(result.identity.id, PASSWORD)

        with pytest.raises(AuthenticationError) as exc:
            await auth_service.authenticate(result.tokens.access_token)
        assert exc.value.error_code == "SESSION_EXPIRED"
        assert exc.value.message == "Session expired. Please login again"

    async def test_revokes_refresh_tokens(self, auth_service, refresh_store):
        result = await _otp_login(auth_service)
        await auth_service.set_password(result.identity.id, PASSWORD)
        assert refresh_store.active_for(result.identity.id) == []
        with pytest.raises(AuthenticationError) as exc:
            await auth_service.refresh(result.tokens.refresh_token, "ip", "ua")
        assert exc.value.error_code == "REFRESH_TOKEN_REVOKED"

    async def test_login_after_set_password(self, auth_service, token_service):
        result = await _otp_login(auth_service)
        await auth_service.set_password(result.identity.id, PASSWORD)
        login = await auth_service.password_login(PHONE, PASSWORD, "ip", "ua")
        principal = await auth_service.authenticate(login.tokens.access_token)
        assert principal.claims.password_version == 1

    async def test_weak_password(self, auth_service):
        result = await _otp_login(auth_service)
        with pytest.raises(ValidationError) as exc:
            await auth_service.set_password(result.identity.id, "short")
        assert exc.value.field == "newPassword"

    async def test_unknown_identity(self, auth_service):
        with pytest.raises(NotFoundError) as exc:
            await auth_service.set_password(ObjectId(), PASSWORD)
        assert exc.value.error_code == "USER_NOT_FOUND"


# ── Refresh / logout ──────────────────────────────────────────────────────────


class TestRefresh:
    async def test_missing_token(self, auth_service):
        with pytest.raises(AuthenticationError) as exc:
            await auth_service.refresh(None, "ip", "ua")
        assert exc.value.error_code == "REFRESH_TOKEN_REQUIRED"

    async def test_rotates_and_mints_access_token(self, auth_service, token_service):
        result = await _otp_login(auth_service)
        tokens = await auth_service.refresh(result.tokens.refresh_token, "ip", "ua")
        assert tokens.refresh_token != result.tokens.refresh_token
        claims = token_service.verify_access_token(tokens.access_token)
        assert claims.identity_id == str(result.identity.id)

        with pytest.raises(AuthenticationError) as exc:
            await auth_service.refresh(result.tokens.refresh_token, "ip", "ua")
        assert exc.value.error_code == "REFRESH_TOKEN_REVOKED"

    async def test_identity_gone(self, auth_service, identity_store):
        result = await _otp_login(auth_service)
        identity_store.docs.clear()
        with pytest.raises(AuthenticationError) as exc:
            await auth_service.refresh(result.tokens.refresh_token, "ip", "ua")
        assert exc.value.error_code == "USER_NOT_FOUND"

    async def test_suspended_identity(self, auth_service, identity_store):
        result = await _otp_login(auth_service)
        identity_store.docs[result.identity.id]["status"] = STATUS_SUSPENDED
        with pytest.raises(ForbiddenError):
            await auth_service.refresh(result.tokens.refresh_token, "ip", "ua")

    async def test_successor_keeps_session_stamp(self, auth_service, refresh_store):
        result = await _otp_login(auth_service)
        await auth_service.set_password(result.identity.id, PASSWORD)
        login = await auth_service.password_login(PHONE, PASSWORD, "ip", "ua")
        await auth_service.refresh(login.tokens.refresh_token, "ip", "ua")

        (active,) = refresh_store.active_for(result.identity.id)
        assert active.password_version == 1
        assert active.session_epoch == 0
        assert active.rotated_from is not None

    @pytest.mark.parametrize("end_sessions", ["set_password", "logout_all"])
    async def test_token_missed_by_revoke_all_is_refused(
        self, auth_service, refresh_store, end_sessions
    ):
        result = await _otp_login(auth_service)
        await _end_sessions(auth_service, end_sessions, result.identity.id)
        for data in refresh_store.docs.values():
            data["revoked_at"] = None

        with pytest.raises(AuthenticationError) as exc:
            await auth_service.refresh(result.tokens.refresh_token, "ip", "ua")
        assert exc.value.error_code == "SESSION_EXPIRED"
        assert exc.value.message == "Session expired. Please login again"

    @pytest.mark.parametrize("end_sessions", ["set_password", "logout_all"])
    async def test_sessions_ended_during_rotation_leave_nothing_active(
        self, auth_service, refresh_store, monkeypatch, end_sessions
    ):
        result = await _otp_login(auth_service)
        reached, release = _hold_successor_insert(monkeypatch, refresh_store)

        rotation = asyncio.create_task(
            auth_service.refresh(result.tokens.refresh_token, "ip", "ua")
        )
        await reached.wait()
        await _end_sessions(auth_service, end_sessions, result.identity.id)
        release.set()

        with pytest.raises(AuthenticationError) as exc:
            await rotation
        assert exc.value.error_code == "SESSION_EXPIRED"
        assert refresh_store.active_for(result.identity.id) == []
        assert len(refresh_store.docs) == 2


class TestLogout:
    async def test_logout_revokes_token(self, auth_service, refresh_store):
        result = await _otp_login(auth_service)
        await auth_service.logout(result.tokens.refresh_token)
        assert refresh_store.active_for(result.identity.id) == []

    @pytest.mark.parametrize("token", [None, "", "never-issued"])
    async def test_logout_always_succeeds(self, auth_service, token):
        await auth_service.logout(token)

    async def test_logout_all(self, auth_service, refresh_store, clock):
        first = await _otp_login(auth_service)
        clock.advance(minutes=2)
        await _otp_login(auth_service)
        assert await auth_service.logout_all(first.identity.id) == 2
        assert refresh_store.active_for(first.identity.id) == []


# ── Request gate ──────────────────────────────────────────────────────────────


class TestAuthenticate:
    async def test_returns_principal(self, auth_service):
        result = await _otp_login(auth_service, purpose="register", role="recruiter")
        principal = await auth_service.authenticate(result.tokens.access_token)
        assert principal.identity.id == result.identity.id
        assert principal.roles == ["recruiter"]

    async def test_identity_gone(self, auth_service, identity_store):
        result = await _otp_login(auth_service)
        identity_store.docs.clear()
        with pytest.raises(AuthenticationError) as exc:
            await auth_service.authenticate(result.tokens.access_token)
        assert exc.value.error_code == "USER_NOT_FOUND"

    async def test_expired_token(self, auth_service, clock):
        result = await _otp_login(auth_service)
        clock.advance(seconds=901)
        with pytest.raises(AuthenticationError) as exc:
            await auth_service.authenticate(result.tokens.access_token)
        assert exc.value.error_code == "TOKEN_EXPIRED"

    async def test_suspended_identity(self, auth_service, identity_store):
        result = await _otp_login(auth_service)
        identity_store.docs[result.identity.id]["status"] = STATUS_SUSPENDED
        with pytest.raises(ForbiddenError) as exc:
            await auth_service.authenticate(result.tokens.access_token)
        assert exc.value.error_code == "ACCOUNT_DISABLED"

    async def test_get_current_identity(self, auth_service):
        result = await _otp_login(auth_service)
        identity = await auth_service.get_current_identity(result.identity.id)
        assert identity.phone == PHONE
        with pytest.raises(NotFoundError):
            await auth_service.get_current_identity(ObjectId())
