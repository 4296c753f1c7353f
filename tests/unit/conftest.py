"""
Unit test configuration.

Patches dotenv so pydantic-settings never reads the project's real .env file
during unit tests. Tests control config exclusively through monkeypatch.setenv()
or explicit constructor arguments.

Also wires the services against the in-memory fakes in tests/fakes.py.
"""

import pytest

from config import JWTSettings, LoginSettings, OtpSettings
from fakes import (
    TEST_JWT_SECRET,
    FakeClock,
    FixedRandomSource,
    InMemoryIdentityStore,
    InMemoryOtpStore,
    InMemoryRefreshTokenStore,
    RecordingSmsProvider,
)
from services.auth_service import AuthService
from services.otp_service import OtpService
from services.token_service import TokenService


@pytest.fixture(autouse=True)
def disable_dotenv_loading(monkeypatch):
    """Prevent pydantic-settings from loading .env files in all unit tests."""
    import pydantic_settings.sources.providers.dotenv as ps_dotenv

    monkeypatch.setattr(ps_dotenv, "dotenv_values", lambda *a, **kw: {})


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def random_source():
    return FixedRandomSource(code="123456")


@pytest.fixture
def sms():
    return RecordingSmsProvider()


@pytest.fixture
def identity_store():
    return InMemoryIdentityStore()


@pytest.fixture
def otp_store():
    return InMemoryOtpStore()


@pytest.fixture
def refresh_store():
    return InMemoryRefreshTokenStore()


@pytest.fixture
def jwt_settings():
    return JWTSettings(jwt_secret=TEST_JWT_SECRET)


@pytest.fixture
def otp_service(otp_store, sms, random_source, clock):
    return OtpService(OtpSettings(), otp_store, sms, random_source, clock)


@pytest.fixture
def token_service(jwt_settings, refresh_store, random_source, clock):
    return TokenService(jwt_settings, refresh_store, random_source, clock)


@pytest.fixture
def auth_service(identity_store, otp_service, token_service, clock):
    return AuthService(
        identity_store, otp_service, token_service, LoginSettings(), clock
    )
