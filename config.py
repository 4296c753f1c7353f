"""
Application configuration via pydantic-settings.

All settings are loaded from environment variables (and .env file).

JWT signing: RS256 when both JWT_PRIVATE_KEY and JWT_PUBLIC_KEY are set,
otherwise HS256 with JWT_SECRET (which then becomes mandatory).
"""

from __future__ import annotations

from typing import Optional

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    mongodb_uri: str
    db_name: str = "job-board"


class RedisSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Optional; without Redis the OTP request limiter is disabled
    redis_uri: Optional[str] = None


class JWTSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    jwt_issuer: str = "job-board"
    jwt_audience: str = "job-board.api"
    access_token_ttl_seconds: int = 900
    refresh_token_min_ttl_days: int = 30
    refresh_token_max_ttl_days: int = 90
    cookie_secure: bool = True
    refresh_cookie_path: str = "/auth"

    # RS256 keys (preferred)
    jwt_private_key: str = ""
    jwt_public_key: str = ""

    # HS256 fallback (used when RS256 keys are absent)
    jwt_secret: str = ""

    @model_validator(mode="after")
    def _check_refresh_ttl_range(self) -> "JWTSettings":
        if self.refresh_token_min_ttl_days < 1:
            raise ValueError("REFRESH_TOKEN_MIN_TTL_DAYS must be at least 1")
        if self.refresh_token_max_ttl_days < self.refresh_token_min_ttl_days:
            raise ValueError(
                "REFRESH_TOKEN_MAX_TTL_DAYS must be >= REFRESH_TOKEN_MIN_TTL_DAYS"
            )
        return self

    @property
    def use_rs256(self) -> bool:
        return bool(self.jwt_private_key and self.jwt_public_key)


class OtpSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    otp_code_length: int = 6
    otp_max_attempts: int = 5
    otp_resend_cooldown_seconds: int = 60

    # Expiry is drawn uniformly from [min, max] for every request
    otp_min_ttl_seconds: int = 120
    otp_max_ttl_seconds: int = 300

    # Per ip:phone fixed window on POST /auth/otp/request
    otp_request_limit: int = 5
    otp_request_window_seconds: int = 900

    @model_validator(mode="after")
    def _check_ranges(self) -> "OtpSettings":
        if self.otp_max_attempts < 1:
            raise ValueError("OTP_MAX_ATTEMPTS must be at least 1")
        if self.otp_min_ttl_seconds < 1:
            raise ValueError("OTP_MIN_TTL_SECONDS must be at least 1")
        if self.otp_max_ttl_seconds < self.otp_min_ttl_seconds:
            raise ValueError("OTP_MAX_TTL_SECONDS must be >= OTP_MIN_TTL_SECONDS")
        return self


class LoginSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    login_max_failures: int = 5
    login_lockout_seconds: int = 900


class SmsSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    kavenegar_api_key: str = ""
    kavenegar_template: str = ""
    kavenegar_sender: str = ""

    @property
    def kavenegar_enabled(self) -> bool:
        return bool(self.kavenegar_api_key and self.kavenegar_template)


class LoggingSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    env: str = "development"
    log_level: str = "INFO"
    log_format: str = "console"  # "json" in production


class SentrySettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    sentry_dsn: str = ""
    sentry_send_pii: bool = False
    sentry_traces_sample_rate: float = 0.1
    sentry_profile_sample_rate: float = 0.05


class AppSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Core
    env: str = "development"
    app_name: str = "Job Board Auth"

    cors_origins: list[str] = ["http://localhost:5173"]

    # OpenAPI docs URL (None disables the docs UI in production)
    docs_url: Optional[str] = "/docs"

    # Sub-configs (composed via model_validator below)
    db: Optional[DatabaseSettings] = None
    redis: Optional[RedisSettings] = None
    jwt: Optional[JWTSettings] = None
    otp: Optional[OtpSettings] = None
    login: Optional[LoginSettings] = None
    sms: Optional[SmsSettings] = None
    logging: Optional[LoggingSettings] = None
    sentry: Optional[SentrySettings] = None

    @model_validator(mode="after")
    def _populate_sub_configs(self) -> "AppSettings":
        # Populate sub-configs from the same env/dotenv source
        if self.db is None:
            self.db = DatabaseSettings()
        if self.redis is None:
            self.redis = RedisSettings()
        if self.jwt is None:
            self.jwt = JWTSettings()
        if self.otp is None:
            self.otp = OtpSettings()
        if self.login is None:
            self.login = LoginSettings()
        if self.sms is None:
            self.sms = SmsSettings()
        if self.logging is None:
            self.logging = LoggingSettings()
        if self.sentry is None:
            self.sentry = SentrySettings()

        if not self.jwt.use_rs256 and not self.jwt.jwt_secret:
            raise ValueError("JWT_SECRET must be set when RS256 keys are not provided")

        return self

    @property
    def is_production(self) -> bool:
        return self.env == "production"
