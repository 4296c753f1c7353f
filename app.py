"""
FastAPI application factory.
create_app() is the single entry point for building the app.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import sentry_sdk
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from pymongo.asynchronous.mongo_client import AsyncMongoClient

from config import AppSettings
from errors import register_error_handlers
from infrastructure.http_client import HttpClient
from infrastructure.rate_limit import RateLimiter, create_rate_limit_storage
from infrastructure.redis_client import create_redis_client
from infrastructure.sms.console import ConsoleSmsProvider
from infrastructure.sms.kavenegar import KavenegarSmsProvider
from infrastructure.sms.protocol import SmsProvider
from repositories.identity_repository import IdentityRepository
from repositories.indexes import (
    OTP_COOLDOWNS_COLLECTION,
    OTP_REQUESTS_COLLECTION,
    REFRESH_TOKENS_COLLECTION,
    USERS_COLLECTION,
    ensure_indexes,
)
from repositories.otp_repository import OtpRepository
from repositories.refresh_token_repository import RefreshTokenRepository
from routes.auth_routes import router as auth_router
from routes.health_routes import router as health_router
from services.auth_service import AuthService
from services.otp_service import OtpService
from services.token_service import TokenService
from shared.logging import get_logger, setup_logging

log = get_logger(__name__)


def build_sms_provider(settings: AppSettings, http_client: HttpClient) -> SmsProvider:
    """Kavenegar when configured; the console provider only outside production."""
    if settings.sms.kavenegar_enabled:
        return KavenegarSmsProvider(settings.sms, http_client)
    if settings.is_production:
        raise RuntimeError(
            "KAVENEGAR_API_KEY and KAVENEGAR_TEMPLATE must be set in production"
        )
    log.warning("sms_provider_console", reason="kavenegar_not_configured")
    return ConsoleSmsProvider()


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Create and return a fully configured FastAPI application."""
    if settings is None:
        settings = AppSettings()

    setup_logging(settings.logging)

    # Initialise Sentry before anything else so it captures startup errors
    if settings.sentry.sentry_dsn:
        sentry_sdk.init(
            dsn=settings.sentry.sentry_dsn,
            environment=settings.env,
            send_default_pii=settings.sentry.sentry_send_pii,
            traces_sample_rate=settings.sentry.sentry_traces_sample_rate,
            profiles_sample_rate=settings.sentry.sentry_profile_sample_rate,
        )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        # ── Startup ──────────────────────────────────────────────────────────
        mongo_client: AsyncMongoClient = AsyncMongoClient(
            settings.db.mongodb_uri, tz_aware=True
        )
        db = mongo_client[settings.db.db_name]
        await ensure_indexes(db)

        # Redis is optional; without it the OTP request limiter is off
        redis_client = await create_redis_client(settings.redis.redis_uri)

        sms_http = HttpClient(timeout=10.0)
        otp_service = OtpService(
            settings.otp,
            OtpRepository(db[OTP_REQUESTS_COLLECTION], db[OTP_COOLDOWNS_COLLECTION]),
            build_sms_provider(settings, sms_http),
        )
        token_service = TokenService(
            settings.jwt, RefreshTokenRepository(db[REFRESH_TOKENS_COLLECTION])
        )

        app.state.settings = settings
        app.state.mongo_client = mongo_client
        app.state.db = db
        app.state.redis = redis_client
        app.state.auth_service = AuthService(
            IdentityRepository(db[USERS_COLLECTION]),
            otp_service,
            token_service,
            settings.login,
        )
        app.state.otp_rate_limiter = RateLimiter(
            create_rate_limit_storage(settings.redis.redis_uri)
            if redis_client is not None
            else None,
            limit=settings.otp.otp_request_limit,
            window_seconds=settings.otp.otp_request_window_seconds,
            namespace="otp",
        )
        log.info("app_started", env=settings.env, db_name=settings.db.db_name)

        yield

        # ── Shutdown ─────────────────────────────────────────────────────────
        await otp_service.wait_for_deliveries()
        await sms_http.aclose()
        if redis_client is not None:
            await redis_client.aclose()
        await mongo_client.close()
        log.info("app_stopped")

    app = FastAPI(
        title=settings.app_name,
        version="1.0.0",
        docs_url=settings.docs_url,
        redoc_url=None,
        lifespan=lifespan,
    )

    # Credentialed CORS so the browser sends the refresh cookie
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)
    app.include_router(health_router)
    app.include_router(auth_router)

    return app
