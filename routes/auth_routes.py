"""
Authentication endpoints.

POST /auth/otp/request      — issue a phone OTP (rate limited per ip:phone)
POST /auth/otp/verify       — verify an OTP, login or register
POST /auth/password/login   — phone + password login
POST /auth/password/set     — set or change the password (bearer)
POST /auth/refresh          — rotate the refresh token
POST /auth/logout           — revoke one refresh token (always 200)
POST /auth/logout-all       — revoke every refresh token (bearer)
GET  /auth/me               — current identity (bearer)

The refresh token is returned in the body and in an httpOnly cookie;
refresh and logout accept either, the body taking precedence.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Request, Response

from config import AppSettings
from dependencies import (
    get_auth_service,
    get_current_principal,
    get_otp_rate_limiter,
    get_settings,
)
from errors import RateLimitError
from infrastructure.rate_limit import RateLimiter
from schemas.dto.requests.auth import (
    LogoutRequest,
    OtpRequestBody,
    OtpVerifyRequest,
    PasswordLoginRequest,
    RefreshRequest,
    SetPasswordRequest,
)
from schemas.dto.responses.auth import (
    AuthSessionResponse,
    MeResponse,
    OtpRequestResponse,
    RefreshResponse,
    UserResponse,
)
from schemas.dto.responses.common import MessageResponse
from services.auth_service import AuthService, Principal
from shared.datetime_utils import seconds_until, utc_now
from shared.ip_utils import get_client_ip, get_user_agent
from shared.logging import get_logger, hash_ip, mask_phone

log = get_logger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

REFRESH_COOKIE_NAME = "refresh_token"


def set_refresh_cookie(
    response: Response, settings: AppSettings, token: str, expires_at: datetime
) -> None:
    response.set_cookie(
        REFRESH_COOKIE_NAME,
        token,
        max_age=seconds_until(expires_at, utc_now()),
        httponly=True,
        secure=settings.jwt.cookie_secure,
        samesite="strict",
        path=settings.jwt.refresh_cookie_path,
    )


def clear_refresh_cookie(response: Response, settings: AppSettings) -> None:
    response.delete_cookie(
        REFRESH_COOKIE_NAME,
        httponly=True,
        secure=settings.jwt.cookie_secure,
        samesite="strict",
        path=settings.jwt.refresh_cookie_path,
    )


@router.post("/otp/request", response_model=OtpRequestResponse)
async def request_otp(
    body: OtpRequestBody,
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
    limiter: Optional[RateLimiter] = Depends(get_otp_rate_limiter),
) -> OtpRequestResponse:
    client_ip = get_client_ip(request)

    if limiter is not None:
        decision = await limiter.hit(f"otp:{client_ip}:{body.phone}")
        if not decision.allowed:
            log.warning(
                "otp_request_rate_limited",
                phone=mask_phone(body.phone),
                ip_hash=hash_ip(client_ip),
                retry_after=decision.retry_after,
            )
            raise RateLimitError(
                "Too many OTP requests. Please try again later",
                retry_after=decision.retry_after,
            )

    issued = await auth_service.request_otp(
        body.phone, body.purpose, client_ip, get_user_agent(request)
    )
    return OtpRequestResponse(
        request_id=issued.request_id,
        message="OTP sent successfully",
        expires_at=issued.expires_at,
    )


@router.post("/otp/verify", response_model=AuthSessionResponse)
async def verify_otp(
    body: OtpVerifyRequest,
    request: Request,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service),
    settings: AppSettings = Depends(get_settings),
) -> AuthSessionResponse:
    result = await auth_service.verify_otp_and_login(
        body.request_id,
        body.code,
        get_client_ip(request),
        get_user_agent(request),
        role=body.role,
    )
    set_refresh_cookie(
        response, settings, result.tokens.refresh_token, result.tokens.refresh_expires_at
    )
    return AuthSessionResponse(
        user=UserResponse.from_identity(result.identity),
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
    )


@router.post("/password/login", response_model=AuthSessionResponse)
async def password_login(
    body: PasswordLoginRequest,
    request: Request,
    response: Response,
    auth_service: AuthService = Depends(get_auth_service),
    settings: AppSettings = Depends(get_settings),
) -> AuthSessionResponse:
    result = await auth_service.password_login(
        body.phone, body.password, get_client_ip(request), get_user_agent(request)
    )
    set_refresh_cookie(
        response, settings, result.tokens.refresh_token, result.tokens.refresh_expires_at
    )
    return AuthSessionResponse(
        user=UserResponse.from_identity(result.identity),
        access_token=result.tokens.access_token,
        refresh_token=result.tokens.refresh_token,
    )


@router.post("/password/set", response_model=MessageResponse)
async def set_password(
    body: SetPasswordRequest,
    response: Response,
    principal: Principal = Depends(get_current_principal),
    auth_service: AuthService = Depends(get_auth_service),
    settings: AppSettings = Depends(get_settings),
) -> MessageResponse:
    await auth_service.set_password(principal.identity.id, body.new_password)
    # Every refresh token was revoked; the cookie is dead weight now
    clear_refresh_cookie(response, settings)
    return MessageResponse(message="Password set successfully. Please login again")


@router.post("/refresh", response_model=RefreshResponse)
async def refresh(
    request: Request,
    response: Response,
    body: Optional[RefreshRequest] = None,
    auth_service: AuthService = Depends(get_auth_service),
    settings: AppSettings = Depends(get_settings),
) -> RefreshResponse:
    token = (body.refresh_token if body else None) or request.cookies.get(
        REFRESH_COOKIE_NAME
    )
    tokens = await auth_service.refresh(
        token, get_client_ip(request), get_user_agent(request)
    )
    set_refresh_cookie(response, settings, tokens.refresh_token, tokens.refresh_expires_at)
    return RefreshResponse(
        access_token=tokens.access_token, refresh_token=tokens.refresh_token
    )


@router.post("/logout", response_model=MessageResponse)
async def logout(
    request: Request,
    response: Response,
    body: Optional[LogoutRequest] = None,
    auth_service: AuthService = Depends(get_auth_service),
    settings: AppSettings = Depends(get_settings),
) -> MessageResponse:
    token = (body.refresh_token if body else None) or request.cookies.get(
        REFRESH_COOKIE_NAME
    )
    await auth_service.logout(token)
    clear_refresh_cookie(response, settings)
    return MessageResponse(message="Logged out successfully")


@router.post("/logout-all", response_model=MessageResponse)
async def logout_all(
    response: Response,
    principal: Principal = Depends(get_current_principal),
    auth_service: AuthService = Depends(get_auth_service),
    settings: AppSettings = Depends(get_settings),
) -> MessageResponse:
    await auth_service.logout_all(principal.identity.id)
    clear_refresh_cookie(response, settings)
    return MessageResponse(message="Logged out from all devices")


@router.get("/me", response_model=MeResponse)
async def me(principal: Principal = Depends(get_current_principal)) -> MeResponse:
    return MeResponse(user=UserResponse.from_identity(principal.identity))
