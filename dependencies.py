"""
FastAPI dependency providers.

All injectable dependencies are defined here as plain functions used with
FastAPI's Depends() system. Everything they return is built once in the
app lifespan and stored on app.state.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Depends, Request

from config import AppSettings
from errors import AuthenticationError, ForbiddenError
from infrastructure.rate_limit import RateLimiter
from services.auth_service import AuthService, Principal


def get_settings(request: Request) -> AppSettings:
    """Return the AppSettings instance stored on app.state."""
    return request.app.state.settings


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def get_otp_rate_limiter(request: Request) -> Optional[RateLimiter]:
    """Return the OTP request limiter (None disables limiting)."""
    return getattr(request.app.state, "otp_rate_limiter", None)


def _bearer_token(request: Request) -> Optional[str]:
    auth_header = request.headers.get("Authorization", "")
    if auth_header.lower().startswith("bearer "):
        token = auth_header.split(" ", 1)[1].strip()
        return token or None
    return None


async def get_current_principal(
    request: Request,
    auth_service: AuthService = Depends(get_auth_service),
) -> Principal:
    """Resolve the bearer access token to the current identity."""
    token = _bearer_token(request)
    if token is None:
        raise AuthenticationError("Authentication required", code="AUTH_REQUIRED")
    principal = await auth_service.authenticate(token)
    request.state.principal = principal
    return principal


def require_roles(*roles: str):
    """Dependency factory: the caller must hold at least one of *roles*."""

    async def _check(
        principal: Principal = Depends(get_current_principal),
    ) -> Principal:
        if not any(role in principal.roles for role in roles):
            raise ForbiddenError(
                "You do not have permission to access this resource",
                details={"required_roles": list(roles)},
            )
        return principal

    return _check
