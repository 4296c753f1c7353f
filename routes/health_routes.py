"""
Health check endpoint.

GET /health — pings MongoDB and, when configured, Redis.

MongoDB is required: identities, OTP requests and refresh tokens all live
there, so a failed ping is "unhealthy" (503). Redis only backs the OTP
request limiter; without it the service runs "degraded" (200).
"""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from schemas.dto.responses.common import HealthResponse
from shared.logging import get_logger

log = get_logger(__name__)

router = APIRouter(tags=["health"])


async def _check_mongo(request: Request) -> str:
    try:
        await request.app.state.db.command("ping")
        return "ok"
    except Exception as e:
        log.warning("health_mongodb_failed", error=str(e), error_type=type(e).__name__)
        return "error"


async def _check_redis(request: Request) -> str:
    redis = getattr(request.app.state, "redis", None)
    if redis is None:
        return "not_configured"
    try:
        await redis.ping()
        return "ok"
    except Exception as e:
        log.warning("health_redis_failed", error=str(e), error_type=type(e).__name__)
        return "error"


@router.get("/health", response_model=HealthResponse)
async def health_check(request: Request) -> JSONResponse:
    checks = {
        "mongodb": await _check_mongo(request),
        "redis": await _check_redis(request),
    }

    if checks["mongodb"] != "ok":
        overall = "unhealthy"
    elif checks["redis"] != "ok":
        overall = "degraded"
    else:
        overall = "healthy"

    body = HealthResponse(status=overall, checks=checks)
    return JSONResponse(
        status_code=503 if overall == "unhealthy" else 200,
        content=body.model_dump(),
    )
