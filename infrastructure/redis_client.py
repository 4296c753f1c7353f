"""Async Redis connection factory.

Redis is optional for this service: it only backs the OTP request limiter.
create_redis_client() returns None when Redis is not configured or cannot
be reached, and every caller treats None as "limiter disabled".
"""

from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from shared.logging import get_logger

log = get_logger(__name__)


def _redacted(uri: str) -> str:
    # Drop credentials before logging
    return uri.split("@")[-1]


async def create_redis_client(redis_uri: Optional[str]) -> Optional[aioredis.Redis]:
    """Connect and ping; return the client, or None when unavailable."""
    if not redis_uri:
        log.info("redis_not_configured")
        return None

    client: aioredis.Redis = aioredis.from_url(
        redis_uri, encoding="utf-8", decode_responses=True
    )
    try:
        await client.ping()
    except (RedisError, OSError) as e:
        log.warning(
            "redis_connection_failed",
            uri=_redacted(redis_uri),
            error=str(e),
            error_type=type(e).__name__,
        )
        await client.aclose()
        return None

    log.info("redis_connected", uri=_redacted(redis_uri))
    return client
