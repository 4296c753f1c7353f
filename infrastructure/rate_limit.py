"""Fixed-window rate limiting on top of the ``limits`` library.

Used to bound POST /auth/otp/request per ``ip:phone``. The counters live
in the same Redis the health check pings. When Redis is not configured the
limiter allows everything (degraded mode, same policy as the health check).
Storage errors also fail open: the per-phone OTP cooldown in the database
still applies.
"""

import math
import time
from dataclasses import dataclass
from typing import Optional

from limits import RateLimitItemPerSecond
from limits.aio.storage import Storage
from limits.storage import storage_from_string
from limits.aio.strategies import FixedWindowRateLimiter

from shared.logging import get_logger

log = get_logger(__name__)


@dataclass
class RateLimitDecision:
    allowed: bool
    remaining: int
    retry_after: int  # seconds until the window resets; 0 when allowed


def create_rate_limit_storage(redis_uri: Optional[str]) -> Optional[Storage]:
    """Async ``limits`` storage for *redis_uri*, or None when unset."""
    if not redis_uri:
        return None
    return storage_from_string(f"async+{redis_uri}")


class RateLimiter:
    def __init__(
        self,
        storage: Optional[Storage],
        *,
        limit: int,
        window_seconds: int,
        namespace: str = "rl",
    ) -> None:
        self.limit = limit
        self.window_seconds = window_seconds
        self._namespace = namespace
        self._item = RateLimitItemPerSecond(limit, window_seconds)
        self._strategy = (
            FixedWindowRateLimiter(storage) if storage is not None else None
        )

    async def hit(self, key: str) -> RateLimitDecision:
        if self._strategy is None:
            return RateLimitDecision(allowed=True, remaining=self.limit, retry_after=0)
        try:
            allowed = await self._strategy.hit(self._item, self._namespace, key)
            stats = await self._strategy.get_window_stats(
                self._item, self._namespace, key
            )
        except Exception as e:
            log.warning("rate_limit_backend_error", error=str(e), error_type=type(e).__name__)
            return RateLimitDecision(allowed=True, remaining=self.limit, retry_after=0)

        if allowed:
            return RateLimitDecision(
                allowed=True, remaining=stats.remaining, retry_after=0
            )
        retry_after = max(1, math.ceil(stats.reset_time - time.time()))
        return RateLimitDecision(allowed=False, remaining=0, retry_after=retry_after)
