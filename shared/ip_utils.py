"""
Request metadata recorded with OTP requests and refresh tokens.

The client IP keys the OTP request limiter and is stored (hashed in logs)
next to every issued credential; the User-Agent is stored for the session
list. Both take the ``Request`` explicitly so they can be called from
routes and tested with a bare mock.
"""

from __future__ import annotations

from typing import Optional

from fastapi import Request

UNKNOWN = "unknown"

# Highest priority first. X-Forwarded-For may carry a chain; the first hop
# is the original client.
CLIENT_IP_HEADERS = (
    "CF-Connecting-IP",
    "True-Client-IP",
    "X-Forwarded-For",
    "X-Real-IP",
    "X-Client-IP",
)

MAX_USER_AGENT_LENGTH = 512


def _first_hop(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    return value.split(",", 1)[0].strip() or None


def get_client_ip(request: Request) -> str:
    """Resolve the caller's IP from proxy headers, then the socket peer.

    Returns ``"unknown"`` when neither is available (e.g. some test
    transports), so the value is always usable as a limiter key.
    """
    for header in CLIENT_IP_HEADERS:
        ip = _first_hop(request.headers.get(header))
        if ip:
            return ip
    if request.client is not None and request.client.host:
        return request.client.host
    return UNKNOWN


def get_user_agent(request: Request) -> str:
    user_agent = (request.headers.get("User-Agent") or "").strip()
    return user_agent[:MAX_USER_AGENT_LENGTH] or UNKNOWN
