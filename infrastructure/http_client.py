"""Shared async HTTP client for outbound provider calls (SMS gateway)."""

from typing import Any, Optional

import httpx

_DEFAULT_HEADERS = {"Accept": "application/json"}


class HttpClient:
    """Thin async wrapper around httpx.AsyncClient with a configurable timeout.

    One instance per external provider keeps timeouts independently
    configurable. The SMS send runs off the request path, so a slow gateway
    only delays delivery, never the HTTP response.
    """

    def __init__(
        self, timeout: float = 5.0, headers: Optional[dict[str, str]] = None
    ) -> None:
        self._client = httpx.AsyncClient(
            timeout=timeout, headers={**_DEFAULT_HEADERS, **(headers or {})}
        )

    async def post(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self._client.post(url, **kwargs)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "HttpClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
