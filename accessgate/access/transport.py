"""
Authorization/pingback transport over httpx async client.
"""
from __future__ import annotations

import logging
import time

import httpx

from accessgate.access.ports import AuthorizationTransport, JsonTree
from accessgate.utils.metrics import access_authorization_duration_seconds

logger = logging.getLogger(__name__)


class HttpAuthorizationTransport(AuthorizationTransport):
    """
    Sends requests with the reader's credentials (cookies) attached.
    The client is created lazily; the caller bounds duration (no client-side retries).
    """

    def __init__(
        self,
        cookies: dict[str, str] | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._cookies = cookies or {}
        self._client = client

    @property
    def client(self) -> httpx.AsyncClient:
        """Lazy initialization of httpx client."""
        if self._client is None:
            self._client = httpx.AsyncClient(cookies=self._cookies, follow_redirects=False)
        return self._client

    async def fetch_json(self, url: str) -> JsonTree:
        start = time.monotonic()
        try:
            resp = await self.client.get(url, headers={"Accept": "application/json"})
            resp.raise_for_status()
            data = resp.json()
        finally:
            access_authorization_duration_seconds.observe(time.monotonic() - start)
        if not isinstance(data, dict):
            raise ValueError(f"Authorization response must be a JSON object, got {type(data).__name__}")
        return data

    async def send_signal(self, url: str) -> None:
        resp = await self.client.post(
            url,
            content=b"",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        resp.raise_for_status()
        logger.debug("access_signal_sent", extra={"url": url})

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
