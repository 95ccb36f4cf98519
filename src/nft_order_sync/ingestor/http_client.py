"""Throttled HTTP client with connection reuse."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_MIN_REQUEST_INTERVAL = 1.0
DEFAULT_TIMEOUT_SECONDS = 15.0
DEFAULT_MAX_CONNECTIONS = 5
RETRY_STATUS_CODES = (429, 500, 502, 503, 504)


class HttpClientError(Exception):
    """Base exception for outbound HTTP errors."""


class TransientHttpError(HttpClientError):
    """Raised for retryable errors (429/5xx, timeouts, connection failures)."""


class HttpStatusError(HttpClientError):
    """Raised for non-retryable non-2xx responses."""

    def __init__(self, message: str, *, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimiter:
    """Minimum-interval limiter shared by all calls through one client."""

    def __init__(self, min_interval_seconds: float = DEFAULT_MIN_REQUEST_INTERVAL) -> None:
        self._min_interval = max(0.0, min_interval_seconds)
        self._last_request_time: float | None = None
        self._lock = asyncio.Lock()

    @property
    def min_interval(self) -> float:
        return self._min_interval

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        async with self._lock:
            if self._last_request_time is not None:
                elapsed = time.monotonic() - self._last_request_time
                if elapsed < self._min_interval:
                    await asyncio.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()


class RateLimitedHttpClient:
    """`httpx.AsyncClient` wrapper that spaces out requests.

    The added latency is intentional: it keeps a single process under the
    remote API's free-tier limits. One pooled client is reused for the
    lifetime of the wrapper.

    Example:
        ```python
        async with RateLimitedHttpClient(min_interval_seconds=1.5) as http:
            resp = await http.send("POST", url, json=body)
        ```
    """

    def __init__(
        self,
        *,
        min_interval_seconds: float = DEFAULT_MIN_REQUEST_INTERVAL,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        max_connections: int = DEFAULT_MAX_CONNECTIONS,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._rate_limiter = RateLimiter(min_interval_seconds)
        self._client = httpx.AsyncClient(
            timeout=timeout_seconds,
            headers=headers,
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max_connections,
            ),
            transport=transport,
        )
        logger.debug(
            "Initialized RateLimitedHttpClient interval=%.2fs timeout=%.1fs",
            min_interval_seconds,
            timeout_seconds,
        )

    async def send(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send one request and classify the outcome.

        Raises:
            TransientHttpError: On transport failures, timeouts, 429 and 5xx.
            HttpStatusError: On any other non-2xx status.
        """
        await self._rate_limiter.acquire()
        try:
            response = await self._client.request(method, url, params=params, json=json, headers=headers)
        except httpx.TransportError as e:
            raise TransientHttpError(f"{method} {url} failed: {e}") from e

        if response.is_success:
            return response

        body = response.text[:500]
        message = f"{method} {url} returned {response.status_code}: {body}"
        if response.status_code in RETRY_STATUS_CODES:
            raise TransientHttpError(message)
        raise HttpStatusError(message, status_code=response.status_code)

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> RateLimitedHttpClient:
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
