"""EVM JSON-RPC access with endpoint selection and mid-run failover.

Public RPC endpoints for smaller chains come and go, so the client is built
from an ordered list of candidates instead of a single URL:

- `MultiEndpointResolver` probes the list once at startup and picks the
  first endpoint that answers a block-height call.
- `FailoverChainClient` runs every call through a `RetryPolicy` against the
  current endpoint and rotates to the next candidate when that policy gives
  up.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, TypeVar

import aiohttp
from web3 import AsyncWeb3
from web3.exceptions import Web3Exception
from web3.middleware import ExtraDataToPOAMiddleware
from web3.providers import AsyncHTTPProvider

from nft_order_sync.ingestor.retry import RetryExhaustedError, RetryPolicy

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_PROBE_TIMEOUT_SECONDS = 10.0
DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_DELAY_SECONDS = 1.0

# Errors worth retrying against the same endpoint. AsyncHTTPProvider raises
# aiohttp.ClientResponseError for HTTP 429/5xx answers from the node.
TRANSIENT_CHAIN_ERRORS: tuple[type[BaseException], ...] = (
    Web3Exception,
    aiohttp.ClientError,
    OSError,
    asyncio.TimeoutError,
)

Web3Factory = Callable[[str], AsyncWeb3]


class ChainClientError(Exception):
    """Raised when an RPC call fails on every candidate endpoint."""


class NoEndpointAvailableError(ChainClientError):
    """Raised when none of the configured RPC endpoints is reachable."""


def dedupe_urls(urls: Iterable[str | None]) -> list[str]:
    """Drop blank entries and duplicates, preserving order."""
    seen: set[str] = set()
    out: list[str] = []
    for url in urls:
        if not url:
            continue
        cleaned = url.strip()
        if not cleaned or cleaned in seen:
            continue
        seen.add(cleaned)
        out.append(cleaned)
    return out


def new_web3_client(rpc_url: str) -> AsyncWeb3:
    client = AsyncWeb3(AsyncHTTPProvider(rpc_url))
    _inject_poa_middleware(client, rpc_url=rpc_url)
    return client


def _inject_poa_middleware(client: AsyncWeb3, *, rpc_url: str) -> None:
    try:
        client.middleware_onion.inject(ExtraDataToPOAMiddleware, layer=0)
    except (ValueError, Web3Exception) as e:
        logger.warning("Failed to inject PoA middleware (rpc=%s): %s", rpc_url, e)


async def _disconnect(client: AsyncWeb3) -> None:
    disconnect = getattr(client.provider, "disconnect", None)
    if not callable(disconnect):
        return
    try:
        result = disconnect()
        if asyncio.iscoroutine(result):
            await result
    except Exception as e:
        logger.warning("Failed to close RPC provider session: %s", e)


class MultiEndpointResolver:
    """Pick the first reachable RPC endpoint from an ordered list.

    Example:
        ```python
        resolver = MultiEndpointResolver([primary, "https://rpc.apechain.com/http"])
        url, w3 = await resolver.resolve()
        ```
    """

    def __init__(
        self,
        urls: Iterable[str | None],
        *,
        web3_factory: Web3Factory = new_web3_client,
        probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
    ) -> None:
        self.urls = dedupe_urls(urls)
        self._factory = web3_factory
        self._probe_timeout = probe_timeout_seconds

    async def resolve(self) -> tuple[str, AsyncWeb3]:
        """Return the first endpoint answering `eth_blockNumber`.

        Raises:
            NoEndpointAvailableError: If every candidate fails its probe.
        """
        for url in self.urls:
            w3 = self._factory(url)
            try:
                block = await asyncio.wait_for(w3.eth.block_number, timeout=self._probe_timeout)
            except TRANSIENT_CHAIN_ERRORS as e:
                logger.warning("RPC endpoint %s failed probe: %s", url, e)
                await _disconnect(w3)
                continue
            logger.info("Connected to RPC %s (block=%d)", url, block)
            return url, w3

        raise NoEndpointAvailableError(
            f"No reachable RPC endpoint among {len(self.urls)} candidate(s)"
        )


class FailoverChainClient:
    """RPC client that rotates through candidate endpoints on sustained failure.

    Each call is retried against the current endpoint by `retry_policy`;
    when that is exhausted the client moves to the next endpoint and tries
    again, visiting each endpoint at most once per call. The endpoint that
    last succeeded stays current for subsequent calls.

    Example:
        ```python
        client = await FailoverChainClient.connect(settings.chain.rpc_urls)
        head = await client.get_block_number()
        logs = await client.get_logs({"address": seaport, "fromBlock": 0, "toBlock": head})
        await client.aclose()
        ```
    """

    def __init__(
        self,
        urls: Iterable[str | None],
        *,
        web3_factory: Web3Factory = new_web3_client,
        retry_policy: RetryPolicy | None = None,
    ) -> None:
        self._urls = dedupe_urls(urls)
        if not self._urls:
            raise NoEndpointAvailableError("No RPC endpoints configured")
        self._factory = web3_factory
        self._retry = retry_policy or RetryPolicy(
            max_retries=DEFAULT_MAX_RETRIES,
            base_delay=DEFAULT_RETRY_DELAY_SECONDS,
            backoff="exponential",
            retry_on=TRANSIENT_CHAIN_ERRORS,
        )
        self._index = 0
        self._clients: dict[str, AsyncWeb3] = {}

    @classmethod
    async def connect(
        cls,
        urls: Iterable[str | None],
        *,
        web3_factory: Web3Factory = new_web3_client,
        retry_policy: RetryPolicy | None = None,
        probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS,
    ) -> FailoverChainClient:
        """Resolve a live endpoint first, then build a client starting there."""
        resolver = MultiEndpointResolver(
            urls,
            web3_factory=web3_factory,
            probe_timeout_seconds=probe_timeout_seconds,
        )
        url, w3 = await resolver.resolve()
        client = cls(resolver.urls, web3_factory=web3_factory, retry_policy=retry_policy)
        client._index = client._urls.index(url)
        client._clients[url] = w3
        return client

    @property
    def urls(self) -> list[str]:
        return list(self._urls)

    @property
    def current_url(self) -> str:
        return self._urls[self._index]

    def _web3(self, url: str) -> AsyncWeb3:
        if url not in self._clients:
            self._clients[url] = self._factory(url)
        return self._clients[url]

    async def _call(self, description: str, fn: Callable[[AsyncWeb3], Awaitable[T]]) -> T:
        last_error: RetryExhaustedError | None = None

        for visited in range(len(self._urls)):
            url = self.current_url
            w3 = self._web3(url)
            try:
                return await self._retry.execute(lambda: fn(w3), description=f"{description} via {url}")
            except RetryExhaustedError as e:
                last_error = e
                if visited == len(self._urls) - 1:
                    break
                self._index = (self._index + 1) % len(self._urls)
                logger.warning("Switching RPC endpoint %s -> %s", url, self.current_url)

        raise ChainClientError(
            f"{description} failed on all {len(self._urls)} endpoint(s): {last_error}"
        ) from last_error

    async def get_block_number(self) -> int:
        async def _block_number(w3: AsyncWeb3) -> int:
            return int(await w3.eth.block_number)

        return await self._call("eth_blockNumber", _block_number)

    async def get_logs(self, filter_params: dict[str, Any]) -> list[dict[str, Any]]:
        """Fetch logs via `eth_getLogs`."""

        async def _get_logs(w3: AsyncWeb3) -> list[dict[str, Any]]:
            logs = await w3.eth.get_logs(filter_params)
            return [dict(log) for log in logs]

        return await self._call("eth_getLogs", _get_logs)

    async def aclose(self) -> None:
        """Close provider sessions to avoid leaked aiohttp sessions."""
        for client in self._clients.values():
            await _disconnect(client)
        self._clients.clear()
