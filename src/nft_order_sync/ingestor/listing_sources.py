"""Marketplace listing endpoints.

Each source knows how to fetch one page of active listings and how to
derive the next pagination token. OpenSea paginates with an opaque cursor;
Magic Eden with a numeric offset.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Protocol

import httpx

from nft_order_sync.ingestor.http_client import HttpClientError, RateLimitedHttpClient, TransientHttpError
from nft_order_sync.orders.models import SourceKind

logger = logging.getLogger(__name__)

DEFAULT_OPENSEA_BASE_URL = "https://api.opensea.io"
DEFAULT_MAGICEDEN_BASE_URL = "https://api-mainnet.magiceden.io"


class ListingSourceError(HttpClientError):
    """Raised when a listing endpoint returns an unexpected payload."""


@dataclass(frozen=True)
class ListingPage:
    """One page of raw listings.

    `next_token` is None when the source has signalled there are no more
    pages.
    """

    entries: list[dict[str, Any]]
    next_token: str | int | None


class ListingSource(Protocol):
    source_kind: SourceKind

    @property
    def initial_token(self) -> str | int | None: ...

    async def fetch_page(self, collection: str, token: str | int | None) -> ListingPage: ...


def _json(resp: httpx.Response, *, source: str) -> Any:
    try:
        return resp.json()
    except ValueError as e:
        # Bot-protection pages come back as 200 HTML; treat as retryable.
        raise TransientHttpError(f"{source} returned a non-JSON body") from e


def _entries(data: Any, field: str, *, source: str) -> list[dict[str, Any]]:
    if not isinstance(data, dict):
        raise ListingSourceError(f"Unexpected {source} response shape")
    items = data.get(field) or []
    if not isinstance(items, list):
        raise ListingSourceError(f"Unexpected {source} '{field}' field type")
    out = [item for item in items if isinstance(item, dict)]
    skipped = len(items) - len(out)
    if skipped:
        logger.debug("Skipped %d malformed %s entries", skipped, source)
    return out


class OpenSeaListingSource:
    """OpenSea v2 Seaport listings, cursor-paginated GET."""

    source_kind = SourceKind.OPENSEA

    def __init__(
        self,
        http: RateLimitedHttpClient,
        *,
        api_key: str | None = None,
        chain: str = "ethereum",
        base_url: str = DEFAULT_OPENSEA_BASE_URL,
        page_size: int = 50,
        order_by: str = "created_date",
        order_direction: str = "asc",
    ) -> None:
        self._http = http
        self._api_key = api_key
        self._chain = chain
        self._base_url = base_url.rstrip("/")
        self._page_size = page_size
        self._order_by = order_by
        self._order_direction = order_direction

    @property
    def initial_token(self) -> str | None:
        return None

    async def fetch_page(self, collection: str, token: str | int | None) -> ListingPage:
        params: dict[str, Any] = {
            "asset_contract_address": collection,
            "order_by": self._order_by,
            "order_direction": self._order_direction,
            "limit": self._page_size,
        }
        if token:
            params["cursor"] = token

        headers = {"Accept": "application/json"}
        if self._api_key:
            headers["X-API-KEY"] = self._api_key

        url = f"{self._base_url}/api/v2/orders/{self._chain}/seaport/listings"
        resp = await self._http.send("GET", url, params=params, headers=headers)
        data = _json(resp, source="opensea")

        entries = _entries(data, "orders", source="opensea")
        next_cursor = data.get("next")
        # An empty string means "no more pages", same as a missing cursor.
        return ListingPage(entries=entries, next_token=next_cursor or None)


class MagicEdenListingSource:
    """Magic Eden `getListedNFTsByQuery`, offset-paginated POST."""

    source_kind = SourceKind.MAGICEDEN

    def __init__(
        self,
        http: RateLimitedHttpClient,
        *,
        base_url: str = DEFAULT_MAGICEDEN_BASE_URL,
        page_size: int = 5,
        sort_by: str = "price",
        sort_direction: str = "asc",
    ) -> None:
        self._http = http
        self._base_url = base_url.rstrip("/")
        self._page_size = page_size
        self._sort_by = sort_by
        self._sort_direction = sort_direction

    @property
    def initial_token(self) -> int:
        return 0

    async def fetch_page(self, collection: str, token: str | int | None) -> ListingPage:
        offset = int(token or 0)
        body = {
            "query": {"symbol": collection},
            "sortBy": self._sort_by,
            "sortDirection": self._sort_direction,
            "offset": offset,
            "limit": self._page_size,
        }
        headers = {
            "Accept": "application/json",
            "Origin": "https://magiceden.io",
            "Referer": "https://magiceden.io/",
        }
        url = f"{self._base_url}/rpc/getListedNFTsByQuery"
        resp = await self._http.send("POST", url, json=body, headers=headers)

        entries = _entries(_json(resp, source="magiceden"), "results", source="magiceden")
        if not entries:
            return ListingPage(entries=[], next_token=None)
        return ListingPage(entries=entries, next_token=offset + len(entries))
