"""Idempotent order sinks.

Both pipelines terminate here. A sink writes one `CanonicalOrder` keyed by
its identifier and reports what happened; any failure surfaces as
`SinkError` so callers can count it and move on.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from sqlalchemy.exc import SQLAlchemyError

from nft_order_sync.ingestor.http_client import HttpClientError, RateLimitedHttpClient
from nft_order_sync.orders.models import CanonicalOrder
from nft_order_sync.orders.normalizer import format_price
from nft_order_sync.storage.database import DatabaseManager
from nft_order_sync.storage.repos import OrderRepository, UpsertOutcome

logger = logging.getLogger(__name__)

__all__ = [
    "BackendOrderSink",
    "DatabaseOrderSink",
    "IdempotentSink",
    "SinkError",
    "UpsertOutcome",
]


class SinkError(Exception):
    """Raised when an order could not be written."""


class IdempotentSink(Protocol):
    async def upsert(self, order: CanonicalOrder) -> UpsertOutcome: ...


class DatabaseOrderSink:
    """Write orders straight into the `orders` table.

    Each upsert runs in its own transaction so one bad record never rolls
    back its neighbours.
    """

    def __init__(self, db: DatabaseManager) -> None:
        self._db = db

    async def upsert(self, order: CanonicalOrder) -> UpsertOutcome:
        try:
            async with self._db.get_async_session() as session:
                return await OrderRepository(session).upsert(order)
        except SQLAlchemyError as e:
            raise SinkError(f"Database upsert failed for {order.identifier}: {e}") from e


def backend_payload(order: CanonicalOrder) -> dict[str, Any]:
    """camelCase body accepted by the backend's `/api/order` endpoint."""
    return {
        "tokenId": order.token_id,
        "price": format_price(order.price) if order.price is not None else None,
        "sellerAddress": order.seller_address,
        "buyerAddress": order.buyer_address,
        "seaportOrder": order.raw_payload,
        "orderHash": order.identifier,
        "image": order.image,
        "nftContract": order.nft_contract,
        "marketplaceContract": order.marketplace_contract,
        "status": order.status.value,
        "onChainBlock": order.on_chain_block,
    }


class BackendOrderSink:
    """POST orders to an ingestion backend which owns the upsert.

    The backend enforces the status transition rules itself, so a
    successful response is reported as `UPDATED` without distinguishing
    inserts.
    """

    def __init__(self, http: RateLimitedHttpClient, backend_url: str) -> None:
        self._http = http
        self._url = f"{backend_url.rstrip('/')}/api/order"

    async def upsert(self, order: CanonicalOrder) -> UpsertOutcome:
        try:
            await self._http.send("POST", self._url, json=backend_payload(order))
        except HttpClientError as e:
            raise SinkError(f"Backend rejected {order.identifier}: {e}") from e
        logger.debug("Posted order %s (%s)", order.identifier, order.status.value)
        return UpsertOutcome.UPDATED
