"""Tests for the database and backend order sinks."""

import json
from decimal import Decimal

import httpx
import pytest

from nft_order_sync.ingestor.http_client import RateLimitedHttpClient
from nft_order_sync.orders.models import OrderStatus, SourceKind
from nft_order_sync.storage.database import DatabaseManager
from nft_order_sync.storage.repos import OrderRepository
from nft_order_sync.storage.sinks import (
    BackendOrderSink,
    DatabaseOrderSink,
    SinkError,
    UpsertOutcome,
    backend_payload,
)


@pytest.fixture
async def db(tmp_path):
    manager = DatabaseManager(f"sqlite:///{tmp_path / 'orders.db'}")
    await manager.init_schema_async()
    yield manager
    await manager.dispose_async()


class TestDatabaseOrderSink:
    @pytest.mark.asyncio
    async def test_upsert_commits(self, db: DatabaseManager, make_order) -> None:
        sink = DatabaseOrderSink(db)
        order = make_order()

        assert await sink.upsert(order) is UpsertOutcome.INSERTED
        assert await sink.upsert(order) is UpsertOutcome.UPDATED

        async with db.get_async_session() as session:
            stored = await OrderRepository(session).get_by_identifier(order.identifier)
        assert stored is not None
        assert stored.status == "active"

    @pytest.mark.asyncio
    async def test_terminal_guard(self, db: DatabaseManager, make_order) -> None:
        sink = DatabaseOrderSink(db)
        await sink.upsert(make_order(status=OrderStatus.CANCELLED, source=SourceKind.SEAPORT))

        assert await sink.upsert(make_order()) is UpsertOutcome.SKIPPED_TERMINAL

    @pytest.mark.asyncio
    async def test_database_error_becomes_sink_error(self, tmp_path, make_order) -> None:
        manager = DatabaseManager(f"sqlite:///{tmp_path / 'empty.db'}")  # no schema
        try:
            with pytest.raises(SinkError):
                await DatabaseOrderSink(manager).upsert(make_order())
        finally:
            await manager.dispose_async()


class TestBackendOrderSink:
    @pytest.mark.asyncio
    async def test_posts_camel_case_payload(self, make_order) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(201, json={"ok": True})

        order = make_order(status=OrderStatus.FULFILLED, source=SourceKind.SEAPORT, on_chain_block=99)
        async with RateLimitedHttpClient(min_interval_seconds=0.0, transport=httpx.MockTransport(handler)) as http:
            outcome = await BackendOrderSink(http, "https://backend.example/").upsert(order)

        assert outcome is UpsertOutcome.UPDATED
        assert seen[0].method == "POST"
        assert str(seen[0].url) == "https://backend.example/api/order"
        body = json.loads(seen[0].content)
        assert body["orderHash"] == order.identifier
        assert body["tokenId"] == "42"
        assert body["price"] == "1.5"
        assert body["status"] == "fulfilled"
        assert body["onChainBlock"] == 99
        assert body["seaportOrder"] == order.raw_payload
        assert set(body) == {
            "tokenId",
            "price",
            "sellerAddress",
            "buyerAddress",
            "seaportOrder",
            "orderHash",
            "image",
            "nftContract",
            "marketplaceContract",
            "status",
            "onChainBlock",
        }

    @pytest.mark.asyncio
    async def test_non_2xx_becomes_sink_error(self, make_order) -> None:
        transport = httpx.MockTransport(lambda request: httpx.Response(400, json={"error": "bad"}))
        async with RateLimitedHttpClient(min_interval_seconds=0.0, transport=transport) as http:
            with pytest.raises(SinkError):
                await BackendOrderSink(http, "https://backend.example").upsert(make_order())

    def test_payload_without_price(self, make_order) -> None:
        assert backend_payload(make_order(price=None))["price"] is None
        assert backend_payload(make_order(price=Decimal("0.001")))["price"] == "0.001"
