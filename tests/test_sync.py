"""End-to-end tests for the sync runs against fake remotes."""

from __future__ import annotations

import json
from decimal import Decimal
from typing import Any

import httpx
import pytest
from eth_abi import encode
from hexbytes import HexBytes

from nft_order_sync.chain.client import NoEndpointAvailableError
from nft_order_sync.chain.seaport import EVENT_TOPICS
from nft_order_sync.config import Settings, clear_settings_cache
from nft_order_sync.orders.models import EventKind
from nft_order_sync.storage.database import DatabaseManager
from nft_order_sync.storage.repos import OrderRepository
from nft_order_sync.sync import init_database, run_chain_sync, run_listing_sync

NFT = "0x1234567890abcdef1234567890abcdef12345678"
SEAPORT = "0x0000000000000068f116a894984e2db1123eb395"
SELLER = "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"
ORDER_HASH = bytes.fromhex("cd" * 32)


@pytest.fixture
def settings(monkeypatch: pytest.MonkeyPatch, tmp_path) -> Settings:
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("NFT_CONTRACT_ADDRESS", NFT)
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'orders.db'}")
    monkeypatch.setenv("MAGICEDEN_COLLECTION_SYMBOL", "apes")
    monkeypatch.setenv("MAGICEDEN_MIN_REQUEST_INTERVAL_SECONDS", "0")
    monkeypatch.setenv("CHAIN_SEAPORT_ADDRESS", SEAPORT)
    monkeypatch.setenv("CHAIN_RPC_URL", "https://node.example")
    monkeypatch.setenv("CHAIN_FALLBACK_RPC_URLS", "")
    monkeypatch.setenv("BACKEND_URL", "https://backend.example")
    clear_settings_cache()
    return Settings()


class FakeProvider:
    async def disconnect(self) -> None:
        return None


class FakeEth:
    def __init__(self, logs_by_topic: dict[str, list[dict[str, Any]]], head: int = 20) -> None:
        self._logs = logs_by_topic
        self._head = head

    @property
    def block_number(self):
        return self._block_number()

    async def _block_number(self) -> int:
        return self._head

    async def get_logs(self, filter_params: dict[str, Any]) -> list[dict[str, Any]]:
        topic = filter_params["topics"][0]
        return [
            log
            for log in self._logs.get(topic, [])
            if filter_params["fromBlock"] <= log["blockNumber"] <= filter_params["toBlock"]
        ]


class FakeWeb3:
    def __init__(self, eth: FakeEth) -> None:
        self.eth = eth
        self.provider = FakeProvider()


def _validated_log(block: int) -> dict[str, Any]:
    def pad(address: str) -> HexBytes:
        return HexBytes(bytes(12) + bytes.fromhex(address[2:]))

    return {
        "address": SEAPORT,
        "topics": [HexBytes(EVENT_TOPICS[EventKind.VALIDATED]), pad(SELLER), pad("0x" + "00" * 20)],
        "data": HexBytes(encode(["bytes32"], [ORDER_HASH])),
        "blockNumber": block,
        "blockHash": HexBytes(b"\x01" * 32),
        "transactionHash": HexBytes(b"\x02" * 32),
        "transactionIndex": 0,
        "logIndex": 0,
        "removed": False,
    }


class TestListingSync:
    @pytest.mark.asyncio
    async def test_magiceden_listings_land_in_database(self, settings: Settings) -> None:
        pages = {
            0: [{"tokenMint": "1", "seller": SELLER, "price": 2_000_000_000}],
            1: [{"tokenMint": "2", "seller": SELLER, "price": 500_000_000}],
        }

        def handler(request: httpx.Request) -> httpx.Response:
            offset = json.loads(request.content)["offset"]
            return httpx.Response(200, json={"results": pages.get(offset, [])})

        await init_database(settings)
        summary = await run_listing_sync(settings, "magiceden", transport=httpx.MockTransport(handler))

        assert summary.pages == 3
        assert summary.written == 2

        db = DatabaseManager(str(settings.database.url))
        try:
            async with db.get_async_session() as session:
                repo = OrderRepository(session)
                stored = await repo.get_by_identifier(f"1_{SELLER}_2")
                counts = await repo.count_by_status(NFT)
        finally:
            await db.dispose_async()

        assert stored is not None
        assert stored.price == Decimal("2")
        assert stored.source == "magiceden"
        assert counts == {"active": 2}


class TestChainSync:
    @pytest.mark.asyncio
    async def test_validated_events_posted_to_backend(self, settings: Settings) -> None:
        eth = FakeEth({EVENT_TOPICS[EventKind.VALIDATED]: [_validated_log(12)]})
        posted: list[dict[str, Any]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            posted.append(json.loads(request.content))
            return httpx.Response(200, json={"ok": True})

        summary = await run_chain_sync(
            settings,
            web3_factory=lambda url: FakeWeb3(eth),
            transport=httpx.MockTransport(handler),
        )

        assert (summary.from_block, summary.to_block) == (0, 20)
        assert summary.counts[EventKind.VALIDATED].written == 1
        assert summary.counts[EventKind.FULFILLED].logs == 0
        assert len(posted) == 1
        assert posted[0]["orderHash"] == "0x" + "cd" * 32
        assert posted[0]["status"] == "active"
        assert posted[0]["sellerAddress"] == SELLER
        assert posted[0]["onChainBlock"] == 12

    @pytest.mark.asyncio
    async def test_validated_events_written_to_database(self, settings: Settings) -> None:
        eth = FakeEth({EVENT_TOPICS[EventKind.VALIDATED]: [_validated_log(3)]})
        await init_database(settings)

        summary = await run_chain_sync(
            settings,
            from_block=0,
            to_block=10,
            sink_kind="database",
            web3_factory=lambda url: FakeWeb3(eth),
        )

        assert summary.written == 1
        db = DatabaseManager(str(settings.database.url))
        try:
            async with db.get_async_session() as session:
                stored = await OrderRepository(session).get_by_identifier("0x" + "cd" * 32)
        finally:
            await db.dispose_async()
        assert stored is not None
        assert stored.on_chain_block == 3
        assert stored.marketplace_contract == SEAPORT

    @pytest.mark.asyncio
    async def test_no_reachable_endpoint(self, settings: Settings) -> None:
        class DeadEth(FakeEth):
            async def _block_number(self) -> int:
                raise OSError("connection refused")

        with pytest.raises(NoEndpointAvailableError):
            await run_chain_sync(settings, web3_factory=lambda url: FakeWeb3(DeadEth({})))
