"""Tests for the order repository upsert rules."""

from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from nft_order_sync.orders.models import OrderStatus, SourceKind
from nft_order_sync.storage.models import OrderModel
from nft_order_sync.storage.repos import OrderRepository, UpsertOutcome

BUYER = "0xbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb"


async def _row_count(session: AsyncSession) -> int:
    result = await session.execute(select(func.count()).select_from(OrderModel))
    return int(result.scalar_one())


class TestOrderRepositoryUpsert:
    @pytest.mark.asyncio
    async def test_insert_then_identical_upsert_is_idempotent(self, async_session: AsyncSession, make_order) -> None:
        repo = OrderRepository(async_session)
        order = make_order()

        first = await repo.upsert(order)
        await async_session.commit()
        before = await repo.get_by_identifier(order.identifier)

        second = await repo.upsert(order)
        await async_session.commit()
        async_session.expire_all()
        after = await repo.get_by_identifier(order.identifier)

        assert first is UpsertOutcome.INSERTED
        assert second is UpsertOutcome.UPDATED
        assert await _row_count(async_session) == 1
        assert before is not None and after is not None
        for name in ("token_id", "price", "seller_address", "status", "source", "image", "raw_payload"):
            assert getattr(after, name) == getattr(before, name)

    @pytest.mark.asyncio
    async def test_active_does_not_overwrite_terminal(self, async_session: AsyncSession, make_order) -> None:
        repo = OrderRepository(async_session)
        await repo.upsert(make_order(status=OrderStatus.FULFILLED, source=SourceKind.SEAPORT, buyer_address=BUYER))
        await async_session.commit()

        outcome = await repo.upsert(make_order(status=OrderStatus.ACTIVE, price=Decimal("9")))
        await async_session.commit()
        async_session.expire_all()
        stored = await repo.get_by_identifier(make_order().identifier)

        assert outcome is UpsertOutcome.SKIPPED_TERMINAL
        assert stored is not None
        assert stored.status == OrderStatus.FULFILLED.value
        assert stored.source == SourceKind.SEAPORT.value
        assert stored.price == Decimal("1.5")

    @pytest.mark.asyncio
    async def test_stale_status_read_is_caught_by_conflict_guard(
        self, async_session: AsyncSession, make_order
    ) -> None:
        """A cancellation written after the status read still wins over an active listing."""
        repo = OrderRepository(async_session)
        await repo.upsert(make_order(status=OrderStatus.CANCELLED, source=SourceKind.SEAPORT))
        await async_session.commit()

        with patch.object(repo, "get_status", new=AsyncMock(return_value=OrderStatus.ACTIVE)):
            outcome = await repo.upsert(make_order(status=OrderStatus.ACTIVE, price=Decimal("9")))
        await async_session.commit()
        async_session.expire_all()
        stored = await repo.get_by_identifier(make_order().identifier)

        assert outcome is UpsertOutcome.SKIPPED_TERMINAL
        assert stored is not None
        assert stored.status == OrderStatus.CANCELLED.value
        assert stored.price == Decimal("1.5")

    @pytest.mark.asyncio
    async def test_terminal_to_terminal_is_allowed(self, async_session: AsyncSession, make_order) -> None:
        repo = OrderRepository(async_session)
        await repo.upsert(make_order(status=OrderStatus.CANCELLED, source=SourceKind.SEAPORT))
        await async_session.commit()

        outcome = await repo.upsert(make_order(status=OrderStatus.FULFILLED, source=SourceKind.SEAPORT))
        await async_session.commit()
        async_session.expire_all()
        stored = await repo.get_by_identifier(make_order().identifier)

        assert outcome is UpsertOutcome.UPDATED
        assert stored is not None
        assert stored.status == OrderStatus.FULFILLED.value

    @pytest.mark.asyncio
    async def test_listing_then_fulfillment(self, async_session: AsyncSession, make_order) -> None:
        """A chain settlement overwrites the listing and keeps its details."""
        repo = OrderRepository(async_session)
        await repo.upsert(make_order())
        await async_session.commit()

        fulfilled = make_order(
            status=OrderStatus.FULFILLED,
            source=SourceKind.SEAPORT,
            token_id=None,
            price=None,
            image=None,
            buyer_address=BUYER,
            on_chain_block=777,
            raw_payload={"event": "OrderFulfilled"},
        )
        outcome = await repo.upsert(fulfilled)
        await async_session.commit()
        async_session.expire_all()
        stored = await repo.get_by_identifier(fulfilled.identifier)

        assert outcome is UpsertOutcome.UPDATED
        assert stored is not None
        assert stored.status == OrderStatus.FULFILLED.value
        assert stored.buyer_address == BUYER
        assert stored.on_chain_block == 777
        assert stored.raw_payload == {"event": "OrderFulfilled"}
        # NULLs in the incoming write keep stored values
        assert stored.token_id == "42"
        assert stored.price == Decimal("1.5")
        assert stored.image == "https://img.example/42.png"

    @pytest.mark.asyncio
    async def test_addresses_are_lowercased(self, async_session: AsyncSession, make_order) -> None:
        repo = OrderRepository(async_session)
        order = make_order(seller_address="0xAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA")

        await repo.upsert(order)
        await async_session.commit()
        stored = await repo.get_by_identifier(order.identifier)

        assert stored is not None
        assert stored.seller_address == "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"


class TestOrderRepositoryQueries:
    @pytest.mark.asyncio
    async def test_list_and_count_by_status(self, async_session: AsyncSession, make_order, nft_contract: str) -> None:
        repo = OrderRepository(async_session)
        await repo.upsert(make_order(identifier="a", price=Decimal("3")))
        await repo.upsert(make_order(identifier="b", price=Decimal("1")))
        await repo.upsert(make_order(identifier="c", status=OrderStatus.CANCELLED))
        await async_session.commit()

        active = await repo.list_by_status(nft_contract, OrderStatus.ACTIVE)
        counts = await repo.count_by_status(nft_contract)

        assert [o.identifier for o in active] == ["b", "a"]
        assert counts == {"active": 2, "cancelled": 1}

    @pytest.mark.asyncio
    async def test_get_missing(self, async_session: AsyncSession) -> None:
        repo = OrderRepository(async_session)
        assert await repo.get_by_identifier("nope") is None
        assert await repo.get_status("nope") is None
