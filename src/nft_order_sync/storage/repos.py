"""Repository for the `orders` table."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert

from nft_order_sync.orders.models import CanonicalOrder, OrderStatus
from nft_order_sync.orders.transitions import can_transition
from nft_order_sync.storage.models import OrderModel

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# Nullable descriptive columns: an incoming NULL keeps the stored value.
_COALESCED_COLUMNS = (
    "token_id",
    "price",
    "seller_address",
    "buyer_address",
    "image",
    "on_chain_block",
)
_OVERWRITTEN_COLUMNS = (
    "nft_contract",
    "marketplace_contract",
    "raw_payload",
    "status",
    "source",
)


class UpsertOutcome(str, Enum):
    INSERTED = "inserted"
    UPDATED = "updated"
    SKIPPED_TERMINAL = "skipped_terminal"


@dataclass
class OrderDTO:
    """Data transfer object for stored orders."""

    identifier: str
    nft_contract: str
    marketplace_contract: str
    status: str
    source: str
    token_id: str | None = None
    price: Decimal | None = None
    seller_address: str | None = None
    buyer_address: str | None = None
    image: str | None = None
    on_chain_block: int | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_model(cls, model: OrderModel) -> OrderDTO:
        return cls(
            identifier=model.identifier,
            nft_contract=model.nft_contract,
            marketplace_contract=model.marketplace_contract,
            status=model.status,
            source=model.source,
            token_id=model.token_id,
            price=model.price,
            seller_address=model.seller_address,
            buyer_address=model.buyer_address,
            image=model.image,
            on_chain_block=model.on_chain_block,
            raw_payload=model.raw_payload,
            created_at=model.created_at,
            updated_at=model.updated_at,
        )


def _values(order: CanonicalOrder) -> dict[str, Any]:
    return {
        "identifier": order.identifier,
        "token_id": order.token_id,
        "price": order.price,
        "nft_contract": order.nft_contract.lower(),
        "marketplace_contract": order.marketplace_contract.lower(),
        "seller_address": order.seller_address.lower() if order.seller_address else None,
        "buyer_address": order.buyer_address.lower() if order.buyer_address else None,
        "raw_payload": order.raw_payload,
        "status": order.status.value,
        "source": order.source.value,
        "image": order.image,
        "on_chain_block": order.on_chain_block,
    }


class OrderRepository:
    """Upsert-only access to canonical orders.

    There is no separate insert or update path: every write goes through
    `upsert`, keyed on `identifier`. A settled (fulfilled/cancelled) order is
    never moved back to `active`; that rule is checked before the write and
    again inside the `ON CONFLICT ... WHERE` clause so a concurrent writer
    cannot slip past it.
    """

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_by_identifier(self, identifier: str) -> OrderDTO | None:
        result = await self.session.execute(
            select(OrderModel).where(OrderModel.identifier == identifier)
        )
        model = result.scalar_one_or_none()
        return OrderDTO.from_model(model) if model else None

    async def get_status(self, identifier: str) -> OrderStatus | None:
        result = await self.session.execute(
            select(OrderModel.status).where(OrderModel.identifier == identifier)
        )
        status = result.scalar_one_or_none()
        return OrderStatus(status) if status is not None else None

    async def upsert(self, order: CanonicalOrder, *, now: datetime | None = None) -> UpsertOutcome:
        current = await self.get_status(order.identifier)
        if not can_transition(current, order.status):
            logger.debug(
                "Not reverting %s from %s to %s",
                order.identifier,
                current.value if current else None,
                order.status.value,
            )
            return UpsertOutcome.SKIPPED_TERMINAL

        now = now or datetime.now(UTC)
        values = _values(order)

        bind = self.session.get_bind()
        insert = pg_insert if bind.dialect.name == "postgresql" else sqlite_insert
        stmt = insert(OrderModel).values(**values, created_at=now, updated_at=now)

        set_: dict[str, Any] = {
            name: func.coalesce(getattr(stmt.excluded, name), getattr(OrderModel, name))
            for name in _COALESCED_COLUMNS
        }
        set_.update({name: getattr(stmt.excluded, name) for name in _OVERWRITTEN_COLUMNS})
        set_["updated_at"] = now

        stmt = stmt.on_conflict_do_update(
            index_elements=["identifier"],
            set_=set_,
            where=or_(
                OrderModel.status == OrderStatus.ACTIVE.value,
                stmt.excluded.status != OrderStatus.ACTIVE.value,
            ),
        ).returning(OrderModel.identifier)
        result = await self.session.execute(stmt)
        written = result.scalar_one_or_none()
        await self.session.flush()

        # No row back: the guard held against a terminal row written since the pre-read.
        if written is None:
            logger.debug("Terminal status already stored for %s", order.identifier)
            return UpsertOutcome.SKIPPED_TERMINAL
        return UpsertOutcome.INSERTED if current is None else UpsertOutcome.UPDATED

    async def list_by_status(
        self,
        nft_contract: str,
        status: OrderStatus,
        *,
        limit: int = 1000,
    ) -> list[OrderDTO]:
        result = await self.session.execute(
            select(OrderModel)
            .where(OrderModel.nft_contract == nft_contract.lower())
            .where(OrderModel.status == status.value)
            .order_by(OrderModel.price.asc(), OrderModel.identifier.asc())
            .limit(limit)
        )
        return [OrderDTO.from_model(m) for m in result.scalars().all()]

    async def count_by_status(self, nft_contract: str) -> dict[str, int]:
        result = await self.session.execute(
            select(OrderModel.status, func.count())
            .where(OrderModel.nft_contract == nft_contract.lower())
            .group_by(OrderModel.status)
        )
        return {status: int(count) for status, count in result.all()}
