"""SQLAlchemy models for persistent storage.

A single `orders` table holds every order seen by either pipeline, keyed by
its identifier.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import JSON, BigInteger, DateTime, Index, Numeric, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# Fractional digits kept for prices; price exponents above this would lose precision.
PRICE_SCALE = 18


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    pass


class OrderModel(Base):
    """Canonical order state (listing snapshots and chain lifecycle)."""

    __tablename__ = "orders"

    # order hash, chain order hash, or tokenId_seller_price
    identifier: Mapped[str] = mapped_column(String(200), primary_key=True)

    token_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    # Whole units, already divided by the asset's decimal exponent.
    price: Mapped[Decimal | None] = mapped_column(Numeric(40, PRICE_SCALE), nullable=True)

    nft_contract: Mapped[str] = mapped_column(String(64), nullable=False)
    marketplace_contract: Mapped[str] = mapped_column(String(64), nullable=False)
    seller_address: Mapped[str | None] = mapped_column(String(64), nullable=True)
    buyer_address: Mapped[str | None] = mapped_column(String(64), nullable=True)

    raw_payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(16), nullable=False)  # active/fulfilled/cancelled
    source: Mapped[str] = mapped_column(String(16), nullable=False)  # opensea/magiceden/seaport
    image: Mapped[str | None] = mapped_column(Text, nullable=True)
    on_chain_block: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=lambda: datetime.now(UTC)
    )

    __table_args__ = (
        Index("idx_orders_contract_status", "nft_contract", "status"),
        Index("idx_orders_contract_marketplace", "nft_contract", "marketplace_contract"),
        Index("idx_orders_token", "nft_contract", "token_id"),
    )
