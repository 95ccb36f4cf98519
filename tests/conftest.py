"""Pytest configuration and fixtures."""

from __future__ import annotations

from collections.abc import Callable
from decimal import Decimal
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from nft_order_sync.orders.models import CanonicalOrder, OrderStatus, SourceKind
from nft_order_sync.storage.models import Base

NFT_CONTRACT = "0x1234567890abcdef1234567890abcdef12345678"
SEAPORT = "0x0000000000000068f116a894984e2db1123eb395"
SELLER = "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"
BUYER = "0xbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbbb"


@pytest.fixture
def nft_contract() -> str:
    return NFT_CONTRACT


@pytest.fixture
async def async_engine():
    """Create an async SQLite engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def async_session(async_engine) -> AsyncSession:
    """Create an async session for testing."""
    session_factory = async_sessionmaker(bind=async_engine, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def make_order() -> Callable[..., CanonicalOrder]:
    """Factory for canonical orders with sensible defaults."""

    def _make(**overrides: Any) -> CanonicalOrder:
        values: dict[str, Any] = {
            "identifier": "0x" + "ab" * 32,
            "nft_contract": NFT_CONTRACT,
            "marketplace_contract": SEAPORT,
            "status": OrderStatus.ACTIVE,
            "source": SourceKind.OPENSEA,
            "token_id": "42",
            "price": Decimal("1.5"),
            "seller_address": SELLER,
            "image": "https://img.example/42.png",
            "raw_payload": {"order_hash": "0x" + "ab" * 32},
        }
        values.update(overrides)
        return CanonicalOrder(**values)

    return _make
