"""Storage layer: SQLAlchemy models, repository and order sinks."""

from nft_order_sync.storage.database import DatabaseManager
from nft_order_sync.storage.models import Base, OrderModel
from nft_order_sync.storage.repos import OrderDTO, OrderRepository, UpsertOutcome
from nft_order_sync.storage.sinks import (
    BackendOrderSink,
    DatabaseOrderSink,
    IdempotentSink,
    SinkError,
)

__all__ = [
    "Base",
    "BackendOrderSink",
    "DatabaseManager",
    "DatabaseOrderSink",
    "IdempotentSink",
    "OrderDTO",
    "OrderModel",
    "OrderRepository",
    "SinkError",
    "UpsertOutcome",
]
