"""Canonical order record shared by the listing and on-chain pipelines."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any


class OrderStatus(str, Enum):
    """Lifecycle state of an order."""

    ACTIVE = "active"
    FULFILLED = "fulfilled"
    CANCELLED = "cancelled"


class SourceKind(str, Enum):
    """Where a raw payload came from."""

    OPENSEA = "opensea"
    MAGICEDEN = "magiceden"
    SEAPORT = "seaport"


class EventKind(str, Enum):
    """Seaport order lifecycle events, in scan order."""

    VALIDATED = "OrderValidated"
    FULFILLED = "OrderFulfilled"
    CANCELLED = "OrderCancelled"

    @property
    def status(self) -> OrderStatus:
        return _EVENT_STATUS[self]


_EVENT_STATUS = {
    EventKind.VALIDATED: OrderStatus.ACTIVE,
    EventKind.FULFILLED: OrderStatus.FULFILLED,
    EventKind.CANCELLED: OrderStatus.CANCELLED,
}


@dataclass(frozen=True)
class CanonicalOrder:
    """Normalized order, the unit of persistence.

    Addresses are lower-cased and `price` is already divided by the asset's
    decimal exponent.
    """

    identifier: str
    nft_contract: str
    marketplace_contract: str
    status: OrderStatus
    source: SourceKind
    token_id: str | None = None
    price: Decimal | None = None
    seller_address: str | None = None
    buyer_address: str | None = None
    image: str | None = None
    on_chain_block: int | None = None
    raw_payload: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class LifecycleEvent:
    """A decoded Seaport event, before normalization.

    `raw_amount` is the summed fungible payment in base units, only present
    on fulfillment.
    """

    kind: EventKind
    order_hash: str
    offerer: str
    block_number: int
    contract_address: str | None = None
    transaction_hash: str | None = None
    log_index: int | None = None
    zone: str | None = None
    recipient: str | None = None
    token_id: str | None = None
    token_contract: str | None = None
    raw_amount: int | None = None

    def to_payload(self) -> dict[str, Any]:
        """JSON-safe dict kept as the record's raw payload."""
        return {
            "event": self.kind.value,
            "orderHash": self.order_hash,
            "offerer": self.offerer,
            "zone": self.zone,
            "recipient": self.recipient,
            "tokenId": self.token_id,
            "tokenContract": self.token_contract,
            "rawAmount": str(self.raw_amount) if self.raw_amount is not None else None,
            "contractAddress": self.contract_address,
            "blockNumber": self.block_number,
            "transactionHash": self.transaction_hash,
            "logIndex": self.log_index,
        }
