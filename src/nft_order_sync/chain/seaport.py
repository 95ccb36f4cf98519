"""Seaport order lifecycle events: ABI, topics and decoding.

Only the three events needed to track an order's status are described:
`OrderValidated`, `OrderFulfilled` and `OrderCancelled` (Seaport 1.1
layout). Decoding is split in two steps so the item interpretation can be
exercised without crafting raw logs:

- `SeaportEventDecoder.decode` uses web3's ABI codec to turn a raw log into
  event arguments.
- `build_lifecycle_event` turns those arguments into a `LifecycleEvent` for
  the configured collection.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from typing import Any

from web3 import Web3

from nft_order_sync.orders.models import EventKind, LifecycleEvent
from nft_order_sync.orders.normalizer import NFT_ITEM_TYPES

logger = logging.getLogger(__name__)

FUNGIBLE_ITEM_TYPES = frozenset({0, 1})  # native, ERC20

_SPENT_ITEM = "(uint8,address,uint256,uint256)"
_RECEIVED_ITEM = "(uint8,address,uint256,uint256,address)"

EVENT_SIGNATURES: dict[EventKind, str] = {
    EventKind.VALIDATED: "OrderValidated(bytes32,address,address)",
    EventKind.FULFILLED: f"OrderFulfilled(bytes32,address,address,address,{_SPENT_ITEM}[],{_RECEIVED_ITEM}[])",
    EventKind.CANCELLED: "OrderCancelled(bytes32,address,address)",
}

# keccak256 of each signature; hexbytes' own .hex() drops the 0x prefix.
EVENT_TOPICS: dict[EventKind, str] = {
    kind: Web3.to_hex(Web3.keccak(text=signature)) for kind, signature in EVENT_SIGNATURES.items()
}

_SPENT_ITEM_COMPONENTS = [
    {"name": "itemType", "type": "uint8"},
    {"name": "token", "type": "address"},
    {"name": "identifier", "type": "uint256"},
    {"name": "amount", "type": "uint256"},
]

SEAPORT_EVENTS_ABI: list[dict[str, Any]] = [
    {
        "anonymous": False,
        "name": "OrderValidated",
        "type": "event",
        "inputs": [
            {"indexed": False, "name": "orderHash", "type": "bytes32"},
            {"indexed": True, "name": "offerer", "type": "address"},
            {"indexed": True, "name": "zone", "type": "address"},
        ],
    },
    {
        "anonymous": False,
        "name": "OrderCancelled",
        "type": "event",
        "inputs": [
            {"indexed": False, "name": "orderHash", "type": "bytes32"},
            {"indexed": True, "name": "offerer", "type": "address"},
            {"indexed": True, "name": "zone", "type": "address"},
        ],
    },
    {
        "anonymous": False,
        "name": "OrderFulfilled",
        "type": "event",
        "inputs": [
            {"indexed": False, "name": "orderHash", "type": "bytes32"},
            {"indexed": True, "name": "offerer", "type": "address"},
            {"indexed": True, "name": "zone", "type": "address"},
            {"indexed": False, "name": "recipient", "type": "address"},
            {
                "indexed": False,
                "name": "offer",
                "type": "tuple[]",
                "components": _SPENT_ITEM_COMPONENTS,
            },
            {
                "indexed": False,
                "name": "consideration",
                "type": "tuple[]",
                "components": [*_SPENT_ITEM_COMPONENTS, {"name": "recipient", "type": "address"}],
            },
        ],
    },
]


class DecodeError(ValueError):
    """Raised when a log cannot be decoded as the expected Seaport event."""


def to_hex(value: Any) -> str:
    """0x-prefixed lower-case hex for bytes or hex strings."""
    if isinstance(value, (bytes, bytearray)):
        return Web3.to_hex(bytes(value)).lower()
    text = str(value)
    return (text if text.startswith("0x") else f"0x{text}").lower()


def _item_field(item: Any, name: str, position: int) -> Any:
    # web3 returns struct components as mappings; plain tuples are accepted too.
    if isinstance(item, Mapping):
        return item[name]
    return item[position]


def _find_nft(items: Sequence[Any], nft_contract: str) -> Any | None:
    for item in items:
        if int(_item_field(item, "itemType", 0)) not in NFT_ITEM_TYPES:
            continue
        if str(_item_field(item, "token", 1)).lower() == nft_contract:
            return item
    return None


def _fungible_total(items: Sequence[Any]) -> int:
    return sum(
        int(_item_field(item, "amount", 3))
        for item in items
        if int(_item_field(item, "itemType", 0)) in FUNGIBLE_ITEM_TYPES
    )


def build_lifecycle_event(
    kind: EventKind,
    args: Mapping[str, Any],
    *,
    nft_contract: str,
    block_number: int,
    contract_address: str | None = None,
    transaction_hash: str | None = None,
    log_index: int | None = None,
) -> LifecycleEvent | None:
    """Interpret decoded event arguments for one collection.

    Validated and cancelled events carry no item data and always produce an
    event. For fulfillments the NFT is located on either side (a listing
    offers the NFT, an accepted bid receives it) and the fungible items on
    the opposite side are summed into the raw price. The NFT's receiver is
    the buyer: `recipient` for listings, the consideration recipient for
    bids.

    Returns None for a fulfillment whose items involve no token of
    `nft_contract`.

    Raises:
        DecodeError: If required arguments are missing or malformed.
    """
    nft_contract = nft_contract.lower()
    try:
        order_hash = to_hex(args["orderHash"])
        offerer = str(args["offerer"]).lower()
        zone = str(args["zone"]).lower() if args.get("zone") else None

        token_id: str | None = None
        raw_amount: int | None = None
        recipient: str | None = None

        if kind is EventKind.FULFILLED:
            offer = list(args.get("offer") or [])
            consideration = list(args.get("consideration") or [])
            recipient = str(args["recipient"]).lower() if args.get("recipient") else None

            if offer or consideration:
                nft = _find_nft(offer, nft_contract)
                if nft is not None:
                    raw_amount = _fungible_total(consideration)
                else:
                    nft = _find_nft(consideration, nft_contract)
                    if nft is None:
                        return None
                    raw_amount = _fungible_total(offer)
                    recipient = str(_item_field(nft, "recipient", 4)).lower()
                token_id = str(int(_item_field(nft, "identifier", 2)))
    except (KeyError, IndexError, TypeError, ValueError) as e:
        raise DecodeError(f"Malformed {kind.value} arguments: {e}") from e

    return LifecycleEvent(
        kind=kind,
        order_hash=order_hash,
        offerer=offerer,
        block_number=block_number,
        contract_address=contract_address.lower() if contract_address else None,
        transaction_hash=transaction_hash,
        log_index=log_index,
        zone=zone,
        recipient=recipient,
        token_id=token_id,
        token_contract=nft_contract if token_id is not None else None,
        raw_amount=raw_amount,
    )


class SeaportEventDecoder:
    """Decode raw `eth_getLogs` entries into lifecycle events.

    Example:
        ```python
        decoder = SeaportEventDecoder(nft_contract=settings.nft_contract_address)
        event = decoder.decode(EventKind.FULFILLED, log)
        ```
    """

    def __init__(self, *, nft_contract: str) -> None:
        self._nft_contract = nft_contract.lower()
        self._contract = Web3().eth.contract(abi=SEAPORT_EVENTS_ABI)

    def topic(self, kind: EventKind) -> str:
        return EVENT_TOPICS[kind]

    def decode(self, kind: EventKind, log: Mapping[str, Any]) -> LifecycleEvent | None:
        event = getattr(self._contract.events, kind.value)()
        try:
            decoded = event.process_log(log)
        except Exception as e:
            raise DecodeError(f"Cannot decode {kind.value} log: {e}") from e

        return build_lifecycle_event(
            kind,
            decoded["args"],
            nft_contract=self._nft_contract,
            block_number=int(log["blockNumber"]),
            contract_address=str(log.get("address") or "") or None,
            transaction_hash=to_hex(log["transactionHash"]) if log.get("transactionHash") else None,
            log_index=int(log["logIndex"]) if log.get("logIndex") is not None else None,
        )
