"""Map marketplace and chain payloads onto `CanonicalOrder`.

Everything here is pure: no I/O, no clock. Each source has its own small
extractor; the shared rules are address lower-casing, exponent-based price
scaling and identifier synthesis for sources without a native order hash.
"""

from __future__ import annotations

from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from typing import Any

from nft_order_sync.orders.models import (
    CanonicalOrder,
    LifecycleEvent,
    OrderStatus,
    SourceKind,
)

DEFAULT_PRICE_EXPONENTS: dict[SourceKind, int] = {
    SourceKind.OPENSEA: 18,
    SourceKind.MAGICEDEN: 9,
    SourceKind.SEAPORT: 18,
}

# Seaport item types that denote an NFT (ERC721, ERC1155 and their
# criteria-based variants).
NFT_ITEM_TYPES = frozenset({2, 3, 4, 5})


class NormalizationError(ValueError):
    """Raised when a payload lacks the fields needed to build an order."""


def lower_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text.lower() if text else None


def scale_amount(raw: Any, exponent: int) -> Decimal | None:
    """Convert a raw integer amount in base units to whole units.

    >>> scale_amount(1_000_000_000, 9)
    Decimal('1')
    """
    if raw is None or raw == "":
        return None
    try:
        amount = Decimal(str(raw))
    except InvalidOperation as e:
        raise NormalizationError(f"Invalid raw amount: {raw!r}") from e
    return amount / (Decimal(10) ** exponent)


def format_price(price: Decimal | None) -> str:
    if price is None:
        return "null"
    return format(price.normalize(), "f")


def synthesize_identifier(token_id: str | None, seller: str | None, price: Decimal | None) -> str:
    """Composite key for sources without a native order hash.

    Not guaranteed unique: two distinct listings of the same token by the
    same seller at the same price collapse into one record.
    """
    if not token_id:
        raise NormalizationError("Cannot synthesize identifier without a token id")
    return f"{token_id}_{seller}_{format_price(price)}"


class OrderNormalizer:
    """Build canonical orders for one collection.

    Example:
        ```python
        normalizer = OrderNormalizer(nft_contract="0xabc...")
        order = normalizer.normalize(SourceKind.MAGICEDEN, listing)
        ```
    """

    def __init__(
        self,
        *,
        nft_contract: str,
        price_exponents: Mapping[SourceKind, int] | None = None,
    ) -> None:
        self._nft_contract = nft_contract.lower()
        self._exponents = dict(DEFAULT_PRICE_EXPONENTS)
        if price_exponents:
            self._exponents.update(price_exponents)

    @property
    def nft_contract(self) -> str:
        return self._nft_contract

    def exponent(self, source: SourceKind) -> int:
        return self._exponents[source]

    def normalize(self, source: SourceKind, raw: Any) -> CanonicalOrder:
        if source is SourceKind.OPENSEA:
            return self._from_opensea(raw)
        if source is SourceKind.MAGICEDEN:
            return self._from_magiceden(raw)
        if source is SourceKind.SEAPORT:
            if not isinstance(raw, LifecycleEvent):
                raise NormalizationError("Seaport payload must be a decoded LifecycleEvent")
            return self._from_lifecycle_event(raw)
        raise NormalizationError(f"Unsupported source: {source!r}")

    def _from_opensea(self, raw: Mapping[str, Any]) -> CanonicalOrder:
        if not isinstance(raw, Mapping):
            raise NormalizationError("OpenSea listing must be an object")

        asset = _first_asset(raw)
        token_id = asset.get("token_id") or _seaport_offer_token_id(raw)
        maker = raw.get("maker")
        seller = lower_or_none(maker.get("address") if isinstance(maker, Mapping) else maker)
        price = scale_amount(raw.get("current_price"), self._exponents[SourceKind.OPENSEA])

        order_hash = lower_or_none(raw.get("order_hash"))
        identifier = order_hash or synthesize_identifier(
            _str_or_none(token_id), seller, price
        )
        marketplace = lower_or_none(raw.get("protocol_address") or raw.get("exchange")) or "opensea"

        return CanonicalOrder(
            identifier=identifier,
            nft_contract=self._nft_contract,
            marketplace_contract=marketplace,
            status=OrderStatus.ACTIVE,
            source=SourceKind.OPENSEA,
            token_id=_str_or_none(token_id),
            price=price,
            seller_address=seller,
            image=asset.get("image_url"),
            raw_payload=dict(raw),
        )

    def _from_magiceden(self, raw: Mapping[str, Any]) -> CanonicalOrder:
        if not isinstance(raw, Mapping):
            raise NormalizationError("Magic Eden listing must be an object")

        token_id = _str_or_none(raw.get("tokenMint"))
        seller = lower_or_none(raw.get("seller"))
        price = scale_amount(raw.get("price"), self._exponents[SourceKind.MAGICEDEN])

        return CanonicalOrder(
            identifier=synthesize_identifier(token_id, seller, price),
            nft_contract=self._nft_contract,
            marketplace_contract="magiceden",
            status=OrderStatus.ACTIVE,
            source=SourceKind.MAGICEDEN,
            token_id=token_id,
            price=price,
            seller_address=seller,
            image=raw.get("image"),
            raw_payload=dict(raw),
        )

    def _from_lifecycle_event(self, event: LifecycleEvent) -> CanonicalOrder:
        if not event.order_hash:
            raise NormalizationError("Lifecycle event has no order hash")

        status = event.kind.status
        price = None
        if event.raw_amount is not None:
            price = scale_amount(event.raw_amount, self._exponents[SourceKind.SEAPORT])

        return CanonicalOrder(
            identifier=event.order_hash.lower(),
            nft_contract=self._nft_contract,
            marketplace_contract=lower_or_none(event.contract_address) or "seaport",
            status=status,
            source=SourceKind.SEAPORT,
            token_id=event.token_id,
            price=price,
            seller_address=lower_or_none(event.offerer),
            buyer_address=lower_or_none(event.recipient) if status is OrderStatus.FULFILLED else None,
            on_chain_block=event.block_number,
            raw_payload=event.to_payload(),
        )


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value)
    return text or None


def _nested(data: Mapping[str, Any], *keys: str) -> Any:
    current: Any = data
    for key in keys:
        if not isinstance(current, Mapping):
            return None
        current = current.get(key)
    return current


def _first_asset(raw: Mapping[str, Any]) -> Mapping[str, Any]:
    asset = raw.get("asset")
    if isinstance(asset, Mapping):
        return asset
    assets = _nested(raw, "maker_asset_bundle", "assets")
    if isinstance(assets, list) and assets and isinstance(assets[0], Mapping):
        return assets[0]
    return {}


def _seaport_offer_token_id(raw: Mapping[str, Any]) -> str | None:
    offer = _nested(raw, "protocol_data", "parameters", "offer")
    if not isinstance(offer, list):
        return None
    for item in offer:
        if not isinstance(item, Mapping):
            continue
        try:
            item_type = int(item.get("itemType", -1))
        except (TypeError, ValueError):
            continue
        if item_type in NFT_ITEM_TYPES:
            return _str_or_none(item.get("identifierOrCriteria"))
    return None
