"""Order status transition rules enforced at the sink.

The two source streams are not ordered relative to each other, so a stale
listing snapshot can arrive after the chain has already settled an order.
A settled order never goes back to `active`.
"""

from __future__ import annotations

from nft_order_sync.orders.models import OrderStatus

TERMINAL_STATUSES = frozenset({OrderStatus.FULFILLED, OrderStatus.CANCELLED})


def is_terminal(status: OrderStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: OrderStatus | None, new: OrderStatus) -> bool:
    """Return True if a record in `current` may be overwritten with `new`.

    `current` is None for an identifier that has never been stored.
    Terminal to terminal is allowed (both come from chain truth, last write
    wins).
    """
    if current is None:
        return True
    if new is OrderStatus.ACTIVE:
        return current is OrderStatus.ACTIVE
    return True
