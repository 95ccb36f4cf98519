"""Canonical order model, normalization and status transition rules."""

from nft_order_sync.orders.models import (
    CanonicalOrder,
    EventKind,
    LifecycleEvent,
    OrderStatus,
    SourceKind,
)
from nft_order_sync.orders.normalizer import NormalizationError, OrderNormalizer
from nft_order_sync.orders.transitions import TERMINAL_STATUSES, can_transition, is_terminal

__all__ = [
    "CanonicalOrder",
    "EventKind",
    "LifecycleEvent",
    "NormalizationError",
    "OrderNormalizer",
    "OrderStatus",
    "SourceKind",
    "TERMINAL_STATUSES",
    "can_transition",
    "is_terminal",
]
