"""On-chain Seaport event ingestion."""

from nft_order_sync.chain.client import (
    ChainClientError,
    FailoverChainClient,
    MultiEndpointResolver,
    NoEndpointAvailableError,
)
from nft_order_sync.chain.scanner import ChunkedLogScanner, KindCounts, ScanSummary
from nft_order_sync.chain.seaport import EVENT_TOPICS, DecodeError, SeaportEventDecoder

__all__ = [
    "ChainClientError",
    "ChunkedLogScanner",
    "DecodeError",
    "EVENT_TOPICS",
    "FailoverChainClient",
    "KindCounts",
    "MultiEndpointResolver",
    "NoEndpointAvailableError",
    "ScanSummary",
    "SeaportEventDecoder",
]
