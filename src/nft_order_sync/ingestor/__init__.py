"""Marketplace listing ingestion: throttled HTTP, retry and listing sources.

`ListingPageWalker` lives in `nft_order_sync.ingestor.walker`; it is not
re-exported here because it depends on the storage sinks, which in turn use
this package's HTTP client.
"""

from nft_order_sync.ingestor.http_client import (
    HttpClientError,
    HttpStatusError,
    RateLimitedHttpClient,
    RateLimiter,
    TransientHttpError,
)
from nft_order_sync.ingestor.listing_sources import (
    ListingPage,
    ListingSource,
    ListingSourceError,
    MagicEdenListingSource,
    OpenSeaListingSource,
)
from nft_order_sync.ingestor.retry import RetryExhaustedError, RetryPolicy

__all__ = [
    "HttpClientError",
    "HttpStatusError",
    "ListingPage",
    "ListingSource",
    "ListingSourceError",
    "MagicEdenListingSource",
    "OpenSeaListingSource",
    "RateLimitedHttpClient",
    "RateLimiter",
    "RetryExhaustedError",
    "RetryPolicy",
    "TransientHttpError",
]
