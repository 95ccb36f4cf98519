"""Wiring for the two sync runs.

Each function builds its clients from `Settings`, runs one walk or scan to
completion and releases every connection it opened, whatever the outcome.
"""

from __future__ import annotations

import logging
from typing import Literal

import httpx

from nft_order_sync.chain.client import TRANSIENT_CHAIN_ERRORS, FailoverChainClient, Web3Factory, new_web3_client
from nft_order_sync.chain.scanner import ChunkedLogScanner, ScanSummary
from nft_order_sync.chain.seaport import SeaportEventDecoder
from nft_order_sync.config import Settings
from nft_order_sync.ingestor.http_client import RateLimitedHttpClient, TransientHttpError
from nft_order_sync.ingestor.listing_sources import (
    ListingSource,
    MagicEdenListingSource,
    OpenSeaListingSource,
)
from nft_order_sync.ingestor.retry import RetryPolicy
from nft_order_sync.ingestor.walker import ListingPageWalker, WalkSummary
from nft_order_sync.orders.models import SourceKind
from nft_order_sync.orders.normalizer import OrderNormalizer
from nft_order_sync.storage.database import DatabaseManager
from nft_order_sync.storage.sinks import BackendOrderSink, DatabaseOrderSink, IdempotentSink

logger = logging.getLogger(__name__)

Marketplace = Literal["opensea", "magiceden"]
SinkKind = Literal["backend", "database"]


def build_normalizer(settings: Settings) -> OrderNormalizer:
    if not settings.nft_contract_address:
        raise ValueError("NFT_CONTRACT_ADDRESS is not configured")
    return OrderNormalizer(
        nft_contract=settings.nft_contract_address,
        price_exponents={
            SourceKind.OPENSEA: settings.opensea.price_decimals,
            SourceKind.MAGICEDEN: settings.magiceden.price_decimals,
            SourceKind.SEAPORT: settings.chain.price_decimals,
        },
    )


def build_database(settings: Settings) -> DatabaseManager:
    if not settings.database.url:
        raise ValueError("DATABASE_URL is not configured")
    return DatabaseManager(
        settings.database.url,
        pool_size=settings.database.pool_size,
        echo=settings.database.echo,
    )


def _listing_source(
    settings: Settings,
    marketplace: Marketplace,
    http: RateLimitedHttpClient,
) -> tuple[ListingSource, str]:
    """Return the source and the collection key it is queried with."""
    if marketplace == "opensea":
        api_key = settings.opensea.api_key.get_secret_value() if settings.opensea.api_key else None
        source = OpenSeaListingSource(
            http,
            api_key=api_key,
            chain=settings.opensea.chain,
            base_url=settings.opensea.base_url,
            page_size=settings.opensea.page_size,
        )
        return source, str(settings.nft_contract_address)

    source = MagicEdenListingSource(
        http,
        base_url=settings.magiceden.base_url,
        page_size=settings.magiceden.page_size,
    )
    return source, str(settings.magiceden.collection_symbol)


async def run_listing_sync(
    settings: Settings,
    marketplace: Marketplace,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> WalkSummary:
    """Walk one marketplace's listings into the database."""
    min_interval = (
        settings.opensea.min_request_interval_seconds
        if marketplace == "opensea"
        else settings.magiceden.min_request_interval_seconds
    )
    normalizer = build_normalizer(settings)
    db = build_database(settings)
    http = RateLimitedHttpClient(
        min_interval_seconds=min_interval,
        timeout_seconds=settings.http.timeout_seconds,
        max_connections=settings.http.max_connections,
        transport=transport,
    )
    retry = RetryPolicy(
        max_retries=settings.http.max_retries,
        base_delay=settings.http.retry_base_delay_seconds,
        backoff=settings.http.backoff,
        retry_on=(TransientHttpError,),
    )

    try:
        source, collection = _listing_source(settings, marketplace, http)
        walker = ListingPageWalker(source, normalizer, DatabaseOrderSink(db), retry_policy=retry)
        logger.info("Starting %s listing sync for %s", marketplace, collection)
        return await walker.run(collection)
    finally:
        await http.aclose()
        await db.dispose_async()


async def run_chain_sync(
    settings: Settings,
    *,
    from_block: int | None = None,
    to_block: int | None = None,
    sink_kind: SinkKind | None = None,
    web3_factory: Web3Factory = new_web3_client,
    transport: httpx.AsyncBaseTransport | None = None,
) -> ScanSummary:
    """Scan Seaport lifecycle events and push them to the chosen sink.

    Raises:
        NoEndpointAvailableError: If no RPC endpoint answers the startup probe.
    """
    normalizer = build_normalizer(settings)
    seaport = str(settings.chain.seaport_address)
    sink_kind = sink_kind or settings.chain.sink

    client = await FailoverChainClient.connect(
        settings.chain.rpc_urls,
        web3_factory=web3_factory,
        retry_policy=RetryPolicy(
            max_retries=settings.chain.max_retries,
            base_delay=settings.chain.retry_delay_seconds,
            backoff="exponential",
            retry_on=TRANSIENT_CHAIN_ERRORS,
        ),
        probe_timeout_seconds=settings.chain.probe_timeout_seconds,
    )

    http: RateLimitedHttpClient | None = None
    db: DatabaseManager | None = None
    try:
        sink: IdempotentSink
        if sink_kind == "database":
            db = build_database(settings)
            sink = DatabaseOrderSink(db)
        else:
            http = RateLimitedHttpClient(
                min_interval_seconds=0.0,
                timeout_seconds=settings.http.timeout_seconds,
                max_connections=settings.http.max_connections,
                transport=transport,
            )
            sink = BackendOrderSink(http, str(settings.backend.url))

        start = settings.chain.from_block if from_block is None else from_block
        end = await client.get_block_number() if to_block is None else to_block
        if end < start:
            logger.info("Nothing to scan: from_block %d is past head %d", start, end)
            return ScanSummary(from_block=start, to_block=end)

        scanner = ChunkedLogScanner(
            client,
            SeaportEventDecoder(nft_contract=normalizer.nft_contract),
            normalizer,
            sink,
            chunk_size=settings.chain.chunk_size_blocks,
        )
        logger.info(
            "Starting Seaport scan of %s blocks %d..%d via %s (sink=%s)",
            seaport,
            start,
            end,
            client.current_url,
            sink_kind,
        )
        return await scanner.scan(seaport, from_block=start, to_block=end)
    finally:
        await client.aclose()
        if http is not None:
            await http.aclose()
        if db is not None:
            await db.dispose_async()


async def init_database(settings: Settings) -> None:
    """Create the `orders` table directly (local runs; production uses Alembic)."""
    db = build_database(settings)
    try:
        await db.init_schema_async()
    finally:
        await db.dispose_async()
