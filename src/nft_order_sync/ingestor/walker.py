"""Fetch-normalize-upsert loop over a paginated listing source."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from nft_order_sync.ingestor.listing_sources import ListingPage, ListingSource
from nft_order_sync.ingestor.retry import RetryPolicy
from nft_order_sync.orders.normalizer import NormalizationError, OrderNormalizer
from nft_order_sync.storage.sinks import IdempotentSink, SinkError, UpsertOutcome

logger = logging.getLogger(__name__)


@dataclass
class WalkSummary:
    """Counts for one walker run, per outcome category."""

    pages: int = 0
    total_processed: int = 0
    written: int = 0
    skipped_terminal: int = 0
    write_failed: int = 0
    normalize_failed: int = 0


class ListingPageWalker:
    """Walk a marketplace's full active-listing set.

    Pages are processed strictly in order: page k+1 is not requested before
    every entry of page k has been upserted. A fetch that exhausts its retry
    budget raises `RetryExhaustedError` and aborts the run; per-entry
    normalization and write failures are counted and skipped.
    """

    def __init__(
        self,
        source: ListingSource,
        normalizer: OrderNormalizer,
        sink: IdempotentSink,
        *,
        retry_policy: RetryPolicy,
    ) -> None:
        self._source = source
        self._normalizer = normalizer
        self._sink = sink
        self._retry = retry_policy

    async def run(self, collection: str) -> WalkSummary:
        summary = WalkSummary()
        token = self._source.initial_token
        kind = self._source.source_kind.value

        while True:
            page = await self._fetch(collection, token)
            summary.pages += 1
            logger.info(
                "Fetched %d %s listings (page=%d token=%s next=%s)",
                len(page.entries),
                kind,
                summary.pages,
                token,
                page.next_token,
            )
            if not page.entries:
                break

            for entry in page.entries:
                await self._process(entry, summary)

            next_token = page.next_token
            if next_token is None:
                break
            if next_token == token:
                logger.warning("%s returned the same pagination token %r; stopping", kind, token)
                break
            token = next_token

        logger.info(
            "%s walk finished: pages=%d processed=%d written=%d skipped_terminal=%d "
            "write_failed=%d normalize_failed=%d",
            kind,
            summary.pages,
            summary.total_processed,
            summary.written,
            summary.skipped_terminal,
            summary.write_failed,
            summary.normalize_failed,
        )
        return summary

    async def _fetch(self, collection: str, token: str | int | None) -> ListingPage:
        return await self._retry.execute(
            lambda: self._source.fetch_page(collection, token),
            description=f"{self._source.source_kind.value} page fetch (token={token})",
        )

    async def _process(self, entry: dict, summary: WalkSummary) -> None:
        summary.total_processed += 1
        try:
            order = self._normalizer.normalize(self._source.source_kind, entry)
        except NormalizationError as e:
            summary.normalize_failed += 1
            logger.warning("Skipping unparseable %s listing: %s", self._source.source_kind.value, e)
            return

        try:
            outcome = await self._sink.upsert(order)
        except SinkError as e:
            summary.write_failed += 1
            logger.error("Upsert failed for %s: %s", order.identifier, e)
            return

        if outcome is UpsertOutcome.SKIPPED_TERMINAL:
            summary.skipped_terminal += 1
            logger.debug("Kept terminal status for %s", order.identifier)
        else:
            summary.written += 1
            logger.debug("Saved tokenId=%s identifier=%s", order.token_id, order.identifier)
