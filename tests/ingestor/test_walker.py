"""Tests for the listing page walker."""

from __future__ import annotations

from typing import Any

import pytest

from nft_order_sync.ingestor.http_client import TransientHttpError
from nft_order_sync.ingestor.listing_sources import ListingPage
from nft_order_sync.ingestor.retry import RetryExhaustedError, RetryPolicy
from nft_order_sync.ingestor.walker import ListingPageWalker
from nft_order_sync.orders.models import CanonicalOrder, SourceKind
from nft_order_sync.orders.normalizer import OrderNormalizer
from nft_order_sync.storage.sinks import SinkError, UpsertOutcome

NFT = "0x1234567890abcdef1234567890abcdef12345678"
SELLER = "0xaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaaa"


def _listing(token_id: int, price: int = 1_000_000_000) -> dict[str, Any]:
    return {"tokenMint": str(token_id), "seller": SELLER, "price": price}


class FakeSource:
    """Offset-paginated source serving a fixed list of pages."""

    source_kind = SourceKind.MAGICEDEN

    def __init__(self, pages: list[list[dict[str, Any]]], *, failures: int = 0) -> None:
        self._pages = pages
        self._failures = failures
        self.fetches: list[int] = []

    @property
    def initial_token(self) -> int:
        return 0

    async def fetch_page(self, collection: str, token: str | int | None) -> ListingPage:
        if self._failures:
            self._failures -= 1
            raise TransientHttpError("503")
        self.fetches.append(int(token or 0))
        index = len(self.fetches) - 1
        entries = self._pages[index] if index < len(self._pages) else []
        if not entries:
            return ListingPage(entries=[], next_token=None)
        return ListingPage(entries=entries, next_token=int(token or 0) + len(entries))


class CursorSource:
    """Cursor-paginated source returning scripted (entries, next) pairs."""

    source_kind = SourceKind.MAGICEDEN

    def __init__(self, pages: list[tuple[list[dict[str, Any]], str | None]]) -> None:
        self._pages = pages
        self.tokens: list[str | int | None] = []

    @property
    def initial_token(self) -> None:
        return None

    async def fetch_page(self, collection: str, token: str | int | None) -> ListingPage:
        self.tokens.append(token)
        entries, next_token = self._pages[len(self.tokens) - 1]
        return ListingPage(entries=entries, next_token=next_token)


class RecordingSink:
    def __init__(self, *, outcome: UpsertOutcome = UpsertOutcome.INSERTED, fail_on: set[str] | None = None) -> None:
        self.orders: list[CanonicalOrder] = []
        self._outcome = outcome
        self._fail_on = fail_on or set()

    async def upsert(self, order: CanonicalOrder) -> UpsertOutcome:
        if order.token_id in self._fail_on:
            raise SinkError("db down")
        self.orders.append(order)
        return self._outcome


async def _no_sleep(delay: float) -> None:
    return None


def _walker(source, sink, *, max_retries: int = 3) -> ListingPageWalker:
    return ListingPageWalker(
        source,
        OrderNormalizer(nft_contract=NFT),
        sink,
        retry_policy=RetryPolicy(
            max_retries=max_retries,
            base_delay=1.5,
            retry_on=(TransientHttpError,),
            sleep=_no_sleep,
        ),
    )


class TestListingPageWalker:
    @pytest.mark.asyncio
    async def test_walks_until_empty_page(self) -> None:
        """Two full pages then an empty one: three fetches, ten upserts."""
        source = FakeSource([[_listing(i) for i in range(5)], [_listing(i) for i in range(5, 10)]])
        sink = RecordingSink()

        summary = await _walker(source, sink).run("ape_collection")

        assert source.fetches == [0, 5, 10]
        assert len(sink.orders) == 10
        assert summary.pages == 3
        assert summary.total_processed == 10
        assert summary.written == 10

    @pytest.mark.asyncio
    async def test_empty_first_page(self) -> None:
        source = FakeSource([])
        sink = RecordingSink()

        summary = await _walker(source, sink).run("ape_collection")

        assert source.fetches == [0]
        assert sink.orders == []
        assert summary.total_processed == 0
        assert summary.pages == 1

    @pytest.mark.asyncio
    async def test_missing_cursor_terminates(self) -> None:
        source = CursorSource([([_listing(1)], "c2"), ([_listing(2)], None)])
        sink = RecordingSink()

        summary = await _walker(source, sink).run(NFT)

        assert source.tokens == [None, "c2"]
        assert summary.total_processed == 2

    @pytest.mark.asyncio
    async def test_repeated_cursor_terminates(self) -> None:
        source = CursorSource([([_listing(1)], "c2"), ([_listing(2)], "c2"), ([_listing(3)], None)])
        sink = RecordingSink()

        summary = await _walker(source, sink).run(NFT)

        assert source.tokens == [None, "c2"]
        assert summary.total_processed == 2

    @pytest.mark.asyncio
    async def test_page_order_preserved(self) -> None:
        """Every entry of page k is upserted before page k+1 is fetched."""
        source = FakeSource([[_listing(1), _listing(2)], [_listing(3)]])
        observed: list[tuple[int, str | None]] = []

        class OrderingSink(RecordingSink):
            async def upsert(self, order: CanonicalOrder) -> UpsertOutcome:
                observed.append((len(source.fetches), order.token_id))
                return await super().upsert(order)

        await _walker(source, OrderingSink()).run("ape_collection")

        assert observed == [(1, "1"), (1, "2"), (2, "3")]

    @pytest.mark.asyncio
    async def test_transient_fetch_failures_are_retried(self) -> None:
        source = FakeSource([[_listing(1)]], failures=2)
        sink = RecordingSink()

        summary = await _walker(source, sink).run("ape_collection")

        assert summary.total_processed == 1
        assert source.fetches == [0, 1]

    @pytest.mark.asyncio
    async def test_exhausted_fetch_aborts_run(self) -> None:
        source = FakeSource([[_listing(1)]], failures=10)

        with pytest.raises(RetryExhaustedError) as exc_info:
            await _walker(source, RecordingSink(), max_retries=3).run("ape_collection")

        assert exc_info.value.attempts == 4

    @pytest.mark.asyncio
    async def test_bad_entries_and_write_failures_are_counted(self) -> None:
        page = [_listing(1), {"seller": SELLER, "price": 1}, _listing(3)]
        source = FakeSource([page])
        sink = RecordingSink(fail_on={"3"})

        summary = await _walker(source, sink).run("ape_collection")

        assert summary.total_processed == 3
        assert summary.written == 1
        assert summary.normalize_failed == 1
        assert summary.write_failed == 1

    @pytest.mark.asyncio
    async def test_terminal_skips_are_counted(self) -> None:
        source = FakeSource([[_listing(1), _listing(2)]])
        sink = RecordingSink(outcome=UpsertOutcome.SKIPPED_TERMINAL)

        summary = await _walker(source, sink).run("ape_collection")

        assert summary.skipped_terminal == 2
        assert summary.written == 0
