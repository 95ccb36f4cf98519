"""Chunked `eth_getLogs` scan over Seaport lifecycle events."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from web3 import AsyncWeb3

from nft_order_sync.chain.client import ChainClientError
from nft_order_sync.chain.seaport import DecodeError
from nft_order_sync.ingestor.retry import RetryExhaustedError
from nft_order_sync.orders.models import EventKind, LifecycleEvent, SourceKind
from nft_order_sync.orders.normalizer import NormalizationError, OrderNormalizer
from nft_order_sync.storage.sinks import IdempotentSink, SinkError, UpsertOutcome

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE = 10_000
DEFAULT_EVENT_ORDER: tuple[EventKind, ...] = (
    EventKind.VALIDATED,
    EventKind.FULFILLED,
    EventKind.CANCELLED,
)


class LogClient(Protocol):
    async def get_logs(self, filter_params: dict[str, Any]) -> list[dict[str, Any]]: ...


class LogDecoder(Protocol):
    def topic(self, kind: EventKind) -> str: ...

    def decode(self, kind: EventKind, log: Mapping[str, Any]) -> LifecycleEvent | None: ...


def iter_block_ranges(from_block: int, to_block: int, chunk_size: int) -> Iterator[tuple[int, int]]:
    """Yield inclusive `(start, end)` ranges covering `[from_block, to_block]`.

    >>> list(iter_block_ranges(0, 25, 10))
    [(0, 9), (10, 19), (20, 25)]
    """
    if chunk_size <= 0:
        raise ValueError("chunk_size must be > 0")
    for start in range(from_block, to_block + 1, chunk_size):
        yield start, min(to_block, start + chunk_size - 1)


@dataclass
class KindCounts:
    """Outcome counts for one event kind."""

    chunks: int = 0
    logs: int = 0
    written: int = 0
    skipped_terminal: int = 0
    skipped_foreign: int = 0
    decode_failed: int = 0
    write_failed: int = 0
    chunks_failed: int = 0


@dataclass
class ScanSummary:
    from_block: int
    to_block: int
    counts: dict[EventKind, KindCounts] = field(default_factory=dict)

    def for_kind(self, kind: EventKind) -> KindCounts:
        return self.counts.setdefault(kind, KindCounts())

    @property
    def chunks_failed(self) -> int:
        return sum(c.chunks_failed for c in self.counts.values())

    @property
    def written(self) -> int:
        return sum(c.written for c in self.counts.values())


class ChunkedLogScanner:
    """Scan a block range for Seaport events, one kind and one chunk at a time.

    Passes run in the order given (validated, fulfilled, cancelled by
    default) so a later pass can settle orders an earlier pass created. A
    chunk whose log fetch fails is counted and skipped; the scan moves on
    to the next chunk. Per-log decode and write failures are counted the
    same way.
    """

    def __init__(
        self,
        client: LogClient,
        decoder: LogDecoder,
        normalizer: OrderNormalizer,
        sink: IdempotentSink,
        *,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
    ) -> None:
        if chunk_size <= 0:
            raise ValueError("chunk_size must be > 0")
        self._client = client
        self._decoder = decoder
        self._normalizer = normalizer
        self._sink = sink
        self._chunk = chunk_size

    async def scan(
        self,
        contract_address: str,
        event_kinds: Sequence[EventKind] = DEFAULT_EVENT_ORDER,
        *,
        from_block: int,
        to_block: int,
    ) -> ScanSummary:
        if from_block < 0 or to_block < from_block:
            raise ValueError(f"Invalid block range {from_block}..{to_block}")

        address = AsyncWeb3.to_checksum_address(contract_address)
        summary = ScanSummary(from_block=from_block, to_block=to_block)

        for kind in event_kinds:
            counts = summary.for_kind(kind)
            logger.info("Scanning %s logs in blocks %d..%d", kind.value, from_block, to_block)
            for start, end in iter_block_ranges(from_block, to_block, self._chunk):
                await self._scan_chunk(kind, address, start, end, counts)

            logger.info(
                "%s pass finished: chunks=%d logs=%d written=%d skipped_terminal=%d "
                "skipped_foreign=%d decode_failed=%d write_failed=%d chunks_failed=%d",
                kind.value,
                counts.chunks,
                counts.logs,
                counts.written,
                counts.skipped_terminal,
                counts.skipped_foreign,
                counts.decode_failed,
                counts.write_failed,
                counts.chunks_failed,
            )
        return summary

    async def _scan_chunk(
        self,
        kind: EventKind,
        address: str,
        start: int,
        end: int,
        counts: KindCounts,
    ) -> None:
        counts.chunks += 1
        try:
            logs = await self._client.get_logs(
                {
                    "address": address,
                    "topics": [self._decoder.topic(kind)],
                    "fromBlock": start,
                    "toBlock": end,
                }
            )
        except (ChainClientError, RetryExhaustedError) as e:
            counts.chunks_failed += 1
            logger.error("Failed to fetch %s logs for blocks %d..%d: %s", kind.value, start, end, e)
            return
        except Exception:
            counts.chunks_failed += 1
            logger.exception("Unexpected error fetching %s logs for blocks %d..%d", kind.value, start, end)
            return

        counts.logs += len(logs)
        if logs:
            logger.info("Found %d %s logs in blocks %d..%d", len(logs), kind.value, start, end)
        for log in logs:
            await self._process_log(kind, log, counts)

    async def _process_log(self, kind: EventKind, log: Mapping[str, Any], counts: KindCounts) -> None:
        try:
            event = self._decoder.decode(kind, log)
            if event is None:
                counts.skipped_foreign += 1
                return
            order = self._normalizer.normalize(SourceKind.SEAPORT, event)
        except (DecodeError, NormalizationError) as e:
            counts.decode_failed += 1
            logger.warning("Skipping undecodable %s log: %s", kind.value, e)
            return

        try:
            outcome = await self._sink.upsert(order)
        except SinkError as e:
            counts.write_failed += 1
            logger.error("Upsert failed for %s: %s", order.identifier, e)
            return

        if outcome is UpsertOutcome.SKIPPED_TERMINAL:
            counts.skipped_terminal += 1
        else:
            counts.written += 1
            logger.debug("Saved %s %s (block %s)", kind.value, order.identifier, order.on_chain_block)
