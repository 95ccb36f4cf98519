"""Command-line entry point.

Usage:
    python -m nft_order_sync listings --marketplace {opensea,magiceden}
    python -m nft_order_sync chain [--from-block N] [--to-block N] [--sink {backend,database}]
    python -m nft_order_sync init-db

Exit codes: 0 on success, 1 on a runtime failure (including exhausted
retries), 2 when setup fails before any work starts.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from pydantic import ValidationError

from nft_order_sync.chain.client import NoEndpointAvailableError
from nft_order_sync.config import ConfigurationError, get_settings
from nft_order_sync.ingestor.retry import RetryExhaustedError
from nft_order_sync.sync import init_database, run_chain_sync, run_listing_sync

logger = logging.getLogger("nft_order_sync")

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_SETUP_FAILURE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nft_order_sync",
        description="Sync NFT marketplace listings and Seaport order events into one order store.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    listings = sub.add_parser("listings", help="Walk a marketplace's active listings")
    listings.add_argument(
        "--marketplace",
        choices=("opensea", "magiceden"),
        required=True,
        help="Listing source to walk",
    )

    chain = sub.add_parser("chain", help="Scan Seaport lifecycle events")
    chain.add_argument("--from-block", type=int, default=None, help="First block (default: CHAIN_FROM_BLOCK)")
    chain.add_argument("--to-block", type=int, default=None, help="Last block (default: chain head)")
    chain.add_argument(
        "--sink",
        choices=("backend", "database"),
        default=None,
        help="Where to write events (default: CHAIN_SINK)",
    )

    sub.add_parser("init-db", help="Create the orders table")
    return parser


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings()
    logging.getLogger().setLevel(settings.get_logging_level())

    if args.command == "listings":
        settings.validate_requirements(command="listings", marketplace=args.marketplace)
        logger.info("Settings: %s", settings.redacted_summary())
        await run_listing_sync(settings, args.marketplace)
    elif args.command == "chain":
        settings.validate_requirements(command="chain", sink=args.sink)
        logger.info("Settings: %s", settings.redacted_summary())
        summary = await run_chain_sync(
            settings,
            from_block=args.from_block,
            to_block=args.to_block,
            sink_kind=args.sink,
        )
        if summary.chunks_failed:
            logger.warning("%d chunk(s) failed; rerun the affected ranges", summary.chunks_failed)
    else:
        settings.validate_requirements(command="init-db")
        await init_database(settings)
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        return asyncio.run(_run(args))
    except (ConfigurationError, ValidationError, NoEndpointAvailableError) as e:
        logger.error("Setup failed: %s", e)
        return EXIT_SETUP_FAILURE
    except RetryExhaustedError as e:
        logger.error("%s", e)
        return EXIT_FAILURE
    except Exception:
        logger.exception("Sync failed")
        return EXIT_FAILURE


if __name__ == "__main__":
    sys.exit(main())
