"""
Union Sync: Command-Line Entrypoint

Configures structlog, creates the async SQLAlchemy engine and runs one sync.

Run via:
    python -m unionsync.main                 # full sync
    python -m unionsync.main --dry-run       # fetch and count only
    python -m unionsync.main --name "Gon"    # sync cards matching a name
    python -m unionsync.main --id UE01BT/HTR-1-001
    python -m unionsync.main --delay 2000 --stats
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Any, Sequence

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from unionsync import __version__
from unionsync.config import settings
from unionsync.pipeline.card_store import CardStats, GroupCount
from unionsync.pipeline.sync_service import CardSyncService


# ---------------------------------------------------------------------------
# Structlog Configuration
# ---------------------------------------------------------------------------


def configure_logging(log_level: str = "INFO") -> None:
    """
    Set up structured logging with JSON output.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR).
    """
    # Configure stdlib logging first (for third-party libraries)
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper()),
    )

    structlog.configure(
        processors=[
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.JSONRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stderr),
        cache_logger_on_first_use=True,
    )


# ---------------------------------------------------------------------------
# Database Setup
# ---------------------------------------------------------------------------


def create_db_engine(database_url: str | None = None) -> tuple[Any, async_sessionmaker[AsyncSession]]:
    """
    Create SQLAlchemy async engine and session factory.

    Returns:
        (engine, session_factory) tuple.
    """
    url = database_url or settings.DATABASE_URL
    engine = create_async_engine(url, echo=False, pool_pre_ping=True)
    session_factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return engine, session_factory


# ---------------------------------------------------------------------------
# CLI
# ---------------------------------------------------------------------------


def _non_negative_int(value: str) -> int:
    try:
        parsed = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError("--delay must be a non-negative integer")
    if parsed < 0:
        raise argparse.ArgumentTypeError("--delay must be a non-negative integer")
    return parsed


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="unionsync",
        description="Synchronize the Union Arena card catalog into the local database.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  unionsync                    # sync all cards
  unionsync --dry-run          # fetch without saving
  unionsync --name "Gon"       # sync cards with a specific name
  unionsync --delay 2000       # slower paging
  unionsync --stats            # show database statistics around the sync
""",
    )
    target = parser.add_mutually_exclusive_group()
    target.add_argument("--name", type=str, default=None, help="Filter cards by name.")
    target.add_argument("--id", dest="card_id", type=str, default=None, help="Sync a single card by catalog id.")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch and count cards without saving them (full sync only).",
    )
    parser.add_argument(
        "--delay",
        type=_non_negative_int,
        default=settings.SYNC_DELAY_MS,
        help=f"Delay between API requests in milliseconds (default: {settings.SYNC_DELAY_MS}).",
    )
    parser.add_argument(
        "--stats",
        action="store_true",
        help="Show database statistics before and after the sync.",
    )
    return parser.parse_args(argv)


def _format_groups(groups: list[GroupCount]) -> str:
    return ", ".join(f"{g.value}: {g.count}" for g in groups) or "-"


def print_stats(stats: CardStats, heading: str) -> None:
    print(heading)
    print(f"  Total cards: {stats.total_records}")
    print(f"  Cards by type: {_format_groups(stats.by_type)}")
    print(f"  Cards by rarity: {_format_groups(stats.by_rarity)}")
    print(f"  Cards by set: {_format_groups(stats.by_set)}")


async def run(args: argparse.Namespace, service: CardSyncService) -> int:
    """Execute one sync as described by args. Returns the process exit code."""
    logger = structlog.get_logger(__name__)

    if not await service.test_connection():
        logger.error("tcg_api_unreachable", base_url=settings.TCG_API_BASE_URL)
        print("Cannot connect to TCG API. Please check your internet connection.")
        return 1

    if args.stats:
        print_stats(await service.get_stats(), "Current database statistics:")

    if args.card_id:
        card_result = await service.run_card_sync(args.card_id)
        if not card_result.success:
            print(f"Sync failed: {card_result.error}")
            return 1
        action = "created" if card_result.was_created else "updated"
        print(f"Card {card_result.card_id} {action}")
    else:
        if args.name:
            result = await service.run_name_sync(args.name, delay_ms=args.delay)
            dry_run = False
        else:
            # Connectivity was already probed above
            result = await service.run_full_sync(
                delay_ms=args.delay, dry_run=args.dry_run, preflight=False
            )
            dry_run = result.dry_run

        if not result.success:
            print(f"Sync failed: {result.error}")
            return 1

        print("Sync results:")
        if dry_run:
            print(f"  Dry run completed, would sync {result.items_fetched} cards")
        else:
            print(f"  Cards fetched: {result.items_fetched}")
            if result.summary is not None:
                print(f"  New cards saved: {result.summary.saved}")
                print(f"  Cards updated: {result.summary.updated}")
                print(f"  Errors: {result.summary.errors}")

    if args.stats and not args.dry_run:
        print_stats(await service.get_stats(), "Final database statistics:")

    return 0


async def main(argv: Sequence[str] | None = None) -> int:
    args = parse_args(argv)
    configure_logging(settings.LOG_LEVEL)
    logger = structlog.get_logger(__name__)

    logger.info("unionsync_startup", version=__version__)
    if not settings.TCG_API_KEY:
        logger.warning("config_tcg_api_key_missing", note="sending unauthenticated requests")

    engine, session_factory = create_db_engine()
    try:
        return await run(args, CardSyncService(session_factory))
    except Exception as e:
        logger.error("unionsync_fatal_error", error=str(e), error_type=type(e).__name__)
        return 1
    finally:
        await engine.dispose()


def cli() -> None:
    """Console script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    cli()
