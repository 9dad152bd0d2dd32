"""CLI command for backfilling registry events from blockchain history.

Usage:
    python -m asset_registry.cli.recover_events [OPTIONS]

Examples:
    # First-time backfill from contract deployment block
    python -m asset_registry.cli.recover_events --from-block 12345000

    # Resume from last checkpoint
    python -m asset_registry.cli.recover_events

    # Specific block range
    python -m asset_registry.cli.recover_events --from-block 12345000 --to-block 12346000

    # Dry run (no database writes)
    python -m asset_registry.cli.recover_events --from-block 12345000 --dry-run

    # Verbose logging
    python -m asset_registry.cli.recover_events --from-block 12345000 -v
"""

import asyncio
import sys
from argparse import ArgumentParser, Namespace

import structlog

from asset_registry.core.config import Settings, configure_logging
from asset_registry.core.database import setup_db_session
from asset_registry.services.blockchain.chain_reader import ChainReader
from asset_registry.services.exceptions import ServiceError
from asset_registry.services.sync.engine import SyncEngine
from asset_registry.services.sync.ledger import SqlLedger
from asset_registry.uow import create_uow_factory

logger = structlog.get_logger()


def parse_args(argv: list[str] | None = None) -> Namespace:
    """Parse command-line arguments."""
    parser = ArgumentParser(
        description="Backfill asset registrations and ownership transfers from blockchain history",
    )

    parser.add_argument(
        "--from-block",
        type=int,
        help="Starting block number (uses last_processed_block + 1 if not provided)",
    )

    parser.add_argument(
        "--to-block",
        default="latest",
        help='Ending block number or "latest" (default: latest)',
    )

    parser.add_argument(
        "--batch-size",
        type=int,
        default=None,
        help="Number of blocks per chunk (default: BACKFILL_BATCH_SIZE, 1000)",
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Fetch and parse events without database writes",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable verbose logging (DEBUG level)",
    )

    return parser.parse_args(argv)


async def resolve_range(args: Namespace, engine: SyncEngine) -> tuple[int, int] | None:
    """Turn CLI arguments into an inclusive block range.

    Returns:
        (from_block, to_block), or None when the start cannot be determined
    """
    from_block = args.from_block
    if from_block is None:
        last_block = await engine.ledger.current_watermark()
        if last_block is None:
            logger.error(
                "recover_events.error",
                message=(
                    "Cannot determine starting block. "
                    "Provide --from-block or ensure "
                    "last_processed_block exists in system_state."
                ),
            )
            return None
        from_block = last_block + 1
        logger.info(
            "recover_events.resume", last_processed_block=last_block, from_block=from_block
        )

    if args.to_block == "latest":
        to_block = await engine.reader.current_height()
    else:
        try:
            to_block = int(args.to_block)
        except ValueError:
            logger.error(
                "recover_events.error", message=f"Invalid --to-block value: {args.to_block}"
            )
            return None

    return from_block, to_block


async def async_main(argv: list[str] | None = None) -> int:
    """Main CLI entry point (async).

    Returns:
        Exit code: 0 (success), 1 (error), 2 (interrupted)
    """
    args = parse_args(argv)

    settings = Settings()  # type: ignore[call-arg]

    if args.verbose:
        settings.log_level = "DEBUG"

    configure_logging(settings)

    batch_size = args.batch_size or settings.backfill_batch_size
    if batch_size < 1:
        logger.error("recover_events.error", message="--batch-size must be positive")
        return 1

    logger.info(
        "recover_events.start",
        contract=settings.contract_address,
        dry_run=args.dry_run,
    )

    if args.dry_run:
        logger.info("recover_events.dry_run", message="DRY RUN MODE - No database modifications")

    session_factory = setup_db_session(settings.database_url, settings.db_pool_size)
    engine = SyncEngine(
        reader=ChainReader.from_settings(settings),
        ledger=SqlLedger(create_uow_factory(session_factory)),
    )

    try:
        block_range = await resolve_range(args, engine)
        if block_range is None:
            return 1
        from_block, to_block = block_range

        logger.info(
            "recover_events.range",
            from_block=from_block,
            to_block=to_block,
            batch_size=batch_size,
        )

        result = await engine.backfill(
            from_block, to_block, batch_size=batch_size, dry_run=args.dry_run
        )

        if not result.scanned:
            logger.info("recover_events.no_blocks", message="Nothing to scan in range")
            return 0

        if args.dry_run:
            logger.info(
                "recover_events.dry_run_complete",
                registrations=result.registrations,
                transfers=result.transfers,
                skipped=result.skipped,
                message="DRY RUN COMPLETE - No changes made",
            )
            return 0

        logger.info(
            "recover_events.complete",
            registrations=result.registrations,
            transfers=result.transfers,
            skipped=result.skipped,
            last_processed_block=result.watermark,
        )
        return 0

    except (KeyboardInterrupt, asyncio.CancelledError):
        logger.warning("recover_events.interrupted", message="Backfill interrupted by user")
        return 2

    except ServiceError as e:
        logger.error("recover_events.failed", error=str(e), error_type=type(e).__name__)
        return 1

    except Exception as e:
        logger.error("recover_events.fatal_error", error=str(e), exc_info=True)
        return 1


def main(argv: list[str] | None = None) -> int:
    """Synchronous wrapper for async main."""
    try:
        return asyncio.run(async_main(argv))
    except KeyboardInterrupt:
        return 2


if __name__ == "__main__":
    sys.exit(main())
