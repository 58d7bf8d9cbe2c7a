"""Command-line interface for pipeline maintenance tasks."""

import argparse
import asyncio

from httpx import AsyncClient

from src.utils.clients import get_service_clients
from src.utils.logging import get_logger

from .config import get_config
from .orchestrator import build_orchestrator

logger = get_logger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Video analysis pipeline - maintenance commands",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Refund and remove requests abandoned more than 10 minutes ago (.env config)
  python -m src.pipeline.cli sweep

  # Use a 30 minute staleness window
  python -m src.pipeline.cli sweep --stale-after-minutes 30

  # Report stale rows without deleting or refunding anything
  python -m src.pipeline.cli sweep --dry-run
        """,
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    sweep = subparsers.add_parser(
        "sweep",
        help="Refund and delete in-progress rows that were never completed",
    )
    sweep.add_argument(
        "--stale-after-minutes",
        type=int,
        help="Override STALE_AFTER_MINUTES from environment",
    )
    sweep.add_argument(
        "--dry-run",
        action="store_true",
        help="Dry run mode - list stale rows but don't write to database",
    )
    return parser


async def run_sweep(args: argparse.Namespace) -> int:
    """Run the staleness sweep and print a report. Returns the exit code."""
    config = get_config()
    if args.stale_after_minutes:
        config.stale_after_minutes = args.stale_after_minutes

    logger.info(
        "cli_started",
        command="sweep",
        stale_after_minutes=config.stale_after_minutes,
        dry_run=args.dry_run,
    )

    print("\n" + "=" * 60)
    print("Stale Request Sweep")
    print("=" * 60)
    print(f"Stale after: {config.stale_after_minutes} minutes")
    if args.dry_run:
        print("\n⚠️  DRY RUN MODE - No database writes will occur")
    print("=" * 60 + "\n")

    try:
        llm_client, supabase = get_service_clients(config)
        async with AsyncClient(timeout=config.http_timeout_seconds) as http_client:
            orchestrator = build_orchestrator(config, supabase, llm_client, http_client)
            result = await orchestrator.sweep_stale_requests(
                stale_after_minutes=config.stale_after_minutes,
                dry_run=args.dry_run,
            )
    except Exception as e:
        logger.exception("sweep_execution_failed", error_type=type(e).__name__)
        print(f"\n❌ Sweep failed: {str(e)}")
        return 1

    print("\n" + "=" * 60)
    print("Sweep Results")
    print("=" * 60)
    print(f"Stale rows found: {result.stale_rows}")
    print(f"Rows removed: {result.removed}")
    print(f"Refunds issued: {result.refunded}")
    print(f"Credits refunded: {result.credits_refunded}")

    if result.errors:
        print("\nErrors encountered:")
        for error in result.errors:
            print(f"  ❌ {error}")
    else:
        print("\n✅ No errors encountered")

    print("=" * 60 + "\n")

    logger.info(
        "cli_completed",
        command="sweep",
        stale_rows=result.stale_rows,
        removed=result.removed,
        refunded=result.refunded,
        credits_refunded=str(result.credits_refunded),
    )
    return 1 if result.errors else 0


async def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    args = build_parser().parse_args(argv)
    if args.command == "sweep":
        return await run_sweep(args)
    return 2


def run() -> None:
    raise SystemExit(asyncio.run(main()))


if __name__ == "__main__":
    run()
