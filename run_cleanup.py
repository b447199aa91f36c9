#!/usr/bin/env python3
"""
Refresh token sweeper.

Deletes refresh token records that can no longer be used:
- Expired tokens (whatever their revocation state)
- Orphaned tokens whose user no longer exists

Revoked tokens that have not yet expired are kept so that a replayed token is
still recognised as reuse.

Usage:
    python run_cleanup.py              # Run all cleanup tasks
    python run_cleanup.py --dry-run    # Show what would be cleaned without doing it
    python run_cleanup.py --orphaned   # Only remove orphaned tokens
    python run_cleanup.py -v           # Show per-task counts
"""
import argparse
import asyncio
import logging
import sys

from session_guard.database import AsyncSessionLocal
from session_guard.services.cleanup_service import CleanupService

logger = logging.getLogger("session_guard.cleanup")


async def run_cleanup(
    dry_run: bool = False,
    verbose: bool = False,
    orphaned_only: bool = False,
    session_factory=AsyncSessionLocal,
    clock=None,
) -> dict[str, int]:
    """
    Run the refresh token sweep.

    Args:
        dry_run: Count what would be cleaned without deleting anything
        verbose: Print per-task counts
        orphaned_only: Skip the expiry sweep
        session_factory: Callable returning an AsyncSession context manager
        clock: Optional clock override for the expiry cutoff

    Returns:
        Counts per task, keyed ``orphaned_tokens`` / ``expired_tokens``
    """
    async with session_factory() as session:
        cleanup_service = CleanupService(session, clock=clock)

        print("=" * 60)
        print("REFRESH TOKEN CLEANUP")
        print("=" * 60)
        if dry_run:
            print("\nDRY RUN MODE - No data will be deleted\n")

        results: dict[str, int] = {}

        if dry_run:
            results["orphaned_tokens"] = await cleanup_service.count_orphaned_refresh_tokens()
            if not orphaned_only:
                results["expired_tokens"] = await cleanup_service.count_expired_refresh_tokens()
        else:
            results["orphaned_tokens"] = await cleanup_service.cleanup_orphaned_refresh_tokens()
            if not orphaned_only:
                results["expired_tokens"] = await cleanup_service.cleanup_expired_refresh_tokens()

        if verbose:
            print("\nDetailed results:")
            for key, value in results.items():
                print(f"  {key}: {value}")

        total = sum(results.values())
        verb = "Would clean" if dry_run else "Cleaned"
        print(f"\n{verb}: {total} total token(s)\n")
        return results


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the cleanup script."""
    parser = argparse.ArgumentParser(
        description="Delete expired and orphaned refresh tokens",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                # Run all cleanup tasks
  %(prog)s --dry-run      # Show what would be cleaned
  %(prog)s --orphaned     # Only remove tokens of deleted users
        """
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be deleted without actually deleting"
    )
    parser.add_argument(
        "--orphaned",
        action="store_true",
        help="Only remove orphaned tokens"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show detailed information"
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    try:
        asyncio.run(run_cleanup(
            dry_run=args.dry_run,
            verbose=args.verbose,
            orphaned_only=args.orphaned,
        ))
    except Exception as e:
        logger.error(f"Error during cleanup: {e}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
