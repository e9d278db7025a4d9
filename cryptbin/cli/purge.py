# cryptbin/cli/purge.py
"""
CLI commands for purging expired pastes.

Usage:
    python -m cryptbin.cli.purge status
    python -m cryptbin.cli.purge run
    python -m cryptbin.cli.purge run --batch-size 500 --force
"""

import argparse
import sys
import time

from dotenv import load_dotenv

load_dotenv()


def get_store():
    """Get the configured data store."""
    from cryptbin.storage.factory import get_data_store

    return get_data_store()


def cmd_status(args):
    """Show the configured store and purge schedule."""
    from cryptbin.config import get_settings
    from cryptbin.persistence.purge_limiter import PurgeLimiter

    settings = get_settings()
    store = get_store()
    limiter = PurgeLimiter(store, settings.PURGE_LIMIT_SECONDS)

    print("\n=== Purge Status ===\n")
    print(f"Data store: {store.name}")
    print(f"Stored pastes: {len(store.get_all_paste_ids())}")
    print(f"Purge interval: {settings.PURGE_LIMIT_SECONDS}s")
    print(f"Batch size: {settings.PURGE_BATCH_SIZE}")

    next_purge = limiter.next_purge_at()
    if next_purge > int(time.time()):
        print(f"Next sweep allowed in: {next_purge - int(time.time())}s")
    else:
        print("Next sweep allowed: now")
    print()


def cmd_run(args):
    """Run one purge sweep."""
    from cryptbin.config import get_settings
    from cryptbin.persistence.purge_limiter import PurgeLimiter
    from cryptbin.services.purge_service import run_purge

    settings = get_settings()
    store = get_store()
    limiter = PurgeLimiter(store, settings.PURGE_LIMIT_SECONDS)
    batch_size = args.batch_size or settings.PURGE_BATCH_SIZE

    print(f"\nPurging expired pastes from {store.name} (batch size {batch_size})...\n")

    result = run_purge(store, limiter, batch_size, force=args.force)

    if not result.ran:
        print("Skipped: next sweep is not due yet (use --force to override)")
        return

    print(f"Removed: {len(result.removed)}")
    for paste_id in result.removed:
        print(f"  - {paste_id}")
    print(f"Duration: {result.duration_ms}ms")

    if result.errors:
        print("\nErrors:")
        for error in result.errors:
            print(f"  - {error}")

    if not result.success:
        sys.exit(1)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Cryptbin Purge CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Show store and schedule
  python -m cryptbin.cli.purge status

  # Run a sweep if one is due
  python -m cryptbin.cli.purge run

  # Run a large sweep right now
  python -m cryptbin.cli.purge run --batch-size 500 --force
        """,
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # status command
    status_parser = subparsers.add_parser("status", help="Show store and purge schedule")
    status_parser.set_defaults(func=cmd_status)

    # run command
    run_parser = subparsers.add_parser("run", help="Run one purge sweep")
    run_parser.add_argument("--batch-size", type=int, default=None, help="Max pastes to remove (default: PURGE_BATCH_SIZE)")
    run_parser.add_argument("--force", action="store_true", help="Ignore the purge interval")
    run_parser.set_defaults(func=cmd_run)

    args = parser.parse_args(argv)
    args.func(args)


if __name__ == "__main__":
    main()
