"""
Bounty Triage sync worker entry point.

Usage:
    python -m bounty_triage.worker [OPTIONS]

Options:
    --interval N        Seconds between sync passes (default: from config)
    --no-initial-sync   Wait one interval before the first pass
    --once              Run a single pass and exit
"""
from __future__ import annotations

import argparse
import sys

from .loop import run_worker


def main() -> int:
    """Main entry point for worker CLI."""
    parser = argparse.ArgumentParser(
        description="Bounty Triage worker - mirrors GitHub issues on an interval",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Run with default settings
    python -m bounty_triage.worker

    # Sync every five minutes
    python -m bounty_triage.worker --interval 300

    # One pass, e.g. from cron
    python -m bounty_triage.worker --once
        """,
    )

    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between sync passes (default: from config)",
    )
    parser.add_argument(
        "--no-initial-sync",
        action="store_true",
        help="Wait one interval before the first pass",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single sync pass and exit",
    )

    args = parser.parse_args()

    print("Starting Bounty Triage worker...")
    print(f"  Interval: {args.interval or 'from config'}")
    print()

    try:
        result = run_worker(
            interval=args.interval,
            sync_on_start=False if args.no_initial_sync else None,
            once=args.once,
        )
        if result is not None and result.repositories_failed:
            return 1
        return 0
    except KeyboardInterrupt:
        print("\nWorker stopped by user")
        return 0
    except Exception as e:
        print(f"Worker error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
