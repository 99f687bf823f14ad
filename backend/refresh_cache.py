#!/usr/bin/env python3
"""Script to run one market cache refresh cycle (or finalize a past year)."""

import argparse
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from config import Config
from dashboard_cache.db import init_db
from dashboard_cache.refresh import RefreshCoordinator


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument('--force', action='store_true',
                        help='refresh every source even if still fresh')
    parser.add_argument('--finalize', type=int, metavar='YEAR',
                        help='only try to finalize YEAR into the historical table')
    parser.add_argument('--db', default=Config.CACHE_DB_PATH,
                        help=f'database path (default: {Config.CACHE_DB_PATH})')
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')

    print("Initializing database...")
    init_db(args.db)
    coordinator = RefreshCoordinator(args.db)

    if args.finalize is not None:
        if coordinator.finalize_year(args.finalize):
            print(f"\nFinalized {args.finalize}")
            return 0
        print(f"\n{args.finalize} not finalized (already present or inputs incomplete)")
        return 1

    print(f"\nRefresh settings:")
    print(f"  Database: {args.db}")
    print(f"  Force: {args.force}")
    print(f"  Timeout: {Config.SCRAPE_TIMEOUT_SECONDS}s, retries: {Config.API_MAX_RETRIES}")

    result = coordinator.run_once(force=args.force)

    print(f"\nRefresh {result.status}")
    for source, outcome in result.outcomes.items():
        print(f"  {source}: {outcome.value}")
    if result.finalized_year:
        print(f"  Finalized year: {result.finalized_year}")
    for error in result.errors:
        print(f"  Error: {error}")

    return 0 if result.ok else 1


if __name__ == "__main__":
    sys.exit(main())
