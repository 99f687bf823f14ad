#!/usr/bin/env python3
"""
Seed the market cache from a JSON file.

Expected layout:
    {
        "cape": {"value": 37.2, "period": "Jan 2025"},
        "quarterly_earnings": {"2024Q3": 60.5, ...},
        "quarterly_dividends": {"2024Q3": 18.8, ...},
        "earnings_estimates": {"2025Q1": 62.1, ...},
        "monthly_returns": {"2024-12": -0.025, ...}
    }
"""

import argparse
import json
import logging
import sys
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from config import Config
from dashboard_cache.db import utcnow
from dashboard_cache.market import MarketCache, Source
from dashboard_cache.monthly import MonthlyReturnStore
from dashboard_cache.quarterly import QuarterlyStore

logger = logging.getLogger(__name__)

# JSON section -> upsert_quarter keyword
QUARTERLY_SECTIONS = {
    'quarterly_earnings': 'eps_actual',
    'quarterly_dividends': 'dividend',
    'earnings_estimates': 'eps_estimated',
}


def seed_cache(init_data: dict, db_path=None) -> dict:
    """Write seed values through the regular store operations."""
    now = utcnow()
    counts = {}

    cape = init_data.get('cape')
    if cape:
        MarketCache(db_path).upsert_snapshot(
            Source.YCHARTS,
            {'current_cape': cape['value'], 'cape_period': cape['period']},
            now
        )
        counts['cape'] = 1

    quarterly = QuarterlyStore(db_path)
    for section, field in QUARTERLY_SECTIONS.items():
        values = init_data.get(section) or {}
        for quarter, value in values.items():
            if value is None:
                continue
            quarterly.upsert_quarter(quarter, timestamp=now, **{field: value})
        counts[section] = len(values)

    # Decimals, not percentages: -0.025 for -2.5%
    monthly_returns = init_data.get('monthly_returns') or {}
    if monthly_returns:
        store = MonthlyReturnStore(db_path)
        for month, value in monthly_returns.items():
            store.record_month(month, value, timestamp=now)
        counts['monthly_returns'] = len(monthly_returns)

    return counts


def main():
    parser = argparse.ArgumentParser(description="Seed the market cache from a JSON file.")
    parser.add_argument('json_path', nargs='?', default='config/market_init.json')
    parser.add_argument('--db', default=Config.CACHE_DB_PATH)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')

    with open(args.json_path, 'r', encoding='utf-8') as f:
        init_data = json.load(f)

    counts = seed_cache(init_data, args.db)

    print("\nCache initialization complete!")
    for section, count in counts.items():
        print(f"  {section}: {count}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
