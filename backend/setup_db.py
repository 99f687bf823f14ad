#!/usr/bin/env python3
"""Import finalized yearly data (Year, Price, Dividend, EPS, CAPE) from a CSV file."""

import argparse
import logging
import sys
from pathlib import Path

import pandas as pd

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent))

from config import Config
from dashboard_cache.errors import DuplicateYear
from dashboard_cache.historical import HistoricalStore

logger = logging.getLogger(__name__)

CSV_COLUMNS = ['year', 'price', 'dividend', 'eps', 'cape']


def load_history_csv(csv_path) -> pd.DataFrame:
    """
    Read a yearly history CSV.

    The first five columns are taken as year, price, dividend, EPS and
    CAPE regardless of their header names.
    """
    df = pd.read_csv(csv_path)
    if len(df.columns) < 5:
        raise ValueError(f"{csv_path}: expected at least 5 columns, got {len(df.columns)}")

    df = df.iloc[:, :5].copy()
    df.columns = CSV_COLUMNS
    df = df.dropna()
    df['year'] = df['year'].astype(int)
    for col in CSV_COLUMNS[1:]:
        df[col] = pd.to_numeric(df[col], errors='raise').astype(float)
    return df.sort_values('year')


def import_history(store: HistoricalStore, df: pd.DataFrame) -> dict:
    """Append each year not yet present; existing years are left untouched."""
    added, skipped = [], []
    for row in df.itertuples(index=False):
        try:
            store.append_year(int(row.year), row.price, row.dividend, row.eps, row.cape)
            added.append(int(row.year))
        except DuplicateYear:
            skipped.append(int(row.year))
    return {'added': added, 'skipped': skipped}


def main():
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument('csv_path', help='CSV with Year,Price,Dividend,EPS,CAPE columns')
    parser.add_argument('--db', default=Config.CACHE_DB_PATH)
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format='%(levelname)s: %(message)s')

    df = load_history_csv(args.csv_path)
    result = import_history(HistoricalStore(args.db), df)

    print(f"\nHistorical import complete!")
    print(f"  Added: {len(result['added'])}")
    print(f"  Already present: {len(result['skipped'])}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
