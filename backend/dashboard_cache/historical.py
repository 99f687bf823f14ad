"""Finalized yearly market data (price, dividend, EPS, CAPE)."""

import sqlite3
from typing import List
import logging

import pandas as pd

from .db import PathLike, get_connection, init_db, to_db_timestamp, utcnow
from .errors import DuplicateYear, NotFound, ValidationFailure
from .models import HistoricalDataRow, require_non_negative, require_return

logger = logging.getLogger(__name__)

FRAME_COLUMNS = ['sp500_price', 'dividend', 'eps', 'cape', 'total_return', 'dividend_yield']


def _require_year(year) -> int:
    if isinstance(year, bool) or not isinstance(year, int):
        raise ValidationFailure(f"year must be an integer, got {year!r}")
    return year


class HistoricalStore:
    """
    One row per completed calendar year.

    Rows are written once and never edited; appending a year that
    already exists fails instead of overwriting it.
    """

    def __init__(self, db_path: PathLike = None):
        self.db_path = db_path
        init_db(db_path)

    def append_year(
        self,
        year: int,
        price: float,
        dividend: float,
        eps: float,
        cape: float,
        total_return: float = None
    ) -> HistoricalDataRow:
        """
        Insert the finalized values for a year.

        total_return is the compounded yearly total return as a decimal,
        or None when the monthly returns for the year are incomplete.

        Raises:
            DuplicateYear: a row for year already exists
            ValidationFailure: a value is missing, negative or not a number
        """
        year = _require_year(year)
        values = (
            require_non_negative('sp500_price', price),
            require_non_negative('dividend', dividend),
            require_non_negative('eps', eps),
            require_non_negative('cape', cape),
            require_return('total_return', total_return) if total_return is not None else None,
        )

        with get_connection(self.db_path) as conn:
            try:
                conn.execute("""
                    INSERT INTO historical_data
                        (year, sp500_price, dividend, eps, cape, total_return, last_updated)
                    VALUES (?, ?, ?, ?, ?, ?, ?)
                """, (year, *values, to_db_timestamp(utcnow())))
            except sqlite3.IntegrityError as e:
                if 'UNIQUE' in str(e) or 'PRIMARY KEY' in str(e):
                    raise DuplicateYear(year) from e
                raise

            row = conn.execute(
                "SELECT * FROM historical_data WHERE year = ?", (year,)
            ).fetchone()

        logger.info(f"Appended historical data for {year}")
        return HistoricalDataRow.from_row(row)

    def get_year(self, year: int) -> HistoricalDataRow:
        year = _require_year(year)
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM historical_data WHERE year = ?", (year,)
            ).fetchone()

        if row is None:
            raise NotFound(f"No historical data for {year}")
        return HistoricalDataRow.from_row(row)

    def has_year(self, year: int) -> bool:
        try:
            self.get_year(year)
        except NotFound:
            return False
        return True

    def get_range(self, start_year: int, end_year: int) -> List[HistoricalDataRow]:
        """Rows with start_year <= year <= end_year, ascending by year."""
        start_year = _require_year(start_year)
        end_year = _require_year(end_year)

        with get_connection(self.db_path) as conn:
            rows = conn.execute("""
                SELECT * FROM historical_data
                WHERE year >= ? AND year <= ?
                ORDER BY year ASC
            """, (start_year, end_year)).fetchall()

        return [HistoricalDataRow.from_row(row) for row in rows]

    def get_all(self) -> List[HistoricalDataRow]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM historical_data ORDER BY year ASC"
            ).fetchall()
        return [HistoricalDataRow.from_row(row) for row in rows]


def to_frame(rows: List[HistoricalDataRow]) -> pd.DataFrame:
    """
    Convert historical rows to a DataFrame.

    Returns:
        DataFrame with columns: year (index), sp500_price, dividend, eps, cape,
        total_return, dividend_yield
    """
    if not rows:
        return pd.DataFrame(columns=FRAME_COLUMNS)

    df = pd.DataFrame([
        {
            'year': r.year,
            'sp500_price': r.sp500_price,
            'dividend': r.dividend,
            'eps': r.eps,
            'cape': r.cape,
            'total_return': r.total_return,
            'dividend_yield': r.dividend_yield,
        }
        for r in rows
    ])
    df = df.set_index('year').sort_index()
    return df
