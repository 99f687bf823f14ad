"""Monthly S&P 500 total returns, compounded into yearly returns at finalization."""

import re
from datetime import datetime
from typing import List, Optional
import logging

import numpy as np

from .db import PathLike, get_connection, init_db, to_db_timestamp, utcnow
from .errors import ValidationFailure
from .models import MonthlyReturnRow, require_return

logger = logging.getLogger(__name__)

MONTH_PATTERN = re.compile(r'[0-9]{4}-(0[1-9]|1[0-2])')
MONTH_ABBREVIATIONS = ['Jan', 'Feb', 'Mar', 'Apr', 'May', 'Jun',
                       'Jul', 'Aug', 'Sep', 'Oct', 'Nov', 'Dec']


def validate_month(month: str) -> str:
    if not isinstance(month, str) or not MONTH_PATTERN.fullmatch(month):
        raise ValidationFailure(f"Month must look like '2024-12', got {month!r}")
    return month


def month_key(period: str) -> str:
    """Convert a YCharts period label like 'Dec 2024' to '2024-12'."""
    parts = period.split() if isinstance(period, str) else []
    if len(parts) != 2 or parts[0] not in MONTH_ABBREVIATIONS or not parts[1].isdigit():
        raise ValidationFailure(f"Not a monthly period: {period!r}")
    return f"{int(parts[1]):04d}-{MONTH_ABBREVIATIONS.index(parts[0]) + 1:02d}"


def compound_returns(returns: List[float]) -> float:
    """(1 + r1) * (1 + r2) * ... * (1 + rn) - 1"""
    return float(np.prod(1.0 + np.asarray(returns, dtype=float)) - 1.0)


class MonthlyReturnStore:
    """
    Total return per calendar month, stored as a decimal (0.027 for 2.7%).

    A month written again replaces its earlier value; YCharts revises the
    latest month until it is final.
    """

    def __init__(self, db_path: PathLike = None):
        self.db_path = db_path
        init_db(db_path)

    def record_month(
        self,
        month: str,
        total_return: float,
        timestamp: Optional[datetime] = None
    ) -> MonthlyReturnRow:
        validate_month(month)
        total_return = require_return('total_return', total_return)
        if timestamp is None:
            timestamp = utcnow()
        elif timestamp.tzinfo is None:
            raise ValidationFailure("timestamp must be timezone-aware")

        with get_connection(self.db_path) as conn:
            conn.execute("""
                INSERT INTO monthly_returns (month, total_return, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(month) DO UPDATE SET
                    total_return = excluded.total_return,
                    updated_at = excluded.updated_at
            """, (month, total_return, to_db_timestamp(timestamp)))

            row = conn.execute(
                "SELECT * FROM monthly_returns WHERE month = ?", (month,)
            ).fetchone()

        logger.info(f"Monthly return {month} recorded: {total_return}")
        return MonthlyReturnRow.from_row(row)

    def list_months(self) -> List[MonthlyReturnRow]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM monthly_returns ORDER BY month ASC"
            ).fetchall()
        return [MonthlyReturnRow.from_row(row) for row in rows]

    def get_year_months(self, year: int) -> List[MonthlyReturnRow]:
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM monthly_returns WHERE month LIKE ? ORDER BY month ASC",
                (f"{int(year):04d}-%",)
            ).fetchall()
        return [MonthlyReturnRow.from_row(row) for row in rows]

    def yearly_return(self, year: int) -> Optional[float]:
        """Compounded return for year, or None until all twelve months are stored."""
        months = self.get_year_months(year)
        if len(months) != 12:
            logger.debug(f"{len(months)}/12 monthly returns stored for {year}")
            return None
        return compound_returns([m.total_return for m in months])
