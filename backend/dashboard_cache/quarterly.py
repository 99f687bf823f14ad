"""Per-quarter dividend and EPS data, estimates resolving to actuals."""

import re
from datetime import datetime
from typing import List, Optional
import logging

from .db import PathLike, get_connection, init_db, transaction, to_db_timestamp, utcnow
from .errors import InvalidQuarterFormat, NotFound, ValidationFailure
from .models import QuarterlyDataRow, require_number, require_non_negative

logger = logging.getLogger(__name__)

QUARTER_PATTERN = re.compile(r'[0-9]{4}Q[1-4]')


def validate_quarter(quarter: str) -> str:
    """Return quarter unchanged if it looks like '2024Q1', else raise."""
    if not isinstance(quarter, str) or not QUARTER_PATTERN.fullmatch(quarter):
        raise InvalidQuarterFormat(quarter)
    return quarter


def quarter_key(year: int, quarter: int) -> str:
    return f"{year}Q{quarter}"


class QuarterlyStore:
    """
    Stores dividend, EPS actual and EPS estimate per quarter.

    Merge rules for upsert_quarter:
    - a supplied dividend replaces the stored one
    - a supplied eps_actual replaces the stored one and clears the estimate
    - an eps_estimated is only kept while the quarter has no actual
    - omitted values are left as they are
    """

    def __init__(self, db_path: PathLike = None):
        self.db_path = db_path
        init_db(db_path)

    def upsert_quarter(
        self,
        quarter: str,
        dividend: Optional[float] = None,
        eps_actual: Optional[float] = None,
        eps_estimated: Optional[float] = None,
        timestamp: Optional[datetime] = None
    ) -> QuarterlyDataRow:
        """
        Insert or merge one quarter's values.

        Returns:
            The quarter row after the merge

        Raises:
            InvalidQuarterFormat: quarter is not YYYYQn
            ValidationFailure: a supplied value is not a valid number
        """
        validate_quarter(quarter)
        if dividend is not None:
            dividend = require_non_negative('dividend', dividend)
        if eps_actual is not None:
            eps_actual = require_number('eps_actual', eps_actual)
        if eps_estimated is not None:
            eps_estimated = require_number('eps_estimated', eps_estimated)
        if timestamp is None:
            timestamp = utcnow()
        elif timestamp.tzinfo is None:
            raise ValidationFailure("timestamp must be timezone-aware")

        with transaction(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM quarterly_data WHERE quarter = ?", (quarter,)
            ).fetchone()

            current = dict(row) if row else {
                'dividend': None, 'eps_actual': None, 'eps_estimated': None
            }

            if dividend is not None:
                current['dividend'] = dividend

            if eps_actual is not None:
                current['eps_actual'] = eps_actual
                current['eps_estimated'] = None
            elif eps_estimated is not None:
                if current['eps_actual'] is None:
                    current['eps_estimated'] = eps_estimated
                else:
                    logger.debug(f"Ignoring estimate for {quarter}: actual already reported")

            if row is not None and all(
                current[key] == row[key] for key in ('dividend', 'eps_actual', 'eps_estimated')
            ):
                # Nothing to change; keep the stored updated_at
                return QuarterlyDataRow.from_row(row)

            conn.execute("""
                INSERT INTO quarterly_data (quarter, dividend, eps_actual, eps_estimated, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(quarter) DO UPDATE SET
                    dividend = excluded.dividend,
                    eps_actual = excluded.eps_actual,
                    eps_estimated = excluded.eps_estimated,
                    updated_at = excluded.updated_at
            """, (
                quarter,
                current['dividend'],
                current['eps_actual'],
                current['eps_estimated'],
                to_db_timestamp(timestamp)
            ))

            row = conn.execute(
                "SELECT * FROM quarterly_data WHERE quarter = ?", (quarter,)
            ).fetchone()

        logger.info(
            f"Quarter {quarter} updated: dividend={row['dividend']}, "
            f"eps_actual={row['eps_actual']}, eps_estimated={row['eps_estimated']}"
        )
        return QuarterlyDataRow.from_row(row)

    def get_quarter(self, quarter: str) -> QuarterlyDataRow:
        validate_quarter(quarter)
        with get_connection(self.db_path) as conn:
            row = conn.execute(
                "SELECT * FROM quarterly_data WHERE quarter = ?", (quarter,)
            ).fetchone()

        if row is None:
            raise NotFound(f"No data for quarter {quarter}")
        return QuarterlyDataRow.from_row(row)

    def list_quarters(self) -> List[QuarterlyDataRow]:
        """All quarters, oldest first."""
        with get_connection(self.db_path) as conn:
            rows = conn.execute("SELECT * FROM quarterly_data").fetchall()

        quarters = [QuarterlyDataRow.from_row(row) for row in rows]
        return sorted(quarters, key=lambda q: q.sort_key)

    def get_year_quarters(self, year: int) -> List[QuarterlyDataRow]:
        """Stored quarters for one calendar year, Q1 first."""
        with get_connection(self.db_path) as conn:
            rows = conn.execute(
                "SELECT * FROM quarterly_data WHERE quarter LIKE ? ORDER BY quarter",
                (f"{int(year):04d}Q_",)
            ).fetchall()
        return [QuarterlyDataRow.from_row(row) for row in rows]
