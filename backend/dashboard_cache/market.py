"""Single-row market snapshot with per-source freshness tracking."""

from datetime import datetime
from enum import Enum
from typing import Dict
import logging

from .db import PathLike, get_connection, init_db, transaction, to_db_timestamp, from_db_timestamp
from .errors import NotFound, StaleWrite, ValidationFailure
from .models import MarketCacheRow, require_positive

logger = logging.getLogger(__name__)


class Source(Enum):
    """Upstream sources that write into the snapshot."""
    YAHOO = "yahoo"       # S&P 500 price
    YCHARTS = "ycharts"   # CAPE ratio


# Columns each source is allowed to write
SOURCE_FIELDS = {
    Source.YAHOO: ('daily_close_sp500_price', 'current_sp500_price'),
    Source.YCHARTS: ('current_cape', 'cape_period'),
}

TIMESTAMP_COLUMNS = {
    Source.YAHOO: 'last_yahoo_update',
    Source.YCHARTS: 'last_ycharts_update',
}


def _parse_source(source) -> Source:
    if isinstance(source, Source):
        return source
    try:
        return Source(source)
    except ValueError:
        raise ValidationFailure(f"Unknown source: {source!r}") from None


class MarketCache:
    """
    Latest scraped snapshot stored as a single row (id = 1).

    Each source owns a fixed set of columns plus its own last-update
    timestamp. Writes merge only the owning source's columns, so a price
    refresh never clobbers CAPE values and vice versa.
    """

    def __init__(self, db_path: PathLike = None):
        self.db_path = db_path
        init_db(db_path)

    def get_latest_snapshot(self) -> MarketCacheRow:
        """
        Return the current snapshot.

        Raises:
            NotFound: if no source has written yet
        """
        with get_connection(self.db_path) as conn:
            row = conn.execute("SELECT * FROM market_cache WHERE id = 1").fetchone()

        if row is None:
            raise NotFound("Market cache is empty")
        return MarketCacheRow.from_row(row)

    def upsert_snapshot(
        self,
        source,
        fields: Dict,
        timestamp: datetime
    ) -> MarketCacheRow:
        """
        Merge the fields owned by source into the snapshot.

        Args:
            source: Source (or its string value) performing the write
            fields: Column -> value, restricted to the source's own columns
            timestamp: When the source data was fetched (timezone-aware)

        Returns:
            The snapshot after the merge

        Raises:
            ValidationFailure: unknown source, foreign or invalid field
            StaleWrite: timestamp is older than the one stored for source
        """
        source = _parse_source(source)
        if timestamp is None or timestamp.tzinfo is None:
            raise ValidationFailure("timestamp must be timezone-aware")

        values = self._validate_fields(source, fields)
        ts_column = TIMESTAMP_COLUMNS[source]

        with transaction(self.db_path) as conn:
            row = conn.execute("SELECT * FROM market_cache WHERE id = 1").fetchone()

            if row is not None:
                stored = from_db_timestamp(row[ts_column])
                if stored is not None and timestamp < stored:
                    raise StaleWrite(source.value, timestamp, stored)

            columns = list(values) + [ts_column]
            params = list(values.values()) + [to_db_timestamp(timestamp)]

            # Column names come from SOURCE_FIELDS / TIMESTAMP_COLUMNS only
            if row is None:
                placeholders = ', '.join('?' for _ in columns)
                conn.execute(
                    f"INSERT INTO market_cache (id, {', '.join(columns)}) "
                    f"VALUES (1, {placeholders})",
                    params
                )
            else:
                assignments = ', '.join(f"{col} = ?" for col in columns)
                conn.execute(
                    f"UPDATE market_cache SET {assignments} WHERE id = 1",
                    params
                )

            row = conn.execute("SELECT * FROM market_cache WHERE id = 1").fetchone()

        logger.info(f"Snapshot updated by {source.value}: {values}")
        return MarketCacheRow.from_row(row)

    def _validate_fields(self, source: Source, fields: Dict) -> Dict:
        if not fields:
            raise ValidationFailure(f"No fields supplied for {source.value}")

        owned = SOURCE_FIELDS[source]
        foreign = sorted(set(fields) - set(owned))
        if foreign:
            raise ValidationFailure(
                f"{source.value} cannot write {', '.join(foreign)}"
            )

        values = {}
        for name in owned:
            if name not in fields:
                continue
            value = fields[name]
            if name == 'cape_period':
                if not isinstance(value, str) or not value.strip():
                    raise ValidationFailure(f"cape_period must be a non-empty string, got {value!r}")
                values[name] = value.strip()
            else:
                values[name] = require_positive(name, value)
        return values
