"""Database connection and schema initialization for the market cache."""

import sqlite3
from pathlib import Path
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Generator, Optional, Dict, Union
import logging

logger = logging.getLogger(__name__)

# Default database path relative to backend directory
_DEFAULT_DB_PATH = Path(__file__).parent.parent / "data" / "market_cache.db"

# Seconds a writer waits on another writer's lock before giving up
_BUSY_TIMEOUT = 30.0

PathLike = Union[str, Path]


def get_db_path(db_path: PathLike = None) -> Path:
    """Return the database path, creating parent directory if needed."""
    path = Path(db_path) if db_path is not None else _DEFAULT_DB_PATH
    path.parent.mkdir(parents=True, exist_ok=True)
    return path


@contextmanager
def get_connection(db_path: PathLike = None) -> Generator[sqlite3.Connection, None, None]:
    """
    Context manager for database connections.

    Connections run in autocommit mode; use transaction() to group
    a read-compare-write into one atomic unit.

    Args:
        db_path: Optional custom path to database file

    Yields:
        SQLite connection with Row factory enabled
    """
    conn = sqlite3.connect(
        get_db_path(db_path),
        timeout=_BUSY_TIMEOUT,
        isolation_level=None
    )
    conn.row_factory = sqlite3.Row
    try:
        yield conn
    finally:
        conn.close()


@contextmanager
def transaction(db_path: PathLike = None) -> Generator[sqlite3.Connection, None, None]:
    """
    Open a write transaction that holds the database write lock from the start.

    BEGIN IMMEDIATE makes concurrent writers queue up, so values read inside
    the block cannot change before the block commits.
    """
    with get_connection(db_path) as conn:
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
        except BaseException:
            conn.execute("ROLLBACK")
            raise
        conn.execute("COMMIT")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def to_db_timestamp(value: Optional[datetime]) -> Optional[str]:
    """Serialize an aware datetime as an ISO-8601 UTC string."""
    if value is None:
        return None
    if value.tzinfo is None:
        raise ValueError(f"Timestamp must be timezone-aware: {value!r}")
    return value.astimezone(timezone.utc).isoformat()


def from_db_timestamp(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def init_db(db_path: PathLike = None) -> None:
    """
    Initialize database schema if tables don't exist.

    Args:
        db_path: Optional custom path to database file
    """
    with get_connection(db_path) as conn:
        # Latest scraped snapshot, one row only
        conn.execute("""
            CREATE TABLE IF NOT EXISTS market_cache (
                id INTEGER PRIMARY KEY CHECK (id = 1),
                daily_close_sp500_price REAL CHECK (daily_close_sp500_price > 0),
                current_sp500_price REAL CHECK (current_sp500_price > 0),
                current_cape REAL CHECK (current_cape > 0),
                cape_period TEXT,
                last_yahoo_update TEXT,
                last_ycharts_update TEXT
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS quarterly_data (
                quarter TEXT PRIMARY KEY,
                dividend REAL,
                eps_actual REAL,
                eps_estimated REAL,
                updated_at TEXT NOT NULL
            )
        """)

        conn.execute("""
            CREATE TABLE IF NOT EXISTS historical_data (
                year INTEGER PRIMARY KEY,
                sp500_price REAL NOT NULL CHECK (sp500_price >= 0),
                dividend REAL NOT NULL CHECK (dividend >= 0),
                eps REAL NOT NULL CHECK (eps >= 0),
                cape REAL NOT NULL CHECK (cape >= 0),
                total_return REAL CHECK (total_return > -1),
                last_updated TEXT NOT NULL
                    DEFAULT (strftime('%Y-%m-%dT%H:%M:%S+00:00', 'now'))
            )
        """)

        # Files created before total_return existed
        columns = {row['name'] for row in conn.execute('PRAGMA table_info(historical_data)')}
        if 'total_return' not in columns:
            conn.execute('ALTER TABLE historical_data ADD COLUMN total_return REAL')

        # Monthly S&P 500 total return as a decimal, keyed YYYY-MM
        conn.execute("""
            CREATE TABLE IF NOT EXISTS monthly_returns (
                month TEXT PRIMARY KEY,
                total_return REAL NOT NULL CHECK (total_return > -1),
                updated_at TEXT NOT NULL
            )
        """)

        # Values captured for year finalization (year-end close, December CAPE)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS metadata (
                key TEXT PRIMARY KEY,
                value TEXT
            )
        """)

        # Refresh run tracking
        conn.execute("""
            CREATE TABLE IF NOT EXISTS refresh_runs (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                status TEXT DEFAULT 'running',
                started_at TEXT NOT NULL,
                completed_at TEXT,
                error_message TEXT
            )
        """)

    logger.debug("Database schema initialized")


def get_metadata(key: str, db_path: PathLike = None) -> Optional[str]:
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT value FROM metadata WHERE key = ?", (key,)
        ).fetchone()
        return row['value'] if row else None


def set_metadata(key: str, value: str, db_path: PathLike = None) -> None:
    with get_connection(db_path) as conn:
        conn.execute(
            "INSERT OR REPLACE INTO metadata (key, value) VALUES (?, ?)",
            (key, value)
        )


def create_refresh_run(started_at: datetime, db_path: PathLike = None) -> int:
    """Record the start of a refresh run and return its id."""
    with get_connection(db_path) as conn:
        cursor = conn.execute(
            "INSERT INTO refresh_runs (status, started_at) VALUES ('running', ?)",
            (to_db_timestamp(started_at),)
        )
        return cursor.lastrowid


def complete_refresh_run(
    run_id: int,
    status: str,
    error_message: str = None,
    db_path: PathLike = None
) -> None:
    """Mark a refresh run as finished."""
    with get_connection(db_path) as conn:
        conn.execute("""
            UPDATE refresh_runs
            SET status = ?, completed_at = ?, error_message = ?
            WHERE id = ?
        """, (status, to_db_timestamp(utcnow()), error_message, run_id))


def get_last_refresh_run(db_path: PathLike = None) -> Optional[Dict]:
    """Return the most recent refresh run, or None if none were recorded."""
    with get_connection(db_path) as conn:
        row = conn.execute(
            "SELECT * FROM refresh_runs ORDER BY id DESC LIMIT 1"
        ).fetchone()
        return dict(row) if row else None


def get_db_stats(db_path: PathLike = None) -> dict:
    """
    Get database statistics.

    Returns:
        Dict with quarters, monthly_returns, historical_years, has_snapshot,
        database_size_mb
    """
    path = get_db_path(db_path)
    init_db(path)

    with get_connection(path) as conn:
        quarters = conn.execute("SELECT COUNT(*) FROM quarterly_data").fetchone()[0]
        months = conn.execute("SELECT COUNT(*) FROM monthly_returns").fetchone()[0]
        years = conn.execute("SELECT COUNT(*) FROM historical_data").fetchone()[0]
        snapshot = conn.execute("SELECT COUNT(*) FROM market_cache").fetchone()[0]

    size_mb = 0
    if path.exists():
        size_mb = round(path.stat().st_size / (1024 * 1024), 2)

    return {
        'quarters': quarters,
        'monthly_returns': months,
        'historical_years': years,
        'has_snapshot': snapshot > 0,
        'database_size_mb': size_mb
    }
