"""
Market data cache for the macro dashboard.

SQLite-backed storage for the latest S&P 500 / CAPE snapshot, quarterly
dividend and EPS data, monthly total returns and finalized yearly history,
plus the refresh coordinator that keeps them current.
"""

from .db import init_db, get_connection, get_db_stats
from .errors import (
    CacheError, NotFound, StaleWrite, InvalidQuarterFormat,
    DuplicateYear, ScrapeFailure, ValidationFailure,
)
from .market import MarketCache, Source
from .quarterly import QuarterlyStore
from .historical import HistoricalStore
from .monthly import MonthlyReturnStore
from .refresh import (
    RefreshPolicy, RefreshCoordinator, RefreshScheduler, RefreshResult,
    start_refresh_job, get_job_status,
)

__all__ = [
    'init_db',
    'get_connection',
    'get_db_stats',
    'CacheError',
    'NotFound',
    'StaleWrite',
    'InvalidQuarterFormat',
    'DuplicateYear',
    'ScrapeFailure',
    'ValidationFailure',
    'MarketCache',
    'Source',
    'QuarterlyStore',
    'HistoricalStore',
    'MonthlyReturnStore',
    'RefreshPolicy',
    'RefreshCoordinator',
    'RefreshScheduler',
    'RefreshResult',
    'start_refresh_job',
    'get_job_status',
]
