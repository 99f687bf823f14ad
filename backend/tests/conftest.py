"""Shared fixtures for the market cache test suite."""

import os
import sys
from datetime import datetime, timezone

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from dashboard_cache.errors import ScrapeFailure
from dashboard_cache.historical import HistoricalStore
from dashboard_cache.market import MarketCache
from dashboard_cache.quarterly import QuarterlyStore
from dashboard_cache.sources import ScrapedValue


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "market_cache_test.db"


@pytest.fixture
def market(db_path):
    return MarketCache(db_path)


@pytest.fixture
def quarterly(db_path):
    return QuarterlyStore(db_path)


@pytest.fixture
def historical(db_path):
    return HistoricalStore(db_path)


class StubPriceSource:
    """Price source returning a fixed value, or raising a fixed error."""

    def __init__(self, value=5000.0, error=None):
        self.value = value
        self.error = error
        self.calls = 0

    def fetch(self):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return ScrapedValue(value=self.value, fetched_at=datetime.now(timezone.utc))


class StubFundamentalsSource:
    """Maps indicator -> (value, period) or an exception instance."""

    def __init__(self, values=None):
        self.values = values if values is not None else {
            'dividend': (18.5, '2024Q4'),
            'eps_actual': (58.0, '2024Q4'),
            'eps_estimated': (61.0, '2025Q1'),
            'cape': (37.2, 'Jan 2025'),
            'monthly_return': (0.027, 'Dec 2024'),
        }
        self.calls = []

    def fetch(self, indicator):
        self.calls.append(indicator)
        entry = self.values.get(indicator)
        if entry is None:
            raise ScrapeFailure(f"no stub for {indicator}")
        if isinstance(entry, Exception):
            raise entry
        value, period = entry
        return ScrapedValue(value=value, fetched_at=datetime.now(timezone.utc), period=period)


@pytest.fixture
def price_source():
    return StubPriceSource()


@pytest.fixture
def fundamentals_source():
    return StubFundamentalsSource()
