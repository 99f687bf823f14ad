"""Tests for the single-row market snapshot."""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from decimal import Decimal

import pytest

from conftest import utc
from dashboard_cache.errors import NotFound, StaleWrite, ValidationFailure
from dashboard_cache.market import MarketCache, Source


def test_empty_cache_raises_not_found(market):
    with pytest.raises(NotFound):
        market.get_latest_snapshot()


def test_first_write_creates_row(market):
    ts = utc(2025, 1, 6, 15, 0)
    row = market.upsert_snapshot(
        Source.YAHOO,
        {'current_sp500_price': 5900.5, 'daily_close_sp500_price': 5880.0},
        ts
    )
    assert row.current_sp500_price == pytest.approx(5900.5)
    assert row.daily_close_sp500_price == pytest.approx(5880.0)
    assert row.last_yahoo_update == ts
    assert row.current_cape is None
    assert row.last_ycharts_update is None
    assert market.get_latest_snapshot() == row


def test_source_accepts_string_value(market):
    row = market.upsert_snapshot('ycharts', {'current_cape': 37.1, 'cape_period': 'Jan 2025'},
                                 utc(2025, 1, 6))
    assert row.cape_period == 'Jan 2025'


def test_writes_never_touch_other_source_fields(market):
    market.upsert_snapshot(Source.YAHOO, {'current_sp500_price': 5900.0}, utc(2025, 1, 6, 15))
    market.upsert_snapshot(Source.YCHARTS, {'current_cape': 37.2, 'cape_period': 'Dec 2024'},
                           utc(2025, 1, 6, 16))
    row = market.upsert_snapshot(Source.YAHOO, {'current_sp500_price': 5910.0}, utc(2025, 1, 6, 17))

    assert row.current_sp500_price == pytest.approx(5910.0)
    assert row.current_cape == pytest.approx(37.2)
    assert row.cape_period == 'Dec 2024'
    assert row.last_ycharts_update == utc(2025, 1, 6, 16)


def test_increasing_timestamps_keep_latest_value_per_source(market):
    base = utc(2025, 2, 3, 14)
    for i in range(5):
        market.upsert_snapshot(Source.YAHOO, {'current_sp500_price': 6000.0 + i},
                               base + timedelta(minutes=15 * i))
        market.upsert_snapshot(Source.YCHARTS, {'current_cape': 36.0 + i, 'cape_period': 'Jan 2025'},
                               base + timedelta(minutes=15 * i, seconds=30))

    row = market.get_latest_snapshot()
    assert row.current_sp500_price == pytest.approx(6004.0)
    assert row.current_cape == pytest.approx(40.0)
    assert row.last_yahoo_update == base + timedelta(minutes=60)
    assert row.last_ycharts_update == base + timedelta(minutes=60, seconds=30)


def test_older_timestamp_is_rejected_and_row_unchanged(market):
    market.upsert_snapshot(Source.YAHOO, {'current_sp500_price': 6000.0}, utc(2025, 2, 3, 15))
    before = market.get_latest_snapshot()

    with pytest.raises(StaleWrite) as exc:
        market.upsert_snapshot(Source.YAHOO, {'current_sp500_price': 5000.0}, utc(2025, 2, 3, 14))

    assert exc.value.source == 'yahoo'
    assert market.get_latest_snapshot() == before


def test_stale_check_is_per_source(market):
    market.upsert_snapshot(Source.YAHOO, {'current_sp500_price': 6000.0}, utc(2025, 2, 3, 15))
    # Older than the yahoo timestamp but ycharts has never written
    row = market.upsert_snapshot(Source.YCHARTS, {'current_cape': 36.5, 'cape_period': 'Jan 2025'},
                                 utc(2025, 2, 3, 9))
    assert row.current_cape == pytest.approx(36.5)


def test_equal_timestamp_is_accepted(market):
    ts = utc(2025, 2, 3, 15)
    market.upsert_snapshot(Source.YAHOO, {'current_sp500_price': 6000.0}, ts)
    row = market.upsert_snapshot(Source.YAHOO, {'current_sp500_price': 6001.0}, ts)
    assert row.current_sp500_price == pytest.approx(6001.0)


@pytest.mark.parametrize("source, fields", [
    (Source.YAHOO, {'current_cape': 30.0}),
    (Source.YCHARTS, {'current_sp500_price': 6000.0}),
    (Source.YAHOO, {'bogus': 1.0}),
    (Source.YAHOO, {}),
])
def test_foreign_or_empty_fields_rejected(market, source, fields):
    with pytest.raises(ValidationFailure):
        market.upsert_snapshot(source, fields, utc(2025, 1, 1))
    with pytest.raises(NotFound):
        market.get_latest_snapshot()


@pytest.mark.parametrize("value", [
    -1.0, 0, "6000", None, float('nan'), True, Decimal('sNaN'), Decimal('NaN'), Decimal('Infinity'),
])
def test_invalid_price_rejected(market, value):
    with pytest.raises(ValidationFailure):
        market.upsert_snapshot(Source.YAHOO, {'current_sp500_price': value}, utc(2025, 1, 1))


def test_blank_cape_period_rejected(market):
    with pytest.raises(ValidationFailure):
        market.upsert_snapshot(Source.YCHARTS, {'current_cape': 30.0, 'cape_period': '  '},
                               utc(2025, 1, 1))


def test_unknown_source_rejected(market):
    with pytest.raises(ValidationFailure):
        market.upsert_snapshot('bloomberg', {'current_sp500_price': 6000.0}, utc(2025, 1, 1))


def test_naive_timestamp_rejected(market):
    with pytest.raises(ValidationFailure):
        market.upsert_snapshot(Source.YAHOO, {'current_sp500_price': 6000.0}, datetime(2025, 1, 1))


def test_concurrent_writers_keep_newest_timestamp(db_path):
    MarketCache(db_path)
    base = utc(2025, 3, 1, 12)
    timestamps = [base + timedelta(seconds=i) for i in range(20)]

    def write(i):
        cache = MarketCache(db_path)
        try:
            cache.upsert_snapshot(Source.YAHOO, {'current_sp500_price': 5000.0 + i}, timestamps[i])
            return True
        except StaleWrite:
            return False

    # Submit newest first so that later, older writes must be rejected
    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(write, reversed(range(20))))

    assert any(results)
    row = MarketCache(db_path).get_latest_snapshot()
    assert row.last_yahoo_update == timestamps[-1]
    assert row.current_sp500_price == pytest.approx(5019.0)


def test_decimal_price_accepted(market):
    row = market.upsert_snapshot(Source.YAHOO, {'current_sp500_price': Decimal('5881.63')},
                                 utc(2025, 1, 1))
    assert row.current_sp500_price == pytest.approx(5881.63)
