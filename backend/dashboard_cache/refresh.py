"""Refresh coordination: deciding when sources are stale and writing their values."""

from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from enum import Enum
from typing import Dict, List, Optional
from zoneinfo import ZoneInfo
import logging
import threading

from config import Config
from .db import (
    PathLike, create_refresh_run, complete_refresh_run, get_last_refresh_run,
    get_metadata, init_db, set_metadata, utcnow,
)
from .errors import CacheError, DuplicateYear, NotFound, ScrapeFailure, ValidationFailure
from .historical import HistoricalStore
from .market import MarketCache, Source
from .monthly import MonthlyReturnStore, month_key
from .models import MarketCacheRow, require_positive
from .quarterly import QuarterlyStore, quarter_key, validate_quarter
from .sources import YahooPriceSource, YChartsSource

logger = logging.getLogger(__name__)

QUARTERLY_INDICATORS = ('dividend', 'eps_actual', 'eps_estimated')


class RefreshOutcome(Enum):
    """Result of refreshing one source."""
    UPDATED = "updated"
    PARTIAL = "partial"     # some indicators written, some failed
    SKIPPED = "skipped"     # still fresh
    FAILED = "failed"       # nothing written


@dataclass
class RefreshResult:
    """Summary of one refresh cycle, consumed by the scheduler and the API."""
    started_at: datetime
    outcomes: Dict[str, RefreshOutcome] = field(default_factory=dict)
    errors: List[str] = field(default_factory=list)
    finalized_year: Optional[int] = None

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def status(self) -> str:
        if self.errors:
            return 'completed_with_errors'
        if self.finalized_year is not None:
            return 'completed'
        if all(o == RefreshOutcome.SKIPPED for o in self.outcomes.values()):
            return 'skipped'
        return 'completed'

    def to_dict(self) -> Dict:
        return {
            'started_at': self.started_at.isoformat(),
            'status': self.status,
            'outcomes': {name: o.value for name, o in self.outcomes.items()},
            'errors': list(self.errors),
            'finalized_year': self.finalized_year,
        }


class RefreshPolicy:
    """
    Determines when each source's cached values are stale.

    Prices move intraday, so they refresh on a short interval. YCharts
    fundamentals change at most daily. The daily close is taken from the
    first price fetched after the market closes.
    """

    PRICE_REFRESH_MINUTES = Config.PRICE_REFRESH_MINUTES
    FUNDAMENTALS_REFRESH_HOURS = Config.FUNDAMENTALS_REFRESH_HOURS
    MARKET_TIMEZONE = Config.MARKET_TIMEZONE
    MARKET_CLOSE_TIME = time.fromisoformat(Config.MARKET_CLOSE_TIME)

    def __init__(
        self,
        price_refresh_minutes: int = None,
        fundamentals_refresh_hours: int = None,
        market_timezone: str = None,
        market_close_time: time = None
    ):
        if price_refresh_minutes is not None:
            self.PRICE_REFRESH_MINUTES = price_refresh_minutes
        if fundamentals_refresh_hours is not None:
            self.FUNDAMENTALS_REFRESH_HOURS = fundamentals_refresh_hours
        if market_timezone is not None:
            self.MARKET_TIMEZONE = market_timezone
        if market_close_time is not None:
            self.MARKET_CLOSE_TIME = market_close_time

    @property
    def price_interval(self) -> timedelta:
        return timedelta(minutes=self.PRICE_REFRESH_MINUTES)

    @property
    def fundamentals_interval(self) -> timedelta:
        return timedelta(hours=self.FUNDAMENTALS_REFRESH_HOURS)

    def is_stale(self, last_update: Optional[datetime], now: datetime, interval: timedelta) -> bool:
        if last_update is None:
            return True
        return now - last_update >= interval

    def price_due(self, snapshot: Optional[MarketCacheRow], now: datetime) -> bool:
        last = snapshot.last_yahoo_update if snapshot else None
        return self.is_stale(last, now, self.price_interval)

    def fundamentals_due(self, snapshot: Optional[MarketCacheRow], now: datetime) -> bool:
        last = snapshot.last_ycharts_update if snapshot else None
        return self.is_stale(last, now, self.fundamentals_interval)

    def local_time(self, moment: datetime) -> datetime:
        return moment.astimezone(ZoneInfo(self.MARKET_TIMEZONE))

    def is_after_close(self, now: datetime) -> bool:
        return self.local_time(now).time() >= self.MARKET_CLOSE_TIME

    def market_year(self, moment: datetime) -> int:
        return self.local_time(moment).year


def _year_close_key(year: int) -> str:
    return f"year_close:{year}"


def _year_cape_key(year: int) -> str:
    return f"year_cape:{year}"


class RefreshCoordinator:
    """
    Sole writer to the cache tables during refresh.

    Each cycle refreshes the stale sources, then tries to finalize the
    previous year into the historical table. A failing source is logged
    and reported in the RefreshResult; whatever it owns stays as it was.
    """

    def __init__(
        self,
        db_path: PathLike = None,
        price_source=None,
        fundamentals_source=None,
        policy: RefreshPolicy = None
    ):
        self.db_path = db_path
        self.market = MarketCache(db_path)
        self.quarterly = QuarterlyStore(db_path)
        self.historical = HistoricalStore(db_path)
        self.monthly = MonthlyReturnStore(db_path)
        self.price_source = price_source or YahooPriceSource()
        self.fundamentals_source = fundamentals_source or YChartsSource()
        self.policy = policy or RefreshPolicy()

    def run_once(self, force: bool = False, now: datetime = None) -> RefreshResult:
        """
        Run one refresh cycle.

        Args:
            force: Refresh every source regardless of staleness
            now: Time of the cycle (defaults to current UTC time)

        Returns:
            RefreshResult describing what was updated and what failed
        """
        now = now or utcnow()
        result = RefreshResult(started_at=now)
        run_id = create_refresh_run(now, self.db_path)

        try:
            snapshot = self._current_snapshot()

            if force or self.policy.price_due(snapshot, now):
                result.outcomes[Source.YAHOO.value] = self.refresh_price(now, snapshot, result)
            else:
                result.outcomes[Source.YAHOO.value] = RefreshOutcome.SKIPPED

            if force or self.policy.fundamentals_due(snapshot, now):
                result.outcomes[Source.YCHARTS.value] = self.refresh_fundamentals(now, result)
            else:
                result.outcomes[Source.YCHARTS.value] = RefreshOutcome.SKIPPED

            previous_year = self.policy.market_year(now) - 1
            if self.finalize_year(previous_year, result):
                result.finalized_year = previous_year
        except Exception as e:
            logger.exception(f"Refresh cycle failed: {e}")
            result.errors.append(f"unexpected: {e}")

        complete_refresh_run(
            run_id,
            result.status,
            '; '.join(result.errors) or None,
            self.db_path
        )

        if result.ok:
            logger.info(f"Refresh cycle {result.status}: {result.to_dict()['outcomes']}")
        else:
            logger.warning(f"Refresh cycle finished with errors: {result.errors}")
        return result

    def refresh_price(
        self,
        now: datetime,
        snapshot: Optional[MarketCacheRow],
        result: RefreshResult
    ) -> RefreshOutcome:
        """Fetch the S&P 500 price and merge it into the snapshot."""
        try:
            scraped = self._fetch(self.price_source.fetch, "yahoo price")
            price = require_positive('sp500_price', scraped.value)
        except (ScrapeFailure, ValidationFailure) as e:
            self._record_failure(result, "yahoo price", e)
            return RefreshOutcome.FAILED

        self._capture_year_end_close(snapshot, now)

        fields = {'current_sp500_price': price}
        if (self.policy.is_after_close(now) or snapshot is None
                or snapshot.daily_close_sp500_price is None):
            fields['daily_close_sp500_price'] = price

        try:
            self.market.upsert_snapshot(Source.YAHOO, fields, now)
        except CacheError as e:
            self._record_failure(result, "yahoo price", e)
            return RefreshOutcome.FAILED
        return RefreshOutcome.UPDATED

    def refresh_fundamentals(self, now: datetime, result: RefreshResult) -> RefreshOutcome:
        """Fetch YCharts quarterly values, CAPE and the monthly return; each succeeds or fails alone."""
        written = 0
        failed = 0

        for indicator in QUARTERLY_INDICATORS:
            try:
                scraped = self._fetch(
                    lambda: self.fundamentals_source.fetch(indicator),
                    f"ycharts {indicator}"
                )
                quarter = validate_quarter(scraped.period)
                self.quarterly.upsert_quarter(quarter, timestamp=now, **{indicator: scraped.value})
                written += 1
            except CacheError as e:
                self._record_failure(result, f"ycharts {indicator}", e)
                failed += 1

        try:
            scraped = self._fetch(lambda: self.fundamentals_source.fetch('cape'), "ycharts cape")
            self.market.upsert_snapshot(
                Source.YCHARTS,
                {'current_cape': scraped.value, 'cape_period': scraped.period},
                now
            )
            self._capture_december_cape(scraped.period, scraped.value)
            written += 1
        except CacheError as e:
            self._record_failure(result, "ycharts cape", e)
            failed += 1

        try:
            scraped = self._fetch(
                lambda: self.fundamentals_source.fetch('monthly_return'), "ycharts monthly_return"
            )
            self.monthly.record_month(month_key(scraped.period), scraped.value, timestamp=now)
            written += 1
        except CacheError as e:
            self._record_failure(result, "ycharts monthly_return", e)
            failed += 1

        if not failed:
            return RefreshOutcome.UPDATED
        return RefreshOutcome.PARTIAL if written else RefreshOutcome.FAILED

    def finalize_year(self, year: int, result: RefreshResult = None) -> bool:
        """
        Append year to the historical table once all of its inputs are known.

        Needs the year-end close, the December CAPE and dividend plus
        EPS actual for all four quarters. The yearly total return is
        compounded from the monthly returns when all twelve are stored.

        Returns:
            True if a row was appended
        """
        if self.historical.has_year(year):
            return False

        close = get_metadata(_year_close_key(year), self.db_path)
        cape = get_metadata(_year_cape_key(year), self.db_path)
        quarters = {q.quarter: q for q in self.quarterly.get_year_quarters(year)}

        missing = []
        if close is None:
            missing.append('year-end close')
        if cape is None:
            missing.append('December CAPE')
        for n in range(1, 5):
            q = quarters.get(quarter_key(year, n))
            if q is None or q.eps_actual is None or q.dividend is None:
                missing.append(quarter_key(year, n))

        if missing:
            logger.debug(f"Cannot finalize {year} yet, missing: {', '.join(missing)}")
            return False

        dividend = sum(q.dividend for q in quarters.values())
        eps = sum(q.eps_actual for q in quarters.values())
        total_return = self.monthly.yearly_return(year)
        if total_return is None:
            logger.info(f"Monthly returns for {year} incomplete; finalizing without total return")

        try:
            self.historical.append_year(
                year, float(close), dividend, eps, float(cape), total_return=total_return
            )
        except DuplicateYear:
            logger.info(f"Historical data for {year} was finalized concurrently")
            return False
        except ValidationFailure as e:
            if result is not None:
                self._record_failure(result, f"finalize {year}", e)
            else:
                logger.error(f"Could not finalize {year}: {e}")
            return False

        logger.info(f"Finalized historical data for {year}")
        return True

    def _current_snapshot(self) -> Optional[MarketCacheRow]:
        try:
            return self.market.get_latest_snapshot()
        except NotFound:
            return None

    def _fetch(self, fetch_func, description: str):
        """Call a source, turning any error it raises into ScrapeFailure."""
        try:
            return fetch_func()
        except ScrapeFailure:
            raise
        except Exception as e:
            raise ScrapeFailure(f"{description} failed: {e}") from e

    def _capture_year_end_close(self, snapshot: Optional[MarketCacheRow], now: datetime) -> None:
        """Remember last year's final close before the first new-year price replaces it."""
        if snapshot is None or snapshot.last_yahoo_update is None:
            return
        if snapshot.daily_close_sp500_price is None:
            return

        last_year = self.policy.market_year(snapshot.last_yahoo_update)
        if last_year >= self.policy.market_year(now):
            return

        key = _year_close_key(last_year)
        if get_metadata(key, self.db_path) is None:
            set_metadata(key, repr(snapshot.daily_close_sp500_price), self.db_path)
            logger.info(f"Captured {last_year} year-end close: {snapshot.daily_close_sp500_price}")

    def _capture_december_cape(self, period: str, value: float) -> None:
        parts = period.split()
        if len(parts) == 2 and parts[0] == 'Dec' and parts[1].isdigit():
            set_metadata(_year_cape_key(int(parts[1])), repr(float(value)), self.db_path)
            logger.info(f"Captured December {parts[1]} CAPE: {value}")

    @staticmethod
    def _record_failure(result: RefreshResult, what: str, error: Exception) -> None:
        logger.error(f"Refresh of {what} failed: {error}")
        result.errors.append(f"{what}: {error}")


class RefreshScheduler:
    """Runs RefreshCoordinator.run_once on a fixed interval in a background thread."""

    def __init__(self, coordinator: RefreshCoordinator, interval_seconds: float = None):
        self.coordinator = coordinator
        self.interval_seconds = (
            interval_seconds if interval_seconds is not None else Config.REFRESH_INTERVAL_SECONDS
        )
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_result: Optional[RefreshResult] = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def last_result(self) -> Optional[RefreshResult]:
        return self._last_result

    def start(self) -> bool:
        """Start the background loop. Returns False if it is already running."""
        if self.is_running:
            return False

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="market-refresh", daemon=True)
        self._thread.start()
        return True

    def stop(self, timeout: float = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)

    def _run(self) -> None:
        logger.info(f"Refresh scheduler started (every {self.interval_seconds}s)")
        while not self._stop_event.is_set():
            try:
                self._last_result = self.coordinator.run_once()
            except Exception as e:
                # Run log itself unavailable (e.g. database locked); retry next tick
                logger.exception(f"Refresh cycle could not run: {e}")
            if self._stop_event.wait(self.interval_seconds):
                break
        logger.info("Refresh scheduler stopped")


# Global scheduler state
_scheduler: Optional[RefreshScheduler] = None


def start_refresh_job(db_path: PathLike = None, interval_seconds: float = None) -> Dict:
    """
    Start the background refresh loop if it is not already running.

    Returns:
        Dict with status and interval
    """
    global _scheduler

    if _scheduler is not None and _scheduler.is_running:
        return {
            'status': 'already_running',
            'interval_seconds': _scheduler.interval_seconds
        }

    _scheduler = RefreshScheduler(RefreshCoordinator(db_path), interval_seconds)
    _scheduler.start()

    return {
        'status': 'started',
        'interval_seconds': _scheduler.interval_seconds
    }


def stop_refresh_job(timeout: float = None) -> None:
    global _scheduler
    if _scheduler is not None:
        _scheduler.stop(timeout)
        _scheduler = None


def get_job_status(db_path: PathLike = None) -> Dict:
    """Most recent refresh run plus whether the background loop is alive."""
    init_db(db_path)
    last_run = get_last_refresh_run(db_path)
    return {
        'scheduler_running': _scheduler is not None and _scheduler.is_running,
        'last_run': last_run,
    }
