"""
Upstream scrape sources for the market snapshot.

- Yahoo Finance quote page: current S&P 500 price
- YCharts indicator pages: CAPE ratio, monthly total return, quarterly
  dividend, EPS actual and forward EPS estimate

Every failure (HTTP error, timeout, unexpected page layout) surfaces as
ScrapeFailure so the refresh coordinator can leave the cache untouched.
"""

import re
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
import logging

import requests
from bs4 import BeautifulSoup

from config import Config
from .db import utcnow
from .errors import ScrapeFailure

logger = logging.getLogger(__name__)

_YAHOO_PRICE_RE = re.compile(r'data-symbol="\^GSPC"[^>]*data-value="([0-9.,]+)"')
_STAT_RE = re.compile(
    r'(?P<value>[-+]?[\d,]*\.?\d+)\s*(?P<percent>%)?\s*(?:USD)?\s*(?:for)?\s+'
    r'(?:(?P<quarter>Q[1-4])\s+(?P<qyear>\d{4})|(?P<month>Jan|Feb|Mar|Apr|May|Jun|Jul|Aug|Sep|Oct|Nov|Dec)\w*\s+(?P<myear>\d{4}))'
)


@dataclass(frozen=True)
class ScrapedValue:
    """A value read from a source, with the period it describes."""
    value: float
    fetched_at: datetime
    period: Optional[str] = None  # '2024Q1' for quarterly data, 'Jan 2025' for monthly


def parse_yahoo_price(html: str) -> float:
    """Extract the S&P 500 price from a Yahoo Finance quote page."""
    match = _YAHOO_PRICE_RE.search(html)
    if not match:
        raise ScrapeFailure("S&P 500 price not found on Yahoo quote page")
    return float(match.group(1).replace(',', ''))


def parse_key_stat(text: str) -> tuple:
    """
    Parse a YCharts key stat such as '5,123.45 USD for Q4 2024' or '37.03 for Jan 2025'.

    Percentages ('2.70% for Dec 2024') are returned as decimals (0.027).

    Returns:
        Tuple of (value, period) where period is '2024Q4' or 'Jan 2025'
    """
    match = _STAT_RE.search(text)
    if not match:
        raise ScrapeFailure(f"Could not parse key stat: {text!r}")

    value = float(match.group('value').replace(',', ''))
    if match.group('percent'):
        value /= 100.0
    if match.group('quarter'):
        period = f"{match.group('qyear')}{match.group('quarter')}"
    else:
        period = f"{match.group('month')} {match.group('myear')}"
    return value, period


def _fetch_page(url: str, timeout: float, max_retries: int, retry_delay: float) -> str:
    """GET a page, retrying on network errors, and return its text."""
    headers = {'User-Agent': Config.USER_AGENT}
    last_error = None

    for attempt in range(1, max_retries + 1):
        try:
            response = requests.get(url, headers=headers, timeout=timeout)
            response.raise_for_status()
            return response.text
        except requests.RequestException as e:
            last_error = e
            logger.warning(f"Request to {url} failed (attempt {attempt}/{max_retries}): {e}")
            if attempt < max_retries and retry_delay > 0:
                time.sleep(retry_delay)

    raise ScrapeFailure(f"Could not fetch {url}: {last_error}") from last_error


class YahooPriceSource:
    """Current S&P 500 index level from Yahoo Finance."""

    def __init__(
        self,
        url: str = None,
        timeout: float = None,
        max_retries: int = None,
        retry_delay: float = None
    ):
        self.url = url or Config.YAHOO_QUOTE_URL
        self.timeout = timeout if timeout is not None else Config.SCRAPE_TIMEOUT_SECONDS
        self.max_retries = max_retries if max_retries is not None else Config.API_MAX_RETRIES
        self.retry_delay = retry_delay if retry_delay is not None else Config.API_RATE_LIMIT_DELAY

    def fetch(self) -> ScrapedValue:
        html = _fetch_page(self.url, self.timeout, self.max_retries, self.retry_delay)
        price = parse_yahoo_price(html)
        logger.info(f"Fetched S&P 500 price from Yahoo: {price}")
        return ScrapedValue(value=price, fetched_at=utcnow())


class YChartsSource:
    """Indicator values from YCharts key-stat headers."""

    def __init__(
        self,
        base_url: str = None,
        indicators: dict = None,
        timeout: float = None,
        max_retries: int = None,
        retry_delay: float = None
    ):
        self.base_url = (base_url or Config.YCHARTS_BASE_URL).rstrip('/')
        self.indicators = indicators or Config.YCHARTS_INDICATORS
        self.timeout = timeout if timeout is not None else Config.SCRAPE_TIMEOUT_SECONDS
        self.max_retries = max_retries if max_retries is not None else Config.API_MAX_RETRIES
        self.retry_delay = retry_delay if retry_delay is not None else Config.API_RATE_LIMIT_DELAY

    def fetch(self, indicator: str) -> ScrapedValue:
        """
        Fetch one indicator.

        Args:
            indicator: A key of Config.YCHARTS_INDICATORS ('cape', 'monthly_return',
                'dividend', 'eps_actual', 'eps_estimated')
        """
        slug = self.indicators.get(indicator)
        if slug is None:
            raise ScrapeFailure(f"Unknown YCharts indicator: {indicator}")

        url = f"{self.base_url}/{slug}"
        html = _fetch_page(url, self.timeout, self.max_retries, self.retry_delay)

        soup = BeautifulSoup(html, "html.parser")
        stat = soup.select_one("div.key-stat-title")
        if stat is None:
            raise ScrapeFailure(f"Key stat not found on {url}")

        value, period = parse_key_stat(stat.get_text(" ", strip=True))
        logger.info(f"Fetched {indicator} from YCharts: {value} ({period})")
        return ScrapedValue(value=value, fetched_at=utcnow(), period=period)
