"""Derived values for the dashboard: quarterly aggregates and long-run growth rates."""

from typing import Dict, List, Optional
import logging

import numpy as np
import pandas as pd

from config import Config
from .errors import NotFound
from .historical import to_frame
from .models import HistoricalDataRow, QuarterlyDataRow

logger = logging.getLogger(__name__)


def _quarterly_value(quarter: str, value: float) -> Dict:
    return {'final_quarter': quarter, 'value': round(value, 4)}


def ttm_dividend(quarters: List[QuarterlyDataRow]) -> Optional[Dict]:
    """Sum of the four most recent quarterly dividends, or None if fewer exist."""
    with_dividend = [q for q in sorted(quarters, key=lambda q: q.sort_key) if q.dividend is not None]
    if len(with_dividend) < 4:
        return None
    last_four = with_dividend[-4:]
    return _quarterly_value(last_four[-1].quarter, sum(q.dividend for q in last_four))


def latest_eps_actual(quarters: List[QuarterlyDataRow]) -> Optional[Dict]:
    for q in sorted(quarters, key=lambda q: q.sort_key, reverse=True):
        if q.eps_actual is not None:
            return _quarterly_value(q.quarter, q.eps_actual)
    return None


def estimated_eps_sum(quarters: List[QuarterlyDataRow]) -> Optional[Dict]:
    """
    Forward EPS: sum of the first four consecutive estimated quarters.

    Counting starts at the oldest quarter carrying an estimate; a gap
    before four estimates are found means no forward figure.
    """
    ordered = sorted(quarters, key=lambda q: q.sort_key)
    start = next((i for i, q in enumerate(ordered) if q.eps_estimated is not None), None)
    if start is None:
        return None

    window = ordered[start:start + 4]
    if len(window) < 4 or any(q.eps_estimated is None for q in window):
        return None
    return _quarterly_value(window[-1].quarter, sum(q.eps_estimated for q in window))


def quarterly_summary(quarters: List[QuarterlyDataRow]) -> Dict:
    return {
        'ttm_dividend': ttm_dividend(quarters),
        'latest_eps_actual': latest_eps_actual(quarters),
        'estimated_eps_sum': estimated_eps_sum(quarters),
    }


def calculate_cagr(start_value: float, end_value: float, years: float) -> float:
    """Compound annual growth rate; 0.0 when any input is non-positive."""
    if start_value <= 0 or end_value <= 0 or years <= 0:
        return 0.0
    return float(np.power(end_value / start_value, 1.0 / years) - 1.0)


def calculate_market_metrics(
    rows: List[HistoricalDataRow],
    recent_years: int = None
) -> Dict:
    """
    Long-run valuation metrics over the historical table.

    "past" rates span the full history, "current" rates the trailing
    recent_years window (None when the anchor year is missing).

    Raises:
        NotFound: fewer than two years of history
    """
    if recent_years is None:
        recent_years = Config.METRICS_RECENT_YEARS

    df = to_frame(rows)
    if len(df) < 2:
        raise NotFound("Not enough historical data to compute metrics")

    first_year = int(df.index[0])
    last_year = int(df.index[-1])
    span = last_year - first_year
    anchor_year = last_year - recent_years

    yields = df['dividend_yield'].dropna()
    yields = yields[yields > 0]
    avg_yield = float(yields.mean()) if not yields.empty else None

    metrics = {
        'first_year': first_year,
        'last_year': last_year,
        'avg_dividend_yield': avg_yield,
    }

    for column, label in (('eps', 'earnings'), ('cape', 'cape'), ('sp500_price', 'price')):
        first = float(df[column].iloc[0])
        last = float(df[column].iloc[-1])
        metrics[f'past_{label}_cagr'] = calculate_cagr(first, last, span)

        if anchor_year in df.index:
            anchor = float(df.loc[anchor_year, column])
            metrics[f'current_{label}_cagr'] = calculate_cagr(anchor, last, recent_years)
        else:
            metrics[f'current_{label}_cagr'] = None

    metrics['past_returns_cagr'], metrics['current_returns_cagr'] = _returns_cagrs(
        df['total_return'].astype(float), anchor_year, recent_years
    )

    if anchor_year not in df.index:
        logger.debug(f"No historical row for {anchor_year}; current CAGRs unavailable")

    return metrics


def _returns_cagrs(returns: pd.Series, anchor_year: int, recent_years: int) -> tuple:
    """
    Annualized total return from the yearly returns, as (past, current).

    Only the run of years from the first recorded return onward counts,
    and that run must have no missing year. Either rate is None when it
    cannot be computed.
    """
    first = returns.first_valid_index()
    if first is None:
        return None, None

    tracked = returns.loc[first:]
    span = int(tracked.index[-1]) - int(tracked.index[0])
    if span < 1 or tracked.isna().any() or span != len(tracked) - 1:
        logger.debug("Yearly total returns incomplete; returns CAGRs unavailable")
        return None, None

    # Value of 1.0 invested at the start of the first tracked year
    growth = (1.0 + tracked).cumprod()
    past = calculate_cagr(float(growth.iloc[0]), float(growth.iloc[-1]), span)
    current = None
    if anchor_year in growth.index:
        current = calculate_cagr(float(growth.loc[anchor_year]), float(growth.iloc[-1]), recent_years)
    return past, current
