"""Row types for the three cache tables and value validation helpers."""

import math
import numbers
from decimal import Decimal
from dataclasses import dataclass, asdict
from datetime import datetime
from typing import Optional

from .db import from_db_timestamp
from .errors import ValidationFailure


@dataclass(frozen=True)
class MarketCacheRow:
    daily_close_sp500_price: Optional[float]
    current_sp500_price: Optional[float]
    current_cape: Optional[float]
    cape_period: Optional[str]
    last_yahoo_update: Optional[datetime]
    last_ycharts_update: Optional[datetime]

    @classmethod
    def from_row(cls, row) -> "MarketCacheRow":
        return cls(
            daily_close_sp500_price=row['daily_close_sp500_price'],
            current_sp500_price=row['current_sp500_price'],
            current_cape=row['current_cape'],
            cape_period=row['cape_period'],
            last_yahoo_update=from_db_timestamp(row['last_yahoo_update']),
            last_ycharts_update=from_db_timestamp(row['last_ycharts_update']),
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        for key in ('last_yahoo_update', 'last_ycharts_update'):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass(frozen=True)
class QuarterlyDataRow:
    quarter: str
    dividend: Optional[float]
    eps_actual: Optional[float]
    eps_estimated: Optional[float]
    updated_at: datetime

    @classmethod
    def from_row(cls, row) -> "QuarterlyDataRow":
        return cls(
            quarter=row['quarter'],
            dividend=row['dividend'],
            eps_actual=row['eps_actual'],
            eps_estimated=row['eps_estimated'],
            updated_at=from_db_timestamp(row['updated_at']),
        )

    @property
    def sort_key(self) -> tuple:
        return int(self.quarter[:4]), int(self.quarter[5])

    def to_dict(self) -> dict:
        data = asdict(self)
        data['updated_at'] = self.updated_at.isoformat()
        return data


@dataclass(frozen=True)
class MonthlyReturnRow:
    month: str  # 'YYYY-MM'
    total_return: float
    updated_at: datetime

    @classmethod
    def from_row(cls, row) -> "MonthlyReturnRow":
        return cls(
            month=row['month'],
            total_return=row['total_return'],
            updated_at=from_db_timestamp(row['updated_at']),
        )

    def to_dict(self) -> dict:
        data = asdict(self)
        data['updated_at'] = self.updated_at.isoformat()
        return data


@dataclass(frozen=True)
class HistoricalDataRow:
    year: int
    sp500_price: float
    dividend: float
    eps: float
    cape: float
    total_return: Optional[float]
    last_updated: datetime

    @classmethod
    def from_row(cls, row) -> "HistoricalDataRow":
        return cls(
            year=row['year'],
            sp500_price=row['sp500_price'],
            dividend=row['dividend'],
            eps=row['eps'],
            cape=row['cape'],
            total_return=row['total_return'],
            last_updated=from_db_timestamp(row['last_updated']),
        )

    @property
    def dividend_yield(self) -> Optional[float]:
        if self.sp500_price <= 0:
            return None
        return self.dividend / self.sp500_price

    def to_dict(self) -> dict:
        data = asdict(self)
        data['last_updated'] = self.last_updated.isoformat()
        data['dividend_yield'] = self.dividend_yield
        return data


def require_number(name: str, value) -> float:
    """Return value as a finite float or raise ValidationFailure."""
    # bool is an Integral; a True price is a bug, not 1.0
    if isinstance(value, bool) or not isinstance(value, (numbers.Real, Decimal)):
        raise ValidationFailure(f"{name} must be a number, got {value!r}")
    try:
        value = float(value)
    except (ValueError, TypeError) as e:
        # Decimal('sNaN') refuses conversion
        raise ValidationFailure(f"{name} must be a number, got {value!r}") from e
    if not math.isfinite(value):
        raise ValidationFailure(f"{name} must be finite, got {value!r}")
    return value


def require_positive(name: str, value) -> float:
    value = require_number(name, value)
    if value <= 0:
        raise ValidationFailure(f"{name} must be positive, got {value}")
    return value


def require_non_negative(name: str, value) -> float:
    value = require_number(name, value)
    if value < 0:
        raise ValidationFailure(f"{name} must not be negative, got {value}")
    return value


def require_return(name: str, value) -> float:
    """A total return as a decimal; -1.0 would mean a total loss."""
    value = require_number(name, value)
    if value <= -1:
        raise ValidationFailure(f"{name} must be greater than -1, got {value}")
    return value
