"""
Validation utilities for core domain models.

Provides consistent validation across the application.
"""

from datetime import UTC, date, datetime
from typing import Any

from balance_curve.core.exceptions.equity import ValidationError


def validate_ticker(ticker: Any, param_name: str = "ticker") -> str:
    """Validate and normalize a ticker symbol.

    Returns:
        The upper-cased, stripped ticker

    Raises:
        ValidationError: If ticker is not a non-empty string
    """
    if not isinstance(ticker, str) or not ticker.strip():
        raise ValidationError(f"{param_name} must be a non-empty string, got {ticker!r}")
    return ticker.strip().upper()


def validate_positive(value: float, param_name: str) -> float:
    """Validate that a numeric value is positive.

    Raises:
        ValidationError: If value is not positive
    """
    if value <= 0:
        raise ValidationError(f"{param_name} must be positive, got {value}")
    return value


def parse_iso_date(value: Any, param_name: str = "date") -> date:
    """Parse a ``YYYY-MM-DD`` string, date or datetime into a date.

    Datetimes are truncated to their own calendar date; callers that need
    market-time semantics convert before calling.

    Raises:
        ValidationError: If value cannot be interpreted as a date
    """
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        try:
            return date.fromisoformat(value[:10])
        except ValueError as e:
            raise ValidationError(f"Invalid {param_name}: {value!r}") from e
    raise ValidationError(f"{param_name} must be an ISO date string, got {type(value).__name__}")


def parse_timestamp(value: Any, param_name: str = "timestamp") -> datetime:
    """Parse an ISO string, datetime, date or epoch milliseconds into a datetime.

    Naive results are left naive; the trading calendar treats them as
    market-local time.

    Raises:
        ValidationError: If value cannot be interpreted as a timestamp
    """
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, bool):
        raise ValidationError(f"{param_name} must be a timestamp, got bool")
    if isinstance(value, int | float):
        return datetime.fromtimestamp(value / 1000, tz=UTC)
    if isinstance(value, str):
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError as e:
            raise ValidationError(f"Invalid {param_name}: {value!r}") from e
    raise ValidationError(f"{param_name} must be a timestamp, got {type(value).__name__}")
