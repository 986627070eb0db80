"""
Trading calendar.

Pure date logic for the balance curve. Business days are Monday to Friday;
exchange holidays are not modelled, a holiday simply has no closing price
and the price store falls back to the previous close.

A "trading day" does not start at midnight but at the market open
(09:30 New York time by default):

- Monday 09:30 up to Tuesday 09:29 belongs to Monday's trading day
- Friday 16:01 is still Friday's trading day
- Saturday and Sunday belong to the preceding Friday
- Monday 08:00 still belongs to the preceding Friday
"""

from collections.abc import Iterable
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo

import pandas as pd

from balance_curve.core.constants import MARKET_CLOSE, MARKET_OPEN, MARKET_TIMEZONE
from balance_curve.core.utils.validation import parse_iso_date

SATURDAY = 5


def is_business_day(day: date | str) -> bool:
    """Check if a date falls on Monday to Friday."""
    return parse_iso_date(day).weekday() < SATURDAY


def next_business_day(day: date | str) -> date:
    """Get the first business day strictly after ``day``."""
    current = parse_iso_date(day) + timedelta(days=1)
    while current.weekday() >= SATURDAY:
        current += timedelta(days=1)
    return current


def previous_business_day(day: date | str) -> date:
    """Get the last business day strictly before ``day``."""
    current = parse_iso_date(day) - timedelta(days=1)
    while current.weekday() >= SATURDAY:
        current -= timedelta(days=1)
    return current


def business_days_between(start: date | str, end: date | str) -> list[date]:
    """Get all business days in ``[start, end]``, ascending.

    Returns a fresh list on every call, so it can be iterated any number
    of times. An inverted range yields an empty list.
    """
    start_day = parse_iso_date(start, "start")
    end_day = parse_iso_date(end, "end")
    if start_day > end_day:
        return []
    return [ts.date() for ts in pd.bdate_range(start_day, end_day)]


def trading_day_of_date(day: date | str) -> date:
    """Map a calendar date to its trading day (weekends roll back to Friday)."""
    parsed = parse_iso_date(day)
    return parsed if is_business_day(parsed) else previous_business_day(parsed)


def format_day(day: date) -> str:
    """Format a date as the ``YYYY-MM-DD`` key used throughout the caches."""
    return day.isoformat()


def iter_days(days: Iterable[date | str]) -> list[date]:
    """Parse and sort a collection of day keys."""
    return sorted(parse_iso_date(d) for d in days)


class TradingCalendar:
    """Market-session aware calendar.

    Args:
        timezone: IANA name of the exchange timezone
        market_open: Session open in exchange-local time
        market_close: Session close in exchange-local time
    """

    def __init__(
        self,
        timezone: str = MARKET_TIMEZONE,
        market_open: time = MARKET_OPEN,
        market_close: time = MARKET_CLOSE,
    ) -> None:
        self.timezone = ZoneInfo(timezone)
        self.market_open = market_open
        self.market_close = market_close

    def to_market_time(self, instant: datetime) -> datetime:
        """Express an instant in exchange-local wall-clock time.

        Naive datetimes are taken to already be exchange-local.
        """
        if instant.tzinfo is None:
            return instant.replace(tzinfo=self.timezone)
        return instant.astimezone(self.timezone)

    def trading_day_for(self, instant: datetime) -> date:
        """Get the trading day an instant belongs to."""
        local = self.to_market_time(instant)
        day = local.date()
        if not is_business_day(day):
            return previous_business_day(day)
        if local.time() < self.market_open:
            return previous_business_day(day)
        return day

    def is_market_open(self, instant: datetime) -> bool:
        """Check if the regular session is running at ``instant``."""
        local = self.to_market_time(instant)
        if not is_business_day(local.date()):
            return False
        return self.market_open <= local.time() < self.market_close

    def is_after_market_close(self, instant: datetime) -> bool:
        """Check if ``instant`` lies between a session close and the next open.

        This is the window in which live quotes are that day's closing prices.
        """
        local = self.to_market_time(instant)
        if not is_business_day(local.date()):
            return True
        return local.time() >= self.market_close or local.time() < self.market_open

    def session_close(self, day: date) -> datetime:
        """Get the exchange-local close instant of a trading day."""
        return datetime.combine(day, self.market_close, tzinfo=self.timezone)
