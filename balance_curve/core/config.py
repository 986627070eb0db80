"""
Runtime settings for the equity curve builder.
"""

from datetime import time
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

from balance_curve.core.constants import (
    DEFAULT_BATCH_DELAY_SECONDS,
    DEFAULT_BATCH_SIZE,
    EOD_CACHE_KEY,
    EOD_CACHE_SCHEMA_VERSION,
    LIVE_QUOTE_TTL_SECONDS,
    MARKET_CLOSE,
    MARKET_OPEN,
    MARKET_TIMEZONE,
    MAX_RETRIES,
    PRICE_CACHE_KEY,
    PRICE_CACHE_SCHEMA_VERSION,
    PRICE_HOT_WINDOW_DAYS,
    PRICE_LOOKBACK_DAYS,
    SNAPSHOT_RETENTION_DAYS,
)


class CurveSettings(BaseModel):
    """Settings shared by the calendar, caches and curve builder."""

    starting_balance: float = Field(default=0.0, ge=0, description="Account size before any trade")
    market_timezone: str = Field(default=MARKET_TIMEZONE)
    market_open: time = Field(default=MARKET_OPEN)
    market_close: time = Field(default=MARKET_CLOSE)

    max_retries: int = Field(default=MAX_RETRIES, ge=1)
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, ge=1, le=120)
    batch_delay_seconds: float = Field(default=DEFAULT_BATCH_DELAY_SECONDS, ge=0.0)
    price_lookback_days: int = Field(default=PRICE_LOOKBACK_DAYS, ge=0)
    live_quote_ttl_seconds: float = Field(default=LIVE_QUOTE_TTL_SECONDS, gt=0)

    eod_cache_key: str = Field(default=EOD_CACHE_KEY, min_length=1)
    eod_schema_version: int = Field(default=EOD_CACHE_SCHEMA_VERSION, ge=1)
    price_cache_key: str = Field(default=PRICE_CACHE_KEY, min_length=1)
    price_schema_version: int = Field(default=PRICE_CACHE_SCHEMA_VERSION, ge=1)
    snapshot_retention_days: int = Field(default=SNAPSHOT_RETENTION_DAYS, ge=1)
    price_hot_window_days: int = Field(default=PRICE_HOT_WINDOW_DAYS, ge=1)

    @field_validator("market_close")
    @classmethod
    def validate_session(cls, v: time, info) -> time:
        """Validate that the session closes after it opens."""
        if "market_open" in info.data and v <= info.data["market_open"]:
            raise ValueError("market_close must be after market_open")
        return v

    @field_validator("market_timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Validate that the timezone is known to the tz database."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v}") from e
        return v
