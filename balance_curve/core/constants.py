"""
Core constants and limits.

Defines system-wide constants for the snapshot cache, the price provider
contract and the trading calendar.
"""

from datetime import time

# Snapshot cache
EOD_CACHE_KEY = "eodCache"
EOD_CACHE_SCHEMA_VERSION = 1
MAX_RETRIES = 3  # Price-resolution attempts before a day is left incomplete
SNAPSHOT_RETENTION_DAYS = 730  # Days kept when storage pressure forces a shrink

# Historical price cache
PRICE_CACHE_KEY = "historicalPriceCache"
PRICE_CACHE_SCHEMA_VERSION = 1
PRICE_HOT_WINDOW_DAYS = 30  # Closed tickers keep only this much history under pressure
PRICE_LOOKBACK_DAYS = 7  # Closest previous close searched this many calendar days back

# Price provider contract
DEFAULT_BATCH_SIZE = 8  # Tickers per provider call (free tier)
DEFAULT_BATCH_DELAY_SECONDS = 2.0  # Pause between provider calls
MIN_OUTPUT_WINDOW_DAYS = 30
OUTPUT_WINDOW_BUFFER_DAYS = 10
MAX_OUTPUT_WINDOW_DAYS = 500

# Live quotes
LIVE_QUOTE_TTL_SECONDS = 60
LIVE_QUOTE_CACHE_SIZE = 256

# Trading calendar
MARKET_TIMEZONE = "America/New_York"
MARKET_OPEN = time(9, 30)
MARKET_CLOSE = time(16, 0)

# Trade accounting
OPTIONS_CONTRACT_MULTIPLIER = 100
STOCK_MULTIPLIER = 1
