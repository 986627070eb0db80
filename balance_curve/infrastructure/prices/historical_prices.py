"""
Historical closing-price store.

Fetches daily closes from a ``PriceProvider`` in sequential, rate-limited
batches and keeps them per ticker as pandas Series, persisted to the
key-value store together with fetch metadata.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import UTC, date, datetime, timedelta
from typing import Any

import pandas as pd
from loguru import logger

from balance_curve.core.config import CurveSettings
from balance_curve.core.constants import (
    MAX_OUTPUT_WINDOW_DAYS,
    MIN_OUTPUT_WINDOW_DAYS,
    OUTPUT_WINDOW_BUFFER_DAYS,
)
from balance_curve.core.exceptions.equity import (
    DataError,
    PriceFetchError,
    StorageError,
    StorageQuotaExceededError,
)
from balance_curve.core.protocols import KeyValueStore, PriceProvider
from balance_curve.core.trading_calendar import TradingCalendar, previous_business_day
from balance_curve.core.types.financial import is_finite_number
from balance_curve.core.utils.validation import parse_iso_date, parse_timestamp, validate_ticker
from balance_curve.infrastructure.cache.cache_interfaces import (
    CacheEvent,
    CacheEventType,
    CacheSubject,
)


def output_window_for(oldest_day: date, today: date) -> int:
    """Days of history to request so ``oldest_day`` is included.

    Examples:
        >>> output_window_for(date(2024, 1, 2), date(2024, 1, 5))
        30
        >>> output_window_for(date(2023, 1, 2), date(2024, 1, 2))
        375
    """
    days_ago = (today - oldest_day).days
    return max(MIN_OUTPUT_WINDOW_DAYS, min(days_ago + OUTPUT_WINDOW_BUFFER_DAYS, MAX_OUTPUT_WINDOW_DAYS))


@dataclass(frozen=True)
class FetchRecord:
    """When a ticker was last fetched and how far back the request reached."""

    fetched_at: datetime
    window_start: date
    fetched_through: date


class HistoricalPriceStore(CacheSubject):
    """Closing prices per ticker with coverage tracking."""

    def __init__(
        self,
        provider: PriceProvider,
        store: KeyValueStore,
        settings: CurveSettings | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        super().__init__()
        self.provider = provider
        self.store = store
        self.settings = settings or CurveSettings()
        self.key = self.settings.price_cache_key
        self.calendar = TradingCalendar(
            self.settings.market_timezone, self.settings.market_open, self.settings.market_close
        )
        self._clock = clock or (lambda: datetime.now(UTC))
        self._sleep = sleep
        self._series: dict[str, pd.Series] = {}
        self._fetches: dict[str, FetchRecord] = {}
        self._loaded = False

    def _emit(self, event_type: CacheEventType, **metadata: Any) -> None:
        self.notify_observers(CacheEvent(event_type, self.key, metadata))

    @property
    def tickers(self) -> list[str]:
        return sorted(self._series)

    # Persistence

    async def load(self, force: bool = False) -> None:
        """Load stored prices; a bad or outdated payload is discarded."""
        if self._loaded and not force:
            return
        self._series, self._fetches = {}, {}
        self._loaded = True

        raw = await self.store.get(self.key)
        if raw is None:
            return
        try:
            self._restore(raw)
        except DataError as e:
            logger.warning(f"Discarding stored price cache: {e}")
            self._series, self._fetches = {}, {}
            self._emit(CacheEventType.SCHEMA_RESET, reason=str(e))
            return
        logger.debug(f"Loaded stored prices for {len(self._series)} tickers")

    def _restore(self, raw: Any) -> None:
        if not isinstance(raw, dict) or raw.get("schemaVersion") != self.settings.price_schema_version:
            raise DataError("price cache schema version mismatch")
        tickers = raw.get("tickers")
        if not isinstance(tickers, dict):
            raise DataError("tickers must be a mapping")
        for ticker, entry in tickers.items():
            try:
                closes = {
                    pd.Timestamp(parse_iso_date(day)): float(close)
                    for day, close in entry["prices"].items()
                    if is_finite_number(close)
                }
                self._series[ticker] = pd.Series(closes, dtype="float64").sort_index()
                if entry.get("fetchedAt"):
                    self._fetches[ticker] = FetchRecord(
                        fetched_at=parse_timestamp(entry["fetchedAt"]),
                        window_start=parse_iso_date(entry["windowStart"]),
                        fetched_through=parse_iso_date(entry["fetchedThrough"]),
                    )
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Dropping stored prices for {ticker}: {e}")
                self._series.pop(ticker, None)
                self._fetches.pop(ticker, None)

    def to_dict(self) -> dict[str, Any]:
        tickers: dict[str, Any] = {}
        for ticker, series in sorted(self._series.items()):
            entry: dict[str, Any] = {
                "prices": {ts.date().isoformat(): float(close) for ts, close in series.items()}
            }
            record = self._fetches.get(ticker)
            if record is not None:
                entry["fetchedAt"] = record.fetched_at.isoformat()
                entry["windowStart"] = record.window_start.isoformat()
                entry["fetchedThrough"] = record.fetched_through.isoformat()
            tickers[ticker] = entry
        return {"schemaVersion": self.settings.price_schema_version, "tickers": tickers}

    async def persist(self, active_tickers: Iterable[str] = ()) -> bool:
        """Write prices to the store.

        Under quota pressure, history older than the hot window is dropped
        for tickers without open positions and the write retried once;
        failing that the price cache is cleared. In-memory prices stay
        usable for the running build either way.

        Returns:
            True if the full in-memory state was persisted
        """
        try:
            await self.store.set(self.key, self.to_dict())
            return True
        except StorageQuotaExceededError as e:
            logger.warning(f"Price cache hit storage quota: {e}")
            self._emit(
                CacheEventType.STORAGE_PRESSURE,
                required_bytes=e.required_bytes,
                available_bytes=e.available_bytes,
            )
        except StorageError as e:
            logger.error(f"Failed to persist price cache: {e}")
            return False

        removed = self.cleanup(active_tickers)
        logger.info(f"Hot window cleanup removed {removed} price points")
        try:
            await self.store.set(self.key, self.to_dict())
            return True
        except StorageError as e:
            logger.error(f"Price cache still cannot be stored ({e}), clearing it")
        try:
            await self.store.remove(self.key)
        except StorageError as e:
            logger.error(f"Could not remove price cache: {e}")
        self._emit(CacheEventType.CACHE_CLEARED, reason="quota")
        return False

    # Coverage and lookup

    def _fetched_through(self, fetched_at: datetime) -> date:
        """Last trading day whose close was final when a fetch ran."""
        trading_day = self.calendar.trading_day_for(fetched_at)
        if self.calendar.is_after_market_close(fetched_at):
            return trading_day
        return previous_business_day(trading_day)

    def has_coverage(self, ticker: str, start: date, end: date) -> bool:
        """Check if a previous fetch already spanned ``[start, end]``."""
        record = self._fetches.get(ticker)
        if record is None or ticker not in self._series:
            return False
        return record.window_start <= start and record.fetched_through >= end

    def price_on(self, ticker: str, day: date) -> float | None:
        """Close on ``day`` or the closest earlier close within the lookback window."""
        series = self._series.get(ticker)
        if series is None or series.empty:
            return None
        upto = series.loc[: pd.Timestamp(day)]
        if upto.empty:
            return None
        last_day = upto.index[-1].date()
        if (day - last_day).days > self.settings.price_lookback_days:
            return None
        return float(upto.iloc[-1])

    def prices_for_day(self, tickers: Iterable[str], day: date) -> dict[str, float]:
        prices = {}
        for ticker in tickers:
            price = self.price_on(ticker, day)
            if price is not None:
                prices[ticker] = price
        return prices

    def add_prices(self, ticker: str, closes: dict[date, float]) -> int:
        """Merge closes into a ticker's series, newer values winning.

        Returns:
            Number of usable closes merged
        """
        ticker = validate_ticker(ticker)
        fresh = {
            pd.Timestamp(parse_iso_date(day)): float(close)
            for day, close in closes.items()
            if is_finite_number(close) and close > 0
        }
        if not fresh:
            return 0
        new_series = pd.Series(fresh, dtype="float64")
        existing = self._series.get(ticker)
        merged = new_series if existing is None else new_series.combine_first(existing)
        self._series[ticker] = merged.sort_index()
        return len(fresh)

    # Fetching

    async def ensure_prices(
        self, tickers: Iterable[str], start: date, end: date, today: date | None = None
    ) -> set[str]:
        """Fetch tickers whose cached history does not span ``[start, end]``.

        Batches run sequentially with ``batch_delay_seconds`` between them.
        A failing batch or an omitted ticker never aborts the pass.

        Returns:
            Tickers that were requested and could not be resolved
        """
        await self.load()
        needed = sorted({t for t in tickers if not self.has_coverage(t, start, end)})
        if not needed:
            return set()

        now = self._clock()
        window = output_window_for(start, today or self.calendar.trading_day_for(now))
        batch_size = self.settings.batch_size
        batches = [needed[i : i + batch_size] for i in range(0, len(needed), batch_size)]
        logger.info(
            f"Fetching {len(needed)} tickers in {len(batches)} batches (window {window} days)"
        )

        failed: set[str] = set()
        for index, batch in enumerate(batches):
            if index > 0:
                await self._sleep(self.settings.batch_delay_seconds)
            failed.update(await self._fetch_batch(batch, window, now))

        if failed:
            logger.warning(f"No prices for {', '.join(sorted(failed))}")
        await self.persist(active_tickers=tickers)
        return failed

    async def _fetch_batch(self, batch: Sequence[str], window: int, now: datetime) -> set[str]:
        try:
            result = await self.provider.batch_fetch_historical(list(batch), window)
        except PriceFetchError as e:
            logger.warning(str(e))
            return set(batch)
        except Exception as e:
            logger.error(f"Unexpected error ({type(e).__name__}) fetching {', '.join(batch)}: {e}")
            return set(batch)

        failed = set()
        fetched_through = self._fetched_through(now)
        window_start = fetched_through - timedelta(days=window)
        for ticker in batch:
            closes = (result or {}).get(ticker)
            if not closes or self.add_prices(ticker, closes) == 0:
                failed.add(ticker)
                continue
            self._fetches[ticker] = FetchRecord(
                fetched_at=now, window_start=window_start, fetched_through=fetched_through
            )
        stored = len(batch) - len(failed)
        if stored:
            self._emit(CacheEventType.PRICES_STORED, tickers=stored, window=window)
        return failed

    # Maintenance

    def cleanup(self, active_tickers: Iterable[str] = (), today: date | None = None) -> int:
        """Drop closes older than the hot window for tickers not in ``active_tickers``.

        Returns:
            Number of removed price points
        """
        active = set(active_tickers)
        reference = today or self.calendar.trading_day_for(self._clock())
        cutoff = pd.Timestamp(reference - timedelta(days=self.settings.price_hot_window_days))
        removed = 0
        for ticker in list(self._series):
            if ticker in active:
                continue
            series = self._series[ticker]
            kept = series[series.index >= cutoff]
            removed += len(series) - len(kept)
            if kept.empty:
                del self._series[ticker]
                self._fetches.pop(ticker, None)
            else:
                self._series[ticker] = kept
                # History before the cutoff is gone, so the next request
                # for an older range has to fetch again.
                record = self._fetches.get(ticker)
                if record is not None and record.window_start < cutoff.date():
                    self._fetches[ticker] = FetchRecord(
                        record.fetched_at, cutoff.date(), record.fetched_through
                    )
        return removed

    async def clear(self) -> None:
        self._series, self._fetches = {}, {}
        self._loaded = True
        await self.store.remove(self.key)
        self._emit(CacheEventType.CACHE_CLEARED)

    def get_stats(self) -> dict[str, Any]:
        points = sum(len(s) for s in self._series.values())
        return {
            "tickers": len(self._series),
            "price_points": points,
            "fetched_tickers": len(self._fetches),
        }
