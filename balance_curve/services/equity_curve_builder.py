"""
Equity curve builder.

Orchestrates the snapshot cache, the historical price store and the
balance calculator into an ordered daily balance curve:

1. backfill incomplete days that are still below the retry ceiling
2. clear the cache when it looks stale against the trade list
3. gap-fill business days that have no snapshot at all
4. assemble the curve, valuing today's trading day from live quotes
5. pad the curve to at least two points

Only one build runs at a time; concurrent callers share its result.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from datetime import UTC, date, datetime
from typing import Any

from cachetools import TTLCache
from loguru import logger

from balance_curve.core.balance_calculator import (
    balance_at_date,
    current_balance,
    day_cash_flow,
    day_pnl,
    open_tickers_on,
)
from balance_curve.core.config import CurveSettings
from balance_curve.core.constants import LIVE_QUOTE_CACHE_SIZE
from balance_curve.core.enums import SnapshotSource
from balance_curve.core.exceptions.equity import StorageError
from balance_curve.core.models.cash_flow import CashFlowTransaction
from balance_curve.core.models.curve import BalanceBreakdown, CurvePoint, EquityCurve
from balance_curve.core.models.snapshot import EODSnapshot
from balance_curve.core.models.trade import Trade
from balance_curve.core.protocols import (
    CashFlowLedger,
    KeyValueStore,
    LiveQuoteSource,
    PriceProvider,
    TradeJournal,
)
from balance_curve.core.trading_calendar import (
    TradingCalendar,
    business_days_between,
    is_business_day,
    next_business_day,
    previous_business_day,
    trading_day_of_date,
)
from balance_curve.core.types.financial import ZERO, is_finite_number
from balance_curve.core.utils.validation import parse_iso_date, parse_timestamp
from balance_curve.infrastructure.cache.eod_cache import EODSnapshotCache
from balance_curve.infrastructure.prices.historical_prices import HistoricalPriceStore


class EquityCurveBuilder:
    """Builds and maintains the balance curve of one account.

    Args:
        journal: Read access to the trades
        ledger: Read access to deposits and withdrawals
        price_provider: Historical daily closes
        quote_source: Live quotes for today's point
        store: Key-value store backing both caches
        settings: Runtime settings
        clock: Returns the current instant; defaults to UTC now
        sleep: Awaitable used between provider batches
    """

    def __init__(
        self,
        journal: TradeJournal,
        ledger: CashFlowLedger,
        price_provider: PriceProvider,
        quote_source: LiveQuoteSource,
        store: KeyValueStore,
        settings: CurveSettings | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ):
        self.journal = journal
        self.ledger = ledger
        self.quote_source = quote_source
        self.settings = settings or CurveSettings()
        self._clock = clock or (lambda: datetime.now(UTC))
        self.calendar = TradingCalendar(
            self.settings.market_timezone, self.settings.market_open, self.settings.market_close
        )
        self.snapshot_cache = EODSnapshotCache(store, self.settings)
        self.price_store = HistoricalPriceStore(
            price_provider, store, self.settings, clock=self._clock, sleep=sleep
        )
        self._quote_cache: TTLCache[str, float] = TTLCache(
            maxsize=LIVE_QUOTE_CACHE_SIZE, ttl=self.settings.live_quote_ttl_seconds
        )
        self._in_flight: asyncio.Future[EquityCurve] | None = None
        self._recalculate_from: date | None = None
        self._last_curve = EquityCurve()

    @property
    def is_building(self) -> bool:
        return self._in_flight is not None

    @property
    def last_curve(self) -> EquityCurve:
        return self._last_curve

    def today(self) -> date:
        """Current trading day."""
        return self.calendar.trading_day_for(self._clock())

    # Consumer operations

    async def build_equity_curve(
        self, start: date | str | None = None, end: date | str | None = None
    ) -> EquityCurve:
        """Build the curve for ``[start, end]``.

        ``start`` defaults to the earliest trade's trading day and ``end`` to
        today's trading day. Never raises: on failure the previous curve is
        returned.
        """
        if self._in_flight is not None:
            logger.debug("Curve build already in progress, sharing its result")
            return await asyncio.shield(self._in_flight)

        self._in_flight = asyncio.ensure_future(self._run_build(start, end))
        try:
            return await self._in_flight
        finally:
            self._in_flight = None

    def market_day(self, value: date | datetime | str | CashFlowTransaction) -> date:
        """Exchange-local calendar date of a day, an instant or a cash flow.

        Instants are mapped the same way cash flows are booked.
        """
        if isinstance(value, CashFlowTransaction):
            return value.market_date(self.calendar)
        if isinstance(value, str) and "T" in value:
            value = parse_timestamp(value, "from_date")
        if isinstance(value, datetime):
            return self.calendar.to_market_time(value).date()
        return parse_iso_date(value, "from_date")

    async def waterfall_update(self, from_date: date | datetime | str) -> EquityCurve:
        """Recompute every cached day from ``from_date`` through today."""
        await self._wait_for_build()
        try:
            from_day = self.market_day(from_date)
            await self.snapshot_cache.load()
            deleted = await self.snapshot_cache.invalidate_from(from_day)
        except StorageError as e:
            logger.error(f"Waterfall update from {from_date} aborted: {e}")
            return self._last_curve
        logger.info(f"Waterfall update from {from_day}: {deleted} cached days invalidated")
        if self._recalculate_from is None or from_day < self._recalculate_from:
            self._recalculate_from = from_day
        return await self.build_equity_curve()

    async def invalidate_for_trade(self, trade: Trade | dict[str, Any]) -> EquityCurve:
        """Recompute the curve from the earliest day ``trade`` affects."""
        if not isinstance(trade, Trade):
            trade = Trade.from_dict(trade)
        return await self.waterfall_update(trade.affected_from())

    async def invalidate_from_date(
        self, day: date | datetime | str | CashFlowTransaction
    ) -> EquityCurve:
        """Recompute the curve from the day a cash flow is booked on onward."""
        return await self.waterfall_update(self.market_day(day))

    def get_balance_on_date(self, day: date | str) -> float | None:
        """Balance of ``day`` in the last built curve."""
        return self._last_curve.balance_on(parse_iso_date(day))

    async def snapshot_live_close(self) -> EODSnapshot | None:
        """Store today's trading day from live quotes once its session has closed.

        Nothing is stored while the market is open or when any open
        position lacks a quote.
        """
        now = self._clock()
        if not self.calendar.is_after_market_close(now):
            logger.debug("Market still open, live close snapshot skipped")
            return None

        await self._wait_for_build()
        day = self.calendar.trading_day_for(now)
        trades = await self.journal.list_trades()
        cash_flows = await self.ledger.list_cash_flows()
        tickers = open_tickers_on(trades, day)
        quotes = await self._live_quotes(tickers)
        missing = [t for t in tickers if t not in quotes]
        if missing:
            logger.warning(f"Live close snapshot for {day} skipped, no quote for {', '.join(missing)}")
            return None

        breakdown = balance_at_date(
            day, self.settings.starting_balance, trades, cash_flows, quotes, self.calendar
        )
        snapshot = self._snapshot_from(breakdown, quotes, day, cash_flows, SnapshotSource.LIVE_QUOTE)
        try:
            await self.snapshot_cache.load()
            saved = await self.snapshot_cache.save(day, snapshot)
        except StorageError as e:
            logger.error(f"Could not store live close snapshot for {day}: {e}")
            return None
        logger.info(f"Stored live close snapshot for {day}: balance={saved.balance:.2f}")
        return saved

    async def clear_all(self) -> None:
        """Drop every cached snapshot, price and quote."""
        await self._wait_for_build()
        await self.snapshot_cache.load()
        await self.snapshot_cache.clear_all()
        await self.price_store.clear()
        self._quote_cache.clear()
        self._last_curve = EquityCurve()
        logger.info("All curve caches cleared")

    def clear_quote_cache(self) -> None:
        self._quote_cache.clear()

    async def get_cache_stats(self) -> dict[str, Any]:
        await self.snapshot_cache.load()
        await self.price_store.load()
        return {
            "snapshots": self.snapshot_cache.get_stats(),
            "prices": self.price_store.get_stats(),
            "building": self.is_building,
        }

    # Build pipeline

    async def _wait_for_build(self) -> None:
        if self._in_flight is not None:
            await asyncio.shield(self._in_flight)

    async def _run_build(self, start: date | str | None, end: date | str | None) -> EquityCurve:
        try:
            curve = await self._build(start, end)
        except StorageError as e:
            logger.error(f"Curve build aborted, persistence failed: {e}")
            return self._last_curve
        except Exception as e:
            logger.exception(f"Curve build failed ({type(e).__name__}): {e}")
            return self._last_curve
        self._last_curve = curve
        logger.success(
            f"Built equity curve with {len(curve)} points"
            + (f" ({curve.start} to {curve.end})" if not curve.is_empty else "")
        )
        return curve

    async def _build(self, start: date | str | None, end: date | str | None) -> EquityCurve:
        trades = await self.journal.list_trades()
        cash_flows = await self.ledger.list_cash_flows()
        if not trades:
            logger.info("No trades, equity curve is empty")
            return EquityCurve()

        await self.snapshot_cache.load()
        await self.price_store.load()
        today = self.today()

        start_day = parse_iso_date(start, "start") if start else min(t.entry_date for t in trades)
        if not is_business_day(start_day):
            start_day = next_business_day(start_day)
        end_day = trading_day_of_date(parse_iso_date(end, "end")) if end else today
        end_day = min(end_day, today)
        if start_day > end_day:
            logger.info(f"Empty range {start_day} to {end_day}")
            return EquityCurve()

        await self._backfill_incomplete_days(trades, cash_flows, today)
        await self._check_stale_cache(trades, start_day)

        missing = [
            day
            for day in self.snapshot_cache.find_missing_days(start_day, end_day)
            if day < today and not self.snapshot_cache.contains(day)
        ]
        if missing:
            logger.info(f"Filling {len(missing)} missing days from {missing[0]} to {missing[-1]}")
            await self._fill_days(missing, trades, cash_flows, today)
        self._recalculate_from = None

        points = await self._assemble(start_day, end_day, today, trades, cash_flows)
        return EquityCurve(tuple(self._ensure_minimum_points(points, start_day)))

    async def _backfill_incomplete_days(
        self, trades: list[Trade], cash_flows: list[CashFlowTransaction], today: date
    ) -> None:
        """Retry the missing tickers of incomplete days below the retry ceiling."""
        max_retries = self.settings.max_retries
        exhausted = len(self.snapshot_cache.get_incomplete_days()) - len(
            self.snapshot_cache.get_incomplete_days(below_retry_count=max_retries)
        )
        if exhausted:
            logger.warning(f"{exhausted} incomplete days reached the retry ceiling, left as gaps")

        days = [d for d in self.snapshot_cache.get_incomplete_days(max_retries) if d < today]
        if not days:
            return

        known_prices: dict[date, dict[str, float]] = {}
        needed: dict[date, set[str]] = {}
        for day in days:
            snapshot = self.snapshot_cache.get(day)
            tickers = open_tickers_on(trades, day)
            known_prices[day] = {t: p for t, p in snapshot.stock_prices.items() if t in tickers}
            needed[day] = {t for t in tickers if t not in known_prices[day]}

        all_needed = set().union(*needed.values())
        logger.info(f"Backfilling {len(days)} incomplete days ({', '.join(sorted(all_needed))})")
        fetch_days = [d for d in days if needed[d]]
        if fetch_days:
            await self.price_store.ensure_prices(all_needed, fetch_days[0], fetch_days[-1], today)

        computed = {}
        for day in days:
            prices = dict(known_prices[day])
            prices.update(self.price_store.prices_for_day(needed[day], day))
            breakdown = balance_at_date(
                day, self.settings.starting_balance, trades, cash_flows, prices, self.calendar
            )
            computed[day] = self._snapshot_from(breakdown, prices, day, cash_flows, SnapshotSource.RETRY)

        saved = await self.snapshot_cache.save_many(computed)
        resolved = sum(1 for snap in saved.values() if snap.complete)
        logger.info(f"Backfill resolved {resolved} of {len(days)} incomplete days")

    async def _check_stale_cache(self, trades: list[Trade], start_day: date) -> None:
        """Clear the whole cache when the start day's snapshot shows no positions
        although the trade list says positions were open that day.
        """
        if not any(t.status.is_active for t in trades):
            return
        sample = self.snapshot_cache.get(start_day)
        if sample is None or sample.unrealized_pnl != ZERO or sample.positions_owned:
            return
        if not open_tickers_on(trades, start_day):
            return
        logger.warning(
            f"Stale snapshot cache detected on {start_day} (no positions but open trades), clearing"
        )
        await self.snapshot_cache.clear_all()

    async def _fill_days(
        self,
        days: list[date],
        trades: list[Trade],
        cash_flows: list[CashFlowTransaction],
        today: date,
    ) -> None:
        """Compute and store snapshots for ``days`` in one batch write.

        Days on or after a pending waterfall start are marked as recalculated.
        """
        tickers_by_day = {day: open_tickers_on(trades, day) for day in days}
        days_with_positions = [d for d in days if tickers_by_day[d]]
        if days_with_positions:
            needed = set().union(*(tickers_by_day[d] for d in days_with_positions))
            await self.price_store.ensure_prices(
                needed, days_with_positions[0], days_with_positions[-1], today
            )

        computed = {}
        for day in days:
            prices = self.price_store.prices_for_day(tickers_by_day[day], day)
            breakdown = balance_at_date(
                day, self.settings.starting_balance, trades, cash_flows, prices, self.calendar
            )
            if breakdown.missing_tickers:
                logger.warning(f"Missing prices on {day}: {', '.join(breakdown.missing_tickers)}")
            recalculated = self._recalculate_from is not None and day >= self._recalculate_from
            source = SnapshotSource.RECALCULATED if recalculated else SnapshotSource.HISTORICAL_PROVIDER
            computed[day] = self._snapshot_from(breakdown, prices, day, cash_flows, source)

        saved = await self.snapshot_cache.save_many(computed)
        incomplete = sum(1 for snap in saved.values() if not snap.complete)
        logger.info(f"Filled {len(saved)} days ({incomplete} incomplete)")

    def _snapshot_from(
        self,
        breakdown: BalanceBreakdown,
        prices: dict[str, float],
        day: date,
        cash_flows: Iterable[CashFlowTransaction],
        source: SnapshotSource,
    ) -> EODSnapshot:
        return EODSnapshot(
            realized_balance=breakdown.realized_balance,
            unrealized_pnl=breakdown.unrealized_pnl,
            cash_flow=day_cash_flow(cash_flows, day, self.calendar),
            stock_prices={t: prices[t] for t in breakdown.positions if t in prices},
            positions_owned=breakdown.positions,
            source=source if breakdown.positions else SnapshotSource.NO_POSITIONS,
            missing_tickers=breakdown.missing_tickers,
            computed_at=self._clock(),
        )

    # Assembly

    async def _assemble(
        self,
        start_day: date,
        end_day: date,
        today: date,
        trades: list[Trade],
        cash_flows: list[CashFlowTransaction],
    ) -> list[CurvePoint]:
        points = []
        for day in business_days_between(start_day, end_day):
            if day == today:
                point = await self._live_point(today, trades, cash_flows)
            else:
                point = self._cached_point(day, trades)
            if point is not None:
                points.append(point)
        return points

    def _cached_point(self, day: date, trades: list[Trade]) -> CurvePoint | None:
        snapshot = self.snapshot_cache.get(day)
        if snapshot is None or not snapshot.complete:
            return None
        return CurvePoint(
            date=day,
            realized_balance=snapshot.realized_balance,
            unrealized_pnl=snapshot.unrealized_pnl,
            day_pnl=day_pnl(trades, day),
            cash_flow=snapshot.cash_flow,
        )

    async def _live_point(
        self, today: date, trades: list[Trade], cash_flows: list[CashFlowTransaction]
    ) -> CurvePoint | None:
        """Today's point from live quotes; omitted when open positions have no quotes."""
        tickers = sorted({t.ticker for t in trades if t.status.is_active})
        quotes = await self._live_quotes(tickers)
        if tickers and not quotes:
            logger.debug("No live quotes yet, today's point omitted")
            return None
        breakdown = current_balance(self.settings.starting_balance, trades, cash_flows, quotes)
        if breakdown.missing_tickers:
            logger.warning(f"No live quote for {', '.join(breakdown.missing_tickers)}")
        return CurvePoint(
            date=today,
            realized_balance=breakdown.realized_balance,
            unrealized_pnl=breakdown.unrealized_pnl,
            day_pnl=day_pnl(trades, today),
            cash_flow=day_cash_flow(cash_flows, today, self.calendar),
            live=True,
        )

    async def _live_quotes(self, tickers: Iterable[str]) -> dict[str, float]:
        quotes = {}
        for ticker in tickers:
            cached = self._quote_cache.get(ticker)
            if cached is not None:
                quotes[ticker] = cached
                continue
            try:
                price = await self.quote_source.current_price(ticker)
            except Exception as e:
                logger.warning(f"Live quote for {ticker} failed: {e}")
                continue
            if is_finite_number(price) and price > 0:
                self._quote_cache[ticker] = float(price)
                quotes[ticker] = float(price)
        return quotes

    def _ensure_minimum_points(self, points: list[CurvePoint], start_day: date) -> list[CurvePoint]:
        """Pad the curve with starting-balance points so a line can be drawn."""
        if len(points) >= 2:
            return points
        starting = self.settings.starting_balance
        first_day = points[0].date if points else start_day
        anchor = previous_business_day(first_day)
        padded = [CurvePoint(date=anchor, realized_balance=starting, unrealized_pnl=ZERO, synthetic=True)]
        if not points:
            padded.append(
                CurvePoint(date=first_day, realized_balance=starting, unrealized_pnl=ZERO, synthetic=True)
            )
        logger.debug(f"Curve padded with {len(padded)} synthetic points")
        return padded + points
