"""
Balance calculator.

Pure functions that turn a starting balance, trades, cash flows and a
price map into a balance breakdown, either for "now" (live quotes) or for
the close of a past trading day (EOD prices).

A position without a price contributes zero unrealized P&L and is listed
in ``missing_tickers``; nothing here raises on missing data.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date

from balance_curve.core.models.cash_flow import CashFlowTransaction
from balance_curve.core.models.curve import BalanceBreakdown
from balance_curve.core.models.trade import Trade
from balance_curve.core.trading_calendar import (
    TradingCalendar,
    is_business_day,
    next_business_day,
    previous_business_day,
)
from balance_curve.core.types.financial import ZERO, is_finite_number

_DEFAULT_CALENDAR = TradingCalendar()


@dataclass(frozen=True)
class PositionValuation:
    """Mark-to-market of one held position."""

    ticker: str
    shares: float
    price: float
    pnl: float
    pnl_percent: float


def _usable_price(prices: Mapping[str, float], ticker: str) -> float | None:
    price = prices.get(ticker)
    if not is_finite_number(price) or price <= ZERO:
        return None
    return float(price)


def trade_unrealized_pnl(trade: Trade, price: float, day: date | None = None) -> PositionValuation:
    """Value the shares of ``trade`` held at ``day`` (or today) at ``price``."""
    shares = trade.shares_on(day) if day is not None else trade.remaining_shares
    pnl = (price - trade.entry) * shares * trade.multiplier
    cost = trade.entry * shares * trade.multiplier
    return PositionValuation(
        ticker=trade.ticker,
        shares=shares,
        price=price,
        pnl=pnl,
        pnl_percent=(pnl / cost * 100) if cost else ZERO,
    )


def trades_open_on(trades: Iterable[Trade], day: date) -> list[Trade]:
    """Trades holding shares at the close of ``day``."""
    return [t for t in trades if t.is_open_on(day)]


def open_tickers_on(trades: Iterable[Trade], day: date) -> list[str]:
    """Sorted distinct tickers held at the close of ``day``."""
    return sorted({t.ticker for t in trades_open_on(trades, day)})


def realized_pnl_at(trades: Iterable[Trade], day: date) -> float:
    return sum((t.realized_pnl_as_of(day) for t in trades), ZERO)


def cash_flow_through(
    cash_flows: Iterable[CashFlowTransaction],
    day: date,
    calendar: TradingCalendar = _DEFAULT_CALENDAR,
) -> float:
    """Signed sum of cash flows dated on or before ``day``."""
    return sum(
        (cf.signed_amount for cf in cash_flows if cf.market_date(calendar) <= day),
        ZERO,
    )


def day_cash_flow(
    cash_flows: Iterable[CashFlowTransaction],
    day: date,
    calendar: TradingCalendar = _DEFAULT_CALENDAR,
) -> float:
    """Signed cash flow booked on the business day ``day``.

    Weekend transactions are booked on the following Monday.
    """
    total = ZERO
    for cf in cash_flows:
        booked = cf.market_date(calendar)
        if not is_business_day(booked):
            booked = next_business_day(booked)
        if booked == day:
            total += cf.signed_amount
    return total


def day_pnl(trades: Iterable[Trade], day: date) -> float:
    """Realized P&L locked in on ``day`` alone."""
    trades = list(trades)
    return realized_pnl_at(trades, day) - realized_pnl_at(trades, previous_business_day(day))


def _unrealized(
    trades: Iterable[Trade], prices: Mapping[str, float], day: date | None = None
) -> tuple[float, list[str], list[str]]:
    total = ZERO
    held: set[str] = set()
    missing: set[str] = set()
    for trade in trades:
        shares = trade.shares_on(day) if day is not None else trade.remaining_shares
        if shares <= ZERO:
            continue
        held.add(trade.ticker)
        price = _usable_price(prices, trade.ticker)
        if price is None:
            missing.add(trade.ticker)
            continue
        total += trade_unrealized_pnl(trade, price, day).pnl
    return total, sorted(held), sorted(missing)


def current_balance(
    starting_balance: float,
    trades: Iterable[Trade],
    cash_flows: Iterable[CashFlowTransaction],
    live_prices: Mapping[str, float],
) -> BalanceBreakdown:
    """Balance right now, valuing open positions at live quotes.

    Every recorded trim and close and every cash flow counts.
    """
    trades = list(trades)
    realized_pnl = sum(
        (t.realized_pnl for t in trades if t.status.has_realized),
        ZERO,
    )
    cash_flow = sum((cf.signed_amount for cf in cash_flows), ZERO)
    unrealized, held, missing = _unrealized((t for t in trades if t.status.is_active), live_prices)
    return BalanceBreakdown(
        realized_balance=starting_balance + realized_pnl + cash_flow,
        unrealized_pnl=unrealized,
        realized_pnl=realized_pnl,
        cash_flow=cash_flow,
        positions=tuple(held),
        missing_tickers=tuple(missing),
    )


def balance_at_date(
    day: date,
    starting_balance: float,
    trades: Iterable[Trade],
    cash_flows: Iterable[CashFlowTransaction],
    eod_prices: Mapping[str, float],
    calendar: TradingCalendar = _DEFAULT_CALENDAR,
) -> BalanceBreakdown:
    """Balance at the close of ``day``, valuing positions at ``eod_prices``."""
    trades = list(trades)
    realized_pnl = realized_pnl_at(trades, day)
    cash_flow = cash_flow_through(cash_flows, day, calendar)
    unrealized, held, missing = _unrealized(trades, eod_prices, day)
    return BalanceBreakdown(
        realized_balance=starting_balance + realized_pnl + cash_flow,
        unrealized_pnl=unrealized,
        realized_pnl=realized_pnl,
        cash_flow=cash_flow,
        positions=tuple(held),
        missing_tickers=tuple(missing),
    )
