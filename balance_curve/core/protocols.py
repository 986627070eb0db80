"""
Contracts of the collaborators the curve builder depends on.
"""

from collections.abc import Sequence
from datetime import date
from typing import Any, Protocol, runtime_checkable

from balance_curve.core.models.cash_flow import CashFlowTransaction
from balance_curve.core.models.trade import Trade


@runtime_checkable
class PriceProvider(Protocol):
    """Historical daily closes, fetched in batches.

    Implementations accept at most ``batch_size`` tickers per call and
    omit tickers they cannot resolve instead of failing the call.
    """

    async def batch_fetch_historical(
        self, tickers: Sequence[str], output_window: int
    ) -> dict[str, dict[date, float]]: ...


@runtime_checkable
class LiveQuoteSource(Protocol):
    """Current price of a ticker, or None when no quote is available."""

    async def current_price(self, ticker: str) -> float | None: ...


@runtime_checkable
class KeyValueStore(Protocol):
    """Persistent JSON-like key-value storage.

    ``set`` raises StorageQuotaExceededError when the write would not fit.
    """

    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any) -> None: ...

    async def remove(self, key: str) -> None: ...


@runtime_checkable
class TradeJournal(Protocol):
    async def list_trades(self) -> list[Trade]: ...


@runtime_checkable
class CashFlowLedger(Protocol):
    async def list_cash_flows(self) -> list[CashFlowTransaction]: ...
