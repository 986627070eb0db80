"""
In-memory price provider and live quote source.

Used by the CLI (prices loaded from a JSON file) and by the test suite,
which relies on the recorded calls to assert fetch behaviour.
"""

from collections.abc import Mapping, Sequence
from datetime import date

from loguru import logger

from balance_curve.core.constants import DEFAULT_BATCH_SIZE
from balance_curve.core.exceptions.equity import PriceFetchError, ValidationError
from balance_curve.core.utils.validation import parse_iso_date, validate_ticker


class InMemoryPriceProvider:
    """Serves daily closes from a ticker -> {day: close} mapping.

    Tickers listed in ``failing_tickers`` are omitted from every response,
    the way a real provider omits symbols it cannot resolve.
    """

    def __init__(
        self,
        closes: Mapping[str, Mapping[date | str, float]] | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
        failing_tickers: Sequence[str] = (),
    ):
        self.batch_size = batch_size
        self.failing_tickers = {validate_ticker(t) for t in failing_tickers}
        self.fail_all = False
        self.calls: list[tuple[list[str], int]] = []
        self._closes: dict[str, dict[date, float]] = {}
        for ticker, series in (closes or {}).items():
            self.set_closes(ticker, series)

    def set_closes(self, ticker: str, series: Mapping[date | str, float]) -> None:
        self._closes[validate_ticker(ticker)] = {
            parse_iso_date(day): float(close) for day, close in series.items()
        }

    @property
    def call_count(self) -> int:
        return len(self.calls)

    def requested_tickers(self) -> list[str]:
        """Every ticker requested, in call order, with repeats."""
        return [ticker for tickers, _ in self.calls for ticker in tickers]

    async def batch_fetch_historical(
        self, tickers: Sequence[str], output_window: int
    ) -> dict[str, dict[date, float]]:
        if len(tickers) > self.batch_size:
            raise ValidationError(
                f"Batch of {len(tickers)} tickers exceeds provider limit {self.batch_size}"
            )
        self.calls.append((list(tickers), output_window))
        if self.fail_all:
            raise PriceFetchError(list(tickers), "provider unavailable")

        result = {}
        for ticker in tickers:
            if ticker in self.failing_tickers or ticker not in self._closes:
                continue
            result[ticker] = dict(self._closes[ticker])
        logger.debug(f"Served {len(result)}/{len(tickers)} tickers")
        return result


class InMemoryQuoteSource:
    """Live quotes from a mutable ticker -> price mapping."""

    def __init__(self, quotes: Mapping[str, float] | None = None):
        self.quotes = {validate_ticker(t): float(p) for t, p in (quotes or {}).items()}
        self.calls: list[str] = []

    async def current_price(self, ticker: str) -> float | None:
        self.calls.append(ticker)
        return self.quotes.get(ticker)
