"""
Unit tests for the historical price store.
"""

from datetime import UTC, date, datetime

import pytest

from balance_curve.core.config import CurveSettings
from balance_curve.core.exceptions.equity import StorageQuotaExceededError
from balance_curve.infrastructure.prices.historical_prices import (
    HistoricalPriceStore,
    output_window_for,
)
from balance_curve.infrastructure.prices.in_memory import InMemoryPriceProvider
from balance_curve.infrastructure.storage.key_value_store import InMemoryKeyValueStore

# Friday 2024-01-12, 17:00 in New York
AFTER_CLOSE = datetime(2024, 1, 12, 22, 0, tzinfo=UTC)

CLOSES = {
    "2024-01-02": 185.0,
    "2024-01-03": 184.0,
    "2024-01-04": 181.0,
    "2024-01-05": 181.5,
    "2024-01-08": 185.5,
    "2024-01-09": 185.1,
    "2024-01-10": 186.2,
    "2024-01-11": 185.6,
    "2024-01-12": 185.9,
}


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class QuotaOnceStore(InMemoryKeyValueStore):
    """Store whose first write of the price key hits the quota."""

    def __init__(self) -> None:
        super().__init__()
        self.rejections = 1

    async def set(self, key, value) -> None:
        if key == "historicalPriceCache" and self.rejections:
            self.rejections -= 1
            raise StorageQuotaExceededError(key, 10_000, 10)
        await super().set(key, value)


class TestOutputWindow:
    def test_should_clamp_output_window(self) -> None:
        today = date(2024, 6, 3)
        assert output_window_for(date(2024, 6, 1), today) == 30
        assert output_window_for(date(2024, 1, 2), today) == 153 + 10
        assert output_window_for(date(2020, 1, 2), today) == 500


class TestHistoricalPriceStore:
    """Test suite for HistoricalPriceStore."""

    @pytest.fixture
    def provider(self) -> InMemoryPriceProvider:
        return InMemoryPriceProvider({"AAPL": CLOSES, "MSFT": CLOSES}, batch_size=2)

    @pytest.fixture
    def store(self) -> InMemoryKeyValueStore:
        return InMemoryKeyValueStore()

    @pytest.fixture
    def sleep(self) -> RecordingSleep:
        return RecordingSleep()

    @pytest.fixture
    def prices(
        self, provider: InMemoryPriceProvider, store: InMemoryKeyValueStore, sleep: RecordingSleep
    ) -> HistoricalPriceStore:
        return HistoricalPriceStore(
            provider,
            store,
            CurveSettings(batch_size=2, batch_delay_seconds=2.0),
            clock=lambda: AFTER_CLOSE,
            sleep=sleep,
        )

    @pytest.mark.asyncio
    async def test_should_fetch_in_sequential_delayed_batches(
        self, prices: HistoricalPriceStore, provider: InMemoryPriceProvider, sleep: RecordingSleep
    ) -> None:
        provider.set_closes("NVDA", CLOSES)
        provider.set_closes("TSLA", CLOSES)
        provider.set_closes("AMD", CLOSES)

        failed = await prices.ensure_prices(
            ["AAPL", "MSFT", "NVDA", "TSLA", "AMD"], date(2024, 1, 2), date(2024, 1, 12)
        )

        assert failed == set()
        assert provider.call_count == 3
        assert all(len(tickers) <= 2 for tickers, _ in provider.calls)
        assert sleep.delays == [2.0, 2.0]

    @pytest.mark.asyncio
    async def test_should_not_refetch_covered_range(
        self, prices: HistoricalPriceStore, provider: InMemoryPriceProvider
    ) -> None:
        await prices.ensure_prices(["AAPL"], date(2024, 1, 2), date(2024, 1, 12))
        await prices.ensure_prices(["AAPL"], date(2024, 1, 3), date(2024, 1, 10))

        assert provider.call_count == 1
        assert prices.has_coverage("AAPL", date(2024, 1, 2), date(2024, 1, 12))

    @pytest.mark.asyncio
    async def test_should_report_unresolved_tickers(
        self, prices: HistoricalPriceStore, provider: InMemoryPriceProvider
    ) -> None:
        provider.failing_tickers.add("MSFT")

        failed = await prices.ensure_prices(["AAPL", "MSFT"], date(2024, 1, 2), date(2024, 1, 12))

        assert failed == {"MSFT"}
        assert prices.price_on("MSFT", date(2024, 1, 5)) is None
        assert prices.price_on("AAPL", date(2024, 1, 5)) == 181.5

    @pytest.mark.asyncio
    async def test_should_treat_failed_batch_as_missing(
        self, prices: HistoricalPriceStore, provider: InMemoryPriceProvider
    ) -> None:
        provider.fail_all = True

        failed = await prices.ensure_prices(["AAPL"], date(2024, 1, 2), date(2024, 1, 12))

        assert failed == {"AAPL"}

    @pytest.mark.asyncio
    async def test_should_fall_back_to_previous_close_within_lookback(
        self, prices: HistoricalPriceStore
    ) -> None:
        prices.add_prices("AAPL", {date(2024, 1, 12): 185.9})
        prices.add_prices("AAPL", {date(2024, 1, 2): 185.0})

        assert prices.price_on("AAPL", date(2024, 1, 15)) == 185.9  # holiday Monday
        assert prices.price_on("AAPL", date(2024, 1, 19)) == 185.9
        assert prices.price_on("AAPL", date(2024, 1, 20)) is None
        assert prices.price_on("AAPL", date(2023, 12, 29)) is None

    @pytest.mark.asyncio
    async def test_should_persist_and_reload_prices(
        self, prices: HistoricalPriceStore, store: InMemoryKeyValueStore, provider: InMemoryPriceProvider
    ) -> None:
        await prices.ensure_prices(["AAPL"], date(2024, 1, 2), date(2024, 1, 12))

        reloaded = HistoricalPriceStore(provider, store, clock=lambda: AFTER_CLOSE)
        await reloaded.load()

        assert reloaded.price_on("AAPL", date(2024, 1, 10)) == 186.2
        assert reloaded.has_coverage("AAPL", date(2024, 1, 2), date(2024, 1, 12))

    @pytest.mark.asyncio
    async def test_should_discard_stored_prices_of_other_schema(
        self, store: InMemoryKeyValueStore, provider: InMemoryPriceProvider
    ) -> None:
        await store.set("historicalPriceCache", {"schemaVersion": 0, "tickers": {}})
        prices = HistoricalPriceStore(provider, store)

        await prices.load()

        assert prices.tickers == []

    def test_should_cleanup_only_inactive_tickers(self, prices: HistoricalPriceStore) -> None:
        old_and_new = {date(2023, 10, 2): 170.0, date(2024, 1, 10): 186.0}
        prices.add_prices("AAPL", old_and_new)
        prices.add_prices("MSFT", old_and_new)

        removed = prices.cleanup(active_tickers=["MSFT"], today=date(2024, 1, 12))

        assert removed == 1
        assert prices.price_on("AAPL", date(2023, 10, 2)) is None
        assert prices.price_on("MSFT", date(2023, 10, 2)) == 170.0

    @pytest.mark.asyncio
    async def test_should_cleanup_and_retry_on_quota(self, provider: InMemoryPriceProvider) -> None:
        store = QuotaOnceStore()
        prices = HistoricalPriceStore(provider, store, clock=lambda: AFTER_CLOSE)
        await prices.load()
        prices.add_prices("AAPL", CLOSES)

        assert await prices.persist(active_tickers=["AAPL"])
        assert (await store.get("historicalPriceCache"))["tickers"]["AAPL"]["prices"]

    def test_should_ignore_non_positive_and_non_numeric_closes(
        self, prices: HistoricalPriceStore
    ) -> None:
        merged = prices.add_prices("aapl", {"2024-01-02": 0.0, "2024-01-03": "x", "2024-01-04": 181.0})

        assert merged == 1
        assert prices.tickers == ["AAPL"]
