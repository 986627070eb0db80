"""
Unit tests for the EOD snapshot cache.
"""

from datetime import date

import pytest

from balance_curve.core.config import CurveSettings
from balance_curve.core.exceptions.equity import (
    DataError,
    StorageError,
    StorageQuotaExceededError,
    ValidationError,
)
from balance_curve.core.models.snapshot import EODSnapshot
from balance_curve.infrastructure.cache.cache_interfaces import (
    CacheEvent,
    CacheEventType,
    CacheMetricsObserver,
)
from balance_curve.infrastructure.cache.eod_cache import EODSnapshotCache
from balance_curve.infrastructure.storage.key_value_store import (
    InMemoryKeyValueStore,
    serialized_size,
)


class RecordingObserver:
    """Observer capturing cache events."""

    def __init__(self) -> None:
        self.events: list[CacheEvent] = []

    def notify(self, event: CacheEvent) -> None:
        self.events.append(event)

    def types(self) -> list[CacheEventType]:
        return [e.event_type for e in self.events]


def complete_snapshot(balance: float = 10_000.0) -> EODSnapshot:
    return EODSnapshot(realized_balance=balance, unrealized_pnl=0.0, cash_flow=0.0)


def incomplete_snapshot(ticker: str = "MSFT") -> EODSnapshot:
    return EODSnapshot(
        realized_balance=10_000.0,
        unrealized_pnl=0.0,
        cash_flow=0.0,
        positions_owned=(ticker,),
        missing_tickers=(ticker,),
    )


class TestEODSnapshotCache:
    """Test suite for EODSnapshotCache."""

    @pytest.fixture
    def store(self) -> InMemoryKeyValueStore:
        return InMemoryKeyValueStore()

    @pytest.fixture
    def cache(self, store: InMemoryKeyValueStore) -> EODSnapshotCache:
        return EODSnapshotCache(store, enable_observers=False)

    # Loading

    @pytest.mark.asyncio
    async def test_should_start_empty_when_nothing_is_stored(self, cache: EODSnapshotCache) -> None:
        loaded = await cache.load()

        assert loaded.snapshots == {}
        assert loaded.schema_version == 1
        assert cache.last_complete_trading_day is None

    @pytest.mark.asyncio
    async def test_should_reset_on_schema_version_mismatch(self, store: InMemoryKeyValueStore) -> None:
        old = EODSnapshotCache(store, enable_observers=False)
        await old.load()
        await old.save(date(2024, 1, 5), complete_snapshot())

        bumped = EODSnapshotCache(store, CurveSettings(eod_schema_version=2), enable_observers=False)
        observer = RecordingObserver()
        bumped.add_observer(observer)
        loaded = await bumped.load()

        assert loaded.snapshots == {}
        assert loaded.schema_version == 2
        assert (await store.get("eodCache"))["schemaVersion"] == 2
        assert CacheEventType.SCHEMA_RESET in observer.types()

    @pytest.mark.asyncio
    async def test_should_reset_on_malformed_payload(self, store: InMemoryKeyValueStore) -> None:
        await store.set("eodCache", ["not", "a", "cache"])
        cache = EODSnapshotCache(store, enable_observers=False)

        assert (await cache.load()).snapshots == {}

    @pytest.mark.asyncio
    async def test_should_drop_invalid_days_on_load(self, store: InMemoryKeyValueStore) -> None:
        valid = complete_snapshot().to_dict()
        await store.set(
            "eodCache",
            {
                "schemaVersion": 1,
                "snapshots": {
                    "2024-01-04": valid,
                    "2024-01-05": {**valid, "balance": "oops"},
                    "2024-01-06": valid,
                    "garbage": valid,
                    "2024-01-08": {**valid, "positionsOwned": ["AAPL"], "stockPrices": {}},
                    "2024-01-09": {**valid, "complete": False},
                },
            },
        )
        cache = EODSnapshotCache(store, enable_observers=False)
        observer = RecordingObserver()
        cache.add_observer(observer)

        loaded = await cache.load()

        assert list(loaded.snapshots) == [date(2024, 1, 4)]
        assert observer.types().count(CacheEventType.DAY_REJECTED) == 5

    @pytest.mark.asyncio
    async def test_should_refuse_use_before_load(self, cache: EODSnapshotCache) -> None:
        with pytest.raises(DataError):
            cache.get(date(2024, 1, 5))

    # Reads and writes

    @pytest.mark.asyncio
    async def test_should_save_and_persist_snapshot(
        self, cache: EODSnapshotCache, store: InMemoryKeyValueStore
    ) -> None:
        await cache.load()
        await cache.save("2024-01-05", complete_snapshot(10_500.0))

        assert cache.has(date(2024, 1, 5))
        assert cache.get(date(2024, 1, 5)).balance == 10_500.0
        assert (await store.get("eodCache"))["snapshots"]["2024-01-05"]["balance"] == 10_500.0
        assert cache.last_complete_trading_day == date(2024, 1, 5)

    @pytest.mark.asyncio
    async def test_should_not_report_incomplete_day_as_present(self, cache: EODSnapshotCache) -> None:
        await cache.load()
        await cache.save(date(2024, 2, 1), incomplete_snapshot())

        assert not cache.has(date(2024, 2, 1))
        assert cache.contains(date(2024, 2, 1))
        assert cache.get_incomplete_days() == [date(2024, 2, 1)]

    @pytest.mark.asyncio
    async def test_should_count_incomplete_resaves_as_retry_attempts(self, cache: EODSnapshotCache) -> None:
        await cache.load()
        day = date(2024, 2, 1)

        saved = [await cache.save(day, incomplete_snapshot()) for _ in range(4)]

        assert [snap.retry_count for snap in saved] == [0, 1, 2, 3]
        assert cache.get_incomplete_days(below_retry_count=3) == []

    @pytest.mark.asyncio
    async def test_should_restart_retry_count_after_complete_day(self, cache: EODSnapshotCache) -> None:
        await cache.load()
        day = date(2024, 2, 1)
        await cache.save(day, complete_snapshot())

        saved = await cache.save(day, incomplete_snapshot())

        assert saved.retry_count == 0
        assert cache.get_incomplete_days(below_retry_count=3) == [day]

    @pytest.mark.asyncio
    async def test_should_keep_retry_count_on_complete_save(self, cache: EODSnapshotCache) -> None:
        await cache.load()
        day = date(2024, 2, 1)
        await cache.save(day, incomplete_snapshot())
        await cache.save(day, incomplete_snapshot())

        saved = await cache.save(day, complete_snapshot())

        assert saved.retry_count == 1
        assert saved.complete

    @pytest.mark.asyncio
    async def test_should_reject_weekend_days(self, cache: EODSnapshotCache) -> None:
        await cache.load()
        with pytest.raises(ValidationError):
            await cache.save(date(2024, 1, 6), complete_snapshot())

    @pytest.mark.asyncio
    async def test_should_find_business_days_without_complete_snapshot(
        self, cache: EODSnapshotCache
    ) -> None:
        await cache.load()
        await cache.save_many(
            {
                date(2024, 1, 4): complete_snapshot(),
                date(2024, 1, 8): incomplete_snapshot(),
            }
        )

        missing = cache.find_missing_days("2024-01-03", "2024-01-09")

        assert missing == [date(2024, 1, 3), date(2024, 1, 5), date(2024, 1, 8), date(2024, 1, 9)]

    @pytest.mark.asyncio
    async def test_should_invalidate_day_and_everything_after(self, cache: EODSnapshotCache) -> None:
        await cache.load()
        days = [date(2024, 1, d) for d in (8, 9, 10, 11, 12)]
        await cache.save_many({d: complete_snapshot() for d in days})

        removed = await cache.invalidate_from(date(2024, 1, 10))

        assert removed == 3
        assert cache.get_all_days() == [date(2024, 1, 8), date(2024, 1, 9)]
        assert cache.last_complete_trading_day == date(2024, 1, 9)

    @pytest.mark.asyncio
    async def test_should_delete_single_day(self, cache: EODSnapshotCache) -> None:
        await cache.load()
        await cache.save(date(2024, 1, 8), complete_snapshot())

        assert await cache.delete_day("2024-01-08")
        assert not await cache.delete_day("2024-01-08")

    @pytest.mark.asyncio
    async def test_should_clear_all(self, cache: EODSnapshotCache, store: InMemoryKeyValueStore) -> None:
        await cache.load()
        await cache.save(date(2024, 1, 8), complete_snapshot())

        await cache.clear_all()

        assert cache.get_all_days() == []
        assert (await store.get("eodCache"))["snapshots"] == {}

    @pytest.mark.asyncio
    async def test_should_cleanup_old_data(self, cache: EODSnapshotCache) -> None:
        await cache.load()
        await cache.save_many(
            {date(2021, 1, 4): complete_snapshot(), date(2024, 1, 8): complete_snapshot()}
        )

        removed = await cache.cleanup_old_data(730, today=date(2024, 1, 10))

        assert removed == 1
        assert cache.get_all_days() == [date(2024, 1, 8)]

    @pytest.mark.asyncio
    async def test_should_export_and_import(self, cache: EODSnapshotCache) -> None:
        await cache.load()
        await cache.save(date(2024, 1, 8), complete_snapshot(12_000.0))
        exported = cache.export_data()

        other = EODSnapshotCache(InMemoryKeyValueStore(), enable_observers=False)
        await other.load()
        imported = await other.import_data(exported)

        assert imported == 1
        assert other.get(date(2024, 1, 8)).balance == 12_000.0

    @pytest.mark.asyncio
    async def test_should_refuse_import_of_other_schema(self, cache: EODSnapshotCache) -> None:
        await cache.load()
        with pytest.raises(DataError):
            await cache.import_data({"schemaVersion": 99, "snapshots": {}})

    @pytest.mark.asyncio
    async def test_should_report_stats(self, cache: EODSnapshotCache) -> None:
        await cache.load()
        await cache.save_many(
            {date(2024, 1, 8): complete_snapshot(), date(2024, 1, 9): incomplete_snapshot()}
        )
        cache.get(date(2024, 1, 8))
        cache.get(date(2024, 1, 10))

        stats = cache.get_stats()

        assert stats["total_days"] == 2
        assert stats["complete_days"] == 1
        assert stats["incomplete_days"] == 1
        assert stats["oldest_day"] == "2024-01-08"
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["size_bytes"] > 0

    @pytest.mark.asyncio
    async def test_should_feed_hit_rate_to_metrics_observer(self, cache: EODSnapshotCache) -> None:
        metrics = CacheMetricsObserver()
        cache.add_observer(metrics)
        await cache.load()
        await cache.save(date(2024, 1, 8), complete_snapshot())

        cache.get(date(2024, 1, 8))
        cache.get("2024-01-08")
        cache.get(date(2024, 1, 9))

        result = metrics.get_metrics()
        assert result["cache_hit"] == 2
        assert result["cache_miss"] == 1
        assert result["total_requests"] == 3
        assert result["hit_rate_percent"] == 66

    # Storage failures

    @pytest.mark.asyncio
    async def test_should_roll_back_batch_on_storage_error(
        self, cache: EODSnapshotCache, store: InMemoryKeyValueStore
    ) -> None:
        await cache.load()
        await cache.save(date(2024, 1, 8), complete_snapshot())
        store.fail_next_sets = 1

        with pytest.raises(StorageError):
            await cache.save_many(
                {date(2024, 1, 9): complete_snapshot(), date(2024, 1, 10): complete_snapshot()}
            )

        assert cache.get_all_days() == [date(2024, 1, 8)]

    @pytest.mark.asyncio
    async def test_should_shrink_and_retry_on_quota(self) -> None:
        complete_days = {date(2024, 1, d): complete_snapshot() for d in (8, 9, 10)}
        incomplete_days = {date(2024, 1, d): incomplete_snapshot() for d in (2, 3, 4, 5)}
        # Room for the complete days plus the newer half of the incomplete ones
        sizing = EODSnapshotCache(InMemoryKeyValueStore(), enable_observers=False)
        await sizing.load()
        await sizing.save_many({**complete_days, date(2024, 1, 4): incomplete_snapshot()})
        await sizing.save(date(2024, 1, 5), incomplete_snapshot())
        fits = serialized_size(sizing.export_data()) + 100

        store = InMemoryKeyValueStore(quota_bytes=fits)
        cache = EODSnapshotCache(store, enable_observers=False)
        observer = RecordingObserver()
        cache.add_observer(observer)
        await cache.load()
        await cache.save_many(complete_days)

        await cache.save_many(incomplete_days)

        assert set(complete_days) <= set(cache.get_all_days())
        assert cache.get_incomplete_days() == [date(2024, 1, 4), date(2024, 1, 5)]
        assert CacheEventType.STORAGE_PRESSURE in observer.types()

    @pytest.mark.asyncio
    async def test_should_clear_when_shrinking_is_not_enough(self) -> None:
        store = InMemoryKeyValueStore(quota_bytes=400)
        cache = EODSnapshotCache(store, enable_observers=False)
        await cache.load()

        with pytest.raises(StorageQuotaExceededError):
            await cache.save_many({date(2024, 1, d): complete_snapshot() for d in (8, 9, 10, 11)})

        assert cache.get_all_days() == []
        assert (await store.get("eodCache"))["snapshots"] == {}
