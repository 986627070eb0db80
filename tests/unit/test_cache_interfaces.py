"""
Unit tests for cache observers and statistics.
"""

from balance_curve.infrastructure.cache.cache_interfaces import (
    CacheEvent,
    CacheEventType,
    CacheLoggingObserver,
    CacheMetricsObserver,
    CacheSubject,
    create_standard_cache_observers,
)
from balance_curve.infrastructure.cache.cache_statistics import CacheStatistics


class FailingObserver:
    def notify(self, event: CacheEvent) -> None:
        raise RuntimeError("observer bug")


class TestCacheSubject:
    def test_should_notify_registered_observers(self) -> None:
        subject = CacheSubject()
        metrics = CacheMetricsObserver()
        subject.add_observer(metrics)

        subject.notify_observers(CacheEvent(CacheEventType.SNAPSHOT_SAVED, "eodCache"))

        assert metrics.stats["snapshot_saved"] == 1

    def test_should_isolate_failing_observers(self) -> None:
        subject = CacheSubject()
        failing = FailingObserver()
        metrics = CacheMetricsObserver()
        subject.add_observer(failing)
        subject.add_observer(metrics)

        subject.notify_observers(CacheEvent(CacheEventType.CACHE_CLEARED, "eodCache"))

        assert metrics.stats["cache_cleared"] == 1

    def test_should_stop_notifying_removed_observers(self) -> None:
        subject = CacheSubject()
        metrics = CacheMetricsObserver()
        subject.add_observer(metrics, keep_alive=True)
        subject.remove_observer(metrics)

        subject.notify_observers(CacheEvent(CacheEventType.CACHE_HIT, "eodCache"))

        assert metrics.stats["cache_hit"] == 0

    def test_should_keep_alive_factory_observers(self) -> None:
        subject = CacheSubject()
        for observer in create_standard_cache_observers():
            subject.add_observer(observer, keep_alive=True)

        assert len(list(subject._observers)) == 2


class TestCacheMetricsObserver:
    def test_should_compute_hit_rate(self) -> None:
        metrics = CacheMetricsObserver()
        for event_type in (CacheEventType.CACHE_HIT, CacheEventType.CACHE_HIT, CacheEventType.CACHE_MISS):
            metrics.notify(CacheEvent(event_type, "eodCache"))

        result = metrics.get_metrics()

        assert result["total_requests"] == 3
        assert result["hit_rate_percent"] == 66

        metrics.reset_metrics()
        assert metrics.get_metrics()["total_requests"] == 0

    def test_should_log_without_raising(self) -> None:
        observer = CacheLoggingObserver(log_level="INFO")
        observer.notify(CacheEvent(CacheEventType.STORAGE_PRESSURE, "eodCache", {"required_bytes": 1}))
        observer.notify(CacheEvent(CacheEventType.SNAPSHOT_SAVED, "eodCache"))


class TestCacheStatistics:
    def test_should_track_hits_misses_and_writes(self) -> None:
        stats = CacheStatistics()
        stats.record_hit()
        stats.record_miss()
        stats.record_write()
        stats.record_write(succeeded=False)

        detailed = stats.get_detailed_stats(
            total_days=3, complete_days=2, size_bytes=2048, oldest_day="2024-01-02", newest_day=None
        )

        assert detailed["incomplete_days"] == 1
        assert detailed["size_kb"] == 2.0
        assert detailed["hit_rate_percent"] == 50.0
        assert detailed["writes"] == 1
        assert detailed["write_failures"] == 1

        stats.reset_stats()
        assert stats.get_stats() == {"hits": 0, "misses": 0, "writes": 0, "write_failures": 0}
