"""
Cache statistics tracking utilities.
"""

from threading import RLock
from typing import Any

from loguru import logger


class CacheStatistics:
    """Hit/miss and write counters with thread safety."""

    def __init__(self) -> None:
        self._stats_lock = RLock()
        self._cache_hits = 0
        self._cache_misses = 0
        self._writes = 0
        self._write_failures = 0

    def record_hit(self) -> None:
        with self._stats_lock:
            self._cache_hits += 1

    def record_miss(self) -> None:
        with self._stats_lock:
            self._cache_misses += 1

    def record_write(self, succeeded: bool = True) -> None:
        with self._stats_lock:
            if succeeded:
                self._writes += 1
            else:
                self._write_failures += 1

    def get_hit_rate(self) -> float:
        """Calculate cache hit rate as percentage."""
        with self._stats_lock:
            total_requests = self._cache_hits + self._cache_misses
            if total_requests == 0:
                return 0.0
            return (self._cache_hits / total_requests) * 100

    def get_stats(self) -> dict[str, int]:
        with self._stats_lock:
            return {
                "hits": self._cache_hits,
                "misses": self._cache_misses,
                "writes": self._writes,
                "write_failures": self._write_failures,
            }

    def reset_stats(self) -> None:
        with self._stats_lock:
            old_hits = self._cache_hits
            old_misses = self._cache_misses
            self._cache_hits = 0
            self._cache_misses = 0
            self._writes = 0
            self._write_failures = 0

            logger.debug(f"Cache statistics reset: {old_hits} hits, {old_misses} misses cleared")

    def get_detailed_stats(
        self,
        total_days: int,
        complete_days: int,
        size_bytes: int,
        oldest_day: str | None,
        newest_day: str | None,
    ) -> dict[str, Any]:
        """Get comprehensive cache statistics including snapshot counts."""
        with self._stats_lock:
            return {
                "total_days": total_days,
                "complete_days": complete_days,
                "incomplete_days": total_days - complete_days,
                "oldest_day": oldest_day,
                "newest_day": newest_day,
                "size_bytes": size_bytes,
                "size_kb": round(size_bytes / 1024, 2),
                "hits": self._cache_hits,
                "misses": self._cache_misses,
                "hit_rate_percent": round(self.get_hit_rate(), 1),
                "writes": self._writes,
                "write_failures": self._write_failures,
            }
