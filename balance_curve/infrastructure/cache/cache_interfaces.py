"""
Cache events and the Observer Pattern used by the snapshot and price caches.
"""

import weakref
from enum import Enum
from threading import RLock
from typing import Any, Protocol

import pandas as pd
from loguru import logger


class CacheEventType(Enum):
    """Types of cache events for observer notifications."""

    CACHE_HIT = "cache_hit"
    CACHE_MISS = "cache_miss"
    SNAPSHOT_SAVED = "snapshot_saved"
    SNAPSHOTS_INVALIDATED = "snapshots_invalidated"
    DAY_REJECTED = "day_rejected"
    SCHEMA_RESET = "schema_reset"
    CACHE_CLEARED = "cache_cleared"
    PRICES_STORED = "prices_stored"
    STORAGE_PRESSURE = "storage_pressure"


class CacheEvent:
    """Represents a cache event with associated metadata."""

    def __init__(
        self,
        event_type: CacheEventType,
        cache_key: str,
        metadata: dict[str, Any] | None = None,
    ):
        self.event_type = event_type
        self.cache_key = cache_key
        self.metadata = metadata or {}
        self.timestamp = pd.Timestamp.now()

    def __repr__(self) -> str:
        return f"CacheEvent(type={self.event_type.value}, key={self.cache_key})"


class CacheObserver(Protocol):
    """Protocol for cache event observers."""

    def notify(self, event: CacheEvent) -> None: ...


class CacheSubject:
    """Subject class implementing the Observer Pattern for cache events."""

    def __init__(self) -> None:
        """Initialize cache subject with observer management using weak references."""
        self._observers: weakref.WeakSet[CacheObserver] = weakref.WeakSet()
        self._strong_observers: list[CacheObserver] = []
        self._observers_lock = RLock()

    def add_observer(self, observer: CacheObserver, keep_alive: bool = False) -> None:
        """Add an observer to the notification list.

        Observers are held weakly unless ``keep_alive`` is set.
        """
        with self._observers_lock:
            self._observers.add(observer)
            if keep_alive:
                self._strong_observers.append(observer)
            logger.debug(f"Added cache observer: {type(observer).__name__}")

    def remove_observer(self, observer: CacheObserver) -> None:
        with self._observers_lock:
            self._observers.discard(observer)
            if observer in self._strong_observers:
                self._strong_observers.remove(observer)
            logger.debug(f"Removed cache observer: {type(observer).__name__}")

    def notify_observers(self, event: CacheEvent) -> None:
        """Notify all observers of a cache event."""
        with self._observers_lock:
            observers_copy = list(self._observers)
        for observer in observers_copy:
            try:
                observer.notify(event)
            except Exception as e:
                logger.error(f"Observer notification failed: {e}")


class CacheMetricsObserver:
    """Observer that counts cache events."""

    def __init__(self) -> None:
        self.stats = {event_type.value: 0 for event_type in CacheEventType}
        self._lock = RLock()

    def notify(self, event: CacheEvent) -> None:
        with self._lock:
            self.stats[event.event_type.value] += 1

    def get_metrics(self) -> dict[str, int]:
        """Get current cache metrics."""
        with self._lock:
            hits = self.stats[CacheEventType.CACHE_HIT.value]
            total_requests = hits + self.stats[CacheEventType.CACHE_MISS.value]
            hit_rate = (hits / total_requests) * 100 if total_requests else 0.0
            return {
                **self.stats,
                "hit_rate_percent": int(round(hit_rate, 2)),
                "total_requests": total_requests,
            }

    def reset_metrics(self) -> None:
        with self._lock:
            for key in self.stats:
                self.stats[key] = 0


class CacheLoggingObserver:
    """Observer that logs cache events.

    Degraded-data events (rejected days, schema resets, storage pressure)
    are always logged as warnings; the rest at ``log_level``.
    """

    WARNING_EVENTS = (
        CacheEventType.DAY_REJECTED,
        CacheEventType.SCHEMA_RESET,
        CacheEventType.STORAGE_PRESSURE,
    )

    def __init__(self, log_level: str = "DEBUG"):
        self.log_level = log_level.upper()

    def notify(self, event: CacheEvent) -> None:
        message = f"Cache event: {event.event_type.value} for key {event.cache_key}"
        if event.metadata:
            message += f" | Metadata: {event.metadata}"

        if event.event_type in self.WARNING_EVENTS:
            logger.warning(message)
        elif self.log_level == "DEBUG":
            logger.debug(message)
        elif self.log_level == "INFO" and event.event_type not in (
            CacheEventType.CACHE_HIT,
            CacheEventType.CACHE_MISS,
        ):
            logger.info(message)


def create_standard_cache_observers() -> list[CacheObserver]:
    """Create standard set of cache observers for typical use cases."""
    return [CacheMetricsObserver(), CacheLoggingObserver(log_level="DEBUG")]
