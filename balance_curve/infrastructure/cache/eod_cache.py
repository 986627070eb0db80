"""
End-of-day snapshot cache.

Keeps one ``EODSnapshot`` per trading day in a key-value store, with
schema versioning, validation on load, retry tracking and a
shrink-and-retry strategy when the store runs out of space.
"""

from collections.abc import Mapping
from datetime import date, timedelta
from typing import Any

from loguru import logger

from balance_curve.core.config import CurveSettings
from balance_curve.core.exceptions.equity import (
    DataError,
    StorageError,
    StorageQuotaExceededError,
    ValidationError,
)
from balance_curve.core.models.snapshot import EODSnapshot, SnapshotCache
from balance_curve.core.protocols import KeyValueStore
from balance_curve.core.trading_calendar import business_days_between, is_business_day, iter_days
from balance_curve.core.utils.validation import parse_iso_date
from balance_curve.infrastructure.storage.key_value_store import serialized_size

from .cache_interfaces import (
    CacheEvent,
    CacheEventType,
    CacheSubject,
    create_standard_cache_observers,
)
from .cache_statistics import CacheStatistics
from .snapshot_validator import SnapshotValidator


class EODSnapshotCache(CacheSubject):
    """Persistent per-trading-day snapshot store.

    The in-memory ``SnapshotCache`` is the working copy; every mutation is
    written through to the key-value store. A write that cannot be
    persisted leaves the working copy as it was before the call.
    """

    def __init__(
        self,
        store: KeyValueStore,
        settings: CurveSettings | None = None,
        enable_observers: bool = True,
    ):
        super().__init__()
        self.store = store
        self.settings = settings or CurveSettings()
        self.key = self.settings.eod_cache_key
        self.schema_version = self.settings.eod_schema_version
        self._cache: SnapshotCache | None = None
        self._statistics = CacheStatistics()

        if enable_observers:
            for observer in create_standard_cache_observers():
                self.add_observer(observer, keep_alive=True)

    def _emit(self, event_type: CacheEventType, **metadata: Any) -> None:
        self.notify_observers(CacheEvent(event_type, self.key, metadata))

    @property
    def cache(self) -> SnapshotCache:
        if self._cache is None:
            raise DataError("Snapshot cache used before load()")
        return self._cache

    @property
    def last_complete_trading_day(self) -> date | None:
        return self.cache.last_complete_trading_day

    # Loading

    async def load(self, force: bool = False) -> SnapshotCache:
        """Load and validate the stored cache.

        A missing cache or a schema mismatch yields an empty cache of the
        current version. Days that fail validation are dropped.
        """
        if self._cache is not None and not force:
            return self._cache

        raw = await self.store.get(self.key)
        if raw is None:
            logger.debug(f"No stored snapshot cache under '{self.key}', starting empty")
            self._cache = SnapshotCache.empty(self.schema_version)
            return self._cache

        try:
            stored_days = SnapshotValidator.validate_envelope(raw, self.schema_version)
        except DataError as e:
            logger.warning(f"Resetting snapshot cache: {e}")
            self._emit(CacheEventType.SCHEMA_RESET, reason=str(e))
            self._cache = SnapshotCache.empty(self.schema_version)
            await self._persist_best_effort()
            return self._cache

        cache = SnapshotCache.empty(self.schema_version)
        rejected = 0
        for key, raw_snapshot in stored_days.items():
            try:
                day = SnapshotValidator.validate_day_key(key)
                cache.snapshots[day] = SnapshotValidator.validate_snapshot(raw_snapshot)
            except DataError as e:
                rejected += 1
                logger.warning(f"Dropping cached day {key}: {e}")
                self._emit(CacheEventType.DAY_REJECTED, day=str(key), reason=str(e))

        cache.refresh_last_complete()
        self._cache = cache
        logger.info(
            f"Loaded snapshot cache: {len(cache.snapshots)} days"
            + (f", {rejected} rejected" if rejected else "")
        )
        return cache

    # Reads

    def get(self, day: date | str) -> EODSnapshot | None:
        day = parse_iso_date(day)
        snapshot = self.cache.snapshots.get(day)
        if snapshot is None:
            self._statistics.record_miss()
            self._emit(CacheEventType.CACHE_MISS, day=day.isoformat())
        else:
            self._statistics.record_hit()
            self._emit(CacheEventType.CACHE_HIT, day=day.isoformat())
        return snapshot

    def has(self, day: date | str) -> bool:
        """Check if a complete snapshot is stored for ``day``."""
        snapshot = self.cache.snapshots.get(parse_iso_date(day))
        return snapshot is not None and snapshot.complete

    def contains(self, day: date | str) -> bool:
        """Check if any snapshot, complete or not, is stored for ``day``."""
        return parse_iso_date(day) in self.cache.snapshots

    def get_all_days(self) -> list[date]:
        return iter_days(self.cache.snapshots)

    def find_missing_days(self, start: date | str, end: date | str) -> list[date]:
        """Business days in ``[start, end]`` without a complete snapshot."""
        return [day for day in business_days_between(start, end) if not self.has(day)]

    def get_incomplete_days(self, below_retry_count: int | None = None) -> list[date]:
        """Stored incomplete days, optionally only those still below a retry count."""
        return sorted(
            day
            for day, snap in self.cache.snapshots.items()
            if not snap.complete
            and (below_retry_count is None or snap.retry_count < below_retry_count)
        )

    # Writes

    def _merge(self, cache: SnapshotCache, day: date, snapshot: EODSnapshot) -> EODSnapshot:
        """Apply retry bookkeeping against the prior entry for ``day``.

        An incomplete save over a stored incomplete day counts as one more
        retry. Any other incomplete save starts at the given count, and a
        complete save keeps the prior count.
        """
        if not is_business_day(day):
            raise ValidationError(f"Snapshots are keyed by business day, got {day}")
        prior = cache.snapshots.get(day)
        prior_count = prior.retry_count if prior else 0
        if snapshot.complete:
            retry_count = max(prior_count, snapshot.retry_count)
        elif prior is not None and not prior.complete:
            retry_count = prior_count + 1
        else:
            retry_count = snapshot.retry_count
        merged = snapshot.with_retry_count(retry_count)
        cache.snapshots[day] = merged
        return merged

    async def save(self, day: date | str, snapshot: EODSnapshot) -> EODSnapshot:
        """Store the snapshot for one day and persist.

        Returns:
            The stored snapshot with its merged retry count
        """
        saved = await self.save_many({parse_iso_date(day): snapshot})
        return saved[parse_iso_date(day)]

    async def save_many(self, snapshots: Mapping[date, EODSnapshot]) -> dict[date, EODSnapshot]:
        """Store several days in a single persisted write.

        Either every day is stored or, when the write fails, none is.
        """
        if not snapshots:
            return {}
        working = self.cache.copy()
        merged = {day: self._merge(working, day, snap) for day, snap in sorted(snapshots.items())}
        working.refresh_last_complete()

        await self._commit(working)
        for day, snap in merged.items():
            logger.debug(
                f"Saved snapshot {day}: balance={snap.balance:.2f} "
                f"complete={snap.complete} retries={snap.retry_count}"
            )
            self._emit(
                CacheEventType.SNAPSHOT_SAVED,
                day=day.isoformat(),
                complete=snap.complete,
                retry_count=snap.retry_count,
            )
        return merged

    async def delete_day(self, day: date | str) -> bool:
        day = parse_iso_date(day)
        if day not in self.cache.snapshots:
            return False
        working = self.cache.copy()
        del working.snapshots[day]
        working.refresh_last_complete()
        await self._commit(working)
        return True

    async def invalidate_from(self, day: date | str) -> int:
        """Delete the snapshot of ``day`` and every later day.

        Returns:
            Number of deleted snapshots
        """
        day = parse_iso_date(day)
        doomed = [d for d in self.cache.snapshots if d >= day]
        if not doomed:
            logger.debug(f"Nothing cached on or after {day} to invalidate")
            return 0
        working = self.cache.copy()
        for d in doomed:
            del working.snapshots[d]
        working.refresh_last_complete()
        await self._commit(working)
        logger.info(f"Invalidated {len(doomed)} cached days from {day}")
        self._emit(CacheEventType.SNAPSHOTS_INVALIDATED, from_day=day.isoformat(), count=len(doomed))
        return len(doomed)

    async def clear_all(self) -> None:
        """Drop every snapshot and persist the empty cache."""
        await self._commit(SnapshotCache.empty(self.schema_version))
        logger.info("Snapshot cache cleared")
        self._emit(CacheEventType.CACHE_CLEARED)

    async def cleanup_old_data(self, days_to_keep: int | None = None, today: date | None = None) -> int:
        """Remove snapshots older than ``days_to_keep`` calendar days.

        Returns:
            Number of removed snapshots
        """
        days_to_keep = days_to_keep or self.settings.snapshot_retention_days
        cutoff = (today or date.today()) - timedelta(days=days_to_keep)
        doomed = [d for d in self.cache.snapshots if d < cutoff]
        if not doomed:
            return 0
        working = self.cache.copy()
        for d in doomed:
            del working.snapshots[d]
        working.refresh_last_complete()
        await self._commit(working)
        logger.info(f"Removed {len(doomed)} snapshots older than {cutoff}")
        return len(doomed)

    # Import / export

    def export_data(self) -> dict[str, Any]:
        return self.cache.to_dict()

    async def import_data(self, payload: Any) -> int:
        """Replace the cache with an exported payload.

        Invalid days are skipped.

        Raises:
            DataError: If the payload is not a cache of the current schema version
        """
        stored_days = SnapshotValidator.validate_envelope(payload, self.schema_version)
        imported = SnapshotCache.empty(self.schema_version)
        for key, raw_snapshot in stored_days.items():
            try:
                day = SnapshotValidator.validate_day_key(key)
                imported.snapshots[day] = SnapshotValidator.validate_snapshot(raw_snapshot)
            except DataError as e:
                logger.warning(f"Skipping imported day {key}: {e}")
        imported.refresh_last_complete()
        await self._commit(imported)
        logger.info(f"Imported {len(imported.snapshots)} snapshots")
        return len(imported.snapshots)

    def get_stats(self) -> dict[str, Any]:
        cache = self.cache
        days = sorted(cache.snapshots)
        stats = self._statistics.get_detailed_stats(
            total_days=len(days),
            complete_days=sum(1 for s in cache.snapshots.values() if s.complete),
            size_bytes=serialized_size(cache.to_dict()),
            oldest_day=days[0].isoformat() if days else None,
            newest_day=days[-1].isoformat() if days else None,
        )
        stats["schema_version"] = cache.schema_version
        stats["last_complete_trading_day"] = (
            cache.last_complete_trading_day.isoformat() if cache.last_complete_trading_day else None
        )
        return stats

    # Persistence

    async def _commit(self, working: SnapshotCache) -> None:
        """Persist ``working`` and adopt it as the current cache.

        On quota pressure the payload is shrunk and retried once; if that
        still does not fit the cache is cleared and the empty form stored,
        then the quota error is re-raised. Other storage errors leave the
        current cache untouched.
        """
        try:
            await self.store.set(self.key, working.to_dict())
        except StorageQuotaExceededError as e:
            self._statistics.record_write(succeeded=False)
            logger.warning(f"Snapshot cache hit storage quota: {e}")
            self._emit(
                CacheEventType.STORAGE_PRESSURE,
                required_bytes=e.required_bytes,
                available_bytes=e.available_bytes,
            )
            shrunk = self._shrink(working)
            try:
                await self.store.set(self.key, shrunk.to_dict())
            except StorageQuotaExceededError:
                logger.error("Snapshot cache still over quota after shrinking, clearing it")
                self._cache = SnapshotCache.empty(self.schema_version)
                await self._persist_best_effort()
                self._emit(CacheEventType.CACHE_CLEARED, reason="quota")
                raise
            self._cache = shrunk
            self._statistics.record_write()
            return
        except StorageError:
            self._statistics.record_write(succeeded=False)
            logger.error(f"Failed to persist snapshot cache '{self.key}'")
            raise
        self._cache = working
        self._statistics.record_write()

    def _shrink(self, working: SnapshotCache) -> SnapshotCache:
        """Drop the lowest-value snapshots.

        Snapshots older than the retention window (relative to the newest
        stored day) go first, then the oldest half of incomplete days.
        """
        shrunk = working.copy()
        if not shrunk.snapshots:
            return shrunk
        newest = max(shrunk.snapshots)
        cutoff = newest - timedelta(days=self.settings.snapshot_retention_days)
        for day in [d for d in shrunk.snapshots if d < cutoff]:
            del shrunk.snapshots[day]

        incomplete = sorted(d for d, s in shrunk.snapshots.items() if not s.complete)
        for day in incomplete[: (len(incomplete) + 1) // 2]:
            del shrunk.snapshots[day]

        shrunk.refresh_last_complete()
        logger.info(
            f"Shrunk snapshot cache from {len(working.snapshots)} to {len(shrunk.snapshots)} days"
        )
        return shrunk

    async def _persist_best_effort(self) -> None:
        try:
            await self.store.set(self.key, self.cache.to_dict())
        except StorageError as e:
            logger.error(f"Could not persist snapshot cache '{self.key}': {e}")
