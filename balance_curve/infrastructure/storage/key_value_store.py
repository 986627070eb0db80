"""
Key-value storage backends.

Values are JSON-serializable structures. Both backends measure a write by
its serialized size so a byte quota behaves the same way in tests and on
disk.
"""

import asyncio
import copy
import json
import re
from pathlib import Path
from threading import RLock
from typing import Any

from loguru import logger

from balance_curve.core.exceptions.equity import StorageError, StorageQuotaExceededError

_SAFE_KEY = re.compile(r"^[A-Za-z0-9_.-]+$")


def serialized_size(value: Any) -> int:
    """Size in bytes of ``value`` serialized as compact JSON."""
    return len(json.dumps(value, separators=(",", ":")).encode("utf-8"))


class InMemoryKeyValueStore:
    """Dict-backed store with an optional total byte quota."""

    def __init__(self, quota_bytes: int | None = None):
        if quota_bytes is not None and quota_bytes <= 0:
            raise ValueError("quota_bytes must be positive")
        self.quota_bytes = quota_bytes
        self._data: dict[str, Any] = {}
        self._sizes: dict[str, int] = {}
        self._lock = RLock()
        self.set_calls = 0
        self.fail_next_sets = 0

    @property
    def used_bytes(self) -> int:
        with self._lock:
            return sum(self._sizes.values())

    async def get(self, key: str) -> Any | None:
        with self._lock:
            value = self._data.get(key)
            return copy.deepcopy(value) if value is not None else None

    async def set(self, key: str, value: Any) -> None:
        with self._lock:
            self.set_calls += 1
            if self.fail_next_sets > 0:
                self.fail_next_sets -= 1
                raise StorageError(key, "simulated write failure")
            try:
                size = serialized_size(value)
            except (TypeError, ValueError) as e:
                raise StorageError(key, f"value is not JSON serializable: {e}") from e
            if self.quota_bytes is not None:
                available = self.quota_bytes - (self.used_bytes - self._sizes.get(key, 0))
                if size > available:
                    raise StorageQuotaExceededError(key, size, max(available, 0))
            self._data[key] = copy.deepcopy(value)
            self._sizes[key] = size

    async def remove(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)
            self._sizes.pop(key, None)


class JsonFileKeyValueStore:
    """One JSON file per key inside a directory.

    File IO runs in the default executor.
    """

    def __init__(self, directory: Path | str, quota_bytes: int | None = None):
        self.directory = Path(directory)
        self.quota_bytes = quota_bytes

    def _path_for(self, key: str) -> Path:
        if not _SAFE_KEY.match(key):
            raise StorageError(key, "key contains unsupported characters")
        return self.directory / f"{key}.json"

    def _used_bytes_excluding(self, path: Path) -> int:
        if not self.directory.exists():
            return 0
        return sum(p.stat().st_size for p in self.directory.glob("*.json") if p != path)

    async def get(self, key: str) -> Any | None:
        path = self._path_for(key)
        loop = asyncio.get_running_loop()

        def _read() -> Any | None:
            if not path.exists():
                return None
            with path.open("r", encoding="utf-8") as f:
                return json.load(f)

        try:
            return await loop.run_in_executor(None, _read)
        except json.JSONDecodeError as e:
            logger.warning(f"Discarding unreadable store entry '{key}': {e}")
            return None
        except OSError as e:
            raise StorageError(key, str(e)) from e

    async def set(self, key: str, value: Any) -> None:
        path = self._path_for(key)
        loop = asyncio.get_running_loop()
        try:
            payload = json.dumps(value, separators=(",", ":"))
        except (TypeError, ValueError) as e:
            raise StorageError(key, f"value is not JSON serializable: {e}") from e
        size = len(payload.encode("utf-8"))

        def _write() -> None:
            if self.quota_bytes is not None:
                available = self.quota_bytes - self._used_bytes_excluding(path)
                if size > available:
                    raise StorageQuotaExceededError(key, size, max(available, 0))
            self.directory.mkdir(parents=True, exist_ok=True)
            tmp_path = path.with_suffix(".json.tmp")
            tmp_path.write_text(payload, encoding="utf-8")
            tmp_path.replace(path)

        try:
            await loop.run_in_executor(None, _write)
        except OSError as e:
            raise StorageError(key, str(e)) from e

    async def remove(self, key: str) -> None:
        path = self._path_for(key)
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, lambda: path.unlink(missing_ok=True))
        except OSError as e:
            raise StorageError(key, str(e)) from e
