"""
Validation of persisted snapshot data.

Stored caches are untrusted input: every day is checked field by field
before it is turned into an ``EODSnapshot``.
"""

from datetime import date
from typing import Any

from balance_curve.core.exceptions.equity import DataError
from balance_curve.core.models.snapshot import EODSnapshot, SnapshotCache
from balance_curve.core.trading_calendar import is_business_day
from balance_curve.core.types.financial import is_finite_number, safe_float_comparison


class SnapshotValidator:
    """Handles validation of the stored snapshot cache."""

    @staticmethod
    def validate_envelope(raw: Any, expected_version: int) -> dict[str, Any]:
        """Validate the top-level cache structure.

        Raises:
            DataError: If the structure is not a cache of the expected version
        """
        if not isinstance(raw, dict):
            raise DataError(f"Cache must be a mapping, got {type(raw).__name__}")
        version = raw.get("schemaVersion")
        if version != expected_version:
            raise DataError(f"Schema version {version!r} does not match {expected_version}")
        snapshots = raw.get("snapshots", {})
        if not isinstance(snapshots, dict):
            raise DataError("snapshots must be a mapping")
        return snapshots

    @staticmethod
    def validate_day_key(key: Any) -> date:
        if not isinstance(key, str):
            raise DataError(f"Snapshot key must be a string, got {type(key).__name__}")
        day = SnapshotCache.parse_day_key(key)
        if not is_business_day(day):
            raise DataError(f"Snapshot key {key} is not a business day")
        return day

    @staticmethod
    def validate_snapshot(raw: Any) -> EODSnapshot:
        """Validate one stored day and deserialize it.

        Raises:
            DataError: With the reason the day was rejected
        """
        if not isinstance(raw, dict):
            raise DataError(f"snapshot is not an object ({type(raw).__name__})")
        for field_name in ("balance", "unrealizedPnL"):
            if not is_finite_number(raw.get(field_name)):
                raise DataError(f"{field_name} is not a finite number")
        for field_name in ("realizedBalance", "cashFlow"):
            value = raw.get(field_name)
            if value is not None and not is_finite_number(value):
                raise DataError(f"{field_name} is not a finite number")
        realized = raw.get("realizedBalance")
        if realized is not None and not safe_float_comparison(
            raw["balance"], realized + raw["unrealizedPnL"]
        ):
            raise DataError("balance does not equal realizedBalance + unrealizedPnL")

        prices = raw.get("stockPrices")
        if not isinstance(prices, dict):
            raise DataError("stockPrices is not a map")
        if not all(is_finite_number(p) for p in prices.values()):
            raise DataError("stockPrices contains a non-numeric price")

        positions = raw.get("positionsOwned")
        if not isinstance(positions, list):
            raise DataError("positionsOwned is not a list")

        missing = raw.get("missingTickers", [])
        if not isinstance(missing, list):
            raise DataError("missingTickers is not a list")

        unpriced = [t for t in positions if t not in prices]
        complete = not missing and not unpriced
        stored_complete = raw.get("complete")
        if stored_complete is None:
            if unpriced and not missing:
                raise DataError(f"positions without prices: {', '.join(map(str, unpriced))}")
        elif stored_complete is not complete:
            raise DataError(
                f"complete={stored_complete!r} disagrees with missingTickers and stockPrices"
            )

        return EODSnapshot.from_dict(raw)
