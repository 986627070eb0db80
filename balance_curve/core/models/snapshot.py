"""
End-of-day snapshot models.

An ``EODSnapshot`` is the cached balance and price state for one trading
day. ``SnapshotCache`` is the persisted container keyed by trading day.
Both serialize to the camelCase JSON shape stored in the key-value store.
"""

from dataclasses import dataclass, field, replace
from datetime import UTC, date, datetime
from typing import Any

from balance_curve.core.enums import SnapshotSource
from balance_curve.core.exceptions.equity import DataError, ValidationError
from balance_curve.core.trading_calendar import format_day
from balance_curve.core.utils.validation import parse_iso_date, parse_timestamp


@dataclass(frozen=True)
class EODSnapshot:
    """Balance state at the close of one trading day.

    ``balance`` is derived from ``realized_balance + unrealized_pnl`` so the
    two can never disagree. ``complete`` is derived from the price coverage
    of ``positions_owned``.
    """

    realized_balance: float
    unrealized_pnl: float
    cash_flow: float
    stock_prices: dict[str, float] = field(default_factory=dict)
    positions_owned: tuple[str, ...] = ()
    source: SnapshotSource = SnapshotSource.HISTORICAL_PROVIDER
    missing_tickers: tuple[str, ...] = ()
    retry_count: int = 0
    computed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def __post_init__(self) -> None:
        object.__setattr__(self, "source", SnapshotSource(self.source))
        object.__setattr__(self, "positions_owned", tuple(sorted(set(self.positions_owned))))
        object.__setattr__(self, "missing_tickers", tuple(sorted(set(self.missing_tickers))))
        if self.retry_count < 0:
            raise ValidationError(f"retry_count must be non-negative, got {self.retry_count}")

    @property
    def balance(self) -> float:
        return self.realized_balance + self.unrealized_pnl

    @property
    def complete(self) -> bool:
        """Check if every owned position was priced."""
        if self.missing_tickers:
            return False
        return all(ticker in self.stock_prices for ticker in self.positions_owned)

    def with_retry_count(self, retry_count: int) -> "EODSnapshot":
        return replace(self, retry_count=retry_count)

    def to_dict(self) -> dict[str, Any]:
        return {
            "balance": self.balance,
            "realizedBalance": self.realized_balance,
            "unrealizedPnL": self.unrealized_pnl,
            "cashFlow": self.cash_flow,
            "stockPrices": dict(self.stock_prices),
            "positionsOwned": list(self.positions_owned),
            "source": self.source.value,
            "complete": self.complete,
            "missingTickers": list(self.missing_tickers),
            "retryCount": self.retry_count,
            "computedAt": self.computed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "EODSnapshot":
        """Deserialize a stored snapshot.

        Older entries without ``realizedBalance`` are rebuilt from
        ``balance - unrealizedPnL``.

        Raises:
            DataError: If a field cannot be converted
        """
        try:
            unrealized = float(data["unrealizedPnL"])
            realized = data.get("realizedBalance")
            realized = float(realized) if realized is not None else float(data["balance"]) - unrealized
            computed_raw = data.get("computedAt")
            return cls(
                realized_balance=realized,
                unrealized_pnl=unrealized,
                cash_flow=float(data.get("cashFlow") or 0.0),
                stock_prices={str(k): float(v) for k, v in data["stockPrices"].items()},
                positions_owned=tuple(str(t) for t in data["positionsOwned"]),
                source=SnapshotSource(data.get("source", SnapshotSource.HISTORICAL_PROVIDER)),
                missing_tickers=tuple(str(t) for t in data.get("missingTickers") or ()),
                retry_count=int(data.get("retryCount") or 0),
                computed_at=(
                    parse_timestamp(computed_raw, "computedAt")
                    if computed_raw is not None
                    else datetime.now(UTC)
                ),
            )
        except (KeyError, TypeError, ValueError, AttributeError, ValidationError) as e:
            raise DataError(f"Malformed snapshot: {e}") from e


@dataclass
class SnapshotCache:
    """Persisted container of snapshots keyed by trading day."""

    schema_version: int
    last_complete_trading_day: date | None = None
    snapshots: dict[date, EODSnapshot] = field(default_factory=dict)

    @classmethod
    def empty(cls, schema_version: int) -> "SnapshotCache":
        return cls(schema_version=schema_version)

    def copy(self) -> "SnapshotCache":
        """Shallow copy; snapshots themselves are immutable."""
        return SnapshotCache(
            schema_version=self.schema_version,
            last_complete_trading_day=self.last_complete_trading_day,
            snapshots=dict(self.snapshots),
        )

    def refresh_last_complete(self) -> None:
        """Recompute the most recent complete trading day."""
        complete_days = [day for day, snap in self.snapshots.items() if snap.complete]
        self.last_complete_trading_day = max(complete_days) if complete_days else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "schemaVersion": self.schema_version,
            "lastCompleteTradingDay": (
                format_day(self.last_complete_trading_day)
                if self.last_complete_trading_day
                else None
            ),
            "snapshots": {
                format_day(day): snap.to_dict() for day, snap in sorted(self.snapshots.items())
            },
        }

    @staticmethod
    def parse_day_key(key: str) -> date:
        """Parse a snapshot key, raising DataError for anything but ``YYYY-MM-DD``."""
        try:
            if len(key) != 10:
                raise ValidationError(f"bad length {len(key)}")
            return parse_iso_date(key, "snapshot day")
        except (ValidationError, TypeError) as e:
            raise DataError(f"Invalid snapshot key {key!r}") from e
