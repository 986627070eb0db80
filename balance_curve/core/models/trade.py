"""
Trade and trim domain models.

Trades are read-only journal records. Dates are trading days; any
timestamp suffix on incoming ISO strings is dropped.
"""

from dataclasses import dataclass, field
from datetime import date
from typing import Any

from balance_curve.core.enums import AssetType, TradeStatus
from balance_curve.core.exceptions.equity import ValidationError
from balance_curve.core.types.financial import ZERO, is_finite_number
from balance_curve.core.utils.validation import (
    parse_iso_date,
    validate_positive,
    validate_ticker,
)


def _first(data: dict[str, Any], *keys: str) -> Any:
    """Return the first non-None value among ``keys``."""
    for key in keys:
        if data.get(key) is not None:
            return data[key]
    return None


def _optional_amount(value: Any, param_name: str) -> float | None:
    if value is None:
        return None
    if isinstance(value, str):
        try:
            value = float(value)
        except ValueError as e:
            raise ValidationError(f"{param_name} must be numeric, got {value!r}") from e
    if not is_finite_number(value):
        raise ValidationError(f"{param_name} must be a finite number, got {value!r}")
    return float(value)


@dataclass(frozen=True)
class TrimEvent:
    """A partial exit from a position."""

    date: date
    shares_sold: float
    realized_pnl: float | None = None

    def __post_init__(self) -> None:
        validate_positive(self.shares_sold, "shares_sold")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "TrimEvent":
        if not isinstance(data, dict):
            raise ValidationError(f"Trim must be a mapping, got {type(data).__name__}")
        shares = _optional_amount(_first(data, "sharesSold", "shares_sold", "shares"), "shares_sold")
        if shares is None:
            raise ValidationError("Trim is missing sharesSold")
        return cls(
            date=parse_iso_date(data.get("date"), "trim date"),
            shares_sold=shares,
            realized_pnl=_optional_amount(
                _first(data, "realizedPnL", "realized_pnl", "pnl"), "trim pnl"
            ),
        )


@dataclass(frozen=True)
class Trade:
    """A journal trade as seen by the balance calculator.

    ``shares`` is the size at entry; trims reduce the held size from their
    own date onward. Realized P&L prefers ``total_realized_pnl`` and falls
    back to ``pnl``.
    """

    ticker: str
    entry_date: date
    entry: float
    shares: float
    status: TradeStatus = TradeStatus.OPEN
    exit_date: date | None = None
    stop: float | None = None
    trim_history: tuple[TrimEvent, ...] = field(default_factory=tuple)
    total_realized_pnl: float | None = None
    pnl: float | None = None
    asset_type: AssetType = AssetType.STOCK
    trade_id: str | None = None

    def __post_init__(self) -> None:
        """Normalize and validate trade data after initialization."""
        object.__setattr__(self, "ticker", validate_ticker(self.ticker))
        object.__setattr__(self, "status", TradeStatus(self.status))
        object.__setattr__(self, "asset_type", AssetType(self.asset_type))
        object.__setattr__(
            self, "trim_history", tuple(sorted(self.trim_history, key=lambda t: t.date))
        )

        validate_positive(self.entry, "entry")
        validate_positive(self.shares, "shares")
        if self.exit_date is not None and self.exit_date < self.entry_date:
            raise ValidationError(
                f"{self.ticker}: exit date {self.exit_date} precedes entry date {self.entry_date}"
            )
        for trim in self.trim_history:
            if trim.date < self.entry_date:
                raise ValidationError(
                    f"{self.ticker}: trim on {trim.date} precedes entry date {self.entry_date}"
                )
        if self.trimmed_shares > self.shares:
            raise ValidationError(
                f"{self.ticker}: trims sell {self.trimmed_shares} of {self.shares} shares"
            )

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Trade":
        """Build a trade from a journal record (camelCase or snake_case keys).

        Raises:
            ValidationError: If a required field is missing or malformed
        """
        if not isinstance(data, dict):
            raise ValidationError(f"Trade must be a mapping, got {type(data).__name__}")

        entry = _optional_amount(_first(data, "entry", "entryPrice", "entry_price"), "entry")
        shares = _optional_amount(data.get("shares"), "shares")
        if entry is None or shares is None:
            raise ValidationError(f"Trade {data.get('ticker')!r} is missing entry or shares")

        exit_raw = _first(data, "exitDate", "exit_date")
        try:
            status = TradeStatus(str(data.get("status", TradeStatus.OPEN)).lower())
            asset_type = AssetType(
                str(_first(data, "assetType", "asset_type") or AssetType.STOCK).lower()
            )
        except ValueError as e:
            raise ValidationError(str(e)) from e

        trims = _first(data, "trimHistory", "trim_history") or []
        if not isinstance(trims, list | tuple):
            raise ValidationError("trimHistory must be a list")

        trade_id = _first(data, "id", "tradeId", "trade_id")
        return cls(
            ticker=data.get("ticker"),
            entry_date=parse_iso_date(_first(data, "entryDate", "entry_date"), "entryDate"),
            entry=entry,
            shares=shares,
            status=status,
            exit_date=parse_iso_date(exit_raw, "exitDate") if exit_raw is not None else None,
            stop=_optional_amount(data.get("stop"), "stop"),
            trim_history=tuple(TrimEvent.from_dict(t) for t in trims),
            total_realized_pnl=_optional_amount(
                _first(data, "totalRealizedPnL", "total_realized_pnl"), "totalRealizedPnL"
            ),
            pnl=_optional_amount(data.get("pnl"), "pnl"),
            asset_type=asset_type,
            trade_id=str(trade_id) if trade_id is not None else None,
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the journal's camelCase record shape."""
        return {
            "id": self.trade_id,
            "ticker": self.ticker,
            "entryDate": self.entry_date.isoformat(),
            "exitDate": self.exit_date.isoformat() if self.exit_date else None,
            "status": self.status.value,
            "shares": self.shares,
            "entry": self.entry,
            "stop": self.stop,
            "trimHistory": [
                {
                    "date": t.date.isoformat(),
                    "sharesSold": t.shares_sold,
                    "realizedPnL": t.realized_pnl,
                }
                for t in self.trim_history
            ],
            "totalRealizedPnL": self.total_realized_pnl,
            "pnl": self.pnl,
            "assetType": self.asset_type.value,
        }

    @property
    def multiplier(self) -> int:
        return self.asset_type.multiplier

    @property
    def trimmed_shares(self) -> float:
        return sum(t.shares_sold for t in self.trim_history)

    @property
    def remaining_shares(self) -> float:
        """Shares still held today."""
        if self.status == TradeStatus.CLOSED:
            return ZERO
        return max(self.shares - self.trimmed_shares, ZERO)

    @property
    def closed_on(self) -> date | None:
        """Day the position was fully exited, if it was.

        A closed trade without an exit date is treated as closed on entry.
        """
        if self.status != TradeStatus.CLOSED:
            return None
        return self.exit_date or self.entry_date

    @property
    def realized_pnl(self) -> float:
        """Total realized P&L of the trade."""
        if not self.status.has_realized:
            return ZERO
        if self.total_realized_pnl is not None:
            return self.total_realized_pnl
        if self.pnl is not None:
            return self.pnl
        return ZERO

    def shares_on(self, day: date) -> float:
        """Shares held at the close of ``day``."""
        if day < self.entry_date:
            return ZERO
        closed_on = self.closed_on
        if closed_on is not None and closed_on <= day:
            return ZERO
        sold = sum(t.shares_sold for t in self.trim_history if t.date <= day)
        return max(self.shares - sold, ZERO)

    def is_open_on(self, day: date) -> bool:
        """Check if the position is held at the close of ``day``.

        A trade closing on ``day`` is not open at that day's close.
        """
        return self.shares_on(day) > ZERO

    def realized_pnl_as_of(self, day: date) -> float:
        """Realized P&L locked in by the close of ``day``.

        Closed trades count in full from their exit date. Before that,
        each trim contributes its own P&L when recorded, otherwise the
        total is prorated by the shares that trim sold.
        """
        if not self.status.has_realized or day < self.entry_date:
            return ZERO
        total = self.realized_pnl
        closed_on = self.closed_on
        if closed_on is not None and closed_on <= day:
            return total

        realized = ZERO
        for trim in self.trim_history:
            if trim.date > day:
                break
            if trim.realized_pnl is not None:
                realized += trim.realized_pnl
            else:
                realized += total * trim.shares_sold / self.shares
        return realized

    def affected_from(self) -> date:
        """Earliest day whose balance this trade changes."""
        candidates = [self.entry_date]
        if self.exit_date is not None:
            candidates.append(self.exit_date)
        candidates.extend(t.date for t in self.trim_history)
        return min(candidates)
