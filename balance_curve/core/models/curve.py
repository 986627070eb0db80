"""
Equity curve and balance breakdown models.
"""

from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import date
from typing import Any

import pandas as pd

from balance_curve.core.types.financial import ZERO


@dataclass(frozen=True)
class BalanceBreakdown:
    """Balance of the account at a reference point.

    ``missing_tickers`` lists open positions that had no price and were
    valued at zero unrealized P&L.
    """

    realized_balance: float
    unrealized_pnl: float
    realized_pnl: float
    cash_flow: float
    positions: tuple[str, ...] = ()
    missing_tickers: tuple[str, ...] = ()

    @property
    def balance(self) -> float:
        return self.realized_balance + self.unrealized_pnl


@dataclass(frozen=True)
class CurvePoint:
    """One business day of the equity curve."""

    date: date
    realized_balance: float
    unrealized_pnl: float
    day_pnl: float = ZERO
    cash_flow: float = ZERO
    synthetic: bool = False
    live: bool = False

    @property
    def balance(self) -> float:
        return self.realized_balance + self.unrealized_pnl

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "balance": self.balance,
            "realizedBalance": self.realized_balance,
            "unrealizedPnL": self.unrealized_pnl,
            "dayPnL": self.day_pnl,
            "cashFlow": self.cash_flow,
            "synthetic": self.synthetic,
            "live": self.live,
        }


@dataclass(frozen=True)
class EquityCurve:
    """Ordered daily balance series."""

    points: tuple[CurvePoint, ...] = field(default_factory=tuple)

    def __post_init__(self) -> None:
        object.__setattr__(self, "points", tuple(sorted(self.points, key=lambda p: p.date)))

    def __len__(self) -> int:
        return len(self.points)

    def __iter__(self) -> Iterator[CurvePoint]:
        return iter(self.points)

    @property
    def is_empty(self) -> bool:
        return not self.points

    @property
    def start(self) -> date | None:
        return self.points[0].date if self.points else None

    @property
    def end(self) -> date | None:
        return self.points[-1].date if self.points else None

    def point_on(self, day: date) -> CurvePoint | None:
        for point in self.points:
            if point.date == day:
                return point
        return None

    def balance_on(self, day: date) -> float | None:
        point = self.point_on(day)
        return point.balance if point else None

    def to_dicts(self) -> list[dict[str, Any]]:
        return [p.to_dict() for p in self.points]

    def to_frame(self) -> pd.DataFrame:
        """Curve as a DataFrame indexed by date."""
        columns = ["balance", "realized_balance", "unrealized_pnl", "day_pnl", "cash_flow"]
        if not self.points:
            return pd.DataFrame(columns=columns, index=pd.DatetimeIndex([], name="date"))
        df = pd.DataFrame(
            [
                {
                    "date": pd.Timestamp(p.date),
                    "balance": p.balance,
                    "realized_balance": p.realized_balance,
                    "unrealized_pnl": p.unrealized_pnl,
                    "day_pnl": p.day_pnl,
                    "cash_flow": p.cash_flow,
                }
                for p in self.points
            ]
        )
        return df.set_index("date")
