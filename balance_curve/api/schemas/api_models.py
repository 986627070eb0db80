"""
Pydantic schemas for API request/response models.
"""

from datetime import date
from typing import Any

from pydantic import BaseModel, Field, field_validator

from balance_curve.core.enums import AssetType, TradeStatus
from balance_curve.core.models.curve import CurvePoint, EquityCurve


class TrimRequest(BaseModel):
    """A partial exit inside a trade payload."""

    date: date
    shares_sold: float = Field(..., gt=0, description="Shares sold by this trim")
    realized_pnl: float | None = Field(default=None, description="P&L locked in by this trim")


class TradeRequest(BaseModel):
    """Trade that was added, edited or deleted in the journal."""

    ticker: str = Field(..., min_length=1, max_length=16)
    entry_date: date
    exit_date: date | None = None
    status: TradeStatus = Field(default=TradeStatus.OPEN)
    shares: float = Field(..., gt=0)
    entry: float = Field(..., gt=0, description="Entry price")
    stop: float | None = Field(default=None, ge=0)
    trim_history: list[TrimRequest] = Field(default_factory=list)
    total_realized_pnl: float | None = None
    pnl: float | None = None
    asset_type: AssetType = Field(default=AssetType.STOCK)

    @field_validator("exit_date")
    @classmethod
    def validate_exit_date(cls, v: date | None, info) -> date | None:
        """Validate that exit_date is not before entry_date."""
        if v is not None and "entry_date" in info.data and v < info.data["entry_date"]:
            raise ValueError("exit_date must not be before entry_date")
        return v


class InvalidateDateRequest(BaseModel):
    """Date of a recorded deposit or withdrawal."""

    date: date


class CurvePointResponse(BaseModel):
    date: date
    balance: float
    realized_balance: float
    unrealized_pnl: float
    day_pnl: float
    cash_flow: float
    synthetic: bool = False
    live: bool = False

    @classmethod
    def from_point(cls, point: CurvePoint) -> "CurvePointResponse":
        return cls(
            date=point.date,
            balance=point.balance,
            realized_balance=point.realized_balance,
            unrealized_pnl=point.unrealized_pnl,
            day_pnl=point.day_pnl,
            cash_flow=point.cash_flow,
            synthetic=point.synthetic,
            live=point.live,
        )


class CurveResponse(BaseModel):
    """Response model for an equity curve."""

    start: date | None = None
    end: date | None = None
    points: list[CurvePointResponse]

    @classmethod
    def from_curve(cls, curve: EquityCurve) -> "CurveResponse":
        return cls(
            start=curve.start,
            end=curve.end,
            points=[CurvePointResponse.from_point(p) for p in curve],
        )


class BalanceResponse(BaseModel):
    date: date
    balance: float | None = Field(default=None, description="None when the day is not on the curve")


class CacheStatsResponse(BaseModel):
    snapshots: dict[str, Any]
    prices: dict[str, Any]
    building: bool


class ErrorResponse(BaseModel):
    """Response model for errors."""

    error: str
    message: str
    details: dict | None = None
