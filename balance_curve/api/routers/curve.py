"""
Equity curve API endpoints.
"""

from datetime import date
from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, Query
from loguru import logger

from balance_curve.api.dependencies import get_builder
from balance_curve.api.schemas.api_models import (
    BalanceResponse,
    CacheStatsResponse,
    CurveResponse,
    InvalidateDateRequest,
    TradeRequest,
)
from balance_curve.core.exceptions.equity import ValidationError
from balance_curve.core.models.trade import Trade
from balance_curve.services.equity_curve_builder import EquityCurveBuilder

router = APIRouter()

BuilderDep = Annotated[EquityCurveBuilder, Depends(get_builder)]


@router.get("", response_model=CurveResponse)
async def get_curve(
    builder: BuilderDep,
    start: date | None = Query(default=None, description="First day, defaults to the first trade"),
    end: date | None = Query(default=None, description="Last day, defaults to today"),
) -> CurveResponse:
    """Build the equity curve for a date range."""
    if start and end and start > end:
        raise HTTPException(status_code=400, detail="start must not be after end")
    curve = await builder.build_equity_curve(start, end)
    return CurveResponse.from_curve(curve)


@router.get("/balance/{day}", response_model=BalanceResponse)
async def get_balance(day: date, builder: BuilderDep) -> BalanceResponse:
    """Balance of a day in the last built curve."""
    return BalanceResponse(date=day, balance=builder.get_balance_on_date(day))


@router.post("/invalidate/trade", response_model=CurveResponse)
async def invalidate_trade(payload: TradeRequest, builder: BuilderDep) -> CurveResponse:
    """Recompute the curve after a trade was added, edited or deleted."""
    try:
        trade = Trade.from_dict(payload.model_dump())
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=str(e)) from e
    logger.info(f"Trade {trade.ticker} changed, recomputing from {trade.affected_from()}")
    curve = await builder.invalidate_for_trade(trade)
    return CurveResponse.from_curve(curve)


@router.post("/invalidate/date", response_model=CurveResponse)
async def invalidate_date(payload: InvalidateDateRequest, builder: BuilderDep) -> CurveResponse:
    """Recompute the curve after a cash flow was recorded."""
    curve = await builder.invalidate_from_date(payload.date)
    return CurveResponse.from_curve(curve)


@router.delete("/cache")
async def clear_cache(builder: BuilderDep) -> dict[str, str]:
    """Drop every cached snapshot and price."""
    await builder.clear_all()
    return {"status": "cleared"}


@router.get("/cache/stats", response_model=CacheStatsResponse)
async def get_cache_stats(builder: BuilderDep) -> CacheStatsResponse:
    return CacheStatsResponse(**await builder.get_cache_stats())
