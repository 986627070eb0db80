"""
Balance curve reconstruction for a trading journal.

Rebuilds a daily account-equity series from trades, cash flows and
closing prices, backed by a persistent per-day snapshot cache.
"""

from .core.config import CurveSettings
from .services.equity_curve_builder import EquityCurveBuilder

__version__ = "0.1.0"

__all__ = ["CurveSettings", "EquityCurveBuilder", "__version__"]
