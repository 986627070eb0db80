"""
Core enumerations for the balance curve.

Centralizes trade status, asset type, cash-flow direction and snapshot
provenance.
"""

from .cash_flow_types import CashFlowType
from .snapshot_sources import SnapshotSource
from .trade_types import AssetType, TradeStatus

__all__ = ["AssetType", "CashFlowType", "SnapshotSource", "TradeStatus"]
