"""
Trade status and asset type enumerations.
"""

from enum import StrEnum

from balance_curve.core.constants import OPTIONS_CONTRACT_MULTIPLIER, STOCK_MULTIPLIER


class TradeStatus(StrEnum):
    """
    Lifecycle of a journal trade.

    A trimmed trade has been partially exited and still holds shares.
    """

    OPEN = "open"
    TRIMMED = "trimmed"
    CLOSED = "closed"

    @property
    def is_active(self) -> bool:
        """Check if the trade still holds shares."""
        return self in (self.OPEN, self.TRIMMED)

    @property
    def has_realized(self) -> bool:
        """Check if the trade has locked in any P&L."""
        return self in (self.TRIMMED, self.CLOSED)


class AssetType(StrEnum):
    """Instrument class of a trade."""

    STOCK = "stock"
    OPTIONS = "options"

    @property
    def multiplier(self) -> int:
        """Contract size applied to price deltas."""
        return OPTIONS_CONTRACT_MULTIPLIER if self == self.OPTIONS else STOCK_MULTIPLIER
