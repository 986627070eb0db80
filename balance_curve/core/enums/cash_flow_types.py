"""
Cash flow direction enumeration.
"""

from enum import StrEnum


class CashFlowType(StrEnum):
    """Direction of a cash movement into or out of the account."""

    DEPOSIT = "deposit"
    WITHDRAWAL = "withdrawal"

    @property
    def sign(self) -> int:
        """Sign applied to the transaction amount."""
        return 1 if self == self.DEPOSIT else -1
