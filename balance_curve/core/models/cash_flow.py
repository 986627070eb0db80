"""
Cash flow domain model.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from balance_curve.core.enums import CashFlowType
from balance_curve.core.exceptions.equity import ValidationError
from balance_curve.core.trading_calendar import TradingCalendar
from balance_curve.core.types.financial import is_finite_number
from balance_curve.core.utils.validation import parse_timestamp, validate_positive


@dataclass(frozen=True)
class CashFlowTransaction:
    """A deposit into or withdrawal from the account.

    ``amount`` is always positive; the direction comes from ``type``.
    """

    type: CashFlowType
    amount: float
    timestamp: datetime

    def __post_init__(self) -> None:
        try:
            object.__setattr__(self, "type", CashFlowType(self.type))
        except ValueError as e:
            raise ValidationError(f"Unknown cash flow type: {self.type!r}") from e
        if not is_finite_number(self.amount):
            raise ValidationError(f"Cash flow amount must be a finite number, got {self.amount!r}")
        validate_positive(self.amount, "amount")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CashFlowTransaction":
        """Build a transaction from a ledger record.

        Raises:
            ValidationError: If a field is missing or malformed
        """
        if not isinstance(data, dict):
            raise ValidationError(f"Cash flow must be a mapping, got {type(data).__name__}")
        amount = data.get("amount")
        if isinstance(amount, str):
            try:
                amount = float(amount)
            except ValueError as e:
                raise ValidationError(f"Invalid cash flow amount: {amount!r}") from e
        return cls(
            type=str(data.get("type", "")).lower(),
            amount=amount,
            timestamp=parse_timestamp(data.get("timestamp"), "timestamp"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "amount": self.amount,
            "timestamp": self.timestamp.isoformat(),
        }

    @property
    def signed_amount(self) -> float:
        """Amount with deposits positive and withdrawals negative."""
        return self.type.sign * self.amount

    def market_date(self, calendar: TradingCalendar) -> date:
        """Calendar date of the transaction in exchange-local time."""
        return calendar.to_market_time(self.timestamp).date()
