"""
Custom exception hierarchy for the balance curve.

This module defines domain-specific exceptions for better error handling.
"""


class EquityCurveError(Exception):
    """Base exception for all balance-curve errors."""

    pass


class ValidationError(EquityCurveError):
    """Raised when input validation fails."""

    pass


class DataError(EquityCurveError):
    """Raised when persisted data is malformed."""

    pass


class PriceFetchError(EquityCurveError):
    """Raised when a price provider call fails for a whole batch."""

    def __init__(self, tickers: list[str], reason: str = "provider error"):
        self.tickers = list(tickers)
        self.reason = reason
        super().__init__(f"Price fetch failed for {', '.join(self.tickers)}: {reason}")


class StorageError(EquityCurveError):
    """Raised when the persistent store cannot complete an operation."""

    def __init__(self, key: str, reason: str = "storage failure"):
        self.key = key
        self.reason = reason
        super().__init__(f"Storage operation failed for '{key}': {reason}")


class StorageQuotaExceededError(StorageError):
    """Raised when a write would exceed the store's quota."""

    def __init__(self, key: str, required_bytes: int, available_bytes: int):
        self.required_bytes = required_bytes
        self.available_bytes = available_bytes
        super().__init__(
            key,
            f"quota exceeded: required={required_bytes} bytes, available={available_bytes} bytes",
        )
