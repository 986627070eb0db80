"""
Unit tests for custom exceptions.
"""

import pytest

from balance_curve.core.exceptions.equity import (
    DataError,
    EquityCurveError,
    PriceFetchError,
    StorageError,
    StorageQuotaExceededError,
    ValidationError,
)


class TestEquityCurveError:
    """Tests for the exception hierarchy."""

    @pytest.mark.parametrize("exc_type", [ValidationError, DataError])
    def test_should_derive_from_base(self, exc_type: type[EquityCurveError]) -> None:
        exc = exc_type("bad input")
        assert isinstance(exc, EquityCurveError)
        assert str(exc) == "bad input"


class TestPriceFetchError:
    def test_should_name_failed_tickers(self) -> None:
        exc = PriceFetchError(["AAPL", "MSFT"], "rate limited")

        assert exc.tickers == ["AAPL", "MSFT"]
        assert exc.reason == "rate limited"
        assert str(exc) == "Price fetch failed for AAPL, MSFT: rate limited"


class TestStorageErrors:
    def test_should_carry_key_and_reason(self) -> None:
        exc = StorageError("eodCache", "disk full")

        assert exc.key == "eodCache"
        assert "disk full" in str(exc)

    def test_should_distinguish_quota_condition(self) -> None:
        exc = StorageQuotaExceededError("eodCache", required_bytes=2048, available_bytes=100)

        assert isinstance(exc, StorageError)
        assert exc.required_bytes == 2048
        assert exc.available_bytes == 100
        assert "required=2048 bytes" in str(exc)
