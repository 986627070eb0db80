"""
Financial value helpers.

Amounts are plain floats. Balances are always derived as
``realized_balance + unrealized_pnl`` so the sum is exact for the values
that are stored; comparisons of independently computed amounts go
through :func:`safe_float_comparison`.
"""

import math
from typing import Any

ZERO = 0.0
FLOAT_TOLERANCE = 1e-6


def is_finite_number(value: Any) -> bool:
    """Check that a value is a real, finite number (bools excluded)."""
    if isinstance(value, bool) or not isinstance(value, int | float):
        return False
    return math.isfinite(value)


def safe_float_comparison(a: float, b: float, tolerance: float = FLOAT_TOLERANCE) -> bool:
    """Compare floats with tolerance for precision issues.

    Examples:
        >>> safe_float_comparison(0.1 + 0.2, 0.3)
        True
        >>> safe_float_comparison(10000.0, 10000.5)
        False
    """
    return abs(a - b) < tolerance
