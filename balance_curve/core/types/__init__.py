"""
Core type definitions and utilities.
"""

from .financial import (
    FLOAT_TOLERANCE,
    ZERO,
    is_finite_number,
    safe_float_comparison,
)

__all__ = [
    "is_finite_number",
    "safe_float_comparison",
    "FLOAT_TOLERANCE",
    "ZERO",
]
