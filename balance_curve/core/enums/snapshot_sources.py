"""
Snapshot provenance enumeration.
"""

from enum import StrEnum


class SnapshotSource(StrEnum):
    """Where the prices behind an EOD snapshot came from."""

    LIVE_QUOTE = "live_quote"  # Saved from live quotes after the close
    HISTORICAL_PROVIDER = "historical_provider"  # Gap-filled from the price provider
    RECALCULATED = "recalculated"  # Recomputed by a waterfall update
    NO_POSITIONS = "no_positions"  # Nothing open, balance-only
    RETRY = "retry"  # Backfill of a previously incomplete day
