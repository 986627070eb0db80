"""
Builder assembly from JSON files.

Trades, cash flows, daily closes and live quotes are read from JSON
files; both caches persist under ``cache_dir``.
"""

import json
from pathlib import Path

from loguru import logger

from balance_curve.core.config import CurveSettings
from balance_curve.core.exceptions.equity import DataError
from balance_curve.infrastructure.journal.in_memory import (
    InMemoryCashFlowLedger,
    InMemoryTradeJournal,
)
from balance_curve.infrastructure.prices.in_memory import InMemoryPriceProvider, InMemoryQuoteSource
from balance_curve.infrastructure.storage.key_value_store import JsonFileKeyValueStore
from balance_curve.services.equity_curve_builder import EquityCurveBuilder


def _read_mapping(path: Path | None) -> dict:
    if path is None or not path.exists():
        return {}
    try:
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise DataError(f"Failed to read {path.name}: {e}") from e
    if not isinstance(data, dict):
        raise DataError(f"{path.name} must contain an object")
    return data


async def create_file_backed_builder(
    data_dir: Path | str,
    cache_dir: Path | str | None = None,
    settings: CurveSettings | None = None,
) -> EquityCurveBuilder:
    """Assemble a builder over the JSON files in ``data_dir``.

    Expected files, all optional: ``trades.json`` (list of trade records),
    ``cash_flows.json`` (list of transactions), ``prices.json``
    (``{ticker: {YYYY-MM-DD: close}}``) and ``quotes.json``
    (``{ticker: price}``).
    """
    data_dir = Path(data_dir)
    settings = settings or CurveSettings()

    trades_path = data_dir / "trades.json"
    cash_flows_path = data_dir / "cash_flows.json"
    journal = (
        await InMemoryTradeJournal.from_json_file(trades_path)
        if trades_path.exists()
        else InMemoryTradeJournal()
    )
    ledger = (
        await InMemoryCashFlowLedger.from_json_file(cash_flows_path)
        if cash_flows_path.exists()
        else InMemoryCashFlowLedger()
    )
    provider = InMemoryPriceProvider(
        _read_mapping(data_dir / "prices.json"), batch_size=settings.batch_size
    )
    quotes = InMemoryQuoteSource(_read_mapping(data_dir / "quotes.json"))
    store = JsonFileKeyValueStore(Path(cache_dir) if cache_dir else data_dir / ".cache")

    logger.debug(f"Builder assembled from {data_dir}")
    return EquityCurveBuilder(journal, ledger, provider, quotes, store, settings)
