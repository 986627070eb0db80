"""
In-memory trade journal and cash-flow ledger.
"""

import asyncio
import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any

from loguru import logger

from balance_curve.core.exceptions.equity import DataError, ValidationError
from balance_curve.core.models.cash_flow import CashFlowTransaction
from balance_curve.core.models.trade import Trade


async def _read_json_list(path: Path) -> list[dict[str, Any]]:
    loop = asyncio.get_running_loop()

    def _read() -> Any:
        with path.open("r", encoding="utf-8") as f:
            return json.load(f)

    try:
        data = await loop.run_in_executor(None, _read)
    except (OSError, json.JSONDecodeError) as e:
        raise DataError(f"Failed to read {path.name}: {e}") from e
    if isinstance(data, dict):
        # Journal exports wrap the records under a single key
        data = next((v for v in data.values() if isinstance(v, list)), [])
    if not isinstance(data, list):
        raise DataError(f"{path.name} must contain a list of records")
    return data


class InMemoryTradeJournal:
    def __init__(self, trades: Iterable[Trade] = ()):
        self.trades = list(trades)

    async def list_trades(self) -> list[Trade]:
        return list(self.trades)

    @classmethod
    async def from_json_file(cls, path: Path | str) -> "InMemoryTradeJournal":
        """Load trades from a JSON file, skipping invalid records."""
        path = Path(path)
        trades = []
        for index, record in enumerate(await _read_json_list(path)):
            try:
                trades.append(Trade.from_dict(record))
            except ValidationError as e:
                logger.warning(f"Skipping trade #{index} in {path.name}: {e}")
        logger.info(f"Loaded {len(trades)} trades from {path.name}")
        return cls(trades)


class InMemoryCashFlowLedger:
    def __init__(self, cash_flows: Iterable[CashFlowTransaction] = ()):
        self.cash_flows = list(cash_flows)

    async def list_cash_flows(self) -> list[CashFlowTransaction]:
        return list(self.cash_flows)

    @classmethod
    async def from_json_file(cls, path: Path | str) -> "InMemoryCashFlowLedger":
        """Load cash flows from a JSON file, skipping invalid records."""
        path = Path(path)
        cash_flows = []
        for index, record in enumerate(await _read_json_list(path)):
            try:
                cash_flows.append(CashFlowTransaction.from_dict(record))
            except ValidationError as e:
                logger.warning(f"Skipping cash flow #{index} in {path.name}: {e}")
        logger.info(f"Loaded {len(cash_flows)} cash flows from {path.name}")
        return cls(cash_flows)
