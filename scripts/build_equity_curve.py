#!/usr/bin/env python3
"""
Equity Curve Builder

Rebuilds the daily balance curve of a trading journal from JSON files and
prints it as a table. Snapshots and prices are cached between runs.

Data directory layout:
    trades.json       list of trade records
    cash_flows.json   list of deposits / withdrawals
    prices.json       {ticker: {YYYY-MM-DD: close}}
    quotes.json       {ticker: price}, today's live quotes
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

import pandas as pd
from loguru import logger

from balance_curve.core.config import CurveSettings
from balance_curve.core.exceptions.equity import EquityCurveError
from balance_curve.core.utils.validation import parse_iso_date
from balance_curve.services.factory import create_file_backed_builder


def setup_logging(debug: bool = False):
    """Configure logging with loguru."""
    logger.remove()

    level = "DEBUG" if debug else "INFO"
    logger.add(
        sys.stderr,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
        level=level,
    )


async def run(args: argparse.Namespace) -> int:
    settings = CurveSettings(
        starting_balance=args.starting_balance,
        batch_delay_seconds=args.batch_delay,
    )
    builder = await create_file_backed_builder(args.data_dir, args.cache_dir, settings)

    if args.clear_cache:
        await builder.clear_all()

    if args.invalidate_from:
        curve = await builder.invalidate_from_date(args.invalidate_from)
        if args.start or args.end:
            curve = await builder.build_equity_curve(args.start, args.end)
    else:
        curve = await builder.build_equity_curve(args.start, args.end)

    if args.snapshot_close:
        snapshot = await builder.snapshot_live_close()
        if snapshot is None:
            logger.warning("Live close snapshot was not stored")

    if curve.is_empty:
        logger.warning("No trades found, nothing to plot")
        return 0

    frame = curve.to_frame()
    with pd.option_context("display.max_rows", None, "display.float_format", "{:,.2f}".format):
        print(frame.to_string())

    if args.output:
        frame.to_csv(args.output)
        logger.info(f"Curve written to {args.output}")

    if args.stats:
        print(json.dumps(await builder.get_cache_stats(), indent=2, default=str))

    return 0


def main():
    parser = argparse.ArgumentParser(
        description="Rebuild a trading journal's daily balance curve",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    parser.add_argument("--data-dir", type=Path, default=Path("data"), help="Directory with the JSON inputs")
    parser.add_argument(
        "--cache-dir", type=Path, default=None, help="Cache directory (default: DATA_DIR/.cache)"
    )
    parser.add_argument("--start", type=str, help="First day in YYYY-MM-DD format")
    parser.add_argument("--end", type=str, help="Last day in YYYY-MM-DD format")
    parser.add_argument(
        "--starting-balance", type=float, default=0.0, help="Account size before the first trade"
    )
    parser.add_argument(
        "--batch-delay",
        type=float,
        default=CurveSettings().batch_delay_seconds,
        help="Seconds between price provider batches",
    )
    parser.add_argument(
        "--invalidate-from", type=str, help="Recompute every cached day from this date onward"
    )
    parser.add_argument("--clear-cache", action="store_true", help="Drop all cached data first")
    parser.add_argument(
        "--snapshot-close",
        action="store_true",
        help="Store today's close from live quotes once the market has closed",
    )
    parser.add_argument("--output", type=Path, help="Also write the curve to this CSV file")
    parser.add_argument("--stats", action="store_true", help="Print cache statistics")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args()
    setup_logging(args.debug)

    try:
        for value in (args.start, args.end, args.invalidate_from):
            if value:
                parse_iso_date(value)
    except EquityCurveError as e:
        logger.error(f"{e}. Use YYYY-MM-DD format.")
        return 1

    if args.start and args.end and args.start > args.end:
        logger.error("Start date must be before or equal to end date")
        return 1

    try:
        return asyncio.run(run(args))
    except EquityCurveError as e:
        logger.error(f"Curve build failed: {e}")
        return 1
    except Exception as e:
        logger.exception(f"Curve build failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
