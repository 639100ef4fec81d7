#!/usr/bin/env python3
"""
Technical Analysis Engine - Demo Runner

Runs the complete pipeline on one symbol:
    1. Load an OHLCV CSV, or generate a reproducible synthetic series
    2. Compute indicators and the aggregated summary
    3. Infer the market context (condition, volatility, cap size, sector)
    4. Explain every signal in that context
    5. Print a text report and optionally write a JSON report

EXECUTION
    python run_demo.py
    python run_demo.py --symbol MSFT --trend bear --market-cap 3e12
    python run_demo.py --csv data/aapl.csv --sector Technology --json out/aapl.json

Exit code is 0 on success and 1 on bad input or configuration.
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import List, Optional

from technical_analysis.config import VERSION
from technical_analysis.engine import analyze
from technical_analysis.explanations import generate_multiple_indicator_explanations
from technical_analysis.market_context import infer_market_context
from technical_analysis.price_data import (
    SAMPLE_TRENDS,
    generate_sample_price_data,
    load_price_csv,
    validate_price_frame,
)
from technical_analysis.report_generator import format_text_report, write_json_report


# =============================================================================
# CONSTANTS
# =============================================================================

DEFAULT_SYMBOL: str = "DEMO"
DEFAULT_DAYS: int = 250
DEFAULT_SEED: int = 42
DEFAULT_TREND: str = "bull"


# =============================================================================
# ARGUMENTS
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Technical Analysis Engine - Demo Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_demo.py                               # Synthetic bull market
  python run_demo.py --trend volatile --seed 7     # Choppy synthetic series
  python run_demo.py --csv prices.csv -s AAPL      # Your own OHLCV data
        """
    )

    parser.add_argument(
        "--symbol", "-s",
        type=str,
        default=DEFAULT_SYMBOL,
        help=f"Symbol used in the report (default: {DEFAULT_SYMBOL})"
    )

    parser.add_argument(
        "--csv",
        type=str,
        default=None,
        help="OHLCV CSV with date, open, high, low, close, volume columns"
    )

    parser.add_argument(
        "--days",
        type=int,
        default=DEFAULT_DAYS,
        help=f"Synthetic series length when no CSV is given (default: {DEFAULT_DAYS})"
    )

    parser.add_argument(
        "--seed",
        type=int,
        default=DEFAULT_SEED,
        help=f"Random seed for the synthetic series (default: {DEFAULT_SEED})"
    )

    parser.add_argument(
        "--trend",
        choices=SAMPLE_TRENDS,
        default=DEFAULT_TREND,
        help=f"Character of the synthetic series (default: {DEFAULT_TREND})"
    )

    parser.add_argument(
        "--sector",
        type=str,
        default=None,
        help="Sector name used in the explanations"
    )

    parser.add_argument(
        "--market-cap",
        type=float,
        default=None,
        help="Market capitalisation in USD (e.g. 3e12)"
    )

    parser.add_argument(
        "--json",
        type=str,
        default=None,
        help="Write a JSON report to this path"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {VERSION}"
    )

    return parser


# =============================================================================
# MAIN
# =============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the demo runner.

    Returns
    -------
    int
        Exit code (0 for success, 1 for failure)
    """
    args = build_parser().parse_args(argv)

    log_level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=log_level,
        format="  %(asctime)s │ %(levelname)s │ %(message)s",
        datefmt="%H:%M:%S"
    )
    logger = logging.getLogger(__name__)

    try:
        if args.csv:
            prices = load_price_csv(args.csv)
        else:
            if args.days <= 0:
                raise ValueError(f"--days must be positive, got {args.days}")
            logger.info(f"Generating {args.days} days of {args.trend} sample data (seed {args.seed})")
            prices = generate_sample_price_data(days=args.days, trend=args.trend, seed=args.seed)
    except (OSError, ValueError) as e:
        logger.error(f"Could not load price data: {e}")
        return 1

    for issue in validate_price_frame(prices):
        logger.warning(f"Data quality: {issue}")

    try:
        result = analyze(prices, args.symbol)
    except ValueError as e:
        logger.error(f"Analysis failed: {e}")
        return 1

    context = infer_market_context(args.symbol, args.sector, args.market_cap, prices)
    explanations = generate_multiple_indicator_explanations(
        result.signals,
        args.symbol,
        result.last_close if result.last_close is not None else 0.0,
        context,
    )

    print(format_text_report(result, context, explanations))

    if args.json:
        try:
            path = write_json_report(result, args.json, context, explanations)
        except OSError as e:
            logger.error(f"Could not write JSON report: {e}")
            return 1
        print(f"\n  JSON report: {path}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
