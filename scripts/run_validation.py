#!/usr/bin/env python3
"""
Run strategy validation on a candle CSV.

Usage:
    python scripts/run_validation.py --candles data/spy_daily.csv

    # Combinatorial purged CV with a 5-day embargo, no Monte Carlo
    python scripts/run_validation.py --candles data/spy_daily.csv --method combinatorial_purged --embargo 5 --skip-monte-carlo

    # Human-readable logs
    python scripts/run_validation.py --candles data/spy_daily.csv --log-format console

The CSV needs timestamp, open, high, low, close, volume columns. The JSON
report is printed to stdout; logs go to stderr.
"""

import argparse
import dataclasses
import json
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import pandas as pd
import structlog
from dotenv import load_dotenv

from strategy_validation.config import load_config
from strategy_validation.exceptions import StrategyValidationError
from strategy_validation.backtesting.engine import BacktestConfig, reference_engine_factory
from strategy_validation.validator import StrategyValidator

logger = structlog.get_logger(__name__)


def setup_logging(log_format: str = "json", level: str = "INFO"):
    """Configure logging."""
    logging.basicConfig(format="%(message)s", stream=sys.stderr, level=level)

    renderer = (
        structlog.dev.ConsoleRenderer()
        if log_format == "console"
        else structlog.processors.JSONRenderer()
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            renderer,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def main():
    parser = argparse.ArgumentParser(description="Validate a strategy out-of-sample")
    parser.add_argument("--candles", required=True, help="CSV with timestamp, open, high, low, close, volume")
    parser.add_argument("--config", default="config/settings.yaml", help="Validation settings YAML")
    parser.add_argument("--method", choices=["walk_forward", "k_fold", "combinatorial_purged", "rolling", "anchored"])
    parser.add_argument("--embargo", type=float, help="Embargo period in days")
    parser.add_argument("--purge", type=float, help="Purge period in days")
    parser.add_argument("--workers", type=int, help="Parallel folds/runs")
    parser.add_argument("--mc-runs", type=int, help="Monte Carlo runs")
    parser.add_argument("--seed", type=int, help="Monte Carlo seed")
    parser.add_argument("--skip-monte-carlo", action="store_true", help="Skip Monte Carlo simulation")
    parser.add_argument("--fast", type=int, default=10, help="Fast SMA period")
    parser.add_argument("--slow", type=int, default=30, help="Slow SMA period")
    parser.add_argument("--position-size", type=float, default=10.0, help="Position size (% of equity)")
    parser.add_argument("--log-format", choices=["json", "console"], default="json")
    parser.add_argument("--log-level", default="INFO")

    args = parser.parse_args()

    setup_logging(args.log_format, args.log_level)
    load_dotenv()

    settings = load_config(args.config)

    oos_overrides = {
        key: value for key, value in {
            "method": args.method,
            "embargo_period": args.embargo,
            "purge_period": args.purge,
            "max_workers": args.workers,
        }.items() if value is not None
    }
    mc_overrides = {
        key: value for key, value in {
            "num_runs": args.mc_runs,
            "seed": args.seed,
            "max_workers": args.workers,
        }.items() if value is not None
    }
    settings = dataclasses.replace(
        settings,
        out_of_sample=dataclasses.replace(settings.out_of_sample, **oos_overrides),
        monte_carlo=dataclasses.replace(settings.monte_carlo, **mc_overrides),
    )

    candles = pd.read_csv(args.candles, parse_dates=["timestamp"])
    backtest_config = BacktestConfig(
        position_size_percent=args.position_size,
        fast_period=args.fast,
        slow_period=args.slow,
    )

    logger.info(
        "validation_starting",
        candles=args.candles,
        bars=len(candles),
        method=settings.out_of_sample.method,
    )

    validator = StrategyValidator(reference_engine_factory, settings)

    try:
        report = validator.validate(
            candles,
            backtest_config,
            run_monte_carlo=not args.skip_monte_carlo,
        )
    except StrategyValidationError as e:
        logger.error("validation_failed", error=str(e))
        return 1

    print(json.dumps(report.to_dict(), indent=2, default=str))

    return 0 if report.is_valid else 2


if __name__ == "__main__":
    sys.exit(main())
