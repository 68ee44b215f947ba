"""
Monte Carlo simulation over randomized price histories.

Reruns the backtest on many randomized copies of the candle series and
reports the distribution of outcomes. If the real-history return sits
comfortably inside that distribution, the "edge" was the path, not the
strategy.

Randomization methods (explicit choice, no default magic):
- shuffle: full random permutation of bars. Destroys ALL temporal
  structure, so it tests strict path-independence.
- sample_with_replacement: i.i.d. bootstrap of bars. Keeps the marginal
  distribution, allows duplicates, also destroys ordering.
- block_bootstrap: concatenated random blocks of consecutive bars.
  Keeps local autocorrelation (trends, vol clusters) within a block.

Bars are resampled as whole OHLCV rows; the timestamp column is kept in
its original order so the engine always sees a valid time index.
"""

from dataclasses import dataclass, field
from threading import Event
from typing import Any, Optional
import structlog

import numpy as np
import pandas as pd

from strategy_validation.config import MonteCarloConfig
from strategy_validation.data.candles import CandleInput, validate_candles
from strategy_validation.exceptions import AllRunsFailedError
from strategy_validation.backtesting.execution import ProgressCallback, run_tasks
from strategy_validation.backtesting.runner import BacktestRunnerAdapter

logger = structlog.get_logger(__name__)


RUIN_THRESHOLD_PERCENT = -50.0

_ROW_COLUMNS = ["open", "high", "low", "close", "volume"]


@dataclass(frozen=True)
class MonteCarloRun:
    """One randomized trial."""
    run_id: int
    final_capital: float
    return_percent: float
    max_drawdown: float
    sharpe_ratio: float

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "final_capital": self.final_capital,
            "return_percent": self.return_percent,
            "max_drawdown": self.max_drawdown,
            "sharpe_ratio": self.sharpe_ratio,
        }


@dataclass(frozen=True)
class MonteCarloStatistics:
    """
    Distribution summary of trial returns (percent).

    value_at_risk and conditional_var are reported as losses: a positive
    number means the tail loses money.
    """
    mean_return: float = 0.0
    median_return: float = 0.0
    std_dev_return: float = 0.0
    confidence_interval: tuple[float, float] = (0.0, 0.0)
    probability_of_profit: float = 0.0
    probability_of_ruin: float = 0.0
    value_at_risk: float = 0.0
    conditional_var: float = 0.0

    def to_dict(self) -> dict:
        return {
            "mean_return": self.mean_return,
            "median_return": self.median_return,
            "std_dev_return": self.std_dev_return,
            "confidence_interval": {
                "lower": self.confidence_interval[0],
                "upper": self.confidence_interval[1],
            },
            "probability_of_profit": self.probability_of_profit,
            "probability_of_ruin": self.probability_of_ruin,
            "value_at_risk": self.value_at_risk,
            "conditional_var": self.conditional_var,
        }


@dataclass(frozen=True)
class MonteCarloResult:
    method: str
    runs: list[MonteCarloRun]
    statistics: MonteCarloStatistics
    failed_runs: int = 0
    run_errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "method": self.method,
            "runs": len(self.runs),
            "failed_runs": self.failed_runs,
            "statistics": self.statistics.to_dict(),
        }


def randomize_candles(
    candles: pd.DataFrame,
    method: str,
    rng: np.random.Generator,
    block_size: int = 20,
) -> pd.DataFrame:
    """
    Build one randomized copy of the series.

    Args:
        candles: Validated candle DataFrame
        method: shuffle, sample_with_replacement or block_bootstrap
        rng: Random generator for this trial
        block_size: Block length for block_bootstrap

    Returns:
        New DataFrame of the same length with resampled OHLCV rows
    """
    n = len(candles)
    if n == 0:
        return candles.copy()

    if method == "shuffle":
        order = rng.permutation(n)
    elif method == "sample_with_replacement":
        order = rng.integers(0, n, size=n)
    elif method == "block_bootstrap":
        block = min(block_size, n)
        num_blocks = -(-n // block)
        starts = rng.integers(0, n - block + 1, size=num_blocks)
        order = np.concatenate([np.arange(s, s + block) for s in starts])[:n]
    else:
        raise ValueError(f"Unknown randomization method: {method}")

    randomized = candles.copy()
    randomized[_ROW_COLUMNS] = candles[_ROW_COLUMNS].to_numpy()[order]
    return randomized


def summarize_returns(returns, confidence_level: float = 0.95) -> MonteCarloStatistics:
    """
    Distribution statistics from trial returns.

    - CI: sorted returns at floor(n(1-c)/2) and floor(n(1+c)/2)
    - probability_of_profit: share of returns strictly > 0
    - probability_of_ruin: share of returns < -50%
    - VaR: negative of the return at floor(n(1-c))
    - CVaR: negative mean of returns at or below that return
    """
    sorted_returns = np.sort(np.asarray(returns, dtype=float))
    n = len(sorted_returns)
    if n == 0:
        return MonteCarloStatistics()

    lower_idx = min(n - 1, int(np.floor(n * (1 - confidence_level) / 2)))
    upper_idx = min(n - 1, int(np.floor(n * (1 + confidence_level) / 2)))
    var_idx = min(n - 1, int(np.floor(n * (1 - confidence_level))))

    var_threshold = sorted_returns[var_idx]
    tail = sorted_returns[sorted_returns <= var_threshold]

    return MonteCarloStatistics(
        mean_return=float(sorted_returns.mean()),
        median_return=float(np.median(sorted_returns)),
        std_dev_return=float(np.std(sorted_returns, ddof=1)) if n > 1 else 0.0,
        confidence_interval=(float(sorted_returns[lower_idx]), float(sorted_returns[upper_idx])),
        probability_of_profit=float((sorted_returns > 0).sum() / n),
        probability_of_ruin=float((sorted_returns < RUIN_THRESHOLD_PERCENT).sum() / n),
        value_at_risk=float(-var_threshold) + 0.0,
        conditional_var=float(-tail.mean()) + 0.0,
    )


class MonteCarloSimulator:
    """
    Runs the backtest over randomized histories.

    Each trial gets its own generator spawned from one SeedSequence, so a
    seeded simulation is reproducible regardless of execution order or
    worker count.
    """

    def __init__(
        self,
        runner: BacktestRunnerAdapter,
        config: Optional[MonteCarloConfig] = None,
    ):
        self.runner = runner
        self.config = config or MonteCarloConfig()

    def run(
        self,
        candles: CandleInput,
        backtest_config: Any,
        cancel_event: Optional[Event] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> MonteCarloResult:
        """
        Run the simulation.

        Args:
            candles: Full candle series
            backtest_config: Strategy config passed through to the engine
            cancel_event: Set to cancel between trials
            progress_callback: Called with (completed_runs, total_runs)

        Returns:
            MonteCarloResult with per-run outcomes and statistics

        Raises:
            AllRunsFailedError: every trial failed to backtest
        """
        bars = validate_candles(candles)
        num_runs = self.config.num_runs

        logger.info(
            "monte_carlo_starting",
            method=self.config.method,
            num_runs=num_runs,
            bars=len(bars),
        )

        seeds = np.random.SeedSequence(self.config.seed).spawn(num_runs)
        tasks = [
            (lambda run_id=i + 1, seed=seed: self._run_trial(bars, backtest_config, run_id, seed))
            for i, seed in enumerate(seeds)
        ]
        outcomes = run_tasks(
            tasks,
            max_workers=self.config.max_workers,
            cancel_event=cancel_event,
            progress_callback=progress_callback,
            label="monte_carlo",
        )

        runs = [o.result for o in outcomes if o.ok]
        errors = [str(o.error) for o in outcomes if not o.ok]
        for error in errors[:5]:
            logger.error("monte_carlo_run_failed", error=error)

        if num_runs > 0 and not runs:
            raise AllRunsFailedError(len(errors), errors)

        statistics = summarize_returns(
            [r.return_percent for r in runs],
            self.config.confidence_level,
        )

        logger.info(
            "monte_carlo_complete",
            runs=len(runs),
            failed_runs=len(errors),
            mean_return=statistics.mean_return,
            probability_of_profit=statistics.probability_of_profit,
            value_at_risk=statistics.value_at_risk,
        )

        return MonteCarloResult(
            method=self.config.method,
            runs=runs,
            statistics=statistics,
            failed_runs=len(errors),
            run_errors=errors,
        )

    def _run_trial(
        self,
        bars: pd.DataFrame,
        backtest_config: Any,
        run_id: int,
        seed: np.random.SeedSequence,
    ) -> MonteCarloRun:
        rng = np.random.default_rng(seed)
        randomized = randomize_candles(bars, self.config.method, rng, self.config.block_size)
        result = self.runner.run(randomized, backtest_config)

        return MonteCarloRun(
            run_id=run_id,
            final_capital=result.final_capital,
            return_percent=result.total_return_percent,
            max_drawdown=result.max_drawdown_percent,
            sharpe_ratio=result.sharpe_ratio,
        )
