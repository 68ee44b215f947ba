"""
Performance analytics on backtest outputs.

- Drawdown and recovery analysis of an equity curve
- Correlation/beta/alpha against a benchmark
- Conservative Kelly fraction from trade results
- All three for a full-history backtest (analyze_performance)

Degenerate inputs (flat benchmark, no losing trades) resolve to 0
rather than NaN or infinity.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, Optional
import structlog

import numpy as np
import pandas as pd

from strategy_validation.backtesting.runner import BacktestResult

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class RecoveryPeriod:
    """A completed drawdown: from leaving a peak to regaining it."""
    start: datetime
    end: datetime
    duration_days: float
    depth_percent: float

    def to_dict(self) -> dict:
        return {
            "start": self.start.isoformat(),
            "end": self.end.isoformat(),
            "duration_days": self.duration_days,
            "depth_percent": self.depth_percent,
        }


@dataclass(frozen=True)
class DrawdownAnalysis:
    max_drawdown: float = 0.0
    max_drawdown_percent: float = 0.0
    max_drawdown_duration_days: float = 0.0
    recovery_periods: list[RecoveryPeriod] = field(default_factory=list)
    average_recovery_days: float = 0.0
    current_drawdown_percent: float = 0.0

    def to_dict(self) -> dict:
        return {
            "max_drawdown": self.max_drawdown,
            "max_drawdown_percent": self.max_drawdown_percent,
            "max_drawdown_duration_days": self.max_drawdown_duration_days,
            "recovery_periods": [r.to_dict() for r in self.recovery_periods],
            "average_recovery_days": self.average_recovery_days,
            "current_drawdown_percent": self.current_drawdown_percent,
        }


@dataclass(frozen=True)
class BenchmarkCorrelation:
    benchmark: str
    correlation: float
    beta: float
    alpha: float  # mean excess return per period
    tracking_error: float
    information_ratio: float

    def to_dict(self) -> dict:
        return {
            "benchmark": self.benchmark,
            "correlation": self.correlation,
            "beta": self.beta,
            "alpha": self.alpha,
            "tracking_error": self.tracking_error,
            "information_ratio": self.information_ratio,
        }


@dataclass(frozen=True)
class PerformanceAnalysis:
    """Drawdowns, benchmark comparison and sizing for one full backtest."""
    drawdowns: DrawdownAnalysis
    benchmark: Optional[BenchmarkCorrelation]
    kelly_fraction: float

    def to_dict(self) -> dict:
        return {
            "drawdowns": self.drawdowns.to_dict(),
            "benchmark": self.benchmark.to_dict() if self.benchmark else None,
            "kelly_fraction": self.kelly_fraction,
        }


def analyze_drawdowns(equity_curve: pd.Series) -> DrawdownAnalysis:
    """
    Analyze drawdowns of an equity curve indexed by timestamp.

    A drawdown starts at the first bar below the running peak and
    recovers at the first bar above it. Unrecovered drawdowns count
    toward max duration and current drawdown but not recovery periods.
    """
    if equity_curve is None or len(equity_curve) == 0:
        return DrawdownAnalysis()

    equity = equity_curve.astype(float)
    timestamps = pd.to_datetime(pd.Index(equity.index))
    values = equity.to_numpy()

    peak = values[0]
    max_dd = 0.0
    max_dd_pct = 0.0
    max_duration = 0.0
    recoveries = []

    dd_start = None
    trough = peak

    for ts, value in zip(timestamps, values):
        if value > peak:
            if dd_start is not None:
                recoveries.append(RecoveryPeriod(
                    start=dd_start,
                    end=ts,
                    duration_days=(ts - dd_start).total_seconds() / 86400,
                    depth_percent=(peak - trough) / peak * 100 if peak > 0 else 0.0,
                ))
                dd_start = None
            peak = value
            trough = value
            continue

        if value < peak:
            if dd_start is None:
                dd_start = ts
                trough = value
            trough = min(trough, value)

            drawdown = peak - value
            if drawdown > max_dd:
                max_dd = drawdown
                max_dd_pct = drawdown / peak * 100 if peak > 0 else 0.0
            max_duration = max(max_duration, (ts - dd_start).total_seconds() / 86400)

    average_recovery = (
        float(np.mean([r.duration_days for r in recoveries])) if recoveries else 0.0
    )
    current = (peak - values[-1]) / peak * 100 if peak > 0 else 0.0

    return DrawdownAnalysis(
        max_drawdown=float(max_dd),
        max_drawdown_percent=float(max_dd_pct),
        max_drawdown_duration_days=float(max_duration),
        recovery_periods=recoveries,
        average_recovery_days=average_recovery,
        current_drawdown_percent=float(max(0.0, current)),
    )


def benchmark_correlation(
    strategy_returns: Iterable[float],
    benchmark_returns: Iterable[float],
    benchmark_name: str = "SPY",
) -> BenchmarkCorrelation:
    """
    Compare per-period strategy returns with a benchmark.

    Raises:
        ValueError: if the series differ in length
    """
    strategy = np.asarray(list(strategy_returns), dtype=float)
    benchmark = np.asarray(list(benchmark_returns), dtype=float)

    if len(strategy) != len(benchmark):
        raise ValueError("Strategy and benchmark returns must have same length")

    if len(strategy) < 2:
        return BenchmarkCorrelation(benchmark_name, 0.0, 0.0, 0.0, 0.0, 0.0)

    covariance = float(np.cov(strategy, benchmark, ddof=1)[0, 1])
    strategy_var = float(strategy.var(ddof=1))
    benchmark_var = float(benchmark.var(ddof=1))

    if benchmark_var == 0:
        logger.warning("zero_benchmark_variance", benchmark=benchmark_name)
        beta = 0.0
    else:
        beta = covariance / benchmark_var

    denominator = np.sqrt(strategy_var * benchmark_var)
    correlation = covariance / denominator if denominator > 0 else 0.0

    alpha = float(strategy.mean() - beta * benchmark.mean())
    tracking_error = float(np.std(strategy - benchmark, ddof=1))
    information_ratio = alpha / tracking_error if tracking_error > 0 else 0.0

    return BenchmarkCorrelation(
        benchmark=benchmark_name,
        correlation=float(correlation),
        beta=float(beta),
        alpha=alpha,
        tracking_error=tracking_error,
        information_ratio=float(information_ratio),
    )


def kelly_fraction(trade_returns: Iterable[float], fraction: float = 0.25) -> float:
    """
    Conservative Kelly position fraction from per-trade percentage returns.

    Full Kelly (W*R - L) / R is scaled by `fraction` and capped at 25%.
    Needs at least one winning and one losing trade.
    """
    returns = np.asarray(list(trade_returns), dtype=float)
    wins = returns[returns > 0]
    losses = returns[returns <= 0]

    if len(wins) == 0 or len(losses) == 0:
        return 0.0

    avg_loss = abs(losses.mean())
    if avg_loss == 0:
        return 0.0

    win_rate = len(wins) / len(returns)
    ratio = wins.mean() / avg_loss
    kelly = (win_rate * ratio - (1 - win_rate)) / ratio

    return float(max(0.0, min(kelly * fraction, 0.25)))


def analyze_performance(
    result: BacktestResult,
    candles: pd.DataFrame,
    benchmark_name: str = "Buy & Hold",
) -> Optional[PerformanceAnalysis]:
    """
    Analyze a full-history backtest against buying and holding the series.

    Needs the engine to report an equity curve; returns None otherwise.
    The benchmark comparison is skipped when the curve does not have one
    point per candle.
    """
    if result.equity_curve is None or len(result.equity_curve) == 0:
        logger.info("performance_analysis_skipped", reason="no_equity_curve")
        return None

    equity = result.equity_curve.astype(float)
    benchmark = None
    if len(equity) == len(candles):
        strategy_returns = equity.pct_change().iloc[1:].fillna(0.0)
        market_returns = candles["close"].astype(float).pct_change().iloc[1:].fillna(0.0)
        benchmark = benchmark_correlation(strategy_returns, market_returns, benchmark_name)
    else:
        logger.warning(
            "benchmark_comparison_skipped",
            equity_points=len(equity),
            bars=len(candles),
        )

    return PerformanceAnalysis(
        drawdowns=analyze_drawdowns(equity),
        benchmark=benchmark,
        kelly_fraction=kelly_fraction(result.trade_returns or ()),
    )
