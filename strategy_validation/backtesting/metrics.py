"""
Fold results and aggregate metrics.

Rolls per-fold train/test results into the numbers that decide whether
a strategy generalizes: how much of the in-sample return survives, how
often it collapses, and whether train and test move together.

Zero folds is a valid input: every metric is 0 by convention.
"""

from dataclasses import dataclass
from datetime import datetime

import numpy as np

from strategy_validation.backtesting.runner import BacktestResult


@dataclass(frozen=True)
class Period:
    """Closed time interval covered by a window."""
    start: datetime
    end: datetime

    def to_dict(self) -> dict:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}

    def __str__(self) -> str:
        return f"{self.start.date()} to {self.end.date()}"


@dataclass(frozen=True)
class FoldResult:
    """Train and test backtests for one fold."""
    fold_id: int
    train_period: Period
    test_period: Period
    train_result: BacktestResult
    test_result: BacktestResult
    efficiency: float  # test return / train return
    degradation: float  # % of train return lost out of sample

    @property
    def train_return(self) -> float:
        return self.train_result.total_return_percent

    @property
    def test_return(self) -> float:
        return self.test_result.total_return_percent

    def to_dict(self) -> dict:
        return {
            "fold_id": self.fold_id,
            "train_period": self.train_period.to_dict(),
            "test_period": self.test_period.to_dict(),
            "train_result": self.train_result.to_dict(),
            "test_result": self.test_result.to_dict(),
            "efficiency": self.efficiency,
            "degradation": self.degradation,
        }


@dataclass(frozen=True)
class AggregatedMetrics:
    """Summary across all valid folds."""
    avg_train_return: float = 0.0
    avg_test_return: float = 0.0
    avg_efficiency: float = 0.0
    avg_degradation: float = 0.0
    robustness_score: float = 0.0
    overfit_probability: float = 0.0
    consistency_score: float = 0.0
    train_test_correlation: float = 0.0

    def to_dict(self) -> dict:
        return {
            "avg_train_return": self.avg_train_return,
            "avg_test_return": self.avg_test_return,
            "avg_efficiency": self.avg_efficiency,
            "avg_degradation": self.avg_degradation,
            "robustness_score": self.robustness_score,
            "overfit_probability": self.overfit_probability,
            "consistency_score": self.consistency_score,
            "train_test_correlation": self.train_test_correlation,
        }


def calculate_efficiency(train_return: float, test_return: float) -> float:
    """Test return as a fraction of train return (0 when train return is 0)."""
    if train_return == 0:
        return 0.0
    # + 0.0 folds -0.0 (losing train window, flat test window) into 0.0
    return test_return / train_return + 0.0


def calculate_degradation(train_return: float, test_return: float) -> float:
    """
    Percentage of a positive train return lost out of sample.

    Undefined for non-positive train returns, where it is 0.
    """
    if train_return <= 0:
        return 0.0
    return (train_return - test_return) / train_return * 100


def sample_std(values) -> float:
    """Sample standard deviation (ddof=1); 0 for fewer than two values."""
    arr = np.asarray(values, dtype=float)
    if len(arr) < 2:
        return 0.0
    return float(np.std(arr, ddof=1))


def pearson_correlation(x, y) -> float:
    """Pearson correlation, 0 when undefined (length mismatch, n < 2, zero variance)."""
    x = np.asarray(x, dtype=float)
    y = np.asarray(y, dtype=float)
    if len(x) != len(y) or len(x) < 2:
        return 0.0

    dx = x - x.mean()
    dy = y - y.mean()
    denominator = np.sqrt((dx ** 2).sum() * (dy ** 2).sum())
    if denominator == 0:
        return 0.0
    return float((dx * dy).sum() / denominator)


def aggregate_fold_results(results: list[FoldResult]) -> AggregatedMetrics:
    """
    Aggregate fold results.

    - robustness_score: min(1, mean / stddev) of test returns, if both > 0
    - overfit_probability: share of folds with positive train return
      where test return fell below half of it
    - consistency_score: share of folds where train and test agree in
      sign (both > 0 or both <= 0)
    - train_test_correlation: Pearson correlation across folds
    """
    if not results:
        return AggregatedMetrics()

    train_returns = np.array([r.train_return for r in results], dtype=float)
    test_returns = np.array([r.test_return for r in results], dtype=float)
    n = len(results)

    avg_test = float(test_returns.mean())
    test_std = sample_std(test_returns)
    robustness = min(1.0, avg_test / test_std) if avg_test > 0 and test_std > 0 else 0.0

    overfit_count = int(((train_returns > 0) & (test_returns < train_returns * 0.5)).sum())
    consistent_count = int((
        ((train_returns > 0) & (test_returns > 0)) |
        ((train_returns <= 0) & (test_returns <= 0))
    ).sum())

    return AggregatedMetrics(
        avg_train_return=float(train_returns.mean()),
        avg_test_return=avg_test,
        avg_efficiency=float(np.mean([r.efficiency for r in results])),
        avg_degradation=float(np.mean([r.degradation for r in results])),
        robustness_score=float(robustness),
        overfit_probability=overfit_count / n,
        consistency_score=consistent_count / n,
        train_test_correlation=pearson_correlation(train_returns, test_returns),
    )
