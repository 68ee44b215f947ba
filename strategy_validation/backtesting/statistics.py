"""
Significance testing of out-of-sample returns.

One-sample t-test of the fold test returns against zero. The p-value is
the exact two-tailed Student's t tail (scipy), which matters here: fold
counts are usually well under 30, where a normal approximation is too
generous.

The confidence interval keeps a fixed 1.96 critical value. For small n
this understates the interval width; it is reported as-is for
comparability with the normal-theory interval.
"""

from dataclasses import dataclass
from typing import Iterable
import structlog

import numpy as np
from scipy import stats

logger = structlog.get_logger(__name__)


SIGNIFICANCE_LEVEL = 0.05
CI_CRITICAL_VALUE = 1.96


@dataclass(frozen=True)
class StatisticalTests:
    """Result of the one-sample test on out-of-sample returns."""
    t_statistic: float = 0.0
    p_value: float = 1.0
    degrees_of_freedom: int = 0
    significant_outperformance: bool = False
    confidence_interval: tuple[float, float] = (0.0, 0.0)
    mean_return: float = 0.0
    standard_error: float = 0.0

    def to_dict(self) -> dict:
        return {
            "t_statistic": self.t_statistic,
            "p_value": self.p_value,
            "degrees_of_freedom": self.degrees_of_freedom,
            "significant_outperformance": self.significant_outperformance,
            "confidence_interval": {
                "lower": self.confidence_interval[0],
                "upper": self.confidence_interval[1],
            },
            "mean_return": self.mean_return,
            "standard_error": self.standard_error,
        }


def two_tailed_p_value(t_statistic: float, degrees_of_freedom: int) -> float:
    """Two-tailed p-value from the Student's t distribution."""
    if degrees_of_freedom < 1:
        return 1.0
    p = 2.0 * stats.t.sf(abs(t_statistic), degrees_of_freedom)
    return float(min(1.0, max(0.0, p)))


def run_significance_test(returns: Iterable[float]) -> StatisticalTests:
    """
    Test H0: mean out-of-sample return <= 0.

    Args:
        returns: Test-period total return percentages, one per fold

    Returns:
        StatisticalTests. Fewer than two observations gives the neutral
        result (t=0, p=1, CI [0, 0]); zero variance gives t=0, p=1 and a
        degenerate CI at the mean.
    """
    values = np.asarray(list(returns), dtype=float)
    n = len(values)

    if n < 2:
        return StatisticalTests()

    mean = float(values.mean())
    std = float(values.std(ddof=1))
    standard_error = std / np.sqrt(n)
    df = n - 1

    if standard_error == 0:
        return StatisticalTests(
            t_statistic=0.0,
            p_value=1.0,
            degrees_of_freedom=df,
            significant_outperformance=False,
            confidence_interval=(mean, mean),
            mean_return=mean,
            standard_error=0.0,
        )

    t_statistic = mean / standard_error
    p_value = two_tailed_p_value(t_statistic, df)
    margin = CI_CRITICAL_VALUE * standard_error

    result = StatisticalTests(
        t_statistic=float(t_statistic),
        p_value=p_value,
        degrees_of_freedom=df,
        significant_outperformance=p_value < SIGNIFICANCE_LEVEL and mean > 0,
        confidence_interval=(mean - margin, mean + margin),
        mean_return=mean,
        standard_error=float(standard_error),
    )

    logger.debug(
        "significance_test_complete",
        n=n,
        t_statistic=result.t_statistic,
        p_value=result.p_value,
    )

    return result
