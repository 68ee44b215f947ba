"""
Robustness test battery.

Five pass/fail checks over an out-of-sample result:
1. Consistency: train and test agree in sign and move together
2. Parameter sensitivity: returns survive +/-20% position size changes
3. Regime robustness: profitable in at least half of the market regimes
4. Sample size: enough folds and trades to mean anything
5. Overfit detection: test returns do not collapse relative to train

A strategy that only passes with one exact parameter value was fitted
to noise. Every failing check says what to do about it.
"""

from dataclasses import dataclass, field, fields, is_dataclass, replace
from threading import Event
from typing import Any, Optional
import copy
import structlog

import numpy as np
import pandas as pd

from strategy_validation.config import RobustnessConfig
from strategy_validation.data.candles import CandleInput, validate_candles
from strategy_validation.exceptions import AnalysisCancelledError, ConfigurationError
from strategy_validation.backtesting.runner import BacktestRunnerAdapter
from strategy_validation.backtesting.walk_forward import OutOfSampleResult

logger = structlog.get_logger(__name__)


POSITION_SIZE_KEYS = ("position_size_percent", "positionSizePercent")


@dataclass(frozen=True)
class RobustnessTestResult:
    """Outcome of one robustness check."""
    test_name: str
    passed: bool
    score: float  # 0..1
    details: str
    recommendations: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "test_name": self.test_name,
            "passed": self.passed,
            "score": self.score,
            "details": self.details,
            "recommendations": list(self.recommendations),
        }


def scale_position_size(config: Any, factor: float) -> Any:
    """
    Copy of a backtest config with its position size multiplied by factor.

    Supports mappings, dataclasses and plain objects exposing a
    position_size_percent (or positionSizePercent) field.

    Raises:
        ConfigurationError: config has no position size field
    """
    if isinstance(config, dict):
        for key in POSITION_SIZE_KEYS:
            if key in config:
                scaled = copy.deepcopy(config)
                scaled[key] = config[key] * factor
                return scaled
    elif is_dataclass(config) and not isinstance(config, type):
        names = {f.name for f in fields(config)}
        for key in POSITION_SIZE_KEYS:
            if key in names:
                return replace(config, **{key: getattr(config, key) * factor})
    else:
        for key in POSITION_SIZE_KEYS:
            if hasattr(config, key):
                scaled = copy.deepcopy(config)
                setattr(scaled, key, getattr(config, key) * factor)
                return scaled

    raise ConfigurationError("Backtest config has no position size field")


def _clamp(score: float) -> float:
    return float(min(1.0, max(0.0, score)))


class RobustnessTester:
    """
    Runs the robustness battery.

    Only the sensitivity sweep calls the backtest engine again; the other
    checks read the out-of-sample result.
    """

    def __init__(
        self,
        runner: BacktestRunnerAdapter,
        config: Optional[RobustnessConfig] = None,
    ):
        self.runner = runner
        self.config = config or RobustnessConfig()

    def run_tests(
        self,
        candles: CandleInput,
        backtest_config: Any,
        oos_result: OutOfSampleResult,
        cancel_event: Optional[Event] = None,
    ) -> list[RobustnessTestResult]:
        """
        Run all five checks.

        Args:
            candles: Full candle series (for the sensitivity sweep)
            backtest_config: Strategy config with a position size field
            oos_result: Result of OutOfSampleAnalyzer.analyze
            cancel_event: Checked between sensitivity reruns

        Returns:
            List of RobustnessTestResult in fixed order
        """
        bars = validate_candles(candles)

        tests = [
            self.test_consistency(oos_result),
            self.test_parameter_sensitivity(bars, backtest_config, cancel_event),
            self.test_regime_robustness(oos_result),
            self.test_sample_size(oos_result),
            self.test_overfit(oos_result),
        ]

        logger.info(
            "robustness_tests_complete",
            passed=sum(1 for t in tests if t.passed),
            total=len(tests),
            failed_tests=[t.test_name for t in tests if not t.passed],
        )

        return tests

    def test_consistency(self, result: OutOfSampleResult) -> RobustnessTestResult:
        metrics = result.aggregated_metrics
        consistency = metrics.consistency_score
        correlation = metrics.train_test_correlation

        passed = (
            consistency >= self.config.min_consistency and
            correlation >= self.config.min_correlation
        )
        score = (consistency + max(0.0, correlation)) / 2

        recommendations = []
        if consistency < self.config.min_consistency:
            recommendations.append(
                "Strategy shows inconsistent behavior between train and test periods"
            )
        if correlation < self.config.min_correlation:
            recommendations.append(
                "Low correlation between train and test performance suggests unstable strategy"
            )

        return RobustnessTestResult(
            test_name="Consistency Test",
            passed=passed,
            score=_clamp(score),
            details=f"Consistency: {consistency * 100:.1f}%, Correlation: {correlation:.3f}",
            recommendations=recommendations,
        )

    def test_parameter_sensitivity(
        self,
        candles: pd.DataFrame,
        backtest_config: Any,
        cancel_event: Optional[Event] = None,
    ) -> RobustnessTestResult:
        """
        Rerun the full-series backtest at each position size variation.

        Coefficient of variation (population stddev / |mean|) of the
        returns must stay below the threshold. A zero mean counts as CV 1.
        """
        test_name = "Parameter Sensitivity"

        returns = []
        for variation in self.config.position_size_variations:
            if cancel_event is not None and cancel_event.is_set():
                raise AnalysisCancelledError("Parameter sensitivity sweep cancelled")

            try:
                varied = scale_position_size(backtest_config, 1 + variation)
            except ConfigurationError as e:
                return RobustnessTestResult(
                    test_name=test_name,
                    passed=False,
                    score=0.0,
                    details=str(e),
                    recommendations=[
                        "Expose position_size_percent in the backtest config to test sensitivity"
                    ],
                )

            try:
                result = self.runner.run(candles, varied)
            except Exception as e:
                logger.error(
                    "sensitivity_backtest_failed",
                    variation=variation,
                    error=str(e),
                )
                continue
            returns.append(result.total_return_percent)

        if not returns:
            return RobustnessTestResult(
                test_name=test_name,
                passed=False,
                score=0.0,
                details="All sensitivity backtests failed",
                recommendations=["Backtest failed at every position size - check the strategy config"],
            )

        values = np.asarray(returns, dtype=float)
        mean = float(values.mean())
        std = float(values.std())
        cv = std / abs(mean) if mean != 0 else 1.0

        passed = cv < self.config.max_sensitivity_cv
        recommendations = []
        if not passed:
            recommendations.append(
                "Strategy is sensitive to parameter changes - consider more robust parameter selection"
            )

        return RobustnessTestResult(
            test_name=test_name,
            passed=passed,
            score=_clamp(1 - cv),
            details=f"Coefficient of Variation: {cv * 100:.1f}% over {len(returns)} variations",
            recommendations=recommendations,
        )

    def test_regime_robustness(self, result: OutOfSampleResult) -> RobustnessTestResult:
        test_name = "Regime Robustness"
        analysis = result.regime_analysis

        if analysis is None or not analysis.performance_by_regime:
            return RobustnessTestResult(
                test_name=test_name,
                passed=False,
                score=0.0,
                details="No regime analysis available",
                recommendations=["Run analysis with regime detection enabled on a longer history"],
            )

        performances = analysis.performance_by_regime
        total = len(performances)
        profitable = sum(1 for p in performances if p.return_percent > 0)
        share = profitable / total

        recommendations = [
            f"Poor performance in {p.regime} regime ({p.return_percent:.2f}%)"
            for p in performances
            if p.return_percent <= 0
        ]
        passed = share >= self.config.min_profitable_regime_ratio

        return RobustnessTestResult(
            test_name=test_name,
            passed=passed,
            score=_clamp(share),
            details=f"Profitable in {profitable}/{total} regimes",
            recommendations=recommendations,
        )

    def test_sample_size(self, result: OutOfSampleResult) -> RobustnessTestResult:
        min_folds = self.config.min_folds
        min_trades = self.config.min_trades_per_fold

        folds = len(result.fold_results)
        avg_trades = (
            sum(r.test_result.total_trades for r in result.fold_results) / folds
            if folds > 0
            else 0.0
        )

        passed = folds >= min_folds and avg_trades >= min_trades
        score = (folds / min_folds) * (avg_trades / min_trades)

        recommendations = []
        if folds < min_folds:
            recommendations.append(
                f"Only {folds} folds - need at least {min_folds} for statistical significance"
            )
        if avg_trades < min_trades:
            recommendations.append(
                f"Average {avg_trades:.0f} trades per fold - need at least {min_trades}"
            )

        return RobustnessTestResult(
            test_name="Sample Size Adequacy",
            passed=passed,
            score=_clamp(score),
            details=f"{folds} folds, {avg_trades:.0f} avg trades/fold",
            recommendations=recommendations,
        )

    def test_overfit(self, result: OutOfSampleResult) -> RobustnessTestResult:
        metrics = result.aggregated_metrics
        overfit = metrics.overfit_probability
        degradation = metrics.avg_degradation

        passed = (
            overfit < self.config.max_overfit_probability and
            degradation < self.config.max_degradation
        )
        score = 1 - (overfit + min(1.0, max(0.0, degradation) / 100)) / 2

        recommendations = []
        if overfit >= self.config.max_overfit_probability:
            recommendations.append(
                f"High overfit probability ({overfit * 100:.1f}%) - simplify strategy"
            )
        if degradation >= self.config.max_degradation:
            recommendations.append(
                f"High performance degradation ({degradation:.1f}%) in out-of-sample testing"
            )

        return RobustnessTestResult(
            test_name="Overfit Detection",
            passed=passed,
            score=_clamp(score),
            details=f"Overfit prob: {overfit * 100:.1f}%, Degradation: {degradation:.1f}%",
            recommendations=recommendations,
        )
