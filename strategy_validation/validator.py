"""
Strategy validator.

Runs the full validation pipeline for one strategy config:
1. Out-of-sample analysis (folds, aggregation, t-test, regimes)
2. Robustness battery
3. Monte Carlo simulation (optional, it is the expensive part)
4. Full-history backtest with drawdown, benchmark and Kelly analytics

and reduces it to a single verdict. A strategy is only valid when its
verdict contains "PASS".
"""

from dataclasses import dataclass
from threading import Event
from typing import Any, Optional
import structlog

from strategy_validation.config import ValidationSettings, load_config
from strategy_validation.data.candles import CandleInput, validate_candles
from strategy_validation.exceptions import AnalysisCancelledError, BacktestRunError
from strategy_validation.backtesting.analytics import PerformanceAnalysis, analyze_performance
from strategy_validation.backtesting.execution import ProgressCallback
from strategy_validation.backtesting.runner import BacktestRunnerAdapter, EngineFactory
from strategy_validation.backtesting.statistics import SIGNIFICANCE_LEVEL
from strategy_validation.backtesting.walk_forward import OutOfSampleAnalyzer, OutOfSampleResult
from strategy_validation.stress_testing.monte_carlo import MonteCarloResult, MonteCarloSimulator
from strategy_validation.stress_testing.robustness import RobustnessTester, RobustnessTestResult

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ValidationReport:
    """Everything the validator learned about a strategy."""
    out_of_sample: OutOfSampleResult
    robustness_tests: list[RobustnessTestResult]
    monte_carlo: Optional[MonteCarloResult]
    passed_tests: int
    total_tests: int
    verdict: str  # PASS, MARGINAL, FAIL, INSUFFICIENT DATA
    performance: Optional[PerformanceAnalysis] = None

    @property
    def is_valid(self) -> bool:
        return self.verdict.startswith("PASS")

    def to_dict(self) -> dict:
        return {
            "verdict": self.verdict,
            "passed_tests": self.passed_tests,
            "total_tests": self.total_tests,
            "out_of_sample": self.out_of_sample.to_dict(),
            "robustness_tests": [t.to_dict() for t in self.robustness_tests],
            "monte_carlo": self.monte_carlo.to_dict() if self.monte_carlo else None,
            "performance": self.performance.to_dict() if self.performance else None,
        }


def determine_verdict(
    oos_result: OutOfSampleResult,
    tests: list[RobustnessTestResult],
    monte_carlo: Optional[MonteCarloResult] = None,
) -> str:
    """
    Reduce validation results to a verdict string.

    - INSUFFICIENT DATA: no fold survived fold generation
    - FAIL: overfit check failed, or fewer than half the checks passed
    - MARGINAL: anything short of a clean pass
    - PASS: every check passed, test returns significant, and (when run)
      Monte Carlo says profit is more likely than not
    """
    if not oos_result.has_signal:
        return "INSUFFICIENT DATA - Not enough bars for a single fold"

    passed = sum(1 for t in tests if t.passed)
    overfit = next((t for t in tests if t.test_name == "Overfit Detection"), None)

    if overfit is not None and not overfit.passed:
        return "FAIL - Strategy is overfit to its training data"
    if passed * 2 < len(tests):
        return f"FAIL - Only {passed}/{len(tests)} robustness tests passed"

    if passed < len(tests):
        return f"MARGINAL - {passed}/{len(tests)} robustness tests passed"
    if oos_result.statistical_tests.p_value >= SIGNIFICANCE_LEVEL:
        return (
            f"MARGINAL - Out-of-sample returns not significant "
            f"(p={oos_result.statistical_tests.p_value:.3f})"
        )
    if monte_carlo is not None and monte_carlo.statistics.probability_of_profit <= 0.5:
        return (
            f"MARGINAL - Monte Carlo probability of profit "
            f"{monte_carlo.statistics.probability_of_profit * 100:.1f}%"
        )

    return f"PASS - Strategy passed all {len(tests)} robustness tests"


class StrategyValidator:
    """
    One-call validation of a strategy.

    Key principles:
    - Same engine factory for every stage (fresh engine per window)
    - Settings from config/settings.yaml unless passed explicitly
    - Cancelling aborts the current stage; no partial report is returned
    """

    def __init__(
        self,
        engine_factory: EngineFactory,
        settings: Optional[ValidationSettings] = None,
    ):
        """
        Initialize validator.

        Args:
            engine_factory: Callable(config) -> engine with run_backtest(candles)
            settings: Validation settings (defaults to load_config())
        """
        self.settings = settings or load_config()
        self.runner = BacktestRunnerAdapter(engine_factory)

    def validate(
        self,
        candles: CandleInput,
        backtest_config: Any,
        run_monte_carlo: bool = True,
        cancel_event: Optional[Event] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> ValidationReport:
        """
        Validate a strategy config against a candle series.

        Args:
            candles: Full candle history
            backtest_config: Strategy config passed through to the engine
            run_monte_carlo: Also run the Monte Carlo simulation
            cancel_event: Set to cancel between folds/trials
            progress_callback: Forwarded to each stage

        Returns:
            ValidationReport with verdict
        """
        bars = validate_candles(candles)

        oos_result = OutOfSampleAnalyzer(
            self.runner, self.settings.out_of_sample
        ).analyze(bars, backtest_config, cancel_event, progress_callback)

        tests = RobustnessTester(
            self.runner, self.settings.robustness
        ).run_tests(bars, backtest_config, oos_result, cancel_event)

        monte_carlo = None
        if run_monte_carlo:
            monte_carlo = MonteCarloSimulator(
                self.runner, self.settings.monte_carlo
            ).run(bars, backtest_config, cancel_event, progress_callback)

        performance = self._analyze_full_history(bars, backtest_config, cancel_event)

        verdict = determine_verdict(oos_result, tests, monte_carlo)
        report = ValidationReport(
            out_of_sample=oos_result,
            robustness_tests=tests,
            monte_carlo=monte_carlo,
            passed_tests=sum(1 for t in tests if t.passed),
            total_tests=len(tests),
            verdict=verdict,
            performance=performance,
        )

        logger.info(
            "strategy_validation_complete",
            verdict=verdict,
            passed_tests=report.passed_tests,
            total_tests=report.total_tests,
            folds=len(oos_result.fold_results),
        )

        return report

    def _analyze_full_history(
        self,
        bars,
        backtest_config: Any,
        cancel_event: Optional[Event],
    ) -> Optional[PerformanceAnalysis]:
        """Backtest the whole series once; a failure here does not fail validation."""
        if cancel_event is not None and cancel_event.is_set():
            raise AnalysisCancelledError("Validation cancelled before full-history backtest")

        try:
            baseline = self.runner.run(bars, backtest_config)
        except BacktestRunError as e:
            logger.warning("full_history_backtest_failed", error=str(e))
            return None

        return analyze_performance(baseline, bars)
