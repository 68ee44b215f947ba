"""
Out-of-sample analysis.

CRITICAL: an in-sample backtest says nothing about a strategy's future.
This module backtests every fold's train window and (never seen) test
window separately and compares them.

Protocol:
- Validate candles (fail fast on malformed input)
- Generate folds (walk_forward, k_fold, combinatorial_purged, rolling, anchored)
- Backtest train and test windows per fold, each on a fresh engine
- Aggregate, significance-test and regime-attribute the fold results

A fold whose backtest fails is skipped and counted. Only when every
candidate fold fails does the analysis itself fail.
"""

from dataclasses import dataclass, field
from threading import Event
from typing import Any, Optional
import structlog

import pandas as pd

from strategy_validation.config import OutOfSampleConfig
from strategy_validation.data.candles import CandleInput, validate_candles
from strategy_validation.exceptions import AllFoldsFailedError
from strategy_validation.backtesting.execution import ProgressCallback, run_tasks
from strategy_validation.backtesting.folds import FoldGenerator, FoldPlan
from strategy_validation.backtesting.metrics import (
    AggregatedMetrics,
    FoldResult,
    Period,
    aggregate_fold_results,
    calculate_degradation,
    calculate_efficiency,
)
from strategy_validation.backtesting.runner import BacktestRunnerAdapter
from strategy_validation.backtesting.statistics import StatisticalTests, run_significance_test
from strategy_validation.regime.detector import RegimeAnalysis, RegimeDetector

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OutOfSampleResult:
    """Complete out-of-sample analysis for one strategy/config."""
    method: str
    fold_results: list[FoldResult]
    aggregated_metrics: AggregatedMetrics
    statistical_tests: StatisticalTests
    regime_analysis: Optional[RegimeAnalysis] = None

    # Execution bookkeeping
    candidate_folds: int = 0
    failed_folds: int = 0
    fold_errors: list[str] = field(default_factory=list)

    @property
    def has_signal(self) -> bool:
        """False when no fold survived (insufficient data)."""
        return len(self.fold_results) > 0

    def to_dict(self) -> dict:
        return {
            "method": self.method,
            "fold_results": [r.to_dict() for r in self.fold_results],
            "aggregated_metrics": self.aggregated_metrics.to_dict(),
            "statistical_tests": self.statistical_tests.to_dict(),
            "regime_analysis": self.regime_analysis.to_dict() if self.regime_analysis else None,
            "candidate_folds": self.candidate_folds,
            "failed_folds": self.failed_folds,
        }


class OutOfSampleAnalyzer:
    """
    Out-of-sample validation framework.

    Key principles:
    - Test data NEVER seen during training (purge/embargo applied)
    - One fresh backtest engine per window
    - No state carried between calls; every analyze() is independent
    """

    def __init__(
        self,
        runner: BacktestRunnerAdapter,
        config: Optional[OutOfSampleConfig] = None,
        regime_detector: Optional[RegimeDetector] = None,
    ):
        """
        Initialize analyzer.

        Args:
            runner: Adapter around the backtest engine
            config: Analysis config (defaults to walk_forward)
            regime_detector: Regime detector (defaults to 20-bar window)
        """
        self.runner = runner
        self.config = config or OutOfSampleConfig()
        self.regime_detector = regime_detector or RegimeDetector()

    def analyze(
        self,
        candles: CandleInput,
        backtest_config: Any,
        cancel_event: Optional[Event] = None,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> OutOfSampleResult:
        """
        Run out-of-sample analysis.

        Args:
            candles: Candle series (DataFrame or list of bars)
            backtest_config: Strategy config passed through to the engine
            cancel_event: Set to cancel between folds
            progress_callback: Called with (completed_folds, total_folds)

        Returns:
            OutOfSampleResult (empty fold list when data is insufficient)

        Raises:
            CandleValidationError: malformed candles
            AllFoldsFailedError: every candidate fold failed to backtest
            AnalysisCancelledError: cancel_event was set
        """
        bars = validate_candles(candles)
        plans = FoldGenerator(self.config).generate(bars)

        logger.info(
            "out_of_sample_analysis_starting",
            method=self.config.method,
            bars=len(bars),
            num_folds=len(plans),
        )

        tasks = [
            (lambda plan=plan: self._run_fold(bars, plan, backtest_config))
            for plan in plans
        ]
        outcomes = run_tasks(
            tasks,
            max_workers=self.config.max_workers,
            cancel_event=cancel_event,
            progress_callback=progress_callback,
            label="fold",
        )

        fold_results = []
        errors = []
        for plan, outcome in zip(plans, outcomes):
            if outcome.ok:
                fold_results.append(outcome.result)
                continue
            errors.append(str(outcome.error))
            logger.error(
                "fold_backtest_failed",
                fold_id=plan.fold_id,
                error=str(outcome.error),
            )

        if plans and not fold_results:
            raise AllFoldsFailedError(len(errors), errors)

        aggregated = aggregate_fold_results(fold_results)
        statistical_tests = run_significance_test(r.test_return for r in fold_results)
        regime_analysis = (
            self.regime_detector.analyze(bars, fold_results)
            if self.config.detect_regimes
            else None
        )

        logger.info(
            "out_of_sample_analysis_complete",
            method=self.config.method,
            total_folds=len(fold_results),
            failed_folds=len(errors),
            avg_test_return=aggregated.avg_test_return,
            p_value=statistical_tests.p_value,
        )

        return OutOfSampleResult(
            method=self.config.method,
            fold_results=fold_results,
            aggregated_metrics=aggregated,
            statistical_tests=statistical_tests,
            regime_analysis=regime_analysis,
            candidate_folds=len(plans),
            failed_folds=len(errors),
            fold_errors=errors,
        )

    def _run_fold(
        self,
        bars: pd.DataFrame,
        plan: FoldPlan,
        backtest_config: Any,
    ) -> FoldResult:
        """Backtest one fold's train and test windows."""
        train_bars = plan.train_window(bars)
        test_bars = plan.test_window(bars)

        train_result = self.runner.run(train_bars, backtest_config)
        test_result = self.runner.run(test_bars, backtest_config)

        train_return = train_result.total_return_percent
        test_return = test_result.total_return_percent

        result = FoldResult(
            fold_id=plan.fold_id,
            train_period=Period(train_bars["timestamp"].iloc[0], train_bars["timestamp"].iloc[-1]),
            test_period=Period(test_bars["timestamp"].iloc[0], test_bars["timestamp"].iloc[-1]),
            train_result=train_result,
            test_result=test_result,
            efficiency=calculate_efficiency(train_return, test_return),
            degradation=calculate_degradation(train_return, test_return),
        )

        logger.info(
            "fold_complete",
            fold_id=plan.fold_id,
            train_period=str(result.train_period),
            test_period=str(result.test_period),
            train_return=train_return,
            test_return=test_return,
            efficiency=result.efficiency,
        )

        return result
