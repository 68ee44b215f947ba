"""
Out-of-sample analysis integration tests.

Tests complete scenarios from candles -> folds -> backtests -> aggregate
-> significance -> regimes.
"""

import threading

import pytest
import numpy as np

from strategy_validation.config import OutOfSampleConfig
from strategy_validation.exceptions import (
    AllFoldsFailedError,
    AnalysisCancelledError,
    CandleValidationError,
)
from strategy_validation.backtesting.engine import BacktestConfig, reference_engine_factory
from strategy_validation.backtesting.runner import BacktestRunnerAdapter
from strategy_validation.backtesting.walk_forward import OutOfSampleAnalyzer


class TestOutOfSampleFlow:
    """End-to-end out-of-sample analysis with stub engines."""

    def test_constant_strategy_walk_forward(self, rising_candles, constant_factory):
        """A strategy that makes 10% in every window generalizes perfectly."""
        analyzer = OutOfSampleAnalyzer(BacktestRunnerAdapter(constant_factory(10.0)))

        result = analyzer.analyze(rising_candles, {})

        assert len(result.fold_results) >= 1
        assert result.aggregated_metrics.avg_efficiency == pytest.approx(1.0)
        assert result.aggregated_metrics.avg_degradation == pytest.approx(0.0)
        assert result.aggregated_metrics.consistency_score == 1.0
        assert result.aggregated_metrics.overfit_probability == 0.0

    def test_constant_strategy_k_fold(self, rising_candles, constant_factory):
        analyzer = OutOfSampleAnalyzer(
            BacktestRunnerAdapter(constant_factory(10.0)),
            OutOfSampleConfig(method="k_fold", num_folds=5),
        )

        result = analyzer.analyze(rising_candles, {})

        assert len(result.fold_results) == 5
        assert result.statistical_tests.p_value == 1.0
        assert result.statistical_tests.confidence_interval == (10.0, 10.0)
        assert result.regime_analysis is not None
        assert [p.regime for p in result.regime_analysis.performance_by_regime] == ["Low Vol Bull"]

    def test_fold_periods_match_windows(self, rising_candles, constant_factory):
        analyzer = OutOfSampleAnalyzer(
            BacktestRunnerAdapter(constant_factory()),
            OutOfSampleConfig(method="rolling", min_train_days=180, step_size=30),
        )

        result = analyzer.analyze(rising_candles, {})
        timestamps = rising_candles["timestamp"]
        first = result.fold_results[0]

        assert first.train_period.start == timestamps.iloc[0]
        assert first.train_period.end == timestamps.iloc[179]
        assert first.test_period.start == timestamps.iloc[180]
        assert first.test_period.end == timestamps.iloc[209]
        assert first.train_period.end < first.test_period.start

    def test_windows_never_overlap(self, rising_candles, stub_factory, make_result):
        """The engine never sees a test bar while training."""
        lock = threading.Lock()
        windows = []

        def record(candles, config):
            with lock:
                windows.append(set(candles["timestamp"]))
            return make_result(1.0)

        analyzer = OutOfSampleAnalyzer(
            BacktestRunnerAdapter(stub_factory(record)),
            OutOfSampleConfig(method="combinatorial_purged", embargo_period=5),
        )
        analyzer.analyze(rising_candles, {})

        # windows alternate train, test per fold
        for train, test in zip(windows[::2], windows[1::2]):
            assert not train & test

    def test_parallel_matches_sequential(self, random_walk_candles):
        runner = BacktestRunnerAdapter(reference_engine_factory)
        config = BacktestConfig()

        sequential = OutOfSampleAnalyzer(
            runner, OutOfSampleConfig(method="anchored", min_train_days=120, step_size=60),
        ).analyze(random_walk_candles, config)
        parallel = OutOfSampleAnalyzer(
            runner, OutOfSampleConfig(method="anchored", min_train_days=120, step_size=60, max_workers=4),
        ).analyze(random_walk_candles, config)

        assert [r.fold_id for r in parallel.fold_results] == [r.fold_id for r in sequential.fold_results]
        assert parallel.aggregated_metrics == sequential.aggregated_metrics
        assert parallel.statistical_tests == sequential.statistical_tests

    def test_progress_reported(self, rising_candles, constant_factory):
        progress = []
        analyzer = OutOfSampleAnalyzer(
            BacktestRunnerAdapter(constant_factory()),
            OutOfSampleConfig(method="k_fold"),
        )

        analyzer.analyze(rising_candles, {}, progress_callback=lambda done, total: progress.append((done, total)))

        assert progress[-1] == (5, 5)


class TestOutOfSampleFailures:
    """Degraded and failing inputs."""

    def test_failed_fold_skipped(self, rising_candles, stub_factory, make_result):
        broken_start = rising_candles["timestamp"].iloc[200]

        def fails_on_second_fold(candles, config):
            # fold 2 test window; fold 1 train also starts there but is 800 bars
            if candles["timestamp"].iloc[0] == broken_start and len(candles) == 200:
                raise RuntimeError("engine crashed")
            return make_result(5.0)

        analyzer = OutOfSampleAnalyzer(
            BacktestRunnerAdapter(stub_factory(fails_on_second_fold)),
            OutOfSampleConfig(method="k_fold", num_folds=5),
        )

        result = analyzer.analyze(rising_candles, {})

        assert result.candidate_folds == 5
        assert result.failed_folds == 1
        assert [r.fold_id for r in result.fold_results] == [1, 3, 4, 5]

    def test_all_folds_failed(self, rising_candles, stub_factory):
        def always_fails(candles, config):
            raise RuntimeError("no data")

        analyzer = OutOfSampleAnalyzer(
            BacktestRunnerAdapter(stub_factory(always_fails)),
            OutOfSampleConfig(method="k_fold"),
        )

        with pytest.raises(AllFoldsFailedError) as exc_info:
            analyzer.analyze(rising_candles, {})
        assert exc_info.value.failed_folds == 5

    def test_insufficient_data_is_empty_result(self, candle_factory, constant_factory):
        analyzer = OutOfSampleAnalyzer(BacktestRunnerAdapter(constant_factory()))

        result = analyzer.analyze(candle_factory(np.linspace(100, 105, 40)), {})

        assert result.fold_results == []
        assert not result.has_signal
        assert result.aggregated_metrics.avg_test_return == 0.0
        assert result.statistical_tests.p_value == 1.0

    def test_invalid_candles_rejected(self, candle_factory, constant_factory):
        candles = candle_factory(np.linspace(100, 105, 100))
        candles.loc[50, "timestamp"] = candles.loc[49, "timestamp"]
        analyzer = OutOfSampleAnalyzer(BacktestRunnerAdapter(constant_factory()))

        with pytest.raises(CandleValidationError):
            analyzer.analyze(candles, {})

    def test_cancellation(self, rising_candles, constant_factory):
        cancel = threading.Event()
        cancel.set()
        analyzer = OutOfSampleAnalyzer(
            BacktestRunnerAdapter(constant_factory()),
            OutOfSampleConfig(method="k_fold"),
        )

        with pytest.raises(AnalysisCancelledError):
            analyzer.analyze(rising_candles, {}, cancel_event=cancel)

    def test_regimes_disabled(self, rising_candles, constant_factory):
        analyzer = OutOfSampleAnalyzer(
            BacktestRunnerAdapter(constant_factory()),
            OutOfSampleConfig(detect_regimes=False),
        )

        assert analyzer.analyze(rising_candles, {}).regime_analysis is None
