"""
Strategy validator integration tests.

Runs the full pipeline (out-of-sample, robustness, Monte Carlo) against
stub engines and the reference engine.
"""

import json

import pytest

from strategy_validation.config import (
    MonteCarloConfig,
    OutOfSampleConfig,
    RobustnessConfig,
    ValidationSettings,
)
from strategy_validation.backtesting.engine import BacktestConfig, reference_engine_factory
from strategy_validation.backtesting.metrics import AggregatedMetrics
from strategy_validation.backtesting.statistics import StatisticalTests
from strategy_validation.backtesting.walk_forward import OutOfSampleResult
from strategy_validation.stress_testing.robustness import RobustnessTestResult
from strategy_validation.validator import StrategyValidator, determine_verdict


def settings(method="k_fold", num_runs=20):
    return ValidationSettings(
        out_of_sample=OutOfSampleConfig(method=method),
        monte_carlo=MonteCarloConfig(num_runs=num_runs, seed=42),
        robustness=RobustnessConfig(),
    )


def check(name, passed):
    return RobustnessTestResult(test_name=name, passed=passed, score=1.0 if passed else 0.0, details="")


ALL_CHECKS = [
    "Consistency Test",
    "Parameter Sensitivity",
    "Regime Robustness",
    "Sample Size Adequacy",
    "Overfit Detection",
]


class TestStrategyValidator:
    def test_constant_strategy_report(self, rising_candles, constant_factory):
        validator = StrategyValidator(constant_factory(10.0), settings())

        report = validator.validate(rising_candles, {"position_size_percent": 10.0})

        assert report.total_tests == 5
        # identical returns in every fold: no train/test correlation to measure
        failed = [t.test_name for t in report.robustness_tests if not t.passed]
        assert failed == ["Consistency Test"]
        assert report.passed_tests == 4
        assert report.verdict.startswith("MARGINAL")
        assert not report.is_valid
        assert len(report.monte_carlo.runs) == 20

    def test_skip_monte_carlo(self, rising_candles, constant_factory):
        validator = StrategyValidator(constant_factory(10.0), settings())

        report = validator.validate(rising_candles, {"position_size_percent": 10.0}, run_monte_carlo=False)

        assert report.monte_carlo is None
        assert report.to_dict()["monte_carlo"] is None

    def test_reference_engine_report_serializes(self, random_walk_candles):
        validator = StrategyValidator(reference_engine_factory, settings(method="rolling", num_runs=10))

        report = validator.validate(random_walk_candles, BacktestConfig())
        payload = json.loads(json.dumps(report.to_dict(), default=str))

        assert payload["total_tests"] == 5
        assert payload["verdict"] == report.verdict
        assert len(payload["robustness_tests"]) == 5
        assert payload["monte_carlo"]["runs"] == 10
        assert payload["performance"]["benchmark"]["benchmark"] == "Buy & Hold"
        assert report.performance.drawdowns.max_drawdown_percent >= 0

    def test_engine_without_equity_curve_has_no_performance(self, rising_candles, constant_factory):
        report = StrategyValidator(constant_factory(10.0), settings()).validate(
            rising_candles, {"position_size_percent": 10.0}, run_monte_carlo=False,
        )

        assert report.performance is None
        assert report.to_dict()["performance"] is None

    def test_full_history_failure_still_reports(self, rising_candles, stub_factory, make_result):
        def fails_on_full_series(candles, config):
            if len(candles) == len(rising_candles):
                raise RuntimeError("engine crashed")
            return make_result(5.0)

        validator = StrategyValidator(stub_factory(fails_on_full_series), settings())

        report = validator.validate(rising_candles, {"position_size_percent": 10.0}, run_monte_carlo=False)

        assert report.performance is None
        assert report.total_tests == 5

    def test_insufficient_data(self, candle_factory, constant_factory):
        validator = StrategyValidator(constant_factory(), settings())

        report = validator.validate(candle_factory([100.0] * 40), {"position_size_percent": 10.0}, run_monte_carlo=False)

        assert report.verdict.startswith("INSUFFICIENT DATA")


class TestVerdict:
    def result(self, folds=5, p_value=0.01):
        return OutOfSampleResult(
            method="k_fold",
            fold_results=[object()] * folds,
            aggregated_metrics=AggregatedMetrics(),
            statistical_tests=StatisticalTests(p_value=p_value),
        )

    def test_pass(self):
        verdict = determine_verdict(self.result(), [check(n, True) for n in ALL_CHECKS])
        assert verdict.startswith("PASS")

    def test_overfit_fails_outright(self):
        tests = [check(n, n != "Overfit Detection") for n in ALL_CHECKS]
        assert determine_verdict(self.result(), tests).startswith("FAIL")

    def test_majority_failed(self):
        tests = [check(n, n == "Overfit Detection") for n in ALL_CHECKS]
        assert determine_verdict(self.result(), tests) == "FAIL - Only 1/5 robustness tests passed"

    def test_not_significant_is_marginal(self):
        verdict = determine_verdict(self.result(p_value=0.2), [check(n, True) for n in ALL_CHECKS])
        assert verdict.startswith("MARGINAL")

    def test_no_folds(self):
        verdict = determine_verdict(self.result(folds=0), [check(n, True) for n in ALL_CHECKS])
        assert verdict.startswith("INSUFFICIENT DATA")
