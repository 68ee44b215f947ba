"""
Tests for fold aggregation and significance testing.
"""

import pytest
import numpy as np
from datetime import datetime, timedelta
from scipy import stats

from strategy_validation.backtesting.metrics import (
    AggregatedMetrics,
    FoldResult,
    Period,
    aggregate_fold_results,
    calculate_degradation,
    calculate_efficiency,
    pearson_correlation,
)
from strategy_validation.backtesting.runner import BacktestResult
from strategy_validation.backtesting.statistics import (
    CI_CRITICAL_VALUE,
    run_significance_test,
    two_tailed_p_value,
)


def make_fold(fold_id, train_return, test_return):
    start = datetime(2020, 1, 1) + timedelta(days=100 * fold_id)

    def result(ret):
        return BacktestResult(
            total_return_percent=ret,
            sharpe_ratio=1.0,
            win_rate=0.5,
            total_trades=10,
            max_drawdown_percent=2.0,
        )

    return FoldResult(
        fold_id=fold_id,
        train_period=Period(start, start + timedelta(days=69)),
        test_period=Period(start + timedelta(days=70), start + timedelta(days=99)),
        train_result=result(train_return),
        test_result=result(test_return),
        efficiency=calculate_efficiency(train_return, test_return),
        degradation=calculate_degradation(train_return, test_return),
    )


class TestFoldMetrics:
    def test_efficiency_and_degradation(self):
        assert calculate_efficiency(10, 5) == 0.5
        assert calculate_degradation(10, 5) == 50.0

    def test_zero_train_return(self):
        assert calculate_efficiency(0, 5) == 0.0
        assert calculate_degradation(0, 5) == 0.0

    def test_negative_train_return_has_no_degradation(self):
        assert calculate_degradation(-5, 3) == 0.0
        assert calculate_efficiency(-5, 5) == -1.0

    def test_flat_test_after_losing_train_is_positive_zero(self):
        efficiency = calculate_efficiency(-5, 0)

        assert efficiency == 0.0
        assert not np.signbit(efficiency)

    def test_pearson_undefined_cases(self):
        assert pearson_correlation([1, 2], [1, 2, 3]) == 0.0
        assert pearson_correlation([1], [1]) == 0.0
        assert pearson_correlation([1, 1, 1], [1, 2, 3]) == 0.0

    def test_pearson_perfect(self):
        assert pearson_correlation([1, 2, 3], [2, 4, 6]) == pytest.approx(1.0)
        assert pearson_correlation([1, 2, 3], [3, 2, 1]) == pytest.approx(-1.0)


class TestAggregation:
    def test_zero_folds_all_zero(self):
        assert aggregate_fold_results([]) == AggregatedMetrics()

    def test_identical_train_and_test(self):
        """A strategy that performs identically out of sample is perfectly consistent."""
        folds = [make_fold(i, r, r) for i, r in enumerate([5.0, 10.0, 15.0], start=1)]
        metrics = aggregate_fold_results(folds)

        assert metrics.consistency_score == 1.0
        assert metrics.overfit_probability == 0.0
        assert metrics.avg_efficiency == pytest.approx(1.0)
        assert metrics.avg_degradation == pytest.approx(0.0)
        assert metrics.train_test_correlation == pytest.approx(1.0)

    def test_overfit_and_consistency_counts(self):
        folds = [
            make_fold(1, 10.0, 4.0),    # overfit: below half of train
            make_fold(2, 10.0, 6.0),    # fine
            make_fold(3, -5.0, -10.0),  # negative train never counts as overfit
        ]
        metrics = aggregate_fold_results(folds)

        assert metrics.overfit_probability == pytest.approx(1 / 3)
        assert metrics.consistency_score == 1.0
        assert metrics.avg_train_return == pytest.approx(5.0)
        assert metrics.avg_test_return == pytest.approx(0.0)
        assert metrics.robustness_score == 0.0

    def test_sign_disagreement_lowers_consistency(self):
        folds = [make_fold(1, 10.0, -2.0), make_fold(2, -3.0, 4.0), make_fold(3, 8.0, 6.0)]
        assert aggregate_fold_results(folds).consistency_score == pytest.approx(1 / 3)

    def test_robustness_score(self):
        folds = [make_fold(i, 10.0, r) for i, r in enumerate([-2.0, 1.0, 10.0], start=1)]
        metrics = aggregate_fold_results(folds)

        assert metrics.robustness_score == pytest.approx(3 / np.sqrt(39))

    def test_robustness_score_capped_at_one(self):
        folds = [make_fold(i, 10.0, r) for i, r in enumerate([9.0, 10.0, 11.0], start=1)]
        assert aggregate_fold_results(folds).robustness_score == 1.0

    def test_zero_variance_test_returns(self):
        folds = [make_fold(i, 10.0, 10.0) for i in range(1, 4)]
        metrics = aggregate_fold_results(folds)

        assert metrics.robustness_score == 0.0
        assert metrics.train_test_correlation == 0.0


class TestSignificance:
    def test_fewer_than_two_folds_is_neutral(self):
        for returns in ([], [5.0]):
            result = run_significance_test(returns)
            assert result.t_statistic == 0.0
            assert result.p_value == 1.0
            assert result.confidence_interval == (0.0, 0.0)
            assert result.significant_outperformance is False

    def test_zero_variance(self):
        result = run_significance_test([2.0, 2.0, 2.0])

        assert result.t_statistic == 0.0
        assert result.p_value == 1.0
        assert result.confidence_interval == (2.0, 2.0)

    def test_exact_t_distribution(self):
        result = run_significance_test([1.0, 2.0, 3.0, 4.0, 5.0])

        se = np.sqrt(2.5) / np.sqrt(5)
        t = 3.0 / se
        assert result.degrees_of_freedom == 4
        assert result.t_statistic == pytest.approx(t)
        assert result.p_value == pytest.approx(2 * stats.t.sf(t, 4))
        assert result.significant_outperformance is True
        assert result.confidence_interval[0] == pytest.approx(3.0 - CI_CRITICAL_VALUE * se)
        assert result.confidence_interval[1] == pytest.approx(3.0 + CI_CRITICAL_VALUE * se)

    def test_significant_loss_is_not_outperformance(self):
        result = run_significance_test([-1.0, -2.0, -3.0, -4.0, -5.0])

        assert result.p_value < 0.05
        assert result.significant_outperformance is False

    def test_noisy_returns_not_significant(self):
        result = run_significance_test([10.0, -9.0, 8.0, -11.0])
        assert result.p_value > 0.05

    def test_p_value_bounds(self):
        assert two_tailed_p_value(0.0, 10) == 1.0
        assert two_tailed_p_value(3.0, 0) == 1.0
        assert 0.0 <= two_tailed_p_value(50.0, 3) < 0.001
