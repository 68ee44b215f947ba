"""
Comprehensive tests for fold generation and purge/embargo.

Every methodology must produce disjoint train/test sets with no training
bar inside a purge or embargo zone.
"""

import pytest
import numpy as np

from strategy_validation.config import OutOfSampleConfig
from strategy_validation.backtesting.folds import FoldGenerator
from strategy_validation.backtesting.purge import apply_purge_embargo, exclusion_zones


def generate(candles, **overrides):
    return FoldGenerator(OutOfSampleConfig(**overrides)).generate(candles)


class TestFoldInvariants:
    """Properties that hold for every methodology."""

    @pytest.mark.parametrize("method", [
        "walk_forward", "k_fold", "combinatorial_purged", "rolling", "anchored",
    ])
    def test_train_and_test_disjoint(self, rising_candles, method):
        plans = generate(
            rising_candles, method=method, train_ratio=0.6, embargo_period=5, purge_period=5,
        )

        assert len(plans) > 0
        for plan in plans:
            assert len(np.intersect1d(plan.train_indices, plan.test_indices)) == 0

    @pytest.mark.parametrize("method", [
        "walk_forward", "k_fold", "combinatorial_purged", "rolling", "anchored",
    ])
    def test_minimum_sizes_and_ids(self, rising_candles, method):
        plans = generate(rising_candles, method=method)

        assert [p.fold_id for p in plans] == list(range(1, len(plans) + 1))
        for plan in plans:
            assert plan.train_size >= 50
            assert plan.test_size >= 20

    @pytest.mark.parametrize("method", ["k_fold", "combinatorial_purged", "rolling", "anchored"])
    def test_no_training_bar_in_exclusion_zone(self, rising_candles, method):
        plans = generate(rising_candles, method=method, embargo_period=7, purge_period=3)

        for plan in plans:
            for zone in exclusion_zones(list(plan.test_segments), 3, 7, len(rising_candles)):
                in_zone = (plan.train_indices >= zone.start) & (plan.train_indices < zone.stop)
                assert not in_zone.any()

    def test_insufficient_data_returns_no_folds(self, candle_factory):
        """60 bars cannot hold a 50-bar train and 20-bar test at 70/30."""
        plans = generate(candle_factory(np.linspace(100, 110, 60)))
        assert plans == []

    def test_empty_series_returns_no_folds(self, candle_factory):
        assert generate(candle_factory([])) == []


class TestWalkForward:
    def test_default_split_is_single_fold(self, rising_candles):
        plans = generate(rising_candles)

        assert len(plans) == 1
        assert plans[0].train_indices[0] == 0
        assert plans[0].train_indices[-1] == 699
        assert plans[0].test_indices[0] == 700
        assert plans[0].test_indices[-1] == 999

    def test_embargo_leaves_gap_between_train_and_test(self, rising_candles):
        plans = generate(
            rising_candles, train_ratio=0.5, test_ratio=0.2, embargo_period=10, step_size=30,
        )

        assert len(plans) == 10
        for plan in plans:
            assert plan.train_size == 500
            assert plan.test_size == 200
            assert plan.test_indices.min() - plan.train_indices.max() - 1 == 10

    def test_windows_slide_by_step(self, rising_candles):
        plans = generate(rising_candles, train_ratio=0.5, test_ratio=0.2, step_size=30)
        starts = [int(p.train_indices[0]) for p in plans]

        assert starts == list(range(0, 301, 30))


class TestKFold:
    def test_test_folds_partition_series(self, rising_candles):
        plans = generate(rising_candles, method="k_fold", num_folds=5)

        assert len(plans) == 5
        all_test = np.sort(np.concatenate([p.test_indices for p in plans]))
        np.testing.assert_array_equal(all_test, np.arange(1000))
        for plan in plans:
            assert plan.train_size == 800

    def test_last_fold_takes_remainder(self, candle_factory):
        candles = candle_factory(np.linspace(100, 200, 1003))
        plans = generate(candles, method="k_fold", num_folds=5)

        assert plans[-1].test_size == 203
        assert plans[0].test_size == 200

    def test_purge_and_embargo_sizes(self, rising_candles):
        plans = generate(rising_candles, method="k_fold", num_folds=5, purge_period=5, embargo_period=5)

        # Edge folds lose one zone, inner folds lose both
        assert [p.train_size for p in plans] == [795, 790, 790, 790, 795]


class TestCombinatorialPurged:
    def test_every_pair_of_folds(self, rising_candles):
        plans = generate(rising_candles, method="combinatorial_purged", num_folds=5)

        assert len(plans) == 10
        for plan in plans:
            assert len(plan.test_segments) == 2
            assert plan.test_size == 400
            assert plan.train_size == 600

    def test_separated_pair_excludes_both_zones(self, rising_candles):
        plans = generate(
            rising_candles, method="combinatorial_purged", num_folds=5,
            purge_period=10, embargo_period=10,
        )
        plan = next(p for p in plans if p.test_segments == ((0, 200), (400, 600)))

        # embargo [200, 210), purge [390, 400), embargo [600, 610)
        assert plan.train_size == 600 - 30

    def test_adjacent_pair_zones_not_double_counted(self, rising_candles):
        plans = generate(
            rising_candles, method="combinatorial_purged", num_folds=5,
            purge_period=10, embargo_period=10,
        )
        plan = next(p for p in plans if p.test_segments == ((0, 200), (200, 400)))

        # Zones between the two segments fall inside the test set; only [400, 410) is lost
        assert plan.train_size == 590


class TestRollingAndAnchored:
    def test_rolling_fixed_window(self, rising_candles):
        plans = generate(rising_candles, method="rolling", min_train_days=180, step_size=30)

        assert len(plans) == 27
        for plan in plans:
            assert plan.train_size == 180
            assert plan.test_size == 30
            assert plan.test_indices[0] == plan.train_indices[-1] + 1

    def test_anchored_expanding_window(self, rising_candles):
        plans = generate(rising_candles, method="anchored", min_train_days=180, step_size=30)

        assert len(plans) == 27
        assert all(p.train_indices[0] == 0 for p in plans)
        assert [p.train_size for p in plans[:3]] == [180, 210, 240]

    def test_periods_in_days_convert_for_hourly_bars(self, candle_factory):
        candles = candle_factory(np.linspace(100, 120, 480), freq="h")
        plans = generate(candles, method="rolling", min_train_days=10, step_size=1)

        assert len(plans) == 10
        assert plans[0].train_size == 240
        assert plans[0].test_size == 24


class TestPurgeEmbargo:
    def test_zones_clipped_at_series_edges(self):
        zones = exclusion_zones([(0, 10), (90, 100)], purge_bars=5, embargo_bars=5, n_bars=100)

        assert [(z.start, z.stop, z.kind) for z in zones] == [
            (10, 15, "embargo"),
            (85, 90, "purge"),
        ]

    def test_apply_removes_test_and_zones(self):
        train = np.arange(100)
        result = apply_purge_embargo(train, [(40, 60)], purge_bars=5, embargo_bars=3, n_bars=100)

        expected = np.concatenate([np.arange(0, 35), np.arange(63, 100)])
        np.testing.assert_array_equal(result, expected)

    def test_zero_periods_only_remove_test(self):
        train = np.arange(50)
        result = apply_purge_embargo(train, [(10, 20)], 0, 0, 50)

        assert len(result) == 40
