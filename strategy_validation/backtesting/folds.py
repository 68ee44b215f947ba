"""
Fold generation.

Five resampling methodologies turn one candle series into train/test
plans. Folds are positional index sets into the series:
- walk_forward: fixed-ratio train then test, sliding by step_size
- k_fold: contiguous folds, each tested against all the others
- combinatorial_purged: every pair of folds as a joint test set
- rolling: fixed-size train window sliding ahead of a fixed test window
- anchored: train window pinned to the series start and expanding

Purge/embargo is applied to every methodology. Candidate folds below the
minimum sizes are dropped, never raised: sparse data degrades to fewer
folds rather than an error.
"""

from dataclasses import dataclass, field
from itertools import combinations
import structlog

import numpy as np
import pandas as pd

from strategy_validation.config import OutOfSampleConfig
from strategy_validation.data.candles import bars_per_day, days_to_bars
from strategy_validation.backtesting.purge import apply_purge_embargo

logger = structlog.get_logger(__name__)


MIN_TRAIN_BARS = 50
MIN_TEST_BARS = 20


@dataclass(frozen=True, eq=False)
class FoldPlan:
    """A single train/test split of the series."""
    fold_id: int
    train_indices: np.ndarray = field(repr=False)
    test_indices: np.ndarray = field(repr=False)
    test_segments: tuple[tuple[int, int], ...] = ()

    @property
    def train_size(self) -> int:
        return int(len(self.train_indices))

    @property
    def test_size(self) -> int:
        return int(len(self.test_indices))

    def train_window(self, candles: pd.DataFrame) -> pd.DataFrame:
        """Training candles, in time order."""
        return candles.iloc[self.train_indices].reset_index(drop=True)

    def test_window(self, candles: pd.DataFrame) -> pd.DataFrame:
        """Test candles, in time order."""
        return candles.iloc[self.test_indices].reset_index(drop=True)


@dataclass(frozen=True)
class _Candidate:
    train_indices: np.ndarray
    test_segments: tuple[tuple[int, int], ...]


class FoldGenerator:
    """
    Builds fold plans for the configured methodology.

    Guarantees for every returned plan:
    - Train and test indices are disjoint
    - No training bar falls inside a purge or embargo zone
    - train_size >= 50 and test_size >= 20
    """

    def __init__(
        self,
        config: OutOfSampleConfig,
        min_train_bars: int = MIN_TRAIN_BARS,
        min_test_bars: int = MIN_TEST_BARS,
    ):
        self.config = config
        self.min_train_bars = min_train_bars
        self.min_test_bars = min_test_bars

    def generate(self, candles: pd.DataFrame) -> list[FoldPlan]:
        """
        Generate fold plans for a validated candle series.

        Args:
            candles: Validated candle DataFrame

        Returns:
            List of FoldPlan, fold ids consecutive from 1 (may be empty)
        """
        n = len(candles)
        per_day = bars_per_day(candles)

        builders = {
            "walk_forward": self._walk_forward,
            "k_fold": self._k_fold,
            "combinatorial_purged": self._combinatorial_purged,
            "rolling": self._rolling,
            "anchored": self._anchored,
        }
        candidates = builders[self.config.method](n, per_day) if n > 0 else []

        purge_bars = days_to_bars(self.config.purge_period, per_day)
        embargo_bars = days_to_bars(self.config.embargo_period, per_day)

        plans = []
        discarded = 0
        for candidate in candidates:
            train = apply_purge_embargo(
                candidate.train_indices,
                list(candidate.test_segments),
                purge_bars,
                embargo_bars,
                n,
            )
            test = np.concatenate(
                [np.arange(start, stop) for start, stop in candidate.test_segments]
            ) if candidate.test_segments else np.array([], dtype=int)

            if len(train) < self.min_train_bars or len(test) < self.min_test_bars:
                discarded += 1
                logger.debug(
                    "fold_skipped_insufficient_data",
                    train_bars=len(train),
                    test_bars=len(test),
                )
                continue

            plans.append(FoldPlan(
                fold_id=len(plans) + 1,
                train_indices=train,
                test_indices=test,
                test_segments=candidate.test_segments,
            ))

        if not plans:
            logger.warning(
                "no_valid_folds_generated",
                method=self.config.method,
                bars=n,
                candidates=len(candidates),
            )
        else:
            logger.info(
                "folds_generated",
                method=self.config.method,
                count=len(plans),
                discarded=discarded,
                bars_per_day=per_day,
                purge_bars=purge_bars,
                embargo_bars=embargo_bars,
            )

        return plans

    def _step_bars(self, per_day: int) -> int:
        return max(1, days_to_bars(self.config.step_size, per_day))

    def _walk_forward(self, n: int, per_day: int) -> list[_Candidate]:
        """Fixed-ratio train, optional embargo gap, then test; slide by step."""
        train_size = int(np.floor(n * self.config.train_ratio))
        test_size = int(np.floor(n * self.config.test_ratio))
        gap = days_to_bars(self.config.embargo_period, per_day)
        step = self._step_bars(per_day)

        candidates = []
        start = 0
        while start + train_size + gap + test_size <= n:
            test_start = start + train_size + gap
            candidates.append(_Candidate(
                train_indices=np.arange(start, start + train_size),
                test_segments=((test_start, test_start + test_size),),
            ))
            start += step
        return candidates

    def _fold_bounds(self, n: int) -> list[tuple[int, int]]:
        """Contiguous fold ranges; the last fold absorbs the remainder."""
        k = self.config.num_folds
        fold_size = n // k
        if fold_size == 0:
            return []
        bounds = []
        for i in range(k):
            start = i * fold_size
            stop = n if i == k - 1 else (i + 1) * fold_size
            bounds.append((start, stop))
        return bounds

    def _k_fold(self, n: int, per_day: int) -> list[_Candidate]:
        """Test on fold k, train on all other folds in time order."""
        bounds = self._fold_bounds(n)
        candidates = []
        for start, stop in bounds:
            train = np.concatenate([np.arange(0, start), np.arange(stop, n)])
            candidates.append(_Candidate(train_indices=train, test_segments=((start, stop),)))
        return candidates

    def _combinatorial_purged(self, n: int, per_day: int) -> list[_Candidate]:
        """Every pair of folds forms a joint test set; the rest trains."""
        bounds = self._fold_bounds(n)
        candidates = []
        for i, j in combinations(range(len(bounds)), 2):
            segments = (bounds[i], bounds[j])
            train_parts = [
                np.arange(start, stop)
                for k, (start, stop) in enumerate(bounds)
                if k not in (i, j)
            ]
            train = np.concatenate(train_parts) if train_parts else np.array([], dtype=int)
            candidates.append(_Candidate(train_indices=train, test_segments=segments))
        return candidates

    def _rolling(self, n: int, per_day: int) -> list[_Candidate]:
        """Fixed-size train window followed by a step-sized test window."""
        window = days_to_bars(self.config.min_train_days, per_day)
        step = self._step_bars(per_day)
        candidates = []
        i = window
        while i + step <= n:
            candidates.append(_Candidate(
                train_indices=np.arange(i - window, i),
                test_segments=((i, i + step),),
            ))
            i += step
        return candidates

    def _anchored(self, n: int, per_day: int) -> list[_Candidate]:
        """Train from the series start, expanding by step each fold."""
        step = self._step_bars(per_day)
        train_end = days_to_bars(self.config.min_train_days, per_day)
        candidates = []
        while train_end + step <= n:
            candidates.append(_Candidate(
                train_indices=np.arange(0, train_end),
                test_segments=((train_end, train_end + step),),
            ))
            train_end += step
        return candidates
