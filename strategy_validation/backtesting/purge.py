"""
Purge and embargo.

Training bars adjacent to a test segment leak information about it:
labels computed just before a test start overlap the test period, and
features computed just after a test end were built from it.

- Purge: drop training bars in [test_start - purge, test_start)
- Embargo: drop training bars in [test_end, test_end + embargo)

Zones are applied as a single boolean mask, so zones from two test
segments that overlap are never counted twice.
"""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class ExclusionZone:
    """Half-open bar range removed from training."""
    start: int
    stop: int
    kind: str  # "purge" or "embargo"

    @property
    def size(self) -> int:
        return max(0, self.stop - self.start)


def exclusion_zones(
    test_segments: list[tuple[int, int]],
    purge_bars: int,
    embargo_bars: int,
    n_bars: int,
) -> list[ExclusionZone]:
    """Return the purge/embargo zones around each test segment, clipped to the series."""
    zones = []
    for start, stop in test_segments:
        if purge_bars > 0 and start > 0:
            zones.append(ExclusionZone(max(0, start - purge_bars), start, "purge"))
        if embargo_bars > 0 and stop < n_bars:
            zones.append(ExclusionZone(stop, min(n_bars, stop + embargo_bars), "embargo"))
    return zones


def apply_purge_embargo(
    train_indices: np.ndarray,
    test_segments: list[tuple[int, int]],
    purge_bars: int,
    embargo_bars: int,
    n_bars: int,
) -> np.ndarray:
    """
    Remove leaking bars from a training index set.

    Args:
        train_indices: Candidate training positions
        test_segments: Half-open (start, stop) test ranges
        purge_bars: Bars to drop before each test start
        embargo_bars: Bars to drop after each test end
        n_bars: Series length

    Returns:
        Sorted training positions with test bars and exclusion zones removed
    """
    keep = np.zeros(n_bars, dtype=bool)
    keep[np.asarray(train_indices, dtype=int)] = True

    for start, stop in test_segments:
        keep[start:stop] = False

    for zone in exclusion_zones(test_segments, purge_bars, embargo_bars, n_bars):
        keep[zone.start:zone.stop] = False

    return np.flatnonzero(keep)
