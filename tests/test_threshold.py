"""
Tests for Otsu thresholding in stainthresh/detection/threshold.py.

The optimality checks compare the chosen split against every other split
of the same histogram, computed directly in the tests.
"""

import pytest
import numpy as np

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from stainthresh.detection.threshold import (
    DEFAULT_NBINS,
    bin_indices,
    otsu_bin,
    otsu_threshold,
)


def _split_variance(histogram, k):
    """Between-class variance of one split, computed directly."""
    hist = np.asarray(histogram, dtype=np.float64)
    levels = np.arange(hist.size)
    total = hist.sum()
    w0, w1 = hist[:k + 1].sum(), hist[k + 1:].sum()
    if w0 == 0 or w1 == 0:
        return 0.0
    mu0 = (hist[:k + 1] * levels[:k + 1]).sum() / w0
    mu1 = (hist[k + 1:] * levels[k + 1:]).sum() / w1
    return w0 * w1 * (mu0 - mu1) ** 2 / total ** 2


class TestOtsuBin:

    def test_empty_end_bins_ignored(self):
        """Splits that leave a class empty are never chosen."""
        assert otsu_bin(np.array([0, 0, 5, 5, 0])) == 2

    def test_single_occupied_bin(self):
        assert otsu_bin(np.array([0, 7, 0])) == 1

    def test_rejects_short_histogram(self):
        with pytest.raises(ValueError):
            otsu_bin(np.array([3]))

    def test_rejects_empty_histogram(self):
        with pytest.raises(ValueError):
            otsu_bin(np.zeros(4))

    def test_matches_exhaustive_search(self):
        rng = np.random.default_rng(1)
        for _ in range(5):
            hist = rng.integers(1, 50, size=32)
            variances = [_split_variance(hist, k) for k in range(31)]
            assert _split_variance(hist, otsu_bin(hist)) == pytest.approx(max(variances), rel=1e-5)

    def test_no_split_beats_the_chosen_one(self):
        rng = np.random.default_rng(7)
        hist = np.concatenate([rng.integers(0, 100, 100), rng.integers(50, 200, 156)])
        k = otsu_bin(hist)
        best = _split_variance(hist, k)
        for other in range(hist.size - 1):
            assert _split_variance(hist, other) <= best * (1 + 1e-5)

    def test_ties_pick_lowest_split(self):
        """Equal-height end bins: every split between them scores the same."""
        hist = np.array([10, 0, 0, 0, 10])
        assert otsu_bin(hist) == 0


class TestBinIndices:

    def test_range_end_goes_in_last_bin(self):
        values = np.array([0.0, 0.5, 1.0])
        np.testing.assert_array_equal(bin_indices(values, 0.0, 1.0, 4), [0, 2, 3])


class TestOtsuThreshold:
    """Tests for otsu_threshold()."""

    def test_two_level_raster(self):
        raster = np.zeros((10, 10), dtype=np.float32)
        raster[2:5, 2:5] = 3.0

        threshold, mask = otsu_threshold(raster)

        assert threshold == 0.0
        assert mask.sum() == 9
        assert mask[2:5, 2:5].all()

    def test_mask_is_strictly_above_threshold(self):
        raster = np.random.default_rng(3).random((30, 30)).astype(np.float32)
        threshold, mask = otsu_threshold(raster)
        np.testing.assert_array_equal(mask, raster > threshold)
        # The threshold is an actual background value
        assert threshold in raster[~mask]

    def test_constant_raster_gives_empty_mask(self):
        raster = np.full((5, 5), 1.25, dtype=np.float32)
        threshold, mask = otsu_threshold(raster)
        assert threshold == pytest.approx(1.25)
        assert not mask.any()

    def test_valid_mask_limits_histogram_and_foreground(self):
        raster = np.zeros((10, 10), dtype=np.float32)
        raster[:, 5:] = 1.0
        raster[0, 0] = 5.0
        valid = np.zeros((10, 10), dtype=bool)
        valid[:, 5:] = True
        valid[1:, 0] = True

        threshold, mask = otsu_threshold(raster, valid)

        # (0, 0) is outside the valid area: it neither sets the range nor passes
        assert threshold == 0.0
        assert not mask[0, 0]
        assert mask.sum() == 50

    def test_nothing_finite(self):
        raster = np.full((3, 3), np.nan, dtype=np.float32)
        threshold, mask = otsu_threshold(raster)
        assert np.isnan(threshold)
        assert not mask.any()

    def test_valid_mask_shape_mismatch(self):
        with pytest.raises(ValueError):
            otsu_threshold(np.zeros((4, 4)), np.ones((3, 3), dtype=bool))

    def test_default_bins(self):
        assert DEFAULT_NBINS == 256
