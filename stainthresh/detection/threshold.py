"""
Automatic (Otsu) thresholding of scalar rasters.

The raster's value range is split into ``nbins`` equal bins and Otsu's
criterion picks the split maximising the between-class variance; ties go to
the lowest split. The reported threshold is the largest raster value that
falls in the background class, and foreground is every pixel strictly above
it (dark-background convention: high values = stain).
"""

from typing import Optional, Tuple

import numpy as np
from skimage.filters import threshold_otsu

from stainthresh.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_NBINS = 256


def otsu_bin(histogram: np.ndarray) -> int:
    """
    Otsu split of a histogram.

    Empty bins at either end are trimmed before skimage's threshold_otsu
    runs on bin indices, so every candidate split has two non-empty classes.

    Args:
        histogram: 1D array of bin counts (length n >= 2, not all zero)

    Returns:
        Index k of the last background bin; the lowest k on ties
    """
    counts = np.asarray(histogram)
    if counts.ndim != 1 or counts.size < 2:
        raise ValueError(f"Need a 1D histogram with at least 2 bins, got shape {counts.shape}")

    occupied = np.flatnonzero(counts > 0)
    if occupied.size == 0:
        raise ValueError("Histogram is empty")
    first, last = int(occupied[0]), int(occupied[-1])
    if first == last:
        return last

    # threshold_otsu takes the first argmax, i.e. the lowest split on ties
    split = threshold_otsu(hist=(counts[first:last + 1], np.arange(first, last + 1)))
    return int(round(float(split)))


def bin_indices(values: np.ndarray, lo: float, hi: float, nbins: int) -> np.ndarray:
    """Equal-width bin index of each value over ``[lo, hi]`` (hi in the last bin)."""
    scaled = (values.astype(np.float64) - lo) * (nbins / (hi - lo))
    return np.clip(np.floor(scaled), 0, nbins - 1).astype(np.intp)


def otsu_threshold(
    raster: np.ndarray,
    valid_mask: Optional[np.ndarray] = None,
    nbins: int = DEFAULT_NBINS,
) -> Tuple[float, np.ndarray]:
    """
    Threshold a scalar raster with Otsu's method.

    Args:
        raster: (H, W) scalar raster
        valid_mask: Optional (H, W) bool array; only these pixels build the
            histogram and can become foreground
        nbins: Histogram bins over the raster's value range

    Returns:
        (threshold, mask): threshold value and (H, W) bool foreground mask
        (pixels strictly above the threshold). A constant or empty raster
        gives an empty mask.
    """
    if valid_mask is not None and valid_mask.shape != raster.shape:
        raise ValueError(f"valid_mask shape {valid_mask.shape} != raster shape {raster.shape}")

    values = raster[valid_mask] if valid_mask is not None else raster.ravel()
    values = values[np.isfinite(values)]
    empty = np.zeros(raster.shape, dtype=bool)

    if values.size == 0:
        logger.debug("No finite pixels to threshold")
        return float('nan'), empty

    lo, hi = float(values.min()), float(values.max())
    if hi <= lo:
        logger.debug(f"Constant raster ({lo}), nothing above threshold")
        return hi, empty

    bins = bin_indices(values, lo, hi, nbins)
    histogram = np.bincount(bins, minlength=nbins)
    split = otsu_bin(histogram)

    threshold = float(values[bins <= split].max())
    with np.errstate(invalid='ignore'):
        mask = raster > threshold
    if valid_mask is not None:
        mask &= valid_mask

    logger.debug(f"Otsu split at bin {split}/{nbins}, threshold={threshold:.4f}, "
                 f"foreground={int(mask.sum())} px")
    return threshold, mask
