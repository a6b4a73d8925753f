"""
Foreground detection for scalar stain channels.

Usage:
    from stainthresh.detection import otsu_threshold

    threshold, mask = otsu_threshold(channel)
"""

from .threshold import (
    DEFAULT_NBINS,
    otsu_bin,
    bin_indices,
    otsu_threshold,
)

__all__ = [
    'DEFAULT_NBINS',
    'otsu_bin',
    'bin_indices',
    'otsu_threshold',
]
