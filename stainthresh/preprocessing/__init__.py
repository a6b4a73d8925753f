"""
Preprocessing of region rasters before thresholding.

Includes:
- channels: optical density sum and colour deconvolution to one scalar channel
- smoothing: calibrated Gaussian blur
"""

from .channels import (
    DEFAULT_WHITE,
    StainProfile,
    optical_density,
    optical_density_sum,
    color_deconvolve,
    extract_channel,
)

from .smoothing import (
    gaussian_blur,
    sigma_to_pixels,
)

__all__ = [
    # Channel extraction
    'DEFAULT_WHITE',
    'StainProfile',
    'optical_density',
    'optical_density_sum',
    'color_deconvolve',
    'extract_channel',
    # Smoothing
    'gaussian_blur',
    'sigma_to_pixels',
]
