"""
Calibrated Gaussian smoothing of scalar rasters.

Sigma is given in physical units (µm) and converted with the region's pixel
size, so the same setting smooths the same tissue distance at any downsample.
Edges are replicated (``mode="nearest"``); the kernel is truncated at 4 sigma.
"""

import numpy as np
from scipy.ndimage import gaussian_filter

from stainthresh.utils.logging import get_logger

logger = get_logger(__name__)

GAUSSIAN_TRUNCATE = 4.0


def sigma_to_pixels(sigma_um: float, pixel_size_um: float) -> float:
    """Convert a physical sigma to pixels at the given pixel size."""
    if pixel_size_um <= 0:
        raise ValueError(f"pixel_size_um must be positive, got {pixel_size_um}")
    return sigma_um / pixel_size_um


def gaussian_blur(raster: np.ndarray, sigma_um: float, pixel_size_um: float) -> np.ndarray:
    """
    Separable 2D Gaussian blur with a physical sigma.

    Args:
        raster: (H, W) scalar raster
        sigma_um: Standard deviation in µm
        pixel_size_um: Size of one raster pixel in µm

    Returns:
        Blurred float32 raster, or ``raster`` itself when sigma <= 0
    """
    sigma_px = sigma_to_pixels(sigma_um, pixel_size_um)
    if sigma_px <= 0:
        return raster

    logger.debug(f"Gaussian blur sigma={sigma_um} um = {sigma_px:.2f} px")
    return gaussian_filter(
        raster.astype(np.float32, copy=False),
        sigma=sigma_px,
        mode="nearest",
        truncate=GAUSSIAN_TRUNCATE,
    )
