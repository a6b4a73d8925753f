"""
Image source interface and an in-memory reference implementation.

The pipeline reads region rasters through the ImageSource protocol; slide
readers of any format can implement it. Raster sizes follow one rounding
rule, shared with Region:

    pixels = max(1, floor(extent / downsample + 0.5))

i.e. round half up, never zero.
"""

import math
from typing import Optional, Protocol, runtime_checkable

import cv2
import numpy as np

from stainthresh.preprocessing.channels import StainProfile
from stainthresh.utils.logging import get_logger

logger = get_logger(__name__)


def scaled_size(extent: float, downsample: float) -> int:
    """Pixel count of ``extent`` full-resolution pixels at ``downsample``."""
    if downsample <= 0:
        raise ValueError(f"downsample must be positive, got {downsample}")
    return max(1, int(math.floor(extent / downsample + 0.5)))


@runtime_checkable
class ImageSource(Protocol):
    """Calibrated, region-readable image."""

    width: int
    height: int
    pixel_size_um: Optional[float]

    def read_region(self, x: int, y: int, width: int, height: int,
                    downsample: float) -> np.ndarray:
        """
        Read a full-resolution rectangle resampled by ``downsample``.

        Returns:
            Array of shape (scaled_size(height), scaled_size(width), C)
        """
        ...


@runtime_checkable
class StainProfileProvider(Protocol):
    """Supplies the stain vectors of an image, if it has any."""

    def get_stain_profile(self) -> Optional[StainProfile]:
        ...


class ArrayImageSource:
    """
    ImageSource over an in-memory (H, W, C) array.

    Downsampled reads use OpenCV area interpolation.

    Args:
        image: (H, W, 3) RGB or (H, W) array at full resolution
        pixel_size_um: Full-resolution pixel size in µm (None = uncalibrated)
        image_type: 'brightfield', 'fluorescence' or 'other'
        stain_profile: Stain vectors for brightfield RGB images
    """

    def __init__(
        self,
        image: np.ndarray,
        pixel_size_um: Optional[float],
        image_type: str = 'brightfield',
        stain_profile: Optional[StainProfile] = None,
    ):
        if image.ndim not in (2, 3):
            raise ValueError(f"Expected a 2D or 3D image array, got shape {image.shape}")
        self.image = image
        self.height, self.width = image.shape[:2]
        self.pixel_size_um = pixel_size_um
        self.image_type = image_type
        self.stain_profile = stain_profile

    @property
    def is_rgb(self) -> bool:
        return (self.image.ndim == 3 and self.image.shape[2] in (3, 4)
                and self.image.dtype == np.uint8)

    @property
    def is_brightfield(self) -> bool:
        return self.image_type == 'brightfield'

    def get_stain_profile(self) -> Optional[StainProfile]:
        """Stain profile, only for 8-bit RGB brightfield images."""
        if self.is_rgb and self.is_brightfield and self.stain_profile is not None:
            return self.stain_profile
        return None

    def read_region(self, x: int, y: int, width: int, height: int,
                    downsample: float = 1.0) -> np.ndarray:
        if width <= 0 or height <= 0:
            raise ValueError(f"Region size must be positive, got {width}x{height}")
        if x < 0 or y < 0 or x + width > self.width or y + height > self.height:
            raise ValueError(
                f"Region ({x}, {y}, {width}, {height}) outside image "
                f"({self.width}x{self.height})"
            )

        crop = self.image[y:y + height, x:x + width]
        out_w = scaled_size(width, downsample)
        out_h = scaled_size(height, downsample)
        if (out_h, out_w) == crop.shape[:2]:
            return crop.copy()

        logger.debug(f"Resampling {width}x{height} -> {out_w}x{out_h} (downsample {downsample})")
        resized = cv2.resize(np.ascontiguousarray(crop), (out_w, out_h),
                             interpolation=cv2.INTER_AREA)
        if crop.ndim == 3 and resized.ndim == 2:
            # cv2 drops a singleton channel axis
            resized = resized[:, :, np.newaxis]
        return resized
