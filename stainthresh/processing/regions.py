"""
Region selection.

A Region is a full-resolution rectangle of the image processed at one
downsample, optionally restricted to a polygonal ROI shape and tied to the
ROI annotation it came from.

Convention: Region coordinates (x, y, width, height) are full-resolution
image pixels; rasters read for it have ``pixel_shape`` =
(scaled_size(height), scaled_size(width)) at ``downsample``.
"""

import math
from dataclasses import dataclass
from typing import List, Optional, Tuple

import numpy as np
from shapely.geometry.base import BaseGeometry

from stainthresh.annotations.objects import Annotation
from stainthresh.geometry.contours import image_to_pixel, rasterize_geometry, validate_geometry
from stainthresh.io.hierarchy import Hierarchy
from stainthresh.io.image_source import ImageSource, scaled_size
from stainthresh.utils.logging import get_logger

logger = get_logger(__name__)


class RasterShapeError(ValueError):
    """Raised when an image source returns a raster of the wrong size."""


@dataclass(frozen=True)
class Region:
    """
    A sub-area of the image at a chosen downsample.

    Attributes:
        x, y: Top-left corner in full-resolution pixels
        width, height: Extent in full-resolution pixels (> 0)
        downsample: Processing downsample (>= 1)
        pixel_size_um: Physical size of one pixel at this downsample
        shape: Optional ROI geometry (image coordinates) restricting the region
        parent: ROI annotation the region came from, if any
    """
    x: int
    y: int
    width: int
    height: int
    downsample: float
    pixel_size_um: float
    shape: Optional[BaseGeometry] = None
    parent: Optional[Annotation] = None

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise ValueError(f"Region size must be positive, got {self.width}x{self.height}")
        if self.downsample <= 0:
            raise ValueError(f"downsample must be positive, got {self.downsample}")

    @property
    def pixel_width(self) -> int:
        return scaled_size(self.width, self.downsample)

    @property
    def pixel_height(self) -> int:
        return scaled_size(self.height, self.downsample)

    @property
    def pixel_shape(self) -> Tuple[int, int]:
        """(rows, cols) of rasters read for this region."""
        return self.pixel_height, self.pixel_width

    def pixel_mask(self) -> Optional[np.ndarray]:
        """
        Pixels of the region raster inside the ROI shape.

        Returns:
            (H, W) bool array, or None for a plain rectangle
        """
        if self.shape is None:
            return None
        local = image_to_pixel(self.shape, self.x, self.y, self.downsample)
        return rasterize_geometry(local, self.pixel_shape)

    def read(self, source: ImageSource) -> np.ndarray:
        """
        Read this region's raster from an image source.

        Raises:
            RasterShapeError: If the raster size disagrees with pixel_shape
        """
        raster = source.read_region(self.x, self.y, self.width, self.height, self.downsample)
        if tuple(raster.shape[:2]) != self.pixel_shape:
            raise RasterShapeError(
                f"Image source returned {raster.shape[:2]} for region "
                f"({self.x}, {self.y}, {self.width}, {self.height}) at downsample "
                f"{self.downsample}, expected {self.pixel_shape}"
            )
        return raster


def base_pixel_size(source: ImageSource) -> float:
    """Full-resolution pixel size of a source; it must be calibrated."""
    pixel_size = source.pixel_size_um
    if pixel_size is None or pixel_size <= 0:
        raise ValueError(
            "Image has no pixel size calibration; physical sigma and area "
            "thresholds cannot be converted to pixels"
        )
    return float(pixel_size)


def full_image_region(source: ImageSource, downsample: float) -> Region:
    """Region covering the whole image, with no parent."""
    return Region(
        x=0, y=0, width=int(source.width), height=int(source.height),
        downsample=downsample,
        pixel_size_um=base_pixel_size(source) * downsample,
    )


def annotation_region(annotation: Annotation, source: ImageSource,
                      downsample: float) -> Optional[Region]:
    """
    Region covering an ROI annotation's geometry.

    The rectangle is the geometry's bounding box, expanded to whole pixels
    and clipped to the image.

    Returns:
        Region paired with the annotation, or None if it lies outside the image
    """
    shape = validate_geometry(annotation.geometry)
    if shape.is_empty:
        return None

    minx, miny, maxx, maxy = shape.bounds
    x0 = max(0, int(math.floor(minx)))
    y0 = max(0, int(math.floor(miny)))
    x1 = min(int(source.width), int(math.ceil(maxx)))
    y1 = min(int(source.height), int(math.ceil(maxy)))
    if x1 <= x0 or y1 <= y0:
        return None

    return Region(
        x=x0, y=y0, width=x1 - x0, height=y1 - y0,
        downsample=downsample,
        pixel_size_um=base_pixel_size(source) * downsample,
        shape=shape,
        parent=annotation,
    )


def enumerate_regions(
    hierarchy: Hierarchy,
    roi_class: Optional[str],
    downsample: float,
    source: ImageSource,
) -> List[Region]:
    """
    Regions to process for a run.

    With ``roi_class`` set, one Region per top-level annotation of that class
    (in hierarchy order), each paired with its annotation. Otherwise a single
    full-image Region with no parent. The hierarchy should be up to date.

    Args:
        hierarchy: Annotation hierarchy
        roi_class: ROI classification filter, or None for the whole image
        downsample: Processing downsample
        source: Image source (extent and calibration)

    Returns:
        List of Regions (empty when no annotation matches)
    """
    if roi_class is None:
        return [full_image_region(source, downsample)]

    regions = []
    for annotation in hierarchy.top_level_annotations():
        if annotation.classification != roi_class:
            continue
        region = annotation_region(annotation, source, downsample)
        if region is None:
            logger.warning(f"ROI annotation {annotation.id} lies outside the image, ignoring it")
            continue
        regions.append(region)

    logger.info(f"Found {len(regions)} '{roi_class}' regions")
    return regions
