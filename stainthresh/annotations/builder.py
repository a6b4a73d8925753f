"""
Measurement and insertion of thresholded-region annotations.

Measurement names keep the "(IJ)" suffix used by existing analysis sheets:

    Threshold (IJ), Area (IJ), Mean <stain> (IJ), Min <stain> (IJ), Max <stain> (IJ)

``Area (IJ)`` is in µm²; intensity statistics are in channel units
(optical density or stain concentration).
"""

from dataclasses import dataclass
from typing import TYPE_CHECKING, Dict, Optional

import numpy as np
from shapely.geometry.base import BaseGeometry

from stainthresh.annotations.objects import Annotation
from stainthresh.utils.logging import get_logger

if TYPE_CHECKING:
    from stainthresh.io.hierarchy import Hierarchy

logger = get_logger(__name__)


THRESHOLD_KEY = "Threshold (IJ)"
AREA_KEY = "Area (IJ)"


def intensity_keys(stain_name: str) -> Dict[str, str]:
    """Measurement names for the mean/min/max of a stain channel."""
    return {
        'mean': f"Mean {stain_name} (IJ)",
        'min': f"Min {stain_name} (IJ)",
        'max': f"Max {stain_name} (IJ)",
    }


@dataclass(frozen=True)
class RegionStats:
    """Statistics of a channel over a thresholded region (area in µm²)."""
    area: float
    mean: float
    min: float
    max: float
    pixel_count: int = 0


def measure_channel(channel: np.ndarray, mask: np.ndarray, pixel_size_um: float) -> RegionStats:
    """
    Area, mean, min and max of ``channel`` over ``mask``.

    Args:
        channel: (H, W) scalar raster
        mask: (H, W) bool array
        pixel_size_um: Pixel size of the raster in µm

    Returns:
        RegionStats; intensity fields are NaN for an empty mask
    """
    if channel.shape != mask.shape:
        raise ValueError(f"Channel shape {channel.shape} != mask shape {mask.shape}")

    values = channel[mask]
    count = int(values.size)
    area = count * pixel_size_um * pixel_size_um
    if count == 0:
        return RegionStats(area=0.0, mean=float('nan'), min=float('nan'), max=float('nan'))

    return RegionStats(
        area=float(area),
        mean=float(values.mean(dtype=np.float64)),
        min=float(values.min()),
        max=float(values.max()),
        pixel_count=count,
    )


def build_annotation(
    geometry: BaseGeometry,
    stats: RegionStats,
    stain_name: str,
    threshold: float,
    target_class: str,
    name: Optional[str] = None,
) -> Annotation:
    """
    Create a classified, locked annotation carrying the region measurements.

    Args:
        geometry: Refined geometry in image coordinates
        stats: Channel statistics over the region
        stain_name: Name used in the intensity measurement keys
        threshold: Otsu threshold of the region
        target_class: Classification label
        name: Optional display name

    Returns:
        Locked Annotation
    """
    annotation = Annotation(geometry=geometry, classification=target_class, name=name)
    keys = intensity_keys(stain_name)
    annotation.put_measurement(THRESHOLD_KEY, threshold)
    annotation.put_measurement(AREA_KEY, stats.area)
    annotation.put_measurement(keys['mean'], stats.mean)
    annotation.put_measurement(keys['min'], stats.min)
    annotation.put_measurement(keys['max'], stats.max)
    return annotation.lock()


def insert_annotation(
    annotation: Annotation,
    hierarchy: "Hierarchy",
    parent: Optional[Annotation] = None,
) -> None:
    """
    Insert an annotation into the hierarchy.

    Below ``parent`` (signalling a children-changed update) when given,
    otherwise at top level without an update; the caller fires one update
    for the whole batch.
    """
    if parent is not None:
        hierarchy.add_object_below_parent(parent, annotation, fire_update=True)
    else:
        hierarchy.add_object(annotation, fire_update=False)
    logger.debug(f"Inserted annotation {annotation.id} "
                 f"({'below ' + parent.id if parent is not None else 'top level'})")
