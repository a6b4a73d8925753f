"""
Region selection and the per-region threshold pipeline.

Usage:
    from stainthresh.processing import StainThresholdPipeline, threshold_regions

    report = threshold_regions(source, hierarchy, ThresholdParams(roi_class="Tumor"))
"""

from .regions import (
    Region,
    RasterShapeError,
    base_pixel_size,
    full_image_region,
    annotation_region,
    enumerate_regions,
)

from .pipeline import (
    RegionState,
    RegionResult,
    RunContext,
    RunReport,
    StainThresholdPipeline,
    threshold_regions,
)

__all__ = [
    # Regions
    'Region',
    'RasterShapeError',
    'base_pixel_size',
    'full_image_region',
    'annotation_region',
    'enumerate_regions',
    # Pipeline
    'RegionState',
    'RegionResult',
    'RunContext',
    'RunReport',
    'StainThresholdPipeline',
    'threshold_regions',
]
