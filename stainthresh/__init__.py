"""
Region-based stain threshold annotation for whole-slide images.

For each region of interest (or the whole image) the pipeline extracts a
stain intensity channel, smooths it, applies an Otsu threshold, traces the
foreground into polygons, removes small fragments and holes, and inserts a
classified, locked annotation with measurements into the hierarchy.

Usage:
    from stainthresh import threshold_regions, ThresholdParams
    from stainthresh.io import ArrayImageSource, InMemoryHierarchy

    source = ArrayImageSource(rgb, pixel_size_um=0.25)
    hierarchy = InMemoryHierarchy(pixel_size_um=0.25)
    report = threshold_regions(source, hierarchy, ThresholdParams(roi_class=None))

Individual stages live in submodules:
    from stainthresh.preprocessing import extract_channel, gaussian_blur
    from stainthresh.detection import otsu_threshold
    from stainthresh.geometry import trace_mask, refine_geometry
    from stainthresh.annotations import build_annotation, insert_annotation
    from stainthresh.utils import get_logger, setup_logging, load_config
"""

__version__ = "0.1.0"

from stainthresh.utils.config import ChannelMethod, ThresholdParams
from stainthresh.processing.pipeline import StainThresholdPipeline, RunReport, threshold_regions

__all__ = [
    "ChannelMethod",
    "ThresholdParams",
    "StainThresholdPipeline",
    "RunReport",
    "threshold_regions",
    "annotations",
    "detection",
    "geometry",
    "io",
    "preprocessing",
    "processing",
    "utils",
]
