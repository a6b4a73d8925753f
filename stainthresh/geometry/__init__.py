"""
Polygon geometry for thresholded regions.

Includes:
- contours: mask tracing, rasterization and coordinate transforms
- refine: fragment removal and hole filling by physical area
"""

from .contours import (
    polygon_parts,
    validate_geometry,
    merge_polygons,
    trace_component,
    trace_mask,
    rasterize_geometry,
    pixel_to_image,
    image_to_pixel,
)

from .refine import (
    area_to_pixels,
    enclosed_hole_groups,
    fill_small_holes,
    refine_geometry,
)

__all__ = [
    # Contours
    'polygon_parts',
    'validate_geometry',
    'merge_polygons',
    'trace_component',
    'trace_mask',
    'rasterize_geometry',
    'pixel_to_image',
    'image_to_pixel',
    # Refinement
    'area_to_pixels',
    'enclosed_hole_groups',
    'fill_small_holes',
    'refine_geometry',
]
