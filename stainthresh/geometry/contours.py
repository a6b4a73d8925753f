"""
Conversions between binary masks and polygon geometry.

Tracing convention:
    - Foreground components are 4-connected (pixels sharing an edge).
      Diagonal neighbours are separate components.
    - Polygons follow pixel edges, so a traced polygon's area equals its
      pixel count exactly. Pixel (row, col) covers [col, col+1] x [row, row+1].
    - Background enclosed by a component becomes an interior ring (hole).
      Background meeting the outside only at a corner also comes back as an
      interior ring, one that touches the exterior; see
      ``refine.enclosed_hole_groups`` for telling the two apart.
    - Exterior rings are counter-clockwise, holes clockwise (shapely ``orient``).

Usage:
    from stainthresh.geometry.contours import trace_mask, rasterize_geometry

    polygons = trace_mask(mask)
    mask_again = rasterize_geometry(merge_polygons(polygons), mask.shape)
"""

from typing import List, Optional, Tuple

import numpy as np
import shapely
from shapely import affinity
from shapely.geometry import MultiPolygon, Polygon
from shapely.geometry.base import BaseGeometry
from shapely.geometry.polygon import orient
from shapely.validation import make_valid
from skimage.measure import label, regionprops

from stainthresh.utils.logging import get_logger

logger = get_logger(__name__)


def polygon_parts(geometry: Optional[BaseGeometry]) -> List[Polygon]:
    """Non-empty Polygon parts of any geometry (Polygon, MultiPolygon, collection)."""
    if geometry is None or geometry.is_empty:
        return []
    if geometry.geom_type == 'Polygon':
        return [geometry]
    if hasattr(geometry, 'geoms'):
        parts: List[Polygon] = []
        for g in geometry.geoms:
            parts.extend(polygon_parts(g))
        return parts
    return []


def validate_geometry(geometry: BaseGeometry) -> BaseGeometry:
    """
    Repair an invalid areal geometry, keeping only its polygon parts.

    Handles self-intersections and GeometryCollection results of make_valid.

    Returns:
        Valid Polygon or MultiPolygon (possibly empty)
    """
    if geometry.is_valid:
        return geometry
    return merge_polygons(polygon_parts(make_valid(geometry)))


def merge_polygons(polygons: List[Polygon]) -> BaseGeometry:
    """Combine disjoint polygons into one geometry (Polygon if only one)."""
    if not polygons:
        return Polygon()
    if len(polygons) == 1:
        return polygons[0]
    return MultiPolygon(polygons)


def _row_runs(component: np.ndarray) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """(row, start_col, end_col) of every horizontal foreground run; end exclusive."""
    padded = np.pad(component.astype(np.int8), ((0, 0), (1, 1)))
    edges = np.diff(padded, axis=1)
    starts = np.argwhere(edges == 1)
    ends = np.argwhere(edges == -1)
    # argwhere is row-major, so the k-th start pairs with the k-th end
    return starts[:, 0], starts[:, 1], ends[:, 1]


def trace_component(component: np.ndarray, offset: Tuple[int, int] = (0, 0)) -> Polygon:
    """
    Trace one 4-connected component into a pixel-edge polygon.

    Args:
        component: 2D bool array holding a single 4-connected component
        offset: (row, col) of the array's top-left pixel in the full mask

    Returns:
        Oriented Polygon, holes included
    """
    rows, x0, x1 = _row_runs(component)
    row_off, col_off = offset
    boxes = shapely.box(x0 + col_off, rows + row_off, x1 + col_off, rows + row_off + 1)
    merged = shapely.union_all(boxes)

    parts = polygon_parts(merged)
    if len(parts) != 1:
        # Cannot happen for a 4-connected component; keep the largest piece
        logger.warning(f"Component traced into {len(parts)} parts, keeping the largest")
        merged = max(parts, key=lambda p: p.area)
    else:
        merged = parts[0]

    # Drop collinear vertices left by the per-row boxes
    return orient(merged.simplify(0), sign=1.0)


def trace_mask(mask: np.ndarray) -> List[Polygon]:
    """
    Trace every foreground component of a binary mask.

    Args:
        mask: 2D bool (or 0/1) array

    Returns:
        One Polygon per 4-connected component, ordered by each component's
        first pixel in raster order. Empty list for an empty mask.
    """
    mask = np.asarray(mask, dtype=bool)
    if mask.ndim != 2:
        raise ValueError(f"Expected a 2D mask, got shape {mask.shape}")
    if not mask.any():
        return []

    labeled = label(mask, connectivity=1)
    polygons = []
    for prop in regionprops(labeled):
        row_slice, col_slice = prop.slice
        polygons.append(trace_component(prop.image, (row_slice.start, col_slice.start)))

    logger.debug(f"Traced {len(polygons)} components")
    return polygons


def rasterize_geometry(geometry: Optional[BaseGeometry], shape: Tuple[int, int]) -> np.ndarray:
    """
    Bool mask of the pixels whose centres lie inside a geometry.

    Args:
        geometry: Polygon/MultiPolygon in pixel coordinates (x = col, y = row)
        shape: (height, width) of the output mask

    Returns:
        (H, W) bool array
    """
    mask = np.zeros(shape, dtype=bool)
    if geometry is None or geometry.is_empty:
        return mask

    h, w = shape
    minx, miny, maxx, maxy = geometry.bounds
    c0, c1 = max(0, int(np.floor(minx))), min(w, int(np.ceil(maxx)))
    r0, r1 = max(0, int(np.floor(miny))), min(h, int(np.ceil(maxy)))
    if c0 >= c1 or r0 >= r1:
        return mask

    ys, xs = np.mgrid[r0:r1, c0:c1]
    mask[r0:r1, c0:c1] = shapely.contains_xy(geometry, xs + 0.5, ys + 0.5)
    return mask


def pixel_to_image(geometry: BaseGeometry, x: float, y: float, downsample: float) -> BaseGeometry:
    """Map region pixel coordinates to full-resolution image coordinates."""
    return affinity.affine_transform(geometry, [downsample, 0, 0, downsample, x, y])


def image_to_pixel(geometry: BaseGeometry, x: float, y: float, downsample: float) -> BaseGeometry:
    """Map full-resolution image coordinates to region pixel coordinates."""
    scale = 1.0 / downsample
    return affinity.affine_transform(geometry, [scale, 0, 0, scale, -x * scale, -y * scale])
