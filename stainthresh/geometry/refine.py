"""
Size-based clean-up of traced geometry.

Small enclosed holes are filled first, then fragments (polygon parts,
measured after hole filling) below the minimum area are discarded. Thresholds are physical
areas (µm²) converted with the pixel size of the geometry's coordinate space.
"""

from typing import Dict, List

import numpy as np
import shapely
from scipy.sparse import coo_matrix
from scipy.sparse.csgraph import connected_components
from shapely.geometry import Polygon
from shapely.geometry.base import BaseGeometry
from shapely.ops import unary_union

from stainthresh.geometry.contours import merge_polygons, polygon_parts
from stainthresh.utils.logging import get_logger

logger = get_logger(__name__)


def area_to_pixels(area_um2: float, pixel_size_um: float) -> float:
    """Convert a physical area (µm²) to pixels² at the given pixel size."""
    if pixel_size_um <= 0:
        raise ValueError(f"pixel_size_um must be positive, got {pixel_size_um}")
    return area_um2 / (pixel_size_um * pixel_size_um)


def enclosed_hole_groups(polygon: Polygon) -> List[List[int]]:
    """
    Group a polygon's interior rings into enclosed background regions.

    Rings touching at a corner belong to one 8-connected background region.
    A group that reaches the exterior ring through such corners is background
    open to the outside, not a hole, and is left out.

    Returns:
        Lists of interior ring indices, one list per enclosed region
    """
    n = shapely.get_num_interior_rings(polygon)
    if n == 0:
        return []
    rings = shapely.get_interior_ring(polygon, np.arange(n))

    tree = shapely.STRtree(rings)
    left, right = tree.query(rings, predicate='intersects')
    # Node n stands for the exterior ring
    open_rings = np.flatnonzero(shapely.intersects(rings, polygon.exterior))
    rows = np.concatenate([left, open_rings])
    cols = np.concatenate([right, np.full(open_rings.size, n)])
    graph = coo_matrix((np.ones(rows.size), (rows, cols)), shape=(n + 1, n + 1))
    _, labels = connected_components(graph, directed=False)

    groups: Dict[int, List[int]] = {}
    for i in range(n):
        if labels[i] != labels[n]:
            groups.setdefault(int(labels[i]), []).append(i)
    return list(groups.values())


def fill_small_holes(polygon: Polygon, max_hole_px: float) -> Polygon:
    """
    Fill enclosed holes with area below ``max_hole_px``.

    The area of a hole made of several corner-touching rings is their sum.
    """
    if max_hole_px <= 0 or not polygon.interiors:
        return polygon

    interiors = list(polygon.interiors)
    filled = set()
    for group in enclosed_hole_groups(polygon):
        if sum(Polygon(interiors[i]).area for i in group) < max_hole_px:
            filled.update(group)

    if not filled:
        return polygon
    kept = [ring for i, ring in enumerate(interiors) if i not in filled]
    return Polygon(polygon.exterior, kept)


def refine_geometry(
    geometry: BaseGeometry,
    min_fragment_um2: float,
    max_hole_um2: float,
    pixel_size_um: float,
) -> BaseGeometry:
    """
    Drop small fragments and fill small holes.

    Args:
        geometry: Polygon or MultiPolygon in pixel coordinates
        min_fragment_um2: Fragments with area below this are discarded
        max_hole_um2: Holes with area below this are filled
        pixel_size_um: Pixel size of the geometry's coordinates

    Returns:
        Refined geometry; ``geometry`` itself when nothing changes, an empty
        Polygon when every fragment is discarded
    """
    min_fragment_px = area_to_pixels(min_fragment_um2, pixel_size_um)
    max_hole_px = area_to_pixels(max_hole_um2, pixel_size_um)

    parts = polygon_parts(geometry)
    changed = False
    kept: List[Polygon] = []
    for part in parts:
        filled = fill_small_holes(part, max_hole_px)
        if filled is not part:
            changed = True
        if filled.area < min_fragment_px:
            changed = True
            continue
        kept.append(filled)

    if not changed:
        return geometry

    logger.debug(f"Refined {len(parts)} fragments -> {len(kept)} "
                 f"(min fragment {min_fragment_px:.1f} px, max hole {max_hole_px:.1f} px)")

    if not kept:
        return Polygon()
    # A filled hole can swallow an island fragment that sat inside it
    return merge_polygons(polygon_parts(unary_union(kept)))
