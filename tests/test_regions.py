"""
Tests for region selection and raster reads.

Covers stainthresh/processing/regions.py and the shared rounding rule in
stainthresh/io/image_source.py.
"""

import pytest
import numpy as np
from shapely.geometry import Polygon, box

import sys
from pathlib import Path
sys.path.insert(0, str(Path(__file__).parent.parent))

from stainthresh.annotations.objects import Annotation
from stainthresh.io.image_source import ArrayImageSource, scaled_size
from stainthresh.processing.regions import (
    RasterShapeError,
    Region,
    annotation_region,
    base_pixel_size,
    enumerate_regions,
    full_image_region,
)


class TestScaledSize:
    """Rounding rule: max(1, floor(extent / downsample + 0.5))."""

    @pytest.mark.parametrize("extent,downsample,expected", [
        (10, 4, 3),   # 2.5 rounds up
        (9, 3, 3),
        (1, 3, 1),    # never zero
        (5, 2, 3),
        (7, 2, 4),
        (11, 4, 3),   # 2.75
        (100, 1, 100),
    ])
    def test_rounding(self, extent, downsample, expected):
        assert scaled_size(extent, downsample) == expected

    def test_invalid_downsample(self):
        with pytest.raises(ValueError):
            scaled_size(10, 0)


class TestRegion:

    def test_pixel_shape(self):
        region = Region(x=0, y=0, width=10, height=9, downsample=3.0, pixel_size_um=1.5)
        assert region.pixel_shape == (3, 3)

    def test_invalid_size(self):
        with pytest.raises(ValueError):
            Region(x=0, y=0, width=0, height=5, downsample=1.0, pixel_size_um=1.0)

    def test_rectangle_has_no_pixel_mask(self):
        region = Region(x=0, y=0, width=4, height=4, downsample=1.0, pixel_size_um=1.0)
        assert region.pixel_mask() is None

    def test_pixel_mask_follows_shape(self):
        triangle = Polygon([(10, 10), (20, 10), (10, 20)])
        region = Region(x=10, y=10, width=10, height=10, downsample=1.0,
                        pixel_size_um=1.0, shape=triangle)
        mask = region.pixel_mask()
        assert mask.shape == (10, 10)
        assert mask[0, 0]
        assert not mask[9, 9]

    def test_read_matches_pixel_shape(self, two_squares_rgb):
        source = ArrayImageSource(two_squares_rgb, pixel_size_um=0.5)
        region = Region(x=0, y=0, width=10, height=9, downsample=3.0, pixel_size_um=1.5)
        assert region.read(source).shape == (3, 3, 3)

    def test_wrong_raster_size_raises(self, mock_source):
        region = Region(x=0, y=0, width=10, height=10, downsample=1.0, pixel_size_um=0.5)
        with pytest.raises(RasterShapeError):
            region.read(mock_source)
        assert issubclass(RasterShapeError, ValueError)


class TestRegionSelection:
    """Tests for full_image_region(), annotation_region() and enumerate_regions()."""

    def test_full_image_region(self, square_source):
        region = full_image_region(square_source, 2.0)
        assert (region.x, region.y, region.width, region.height) == (0, 0, 10, 10)
        assert region.pixel_size_um == pytest.approx(1.0)
        assert region.parent is None

    def test_uncalibrated_source_rejected(self, dark_square_rgb):
        source = ArrayImageSource(dark_square_rgb, pixel_size_um=None)
        with pytest.raises(ValueError):
            base_pixel_size(source)

    def test_annotation_region_clipped_to_image(self, square_source):
        roi = Annotation(box(-3.5, 2.2, 6.7, 20), classification="Region*")
        region = annotation_region(roi, square_source, 1.0)
        assert (region.x, region.y, region.width, region.height) == (0, 2, 7, 8)
        assert region.parent is roi
        assert region.shape is not None

    def test_annotation_outside_image(self, square_source):
        roi = Annotation(box(50, 50, 60, 60))
        assert annotation_region(roi, square_source, 1.0) is None

    def test_whole_image_when_no_roi_class(self, hierarchy, square_source):
        regions = enumerate_regions(hierarchy, None, 1.0, square_source)
        assert len(regions) == 1
        assert regions[0].parent is None

    def test_roi_filter_top_level_only(self, hierarchy, two_squares_rgb):
        source = ArrayImageSource(two_squares_rgb, pixel_size_um=0.5)
        roi_a = Annotation(box(0, 0, 20, 20), classification="Tumor")
        roi_b = Annotation(box(25, 25, 35, 35), classification="Tumor")
        nested = Annotation(box(2, 2, 5, 5), classification="Tumor")
        other = Annotation(box(0, 20, 10, 30), classification="Stroma")
        hierarchy.add_object(roi_a)
        hierarchy.add_object(other)
        hierarchy.add_object(roi_b)
        hierarchy.add_object_below_parent(roi_a, nested)

        regions = enumerate_regions(hierarchy, "Tumor", 1.0, source)

        assert [r.parent for r in regions] == [roi_a, roi_b]

    def test_no_matching_roi(self, hierarchy, square_source):
        hierarchy.add_object(Annotation(box(0, 0, 5, 5), classification="Stroma"))
        assert enumerate_regions(hierarchy, "Tumor", 1.0, square_source) == []
