"""
Pytest fixtures for stainthresh tests.

Provides shared fixtures for creating sample rasters, image sources,
hierarchies, and temporary directories.
"""

import pytest
import numpy as np
import tempfile
import shutil
from pathlib import Path
from unittest.mock import MagicMock

from stainthresh.io.hierarchy import InMemoryHierarchy
from stainthresh.io.image_source import ArrayImageSource
from stainthresh.utils.config import ThresholdParams


PIXEL_SIZE_UM = 0.5


@pytest.fixture
def pixel_size_um():
    """Full-resolution pixel size used by the sample sources (µm)."""
    return PIXEL_SIZE_UM


@pytest.fixture
def dark_square_rgb():
    """
    10x10 RGB tile, white background with one dark 3x3 square.

    Contains:
    - Rows 2-4, columns 2-4 set to (50, 50, 50)
    - Everything else (255, 255, 255)

    Returns:
        np.ndarray: 10x10x3 uint8 array
    """
    tile = np.full((10, 10, 3), 255, dtype=np.uint8)
    tile[2:5, 2:5] = 50
    return tile


@pytest.fixture
def blank_rgb():
    """
    10x10 RGB tile with no stain at all.

    Returns:
        np.ndarray: 10x10x3 uint8 array of 255
    """
    return np.full((10, 10, 3), 255, dtype=np.uint8)


@pytest.fixture
def two_squares_rgb():
    """
    40x40 RGB tile with a large and a small dark square.

    Contains:
    - 10x10 square at rows/cols 5-14
    - 2x2 square at rows/cols 30-31

    Returns:
        np.ndarray: 40x40x3 uint8 array
    """
    tile = np.full((40, 40, 3), 255, dtype=np.uint8)
    tile[5:15, 5:15] = 40
    tile[30:32, 30:32] = 40
    return tile


@pytest.fixture
def square_source(dark_square_rgb):
    """Calibrated ArrayImageSource over dark_square_rgb."""
    return ArrayImageSource(dark_square_rgb, pixel_size_um=PIXEL_SIZE_UM)


@pytest.fixture
def hierarchy():
    """Empty calibrated in-memory hierarchy."""
    return InMemoryHierarchy(pixel_size_um=PIXEL_SIZE_UM)


@pytest.fixture
def exact_params():
    """
    Parameters that leave the traced geometry untouched.

    Whole image, full resolution, no smoothing, no fragment or hole removal.

    Returns:
        ThresholdParams
    """
    return ThresholdParams(
        roi_class=None,
        downsample=1.0,
        gaussian_sigma_um=0.0,
        min_fragment_um2=0.0,
        max_hole_um2=0.0,
    )


@pytest.fixture
def mock_source():
    """
    Mock image source with a 100x100 calibrated extent.

    read_region() returns a 2x2 raster regardless of the request, so any
    region larger than that gets a wrong-size raster.

    Returns:
        MagicMock: Mock ImageSource
    """
    source = MagicMock()
    source.width = 100
    source.height = 100
    source.pixel_size_um = PIXEL_SIZE_UM
    source.read_region.return_value = np.full((2, 2, 3), 255, dtype=np.uint8)
    return source


@pytest.fixture
def temp_output_dir():
    """
    Temporary directory for test outputs.

    Creates a temporary directory that is automatically cleaned up after the test.

    Yields:
        Path: Path to temporary directory
    """
    temp_dir = tempfile.mkdtemp(prefix="stainthresh_test_")
    yield Path(temp_dir)
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def empty_mask():
    """
    Empty binary mask for testing edge cases.

    Returns:
        np.ndarray: 64x64 boolean array of all False
    """
    return np.zeros((64, 64), dtype=bool)


@pytest.fixture
def simple_rectangular_mask():
    """
    Simple rectangular mask for predictable area calculations.

    Creates a 20x30 pixel rectangle.

    Returns:
        np.ndarray: 64x64 boolean array with a 20x30 True region
    """
    mask = np.zeros((64, 64), dtype=bool)
    mask[10:30, 15:45] = True
    return mask
