"""
Collaborator interfaces: image sources and the annotation hierarchy.

Usage:
    from stainthresh.io import ArrayImageSource, InMemoryHierarchy

    source = ArrayImageSource(rgb, pixel_size_um=0.25, stain_profile=StainProfile.hematoxylin_dab())
    hierarchy = InMemoryHierarchy(pixel_size_um=0.25)
"""

from .image_source import (
    ImageSource,
    StainProfileProvider,
    ArrayImageSource,
    scaled_size,
)

from .hierarchy import (
    REFINE_PARAM_NAMES,
    Hierarchy,
    InMemoryHierarchy,
    RunCancelled,
)

__all__ = [
    # Image sources
    'ImageSource',
    'StainProfileProvider',
    'ArrayImageSource',
    'scaled_size',
    # Hierarchy
    'REFINE_PARAM_NAMES',
    'Hierarchy',
    'InMemoryHierarchy',
    'RunCancelled',
]
