"""
Annotation objects, measurements and hierarchy insertion.
"""

from .objects import (
    Annotation,
    AnnotationLockedError,
)

from .builder import (
    THRESHOLD_KEY,
    AREA_KEY,
    RegionStats,
    intensity_keys,
    measure_channel,
    build_annotation,
    insert_annotation,
)

__all__ = [
    'Annotation',
    'AnnotationLockedError',
    'THRESHOLD_KEY',
    'AREA_KEY',
    'RegionStats',
    'intensity_keys',
    'measure_channel',
    'build_annotation',
    'insert_annotation',
]
