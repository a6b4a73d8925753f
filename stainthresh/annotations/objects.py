"""
Annotation objects stored in the hierarchy.

An Annotation can be edited until it is locked; afterwards every attribute
and its measurement mapping are read-only.
"""

import uuid
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional

from shapely.geometry import mapping
from shapely.geometry.base import BaseGeometry


class AnnotationLockedError(RuntimeError):
    """Raised when a locked annotation is modified."""


@dataclass(eq=False)
class Annotation:
    """
    A classified region object with measurements.

    Attributes:
        geometry: Polygon/MultiPolygon in full-resolution image coordinates
        classification: Class label (None = unclassified)
        measurements: Measurement name -> value
        name: Optional display name
        id: Unique object id
        locked: Whether the object is immutable
    """
    geometry: BaseGeometry
    classification: Optional[str] = None
    measurements: Mapping[str, float] = field(default_factory=dict)
    name: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    # Must stay the last field: __setattr__ refuses writes once it is True
    locked: bool = False

    def __post_init__(self):
        if self.locked:
            object.__setattr__(self, 'measurements', MappingProxyType(dict(self.measurements)))
        else:
            object.__setattr__(self, 'measurements', dict(self.measurements))

    def __setattr__(self, key: str, value: Any) -> None:
        if getattr(self, 'locked', False):
            raise AnnotationLockedError(f"Annotation {self.id} is locked, cannot set {key!r}")
        super().__setattr__(key, value)

    def put_measurement(self, name: str, value: float) -> None:
        """Add or replace a measurement."""
        if self.locked:
            raise AnnotationLockedError(f"Annotation {self.id} is locked, cannot add {name!r}")
        self.measurements[name] = float(value)

    def lock(self) -> "Annotation":
        """Freeze the annotation and its measurements. Returns self."""
        if not self.locked:
            object.__setattr__(self, 'measurements', MappingProxyType(dict(self.measurements)))
            object.__setattr__(self, 'locked', True)
        return self

    @property
    def area(self) -> float:
        """Geometry area in full-resolution pixels²."""
        return float(self.geometry.area)

    def with_geometry(self, geometry: BaseGeometry,
                      measurements: Optional[Mapping[str, float]] = None) -> "Annotation":
        """
        Copy with a new geometry; id, class and lock are kept.

        ``measurements`` replaces the measurement map when given, otherwise
        the current one is copied.
        """
        return Annotation(
            geometry=geometry,
            classification=self.classification,
            measurements=dict(self.measurements if measurements is None else measurements),
            name=self.name,
            id=self.id,
            locked=self.locked,
        )

    def to_dict(self) -> Dict[str, Any]:
        """GeoJSON Feature representation."""
        properties: Dict[str, Any] = {
            'objectType': 'annotation',
            'isLocked': self.locked,
            'measurements': dict(self.measurements),
        }
        if self.classification is not None:
            properties['classification'] = {'name': self.classification}
        if self.name is not None:
            properties['name'] = self.name
        return {
            'type': 'Feature',
            'id': self.id,
            'geometry': mapping(self.geometry),
            'properties': properties,
        }
