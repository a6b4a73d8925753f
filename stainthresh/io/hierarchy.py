"""
Annotation hierarchy interface and an in-memory reference store.

The pipeline only needs the small Hierarchy protocol below. Hosts with their
own object trees adapt them to it; InMemoryHierarchy serves scripts, tests
and small images.
"""

import threading
from typing import Any, Dict, Iterator, List, Mapping, Optional, Protocol, runtime_checkable

from shapely.geometry.base import BaseGeometry

from stainthresh.annotations.builder import AREA_KEY
from stainthresh.annotations.objects import Annotation
from stainthresh.geometry.contours import polygon_parts
from stainthresh.geometry.refine import refine_geometry
from stainthresh.utils.logging import get_logger

logger = get_logger(__name__)

REFINE_PARAM_NAMES = ("minFragmentSizeMicrons", "maxHoleSizeMicrons")


class RunCancelled(RuntimeError):
    """Raised when a run or a long-running hierarchy operation is cancelled."""


@runtime_checkable
class Hierarchy(Protocol):
    """Tree of annotations rooted at the image."""

    def fire_hierarchy_update(self) -> None:
        ...

    def top_level_annotations(self) -> List[Annotation]:
        ...

    def add_object(self, obj: Annotation, fire_update: bool = True) -> None:
        ...

    def add_object_below_parent(self, parent: Annotation, obj: Annotation,
                                fire_update: bool = True) -> None:
        ...

    def select_objects_by_classification(self, classification: str) -> int:
        ...

    def refine_annotations(self, params: Mapping[str, float],
                           cancel_event: Optional[threading.Event] = None) -> None:
        """
        Whole-tree refine pass over the selected annotations.

        ``params`` carries "minFragmentSizeMicrons" and "maxHoleSizeMicrons".
        Raises RunCancelled when ``cancel_event`` is set mid-way.
        """
        ...


class InMemoryHierarchy:
    """
    Thread-safe in-memory annotation tree.

    Writes are serialized by a lock; reads return snapshots.

    Args:
        pixel_size_um: Full-resolution pixel size, used by refine_annotations()
    """

    def __init__(self, pixel_size_um: Optional[float] = None):
        self.pixel_size_um = pixel_size_um
        self._lock = threading.RLock()
        # parent id (None = root) -> children
        self._children: Dict[Optional[str], List[Annotation]] = {None: []}
        self._parents: Dict[str, Optional[str]] = {}
        self._selected: List[str] = []
        self.update_count = 0
        self.children_changed: List[Optional[str]] = []

    def __len__(self) -> int:
        return len(self._parents)

    def __iter__(self) -> Iterator[Annotation]:
        return iter(self.all_annotations())

    def __contains__(self, obj: Annotation) -> bool:
        return obj.id in self._parents

    def fire_hierarchy_update(self) -> None:
        with self._lock:
            self.update_count += 1
        logger.debug(f"Hierarchy update #{self.update_count} ({len(self)} objects)")

    def top_level_annotations(self) -> List[Annotation]:
        with self._lock:
            return list(self._children[None])

    def children_of(self, parent: Optional[Annotation]) -> List[Annotation]:
        with self._lock:
            key = None if parent is None else parent.id
            return list(self._children.get(key, []))

    def parent_of(self, obj: Annotation) -> Optional[Annotation]:
        with self._lock:
            parent_id = self._parents.get(obj.id)
            if parent_id is None:
                return None
            return self._find(parent_id)

    def all_annotations(self) -> List[Annotation]:
        """Every annotation, depth first from the root."""
        with self._lock:
            result: List[Annotation] = []
            stack = list(reversed(self._children[None]))
            while stack:
                obj = stack.pop()
                result.append(obj)
                stack.extend(reversed(self._children.get(obj.id, [])))
            return result

    def _find(self, obj_id: str) -> Optional[Annotation]:
        parent_id = self._parents.get(obj_id, None)
        for obj in self._children.get(parent_id, []):
            if obj.id == obj_id:
                return obj
        return None

    def _attach(self, parent_id: Optional[str], obj: Annotation) -> None:
        if obj.id in self._parents:
            raise ValueError(f"Annotation {obj.id} is already in the hierarchy")
        self._children.setdefault(parent_id, []).append(obj)
        self._children.setdefault(obj.id, [])
        self._parents[obj.id] = parent_id

    def add_object(self, obj: Annotation, fire_update: bool = True) -> None:
        with self._lock:
            self._attach(None, obj)
        if fire_update:
            self.fire_hierarchy_update()

    def add_object_below_parent(self, parent: Annotation, obj: Annotation,
                                fire_update: bool = True) -> None:
        with self._lock:
            if parent.id not in self._parents:
                raise ValueError(f"Parent annotation {parent.id} is not in the hierarchy")
            self._attach(parent.id, obj)
            if fire_update:
                self.children_changed.append(parent.id)
        if fire_update:
            self.fire_hierarchy_update()

    def remove_object(self, obj: Annotation) -> None:
        """Remove an annotation and its descendants."""
        with self._lock:
            if obj.id not in self._parents:
                return
            parent_id = self._parents[obj.id]
            self._children[parent_id] = [o for o in self._children[parent_id] if o.id != obj.id]
            stack = [obj.id]
            while stack:
                obj_id = stack.pop()
                stack.extend(child.id for child in self._children.pop(obj_id, []))
                self._parents.pop(obj_id, None)
                if obj_id in self._selected:
                    self._selected.remove(obj_id)

    def _replace(self, old: Annotation, new: Annotation) -> None:
        siblings = self._children[self._parents[old.id]]
        siblings[siblings.index(old)] = new

    @property
    def selected(self) -> List[Annotation]:
        with self._lock:
            return [obj for obj in self.all_annotations() if obj.id in self._selected]

    def select_objects_by_classification(self, classification: str) -> int:
        """Replace the selection with every annotation of this class."""
        with self._lock:
            self._selected = [obj.id for obj in self.all_annotations()
                              if obj.classification == classification]
            return len(self._selected)

    def _refreshed_area(self, obj: Annotation,
                        geometry: BaseGeometry) -> Optional[Dict[str, float]]:
        """Measurements with Area (IJ) recomputed for new geometry, or None."""
        if AREA_KEY not in obj.measurements:
            return None
        measurements = dict(obj.measurements)
        measurements[AREA_KEY] = float(geometry.area) * self.pixel_size_um * self.pixel_size_um
        return measurements

    def refine_annotations(self, params: Mapping[str, Any],
                           cancel_event: Optional[threading.Event] = None) -> None:
        """
        Refine the selected annotations' geometry in place.

        Annotations whose geometry vanishes are removed. When geometry
        changes, ``Area (IJ)`` (if present) is recomputed from the new
        geometry; intensity statistics keep their values from thresholding.
        Already refined objects stay refined if the pass is cancelled.
        """
        missing = [name for name in REFINE_PARAM_NAMES if name not in params]
        if missing:
            raise ValueError(f"Missing refine parameters: {missing}")
        if self.pixel_size_um is None:
            raise ValueError("Refining by physical area needs a calibrated hierarchy")

        min_fragment = float(params["minFragmentSizeMicrons"])
        max_hole = float(params["maxHoleSizeMicrons"])

        for obj in self.selected:
            if cancel_event is not None and cancel_event.is_set():
                raise RunCancelled("Refine annotations cancelled")
            refined = refine_geometry(obj.geometry, min_fragment, max_hole, self.pixel_size_um)
            if refined is obj.geometry:
                continue
            with self._lock:
                if obj.id not in self._parents:
                    continue
                if not polygon_parts(refined):
                    logger.info(f"Removing annotation {obj.id}: nothing left after refinement")
                    self.remove_object(obj)
                else:
                    measurements = self._refreshed_area(obj, refined)
                    self._replace(obj, obj.with_geometry(refined, measurements))

        self.fire_hierarchy_update()
