"""
Region-by-region stain threshold pipeline.

For every selected region:

    SELECTED -> EXTRACTED -> SMOOTHED -> THRESHOLDED -> CONTOURED
             -> REFINED -> ANNOTATED -> INSERTED

A stage that yields nothing (no channel, no foreground, every fragment too
small) ends the region in SKIPPED with a diagnostic; the run continues with
the next region. Failing to read a region's raster ends the whole run.

After all regions, the new annotations are selected and the hierarchy's
refine pass runs once over them.

Usage:
    from stainthresh.processing.pipeline import StainThresholdPipeline

    pipeline = StainThresholdPipeline(source, hierarchy, ThresholdParams(roi_class=None))
    report = pipeline.run()
    print(report.n_inserted, report.n_skipped)
"""

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Mapping, Optional

from tqdm import tqdm

from stainthresh.annotations.builder import build_annotation, insert_annotation, measure_channel
from stainthresh.annotations.objects import Annotation
from stainthresh.detection.threshold import otsu_threshold
from stainthresh.geometry.contours import (
    merge_polygons,
    pixel_to_image,
    polygon_parts,
    rasterize_geometry,
    trace_mask,
)
from stainthresh.geometry.refine import refine_geometry
from stainthresh.io.hierarchy import Hierarchy
from stainthresh.io.image_source import ImageSource, StainProfileProvider
from stainthresh.preprocessing.channels import StainProfile, extract_channel
from stainthresh.preprocessing.smoothing import gaussian_blur
from stainthresh.processing.regions import Region, base_pixel_size, enumerate_regions
from stainthresh.utils.config import ChannelMethod, ThresholdParams
from stainthresh.utils.logging import ProcessingTimer, get_logger, log_parameters

logger = get_logger(__name__)

RefineRunner = Callable[[Mapping[str, float], Optional[threading.Event]], None]


class RegionState(str, Enum):
    """Pipeline stage reached by a region."""

    SELECTED = "selected"
    EXTRACTED = "extracted"
    SMOOTHED = "smoothed"
    THRESHOLDED = "thresholded"
    CONTOURED = "contoured"
    REFINED = "refined"
    ANNOTATED = "annotated"
    INSERTED = "inserted"
    SKIPPED = "skipped"

    @property
    def terminal(self) -> bool:
        return self in (RegionState.INSERTED, RegionState.SKIPPED)


@dataclass
class RegionResult:
    """Outcome of one region's pass through the pipeline."""
    index: int
    region: Region
    state: RegionState = RegionState.SELECTED
    history: List[RegionState] = field(default_factory=lambda: [RegionState.SELECTED])
    threshold: Optional[float] = None
    annotation: Optional[Annotation] = None
    diagnostics: List[str] = field(default_factory=list)

    def advance(self, state: RegionState) -> None:
        if self.state.terminal:
            raise RuntimeError(f"Region {self.index} already finished as {self.state.value}")
        self.state = state
        self.history.append(state)

    def skip(self, message: Optional[str] = None) -> "RegionResult":
        if message:
            logger.warning(f"Region {self.index} skipped: {message}")
            self.diagnostics.append(message)
        self.advance(RegionState.SKIPPED)
        return self

    @property
    def inserted(self) -> bool:
        return self.state is RegionState.INSERTED

    @property
    def skipped(self) -> bool:
        return self.state is RegionState.SKIPPED

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'region': [self.region.x, self.region.y, self.region.width, self.region.height],
            'parent': self.region.parent.id if self.region.parent is not None else None,
            'state': self.state.value,
            'threshold': self.threshold,
            'annotation': self.annotation.id if self.annotation is not None else None,
            'diagnostics': list(self.diagnostics),
        }


@dataclass(frozen=True)
class RunContext:
    """Everything a region needs, resolved once per run and passed explicitly."""
    params: ThresholdParams
    source: ImageSource
    hierarchy: Hierarchy
    stains: Optional[StainProfile]
    insert_lock: threading.Lock
    cancel_event: threading.Event


@dataclass
class RunReport:
    """Summary of a pipeline run."""
    results: List[RegionResult] = field(default_factory=list)
    aborted: bool = False
    cancelled: bool = False
    refined: bool = False
    diagnostics: List[str] = field(default_factory=list)
    duration_seconds: Optional[float] = None

    @property
    def annotations(self) -> List[Annotation]:
        return [r.annotation for r in self.results if r.inserted]

    @property
    def n_inserted(self) -> int:
        return sum(1 for r in self.results if r.inserted)

    @property
    def n_skipped(self) -> int:
        return sum(1 for r in self.results if r.skipped)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'aborted': self.aborted,
            'cancelled': self.cancelled,
            'refined': self.refined,
            'n_regions': len(self.results),
            'n_inserted': self.n_inserted,
            'n_skipped': self.n_skipped,
            'duration_seconds': self.duration_seconds,
            'diagnostics': list(self.diagnostics),
            'regions': [r.to_dict() for r in self.results],
        }


class StainThresholdPipeline:
    """
    Threshold stain intensity region by region and annotate the result.

    Collaborators are injected so hosts and tests can substitute them.

    Args:
        source: Image source (extent, calibration, region reads)
        hierarchy: Annotation hierarchy (ROIs in, results out)
        params: Run configuration (defaults if None)
        stain_provider: Supplies the stain profile; defaults to ``source``
            when it implements get_stain_profile()
        refine_runner: Whole-hierarchy refine pass, called as
            ``runner(params, cancel_event)``; defaults to
            ``hierarchy.refine_annotations``
        run_refine: Run the refine pass after insertion (default True)
        show_progress: Show a tqdm progress bar over regions

    Raises:
        ValueError: If the image source has no pixel size calibration
    """

    def __init__(
        self,
        source: ImageSource,
        hierarchy: Hierarchy,
        params: Optional[ThresholdParams] = None,
        stain_provider: Optional[StainProfileProvider] = None,
        refine_runner: Optional[RefineRunner] = None,
        run_refine: bool = True,
        show_progress: bool = False,
    ):
        self.source = source
        self.hierarchy = hierarchy
        self.params = params if params is not None else ThresholdParams()
        self.base_pixel_size_um = base_pixel_size(source)

        if stain_provider is None and isinstance(source, StainProfileProvider):
            stain_provider = source
        self.stain_provider = stain_provider

        self.refine_runner: RefineRunner = (
            refine_runner if refine_runner is not None else hierarchy.refine_annotations
        )
        self.run_refine = run_refine
        self.show_progress = show_progress

    def resolve_stains(self) -> Optional[StainProfile]:
        """Stain profile for this run, or None when the image has none."""
        if self.stain_provider is None:
            return None
        return self.stain_provider.get_stain_profile()

    def run(self, cancel_event: Optional[threading.Event] = None) -> RunReport:
        """
        Process every selected region, then run the refine pass.

        Setting ``cancel_event`` stops the run before the next region starts;
        annotations already inserted are kept and the refine pass is not run.

        Returns:
            RunReport

        Raises:
            Exception: Whatever the image source raises when a region cannot
                be read (not retried)
            RunCancelled: If the refine pass is cancelled
        """
        params = self.params
        cancel_event = cancel_event if cancel_event is not None else threading.Event()
        report = RunReport()
        start = time.perf_counter()

        log_parameters(logger, params.model_dump(mode="json"), title="Stain threshold run")

        stains = self.resolve_stains()
        if params.channel_method is ChannelMethod.DECONVOLUTION and stains is None:
            message = ("An 8-bit RGB brightfield image with stain vectors is required "
                       "for colour deconvolution; nothing was processed")
            logger.error(message)
            report.aborted = True
            report.diagnostics.append(message)
            report.duration_seconds = time.perf_counter() - start
            return report

        self.hierarchy.fire_hierarchy_update()
        regions = enumerate_regions(self.hierarchy, params.roi_class, params.downsample, self.source)

        context = RunContext(
            params=params,
            source=self.source,
            hierarchy=self.hierarchy,
            stains=stains,
            insert_lock=threading.Lock(),
            cancel_event=cancel_event,
        )

        with ProcessingTimer(logger, f"thresholding {len(regions)} regions"):
            report.results = self._process_all(regions, context)

        report.cancelled = cancel_event.is_set()
        if any(r.inserted and r.region.parent is None for r in report.results):
            # Top-level insertions defer their update to here
            self.hierarchy.fire_hierarchy_update()

        logger.info(f"Inserted {report.n_inserted} annotations, skipped {report.n_skipped} regions")

        if report.cancelled:
            report.diagnostics.append("Run cancelled; remaining regions were not processed")
            logger.warning(report.diagnostics[-1])
        elif report.n_inserted > 0:
            self.hierarchy.select_objects_by_classification(params.target_class)
            if self.run_refine:
                with ProcessingTimer(logger, "refine annotations"):
                    self.refine_runner(params.refine_plugin_params(), cancel_event)
                report.refined = True

        report.duration_seconds = time.perf_counter() - start
        return report

    def _process_all(self, regions: List[Region], context: RunContext) -> List[RegionResult]:
        n_workers = min(context.params.n_workers, max(1, len(regions)))
        progress = tqdm(total=len(regions), desc="Thresholding regions",
                        disable=not self.show_progress)

        def task(index: int, region: Region) -> RegionResult:
            if context.cancel_event.is_set():
                return RegionResult(index, region).skip("Run cancelled before this region started")
            try:
                return self.process_region(region, index, context)
            finally:
                progress.update(1)

        try:
            if n_workers == 1:
                return [task(i, region) for i, region in enumerate(regions)]

            with ThreadPoolExecutor(max_workers=n_workers) as executor:
                futures = [executor.submit(task, i, region) for i, region in enumerate(regions)]
                results = []
                try:
                    for future in futures:
                        results.append(future.result())
                except BaseException:
                    # A failed read ends the run; stop regions not yet started
                    context.cancel_event.set()
                    raise
                return results
        finally:
            progress.close()

    def process_region(self, region: Region, index: int, context: RunContext) -> RegionResult:
        """
        Run one region through every stage.

        Returns:
            RegionResult in state INSERTED or SKIPPED
        """
        params = context.params
        result = RegionResult(index=index, region=region)
        pixel_size = region.pixel_size_um

        raster = region.read(context.source)

        channel = extract_channel(
            raster, params.channel_method, context.stains, params.stain_name,
            diagnostics=result.diagnostics,
        )
        if channel is None:
            return result.skip()
        result.advance(RegionState.EXTRACTED)

        smoothed = gaussian_blur(channel, params.gaussian_sigma_um, pixel_size)
        result.advance(RegionState.SMOOTHED)

        threshold, mask = otsu_threshold(smoothed, region.pixel_mask())
        result.threshold = threshold
        result.advance(RegionState.THRESHOLDED)
        if not mask.any():
            return result.skip("No pixels above the Otsu threshold")

        traced = merge_polygons(trace_mask(mask))
        result.advance(RegionState.CONTOURED)

        refined = refine_geometry(traced, params.min_fragment_um2, params.max_hole_um2, pixel_size)
        if not polygon_parts(refined):
            return result.skip(
                f"Every fragment is smaller than {params.min_fragment_um2} um2"
            )
        result.advance(RegionState.REFINED)

        region_mask = mask if refined is traced else rasterize_geometry(refined, mask.shape)
        stats = measure_channel(smoothed, region_mask, pixel_size)
        annotation = build_annotation(
            pixel_to_image(refined, region.x, region.y, region.downsample),
            stats,
            params.stain_name,
            threshold,
            params.target_class,
        )
        result.annotation = annotation
        result.advance(RegionState.ANNOTATED)

        with context.insert_lock:
            insert_annotation(annotation, context.hierarchy, region.parent)
        result.advance(RegionState.INSERTED)

        logger.debug(f"Region {index}: threshold={threshold:.4f}, area={stats.area:.1f} um2, "
                     f"mean={stats.mean:.4f}")
        return result


def threshold_regions(
    source: ImageSource,
    hierarchy: Hierarchy,
    params: Optional[ThresholdParams] = None,
    cancel_event: Optional[threading.Event] = None,
    **kwargs: Any,
) -> RunReport:
    """
    Library entry point: build a pipeline and run it once.

    Args:
        source: Image source
        hierarchy: Annotation hierarchy
        params: Run configuration (defaults if None)
        cancel_event: Optional cancellation flag
        **kwargs: Passed to StainThresholdPipeline

    Returns:
        RunReport
    """
    pipeline = StainThresholdPipeline(source, hierarchy, params, **kwargs)
    return pipeline.run(cancel_event)
