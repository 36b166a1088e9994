"""
Main pipeline for harvesting newly seen objects from a frame stream.

``FrameOrchestrator`` is the per-frame decision step: given one frame's
raw detections it decides which are new objects, which are re-detections
and which fall inside already harvested regions. ``HarvestSession`` drives
it tick by tick from a frame source and a detector, and hands new objects
to the cropper and visible detections to the renderer.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Union

import numpy as np
from tqdm import tqdm

from .config import PipelineConfig, get_default_config
from .detection import BaseDetector, Detection, TorchvisionDetector
from .errors import DegenerateGeometryError, DetectionCallFailedError
from .io import (
    CropExporter,
    Cropper,
    FrameSource,
    HarvestManifest,
    OpenCVRenderer,
    open_source,
)
from .tracking import (
    MotionEstimator,
    ObjectTracker,
    OcclusionMap,
    OcclusionRegion,
    apply_shift,
    remove_shift,
)
from .tracking.motion import NO_SHIFT, Shift

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


def monotonic_ms() -> float:
    """Monotonic clock in milliseconds."""
    return time.monotonic() * 1000.0


@dataclass
class CropRequest:
    """
    A newly confirmed object to be cropped.

    Attributes:
        track_id: Id of the new tracked object
        class_name: Detector class label
        score: Detection confidence
        bbox: Box (x, y, w, h) on the uncorrected frame
    """
    track_id: int
    class_name: str
    score: float
    bbox: np.ndarray


@dataclass
class TickResult:
    """
    Everything one frame produced.

    Attributes:
        frame_index: Zero-based index of the processed frame
        shift: Estimated (dx, dy) motion against the previous frame
        new_objects: Crop requests for newly confirmed objects
        duplicates: Ids of tracked objects refreshed by a re-detection
        occluded: Detections dropped inside harvested regions
        skipped: Detections with degenerate boxes
        expired: Ids of tracked objects expired this frame
        visible: Detections to draw, in detector order
        clear_first: Whether the renderer should start from a clean canvas
    """
    frame_index: int
    shift: Shift = NO_SHIFT
    new_objects: List[CropRequest] = field(default_factory=list)
    duplicates: List[int] = field(default_factory=list)
    occluded: List[Detection] = field(default_factory=list)
    skipped: List[Detection] = field(default_factory=list)
    expired: List[int] = field(default_factory=list)
    visible: List[Detection] = field(default_factory=list)
    clear_first: bool = False


class FrameOrchestrator:
    """
    Per-frame new-object decision step.

    Owns the tracker, the occlusion map and the motion estimator; nothing
    else mutates them. Each ``process`` call runs to completion.

    Args:
        config: Pipeline configuration. Uses defaults if None.
        is_static: True for still images (no padding, full redraws)

    Example:
        >>> orchestrator = FrameOrchestrator()
        >>> result = orchestrator.process(detections, now=0.0)
        >>> for request in result.new_objects:
        ...     print(request.track_id, request.class_name, request.bbox)
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        is_static: bool = False
    ):
        self._config = config or get_default_config()
        self._is_static = is_static
        self._tracker = ObjectTracker(self._config.tracker)
        self._occlusion = OcclusionMap(self._config.occlusion.max_regions)
        self._motion = MotionEstimator()
        self._frame_index = 0

    @property
    def tracker(self) -> ObjectTracker:
        return self._tracker

    @property
    def occlusion(self) -> OcclusionMap:
        return self._occlusion

    @property
    def motion(self) -> MotionEstimator:
        return self._motion

    @property
    def padding(self) -> int:
        """Padding applied to new occlusion regions."""
        return self._config.occlusion.padding_for(self._is_static)

    def _estimate_shift(self, detections: List[Detection]) -> Shift:
        centers = [
            (float(d.center[0]), float(d.center[1]))
            for d in detections if not d.is_degenerate
        ]
        shift = self._motion.update(centers)
        if not self._config.tracker.motion_compensation:
            return NO_SHIFT
        return shift

    def _keep_alive(
        self,
        regions: List[OcclusionRegion],
        class_name: str,
        now: float
    ) -> None:
        """Touch the same-class owners of regions covering a suppressed detection."""
        for region in regions:
            if region.track_id is None:
                continue
            owner = self._tracker.get(region.track_id)
            if owner is not None and owner.class_name == class_name:
                self._tracker.touch(owner.track_id, now)

    def process(self, detections: Iterable[Detection], now: float) -> TickResult:
        """
        Classify one frame's detections and update the session state.

        Args:
            detections: Raw detections in detector order
            now: Current timestamp in milliseconds

        Returns:
            TickResult with crop requests and the render instruction
        """
        detections = list(detections)
        threshold = self._config.occlusion.threshold
        result = TickResult(frame_index=self._frame_index, clear_first=self._is_static)
        self._frame_index += 1

        result.shift = self._estimate_shift(detections)

        # Expire before matching so stale objects never block new ones
        result.expired = self._tracker.expire(now)
        if result.expired and self._config.occlusion.compact_expired:
            self._occlusion.compact(self._tracker.live_ids)

        for detection in detections:
            if detection.is_degenerate:
                logger.debug(f"Skipping degenerate box {detection.bbox} ({detection.class_name})")
                result.skipped.append(detection)
                continue

            corrected = detection.with_bbox(apply_shift(detection.bbox, result.shift))

            covering = self._occlusion.covering(corrected.bbox, threshold)
            if covering:
                result.occluded.append(detection)
                self._keep_alive(covering, detection.class_name, now)
                continue

            match = self._tracker.match(corrected, now)
            if match.is_duplicate:
                self._tracker.refresh(match.track_id, corrected, now)
                result.duplicates.append(match.track_id)
                continue

            tracked = self._tracker.confirm_new(corrected, now)
            frame_box = remove_shift(corrected.bbox, result.shift)
            result.new_objects.append(CropRequest(
                track_id=tracked.track_id,
                class_name=tracked.class_name,
                score=tracked.score,
                bbox=frame_box,
            ))
            self._occlusion.add(frame_box, padding=self.padding, track_id=tracked.track_id)

        # Visibility against the updated map
        result.visible = [
            d for d in detections
            if not d.is_degenerate and not self._occlusion.is_occluded(
                apply_shift(d.bbox, result.shift), threshold
            )
        ]

        if result.new_objects or result.duplicates:
            logger.debug(
                f"Frame {result.frame_index}: {len(result.new_objects)} new, "
                f"{len(result.duplicates)} duplicate, {len(result.occluded)} occluded"
            )
        return result

    def reset(self) -> None:
        """Clear tracked objects, occlusion regions and previous centers."""
        self._tracker.reset()
        self._occlusion.reset()
        self._motion.reset()
        self._frame_index = 0


@dataclass
class SessionStats:
    """Counters for a harvest session."""
    ticks: int = 0
    failed_ticks: int = 0
    stale_ticks: int = 0
    harvested: int = 0
    duplicates: int = 0
    occluded: int = 0
    resets: int = 0
    last_error: Optional[Exception] = None


class HarvestSession:
    """
    Tick loop connecting a frame source and a detector to the orchestrator.

    Ticks never overlap. The detector runs in a worker thread and is the
    only point where a tick suspends; if ``reset`` is called meanwhile,
    the tick's detections are discarded.

    Args:
        detector: Detector to run on each frame
        source: Frame source
        config: Pipeline configuration. Uses defaults if None.
        exporter: Receives crops of new objects. None disables cropping.
        renderer: Draws visible detections. None disables rendering.
        clock: Millisecond clock, monotonic by default

    Example:
        >>> session = HarvestSession(detector, source, exporter=exporter)
        >>> stats = asyncio.run(session.run())
    """

    def __init__(
        self,
        detector: BaseDetector,
        source: FrameSource,
        config: Optional[PipelineConfig] = None,
        exporter: Optional[CropExporter] = None,
        renderer: Optional[OpenCVRenderer] = None,
        clock: Optional[Clock] = None
    ):
        self._config = config or get_default_config()
        self._detector = detector
        self._source = source
        self._exporter = exporter
        self._renderer = renderer
        self._clock = clock or monotonic_ms
        self._cropper = Cropper()
        self._orchestrator = FrameOrchestrator(self._config, is_static=source.is_static)

        self._generation = 0
        self._tick_lock = asyncio.Lock()
        self._stop_requested = False
        self._exhausted = False
        self._stats = SessionStats()

    @property
    def orchestrator(self) -> FrameOrchestrator:
        return self._orchestrator

    @property
    def stats(self) -> SessionStats:
        return self._stats

    @property
    def generation(self) -> int:
        """Incremented on every reset."""
        return self._generation

    @property
    def exhausted(self) -> bool:
        """True once a finite source has no more frames."""
        return self._exhausted

    def reset(self) -> None:
        """Clear all session state at once; an in-flight tick is discarded."""
        self._generation += 1
        self._orchestrator.reset()
        if self._exporter is not None:
            self._exporter.reset()
        self._stats.resets += 1
        logger.info(f"Session reset (generation {self._generation})")

    def stop(self) -> None:
        """Ask ``run`` to stop after the current tick."""
        self._stop_requested = True

    @property
    def exporter(self) -> Optional[CropExporter]:
        return self._exporter

    @property
    def renderer(self) -> Optional[OpenCVRenderer]:
        return self._renderer

    async def _detect(self, frame: np.ndarray):
        try:
            return await asyncio.to_thread(
                self._detector.detect,
                frame,
                self._config.detector.max_results,
                self._config.detector.min_score,
            )
        except Exception as e:
            raise DetectionCallFailedError(
                f"Detector failed on tick {self._stats.ticks}: {e}") from e

    async def tick(self) -> Optional[TickResult]:
        """
        Process one frame.

        Returns:
            The TickResult, or None if the source is exhausted, the
            detector failed, or the session was reset mid-tick

        Raises:
            SourceUnavailableError: If a live source stops
        """
        async with self._tick_lock:
            frame = self._source.read()
            if frame is None:
                self._exhausted = True
                return None

            self._stats.ticks += 1
            generation = self._generation

            try:
                detections = await self._detect(frame)
            except DetectionCallFailedError as e:
                self._stats.failed_ticks += 1
                self._stats.last_error = e
                logger.error(str(e), exc_info=e.__cause__)
                return None

            if generation != self._generation:
                self._stats.stale_ticks += 1
                logger.debug("Discarding detections from before the last reset")
                return None

            result = self._orchestrator.process(detections, self._clock())
            self._harvest(frame, result)
            self._render(frame, result)

            self._stats.duplicates += len(result.duplicates)
            self._stats.occluded += len(result.occluded)
            return result

    def _harvest(self, frame: np.ndarray, result: TickResult) -> None:
        """Crop and export every new object of a tick."""
        for request in result.new_objects:
            x, y, w, h = request.bbox
            try:
                artifact = self._cropper.crop(
                    frame, x, y, w, h, request.class_name, request.score)
            except DegenerateGeometryError as e:
                logger.warning(f"Not cropping track {request.track_id}: {e}")
                continue

            self._stats.harvested += 1
            if self._exporter is not None:
                self._exporter.export(artifact, request.track_id, result.frame_index)

    def _render(self, frame: np.ndarray, result: TickResult) -> None:
        if self._renderer is None:
            return

        self._renderer.render(
            frame,
            result.visible,
            clear_first=result.clear_first,
            masks=self._orchestrator.occlusion.regions,
        )

        key = self._renderer.poll_key()
        if key == 'q':
            self.stop()
        elif key == 'r':
            self.reset()

    async def run(
        self,
        max_frames: Optional[int] = None,
        show_progress: bool = False
    ) -> SessionStats:
        """
        Tick until the source ends, ``stop`` is called or ``max_frames``.

        Args:
            max_frames: Stop after this many frames. Uses config if None.
            show_progress: Whether to show a progress bar

        Returns:
            Session statistics
        """
        max_frames = max_frames or self._config.source.max_frames
        delay = self._config.source.min_tick_delay_ms / 1000.0
        self._stop_requested = False

        total = self._source.metadata.frame_count
        if max_frames is not None:
            total = min(total, max_frames) if total is not None else max_frames
        progress = tqdm(total=total, desc="Harvesting", unit="frame") if show_progress else None

        try:
            while not self._stop_requested:
                if max_frames is not None and self._stats.ticks >= max_frames:
                    break

                await self.tick()
                if self._exhausted:
                    break

                if progress is not None:
                    progress.update(1)
                    progress.set_postfix(harvested=self._stats.harvested)

                # Always yield so resets and stops can land between ticks
                await asyncio.sleep(delay)
        finally:
            if progress is not None:
                progress.close()

        logger.info(
            f"Session finished: {self._stats.ticks} frames, "
            f"{self._stats.harvested} harvested, {self._stats.failed_ticks} failed"
        )
        return self._stats


class HarvestPipeline:
    """
    End-to-end harvesting of new objects from an image, video or webcam.

    Args:
        config: Pipeline configuration. Uses defaults if None.
        detector: Detector to use. A TorchvisionDetector is created lazily
            if None.

    Example:
        >>> pipeline = HarvestPipeline()
        >>> stats = pipeline.process("input.mp4", output_dir="output/")
    """

    def __init__(
        self,
        config: Optional[PipelineConfig] = None,
        detector: Optional[BaseDetector] = None
    ):
        """Initialize the pipeline with configuration."""
        self._config = config or get_default_config()
        self._setup_logging()
        self._detector = detector

    def _setup_logging(self) -> None:
        """Configure logging based on config."""
        logging.basicConfig(
            level=getattr(logging, self._config.log_level.upper()),
            format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            handlers=[
                logging.StreamHandler(),
                *(
                    [logging.FileHandler(self._config.log_file)]
                    if self._config.log_file else []
                )
            ]
        )

    @property
    def detector(self) -> BaseDetector:
        """Get or create the detector (lazy initialization)."""
        if self._detector is None:
            logger.info("Initializing detector...")
            self._detector = TorchvisionDetector(self._config.detector)
        return self._detector

    def create_session(
        self,
        source: FrameSource,
        output_dir: Optional[Union[str, Path]] = None
    ) -> HarvestSession:
        """Build a session writing crops below ``output_dir``."""
        output_dir = Path(output_dir or self._config.output.output_dir)
        source_name = Path(source.metadata.name).stem.replace(":", "_")

        exporter = CropExporter(
            output_dir / source_name / "crops",
            manifest=HarvestManifest(source.metadata.name),
            save_images=self._config.output.save_crops,
        )
        renderer = OpenCVRenderer(self._config.output)

        return HarvestSession(
            self.detector,
            source,
            config=self._config,
            exporter=exporter,
            renderer=renderer,
        )

    def process(
        self,
        target: Union[str, Path, int],
        output_dir: Optional[Union[str, Path]] = None,
        max_frames: Optional[int] = None,
        show_progress: bool = True
    ) -> SessionStats:
        """
        Harvest objects from an image, a video file or a webcam index.

        Args:
            target: Image or video path, or webcam index
            output_dir: Directory for outputs. Uses config default if None.
            max_frames: Stop after this many frames
            show_progress: Whether to show a progress bar

        Returns:
            Session statistics
        """
        output_dir = Path(output_dir or self._config.output.output_dir)

        with open_source(target, self._config.source) as source:
            logger.info(f"Processing {source.metadata}")
            session = self.create_session(source, output_dir)
            stats = asyncio.run(session.run(
                max_frames=max_frames,
                show_progress=show_progress and not source.is_static,
            ))

            source_name = Path(source.metadata.name).stem.replace(":", "_")
            if self._config.output.save_manifest:
                session.exporter.manifest.save(
                    output_dir / f"{source_name}_harvest.json")
            if source.is_static and session.renderer.canvas is not None:
                session.renderer.save_frame(
                    output_dir / source_name / f"annotated_{source.metadata.name}")
            session.renderer.close()

        return stats


def run_pipeline(
    input_path: Union[str, Path, int],
    output_dir: Optional[Union[str, Path]] = None,
    config: Optional[PipelineConfig] = None,
    **kwargs
) -> SessionStats:
    """
    Convenience function to run the pipeline.

    Args:
        input_path: Image, video file, or webcam index
        output_dir: Output directory
        config: Pipeline configuration
        **kwargs: Additional arguments passed to ``HarvestPipeline.process``

    Returns:
        Session statistics
    """
    pipeline = HarvestPipeline(config)
    return pipeline.process(input_path, output_dir, **kwargs)
