"""
Object Harvester - New-object detection on live and recorded frames.

Consumes per-frame detections and decides which ones are genuinely new
physical objects, cropping each new object exactly once and masking the
harvested region so it is not picked up again.

Example:
    >>> from object_harvester import HarvestPipeline
    >>> pipeline = HarvestPipeline()
    >>> stats = pipeline.process("video.mp4")

For quick usage:
    >>> from object_harvester import run_pipeline
    >>> stats = run_pipeline("photo.jpg", output_dir="output/")
"""

__version__ = "0.1.0"
__author__ = "Your Name"

from .config import (
    PipelineConfig,
    DetectorConfig,
    TrackerConfig,
    OcclusionConfig,
    SourceConfig,
    OutputConfig,
    COCO_CLASSES,
    get_default_config,
)
from .errors import (
    HarvesterError,
    DetectorUnavailableError,
    DetectionCallFailedError,
    DegenerateGeometryError,
    SourceUnavailableError,
)
from .pipeline import (
    CropRequest,
    TickResult,
    FrameOrchestrator,
    HarvestSession,
    SessionStats,
    HarvestPipeline,
    run_pipeline,
)

__all__ = [
    # Version info
    "__version__",
    "__author__",
    # Configuration
    "PipelineConfig",
    "DetectorConfig",
    "TrackerConfig",
    "OcclusionConfig",
    "SourceConfig",
    "OutputConfig",
    "COCO_CLASSES",
    "get_default_config",
    # Errors
    "HarvesterError",
    "DetectorUnavailableError",
    "DetectionCallFailedError",
    "DegenerateGeometryError",
    "SourceUnavailableError",
    # Pipeline
    "CropRequest",
    "TickResult",
    "FrameOrchestrator",
    "HarvestSession",
    "SessionStats",
    "HarvestPipeline",
    "run_pipeline",
]
