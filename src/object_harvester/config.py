"""
Centralized configuration management for Object Harvester.

This module provides typed, validated configuration using dataclasses.
Configuration can be loaded from YAML files or constructed programmatically.
"""

from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple
import yaml


# =============================================================================
# COCO Class Definitions
# =============================================================================

# torchvision label ids (91-id COCO layout, 'N/A' marks unused ids)
COCO_CLASSES: Dict[int, str] = {
    0: 'background', 1: 'person', 2: 'bicycle', 3: 'car', 4: 'motorcycle',
    5: 'airplane', 6: 'bus', 7: 'train', 8: 'truck', 9: 'boat',
    10: 'traffic light', 11: 'fire hydrant', 13: 'stop sign',
    14: 'parking meter', 15: 'bench', 16: 'bird', 17: 'cat', 18: 'dog',
    19: 'horse', 20: 'sheep', 21: 'cow', 22: 'elephant', 23: 'bear',
    24: 'zebra', 25: 'giraffe', 27: 'backpack', 28: 'umbrella',
    31: 'handbag', 32: 'tie', 33: 'suitcase', 34: 'frisbee', 35: 'skis',
    36: 'snowboard', 37: 'sports ball', 38: 'kite', 39: 'baseball bat',
    40: 'baseball glove', 41: 'skateboard', 42: 'surfboard',
    43: 'tennis racket', 44: 'bottle', 46: 'wine glass', 47: 'cup',
    48: 'fork', 49: 'knife', 50: 'spoon', 51: 'bowl', 52: 'banana',
    53: 'apple', 54: 'sandwich', 55: 'orange', 56: 'broccoli', 57: 'carrot',
    58: 'hot dog', 59: 'pizza', 60: 'donut', 61: 'cake', 62: 'chair',
    63: 'couch', 64: 'potted plant', 65: 'bed', 67: 'dining table',
    70: 'toilet', 72: 'tv', 73: 'laptop', 74: 'mouse', 75: 'remote',
    76: 'keyboard', 77: 'cell phone', 78: 'microwave', 79: 'oven',
    80: 'toaster', 81: 'sink', 82: 'refrigerator', 84: 'book', 85: 'clock',
    86: 'vase', 87: 'scissors', 88: 'teddy bear', 89: 'hair drier',
    90: 'toothbrush',
}

# Fraction of a detection box that must be covered before it counts as occluded
OCCLUSION_THRESHOLD_LENIENT = 0.1
OCCLUSION_THRESHOLD_STRICT = 0.3


# =============================================================================
# Configuration Dataclasses
# =============================================================================

@dataclass
class DetectorConfig:
    """Configuration for object detection."""

    model_name: str = "ssdlite320_mobilenet_v3_large"
    device: str = "auto"  # "auto", "cuda", or "cpu"
    default_confidence: float = 0.5
    max_results: int = 20
    min_score: Optional[float] = None  # Floor overriding per-class thresholds

    # Per-class confidence thresholds (class name -> threshold)
    class_thresholds: Dict[str, float] = field(default_factory=dict)

    def get_threshold(self, class_name: str) -> float:
        """Get confidence threshold for a specific class."""
        return self.class_thresholds.get(class_name, self.default_confidence)


@dataclass
class TrackerConfig:
    """Configuration for the duplicate-suppressing object tracker."""

    iou_threshold: float = 0.3  # IoU must exceed this to count as a duplicate
    confidence_threshold: float = 0.1  # Max score delta for a duplicate
    temporal_threshold_ms: float = 10_000.0  # Expire tracks unseen this long
    motion_compensation: bool = True


@dataclass
class OcclusionConfig:
    """Configuration for the occlusion map of harvested regions."""

    threshold: float = OCCLUSION_THRESHOLD_STRICT
    stream_padding: int = 30  # Pixels added around regions on video/webcam
    image_padding: int = 0  # Pixels added around regions on still images
    compact_expired: bool = True  # Drop regions whose track has expired
    max_regions: Optional[int] = 512  # None = unbounded

    def padding_for(self, is_static: bool) -> int:
        """Padding to apply for a still image or a stream."""
        return self.image_padding if is_static else self.stream_padding


@dataclass
class SourceConfig:
    """Configuration for frame sources and tick pacing."""

    display_width: int = 640  # Still images are scaled down to this width
    webcam_index: int = 0
    webcam_width: int = 640
    webcam_height: int = 480
    min_tick_delay_ms: float = 0.0
    max_frames: Optional[int] = None  # None = run until the source ends
    video_formats: Tuple[str, ...] = (".mp4", ".mkv", ".avi", ".mov", ".webm")
    image_formats: Tuple[str, ...] = (".jpg", ".jpeg", ".png", ".bmp", ".webp")


@dataclass
class OutputConfig:
    """Configuration for output generation."""

    output_dir: Path = field(default_factory=lambda: Path("output"))
    save_crops: bool = True
    save_manifest: bool = True
    show_window: bool = False
    box_color: Tuple[int, int, int] = (0, 0, 255)  # BGR red
    visualization_line_thickness: int = 2
    visualization_font_scale: float = 0.6


@dataclass
class PipelineConfig:
    """Master configuration combining all sub-configs."""

    detector: DetectorConfig = field(default_factory=DetectorConfig)
    tracker: TrackerConfig = field(default_factory=TrackerConfig)
    occlusion: OcclusionConfig = field(default_factory=OcclusionConfig)
    source: SourceConfig = field(default_factory=SourceConfig)
    output: OutputConfig = field(default_factory=OutputConfig)

    # Logging configuration
    log_level: str = "INFO"
    log_file: Optional[Path] = None

    @classmethod
    def from_yaml(cls, path: Path) -> "PipelineConfig":
        """Load configuration from a YAML file."""
        with open(path, 'r') as f:
            data = yaml.safe_load(f) or {}

        source = dict(data.get('source', {}))
        for key in ('video_formats', 'image_formats'):
            if key in source:
                source[key] = tuple(source[key])

        output = dict(data.get('output', {}))
        if 'box_color' in output:
            output['box_color'] = tuple(output['box_color'])

        return cls(
            detector=DetectorConfig(**data.get('detector', {})),
            tracker=TrackerConfig(**data.get('tracker', {})),
            occlusion=OcclusionConfig(**data.get('occlusion', {})),
            source=SourceConfig(**source),
            output=OutputConfig(
                output_dir=Path(output.pop('output_dir', 'output')),
                **output
            ),
            log_level=data.get('log_level', 'INFO'),
            log_file=Path(data['log_file']) if data.get('log_file') else None,
        )

    def to_dict(self) -> dict:
        """Convert to a plain dictionary suitable for YAML."""
        source = asdict(self.source)
        source['video_formats'] = list(self.source.video_formats)
        source['image_formats'] = list(self.source.image_formats)

        output = asdict(self.output)
        output['output_dir'] = str(self.output.output_dir)
        output['box_color'] = list(self.output.box_color)

        return {
            'detector': asdict(self.detector),
            'tracker': asdict(self.tracker),
            'occlusion': asdict(self.occlusion),
            'source': source,
            'output': output,
            'log_level': self.log_level,
            'log_file': str(self.log_file) if self.log_file else None,
        }

    def to_yaml(self, path: Path) -> None:
        """Save configuration to a YAML file."""
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, 'w') as f:
            yaml.dump(self.to_dict(), f, default_flow_style=False, sort_keys=False)


# =============================================================================
# Default Configuration Factory
# =============================================================================

def get_default_config() -> PipelineConfig:
    """Create default configuration suitable for most use cases."""
    return PipelineConfig()
