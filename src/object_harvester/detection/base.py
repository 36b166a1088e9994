"""
Abstract base class for object detectors.

This module defines the interface that all detector implementations must follow,
enabling easy swapping between different detection backends.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Sequence

import numpy as np


@dataclass
class Detection:
    """
    Represents a single object detection.

    Attributes:
        bbox: Bounding box as [x, y, width, height] in pixel coordinates
        class_name: Detector class label, e.g. "cat"
        score: Detection confidence score [0, 1]
    """
    bbox: np.ndarray  # Shape: (4,) - [x, y, w, h]
    class_name: str
    score: float

    def __post_init__(self) -> None:
        self.bbox = np.asarray(self.bbox, dtype=np.float64)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Detection":
        """Build from a ``{"class", "score", "bbox"}`` mapping."""
        return cls(
            bbox=np.asarray(data["bbox"], dtype=np.float64),
            class_name=str(data["class"]),
            score=float(data["score"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a ``{"class", "score", "bbox"}`` mapping."""
        return {
            "class": self.class_name,
            "score": self.score,
            "bbox": [float(v) for v in self.bbox],
        }

    def with_bbox(self, bbox: Sequence[float]) -> "Detection":
        """Copy of this detection with a different box."""
        return replace(self, bbox=np.asarray(bbox, dtype=np.float64))

    @property
    def width(self) -> float:
        """Bounding box width."""
        return float(self.bbox[2])

    @property
    def height(self) -> float:
        """Bounding box height."""
        return float(self.bbox[3])

    @property
    def area(self) -> float:
        """Bounding box area in pixels."""
        return max(0.0, self.width) * max(0.0, self.height)

    @property
    def center(self) -> np.ndarray:
        """Center point of bounding box as [cx, cy]."""
        return np.array([
            self.bbox[0] + self.bbox[2] / 2,
            self.bbox[1] + self.bbox[3] / 2
        ])

    @property
    def is_degenerate(self) -> bool:
        """True for malformed, non-finite or zero-area boxes."""
        if self.bbox.shape != (4,) or not np.all(np.isfinite(self.bbox)):
            return True
        return self.width <= 0 or self.height <= 0


@dataclass
class DetectionResult:
    """
    Container for all detections in a single frame.

    Attributes:
        detections: List of Detection objects, in detector order
        frame_shape: Original frame shape as (H, W, C)
    """
    detections: List[Detection]
    frame_shape: tuple

    def __len__(self) -> int:
        return len(self.detections)

    def __iter__(self):
        return iter(self.detections)

    @property
    def centers(self) -> List[tuple]:
        """Centers of all detections as (cx, cy) tuples, in order."""
        return [(float(d.center[0]), float(d.center[1])) for d in self.detections]

    def filter_by_class(self, class_names: List[str]) -> "DetectionResult":
        """Return new result containing only specified classes."""
        filtered = [d for d in self.detections if d.class_name in class_names]
        return DetectionResult(detections=filtered, frame_shape=self.frame_shape)

    def filter_by_confidence(self, min_score: float) -> "DetectionResult":
        """Return new result containing only detections above threshold."""
        filtered = [d for d in self.detections if d.score >= min_score]
        return DetectionResult(detections=filtered, frame_shape=self.frame_shape)

    def to_numpy(self) -> tuple:
        """
        Convert to numpy arrays for batch processing.

        Returns:
            boxes: (N, 4) array of bounding boxes
            class_names: list of N class labels
            scores: (N,) array of confidence scores
        """
        if not self.detections:
            return (
                np.empty((0, 4), dtype=np.float64),
                [],
                np.empty((0,), dtype=np.float64)
            )

        boxes = np.array([d.bbox for d in self.detections], dtype=np.float64)
        class_names = [d.class_name for d in self.detections]
        scores = np.array([d.score for d in self.detections], dtype=np.float64)

        return boxes, class_names, scores


class BaseDetector(ABC):
    """
    Abstract base class for object detectors.

    Implementations must be callable repeatedly on live or still frames
    and keep no state between calls.
    """

    @abstractmethod
    def detect(
        self,
        frame: np.ndarray,
        max_results: Optional[int] = None,
        min_score: Optional[float] = None
    ) -> DetectionResult:
        """
        Run detection on a single frame.

        Args:
            frame: BGR image as numpy array, shape (H, W, 3)
            max_results: Keep at most this many detections (highest score first)
            min_score: Drop detections scoring below this

        Returns:
            DetectionResult containing all detections
        """
        pass

    @property
    @abstractmethod
    def device(self) -> str:
        """Return the device being used (cuda/cpu)."""
        pass

    @property
    @abstractmethod
    def model_name(self) -> str:
        """Return the model name/identifier."""
        pass
