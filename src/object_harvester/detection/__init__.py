"""
Detection module for Object Harvester.

This module provides object detection capabilities with a pluggable
architecture supporting different detection backends.

Available Detectors:
    - TorchvisionDetector: COCO detection models from torchvision

Example:
    >>> from object_harvester.detection import TorchvisionDetector
    >>> detector = TorchvisionDetector()
    >>> result = detector.detect(bgr_frame)
"""

from .base import BaseDetector, Detection, DetectionResult
from .torchvision_detector import SUPPORTED_MODELS, TorchvisionDetector

__all__ = [
    "BaseDetector",
    "Detection",
    "DetectionResult",
    "SUPPORTED_MODELS",
    "TorchvisionDetector",
]
