"""
Tracking module for Object Harvester.

This module decides which detections are new objects: box geometry,
global motion estimation, the occlusion map of harvested regions and the
duplicate-suppressing object tracker.

Example:
    >>> from object_harvester.tracking import ObjectTracker, OcclusionMap
    >>> tracker = ObjectTracker()
    >>> occlusion = OcclusionMap()
"""

from .geometry import (
    box_area,
    box_center,
    is_degenerate,
    overlap_area,
    iou,
    overlap_ratio,
    overlap_ratio_batch,
    iou_batch,
)
from .motion import MotionEstimator, estimate_shift, apply_shift, remove_shift
from .occlusion import OcclusionMap, OcclusionRegion, pad_box
from .object_tracker import (
    ObjectTracker,
    TrackedObject,
    MatchKind,
    MatchResult,
)

__all__ = [
    # Geometry
    "box_area",
    "box_center",
    "is_degenerate",
    "overlap_area",
    "iou",
    "overlap_ratio",
    "overlap_ratio_batch",
    "iou_batch",
    # Motion
    "MotionEstimator",
    "estimate_shift",
    "apply_shift",
    "remove_shift",
    # Occlusion
    "OcclusionMap",
    "OcclusionRegion",
    "pad_box",
    # Object tracker
    "ObjectTracker",
    "TrackedObject",
    "MatchKind",
    "MatchResult",
]
