"""
Occlusion map of already harvested regions.

Every confirmed object leaves a (optionally padded) rectangle behind.
Later detections mostly covered by one of these rectangles are treated
as re-detections of the same physical area and dropped.
"""

import logging
from dataclasses import dataclass
from typing import Iterable, List, Optional

import numpy as np

from .geometry import BoxLike, overlap_ratio_batch

logger = logging.getLogger(__name__)


@dataclass
class OcclusionRegion:
    """
    A harvested rectangle.

    Attributes:
        bbox: Region as (x, y, w, h), padding already applied
        track_id: Tracked object that produced the region, if any
    """
    bbox: np.ndarray
    track_id: Optional[int] = None


def pad_box(box: BoxLike, padding: float) -> np.ndarray:
    """Grow a box by ``padding`` on every side, clamping x/y at zero."""
    x, y, w, h = (float(v) for v in box)
    left = max(0.0, x - padding)
    top = max(0.0, y - padding)
    right = x + w + padding
    bottom = y + h + padding
    return np.array([left, top, right - left, bottom - top], dtype=np.float64)


class OcclusionMap:
    """
    Ordered arena of harvested regions.

    Regions are append-only between resets, except for two bounded-growth
    rules: ``compact`` drops regions owned by expired tracks, and
    ``max_regions`` evicts the oldest regions once the arena is full.

    Args:
        max_regions: Upper bound on stored regions, None for unbounded

    Example:
        >>> occlusion = OcclusionMap()
        >>> occlusion.add((10, 10, 50, 50), padding=30, track_id=1)
        >>> occlusion.is_occluded((20, 20, 10, 10), threshold=0.3)
        True
    """

    def __init__(self, max_regions: Optional[int] = None):
        self._max_regions = max_regions
        self._regions: List[OcclusionRegion] = []

    def __len__(self) -> int:
        return len(self._regions)

    def __iter__(self):
        return iter(self._regions)

    @property
    def regions(self) -> np.ndarray:
        """All region boxes, shape (N, 4)."""
        if not self._regions:
            return np.empty((0, 4), dtype=np.float64)
        return np.stack([r.bbox for r in self._regions])

    def is_occluded(self, box: BoxLike, threshold: float) -> bool:
        """True if any region covers more than ``threshold`` of ``box``."""
        return bool(self.covering(box, threshold))

    def covering(self, box: BoxLike, threshold: float) -> List[OcclusionRegion]:
        """Regions covering more than ``threshold`` of ``box``, oldest first."""
        if not self._regions:
            return []
        ratios = overlap_ratio_batch(box, self.regions)
        return [r for r, ratio in zip(self._regions, ratios) if ratio > threshold]

    def add(
        self,
        region: BoxLike,
        padding: float = 0,
        track_id: Optional[int] = None
    ) -> OcclusionRegion:
        """
        Append a region, optionally padded on all sides.

        Args:
            region: Box (x, y, w, h) in frame coordinates
            padding: Pixels to grow the region by on each side
            track_id: Tracked object the region belongs to

        Returns:
            The stored region
        """
        stored = OcclusionRegion(bbox=pad_box(region, padding), track_id=track_id)
        self._regions.append(stored)

        if self._max_regions is not None and len(self._regions) > self._max_regions:
            evicted = len(self._regions) - self._max_regions
            del self._regions[:evicted]
            logger.debug(f"Evicted {evicted} oldest occlusion region(s)")

        return stored

    def compact(self, live_track_ids: Iterable[int]) -> int:
        """
        Drop regions whose owning track is no longer alive.

        Regions without an owner are kept.

        Returns:
            Number of regions removed
        """
        live = set(live_track_ids)
        before = len(self._regions)
        self._regions = [
            r for r in self._regions
            if r.track_id is None or r.track_id in live
        ]
        removed = before - len(self._regions)
        if removed:
            logger.debug(f"Compacted {removed} occlusion region(s)")
        return removed

    def reset(self) -> None:
        """Clear all regions."""
        self._regions.clear()
        logger.debug("Occlusion map reset")
