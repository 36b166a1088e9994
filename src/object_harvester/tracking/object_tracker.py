"""
Duplicate-suppressing object tracker.

Keeps recently confirmed objects alive for a fixed time window and
classifies each incoming detection as either a new object or a
re-detection of an object already tracked. Matching is greedy: the first
same-class tracked object that overlaps enough and has a similar
confidence wins.
"""

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Dict, List, Optional

import numpy as np

from .geometry import iou
from ..config import TrackerConfig
from ..detection.base import Detection

logger = logging.getLogger(__name__)


class MatchKind(Enum):
    """Outcome of matching a detection against tracked objects."""
    NEW = auto()
    DUPLICATE = auto()


@dataclass(frozen=True)
class MatchResult:
    """
    Result of ``ObjectTracker.match``.

    Attributes:
        kind: NEW or DUPLICATE
        track_id: Matched tracked object for duplicates, None otherwise
        iou: IoU with the matched object (0 for new objects)
    """
    kind: MatchKind
    track_id: Optional[int] = None
    iou: float = 0.0

    @property
    def is_new(self) -> bool:
        return self.kind is MatchKind.NEW

    @property
    def is_duplicate(self) -> bool:
        return self.kind is MatchKind.DUPLICATE


NEW_OBJECT = MatchResult(MatchKind.NEW)


@dataclass
class TrackedObject:
    """
    A previously confirmed detection.

    Attributes:
        track_id: Unique, monotonically increasing identifier
        class_name: Detector class label
        bbox: Last observed box (x, y, w, h), motion-corrected
        score: Last observed confidence
        last_seen: Timestamp of the last observation, in milliseconds
    """
    track_id: int
    class_name: str
    bbox: np.ndarray
    score: float
    last_seen: float

    def age_ms(self, now: float) -> float:
        """Milliseconds since this object was last observed."""
        return now - self.last_seen


class ObjectTracker:
    """
    Tracks recently harvested objects to suppress duplicate harvests.

    Args:
        config: Tracker configuration

    Example:
        >>> tracker = ObjectTracker(TrackerConfig())
        >>> tracker.expire(now)
        >>> result = tracker.match(detection, now)
        >>> if result.is_new:
        ...     tracked = tracker.confirm_new(detection, now)
        ... else:
        ...     tracker.refresh(result.track_id, detection, now)
    """

    def __init__(self, config: Optional[TrackerConfig] = None):
        """Initialize the tracker."""
        self._config = config or TrackerConfig()
        self._objects: List[TrackedObject] = []
        self._last_id = 0

        logger.info(
            f"Initialized ObjectTracker (iou_threshold={self._config.iou_threshold}, "
            f"confidence_threshold={self._config.confidence_threshold}, "
            f"temporal_threshold_ms={self._config.temporal_threshold_ms})"
        )

    def __len__(self) -> int:
        return len(self._objects)

    def __iter__(self):
        return iter(self._objects)

    @property
    def objects(self) -> List[TrackedObject]:
        """Snapshot of the live tracked objects, oldest first."""
        return list(self._objects)

    @property
    def live_ids(self) -> List[int]:
        """Ids of all live tracked objects."""
        return [obj.track_id for obj in self._objects]

    def get(self, track_id: int) -> Optional[TrackedObject]:
        """Look up a tracked object by id."""
        for obj in self._objects:
            if obj.track_id == track_id:
                return obj
        return None

    def _next_id(self) -> int:
        """Next id: one past both the counter and the highest live id."""
        highest = max((obj.track_id for obj in self._objects), default=0)
        self._last_id = max(self._last_id, highest) + 1
        return self._last_id

    def expire(self, now: float, temporal_threshold_ms: Optional[float] = None) -> List[int]:
        """
        Remove objects not seen for at least the temporal threshold.

        Must run before matching so stale entries never block a new object.

        Args:
            now: Current timestamp in milliseconds
            temporal_threshold_ms: Override for the configured threshold

        Returns:
            Ids of the removed objects
        """
        if temporal_threshold_ms is None:
            temporal_threshold_ms = self._config.temporal_threshold_ms

        expired = [
            obj.track_id for obj in self._objects
            if obj.age_ms(now) >= temporal_threshold_ms
        ]
        if expired:
            self._objects = [
                obj for obj in self._objects
                if obj.age_ms(now) < temporal_threshold_ms
            ]
            logger.debug(f"Expired tracked objects {expired}")
        return expired

    def match(self, detection: Detection, now: Optional[float] = None) -> MatchResult:
        """
        Classify a detection as new or as a duplicate of a tracked object.

        A duplicate needs the same class, IoU above ``iou_threshold`` and a
        score delta below ``confidence_threshold``. The first qualifying
        object wins, so a detection never matches two objects.
        """
        for obj in self._objects:
            if obj.class_name != detection.class_name:
                continue

            overlap = iou(detection.bbox, obj.bbox)
            if overlap <= self._config.iou_threshold:
                continue

            delta = abs(detection.score - obj.score)
            if delta < self._config.confidence_threshold:
                return MatchResult(MatchKind.DUPLICATE, obj.track_id, overlap)

            logger.debug(
                f"Overlap {overlap:.2f} with track {obj.track_id} but score "
                f"delta {delta:.2f} too large, not a duplicate"
            )

        return NEW_OBJECT

    def confirm_new(self, detection: Detection, now: float) -> TrackedObject:
        """Start tracking a detection as a new object."""
        tracked = TrackedObject(
            track_id=self._next_id(),
            class_name=detection.class_name,
            bbox=np.array(detection.bbox, dtype=np.float64),
            score=float(detection.score),
            last_seen=now,
        )
        self._objects.append(tracked)

        logger.debug(
            f"Tracking new {tracked.class_name} as {tracked.track_id} "
            f"(score={tracked.score:.2f})"
        )
        return tracked

    def refresh(self, track_id: int, detection: Detection, now: float) -> TrackedObject:
        """
        Update the box, score and timestamp of a tracked object in place.

        Raises:
            KeyError: If no live object has ``track_id``
        """
        tracked = self.get(track_id)
        if tracked is None:
            raise KeyError(f"No tracked object with id {track_id}")

        tracked.bbox = np.array(detection.bbox, dtype=np.float64)
        tracked.score = float(detection.score)
        tracked.last_seen = now
        return tracked

    def touch(self, track_id: int, now: float) -> bool:
        """
        Mark a tracked object as seen without changing its box or score.

        Returns:
            False if no live object has ``track_id``
        """
        tracked = self.get(track_id)
        if tracked is None:
            return False
        tracked.last_seen = now
        return True

    def reset(self) -> None:
        """Reset all tracking state."""
        self._objects.clear()
        self._last_id = 0
        logger.info("Tracker reset")

    def get_track_count(self) -> Dict[str, int]:
        """Get number of live tracked objects per class."""
        counts: Dict[str, int] = {}
        for obj in self._objects:
            counts[obj.class_name] = counts.get(obj.class_name, 0) + 1
        return counts
