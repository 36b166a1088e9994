"""
Global frame-to-frame motion estimation.

This is a coarse drift compensator for roughly static scenes with camera
jitter. Detection centers from consecutive frames are paired by position
in the detector output, not by correspondence, so the estimate degrades
when several objects move independently. That is a known approximation.
"""

import logging
from typing import List, Sequence, Tuple

import numpy as np

from .geometry import BoxLike

logger = logging.getLogger(__name__)

Point = Tuple[float, float]
Shift = Tuple[float, float]

NO_SHIFT: Shift = (0.0, 0.0)


def estimate_shift(previous: Sequence[Point], current: Sequence[Point]) -> Shift:
    """
    Average displacement of the first ``min(len)`` centers, paired by index.

    Args:
        previous: Detection centers from the prior frame
        current: Detection centers from this frame, in detector order

    Returns:
        (dx, dy); (0, 0) when either sequence is empty
    """
    count = min(len(previous), len(current))
    if count == 0:
        return NO_SHIFT

    prev = np.asarray(previous[:count], dtype=np.float64).reshape(count, 2)
    curr = np.asarray(current[:count], dtype=np.float64).reshape(count, 2)
    dx, dy = (curr - prev).mean(axis=0)
    return (float(dx), float(dy))


def apply_shift(box: BoxLike, shift: Shift) -> np.ndarray:
    """Remove estimated motion from a raw box (x, y, w, h)."""
    corrected = np.array(box, dtype=np.float64)
    corrected[0] -= shift[0]
    corrected[1] -= shift[1]
    return corrected


def remove_shift(box: BoxLike, shift: Shift) -> np.ndarray:
    """Map a motion-corrected box back onto the uncorrected frame."""
    restored = np.array(box, dtype=np.float64)
    restored[0] += shift[0]
    restored[1] += shift[1]
    return restored


class MotionEstimator:
    """
    Keeps the previous frame's detection centers and estimates the shift.

    Example:
        >>> estimator = MotionEstimator()
        >>> estimator.update([(10.0, 10.0)])
        (0.0, 0.0)
        >>> estimator.update([(13.0, 12.0)])
        (3.0, 2.0)
    """

    def __init__(self):
        self._previous_centers: List[Point] = []

    @property
    def previous_centers(self) -> List[Point]:
        """Centers recorded on the last update."""
        return list(self._previous_centers)

    def update(self, current_centers: Sequence[Point]) -> Shift:
        """Estimate the shift against the last frame and store this frame."""
        shift = estimate_shift(self._previous_centers, current_centers)
        self._previous_centers = [(float(x), float(y)) for x, y in current_centers]

        if shift != NO_SHIFT:
            logger.debug(f"Estimated motion shift dx={shift[0]:.2f} dy={shift[1]:.2f}")
        return shift

    def reset(self) -> None:
        """Forget the previous frame."""
        self._previous_centers = []
