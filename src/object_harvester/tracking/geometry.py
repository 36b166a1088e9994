"""
Box geometry utilities.

All boxes are axis-aligned ``(x, y, width, height)`` in pixel coordinates
with a top-left origin, matching the detector output format.
"""

from typing import Sequence, Tuple, Union

import numpy as np

BoxLike = Union[Sequence[float], np.ndarray]


def box_area(box: BoxLike) -> float:
    """Area of a box; negative sizes count as zero."""
    return float(max(0.0, box[2]) * max(0.0, box[3]))


def box_center(box: BoxLike) -> Tuple[float, float]:
    """Center point of a box as (cx, cy)."""
    return (float(box[0] + box[2] / 2), float(box[1] + box[3] / 2))


def is_degenerate(box: BoxLike) -> bool:
    """True for zero-area, negative-size or non-finite boxes."""
    values = np.asarray(box, dtype=np.float64)
    if values.shape != (4,) or not np.all(np.isfinite(values)):
        return True
    return values[2] <= 0 or values[3] <= 0


def overlap_area(box_a: BoxLike, box_b: BoxLike) -> float:
    """
    Compute the intersection area of two boxes.

    Args:
        box_a: First box (x, y, w, h)
        box_b: Second box (x, y, w, h)

    Returns:
        Intersection area, 0 if the boxes are disjoint
    """
    inter_width = max(
        0.0, min(box_a[0] + box_a[2], box_b[0] + box_b[2]) - max(box_a[0], box_b[0])
    )
    inter_height = max(
        0.0, min(box_a[1] + box_a[3], box_b[1] + box_b[3]) - max(box_a[1], box_b[1])
    )
    return float(inter_width * inter_height)


def iou(box_a: BoxLike, box_b: BoxLike) -> float:
    """
    Compute Intersection over Union between two boxes.

    Args:
        box_a: First box (x, y, w, h)
        box_b: Second box (x, y, w, h)

    Returns:
        IoU value in [0, 1]; 0 when the union is empty
    """
    inter_area = overlap_area(box_a, box_b)
    union_area = box_area(box_a) + box_area(box_b) - inter_area

    if union_area <= 0:
        return 0.0
    return inter_area / union_area


def overlap_ratio(box: BoxLike, region: BoxLike) -> float:
    """
    Fraction of ``box`` covered by ``region``.

    Unlike IoU this is asymmetric: a small box inside a big region has
    ratio 1.0, while the big region against the small box does not.
    """
    area = box_area(box)
    if area <= 0:
        return 0.0
    return overlap_area(box, region) / area


def overlap_ratio_batch(box: BoxLike, regions: np.ndarray) -> np.ndarray:
    """
    Compute ``overlap_ratio(box, region)`` against many regions at once.

    Args:
        box: Box (x, y, w, h)
        regions: Regions, shape (N, 4)

    Returns:
        Ratios of shape (N,)
    """
    regions = np.asarray(regions, dtype=np.float64).reshape(-1, 4)
    area = box_area(box)
    if len(regions) == 0 or area <= 0:
        return np.zeros((len(regions),), dtype=np.float64)

    x1 = np.maximum(box[0], regions[:, 0])
    y1 = np.maximum(box[1], regions[:, 1])
    x2 = np.minimum(box[0] + box[2], regions[:, 0] + regions[:, 2])
    y2 = np.minimum(box[1] + box[3], regions[:, 1] + regions[:, 3])

    inter = np.maximum(0, x2 - x1) * np.maximum(0, y2 - y1)
    return inter / area


def iou_batch(boxes_a: np.ndarray, boxes_b: np.ndarray) -> np.ndarray:
    """
    Compute IoU matrix between two sets of boxes.

    Args:
        boxes_a: First set of boxes, shape (N, 4)
        boxes_b: Second set of boxes, shape (M, 4)

    Returns:
        IoU matrix of shape (N, M)
    """
    boxes_a = np.asarray(boxes_a, dtype=np.float64).reshape(-1, 4)
    boxes_b = np.asarray(boxes_b, dtype=np.float64).reshape(-1, 4)

    if len(boxes_a) == 0 or len(boxes_b) == 0:
        return np.empty((len(boxes_a), len(boxes_b)), dtype=np.float64)

    area_a = np.maximum(0, boxes_a[:, 2]) * np.maximum(0, boxes_a[:, 3])
    area_b = np.maximum(0, boxes_b[:, 2]) * np.maximum(0, boxes_b[:, 3])

    # Corners, shape (N, M, 2)
    lt = np.maximum(boxes_a[:, None, :2], boxes_b[:, :2])
    rb = np.minimum(
        boxes_a[:, None, :2] + boxes_a[:, None, 2:],
        boxes_b[:, :2] + boxes_b[:, 2:],
    )

    wh = np.maximum(0, rb - lt)
    inter = wh[:, :, 0] * wh[:, :, 1]
    union = area_a[:, None] + area_b - inter

    result = np.zeros_like(inter)
    np.divide(inter, union, out=result, where=union > 0)
    return result
