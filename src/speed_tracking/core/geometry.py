"""
Box geometry shared by the tracker and speed calculator.
"""

import math

from ..models import BoundingBox


def iou(box1: BoundingBox, box2: BoundingBox) -> float:
    """Intersection over union of two boxes (0 = disjoint, 1 = identical)."""
    inter_w = max(0.0, min(box1.right, box2.right) - max(box1.left, box2.left))
    inter_h = max(0.0, min(box1.bottom, box2.bottom) - max(box1.top, box2.top))
    intersection = inter_w * inter_h

    union = box1.area + box2.area - intersection
    if union <= 0:
        return 0.0
    return intersection / union


def area_similarity(box1: BoundingBox, box2: BoundingBox) -> float:
    """Ratio of the smaller area to the larger one (0..1)."""
    area1, area2 = box1.area, box2.area
    if area1 <= 0 or area2 <= 0:
        return 0.0
    return min(area1, area2) / max(area1, area2)


def centroid_distance(box1: BoundingBox, box2: BoundingBox) -> float:
    """
    Normalized squared centroid distance between two boxes.

    Normalized by the boxes' own average size rather than the frame, so
    the match radius scales with the object. Roughly 0..1 for plausible
    frame-to-frame moves; infinite when either box has no extent.
    """
    dx = box1.center_x - box2.center_x
    dy = box1.center_y - box2.center_y
    avg_size = (box1.width + box1.height + box2.width + box2.height) / 4
    if avg_size <= 0:
        return math.inf
    return (dx * dx + dy * dy) / (avg_size * avg_size * 100)


def smooth_box(old: BoundingBox, detected: BoundingBox, smoothing: float) -> BoundingBox:
    """
    Blend two boxes edge by edge.

    Args:
        old: Previous box
        detected: Newly detected box
        smoothing: Share of the old box to keep (0 = fully new, 1 = frozen)
    """
    keep = smoothing
    take = 1.0 - smoothing
    return BoundingBox(
        left=old.left * keep + detected.left * take,
        top=old.top * keep + detected.top * take,
        right=old.right * keep + detected.right * take,
        bottom=old.bottom * keep + detected.bottom * take,
    )


def frame_diagonal(width: int, height: int) -> float:
    return math.hypot(width, height)
