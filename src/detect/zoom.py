"""
Zoom Decision: map detected boxes to a discrete zoom tier.

The union of all reliable boxes is fitted into progressively smaller
insets of the frame. The deeper the inset it still fits in, the further
the subject is from every edge and the safer it is to zoom in.
"""

from typing import List, Sequence

from . import config
from .geometry import BoundingBox, union_all


def reliable_boxes(boxes: Sequence[BoundingBox]) -> List[BoundingBox]:
    """
    Drop boxes lying on the top or left frame edge.

    Detections with a zero coordinate are treated as sensor artifacts.
    """
    return [box for box in boxes if not box.touches_origin()]


def zoom_tier(boxes: Sequence[BoundingBox], frame_bounds: BoundingBox) -> int:
    """
    Recommend a zoom tier for a set of detections.

    Args:
        boxes: Detections for one frame (may be empty)
        frame_bounds: Rectangle of the whole frame

    Returns:
        The largest tier whose inset contains the union of the boxes,
        or -1 when nothing was detected or the union fits no inset.
    """
    union = union_all(reliable_boxes(boxes))
    if union is None:
        return config.NO_ZOOM

    tier = config.NO_ZOOM
    for inset, candidate in sorted(config.ZOOM_INSETS.items()):
        band = frame_bounds.inset(inset)
        if band is not None and band.contains(union):
            tier = max(tier, candidate)
    return tier
