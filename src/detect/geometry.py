"""
Bounding box geometry used by the zoom decision and the response envelope.
"""

from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in pixel coordinates (top, left, bottom, right)."""
    top: int
    left: int
    bottom: int
    right: int

    def __post_init__(self):
        if self.left > self.right or self.top > self.bottom:
            raise ValueError(
                f"Invalid box top={self.top} left={self.left} "
                f"bottom={self.bottom} right={self.right}"
            )

    @classmethod
    def from_xywh(cls, x: int, y: int, w: int, h: int) -> "BoundingBox":
        """Build a box from OpenCV style (x, y, width, height)."""
        return cls(top=int(y), left=int(x), bottom=int(y + h), right=int(x + w))

    @classmethod
    def frame(cls, width: int, height: int) -> "BoundingBox":
        """Box covering a whole width x height frame."""
        return cls(top=0, left=0, bottom=height, right=width)

    @property
    def width(self) -> int:
        return self.right - self.left

    @property
    def height(self) -> int:
        return self.bottom - self.top

    def union(self, other: "BoundingBox") -> "BoundingBox":
        """Smallest box containing both boxes."""
        return BoundingBox(
            top=min(self.top, other.top),
            left=min(self.left, other.left),
            bottom=max(self.bottom, other.bottom),
            right=max(self.right, other.right),
        )

    def inset(self, n: int) -> Optional["BoundingBox"]:
        """
        Shrink the box by n pixels on every side.

        Returns None when the box is too small to shrink that far.
        """
        top, left = self.top + n, self.left + n
        bottom, right = self.bottom - n, self.right - n
        if top > bottom or left > right:
            return None
        return BoundingBox(top=top, left=left, bottom=bottom, right=right)

    def contains(self, other: "BoundingBox") -> bool:
        """True if other lies entirely inside this box (edges inclusive)."""
        return (
            other.top >= self.top
            and other.left >= self.left
            and other.bottom <= self.bottom
            and other.right <= self.right
        )

    def touches_origin(self) -> bool:
        """True if the box sits on the top or left frame edge."""
        return self.top == 0 or self.left == 0


def union_all(boxes: Iterable[BoundingBox]) -> Optional[BoundingBox]:
    """Union of every box, or None for an empty iterable."""
    result = None
    for box in boxes:
        result = box if result is None else result.union(box)
    return result
