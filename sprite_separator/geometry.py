"""
Axis-aligned boxes and the conversions between pixel and percent space.
"""

from __future__ import annotations

import math
from dataclasses import dataclass

from sprite_separator.errors import InvalidBoundsError


@dataclass(frozen=True)
class BoundingBox:
    """
    Integer pixel rectangle. (x, y) is the top-left pixel; width and height
    count pixels, so the right-most column is x + width - 1.
    """
    x: int
    y: int
    width: int
    height: int

    def __post_init__(self):
        if self.width <= 0 or self.height <= 0:
            raise InvalidBoundsError(f"bounding box must have positive size, got {self.width}x{self.height}")

    @classmethod
    def from_corners(cls, x1: int, y1: int, x2: int, y2: int) -> BoundingBox:
        """Build a box from inclusive corner pixels."""
        return cls(int(x1), int(y1), int(x2 - x1 + 1), int(y2 - y1 + 1))

    @property
    def x2(self) -> int:
        """Exclusive right edge."""
        return self.x + self.width

    @property
    def y2(self) -> int:
        """Exclusive bottom edge."""
        return self.y + self.height

    @property
    def area(self) -> int:
        return self.width * self.height

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2

    def as_yx_slices(self) -> tuple[slice, slice]:
        return slice(self.y, self.y2), slice(self.x, self.x2)

    def as_bbox_tuple(self) -> tuple[int, int, int, int]:
        """(y1, y2, x1, x2) with exclusive ends, the order used by ProcessedImage."""
        return self.y, self.y2, self.x, self.x2

    def intersection_area(self, other: BoundingBox) -> int:
        w = min(self.x2, other.x2) - max(self.x, other.x)
        h = min(self.y2, other.y2) - max(self.y, other.y)
        if w <= 0 or h <= 0:
            return 0
        return w * h

    def overlaps(self, other: BoundingBox) -> bool:
        return self.intersection_area(other) > 0

    def iou(self, other: BoundingBox) -> float:
        inter = self.intersection_area(other)
        if inter == 0:
            return 0.0
        return inter / (self.area + other.area - inter)

    def center_distance(self, other: BoundingBox) -> float:
        (ax, ay), (bx, by) = self.center, other.center
        return math.hypot(ax - bx, ay - by)

    def gap(self, other: BoundingBox) -> int:
        """Chebyshev gap in pixels between two boxes; 0 when they touch or overlap."""
        dx = max(other.x - self.x2, self.x - other.x2, 0)
        dy = max(other.y - self.y2, self.y - other.y2, 0)
        return max(dx, dy)

    def union(self, other: BoundingBox) -> BoundingBox:
        x1, y1 = min(self.x, other.x), min(self.y, other.y)
        return BoundingBox(x1, y1, max(self.x2, other.x2) - x1, max(self.y2, other.y2) - y1)

    def clamp(self, width: int, height: int) -> BoundingBox:
        """Clip to an image of the given size; raises if nothing remains."""
        x1, y1 = max(0, self.x), max(0, self.y)
        x2, y2 = min(width, self.x2), min(height, self.y2)
        return BoundingBox(x1, y1, x2 - x1, y2 - y1)

    def pad(self, padding: int, width: int, height: int) -> BoundingBox:
        """Grow by padding on all sides, clamped to the image."""
        return BoundingBox(self.x - padding, self.y - padding,
                           self.width + 2 * padding, self.height + 2 * padding).clamp(width, height)

    def to_percent(self, width: int, height: int) -> PercentBounds:
        return PercentBounds(
            x=self.x / width * 100,
            y=self.y / height * 100,
            width=self.width / width * 100,
            height=self.height / height * 100,
        )


@dataclass(frozen=True)
class PercentBounds:
    """Rectangle in percent of the image width/height (0..100)."""
    x: float
    y: float
    width: float
    height: float

    def to_pixels(self, width: int, height: int) -> tuple[float, float, float, float]:
        """Unrounded pixel (x, y, width, height)."""
        return (self.x / 100 * width, self.y / 100 * height,
                self.width / 100 * width, self.height / 100 * height)

    def to_box(self, width: int, height: int) -> BoundingBox:
        """
        Smallest pixel box covering these bounds, clamped to the image.

        Raises:
            InvalidBoundsError: If the clamped box has no area.
        """
        px, py, pw, ph = self.to_pixels(width, height)
        x1 = max(0, math.floor(px + 1e-9))
        y1 = max(0, math.floor(py + 1e-9))
        x2 = min(width, math.ceil(px + pw - 1e-9))
        y2 = min(height, math.ceil(py + ph - 1e-9))
        if x2 <= x1 or y2 <= y1:
            raise InvalidBoundsError(
                f"bounds {self} have no area inside a {width}x{height} image")
        return BoundingBox(x1, y1, x2 - x1, y2 - y1)


@dataclass(frozen=True)
class PercentPoint:
    x: float
    y: float

    def to_pixels(self, width: int, height: int) -> tuple[float, float]:
        return self.x / 100 * width, self.y / 100 * height

    @classmethod
    def from_pixels(cls, x: float, y: float, width: int, height: int) -> PercentPoint:
        return cls(x / width * 100, y / height * 100)
