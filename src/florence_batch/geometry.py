"""Coordinate math for turning detection geometry into crop rectangles."""

from __future__ import annotations

import math

from .errors import InvalidCropGeometry, UnknownBBoxFormat
from .schemas import AxisBox, Geometry, QuadBox

__all__ = [
    "bounding_rect_of_quad",
    "clamp",
    "crop_dimensions",
    "to_axis_box",
    "pixel_box",
    "round_half_up",
]


def round_half_up(v: float) -> int:
    """Round to the nearest int, halves toward positive infinity."""
    return int(math.floor(float(v) + 0.5))


def bounding_rect_of_quad(q: QuadBox) -> AxisBox:
    xs = (q.x1, q.x2, q.x3, q.x4)
    ys = (q.y1, q.y2, q.y3, q.y4)
    return AxisBox(xmin=min(xs), ymin=min(ys), xmax=max(xs), ymax=max(ys))


def clamp(box: AxisBox, width: float, height: float) -> AxisBox:
    """Clamp every coordinate independently into ``[0, width]`` x ``[0, height]``."""
    return AxisBox(
        xmin=min(max(box.xmin, 0), width),
        ymin=min(max(box.ymin, 0), height),
        xmax=min(max(box.xmax, 0), width),
        ymax=min(max(box.ymax, 0), height),
    )


def crop_dimensions(box: AxisBox) -> tuple[float, float]:
    """Return ``(width, height)``; raises InvalidCropGeometry if either is not positive."""
    width = box.xmax - box.xmin
    height = box.ymax - box.ymin
    if width <= 0 or height <= 0:
        raise InvalidCropGeometry(width, height)
    return width, height


def to_axis_box(geometry: Geometry | None) -> AxisBox:
    if isinstance(geometry, QuadBox):
        return bounding_rect_of_quad(geometry)
    if isinstance(geometry, AxisBox):
        return geometry
    raise UnknownBBoxFormat("unknown bbox format")


def pixel_box(box: AxisBox) -> tuple[int, int, int, int]:
    """Integer ``(left, top, right, bottom)`` for PIL; raises if rounding collapses the box."""
    left, top = round_half_up(box.xmin), round_half_up(box.ymin)
    right, bottom = round_half_up(box.xmax), round_half_up(box.ymax)
    if right - left <= 0 or bottom - top <= 0:
        raise InvalidCropGeometry(right - left, bottom - top)
    return left, top, right, bottom
