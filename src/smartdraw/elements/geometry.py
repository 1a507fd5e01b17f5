"""Bounding-box helpers for skeleton elements (sizes are estimated when absent)."""

from __future__ import annotations

import math
from typing import NamedTuple

DEFAULT_FONT_SIZE = 20
DEFAULT_SHAPE_SIZE = (100.0, 100.0)
DEFAULT_LINEAR_SIZE = (100.0, 0.0)
# rough glyph metrics for the hand-drawn font
CHAR_WIDTH_RATIO = 0.6
LINE_HEIGHT_RATIO = 1.25
LABEL_PADDING = 20


class Box(NamedTuple):
    x: float
    y: float
    width: float
    height: float

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2

    def contains(self, point: tuple[float, float], tolerance: float = 0.0) -> bool:
        px, py = point
        return (
            self.x - tolerance <= px <= self.right + tolerance
            and self.y - tolerance <= py <= self.bottom + tolerance
        )


def is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def text_size(text: str, font_size: float = DEFAULT_FONT_SIZE) -> tuple[float, float]:
    """Estimate rendered (width, height) of a text block."""
    lines = text.split("\n") if text else [""]
    longest = max(len(line) for line in lines)
    return longest * font_size * CHAR_WIDTH_RATIO, len(lines) * font_size * LINE_HEIGHT_RATIO


def _font_size(element: dict) -> float:
    size = element.get("fontSize")
    return size if is_number(size) and size > 0 else DEFAULT_FONT_SIZE


def element_size(element: dict) -> tuple[float, float]:
    kind = element.get("type")
    width = element.get("width")
    height = element.get("height")
    if is_number(width) and is_number(height):
        return float(width), float(height)

    if kind == "text":
        est_w, est_h = text_size(str(element.get("text", "")), _font_size(element))
    elif kind in ("arrow", "line", "freedraw"):
        est_w, est_h = DEFAULT_LINEAR_SIZE
    else:
        est_w, est_h = DEFAULT_SHAPE_SIZE
        label = element.get("label")
        if isinstance(label, dict) and label.get("text"):
            lw, lh = text_size(str(label["text"]), _font_size(label))
            est_w = max(est_w, lw + 2 * LABEL_PADDING)
            est_h = max(est_h / 2, lh + 2 * LABEL_PADDING)

    return (
        float(width) if is_number(width) else est_w,
        float(height) if is_number(height) else est_h,
    )


def element_box(element: dict) -> Box:
    """Axis-aligned box of an element, normalised for negative width/height."""
    width, height = element_size(element)
    x = float(element.get("x", 0))
    y = float(element.get("y", 0))
    if width < 0:
        x, width = x + width, -width
    if height < 0:
        y, height = y + height, -height
    return Box(x, y, width, height)


def union_box(boxes: list[Box], padding: float = 0.0) -> Box:
    left = min(b.x for b in boxes) - padding
    top = min(b.y for b in boxes) - padding
    right = max(b.right for b in boxes) + padding
    bottom = max(b.bottom for b in boxes) + padding
    return Box(left, top, right - left, bottom - top)


def overlap(a: Box, b: Box) -> tuple[float, float]:
    """Overlap extent along each axis; (0, 0) when the boxes are disjoint."""
    ox = min(a.right, b.right) - max(a.x, b.x)
    oy = min(a.bottom, b.bottom) - max(a.y, b.y)
    if ox <= 0 or oy <= 0:
        return 0.0, 0.0
    return ox, oy


def edge_anchor(box: Box, toward: tuple[float, float]) -> tuple[float, float]:
    """Midpoint of the box edge facing ``toward``."""
    cx, cy = box.center
    dx, dy = toward[0] - cx, toward[1] - cy
    if abs(dx) >= abs(dy):
        return (box.right, cy) if dx >= 0 else (box.x, cy)
    return (cx, box.bottom) if dy >= 0 else (cx, box.y)
