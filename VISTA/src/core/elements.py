"""Overlay primitives described in machine coordinates (mm)."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Iterator

from VISTA.src.core.types import Point2D

DEFAULT_COLOR = "#ff4040"


class ElementKind(Enum):
    DOT = "dot"
    RECT = "rect"
    LINE = "line"
    ARC = "arc"
    CIRCLE = "circle"
    POLYLINE = "polyline"
    ELLIPSE = "ellipse"
    POLYGON = "polygon"
    CROSS = "cross"
    ARROW = "arrow"
    RING = "ring"
    TEXT = "text"


# Kinds drawn regardless of whether any of their points land on screen.
UNBOUNDED_KINDS = frozenset({ElementKind.LINE, ElementKind.TEXT})


@dataclass
class PaintElement:
    """A drawable primitive.

    ``pts`` is a flat ``[x1, y1, x2, y2, ...]`` list in mm. The meaning of
    the points depends on ``kind``: center + edge point for circles, two
    corners for rects and ellipses, center + inner + outer point for rings,
    center + start + end for arcs.
    """

    kind: ElementKind
    pts: list[float] = field(default_factory=list)
    color: str = DEFAULT_COLOR
    line_width: float = 1.0
    fill: bool = False
    text: str = ""
    font_size: float = 12.0
    visible: bool = True

    def points(self) -> Iterator[Point2D]:
        it = iter(self.pts)
        for x, y in zip(it, it):
            yield Point2D(float(x), float(y))


def circle(cx: float, cy: float, radius: float, color: str = DEFAULT_COLOR, line_width: float = 2.0, fill: bool = False) -> PaintElement:
    return PaintElement(ElementKind.CIRCLE, [cx, cy, cx + radius, cy], color, line_width, fill)


def line(x1: float, y1: float, x2: float, y2: float, color: str = DEFAULT_COLOR, line_width: float = 2.0) -> PaintElement:
    return PaintElement(ElementKind.LINE, [x1, y1, x2, y2], color, line_width)


def rect(x1: float, y1: float, x2: float, y2: float, color: str = DEFAULT_COLOR, line_width: float = 2.0, fill: bool = False) -> PaintElement:
    return PaintElement(ElementKind.RECT, [x1, y1, x2, y2], color, line_width, fill)


def cross(x: float, y: float, color: str = DEFAULT_COLOR, line_width: float = 2.0) -> PaintElement:
    return PaintElement(ElementKind.CROSS, [x, y], color, line_width)


def dot(x: float, y: float, color: str = DEFAULT_COLOR, size: float = 3.0) -> PaintElement:
    return PaintElement(ElementKind.DOT, [x, y], color, size)


def text(x: float, y: float, label: str, color: str = DEFAULT_COLOR, font_size: float = 12.0) -> PaintElement:
    return PaintElement(ElementKind.TEXT, [x, y], color, text=label, font_size=font_size)


def arrow(x1: float, y1: float, x2: float, y2: float, color: str = DEFAULT_COLOR, line_width: float = 2.0) -> PaintElement:
    return PaintElement(ElementKind.ARROW, [x1, y1, x2, y2], color, line_width)


def grid_overlay(
    shot_positions: dict[int, Point2D],
    vision_offsets: dict[int, Point2D],
    gain: float = 1.0,
    grid_color: str = DEFAULT_COLOR,
    residual_color: str = DEFAULT_COLOR,
) -> list[PaintElement]:
    """A dot per grid sample plus an arrow showing its (scaled) residual offset."""
    out: list[PaintElement] = []
    for idx in sorted(shot_positions):
        pos = shot_positions[idx]
        out.append(dot(pos.x, pos.y, grid_color, size=0.2))
        off = vision_offsets.get(idx)
        if off is not None and (off.x or off.y):
            out.append(arrow(pos.x, pos.y, pos.x + off.x * gain, pos.y + off.y * gain, residual_color, 0.1))
    return out
