"""Shared core data structures used across calibration and rendering."""

from __future__ import annotations

from enum import IntEnum
from typing import NamedTuple


class Point2D(NamedTuple):
    """Point in either machine (mm) or pixel units, depending on context."""

    x: float
    y: float


ORIGIN = Point2D(0.0, 0.0)


class StatusCode(IntEnum):
    OK = 0
    NOT_CALIBRATED = -1
    OUT_OF_RANGE = -2
    MISSING_GRID_DATA = -3
    SINGULAR = -4
    SHAPE_MISMATCH = -5
    LOAD_FAILED = -6


def as_point(value) -> Point2D:
    """Coerce an (x, y) pair into a Point2D of floats."""
    x, y = value
    return Point2D(float(x), float(y))
