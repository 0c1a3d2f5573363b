"""Calibration error taxonomy and the status-code adapter."""

from __future__ import annotations

import logging
from typing import Any, Callable

from VISTA.src.core.types import StatusCode

logger = logging.getLogger(__name__)


class CalibrationError(Exception):
    status = StatusCode.NOT_CALIBRATED


class NotCalibratedError(CalibrationError):
    """No calibration data has been loaded or set yet."""

    status = StatusCode.NOT_CALIBRATED


class OutOfRangeError(CalibrationError):
    status = StatusCode.OUT_OF_RANGE


class MissingGridDataError(CalibrationError):
    status = StatusCode.MISSING_GRID_DATA


class SingularSystemError(CalibrationError):
    """The least-squares normal equations are rank deficient."""

    status = StatusCode.SINGULAR


class SingularMatrixError(CalibrationError):
    """An affine matrix has no inverse."""

    status = StatusCode.SINGULAR


class ShapeMismatchError(CalibrationError):
    status = StatusCode.SHAPE_MISMATCH


class LoadError(CalibrationError):
    status = StatusCode.LOAD_FAILED


def run_with_status(func: Callable[..., Any], *args: Any, **kwargs: Any) -> tuple[StatusCode, Any]:
    """Call func and report the outcome as (status, result).

    Calibration failures become their negative status code with a None result.
    Any other exception propagates.
    """
    try:
        result = func(*args, **kwargs)
    except CalibrationError as exc:
        logger.warning("%s failed (%s): %s", getattr(func, "__name__", func), exc.status.name, exc)
        return exc.status, None
    return StatusCode.OK, result
