"""Live machine (mm) <-> image pixel mapping used by the overlay renderer."""

from __future__ import annotations

import json
import logging
import math
from pathlib import Path
from typing import Iterable, Iterator, Optional

import numpy as np

from VISTA.src.core.affine import AffineParams, solve_affine_9pt
from VISTA.src.core.elements import UNBOUNDED_KINDS, ElementKind, PaintElement
from VISTA.src.core.errors import LoadError, NotCalibratedError, ShapeMismatchError, SingularMatrixError
from VISTA.src.core.types import ORIGIN, Point2D, as_point

logger = logging.getLogger(__name__)


def _params_from_wire(matrix) -> AffineParams:
    flat = np.asarray(matrix, dtype=np.float64).ravel()
    if flat.size != 9:
        raise ShapeMismatchError(f"Calibration matrix needs 9 coefficients, got {flat.size}")
    # Bottom row is always [0, 0, 1]; whatever was passed there is ignored.
    return AffineParams.from_matrix(flat[:6])


class CoordinateTransformChain:
    """Owns the mm -> pixel matrix M and maps points for display.

    A display point is computed as ``M(p - reference) * zoom + pan`` where
    ``reference`` is the machine position at the field-of-view center.
    Every setter validates and derives all state before replacing M, so a
    rejected calibration leaves the previous one in place.
    """

    def __init__(self) -> None:
        self._params: Optional[AffineParams] = None
        self._line_width_scale = 1.0

    @property
    def is_calibrated(self) -> bool:
        return self._params is not None

    @property
    def params(self) -> AffineParams:
        if self._params is None:
            raise NotCalibratedError("Camera calibration has not been set")
        return self._params

    @property
    def matrix(self) -> np.ndarray:
        return self.params.as_matrix()

    @property
    def line_width_scale(self) -> float:
        return self._line_width_scale

    def to_wire(self) -> list[float]:
        return [float(v) for v in self.matrix.ravel()]

    def _install(self, params: AffineParams, source: str) -> None:
        # Computing the inverse here both rejects singular input and primes the cache.
        _ = params.inverse
        origin = params.apply(ORIGIN)
        unit = params.apply(Point2D(1.0, 0.0))
        scale = math.hypot(unit.x - origin.x, unit.y - origin.y)
        self._params = params
        self._line_width_scale = scale
        logger.info("Camera calibration set from %s: %s (line scale %.4f)", source, params.to_list(), scale)

    def set_calibration_mm_to_pix(self, matrix) -> None:
        self._install(_params_from_wire(matrix), "mm->pixel matrix")

    def set_calibration_pix_to_mm(self, matrix) -> None:
        pix_to_mm = _params_from_wire(matrix)
        self._install(AffineParams(*pix_to_mm.inverse), "pixel->mm matrix")

    def set_simple_calibration(self, pitch, img_w: int, img_h: int) -> None:
        """Calibrate from a per-axis pitch (mm per pixel) and the image size.

        Image y grows downward, so +1 mm in y maps above the image center.
        """
        pitch = as_point(pitch)
        if pitch.x == 0 or pitch.y == 0:
            raise SingularMatrixError(f"Pixel pitch must be non-zero, got {tuple(pitch)}")
        half_x = int(img_w) // 2
        half_y = int(img_h) // 2

        mm_pts = []
        pix_pts = []
        for j in (1, 0, -1):
            for i in (-1, 0, 1):
                mm_pts.append(Point2D(float(i), float(j)))
                pix_pts.append(Point2D(half_x + i / pitch.x, half_y - j / pitch.y))

        matrix = solve_affine_9pt(mm_pts, pix_pts)
        self._install(_params_from_wire(matrix), f"pitch {tuple(pitch)} on {img_w}x{img_h}")

    def set_calibration_from_file(self, path) -> None:
        path = Path(path)
        try:
            data = json.loads(path.read_text(encoding="utf-8-sig"))
        except (OSError, json.JSONDecodeError) as exc:
            raise LoadError(f"Cannot read camera calibration {path}: {exc}") from exc
        if not isinstance(data, dict):
            raise LoadError(f"Camera calibration {path} must be a JSON object")

        if "mm_to_pixel" in data:
            self.set_calibration_mm_to_pix(data["mm_to_pixel"])
        elif "pixel_to_mm" in data:
            self.set_calibration_pix_to_mm(data["pixel_to_mm"])
        else:
            raise LoadError(f"Camera calibration {path} has neither 'mm_to_pixel' nor 'pixel_to_mm'")

    def save(self, path) -> Path:
        path = Path(path)
        path.write_text(json.dumps({"mm_to_pixel": self.to_wire()}, indent=2))
        return path

    def transform_for_display(
        self,
        points: Iterable,
        reference=ORIGIN,
        zoom: float = 1.0,
        pan=ORIGIN,
    ) -> Iterator[Point2D]:
        params = self.params
        ref = as_point(reference)
        pan = as_point(pan)

        def _gen() -> Iterator[Point2D]:
            for p in points:
                x, y = p
                px, py = params.apply((x - ref.x, y - ref.y))
                yield Point2D(px * zoom + pan.x, py * zoom + pan.y)

        return _gen()

    def to_pixel(self, point, reference=ORIGIN) -> Point2D:
        return next(self.transform_for_display([point], reference))

    def inverse_transform(self, pixel, reference=ORIGIN) -> Point2D:
        """Image pixel -> absolute machine position."""
        mx, my = self.params.apply_inverse(as_point(pixel))
        ref = as_point(reference)
        return Point2D(mx + ref.x, my + ref.y)

    @staticmethod
    def is_visible(screen_points: Iterable, bounds, kind: ElementKind) -> bool:
        if kind in UNBOUNDED_KINDS:
            return True
        width, height = bounds
        for x, y in screen_points:
            if 0 <= x <= width and 0 <= y <= height:
                return True
        return False

    def project(self, element: PaintElement, reference, zoom: float, pan, bounds) -> list[Point2D]:
        """Screen points for an element, or [] when nothing of it is on screen."""
        pts = list(self.transform_for_display(element.points(), reference, zoom, pan))
        if not pts or not self.is_visible(pts, bounds, element.kind):
            return []
        return pts
