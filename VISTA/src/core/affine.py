"""Least-squares 2D affine fitting and immutable affine parameters."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass
from functools import cached_property
from typing import NamedTuple, Sequence

import numpy as np

from VISTA.src.core.errors import ShapeMismatchError, SingularMatrixError, SingularSystemError
from VISTA.src.core.types import Point2D, as_point

logger = logging.getLogger(__name__)

PIVOT_EPS = 1e-15
DET_EPS = 1e-15
# Smallest singular value of the centred source points, relative to their spread.
COLLINEAR_RTOL = 1e-9


class InverseParams(NamedTuple):
    inv_a: float
    inv_b: float
    inv_c: float
    inv_d: float
    inv_e: float
    inv_f: float


@dataclass(frozen=True)
class AffineParams:
    """Forward affine x' = a*x + b*y + c, y' = d*x + e*y + f.

    Instances never change after construction, so the inverse is computed
    once on first use and kept for the lifetime of the object.
    """

    a: float
    b: float
    c: float
    d: float
    e: float
    f: float

    @cached_property
    def inverse(self) -> InverseParams:
        det = self.a * self.e - self.b * self.d
        if abs(det) < DET_EPS:
            raise SingularMatrixError(f"Affine transform is not invertible (det={det:.3e})")
        return InverseParams(
            self.e / det,
            -self.b / det,
            (self.b * self.f - self.c * self.e) / det,
            -self.d / det,
            self.a / det,
            (self.c * self.d - self.a * self.f) / det,
        )

    def apply(self, point) -> Point2D:
        x, y = point
        return Point2D(self.a * x + self.b * y + self.c, self.d * x + self.e * y + self.f)

    def apply_inverse(self, point) -> Point2D:
        inv = self.inverse
        x, y = point
        return Point2D(
            inv.inv_a * x + inv.inv_b * y + inv.inv_c,
            inv.inv_d * x + inv.inv_e * y + inv.inv_f,
        )

    def with_unit_scale(self) -> "AffineParams":
        """Copy with a and e pinned to 1 (rotation, shear and offset kept)."""
        return dataclasses.replace(self, a=1.0, e=1.0)

    def to_list(self) -> list[float]:
        return [self.a, self.b, self.c, self.d, self.e, self.f]

    def as_matrix(self) -> np.ndarray:
        return np.array(
            [[self.a, self.b, self.c], [self.d, self.e, self.f], [0.0, 0.0, 1.0]],
            dtype=np.float64,
        )

    @classmethod
    def from_matrix(cls, values) -> "AffineParams":
        """Build from a 3x3 matrix or its flat row-major form (6 or 9 values)."""
        flat = np.asarray(values, dtype=np.float64).ravel()
        if flat.size not in (6, 9):
            raise ShapeMismatchError(f"Expected 6 or 9 matrix coefficients, got {flat.size}")
        return cls(*(float(v) for v in flat[:6]))

    @classmethod
    def identity(cls) -> "AffineParams":
        return cls(1.0, 0.0, 0.0, 0.0, 1.0, 0.0)


def solve_linear_system(matrix: np.ndarray, vector: np.ndarray) -> np.ndarray:
    """Gaussian elimination with partial pivoting.

    The pivot row is the first row holding the largest magnitude in the
    current column. A pivot below PIVOT_EPS raises SingularSystemError.
    """
    mat = np.array(matrix, dtype=np.float64)
    vec = np.array(vector, dtype=np.float64)
    n = vec.shape[0]
    if mat.shape != (n, n):
        raise ShapeMismatchError(f"Matrix shape {mat.shape} does not match vector length {n}")

    aug = np.hstack([mat, vec.reshape(n, 1)])

    for i in range(n):
        max_row = i + int(np.argmax(np.abs(aug[i:, i])))
        if max_row != i:
            aug[[i, max_row]] = aug[[max_row, i]]

        pivot = aug[i, i]
        if abs(pivot) < PIVOT_EPS:
            raise SingularSystemError(f"Singular system: pivot {pivot:.3e} at column {i}")

        for k in range(i + 1, n):
            factor = aug[k, i] / pivot
            aug[k, i:] -= factor * aug[i, i:]

    result = np.zeros(n, dtype=np.float64)
    for i in range(n - 1, -1, -1):
        acc = aug[i, n] - float(np.dot(aug[i, i + 1:n], result[i + 1:n]))
        result[i] = acc / aug[i, i]
    return result


def _design_matrix(source: Sequence, target: Sequence) -> tuple[np.ndarray, np.ndarray]:
    n = len(source)
    A = np.zeros((2 * n, 6), dtype=np.float64)
    b = np.zeros(2 * n, dtype=np.float64)
    for i, (src, tgt) in enumerate(zip(source, target)):
        sx, sy = as_point(src)
        tx, ty = as_point(tgt)
        A[2 * i, 0:3] = (sx, sy, 1.0)
        b[2 * i] = tx
        A[2 * i + 1, 3:6] = (sx, sy, 1.0)
        b[2 * i + 1] = ty
    return A, b


def _check_spread(source: Sequence) -> None:
    """Reject source points that are coincident or lie on one line.

    The pivot test alone misses this: collinear points away from the axes
    leave rounding noise well above PIVOT_EPS in the normal equations.
    """
    pts = np.array([as_point(p) for p in source], dtype=np.float64)
    centred = pts - pts.mean(axis=0)
    spread = float(np.linalg.norm(centred))
    if spread == 0.0 or np.linalg.matrix_rank(centred, tol=spread * COLLINEAR_RTOL) < 2:
        raise SingularSystemError("Source points are collinear; the affine fit is undetermined")


def solve_affine(source: Sequence, target: Sequence) -> AffineParams:
    """Fit the affine mapping source points onto target points (N >= 3)."""
    if len(source) != len(target):
        raise ShapeMismatchError(
            f"Source and target point counts differ ({len(source)} vs {len(target)})"
        )
    if len(source) < 3:
        raise SingularSystemError(f"At least 3 correspondences are required, got {len(source)}")
    _check_spread(source)

    A, b = _design_matrix(source, target)
    ata = A.T @ A
    atb = A.T @ b
    coeffs = solve_linear_system(ata, atb)
    params = AffineParams(*(float(v) for v in coeffs))
    logger.debug("Affine fit over %d points: %s", len(source), params.to_list())
    return params


def solve_affine_9pt(source: Sequence, target: Sequence) -> np.ndarray:
    """Fit from exactly nine correspondences; returns the 3x3 matrix."""
    if len(source) != 9 or len(target) != 9:
        raise ShapeMismatchError(
            f"The 3x3 grid fit needs exactly 9 point pairs, got {len(source)} and {len(target)}"
        )
    return solve_affine(source, target).as_matrix()


def fit_residuals(params: AffineParams, source: Sequence, target: Sequence) -> np.ndarray:
    """Euclidean distance between each mapped source point and its target."""
    out = np.empty(len(source), dtype=np.float64)
    for i, (src, tgt) in enumerate(zip(source, target)):
        px, py = params.apply(src)
        tx, ty = as_point(tgt)
        out[i] = np.hypot(px - tx, py - ty)
    return out
