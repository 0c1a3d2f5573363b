"""Calibration-board grid model: global angle normalization and local bilinear correction."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Mapping, Optional

import numpy as np

from VISTA.src.core.affine import AffineParams, solve_affine
from VISTA.src.core.errors import LoadError, MissingGridDataError, NotCalibratedError
from VISTA.src.core.types import Point2D

logger = logging.getLogger(__name__)

# Upper bound applied to an interpolation fraction that exceeds 1.
FRACTION_CAP = 0.999

# snake_case field -> legacy record key
_LEGACY_KEYS = {
    "start_x": "m_dStartX",
    "start_y": "m_dStartY",
    "step_x": "m_dStepX",
    "step_y": "m_dStepY",
    "end_x": "m_dEndX",
    "end_y": "m_dEndY",
    "x_range": "m_dXRange",
    "y_range": "m_dYRange",
    "total_x_num": "m_iTotalXNum",
    "total_y_num": "m_iTotalYNum",
    "mov_type": "m_MovType",
    "vision_results": "m_VisionResultMap",
    "shot_positions": "m_IndexShotPosMap",
}

_RANGE_TOL = 1e-9


@dataclass(frozen=True)
class CalibrationGrid:
    start_x: float
    start_y: float
    step_x: float
    step_y: float
    end_x: float
    end_y: float
    x_range: float
    y_range: float
    total_x_num: int
    total_y_num: int
    mov_type: int = 0

    @property
    def cell_count(self) -> int:
        return self.total_x_num * self.total_y_num

    def flat_index(self, col: int, row: int) -> int:
        return col + row * self.total_x_num

    def validate(self) -> None:
        if self.step_x <= 0 or self.step_y <= 0:
            raise LoadError(f"Grid steps must be positive (step_x={self.step_x}, step_y={self.step_y})")
        if self.total_x_num <= 0 or self.total_y_num <= 0:
            raise LoadError(
                f"Grid counts must be positive (total_x_num={self.total_x_num}, total_y_num={self.total_y_num})"
            )
        if abs(self.x_range - (self.end_x - self.start_x)) > _RANGE_TOL:
            raise LoadError(f"x_range {self.x_range} does not equal end_x - start_x")
        if abs(self.y_range - (self.end_y - self.start_y)) > _RANGE_TOL:
            raise LoadError(f"y_range {self.y_range} does not equal end_y - start_y")


def _field(record: Mapping[str, Any], name: str) -> Any:
    if name in record:
        return record[name]
    legacy = _LEGACY_KEYS[name]
    if legacy in record:
        return record[legacy]
    raise LoadError(f"Calibration record is missing '{name}'")


def _parse_triples(entries: Any, label: str) -> dict[int, Point2D]:
    """Build an index map from ordered (index, x, y) triples; later entries win."""
    if not isinstance(entries, (list, tuple)):
        raise LoadError(f"'{label}' must be a list of (index, x, y) entries")
    out: dict[int, Point2D] = {}
    for entry in entries:
        try:
            if isinstance(entry, Mapping):
                idx, x, y = entry["Item1"], entry["Item2"], entry["Item3"]
            else:
                idx, x, y = entry
            out[int(idx)] = Point2D(float(x), float(y))
        except (KeyError, TypeError, ValueError) as exc:
            raise LoadError(f"Malformed entry in '{label}': {entry!r}") from exc
    return out


def parse_record(record: Mapping[str, Any]) -> tuple[CalibrationGrid, dict[int, Point2D], dict[int, Point2D]]:
    """Turn a calibration record into a validated grid plus its two index maps."""
    if not isinstance(record, Mapping):
        raise LoadError("Calibration record must be a JSON object")
    try:
        start_x = float(_field(record, "start_x"))
        start_y = float(_field(record, "start_y"))
        end_x = float(_field(record, "end_x"))
        end_y = float(_field(record, "end_y"))
        grid = CalibrationGrid(
            start_x=start_x,
            start_y=start_y,
            step_x=float(_field(record, "step_x")),
            step_y=float(_field(record, "step_y")),
            end_x=end_x,
            end_y=end_y,
            x_range=float(record.get("x_range", record.get("m_dXRange", end_x - start_x))),
            y_range=float(record.get("y_range", record.get("m_dYRange", end_y - start_y))),
            total_x_num=int(_field(record, "total_x_num")),
            total_y_num=int(_field(record, "total_y_num")),
            mov_type=int(record.get("mov_type", record.get("m_MovType", 0))),
        )
    except (TypeError, ValueError) as exc:
        raise LoadError(f"Invalid grid scalar: {exc}") from exc
    grid.validate()

    vision = _parse_triples(_field(record, "vision_results"), "vision_results")
    shots = _parse_triples(_field(record, "shot_positions"), "shot_positions")

    for label, mapping in (("vision_results", vision), ("shot_positions", shots)):
        missing = [i for i in range(grid.cell_count) if i not in mapping]
        if missing:
            raise LoadError(f"'{label}' has no entry for grid indices {missing[:8]}")
    return grid, vision, shots


class BoardCalibModel:
    """Calibration-board grid with per-index vision offsets and shot positions.

    Vision offsets are mechanical deviations relative to the field-of-view
    center at each sampled grid point. After ``angle_normalization`` they hold
    only the local residual left once the global affine distortion is removed.
    """

    def __init__(self) -> None:
        self._grid: Optional[CalibrationGrid] = None
        self._vision: dict[int, Point2D] = {}
        self._shots: dict[int, Point2D] = {}
        self.source_path: Optional[Path] = None

    @property
    def is_loaded(self) -> bool:
        return self._grid is not None

    @property
    def grid(self) -> CalibrationGrid:
        self._require_loaded()
        return self._grid

    @property
    def vision_offsets(self) -> dict[int, Point2D]:
        return dict(self._vision)

    @property
    def shot_positions(self) -> dict[int, Point2D]:
        return dict(self._shots)

    def _require_loaded(self) -> None:
        if self._grid is None:
            raise NotCalibratedError("No board calibration loaded")

    def load(self, path) -> None:
        path = Path(path)
        try:
            record = json.loads(path.read_text(encoding="utf-8-sig"))
        except (OSError, json.JSONDecodeError) as exc:
            raise LoadError(f"Cannot read calibration file {path}: {exc}") from exc
        self.load_record(record)
        self.source_path = path
        logger.info("Loaded board calibration from %s", path)

    def load_record(self, record: Mapping[str, Any]) -> None:
        grid, vision, shots = parse_record(record)
        self._grid, self._vision, self._shots = grid, vision, shots
        self.source_path = None
        logger.info(
            "Board grid %dx%d, step (%.4f, %.4f) mm, start (%.4f, %.4f)",
            grid.total_x_num,
            grid.total_y_num,
            grid.step_x,
            grid.step_y,
            grid.start_x,
            grid.start_y,
        )

    def _indices(self) -> range:
        return range(self.grid.cell_count)

    def angle_normalization(self, lock_scale: bool = False) -> AffineParams:
        """Fit observed positions onto nominal shot positions and bake the fit out.

        With ``lock_scale`` the fitted a and e coefficients are forced to 1
        after the solve. The stored vision offsets are replaced by the
        residual left after applying the returned transform.
        """
        self._require_loaded()
        indices = self._indices()
        source = [
            Point2D(self._vision[i].x + self._shots[i].x, self._vision[i].y + self._shots[i].y)
            for i in indices
        ]
        target = [self._shots[i] for i in indices]

        params = solve_affine(source, target)
        if lock_scale:
            params = params.with_unit_scale()

        corrected: dict[int, Point2D] = {}
        for i, src in zip(indices, source):
            tx, ty = params.apply(src)
            corrected[i] = Point2D(tx - self._shots[i].x, ty - self._shots[i].y)
        self._vision = corrected

        logger.info("Angle normalization (lock_scale=%s): %s", lock_scale, params.to_list())
        return params

    def _neighbour_indices(self, point: Point2D) -> tuple[int, int, int, int]:
        grid = self.grid
        cx = point.x - grid.start_x
        cy = point.y - grid.start_y

        if cx < 0 or cx > grid.x_range:
            col = col_next = 0 if cx < 0 else grid.total_x_num - 1
        else:
            col = int(math.floor(cx / grid.step_x))
            col_next = col + 1
        if cy < 0 or cy > grid.y_range:
            row = row_next = 0 if cy < 0 else grid.total_y_num - 1
        else:
            row = int(math.floor(cy / grid.step_y))
            row_next = row + 1

        last_col = grid.total_x_num - 1
        last_row = grid.total_y_num - 1
        col, col_next = min(max(col, 0), last_col), min(max(col_next, 0), last_col)
        row, row_next = min(max(row, 0), last_row), min(max(row_next, 0), last_row)

        return (
            grid.flat_index(col, row),
            grid.flat_index(col_next, row),
            grid.flat_index(col, row_next),
            grid.flat_index(col_next, row_next),
        )

    def mach_to_board_coord(self, point) -> Point2D:
        """Bilinear residual offset at a raw mechanical position.

        Callers subtract the offset from the mechanical position to get the
        board-corrected position (see ``board_to_mach``).
        """
        self._require_loaded()
        px, py = point
        point = Point2D(float(px), float(py))
        idx = self._neighbour_indices(point)
        for i in idx:
            if i not in self._vision or i not in self._shots:
                raise MissingGridDataError(f"Grid index {i} has no calibration data")

        grid = self._grid
        # Fraction names are cross-assigned to the corner weights on purpose.
        scale0y = abs(self._shots[idx[1]].x - point.x) / grid.step_x
        scale0x = abs(self._shots[idx[2]].y - point.y) / grid.step_y
        if scale0y > 1:
            scale0y = FRACTION_CAP
        if scale0x > 1:
            scale0x = FRACTION_CAP

        p0, p1, p2, p3 = (self._vision[i] for i in idx)
        off_x = scale0y * (scale0x * p0.x + (1 - scale0x) * p2.x) + (1 - scale0y) * (
            scale0x * p1.x + (1 - scale0x) * p3.x
        )
        off_y = scale0y * (scale0x * p0.y + (1 - scale0x) * p2.y) + (1 - scale0y) * (
            scale0x * p1.y + (1 - scale0x) * p3.y
        )
        return Point2D(off_x, off_y)

    def board_to_mach(self, point) -> Point2D:
        px, py = point
        off = self.mach_to_board_coord(point)
        return Point2D(float(px) - off.x, float(py) - off.y)

    def residual_summary(self) -> dict[str, float]:
        self._require_loaded()
        mags = np.array([math.hypot(p.x, p.y) for p in self._vision.values()], dtype=np.float64)
        if mags.size == 0:
            return {"count": 0, "rms_mm": 0.0, "max_mm": 0.0, "mean_mm": 0.0}
        return {
            "count": int(mags.size),
            "rms_mm": float(np.sqrt(np.mean(mags ** 2))),
            "max_mm": float(np.max(mags)),
            "mean_mm": float(np.mean(mags)),
        }

    def to_record(self) -> dict[str, Any]:
        record: dict[str, Any] = asdict(self.grid)
        record["vision_results"] = [[i, p.x, p.y] for i, p in sorted(self._vision.items())]
        record["shot_positions"] = [[i, p.x, p.y] for i, p in sorted(self._shots.items())]
        return record

    def save(self, path) -> Path:
        path = Path(path)
        path.write_text(json.dumps(self.to_record(), indent=2))
        logger.info("Saved board calibration to %s", path)
        return path
