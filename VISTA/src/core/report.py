"""Residual report for a board calibration: CSV table and quiver plot."""

from __future__ import annotations

import csv
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional

import matplotlib
import matplotlib.pyplot as plt
import numpy as np

from VISTA.src.core.affine import AffineParams
from VISTA.src.core.board_calib import BoardCalibModel

matplotlib.use("Agg")

logger = logging.getLogger(__name__)


def default_report_dir() -> Path:
    project_root = Path(__file__).resolve().parents[2]
    return project_root / "reports"


def residual_arrays(model: BoardCalibModel) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Return (indices, shot positions Nx2, vision offsets Nx2) in index order."""
    shots = model.shot_positions
    vision = model.vision_offsets
    idx = np.array(sorted(shots), dtype=np.int64)
    pos = np.array([shots[i] for i in idx], dtype=np.float64).reshape(-1, 2)
    off = np.array([vision[i] for i in idx], dtype=np.float64).reshape(-1, 2)
    return idx, pos, off


def save_residual_report(
    model: BoardCalibModel,
    params: Optional[AffineParams] = None,
    out_dir: Optional[Path] = None,
    arrow_gain: float = 1.0,
) -> tuple[Path, Path]:
    """Write the per-index residual CSV and a vector plot. Returns (csv, png)."""
    out_dir = Path(out_dir) if out_dir is not None else default_report_dir()
    out_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")

    idx, pos, off = residual_arrays(model)
    mags = np.hypot(off[:, 0], off[:, 1])

    csv_path = out_dir / f"board_residuals_{timestamp}.csv"
    with csv_path.open("w", newline="") as f:
        writer = csv.writer(f)
        writer.writerow(["Index", "Shot_X_mm", "Shot_Y_mm", "Offset_X_mm", "Offset_Y_mm", "Magnitude_mm"])
        for i, (sx, sy), (ox, oy), m in zip(idx, pos, off, mags):
            writer.writerow([int(i), sx, sy, ox, oy, m])

    summary = model.residual_summary()
    fig, ax = plt.subplots(figsize=(9, 8))
    ax.quiver(
        pos[:, 0],
        pos[:, 1],
        off[:, 0] * arrow_gain,
        off[:, 1] * arrow_gain,
        mags,
        angles="xy",
        scale_units="xy",
        scale=1.0,
        cmap="viridis",
    )
    ax.plot(pos[:, 0], pos[:, 1], "k.", ms=3)
    title = f"Board residuals (RMS {summary['rms_mm'] * 1000:.2f} µm, max {summary['max_mm'] * 1000:.2f} µm)"
    if params is not None:
        title += "\n" + ", ".join(f"{n}={v:.6g}" for n, v in zip("abcdef", params.to_list()))
    ax.set_title(title)
    ax.set_xlabel("X (mm)")
    ax.set_ylabel("Y (mm)")
    ax.set_aspect("equal", adjustable="datalim")
    ax.grid(True, linestyle="-", alpha=0.6)

    plt.tight_layout()
    plot_path = out_dir / f"board_residuals_{timestamp}.png"
    plt.savefig(plot_path)
    plt.close(fig)

    logger.info("Residual report written to %s", plot_path)
    return csv_path, plot_path
