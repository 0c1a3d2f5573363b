"""Calibration page: camera matrix setup and calibration-board normalization."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional

import numpy as np
import pyqtgraph as pg
from PyQt5 import QtCore, QtWidgets

from VISTA.config import Config
from VISTA.src.core.affine import AffineParams
from VISTA.src.core.board_calib import BoardCalibModel
from VISTA.src.core.errors import run_with_status
from VISTA.src.core.report import residual_arrays, save_residual_report
from VISTA.src.core.transform_chain import CoordinateTransformChain
from VISTA.src.core.types import Point2D, StatusCode
from VISTA.src.ui.theme import HEX_DANGER, HEX_SUCCESS, OVERLAY_GRID, OVERLAY_RESIDUAL, OVERLAY_TARGET, get_plot_colors

logger = logging.getLogger(__name__)

JSON_FILTER = "Calibration (*.json)"


class CalibrationPage(QtWidgets.QWidget):
    calibration_changed = QtCore.pyqtSignal(str)
    target_marked = QtCore.pyqtSignal(float, float)

    def __init__(self, config: Config, chain: CoordinateTransformChain, board: BoardCalibModel):
        super().__init__()
        self.config = config
        self.chain = chain
        self.board = board
        self.last_params: Optional[AffineParams] = None

        self.init_ui()
        self.init_connections()
        self.refresh_camera_display()
        self.refresh_board_display()

    def init_ui(self):
        layout = QtWidgets.QVBoxLayout(self)
        layout.setContentsMargins(10, 10, 10, 10)
        layout.setSpacing(10)

        colors = get_plot_colors()
        self.plot_container = pg.GraphicsLayoutWidget()
        self.plot_container.setBackground(colors["background"])
        self.plot = self.plot_container.addPlot(title="Board Residuals")
        self.plot.setLabel("left", "Y", units="mm")
        self.plot.setLabel("bottom", "X", units="mm")
        self.plot.showGrid(x=True, y=True, alpha=0.3)
        self.plot.setAspectLocked(True)
        self.scatter_shots = self.plot.plot(pen=None, symbol="o", symbolSize=5, symbolBrush=OVERLAY_GRID, symbolPen=None)
        self.curve_residuals = self.plot.plot(pen=pg.mkPen(OVERLAY_RESIDUAL, width=2), connect="pairs")
        self.marker_query = self.plot.plot(pen=None, symbol="+", symbolSize=14, symbolBrush=OVERLAY_TARGET, symbolPen=OVERLAY_TARGET)
        layout.addWidget(self.plot_container, stretch=2)

        bottom = QtWidgets.QHBoxLayout()
        bottom.addWidget(self._build_camera_group(), stretch=1)
        bottom.addWidget(self._build_board_group(), stretch=1)
        bottom.addWidget(self._build_query_group(), stretch=1)
        layout.addLayout(bottom, stretch=1)

    def _build_camera_group(self) -> QtWidgets.QGroupBox:
        group = QtWidgets.QGroupBox("Camera Calibration")
        form = QtWidgets.QFormLayout(group)

        self.spin_pitch_x = self._spin(0.00001, 100.0, self.config.MM_PER_PIXEL_X, 5, " mm/px")
        self.spin_pitch_y = self._spin(0.00001, 100.0, self.config.MM_PER_PIXEL_Y, 5, " mm/px")
        self.spin_img_w = QtWidgets.QSpinBox()
        self.spin_img_w.setRange(1, 20000)
        self.spin_img_w.setValue(self.config.IMAGE_WIDTH_PX)
        self.spin_img_h = QtWidgets.QSpinBox()
        self.spin_img_h.setRange(1, 20000)
        self.spin_img_h.setValue(self.config.IMAGE_HEIGHT_PX)
        form.addRow("Pitch X:", self.spin_pitch_x)
        form.addRow("Pitch Y:", self.spin_pitch_y)
        form.addRow("Image W:", self.spin_img_w)
        form.addRow("Image H:", self.spin_img_h)

        self.btn_simple = QtWidgets.QPushButton("Apply Pitch")
        self.btn_simple.setProperty("class", "accent")
        self.btn_load_matrix = QtWidgets.QPushButton("Load Matrix...")
        self.btn_save_matrix = QtWidgets.QPushButton("Save Matrix...")
        row = QtWidgets.QHBoxLayout()
        for b in (self.btn_simple, self.btn_load_matrix, self.btn_save_matrix):
            row.addWidget(b)
        form.addRow(row)

        self.lbl_matrix = QtWidgets.QLabel("---")
        self.lbl_matrix.setStyleSheet("font-family: monospace;")
        form.addRow("mm->px:", self.lbl_matrix)
        return group

    def _build_board_group(self) -> QtWidgets.QGroupBox:
        group = QtWidgets.QGroupBox("Calibration Board")
        grid = QtWidgets.QGridLayout(group)

        self.btn_load_board = QtWidgets.QPushButton("Load Board...")
        self.check_lock_scale = QtWidgets.QCheckBox("Lock scale (a = e = 1)")
        self.check_lock_scale.setChecked(self.config.LOCK_SCALE)
        self.btn_normalize = QtWidgets.QPushButton("Angle Normalization")
        self.btn_normalize.setProperty("class", "success")
        self.btn_save_board = QtWidgets.QPushButton("Save Board...")
        self.btn_report = QtWidgets.QPushButton("Save Report")

        grid.addWidget(self.btn_load_board, 0, 0)
        grid.addWidget(self.check_lock_scale, 0, 1)
        grid.addWidget(self.btn_normalize, 1, 0)
        grid.addWidget(self.btn_save_board, 1, 1)
        grid.addWidget(self.btn_report, 2, 0)

        self.lbl_board = QtWidgets.QLabel("No board loaded")
        self.lbl_params = QtWidgets.QLabel("---")
        self.lbl_params.setStyleSheet("font-family: monospace;")
        self.lbl_residual = QtWidgets.QLabel("---")
        grid.addWidget(self.lbl_board, 3, 0, 1, 2)
        grid.addWidget(self.lbl_params, 4, 0, 1, 2)
        grid.addWidget(self.lbl_residual, 5, 0, 1, 2)
        return group

    def _build_query_group(self) -> QtWidgets.QGroupBox:
        group = QtWidgets.QGroupBox("Correction Lookup")
        form = QtWidgets.QFormLayout(group)
        self.spin_qx = self._spin(-10000.0, 10000.0, 0.0, 4, " mm")
        self.spin_qy = self._spin(-10000.0, 10000.0, 0.0, 4, " mm")
        form.addRow("X:", self.spin_qx)
        form.addRow("Y:", self.spin_qy)
        self.btn_query = QtWidgets.QPushButton("Lookup")
        form.addRow(self.btn_query)
        self.lbl_offset = QtWidgets.QLabel("---")
        self.lbl_command = QtWidgets.QLabel("---")
        for lbl in (self.lbl_offset, self.lbl_command):
            lbl.setStyleSheet(f"color: {HEX_SUCCESS}; font-weight: bold;")
        form.addRow("Offset:", self.lbl_offset)
        form.addRow("Command:", self.lbl_command)
        return group

    def _spin(self, lo, hi, val, decimals, suffix) -> QtWidgets.QDoubleSpinBox:
        w = QtWidgets.QDoubleSpinBox()
        w.setDecimals(decimals)
        w.setRange(lo, hi)
        w.setValue(val)
        w.setSuffix(suffix)
        return w

    def init_connections(self):
        self.btn_simple.clicked.connect(self.on_apply_pitch)
        self.btn_load_matrix.clicked.connect(self.on_load_matrix)
        self.btn_save_matrix.clicked.connect(self.on_save_matrix)
        self.btn_load_board.clicked.connect(self.on_load_board)
        self.btn_normalize.clicked.connect(self.on_normalize)
        self.btn_save_board.clicked.connect(self.on_save_board)
        self.btn_report.clicked.connect(self.on_save_report)
        self.btn_query.clicked.connect(self.on_query)
        self.check_lock_scale.stateChanged.connect(lambda s: setattr(self.config, "LOCK_SCALE", bool(s)))

    # --- Camera ---

    def _report(self, status: StatusCode, ok_msg: str, fail_msg: str) -> bool:
        if status == StatusCode.OK:
            self.calibration_changed.emit(ok_msg)
            return True
        QtWidgets.QMessageBox.warning(self, "Calibration", f"{fail_msg} ({status.name}, code {int(status)})")
        return False

    def on_apply_pitch(self):
        pitch = Point2D(self.spin_pitch_x.value(), self.spin_pitch_y.value())
        w, h = self.spin_img_w.value(), self.spin_img_h.value()
        status, _ = run_with_status(self.chain.set_simple_calibration, pitch, w, h)
        if self._report(status, "Camera calibrated from pixel pitch", "Pitch calibration failed"):
            self.config.MM_PER_PIXEL_X, self.config.MM_PER_PIXEL_Y = pitch
            self.config.IMAGE_WIDTH_PX, self.config.IMAGE_HEIGHT_PX = w, h
        self.refresh_camera_display()

    def on_load_matrix(self):
        path, _ = QtWidgets.QFileDialog.getOpenFileName(self, "Load Camera Calibration", "", JSON_FILTER)
        if not path:
            return
        status, _ = run_with_status(self.chain.set_calibration_from_file, path)
        if self._report(status, f"Camera calibration loaded from {Path(path).name}", "Could not load matrix"):
            self.config.CAMERA_CALIB_PATH = path
        self.refresh_camera_display()

    def on_save_matrix(self):
        if not self.chain.is_calibrated:
            return
        path, _ = QtWidgets.QFileDialog.getSaveFileName(self, "Save Camera Calibration", "camera_calib.json", JSON_FILTER)
        if path:
            self.chain.save(path)

    def refresh_camera_display(self):
        if not self.chain.is_calibrated:
            self.lbl_matrix.setText("not calibrated")
            self.lbl_matrix.setStyleSheet(f"font-family: monospace; color: {HEX_DANGER};")
            return
        m = self.chain.matrix
        rows = "\n".join(" ".join(f"{v:10.4f}" for v in r) for r in m)
        self.lbl_matrix.setText(rows)
        self.lbl_matrix.setStyleSheet("font-family: monospace;")

    # --- Board ---

    def on_load_board(self):
        path, _ = QtWidgets.QFileDialog.getOpenFileName(self, "Load Board Calibration", "", JSON_FILTER)
        if not path:
            return
        status, _ = run_with_status(self.board.load, path)
        if self._report(status, f"Board calibration loaded from {Path(path).name}", "Could not load board file"):
            self.config.BOARD_CALIB_PATH = path
            self.last_params = None
        self.refresh_board_display()

    def on_normalize(self):
        status, params = run_with_status(self.board.angle_normalization, self.check_lock_scale.isChecked())
        if self._report(status, "Angle normalization applied", "Angle normalization failed"):
            self.last_params = params
        self.refresh_board_display()

    def on_save_board(self):
        if not self.board.is_loaded:
            return
        path, _ = QtWidgets.QFileDialog.getSaveFileName(self, "Save Board Calibration", "board_calib.json", JSON_FILTER)
        if path:
            self.board.save(path)

    def on_save_report(self):
        if not self.board.is_loaded:
            return
        try:
            _, plot_path = save_residual_report(self.board, self.last_params)
        except OSError:
            logger.exception("Failed to write residual report")
            QtWidgets.QMessageBox.warning(self, "Report", "Failed to write the residual report.")
            return
        self.calibration_changed.emit(f"Report saved to {plot_path.name}")

    def on_query(self):
        point = Point2D(self.spin_qx.value(), self.spin_qy.value())
        status, offset = run_with_status(self.board.mach_to_board_coord, point)
        if status != StatusCode.OK:
            self.lbl_offset.setText(f"{status.name} ({int(status)})")
            self.lbl_command.setText("---")
            return
        self.lbl_offset.setText(f"({offset.x * 1000:.2f}, {offset.y * 1000:.2f}) µm")
        self.lbl_command.setText(f"({point.x - offset.x:.4f}, {point.y - offset.y:.4f}) mm")
        self.marker_query.setData([point.x], [point.y])
        self.target_marked.emit(point.x, point.y)

    def refresh_board_display(self):
        if not self.board.is_loaded:
            self.lbl_board.setText("No board loaded")
            self.scatter_shots.clear()
            self.curve_residuals.clear()
            return

        g = self.board.grid
        self.lbl_board.setText(
            f"{g.total_x_num} x {g.total_y_num} points, step ({g.step_x:.3f}, {g.step_y:.3f}) mm"
        )
        if self.last_params is not None:
            a, b, c, d, e, f = self.last_params.to_list()
            self.lbl_params.setText(f"a={a:.6f} b={b:.6f} c={c:.4f}\nd={d:.6f} e={e:.6f} f={f:.4f}")
        else:
            self.lbl_params.setText("---")
        s = self.board.residual_summary()
        self.lbl_residual.setText(f"RMS {s['rms_mm'] * 1000:.2f} µm, max {s['max_mm'] * 1000:.2f} µm")

        _, pos, off = residual_arrays(self.board)
        self.scatter_shots.setData(pos[:, 0], pos[:, 1])
        # Residual vectors scaled so the largest one spans half a grid step.
        max_mag = float(np.max(np.hypot(off[:, 0], off[:, 1]))) if len(off) else 0.0
        gain = 0.5 * min(g.step_x, g.step_y) / max_mag if max_mag > 0 else 1.0
        ends = pos + off * gain
        xs = np.column_stack([pos[:, 0], ends[:, 0]]).ravel()
        ys = np.column_stack([pos[:, 1], ends[:, 1]]).ravel()
        self.curve_residuals.setData(xs, ys)
