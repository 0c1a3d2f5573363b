"""Imaging page: camera image with machine-coordinate overlays and stage control."""

from __future__ import annotations

import logging
from typing import Optional

import numpy as np
from PyQt5 import QtCore, QtGui, QtWidgets

from VISTA.config import Config
from VISTA.src.core.board_calib import BoardCalibModel
from VISTA.src.core.elements import PaintElement, circle, cross, grid_overlay, text
from VISTA.src.core.errors import run_with_status
from VISTA.src.core.transform_chain import CoordinateTransformChain
from VISTA.src.core.types import StatusCode
from VISTA.src.core.viewport import Viewport
from VISTA.src.core.worker import StageWorker, WorkerState
from VISTA.src.ui.theme import OVERLAY_CROSSHAIR, OVERLAY_GRID, OVERLAY_RESIDUAL, OVERLAY_TARGET
from VISTA.src.ui.widgets.calib_view import CalibrationView
from VISTA.src.ui.widgets.readouts import ReadoutWidget
from VISTA.src.ui.widgets.stage_control import StageControlWidget

logger = logging.getLogger(__name__)


def synthetic_target(width: int, height: int, cell_px: int = 32) -> np.ndarray:
    """Grayscale dot-grid target used when no camera image has been loaded."""
    y, x = np.mgrid[0:height, 0:width]
    cx, cy = width // 2, height // 2
    dx = (x - cx) % cell_px - cell_px / 2
    dy = (y - cy) % cell_px - cell_px / 2
    dots = (dx ** 2 + dy ** 2) < (cell_px / 6) ** 2
    img = np.full((height, width), 40, dtype=np.uint8)
    img[dots] = 220
    img[cy, :] = 120
    img[:, cx] = 120
    return img


def qimage_to_array(qimg: QtGui.QImage) -> np.ndarray:
    gray = qimg.convertToFormat(QtGui.QImage.Format_Grayscale8)
    w, h = gray.width(), gray.height()
    ptr = gray.constBits()
    ptr.setsize(gray.bytesPerLine() * h)
    arr = np.frombuffer(ptr, dtype=np.uint8).reshape((h, gray.bytesPerLine()))
    return arr[:, :w].copy()


class ImagingPage(QtWidgets.QWidget):
    settings_requested = QtCore.pyqtSignal()

    def __init__(
        self,
        worker: StageWorker,
        config: Config,
        chain: CoordinateTransformChain,
        board: BoardCalibModel,
    ):
        super().__init__()
        self.worker = worker
        self.config = config
        self.chain = chain
        self.board = board
        self.current_pos = (0.0, 0.0)
        self.last_pixel = (0.0, 0.0)
        self.user_elements: list[PaintElement] = []

        self._build_ui()
        self._connect_signals()
        self.view.set_image(synthetic_target(config.IMAGE_WIDTH_PX, config.IMAGE_HEIGHT_PX))
        self.refresh_overlay()

    def _build_ui(self) -> None:
        layout = QtWidgets.QVBoxLayout(self)

        viewport = Viewport(self.config.ZOOM_STEP, self.config.MAX_ZOOM, self.config.CLICK_THRESHOLD_PX)
        self.view = CalibrationView(self.chain, viewport)
        layout.addWidget(self.view, stretch=16)

        options = QtWidgets.QHBoxLayout()
        self.btn_open = QtWidgets.QPushButton("Open Image...")
        self.check_overlay = QtWidgets.QCheckBox("Overlay")
        self.check_overlay.setChecked(True)
        self.check_grid = QtWidgets.QCheckBox("Board grid")
        self.check_grid.setChecked(True)
        self.check_click_move = QtWidgets.QCheckBox("Click to move")
        self.check_click_move.setToolTip("Move the stage to the clicked machine position")
        self.spin_gain = QtWidgets.QDoubleSpinBox()
        self.spin_gain.setRange(1.0, 1000.0)
        self.spin_gain.setValue(50.0)
        self.spin_gain.setPrefix("Residual x")
        for w in (self.btn_open, self.check_overlay, self.check_grid, self.check_click_move, self.spin_gain):
            options.addWidget(w)
        options.addStretch()
        layout.addLayout(options)

        bottom_panel = QtWidgets.QHBoxLayout()
        layout.addLayout(bottom_panel, stretch=5)
        self.readouts = ReadoutWidget()
        self.controls = StageControlWidget()
        bottom_panel.addWidget(self.readouts, 1)
        bottom_panel.addWidget(self.controls, 2)

    def _connect_signals(self) -> None:
        self.worker.position_changed.connect(self.on_position_changed)
        self.worker.status_msg.connect(self.update_status_msg)
        self.worker.state_changed.connect(self.on_state_changed)

        self.view.machine_clicked.connect(self.on_machine_clicked)
        self.view.pixel_clicked.connect(self.on_pixel_clicked)

        self.controls.move_requested.connect(self.on_move_requested)
        self.controls.step_requested.connect(self.on_step_requested)
        self.controls.home_requested.connect(self.worker.home)
        self.controls.settings_requested.connect(lambda: self.settings_requested.emit())

        self.controls.check_board.setChecked(self.config.ENABLE_BOARD_CORRECTION)
        self.controls.check_board.stateChanged.connect(self.on_board_correction_toggled)
        self.btn_open.clicked.connect(self.on_open_image)
        self.check_overlay.stateChanged.connect(self.on_overlay_toggled)
        self.check_grid.stateChanged.connect(lambda _: self.refresh_overlay())
        self.spin_gain.valueChanged.connect(lambda _: self.refresh_overlay())

        QtWidgets.QShortcut(QtGui.QKeySequence("Ctrl+H"), self, activated=self.worker.home)

    def update_status_msg(self, msg: str) -> None:
        self.readouts.update_status(msg)

    def on_state_changed(self, state: str) -> None:
        busy = state in {WorkerState.MOVING, WorkerState.HOMING}
        self.controls.set_busy(busy, f"Disabled while {state.lower()}." if busy else "")

    def on_overlay_toggled(self, checked: int) -> None:
        self.view.show_overlay = bool(checked)
        self.view.update()

    def on_open_image(self) -> None:
        path, _ = QtWidgets.QFileDialog.getOpenFileName(self, "Open Image", "", "Images (*.png *.bmp *.jpg *.tif)")
        if not path:
            return
        qimg = QtGui.QImage(path)
        if qimg.isNull():
            self.update_status_msg(f"Failed to open {path}")
            return
        self.view.set_image(qimage_to_array(qimg))

    def on_position_changed(self, x_mm: float, y_mm: float) -> None:
        self.current_pos = (x_mm, y_mm)
        self.view.set_reference(x_mm, y_mm)
        self.readouts.update_position(x_mm, y_mm)
        self.refresh_overlay()

    def on_pixel_clicked(self, px: float, py: float) -> None:
        self.last_pixel = (px, py)

    def on_machine_clicked(self, x_mm: float, y_mm: float) -> None:
        px, py = self.last_pixel
        self.readouts.update_click(px, py, x_mm, y_mm)
        if self.check_click_move.isChecked():
            self.on_move_requested(x_mm, y_mm)

    def on_board_correction_toggled(self, checked: int) -> None:
        self.config.ENABLE_BOARD_CORRECTION = bool(checked)

    def on_move_requested(self, x_mm: float, y_mm: float) -> None:
        status, cmd = run_with_status(self.worker.move_corrected, x_mm, y_mm)
        if status != StatusCode.OK:
            self.update_status_msg(f"Move failed: {status.name}")
            return
        if (cmd.x, cmd.y) != (x_mm, y_mm):
            logger.info("Board target (%.4f, %.4f) -> command (%.4f, %.4f)", x_mm, y_mm, cmd.x, cmd.y)

    def on_step_requested(self, dx: float, dy: float) -> None:
        step = self.controls.step_mm()
        x, y = self.current_pos
        self.worker.move_to(x + dx * step, y + dy * step)

    def set_user_elements(self, elements: list[PaintElement]) -> None:
        self.user_elements = list(elements)
        self.refresh_overlay()

    def mark_target(self, x_mm: float, y_mm: float) -> None:
        self.set_user_elements([circle(x_mm, y_mm, 0.05, OVERLAY_TARGET, 0.01), cross(x_mm, y_mm, OVERLAY_TARGET, 0.01)])

    def refresh_overlay(self, reason: Optional[str] = None) -> None:
        elements: list[PaintElement] = []
        if self.check_grid.isChecked() and self.board.is_loaded:
            elements.extend(
                grid_overlay(
                    self.board.shot_positions,
                    self.board.vision_offsets,
                    gain=self.spin_gain.value(),
                    grid_color=OVERLAY_GRID,
                    residual_color=OVERLAY_RESIDUAL,
                )
            )
        elements.extend(self.user_elements)
        x, y = self.current_pos
        elements.append(cross(x, y, OVERLAY_CROSSHAIR, 0.1))
        elements.append(text(x, y, f"({x:.3f}, {y:.3f})", OVERLAY_CROSSHAIR, 10.0))
        self.view.set_elements(elements)
        scale = self.chain.line_width_scale if self.chain.is_calibrated else 0.0
        self.readouts.update_calibration(scale)
        if reason:
            self.update_status_msg(reason)
