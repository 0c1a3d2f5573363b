"""Image display with pan/zoom and machine-coordinate overlays."""

from __future__ import annotations

import logging
import math
from typing import Optional

import numpy as np
from PyQt5 import QtCore, QtGui, QtWidgets

from VISTA.src.core.elements import ElementKind, PaintElement
from VISTA.src.core.errors import CalibrationError
from VISTA.src.core.transform_chain import CoordinateTransformChain
from VISTA.src.core.types import ORIGIN, Point2D
from VISTA.src.core.viewport import Viewport
from VISTA.src.ui.theme import CHECKER_CELL_PX, CHECKER_DARK, CHECKER_LIGHT

logger = logging.getLogger(__name__)


def to_qimage(img: np.ndarray) -> QtGui.QImage:
    """Convert a grayscale or RGB uint8 array into a QImage that owns its data."""
    arr = np.ascontiguousarray(img)
    if arr.dtype != np.uint8:
        arr = np.clip(arr, 0, 255).astype(np.uint8)
    if arr.ndim == 2:
        h, w = arr.shape
        qimg = QtGui.QImage(arr.data, w, h, arr.strides[0], QtGui.QImage.Format_Grayscale8)
    else:
        h, w = arr.shape[:2]
        qimg = QtGui.QImage(arr.data, w, h, arr.strides[0], QtGui.QImage.Format_RGB888)
    return qimg.copy()


class CalibrationView(QtWidgets.QWidget):
    # Absolute machine position (mm) under a click
    machine_clicked = QtCore.pyqtSignal(float, float)
    pixel_clicked = QtCore.pyqtSignal(float, float)

    def __init__(self, chain: CoordinateTransformChain, viewport: Optional[Viewport] = None, parent=None):
        super().__init__(parent)
        self.chain = chain
        self.viewport = viewport or Viewport()
        self.elements: list[PaintElement] = []
        self.reference = ORIGIN
        self.show_overlay = True

        self._image: Optional[QtGui.QImage] = None
        self._dragging = False
        self._drag_last = QtCore.QPointF()
        self._press_pos = QtCore.QPointF()

        self.setMinimumSize(400, 300)
        self.setFocusPolicy(QtCore.Qt.StrongFocus)
        self.setMouseTracking(True)

    def sizeHint(self) -> QtCore.QSize:
        return QtCore.QSize(800, 450)

    def set_image(self, img: np.ndarray) -> None:
        if img is None:
            return
        self._image = to_qimage(img)
        self.viewport.fit((self._image.width(), self._image.height()), (self.width(), self.height()))
        self.update()

    def set_elements(self, elements: list[PaintElement]) -> None:
        self.elements = list(elements)
        self.update()

    def change_element(self, index: int, element: PaintElement) -> None:
        if 0 <= index < len(self.elements):
            self.elements[index] = element
            self.update()

    def set_reference(self, x_mm: float, y_mm: float) -> None:
        self.reference = Point2D(float(x_mm), float(y_mm))
        self.update()

    def resizeEvent(self, event: QtGui.QResizeEvent) -> None:
        if self._image is not None:
            size = (self._image.width(), self._image.height())
            self.viewport.image_size = None
            self.viewport.fit(size, (self.width(), self.height()))
        super().resizeEvent(event)

    # --- Mouse ---

    def wheelEvent(self, event: QtGui.QWheelEvent) -> None:
        pos = event.pos()
        direction = 1 if event.angleDelta().y() > 0 else -1
        if self.viewport.zoom_at((pos.x(), pos.y()), direction):
            self.update()

    def mousePressEvent(self, event: QtGui.QMouseEvent) -> None:
        if event.button() != QtCore.Qt.LeftButton:
            return
        pos = event.pos()
        if not self.viewport.contains((pos.x(), pos.y())):
            return
        self._dragging = True
        self._drag_last = QtCore.QPointF(pos)
        self._press_pos = QtCore.QPointF(pos)
        self.setCursor(QtCore.Qt.ClosedHandCursor)

    def mouseMoveEvent(self, event: QtGui.QMouseEvent) -> None:
        if not self._dragging:
            return
        pos = QtCore.QPointF(event.pos())
        delta = pos - self._drag_last
        self.viewport.drag(delta.x(), delta.y())
        self._drag_last = pos
        self.update()

    def mouseReleaseEvent(self, event: QtGui.QMouseEvent) -> None:
        if event.button() != QtCore.Qt.LeftButton or not self._dragging:
            return
        self._dragging = False
        self.unsetCursor()
        pos = event.pos()
        release = (pos.x(), pos.y())
        if not self.viewport.is_click((self._press_pos.x(), self._press_pos.y()), release):
            return
        if self._image is None or not self.viewport.contains(release):
            return

        pixel = self.viewport.screen_to_image(release)
        self.pixel_clicked.emit(pixel.x, pixel.y)
        try:
            mach = self.chain.inverse_transform(pixel, self.reference)
        except CalibrationError as exc:
            logger.warning("Click ignored: %s", exc)
            return
        self.machine_clicked.emit(mach.x, mach.y)

    def mouseDoubleClickEvent(self, event: QtGui.QMouseEvent) -> None:
        self.viewport.reset()
        self.update()

    # --- Painting ---

    def paintEvent(self, event: QtGui.QPaintEvent) -> None:
        painter = QtGui.QPainter(self)
        try:
            self._draw_checkerboard(painter)
            if self._image is None:
                return
            x, y, w, h = self.viewport.image_rect()
            painter.setRenderHint(QtGui.QPainter.SmoothPixmapTransform, True)
            painter.drawImage(QtCore.QRectF(x, y, w, h), self._image)

            if self.show_overlay and self.elements and self.chain.is_calibrated:
                painter.setRenderHint(QtGui.QPainter.Antialiasing, True)
                self._draw_elements(painter)
        finally:
            painter.end()

    def _draw_checkerboard(self, painter: QtGui.QPainter) -> None:
        dark = QtGui.QColor(*CHECKER_DARK)
        light = QtGui.QColor(*CHECKER_LIGHT)
        cell = CHECKER_CELL_PX
        for y in range(0, self.height(), cell):
            for x in range(0, self.width(), cell):
                color = dark if (x // cell + y // cell) % 2 == 0 else light
                painter.fillRect(x, y, cell, cell, color)

    def _draw_elements(self, painter: QtGui.QPainter) -> None:
        bounds = (self.width(), self.height())
        scale = self.chain.line_width_scale * self.viewport.zoom
        for element in self.elements:
            if not element.visible:
                continue
            pts = self.chain.project(element, self.reference, self.viewport.zoom, self.viewport.pan, bounds)
            if pts:
                paint_element(painter, element, pts, scale)


def paint_element(painter: QtGui.QPainter, element: PaintElement, pts: list[Point2D], line_scale: float) -> None:
    """Draw one element from its screen points."""
    width = max(1.0, element.line_width * line_scale)
    color = QtGui.QColor(element.color)
    pen = QtGui.QPen(color, width)
    brush = QtGui.QBrush(color) if element.fill else QtGui.QBrush(QtCore.Qt.NoBrush)
    painter.setPen(pen)
    painter.setBrush(brush)
    qpts = [QtCore.QPointF(p.x, p.y) for p in pts]
    kind = element.kind

    if kind == ElementKind.DOT:
        painter.setBrush(QtGui.QBrush(color))
        painter.setPen(QtCore.Qt.NoPen)
        for p in qpts:
            painter.drawEllipse(p, width * 2, width * 2)
    elif kind == ElementKind.LINE and len(qpts) >= 2:
        painter.drawLine(qpts[0], qpts[1])
    elif kind == ElementKind.POLYLINE and len(qpts) >= 2:
        painter.drawPolyline(QtGui.QPolygonF(qpts))
    elif kind == ElementKind.CIRCLE and len(qpts) >= 2:
        r = math.hypot(qpts[1].x() - qpts[0].x(), qpts[1].y() - qpts[0].y())
        painter.drawEllipse(qpts[0], r, r)
    elif kind in (ElementKind.RECT, ElementKind.ELLIPSE) and len(qpts) >= 2:
        rect = QtCore.QRectF(qpts[0], qpts[1]).normalized()
        if kind == ElementKind.RECT:
            painter.drawRect(rect)
        else:
            painter.drawEllipse(rect)
    elif kind == ElementKind.POLYGON and len(qpts) >= 3:
        painter.drawPolygon(QtGui.QPolygonF(qpts))
    elif kind == ElementKind.CROSS and qpts:
        half = width * 5
        c = qpts[0]
        painter.drawLine(QtCore.QPointF(c.x() - half, c.y()), QtCore.QPointF(c.x() + half, c.y()))
        painter.drawLine(QtCore.QPointF(c.x(), c.y() - half), QtCore.QPointF(c.x(), c.y() + half))
    elif kind == ElementKind.ARROW and len(qpts) >= 2:
        p1, p2 = qpts[0], qpts[1]
        painter.drawLine(p1, p2)
        angle = math.atan2(p2.y() - p1.y(), p2.x() - p1.x())
        head = 10.0
        for side in (-math.pi / 6, math.pi / 6):
            tip = QtCore.QPointF(p2.x() - head * math.cos(angle + side), p2.y() - head * math.sin(angle + side))
            painter.drawLine(p2, tip)
    elif kind == ElementKind.RING and len(qpts) >= 3:
        painter.setBrush(QtCore.Qt.NoBrush)
        c = qpts[0]
        for edge in qpts[1:3]:
            r = math.hypot(edge.x() - c.x(), edge.y() - c.y())
            painter.drawEllipse(c, r, r)
    elif kind == ElementKind.ARC and len(qpts) >= 3:
        c, start, end = qpts[0], qpts[1], qpts[2]
        r = math.hypot(start.x() - c.x(), start.y() - c.y())
        a0 = math.degrees(math.atan2(-(start.y() - c.y()), start.x() - c.x()))
        a1 = math.degrees(math.atan2(-(end.y() - c.y()), end.x() - c.x()))
        # Clockwise on screen from start to end
        span = -((a0 - a1) % 360.0)
        rect = QtCore.QRectF(c.x() - r, c.y() - r, 2 * r, 2 * r)
        painter.setBrush(QtCore.Qt.NoBrush)
        painter.drawArc(rect, int(a0 * 16), int(span * 16))
    elif kind == ElementKind.TEXT and qpts and element.text:
        font = painter.font()
        font.setPointSizeF(element.font_size)
        painter.setFont(font)
        painter.drawText(qpts[0], element.text)
