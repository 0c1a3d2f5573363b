"""Pan/zoom state of the image display, kept free of Qt so it can be tested."""

from __future__ import annotations

import math
from typing import Optional

from VISTA.src.core.types import ORIGIN, Point2D, as_point


class Viewport:
    """Screen placement of an image: ``screen = image_px * zoom + pan``.

    The default zoom fits the whole image inside the widget; zooming out
    never goes below it, and returning to it also resets the pan.
    """

    def __init__(self, zoom_step: float = 0.3, max_zoom: float = 100.0, click_threshold: float = 5.0):
        self.zoom_step = zoom_step
        self.max_zoom = max_zoom
        self.click_threshold = click_threshold
        self.zoom = 1.0
        self.default_zoom = 1.0
        self.pan = ORIGIN
        self.image_size: Optional[tuple[int, int]] = None
        self.bounds: tuple[float, float] = (0.0, 0.0)

    def fit(self, image_size: tuple[int, int], bounds: tuple[float, float]) -> None:
        """Recompute the default zoom when the image size changes."""
        self.bounds = (float(bounds[0]), float(bounds[1]))
        if image_size == self.image_size:
            return
        self.image_size = (int(image_size[0]), int(image_size[1]))
        w, h = self.image_size
        if w > 0 and h > 0 and self.bounds[0] > 0 and self.bounds[1] > 0:
            self.default_zoom = min(self.bounds[0] / w, self.bounds[1] / h)
        else:
            self.default_zoom = 1.0
        self.reset()

    def reset(self) -> None:
        self.zoom = self.default_zoom
        self.pan = ORIGIN

    def image_rect(self) -> tuple[float, float, float, float]:
        if self.image_size is None:
            return (0.0, 0.0, 0.0, 0.0)
        w, h = self.image_size
        return (self.pan.x, self.pan.y, w * self.zoom, h * self.zoom)

    def contains(self, screen) -> bool:
        x, y = as_point(screen)
        rx, ry, rw, rh = self.image_rect()
        return rx <= x <= rx + rw and ry <= y <= ry + rh

    def zoom_at(self, cursor, direction: int) -> bool:
        """Zoom in (direction > 0) or out around the cursor; the pixel under it stays put."""
        if self.image_size is None or not self.contains(cursor):
            return False
        cx, cy = as_point(cursor)
        ix = (cx - self.pan.x) / self.zoom
        iy = (cy - self.pan.y) / self.zoom

        factor = 1 + self.zoom_step if direction > 0 else 1 - self.zoom_step
        self.zoom = max(self.default_zoom, min(self.zoom * factor, self.max_zoom))

        if self.zoom == self.default_zoom:
            self.pan = ORIGIN
        else:
            self.pan = Point2D(cx - ix * self.zoom, cy - iy * self.zoom)
        return True

    def drag(self, dx: float, dy: float) -> None:
        self.pan = Point2D(self.pan.x + dx, self.pan.y + dy)
        self._limit_within_bounds()

    def _limit_within_bounds(self) -> None:
        if self.image_size is None:
            return
        w, h = self.image_size
        img_w = w * self.zoom
        img_h = h * self.zoom
        bw, bh = self.bounds
        min_x, max_x = min(0.0, bw - img_w), max(0.0, bw - img_w)
        min_y, max_y = min(0.0, bh - img_h), max(0.0, bh - img_h)
        self.pan = Point2D(
            max(min_x, min(self.pan.x, max_x)),
            max(min_y, min(self.pan.y, max_y)),
        )

    def screen_to_image(self, screen) -> Point2D:
        """Screen -> image pixel, clamped to the image extent."""
        sx, sy = as_point(screen)
        ix = (sx - self.pan.x) / self.zoom
        iy = (sy - self.pan.y) / self.zoom
        if self.image_size is not None:
            w, h = self.image_size
            ix = max(0.0, min(ix, float(w)))
            iy = max(0.0, min(iy, float(h)))
        return Point2D(ix, iy)

    def is_click(self, press, release) -> bool:
        px, py = as_point(press)
        rx, ry = as_point(release)
        return math.hypot(rx - px, ry - py) < self.click_threshold
