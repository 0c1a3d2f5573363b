"""Background worker thread for stage IO and position publishing."""

from __future__ import annotations

import logging
import queue
import time
from typing import Any, Optional

from PyQt5 import QtCore

from VISTA.config import Config
from VISTA.src.core.motion import BoardMotionCorrector
from VISTA.src.core.types import Point2D
from VISTA.src.drivers.hardware import StageSystem

logger = logging.getLogger(__name__)


class WorkerState:
    IDLE = "IDLE"
    MOVING = "MOVING"
    HOMING = "HOMING"
    ERROR = "ERROR"


class StageWorker(QtCore.QThread):
    position_changed = QtCore.pyqtSignal(float, float)
    status_msg = QtCore.pyqtSignal(str)
    state_changed = QtCore.pyqtSignal(str)
    move_finished = QtCore.pyqtSignal(float, float)

    def __init__(self, system: StageSystem, config: Config, corrector: Optional[BoardMotionCorrector] = None):
        super().__init__()
        self.system = system
        self.config = config
        self.corrector = corrector
        self.running = True
        self.poll_interval_s = 0.05
        self.state = WorkerState.IDLE

        self.command_queue: queue.Queue[tuple[str, Any]] = queue.Queue()
        self._last_published: Optional[Point2D] = None

    def _set_state(self, state: str) -> None:
        if self.state != state:
            self.state = state
            self.state_changed.emit(state)

    def move_to(self, x_mm: float, y_mm: float) -> None:
        self.command_queue.put(("MOVE", (float(x_mm), float(y_mm))))

    def move_corrected(self, x_mm: float, y_mm: float) -> Point2D:
        """Queue a move that lands on a board-frame target.

        The correction is computed on the calling thread; the worker only
        receives the resulting mechanical command. OutOfRangeError propagates
        to the caller and nothing is queued.
        """
        if self.corrector is None:
            cmd = Point2D(float(x_mm), float(y_mm))
        else:
            cmd = self.corrector.checked_target((x_mm, y_mm))
        self.move_to(cmd.x, cmd.y)
        return cmd

    def home(self) -> None:
        self.command_queue.put(("HOME", None))

    def stop(self) -> None:
        self.running = False
        self.wait()

    def run(self) -> None:
        while self.running:
            try:
                self._drain_commands()
                self.publish_position()
            except Exception:
                self._set_state(WorkerState.ERROR)
                self.status_msg.emit("Stage error. Check logs for details.")
                logger.exception("Stage worker crashed")
                time.sleep(0.05)
                if self.running:
                    self._set_state(WorkerState.IDLE)
            time.sleep(self.poll_interval_s)

    def _drain_commands(self) -> None:
        while not self.command_queue.empty():
            cmd, val = self.command_queue.get_nowait()
            if cmd == "MOVE":
                self._handle_move(val)
            elif cmd == "HOME":
                self._handle_home()

    def _handle_move(self, val: tuple[float, float]) -> None:
        x_mm, y_mm = val
        self._set_state(WorkerState.MOVING)
        self.status_msg.emit(f"Moving to ({x_mm:.3f}, {y_mm:.3f}) mm")
        self.system.move_to(x_mm, y_mm)
        pos = self.system.current_position
        self.publish_position(force=True)
        self.move_finished.emit(pos.x, pos.y)
        self._set_state(WorkerState.IDLE)

    def _handle_home(self) -> None:
        self._set_state(WorkerState.HOMING)
        self.status_msg.emit("Homing...")
        self.system.home()
        self.publish_position(force=True)
        self.status_msg.emit("Homed")
        self._set_state(WorkerState.IDLE)

    def publish_position(self, force: bool = False) -> bool:
        """Emit position_changed when the stage moved by at least the epsilon."""
        pos = self.system.current_position
        last = self._last_published
        eps = self.config.POSITION_EPSILON_MM
        if not force and last is not None and abs(pos.x - last.x) < eps and abs(pos.y - last.y) < eps:
            return False
        self._last_published = pos
        self.position_changed.emit(float(pos.x), float(pos.y))
        return True
