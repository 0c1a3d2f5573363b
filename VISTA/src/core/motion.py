"""Board-corrected stage moves."""

from __future__ import annotations

import logging

from VISTA.config import Config
from VISTA.src.core.board_calib import BoardCalibModel
from VISTA.src.core.errors import OutOfRangeError
from VISTA.src.core.types import Point2D, as_point
from VISTA.src.drivers.hardware import StageSystem

logger = logging.getLogger(__name__)


class BoardMotionCorrector:
    """Turns a board-frame target into the mechanical command that reaches it.

    When correction is disabled or no board calibration is loaded, targets
    pass through unchanged.
    """

    def __init__(self, config: Config, system: StageSystem, model: BoardCalibModel):
        self.config = config
        self.system = system
        self.model = model

    @property
    def active(self) -> bool:
        return self.config.ENABLE_BOARD_CORRECTION and self.model.is_loaded

    def corrected_target(self, target) -> Point2D:
        target = as_point(target)
        if not self.active:
            return target
        return self.model.board_to_mach(target)

    def checked_target(self, target) -> Point2D:
        """Corrected command, rejected with OutOfRangeError outside the soft limits."""
        cmd = self.corrected_target(target)
        if not self.system.contains(cmd.x, cmd.y):
            raise OutOfRangeError(
                f"Corrected target ({cmd.x:.4f}, {cmd.y:.4f}) is outside the stage soft limits"
            )
        logger.debug("Board target %s -> stage command %s", tuple(as_point(target)), tuple(cmd))
        return cmd

    def move_corrected(self, target) -> Point2D:
        """Move so the tool lands on ``target`` in board coordinates."""
        cmd = self.checked_target(target)
        self.system.move_to(cmd.x, cmd.y)
        return cmd
