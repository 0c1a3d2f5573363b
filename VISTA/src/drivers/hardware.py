import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

from VISTA.config import Config
from VISTA.src.core.types import Point2D

logger = logging.getLogger(__name__)


class StageSystem(ABC):
    @abstractmethod
    def move_to(self, x_mm: float, y_mm: float) -> None: pass
    @abstractmethod
    def home(self) -> None: pass
    @abstractmethod
    def close(self) -> None: pass
    @abstractmethod
    def set_soft_limits(self, min_x: float, max_x: float, min_y: float, max_y: float) -> None: pass
    @property
    @abstractmethod
    def soft_limits(self) -> tuple[float, float, float, float]: pass
    @property
    @abstractmethod
    def current_position(self) -> Point2D: pass

    def clamp(self, x_mm: float, y_mm: float) -> tuple[float, float]:
        min_x, max_x, min_y, max_y = self.soft_limits
        cx = min(max(x_mm, min_x), max_x)
        cy = min(max(y_mm, min_y), max_y)
        if (cx, cy) != (x_mm, y_mm):
            logger.warning("Target (%.4f, %.4f) outside soft limits. Clamping to (%.4f, %.4f).", x_mm, y_mm, cx, cy)
        return cx, cy

    def contains(self, x_mm: float, y_mm: float) -> bool:
        min_x, max_x, min_y, max_y = self.soft_limits
        return min_x <= x_mm <= max_x and min_y <= y_mm <= max_y


class RealStageSystem(StageSystem):
    def __init__(self, config: Optional[Config] = None):
        logger.info("Initializing stage hardware")
        config = config or Config()
        self.config = config
        self._limits = (config.MIN_X_MM, config.MAX_X_MM, config.MIN_Y_MM, config.MAX_Y_MM)

        from pylablib.devices import Thorlabs

        self.motor_x = Thorlabs.KinesisMotor(config.X_SERIAL, scale=config.STAGE_SCALE)
        self.motor_y = Thorlabs.KinesisMotor(config.Y_SERIAL, scale=config.STAGE_SCALE)
        logger.info("Stage axes %s / %s connected", config.X_SERIAL, config.Y_SERIAL)
        self.home()

    @property
    def current_position(self) -> Point2D:
        return Point2D(float(self.motor_x.get_position()), float(self.motor_y.get_position()))

    @property
    def soft_limits(self) -> tuple[float, float, float, float]:
        return self._limits

    def set_soft_limits(self, min_x: float, max_x: float, min_y: float, max_y: float) -> None:
        self._limits = (min(min_x, max_x), max(min_x, max_x), min(min_y, max_y), max(min_y, max_y))
        logger.info("Soft limits set to X[%.3f, %.3f] Y[%.3f, %.3f] mm", *self._limits)

    def home(self) -> None:
        logger.info("Homing stage")
        self.motor_x.home()
        self.motor_y.home()
        self.motor_x.wait_for_home()
        self.motor_y.wait_for_home()

    def move_to(self, x_mm: float, y_mm: float) -> None:
        x_mm, y_mm = self.clamp(x_mm, y_mm)
        min_x, _, min_y, _ = self._limits

        # Approach from the negative side on both axes to take up backlash.
        pre_x = max(x_mm - self.config.BACKLASH_DIST_MM, min_x)
        pre_y = max(y_mm - self.config.BACKLASH_DIST_MM, min_y)
        self.motor_x.move_to(pre_x)
        self.motor_y.move_to(pre_y)
        self.motor_x.wait_for_stop()
        self.motor_y.wait_for_stop()
        self.motor_x.move_to(x_mm)
        self.motor_y.move_to(y_mm)
        self.motor_x.wait_for_stop()
        self.motor_y.wait_for_stop()

    def close(self) -> None:
        for motor in (self.motor_x, self.motor_y):
            try:
                motor.close()
            except Exception:
                logger.exception("Failed to close stage axis")


class MockStageSystem(StageSystem):
    def __init__(self, config: Optional[Config] = None, travel_speed_mm_s: float = 50.0):
        logger.info("Initializing MOCK stage")
        config = config or Config()
        self.config = config
        self.travel_speed_mm_s = travel_speed_mm_s
        self._limits = (config.MIN_X_MM, config.MAX_X_MM, config.MIN_Y_MM, config.MAX_Y_MM)
        self._pos = Point2D(0.0, 0.0)

    @property
    def current_position(self) -> Point2D:
        return self._pos

    @property
    def soft_limits(self) -> tuple[float, float, float, float]:
        return self._limits

    def set_soft_limits(self, min_x: float, max_x: float, min_y: float, max_y: float) -> None:
        self._limits = (min(min_x, max_x), max(min_x, max_x), min(min_y, max_y), max(min_y, max_y))

    def home(self) -> None:
        self._pos = Point2D(0.0, 0.0)

    def move_to(self, x_mm: float, y_mm: float) -> None:
        x_mm, y_mm = self.clamp(x_mm, y_mm)
        dist = max(abs(x_mm - self._pos.x), abs(y_mm - self._pos.y))
        if self.travel_speed_mm_s > 0:
            time.sleep(dist / self.travel_speed_mm_s)
        self._pos = Point2D(float(x_mm), float(y_mm))

    def close(self) -> None:
        logger.info("MOCK stage closed")
