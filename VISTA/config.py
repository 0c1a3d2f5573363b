"""Application configuration with simple JSON persistence."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


@dataclass
class Config:
    # Camera
    IMAGE_WIDTH_PX: int = 1024
    IMAGE_HEIGHT_PX: int = 768
    MM_PER_PIXEL_X: float = 0.1
    MM_PER_PIXEL_Y: float = 0.1

    # Calibration files (empty = not configured)
    CAMERA_CALIB_PATH: str = ""
    BOARD_CALIB_PATH: str = ""
    LOCK_SCALE: bool = True
    ENABLE_BOARD_CORRECTION: bool = False

    # Display
    ZOOM_STEP: float = 0.3
    MAX_ZOOM: float = 100.0
    CLICK_THRESHOLD_PX: int = 5

    # Stage
    X_SERIAL: str = "27000001"
    Y_SERIAL: str = "27000002"
    STAGE_SCALE: int = 34304
    MIN_X_MM: float = 0.0
    MAX_X_MM: float = 25.0
    MIN_Y_MM: float = 0.0
    MAX_Y_MM: float = 25.0
    BACKLASH_DIST_MM: float = 0.005
    POSITION_EPSILON_MM: float = 0.002

    @staticmethod
    def default_path() -> Path:
        return Path.home() / ".vista_config.json"

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Config":
        cfg = cls()
        cfg_path = path or cls.default_path()
        if not cfg_path.exists():
            return cfg

        try:
            data = json.loads(cfg_path.read_text())
        except Exception:
            logger.exception("Failed to read config file: %s", cfg_path)
            return cfg

        for f in fields(cfg):
            if f.name not in data:
                continue
            raw = data[f.name]
            try:
                if f.type in (bool, "bool"):
                    val = bool(raw)
                elif f.type in (int, "int"):
                    val = int(raw)
                elif f.type in (float, "float"):
                    val = float(raw)
                else:
                    val = raw
                setattr(cfg, f.name, val)
            except Exception:
                logger.warning("Ignoring invalid config value for %s", f.name)

        cfg.normalize()
        return cfg

    def save(self, path: Optional[Path] = None) -> None:
        cfg_path = path or self.default_path()
        cfg_path.write_text(json.dumps(asdict(self), indent=2, sort_keys=True))

    def normalize(self) -> None:
        if self.MIN_X_MM > self.MAX_X_MM:
            self.MIN_X_MM, self.MAX_X_MM = self.MAX_X_MM, self.MIN_X_MM
        if self.MIN_Y_MM > self.MAX_Y_MM:
            self.MIN_Y_MM, self.MAX_Y_MM = self.MAX_Y_MM, self.MIN_Y_MM
        if self.MAX_ZOOM < 1.0:
            self.MAX_ZOOM = 1.0
        if self.IMAGE_WIDTH_PX <= 0 or self.IMAGE_HEIGHT_PX <= 0:
            logger.warning("Non-positive image size in config; using 1024x768")
            self.IMAGE_WIDTH_PX, self.IMAGE_HEIGHT_PX = 1024, 768
