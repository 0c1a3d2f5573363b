import sys
import argparse
import logging
from PyQt5 import QtWidgets
import pyqtgraph as pg

from VISTA.config import Config
from VISTA.src.core.board_calib import BoardCalibModel
from VISTA.src.core.errors import CalibrationError
from VISTA.src.core.motion import BoardMotionCorrector
from VISTA.src.core.transform_chain import CoordinateTransformChain
from VISTA.src.core.types import Point2D
from VISTA.src.drivers.hardware import RealStageSystem, MockStageSystem, StageSystem
from VISTA.src.core.worker import StageWorker
from VISTA.src.ui.layouts.imaging import ImagingPage
from VISTA.src.ui.layouts.calibration import CalibrationPage
from VISTA.src.ui.layouts.settings import SettingsPage

logger = logging.getLogger(__name__)


def build_chain(config: Config) -> CoordinateTransformChain:
    """Camera calibration from the configured matrix file, else from the pixel pitch."""
    chain = CoordinateTransformChain()
    if config.CAMERA_CALIB_PATH:
        try:
            chain.set_calibration_from_file(config.CAMERA_CALIB_PATH)
            return chain
        except CalibrationError:
            logger.exception("Could not load camera calibration %s; using pixel pitch", config.CAMERA_CALIB_PATH)
    try:
        chain.set_simple_calibration(
            Point2D(config.MM_PER_PIXEL_X, config.MM_PER_PIXEL_Y),
            config.IMAGE_WIDTH_PX,
            config.IMAGE_HEIGHT_PX,
        )
    except CalibrationError:
        logger.exception("Pixel pitch calibration failed; display stays uncalibrated")
    return chain


def build_board(config: Config) -> BoardCalibModel:
    board = BoardCalibModel()
    if config.BOARD_CALIB_PATH:
        try:
            board.load(config.BOARD_CALIB_PATH)
        except CalibrationError:
            logger.exception("Could not load board calibration %s", config.BOARD_CALIB_PATH)
    return board


class MainWindow(QtWidgets.QMainWindow):
    def __init__(self, system: StageSystem, config: Config, chain: CoordinateTransformChain, board: BoardCalibModel):
        super().__init__()
        self.system = system
        self.config = config
        self.chain = chain
        self.board = board

        self.corrector = BoardMotionCorrector(config, system, board)
        self.worker = StageWorker(system, config, self.corrector)
        self.worker.start()

        self.setWindowTitle("VISTA: Vision Stage Calibration")
        self.resize(1100, 850)

        self.init_menu()

        self.stack = QtWidgets.QStackedWidget()
        self.setCentralWidget(self.stack)

        self.imaging_page = ImagingPage(self.worker, config, chain, board)
        self.stack.addWidget(self.imaging_page)

        self.calibration_page = CalibrationPage(config, chain, board)
        self.stack.addWidget(self.calibration_page)

        self.settings_page = SettingsPage(config)
        self.stack.addWidget(self.settings_page)

        self.imaging_page.settings_requested.connect(lambda: self.stack.setCurrentIndex(2))
        self.calibration_page.calibration_changed.connect(self.imaging_page.refresh_overlay)
        self.calibration_page.target_marked.connect(self.imaging_page.mark_target)
        self.settings_page.back_requested.connect(lambda: self.stack.setCurrentIndex(0))
        self.settings_page.settings_applied.connect(self.on_settings_applied)

    def init_menu(self):
        menubar = self.menuBar()

        vista_menu = menubar.addMenu("VISTA")
        vista_menu.addAction("Home Stage", lambda: self.worker.home())
        vista_menu.addAction("Settings", lambda: self.stack.setCurrentIndex(2))
        vista_menu.addSeparator()
        vista_menu.addAction("Quit", self.close)

        window_menu = menubar.addMenu("Window")
        window_menu.addAction("Imaging", lambda: self.stack.setCurrentIndex(0))
        window_menu.addAction("Calibration", lambda: self.stack.setCurrentIndex(1))

        help_menu = menubar.addMenu("Help")
        help_menu.addAction("About", self.on_about)

    def on_about(self):
        QtWidgets.QMessageBox.information(
            self, "About VISTA", "Stage-to-camera calibration and board-corrected positioning."
        )

    def on_settings_applied(self):
        c = self.config
        self.system.set_soft_limits(c.MIN_X_MM, c.MAX_X_MM, c.MIN_Y_MM, c.MAX_Y_MM)
        vp = self.imaging_page.view.viewport
        vp.zoom_step, vp.max_zoom, vp.click_threshold = c.ZOOM_STEP, c.MAX_ZOOM, c.CLICK_THRESHOLD_PX
        self.imaging_page.controls.check_board.setChecked(c.ENABLE_BOARD_CORRECTION)
        self.imaging_page.refresh_overlay("Settings applied")

    def closeEvent(self, event):
        logger.info("Closing application")
        self.worker.stop()
        self.system.close()
        event.accept()


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--sim", action="store_true", help="Run in simulation mode")
    parser.add_argument("--log-level", default="INFO", help="Python logging level")
    parser.add_argument("--camera-calib", help="Camera calibration JSON (overrides config)")
    parser.add_argument("--board-calib", help="Board calibration JSON (overrides config)")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    config = Config.load()
    if args.camera_calib:
        config.CAMERA_CALIB_PATH = args.camera_calib
    if args.board_calib:
        config.BOARD_CALIB_PATH = args.board_calib

    if args.sim:
        system = MockStageSystem(config)
    else:
        system = RealStageSystem(config)

    chain = build_chain(config)
    board = build_board(config)

    app = QtWidgets.QApplication(sys.argv)
    pg.setConfigOptions(imageAxisOrder='row-major')

    from VISTA.src.ui.theme import apply_theme
    apply_theme(app)

    window = MainWindow(system, config, chain, board)
    window.show()

    sys.exit(app.exec_())

if __name__ == "__main__":
    main()
