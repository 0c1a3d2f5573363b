from PyQt5 import QtWidgets
from VISTA.src.ui.theme import HEX_ACCENT, HEX_DANGER, HEX_WARNING, HEX_SUCCESS, HEX_TEXT_DIM, HEX_TEXT


class ReadoutWidget(QtWidgets.QGroupBox):
    def __init__(self, parent=None):
        super().__init__("Readouts", parent)
        self.layout = QtWidgets.QGridLayout(self)

        self.lbl_pos = QtWidgets.QLabel("X 0.000  Y 0.000 mm")
        self.lbl_pos.setStyleSheet("font-size: 18px; font-weight: bold;")
        self.layout.addWidget(QtWidgets.QLabel("Stage:"), 0, 0)
        self.layout.addWidget(self.lbl_pos, 0, 1)

        self.lbl_click = QtWidgets.QLabel("---")
        self.lbl_click.setStyleSheet(f"font-size: 14px; color: {HEX_TEXT_DIM};")
        self.layout.addWidget(QtWidgets.QLabel("Last click:"), 1, 0)
        self.layout.addWidget(self.lbl_click, 1, 1)

        self.lbl_calib = QtWidgets.QLabel("Not calibrated")
        self.lbl_calib.setStyleSheet(f"color: {HEX_WARNING};")
        self.layout.addWidget(QtWidgets.QLabel("Camera:"), 2, 0)
        self.layout.addWidget(self.lbl_calib, 2, 1)

        self.lbl_status = QtWidgets.QLabel("Ready")
        self.lbl_status.setStyleSheet(f"color: {HEX_SUCCESS}; font-weight: bold;")
        self.layout.addWidget(QtWidgets.QLabel("Status:"), 3, 0)
        self.layout.addWidget(self.lbl_status, 3, 1)

    def update_position(self, x_mm: float, y_mm: float):
        self.lbl_pos.setText(f"X {x_mm:.3f}  Y {y_mm:.3f} mm")
        self.lbl_pos.setStyleSheet(f"font-size: 18px; font-weight: bold; color: {HEX_TEXT};")

    def update_click(self, px: float, py: float, x_mm: float, y_mm: float):
        self.lbl_click.setText(f"px ({px:.1f}, {py:.1f}) -> ({x_mm:.4f}, {y_mm:.4f}) mm")
        self.lbl_click.setStyleSheet(f"font-size: 14px; color: {HEX_ACCENT};")

    def update_calibration(self, scale_px_per_mm: float):
        if scale_px_per_mm > 0:
            self.lbl_calib.setText(f"{scale_px_per_mm:.2f} px/mm")
            self.lbl_calib.setStyleSheet(f"color: {HEX_TEXT};")
        else:
            self.lbl_calib.setText("Not calibrated")
            self.lbl_calib.setStyleSheet(f"color: {HEX_WARNING};")

    def update_status(self, msg):
        self.lbl_status.setText(msg)
        m = msg.lower()
        if "error" in m or "fail" in m or "outside" in m:
            self.lbl_status.setStyleSheet(f"color: {HEX_DANGER}; font-weight: bold;")
        elif "moving" in m or "homing" in m:
            self.lbl_status.setStyleSheet(f"color: {HEX_WARNING}; font-weight: bold;")
        else:
            self.lbl_status.setStyleSheet(f"color: {HEX_SUCCESS}; font-weight: bold;")
