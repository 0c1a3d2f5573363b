from PyQt5 import QtWidgets, QtCore, QtGui


STEP_CHOICES = ["10um", "100um", "1mm", "10mm"]


def parse_step_mm(text: str) -> float:
    if text.endswith("um"):
        return float(text[:-2]) / 1000.0
    return float(text.replace("mm", ""))


class StageControlWidget(QtWidgets.QGroupBox):
    move_requested = QtCore.pyqtSignal(float, float)
    step_requested = QtCore.pyqtSignal(float, float)  # direction per axis, -1/0/1
    home_requested = QtCore.pyqtSignal()
    settings_requested = QtCore.pyqtSignal()

    def __init__(self, parent=None):
        super().__init__("Stage", parent)
        self.layout = QtWidgets.QGridLayout(self)
        self.layout.setHorizontalSpacing(10)
        self.layout.setVerticalSpacing(8)

        # Row 1: Go to XY
        self.layout.addWidget(QtWidgets.QLabel("Go to:"), 0, 0)
        self.txt_x = self._coord_edit("X mm")
        self.txt_y = self._coord_edit("Y mm")
        self.layout.addWidget(self.txt_x, 0, 1)
        self.layout.addWidget(self.txt_y, 0, 2)

        self.btn_go = QtWidgets.QPushButton("Go")
        self.btn_go.setFixedWidth(40)
        self.btn_go.setToolTip("Move stage to the entered XY position")
        self.btn_go.clicked.connect(self.emit_move_requested)
        self.layout.addWidget(self.btn_go, 0, 3)

        self.check_board = QtWidgets.QCheckBox("Board corrected")
        self.check_board.setToolTip("Treat targets as board coordinates and apply the grid correction")
        self.layout.addWidget(self.check_board, 0, 4)

        # Row 2: step size, home, settings
        self.layout.addWidget(QtWidgets.QLabel("Step:"), 1, 0)
        self.combo_step = QtWidgets.QComboBox()
        self.combo_step.addItems(STEP_CHOICES)
        self.combo_step.setCurrentIndex(1)
        self.combo_step.setFixedWidth(90)
        self.combo_step.setToolTip("Jog step size")
        self.layout.addWidget(self.combo_step, 1, 1)

        self.btn_home = QtWidgets.QPushButton("Home")
        self.btn_home.setToolTip("Home both axes")
        self.btn_home.clicked.connect(lambda: self.home_requested.emit())
        self.layout.addWidget(self.btn_home, 1, 2)

        self.btn_settings = QtWidgets.QPushButton("Settings")
        self.btn_settings.clicked.connect(lambda: self.settings_requested.emit())
        self.layout.addWidget(self.btn_settings, 1, 3)

        # Row 3: jog pad
        jog = QtWidgets.QGridLayout()
        self.jog_buttons = {}
        for label, (dx, dy), (r, c) in (
            ("Y+", (0.0, 1.0), (0, 1)),
            ("X-", (-1.0, 0.0), (1, 0)),
            ("X+", (1.0, 0.0), (1, 2)),
            ("Y-", (0.0, -1.0), (2, 1)),
        ):
            btn = QtWidgets.QPushButton(label)
            btn.setFixedWidth(40)
            btn.clicked.connect(lambda _=False, dx=dx, dy=dy: self.step_requested.emit(dx, dy))
            jog.addWidget(btn, r, c)
            self.jog_buttons[label] = btn
        self.layout.addLayout(jog, 2, 0, 1, 3)

    def _coord_edit(self, placeholder: str) -> QtWidgets.QLineEdit:
        edit = QtWidgets.QLineEdit()
        edit.setFixedWidth(80)
        edit.setPlaceholderText(placeholder)
        edit.setValidator(QtGui.QDoubleValidator())
        edit.returnPressed.connect(self.emit_move_requested)
        return edit

    def step_mm(self) -> float:
        return parse_step_mm(self.combo_step.currentText())

    def set_busy(self, busy: bool, reason: str = "") -> None:
        for w in [self.btn_go, self.btn_home, self.txt_x, self.txt_y, *self.jog_buttons.values()]:
            w.setEnabled(not busy)
            if reason:
                w.setToolTip(reason)

    def emit_move_requested(self):
        tx, ty = self.txt_x.text(), self.txt_y.text()
        if not tx or not ty:
            return
        try:
            x, y = float(tx), float(ty)
        except ValueError:
            return
        self.move_requested.emit(x, y)
        self.txt_x.clearFocus()
        self.txt_y.clearFocus()
