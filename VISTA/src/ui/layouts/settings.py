from PyQt5 import QtWidgets, QtCore

from VISTA.config import Config


class SettingsPage(QtWidgets.QWidget):
    settings_applied = QtCore.pyqtSignal()
    back_requested = QtCore.pyqtSignal()

    def __init__(self, config: Config, parent=None):
        super().__init__(parent)
        self.config = config
        self.fields = {}

        self._build_ui()
        self.load_from_config(self.config)

    def _build_ui(self):
        layout = QtWidgets.QVBoxLayout(self)
        layout.setContentsMargins(12, 12, 12, 12)
        layout.setSpacing(10)

        header = QtWidgets.QHBoxLayout()
        title = QtWidgets.QLabel("Settings")
        title.setStyleSheet("font-size: 18px; font-weight: bold;")
        header.addWidget(title)
        header.addStretch()

        self.btn_back = QtWidgets.QPushButton("Back to Imaging")
        self.btn_back.clicked.connect(lambda: self.back_requested.emit())
        header.addWidget(self.btn_back)
        layout.addLayout(header)

        self.lbl_path = QtWidgets.QLabel(f"Config file: {self.config.default_path()}")
        self.lbl_path.setStyleSheet("font-size: 11px; color: #888;")
        layout.addWidget(self.lbl_path)

        scroll = QtWidgets.QScrollArea()
        scroll.setWidgetResizable(True)
        layout.addWidget(scroll, stretch=1)

        container = QtWidgets.QWidget()
        scroll.setWidget(container)
        form_layout = QtWidgets.QVBoxLayout(container)
        form_layout.setSpacing(12)

        form_layout.addWidget(self._build_camera_group())
        form_layout.addWidget(self._build_display_group())
        form_layout.addWidget(self._build_stage_group())
        form_layout.addStretch()

        buttons = QtWidgets.QHBoxLayout()
        buttons.addStretch()
        self.btn_reset = QtWidgets.QPushButton("Reset to Defaults")
        self.btn_save = QtWidgets.QPushButton("Save Settings")
        self.btn_save.setProperty("class", "accent")
        self.btn_reset.clicked.connect(self.on_reset_defaults)
        self.btn_save.clicked.connect(self.on_save)
        buttons.addWidget(self.btn_reset)
        buttons.addWidget(self.btn_save)
        layout.addLayout(buttons)

    def _build_camera_group(self) -> QtWidgets.QGroupBox:
        group = QtWidgets.QGroupBox("Camera & Calibration")
        layout = QtWidgets.QFormLayout(group)
        layout.setLabelAlignment(QtCore.Qt.AlignRight)

        self._add_int(layout, "Image Width", "IMAGE_WIDTH_PX", 1, 20000, 1, " px")
        self._add_int(layout, "Image Height", "IMAGE_HEIGHT_PX", 1, 20000, 1, " px")
        self._add_float(
            layout, "Pitch X", "MM_PER_PIXEL_X", 0.00001, 100.0, 0.001, 5, " mm/px",
            "Millimeters covered by one pixel along X, used for the pitch calibration.",
        )
        self._add_float(
            layout, "Pitch Y", "MM_PER_PIXEL_Y", 0.00001, 100.0, 0.001, 5, " mm/px",
            "Millimeters covered by one pixel along Y.",
        )
        self._add_path(
            layout, "Camera Matrix File", "CAMERA_CALIB_PATH",
            "JSON file with an mm_to_pixel or pixel_to_mm matrix. Loaded at startup when set.",
        )
        self._add_path(
            layout, "Board Calibration File", "BOARD_CALIB_PATH",
            "Calibration-board record loaded at startup when set.",
        )
        self._add_bool(layout, "Lock Scale", "LOCK_SCALE", "Force a = e = 1 after the angle normalization fit.")
        self._add_bool(
            layout, "Board Correction", "ENABLE_BOARD_CORRECTION",
            "Apply the grid correction to board-frame moves.",
        )
        return group

    def _build_display_group(self) -> QtWidgets.QGroupBox:
        group = QtWidgets.QGroupBox("Display")
        layout = QtWidgets.QFormLayout(group)
        layout.setLabelAlignment(QtCore.Qt.AlignRight)

        self._add_float(layout, "Zoom Step", "ZOOM_STEP", 0.05, 0.9, 0.05, 2, "", "Relative zoom change per wheel notch.")
        self._add_float(layout, "Max Zoom", "MAX_ZOOM", 1.0, 1000.0, 1.0, 1, "x")
        self._add_int(
            layout, "Click Threshold", "CLICK_THRESHOLD_PX", 1, 50, 1, " px",
            "A press/release closer than this counts as a click rather than a drag.",
        )
        return group

    def _build_stage_group(self) -> QtWidgets.QGroupBox:
        group = QtWidgets.QGroupBox("Stage")
        layout = QtWidgets.QFormLayout(group)
        layout.setLabelAlignment(QtCore.Qt.AlignRight)

        self._add_text(layout, "X Serial", "X_SERIAL")
        self._add_text(layout, "Y Serial", "Y_SERIAL")
        self._add_int(layout, "Stage Scale", "STAGE_SCALE", 1, 10_000_000, 1, "", "Encoder steps per mm.")
        self._add_float(layout, "Min X", "MIN_X_MM", -1000.0, 1000.0, 0.1, 3, " mm")
        self._add_float(layout, "Max X", "MAX_X_MM", -1000.0, 1000.0, 0.1, 3, " mm")
        self._add_float(layout, "Min Y", "MIN_Y_MM", -1000.0, 1000.0, 0.1, 3, " mm")
        self._add_float(layout, "Max Y", "MAX_Y_MM", -1000.0, 1000.0, 0.1, 3, " mm")
        self._add_float(
            layout, "Backlash Distance", "BACKLASH_DIST_MM", 0.0, 1.0, 0.001, 4, " mm",
            "Every move approaches its target from this far on the negative side.",
        )
        self._add_float(
            layout, "Position Epsilon", "POSITION_EPSILON_MM", 0.0001, 1.0, 0.001, 4, " mm",
            "Smallest stage movement that refreshes the display.",
        )
        return group

    def _add_float(self, layout, label, key, min_v, max_v, step, decimals, suffix, help_text=""):
        w = QtWidgets.QDoubleSpinBox()
        w.setRange(min_v, max_v)
        w.setDecimals(decimals)
        w.setSingleStep(step)
        if suffix:
            w.setSuffix(suffix)
        layout.addRow(label + ":", self._wrap_with_help(w, help_text))
        self.fields[key] = w

    def _add_int(self, layout, label, key, min_v, max_v, step, suffix="", help_text=""):
        w = QtWidgets.QSpinBox()
        w.setRange(min_v, max_v)
        w.setSingleStep(step)
        if suffix:
            w.setSuffix(suffix)
        layout.addRow(label + ":", self._wrap_with_help(w, help_text))
        self.fields[key] = w

    def _add_bool(self, layout, label, key, help_text=""):
        w = QtWidgets.QCheckBox()
        layout.addRow(label + ":", self._wrap_with_help(w, help_text))
        self.fields[key] = w

    def _add_text(self, layout, label, key, help_text=""):
        w = QtWidgets.QLineEdit()
        w.setMinimumWidth(140)
        layout.addRow(label + ":", self._wrap_with_help(w, help_text))
        self.fields[key] = w

    def _add_path(self, layout, label, key, help_text=""):
        w = QtWidgets.QLineEdit()
        w.setMinimumWidth(260)
        browse = QtWidgets.QPushButton("...")
        browse.setFixedWidth(30)
        browse.clicked.connect(lambda: self._browse(w))
        row = QtWidgets.QHBoxLayout()
        row.setContentsMargins(0, 0, 0, 0)
        row.addWidget(w)
        row.addWidget(browse)
        wrapper = QtWidgets.QWidget()
        wrapper.setLayout(row)
        layout.addRow(label + ":", self._wrap_with_help(wrapper, help_text))
        self.fields[key] = w

    def _browse(self, edit: QtWidgets.QLineEdit):
        path, _ = QtWidgets.QFileDialog.getOpenFileName(self, "Select File", edit.text(), "JSON (*.json)")
        if path:
            edit.setText(path)

    def _wrap_with_help(self, widget, help_text: str):
        if not help_text:
            return widget
        row = QtWidgets.QHBoxLayout()
        row.setContentsMargins(0, 0, 0, 0)
        row.addWidget(widget)
        info = QtWidgets.QLabel("?")
        info.setToolTip(help_text)
        info.setStyleSheet("color: #9aa0a6; font-size: 12px; padding-left: 6px;")
        row.addWidget(info)
        row.addStretch()
        wrapper = QtWidgets.QWidget()
        wrapper.setLayout(row)
        return wrapper

    def load_from_config(self, config: Config):
        for key, widget in self.fields.items():
            val = getattr(config, key)
            if isinstance(widget, QtWidgets.QCheckBox):
                widget.setChecked(bool(val))
            elif isinstance(widget, QtWidgets.QLineEdit):
                widget.setText(str(val))
            else:
                widget.setValue(val)

    def on_reset_defaults(self):
        self.load_from_config(Config())

    def on_save(self):
        for key, widget in self.fields.items():
            if isinstance(widget, QtWidgets.QCheckBox):
                val = widget.isChecked()
            elif isinstance(widget, QtWidgets.QLineEdit):
                val = widget.text().strip()
            else:
                val = widget.value()
            setattr(self.config, key, val)

        self.config.normalize()
        self.config.save()
        self.load_from_config(self.config)
        self.settings_applied.emit()
