import sys

from PyQt5 import QtWidgets

# Dark palette
COLOR_BG_DARK = "#1c1c1c"
COLOR_BG_LIGHT = "#2a2a2a"
COLOR_BORDER = "#3c3c3c"
COLOR_TEXT = "#e0e0e0"
COLOR_TEXT_DIM = "#8a8a8a"

COLOR_ACCENT = "#1f8ad2"
COLOR_SUCCESS = "#2ea043"
COLOR_DANGER = "#da3633"
COLOR_WARNING = "#bb8800"

HEX_BG_DARK = COLOR_BG_DARK
HEX_TEXT = COLOR_TEXT
HEX_TEXT_DIM = COLOR_TEXT_DIM
HEX_ACCENT = COLOR_ACCENT
HEX_SUCCESS = COLOR_SUCCESS
HEX_DANGER = COLOR_DANGER
HEX_WARNING = COLOR_WARNING

# Image view
CHECKER_CELL_PX = 10
CHECKER_DARK = (28, 28, 28)
CHECKER_LIGHT = (100, 100, 100)

# Overlay colors for calibration elements
OVERLAY_GRID = "#3fa7ff"
OVERLAY_RESIDUAL = "#ffb020"
OVERLAY_TARGET = "#40ff80"
OVERLAY_CROSSHAIR = "#ff4040"


def get_plot_colors():
    """Standard pyqtgraph colors matching the theme."""
    return {
        "background": COLOR_BG_DARK,
        "axis": COLOR_TEXT,
        "grid": (255, 255, 255, 40),
        "text": COLOR_TEXT,
    }


def apply_theme(app: QtWidgets.QApplication):
    """Applies the global QSS stylesheet to the application."""
    if sys.platform.startswith("win"):
        font_stack = '"Segoe UI", "Arial", sans-serif'
    elif sys.platform == "darwin":
        font_stack = '"SF Pro Text", "Helvetica Neue", "Arial", sans-serif'
    else:
        font_stack = '"DejaVu Sans", "Liberation Sans", "Arial", sans-serif'

    qss = f"""
    QMainWindow, QWidget {{
        background-color: {COLOR_BG_DARK};
        color: {COLOR_TEXT};
        font-family: {font_stack};
        font-size: 13px;
    }}
    QGroupBox {{
        border: 1px solid {COLOR_BORDER};
        border-radius: 4px;
        margin-top: 1.2em;
        padding-top: 10px;
    }}
    QGroupBox::title {{
        subcontrol-origin: margin;
        left: 10px;
        color: {COLOR_TEXT_DIM};
        font-weight: bold;
        padding: 0 3px;
    }}
    QLabel:disabled {{
        color: {COLOR_TEXT_DIM};
    }}
    QPushButton {{
        background-color: {COLOR_BG_LIGHT};
        border: 1px solid {COLOR_BORDER};
        padding: 5px 12px;
        border-radius: 4px;
    }}
    QPushButton:hover {{
        background-color: #3e3e3e;
    }}
    QPushButton:disabled {{
        color: #555;
        border-color: #333;
    }}
    QPushButton[class="accent"] {{
        background-color: {COLOR_ACCENT};
        color: white;
    }}
    QPushButton[class="success"] {{
        background-color: {COLOR_SUCCESS};
        color: white;
    }}
    QPushButton[class="danger"] {{
        background-color: {COLOR_DANGER};
        color: white;
    }}
    QLineEdit, QSpinBox, QDoubleSpinBox, QComboBox {{
        background-color: {COLOR_BG_LIGHT};
        border: 1px solid {COLOR_BORDER};
        border-radius: 3px;
        padding: 3px;
        selection-background-color: {COLOR_ACCENT};
    }}
    QLineEdit:focus, QSpinBox:focus, QDoubleSpinBox:focus, QComboBox:focus {{
        border: 1px solid {COLOR_ACCENT};
    }}
    QTableWidget {{
        background-color: #111;
        gridline-color: {COLOR_BORDER};
        border: 1px solid {COLOR_BORDER};
    }}
    QHeaderView::section {{
        background-color: {COLOR_BG_LIGHT};
        padding: 4px;
        border: 1px solid {COLOR_BORDER};
    }}
    """

    app.setStyleSheet(qss)
