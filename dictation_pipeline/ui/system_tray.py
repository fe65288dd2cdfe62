"""
System tray icon for the dictation app.
"""
import logging
from PySide6.QtWidgets import QSystemTrayIcon, QMenu
from PySide6.QtGui import QIcon, QAction, QPainter, QColor, QPixmap
from PySide6.QtCore import Slot
from PySide6.QtCore import Qt, QRect

# Microphone body colour per recording state
STATE_COLORS = {
    "idle": QColor(0, 120, 212),
    "recording": QColor(220, 40, 40),
    "processing": QColor(230, 160, 0),
}


class SystemTrayIcon(QSystemTrayIcon):
    """Tray icon with recording controls, model status tooltip and notifications."""

    def __init__(self, tooltip: str, toggle_callback, debug_callback, exit_callback, parent=None):
        """
        Args:
            tooltip: Base tooltip text.
            toggle_callback: Slot for 'Start/Stop Recording'.
            debug_callback: Slot for 'Toggle Debug Mode'.
            exit_callback: Slot for 'Exit'.
            parent: Parent QObject.
        """
        super().__init__(parent)
        self.logger = logging.getLogger(__name__)
        self.base_tooltip = tooltip
        self.model_status = "model not loaded"
        self.recording_state = "idle"

        self.setIcon(self._create_icon(STATE_COLORS["idle"]))
        self._refresh_tooltip()

        self.menu = QMenu()

        self.toggle_action = QAction("Start/Stop Recording", self)
        self.toggle_action.triggered.connect(toggle_callback)
        self.menu.addAction(self.toggle_action)

        self.menu.addSeparator()

        self.debug_action = QAction("Toggle Debug Mode", self)
        self.debug_action.triggered.connect(debug_callback)
        self.menu.addAction(self.debug_action)

        self.menu.addSeparator()

        self.exit_action = QAction("Exit", self)
        self.exit_action.triggered.connect(exit_callback)
        self.menu.addAction(self.exit_action)

        self.setContextMenu(self.menu)
        self.logger.info("System tray icon initialized.")

    def _create_icon(self, body_color) -> QIcon:
        pixmap = QPixmap(64, 64)
        pixmap.fill(Qt.GlobalColor.transparent)

        painter = QPainter(pixmap)
        painter.setRenderHint(QPainter.RenderHint.Antialiasing)
        painter.setPen(Qt.PenStyle.NoPen)

        painter.setBrush(body_color)
        painter.drawRoundedRect(QRect(24, 22, 16, 20), 4, 4)

        painter.setBrush(QColor(200, 200, 200))
        painter.drawEllipse(QRect(20, 12, 24, 16))

        painter.end()
        return QIcon(pixmap)

    def _refresh_tooltip(self):
        self.setToolTip(f"{self.base_tooltip} ({self.recording_state}, {self.model_status})")

    @Slot(str, str)
    def show_message_slot(self, title: str, message: str):
        self.logger.debug(f"Showing notification: Title='{title}', Message='{message}'")
        self.showMessage(title, message, QSystemTrayIcon.MessageIcon.Information, 3000)

    @Slot(str)
    def set_model_status_slot(self, status: str):
        self.model_status = status
        self._refresh_tooltip()

    @Slot(str)
    def set_recording_state_slot(self, state: str):
        self.recording_state = state
        self.setIcon(self._create_icon(STATE_COLORS.get(state, STATE_COLORS["idle"])))
        self._refresh_tooltip()
