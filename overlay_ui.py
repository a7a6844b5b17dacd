from __future__ import annotations

from typing import Iterable, Optional

from PyQt6.QtCore import QPoint, Qt, pyqtSignal
from PyQt6.QtGui import QFont
from PyQt6.QtWidgets import (
    QComboBox,
    QFrame,
    QHBoxLayout,
    QLabel,
    QPushButton,
    QSizeGrip,
    QTextEdit,
    QVBoxLayout,
    QWidget,
)

from config_utils import read_int_env
from model_config import ModelDescriptor


class OverlayWindow(QWidget):
    DRAG_ZONE_HEIGHT = 56
    MIN_PANEL_HEIGHT = 128
    MAX_PANEL_HEIGHT = 512
    PANEL_HEIGHT_STEP = 32
    MIN_FONT_SIZE = 12
    MAX_FONT_SIZE = 32
    FONT_STEP = 2

    toggle_listening = pyqtSignal(bool)
    model_changed = pyqtSignal(str)

    def __init__(self, source_label: str = "Transcript", target_label: str = "Translation") -> None:
        super().__init__()
        self._drag_offset: Optional[QPoint] = None
        self._listening = False
        self._translating = False
        self._panel_height = self._clamp(
            read_int_env("OVERLAY_PANEL_HEIGHT", 256), self.MIN_PANEL_HEIGHT, self.MAX_PANEL_HEIGHT
        )
        self._font_size = self._clamp(read_int_env("OVERLAY_FONT_SIZE", 16), self.MIN_FONT_SIZE, self.MAX_FONT_SIZE)
        self._source_label_text = source_label
        self._target_label_text = target_label

        self._build_ui()
        self._apply_window_style()
        self._apply_panel_layout()

    @property
    def panel_height(self) -> int:
        return self._panel_height

    @property
    def font_size(self) -> int:
        return self._font_size

    def show_source_text(self, text: str) -> None:
        if self.source_view.toPlainText() != text:
            self.source_view.setPlainText(text)

    def show_translation_text(self, text: str) -> None:
        if self.translation_view.toPlainText() != text:
            self.translation_view.setPlainText(text)

    def set_translating(self, translating: bool) -> None:
        self._translating = translating
        self.translating_label.setVisible(translating)
        self._refresh_button()

    def set_error(self, message: Optional[str]) -> None:
        self.error_label.setText(f"Error: {message}" if message else "")
        self.error_label.setVisible(bool(message))

    def set_listening(self, listening: bool) -> None:
        self._listening = listening
        self.status_label.setText("Listening..." if listening else "Idle")
        self._refresh_button()

    def set_models(self, models: Iterable[ModelDescriptor], selected_id: Optional[str] = None) -> None:
        self.model_selector.blockSignals(True)
        self.model_selector.clear()
        for model in models:
            self.model_selector.addItem(model.name, model.id)
        if selected_id is not None:
            index = self.model_selector.findData(selected_id)
            if index >= 0:
                self.model_selector.setCurrentIndex(index)
        self.model_selector.blockSignals(False)

    def increase_height(self) -> None:
        self._panel_height = min(self.MAX_PANEL_HEIGHT, self._panel_height + self.PANEL_HEIGHT_STEP)
        self._apply_panel_layout()

    def decrease_height(self) -> None:
        self._panel_height = max(self.MIN_PANEL_HEIGHT, self._panel_height - self.PANEL_HEIGHT_STEP)
        self._apply_panel_layout()

    def increase_font_size(self) -> None:
        self._font_size = min(self.MAX_FONT_SIZE, self._font_size + self.FONT_STEP)
        self._apply_panel_layout()

    def decrease_font_size(self) -> None:
        self._font_size = max(self.MIN_FONT_SIZE, self._font_size - self.FONT_STEP)
        self._apply_panel_layout()

    def _build_ui(self) -> None:
        root = QVBoxLayout(self)
        root.setContentsMargins(6, 6, 6, 6)

        panel = QFrame()
        panel.setObjectName("overlayPanel")
        root.addWidget(panel)

        layout = QVBoxLayout(panel)
        layout.setContentsMargins(12, 12, 12, 12)
        layout.setSpacing(8)

        controls = QHBoxLayout()
        controls.setSpacing(6)
        layout.addLayout(controls)

        self.start_stop_button = QPushButton("Start")
        self.start_stop_button.clicked.connect(self._on_start_stop_clicked)
        controls.addWidget(self.start_stop_button)

        self.model_selector = QComboBox()
        self.model_selector.currentIndexChanged.connect(self._on_model_index_changed)
        controls.addWidget(self.model_selector)
        controls.addStretch(1)

        controls.addWidget(QLabel("Height"))
        self.height_down_button = self._small_button("-", self.decrease_height)
        controls.addWidget(self.height_down_button)
        self.height_value_label = QLabel("")
        controls.addWidget(self.height_value_label)
        self.height_up_button = self._small_button("+", self.increase_height)
        controls.addWidget(self.height_up_button)

        controls.addWidget(QLabel("Font"))
        self.font_down_button = self._small_button("-", self.decrease_font_size)
        controls.addWidget(self.font_down_button)
        self.font_value_label = QLabel("")
        controls.addWidget(self.font_value_label)
        self.font_up_button = self._small_button("+", self.increase_font_size)
        controls.addWidget(self.font_up_button)

        self.error_label = QLabel("")
        self.error_label.setObjectName("errorBanner")
        self.error_label.setWordWrap(True)
        self.error_label.setVisible(False)
        layout.addWidget(self.error_label)

        panels = QHBoxLayout()
        panels.setSpacing(10)
        layout.addLayout(panels)
        self.source_view = self._make_panel(panels, self._source_label_text)
        self.translation_view = self._make_panel(panels, self._target_label_text)

        self.status_label = QLabel("Idle")
        self.translating_label = QLabel("Translating...")
        self.translating_label.setVisible(False)

        status_row = QHBoxLayout()
        status_row.addWidget(self.status_label)
        status_row.addStretch(1)
        status_row.addWidget(self.translating_label, alignment=Qt.AlignmentFlag.AlignRight)
        self.size_grip = QSizeGrip(panel)
        status_row.addWidget(self.size_grip, alignment=Qt.AlignmentFlag.AlignBottom | Qt.AlignmentFlag.AlignRight)
        layout.addLayout(status_row)

    def _make_panel(self, parent: QHBoxLayout, title: str) -> QTextEdit:
        column = QVBoxLayout()
        label = QLabel(title)
        column.addWidget(label)
        view = QTextEdit()
        view.setReadOnly(True)
        view.setAcceptRichText(False)
        view.setLineWrapMode(QTextEdit.LineWrapMode.WidgetWidth)
        column.addWidget(view)
        parent.addLayout(column)
        return view

    @staticmethod
    def _small_button(text: str, handler) -> QPushButton:
        button = QPushButton(text)
        button.setFixedWidth(28)
        button.clicked.connect(handler)
        return button

    def _apply_panel_layout(self) -> None:
        font = QFont()
        font.setPointSize(self._font_size)
        for view in (self.source_view, self.translation_view):
            view.setFixedHeight(self._panel_height)
            view.setFont(font)
        self.height_value_label.setText(f"{round(self._panel_height / 16)} rem")
        self.font_value_label.setText(f"{self._font_size}pt")
        self.height_down_button.setEnabled(self._panel_height > self.MIN_PANEL_HEIGHT)
        self.height_up_button.setEnabled(self._panel_height < self.MAX_PANEL_HEIGHT)
        self.font_down_button.setEnabled(self._font_size > self.MIN_FONT_SIZE)
        self.font_up_button.setEnabled(self._font_size < self.MAX_FONT_SIZE)

    def _apply_window_style(self) -> None:
        self.setWindowTitle("Live Caption Translator")
        self.setWindowFlags(
            Qt.WindowType.FramelessWindowHint
            | Qt.WindowType.WindowStaysOnTopHint
            | Qt.WindowType.Tool
        )
        self.setAttribute(Qt.WidgetAttribute.WA_TranslucentBackground, True)
        self.setMinimumSize(720, 260)
        self.resize(1080, 420)

        self.setStyleSheet(
            """
            #overlayPanel {
                background-color: rgba(28, 28, 28, 190);
                border: 1px solid rgba(255, 255, 255, 48);
                border-radius: 12px;
            }
            #errorBanner {
                background-color: rgba(160, 30, 30, 140);
                border: 1px solid rgba(239, 68, 68, 200);
                border-radius: 8px;
                padding: 6px 10px;
            }
            QTextEdit {
                background-color: rgba(43, 43, 43, 120);
                color: white;
                border: 1px solid rgba(255, 255, 255, 32);
                border-radius: 8px;
                padding: 8px;
            }
            QLabel, QComboBox {
                color: white;
            }
            QPushButton {
                background-color: rgba(70, 70, 70, 220);
                color: white;
                border: 1px solid rgba(255, 255, 255, 50);
                border-radius: 8px;
                padding: 6px 9px;
            }
            QPushButton:hover {
                background-color: rgba(88, 88, 88, 220);
            }
            """
        )

    def _refresh_button(self) -> None:
        if not self._listening:
            self.start_stop_button.setText("Start")
        elif self._translating:
            self.start_stop_button.setText("Translating...")
        else:
            self.start_stop_button.setText("Stop")

    def _on_start_stop_clicked(self) -> None:
        self.toggle_listening.emit(not self._listening)

    def _on_model_index_changed(self, index: int) -> None:
        model_id = self.model_selector.itemData(index)
        if model_id:
            self.model_changed.emit(str(model_id))

    def mousePressEvent(self, event) -> None:  # noqa: N802 - Qt override naming
        if event.button() == Qt.MouseButton.LeftButton:
            local_pos = event.position().toPoint()
            if local_pos.y() <= self.DRAG_ZONE_HEIGHT:
                self._drag_offset = event.globalPosition().toPoint() - self.frameGeometry().topLeft()
                event.accept()

    def mouseMoveEvent(self, event) -> None:  # noqa: N802 - Qt override naming
        if self._drag_offset is not None and event.buttons() & Qt.MouseButton.LeftButton:
            self.move(event.globalPosition().toPoint() - self._drag_offset)
            event.accept()

    def mouseReleaseEvent(self, event) -> None:  # noqa: N802 - Qt override naming
        self._drag_offset = None
        event.accept()

    @staticmethod
    def _clamp(value: int, lower: int, upper: int) -> int:
        return max(lower, min(upper, value))
