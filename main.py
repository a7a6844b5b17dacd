from __future__ import annotations

import asyncio
import logging
import os
import sys
from typing import Optional

from dotenv import load_dotenv
from PyQt6.QtWidgets import QApplication
from qasync import QEventLoop

from audio_listener import AudioFrame, MicrophoneListener
from config_utils import CaptionSettings, read_int_env
from metrics_reporter import SessionMetricsReporter
from model_config import JsonModelConfigStore
from overlay_ui import OverlayWindow
from session_controller import SessionController
from transcription_service import RealtimeSpeechRecognizer
from translation_service import ModelTranslationService


class CaptionApp:
    """Connects the overlay's signals to the session controller on the qasync loop."""

    def __init__(self, ui: OverlayWindow, loop: asyncio.AbstractEventLoop, settings: CaptionSettings) -> None:
        self.ui = ui
        self.loop = loop
        self.settings = settings
        self.audio_queue: asyncio.Queue[AudioFrame] = asyncio.Queue(
            maxsize=read_int_env("AUDIO_QUEUE_MAXSIZE", 64)
        )
        self.listener = MicrophoneListener(
            loop=loop,
            output_queue=self.audio_queue,
            preferred_device=os.getenv("AUDIO_INPUT_DEVICE"),
        )
        self.recognizer = RealtimeSpeechRecognizer(
            audio_source=self.listener,
            audio_queue=self.audio_queue,
            language=settings.recognition_language,
        )
        self.translator = ModelTranslationService()
        self.config_store = JsonModelConfigStore(settings.model_config_path)
        self.metrics_reporter = SessionMetricsReporter(
            enabled=settings.metrics_enabled,
            output_path=settings.metrics_output_path,
            summary_path=settings.metrics_summary_path,
        )
        self.controller = SessionController(
            self.recognizer,
            self.translator.translate,
            self.config_store,
            display=ui,
            target_language=settings.target_language,
            source_language=settings.source_language,
            active_model_id=settings.active_model_id,
            max_display_items=settings.max_display_items,
            debounce_seconds=settings.debounce_seconds,
            timeout_seconds=settings.timeout_seconds,
            metrics=self.metrics_reporter,
            loop=loop,
        )
        self._toggle_task: Optional[asyncio.Task[None]] = None

        self.ui.toggle_listening.connect(self._on_toggle_listening)
        self.ui.model_changed.connect(self._on_model_changed)
        self._load_models()

    def run(self) -> None:
        self.controller.attach()

    def shutdown_sync(self) -> None:
        if self._toggle_task and not self._toggle_task.done():
            self._toggle_task.cancel()
        self.controller.close()
        self.loop.create_task(self._close_translator())

    async def _close_translator(self) -> None:
        await self.controller.dispatcher.drain()
        await self.translator.aclose()

    def _load_models(self) -> None:
        try:
            models = self.controller.available_models()
            active = self.controller.active_model()
        except (ValueError, LookupError) as exc:
            self.ui.set_error(f"Model configuration error: {exc}")
            return
        self.ui.set_models(models, active.id)

    def _on_toggle_listening(self, should_listen: bool) -> None:
        if should_listen:
            self._schedule_start()
        else:
            self.controller.stop()

    def _on_model_changed(self, model_id: str) -> None:
        try:
            self.controller.select_model(model_id)
        except (KeyError, LookupError, ValueError) as exc:
            self.ui.set_error(f"Model configuration error: {exc}")

    def _schedule_start(self) -> None:
        if self._toggle_task and not self._toggle_task.done():
            self._toggle_task.cancel()
        task = asyncio.create_task(self.controller.start(), name="start-listening")
        self._toggle_task = task

        def _finalize(done_task: asyncio.Task[bool]) -> None:
            if self._toggle_task is done_task:
                self._toggle_task = None
            try:
                done_task.result()
            except asyncio.CancelledError:
                pass
            except Exception as exc:  # noqa: BLE001 - task boundary
                logging.exception("start_listening_failed")
                self.ui.set_error(f"Startup error: {exc}")

        task.add_done_callback(_finalize)


def main() -> None:
    load_dotenv()
    settings = CaptionSettings.from_env()
    log_level = getattr(logging, settings.log_level, logging.INFO)
    logging.basicConfig(level=log_level, format="%(asctime)s %(levelname)s %(message)s")

    app = QApplication(sys.argv)
    loop = QEventLoop(app)
    asyncio.set_event_loop(loop)

    overlay = OverlayWindow(
        source_label=f"{settings.source_language} transcript",
        target_label=f"{settings.target_language} translation",
    )
    caption_app = CaptionApp(overlay, loop, settings)
    app.aboutToQuit.connect(caption_app.shutdown_sync)
    overlay.show()

    with loop:
        caption_app.run()
        loop.run_forever()


if __name__ == "__main__":
    main()
