from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Iterable, Optional, Protocol

from metrics_reporter import SessionMetricsReporter
from model_config import ModelConfigProvider, ModelDescriptor, resolve_model
from sentence_segmenter import last_sentences
from session_state import ListeningState, Session
from speech_events import (
    RecognitionEnded,
    RecognitionErrorCode,
    RecognitionEvent,
    RecognitionFailed,
    RecognitionResult,
    RecognitionStarted,
    SpeechRecognizer,
    recognition_error_message,
)
from transcript_accumulator import RecognizedSegment, TranscriptAccumulator
from translation_dispatcher import TranslateFn, TranslationDispatcher

UNSUPPORTED_ENVIRONMENT_MESSAGE = "Speech recognition is not supported in this environment."


class DisplaySurface(Protocol):
    def show_source_text(self, text: str) -> None: ...

    def show_translation_text(self, text: str) -> None: ...

    def set_translating(self, translating: bool) -> None: ...

    def set_error(self, message: Optional[str]) -> None: ...

    def set_listening(self, listening: bool) -> None: ...


@dataclass(frozen=True)
class DisplaySnapshot:
    source_text: str
    translation_text: str
    is_translating: bool
    error: Optional[str]
    is_listening: bool


class SessionController:
    """Owns one listening session at a time and wires recognition to translation.

    States are Idle and Listening. All handlers run synchronously on the event loop, and
    recognition events are consumed one at a time from the recognizer's channel, so no
    handler ever interleaves with another. The only suspension point is the translation
    call inside the dispatcher.
    """

    def __init__(
        self,
        recognizer: SpeechRecognizer,
        translate: TranslateFn,
        config_provider: ModelConfigProvider,
        display: Optional[DisplaySurface] = None,
        *,
        target_language: str = "English",
        source_language: str = "Japanese",
        active_model_id: Optional[str] = None,
        max_display_items: int = 3,
        debounce_seconds: float = TranslationDispatcher.DEFAULT_DEBOUNCE_SECONDS,
        timeout_seconds: Optional[float] = TranslationDispatcher.DEFAULT_TIMEOUT_SECONDS,
        metrics: Optional[SessionMetricsReporter] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self._recognizer = recognizer
        self._config_provider = config_provider
        self._display = display
        self._active_model_id = active_model_id
        self._max_display_items = max_display_items
        self._metrics = metrics
        self._loop = loop
        self.session = Session(accumulator=TranscriptAccumulator(max_display_items))
        self.dispatcher = TranslationDispatcher(
            self.session,
            translate,
            target_language=target_language,
            source_language=source_language,
            model_selector=self.active_model,
            on_change=self._publish,
            debounce_seconds=debounce_seconds,
            timeout_seconds=timeout_seconds,
            metrics=metrics,
            loop=loop,
        )
        self._event_task: Optional[asyncio.Task[None]] = None
        self._closed = False

    @property
    def state(self) -> ListeningState:
        return self.session.state

    @property
    def closed(self) -> bool:
        return self._closed

    def available_models(self) -> list[ModelDescriptor]:
        return self._config_provider.read_models()

    def active_model(self) -> ModelDescriptor:
        models = self.available_models()
        try:
            return resolve_model(models, self._active_model_id)
        except KeyError:
            logging.warning("active_model_missing id=%s fallback=%s", self._active_model_id, models[0].id)
            return models[0]

    def select_model(self, model_id: str) -> ModelDescriptor:
        model = resolve_model(self.available_models(), model_id)
        self._active_model_id = model.id
        logging.info("model_selected id=%s provider=%s", model.id, model.provider)
        return model

    def attach(self) -> asyncio.Task[None]:
        if self._event_task is None or self._event_task.done():
            loop = self._loop or asyncio.get_running_loop()
            self._event_task = loop.create_task(self._pump_events(), name="recognition-events")
        return self._event_task

    async def start(self) -> bool:
        if self._closed:
            raise RuntimeError("Session controller has been closed.")
        if not self._recognizer.is_available():
            self.session.error = UNSUPPORTED_ENVIRONMENT_MESSAGE
            self._publish()
            return False

        if self.session.is_listening:
            logging.info("session_interrupted")
            self._recognizer.abort()
        self.dispatcher.invalidate()
        self.session.reset()
        self.session.state = ListeningState.IDLE
        self._publish()
        if self._metrics is not None:
            self._metrics.finalize_session()
            self._metrics.start_session()

        try:
            await self._recognizer.start()
        except Exception as exc:  # noqa: BLE001 - capability startup boundary
            logging.warning("session_start_failed error=%s", exc)
            self.session.error = f"Startup error: {exc}"
            self._publish()
            return False

        self.session.state = ListeningState.LISTENING
        logging.info("session_started")
        self._publish()
        return True

    def stop(self) -> bool:
        if not self.session.is_listening:
            return False
        # Idle is entered when the recognizer confirms with RecognitionEnded.
        self._recognizer.stop()
        return True

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._recognizer.abort()
        self.dispatcher.invalidate()
        if self._event_task is not None and not self._event_task.done():
            self._event_task.cancel()
        self._event_task = None
        if self._metrics is not None:
            summary = self._metrics.finalize_session()
            if summary:
                logging.info("metrics_session_summary %s", summary)

    def handle_event(self, event: RecognitionEvent) -> None:
        if isinstance(event, RecognitionResult):
            self.on_recognition_event(event.pending_segments())
        elif isinstance(event, RecognitionEnded):
            self.on_recognition_end()
        elif isinstance(event, RecognitionFailed):
            self.on_recognition_error(event.code, event.message)
        elif isinstance(event, RecognitionStarted):
            logging.debug("recognition_started state=%s", self.session.state.value)
        else:
            raise TypeError(f"Unsupported recognition event: {event!r}")

    def on_recognition_event(self, batch: Iterable[RecognizedSegment]) -> None:
        if not self.session.is_listening:
            logging.debug("recognition_result_ignored state=%s", self.session.state.value)
            return
        self.session.accumulator.apply(batch)
        text = self.session.accumulator.text_to_translate().strip()
        if text:
            self.dispatcher.submit(text)
        else:
            self.dispatcher.cancel_pending()
            self.session.translation = ""
            self.session.is_translating = False
        self._publish()

    def on_recognition_end(self) -> None:
        if not self.session.is_listening:
            logging.debug("recognition_end_ignored state=%s", self.session.state.value)
            return
        self.session.state = ListeningState.IDLE
        self.session.accumulator.clear_interim()
        self.dispatcher.cancel_pending()
        final_text = self.session.accumulator.committed_transcript.strip()
        if final_text and final_text != self.session.last_submitted_text:
            self.dispatcher.execute(final_text)
        elif not final_text:
            self.session.translation = ""
            self.session.is_translating = False
        logging.info("session_ended committed_chars=%d", len(final_text))
        self._publish()

    def on_recognition_error(self, code: RecognitionErrorCode | str, message: str = "") -> None:
        if not self.session.is_listening:
            logging.debug("recognition_error_ignored code=%s state=%s", code, self.session.state.value)
            return
        raw_code = code.value if isinstance(code, RecognitionErrorCode) else str(code)
        logging.warning("recognition_error code=%s message=%s", raw_code, message)
        self.session.error = recognition_error_message(code)
        self.session.state = ListeningState.IDLE
        self.session.accumulator.clear_interim()
        self.dispatcher.cancel_pending()
        self.session.is_translating = False
        self._recognizer.stop()
        self._publish()

    def snapshot(self) -> DisplaySnapshot:
        translated = last_sentences(self.session.translation, self._max_display_items)
        return DisplaySnapshot(
            source_text=self.session.accumulator.display_text(),
            translation_text=" ".join(translated),
            is_translating=self.session.is_translating,
            error=self.session.error,
            is_listening=self.session.is_listening,
        )

    async def _pump_events(self) -> None:
        while not self._closed:
            event = await self._recognizer.next_event()
            try:
                self.handle_event(event)
            except Exception:  # noqa: BLE001 - event loop boundary
                logging.exception("recognition_event_failed type=%s", type(event).__name__)

    def _publish(self) -> None:
        if self._display is None or self._closed:
            return
        snapshot = self.snapshot()
        self._display.show_source_text(snapshot.source_text)
        self._display.show_translation_text(snapshot.translation_text)
        self._display.set_translating(snapshot.is_translating)
        self._display.set_error(snapshot.error)
        self._display.set_listening(snapshot.is_listening)
