from __future__ import annotations

import asyncio
import logging
from time import perf_counter
from typing import Any, Awaitable, Callable, Optional

from metrics_reporter import SessionMetricsReporter
from session_state import Session
from translation_service import classify_translation_error

TranslateFn = Callable[[str, str, str, Any], Awaitable[str]]


class TranslationDispatcher:
    """Debounces transcript changes and applies only the latest submission's outcome.

    Every `execute` takes a new sequence number. A completed call is applied (result or
    error) only while its number is still the latest issued; older in-flight calls run to
    completion and their outcome is dropped. The debounce timer is a real loop timer and is
    cancelled outright, so at most one is ever pending.
    """

    DEFAULT_DEBOUNCE_SECONDS = 0.75
    DEFAULT_TIMEOUT_SECONDS = 15.0

    def __init__(
        self,
        session: Session,
        translate: TranslateFn,
        *,
        target_language: str,
        source_language: str,
        model_selector: Callable[[], Any],
        on_change: Optional[Callable[[], None]] = None,
        debounce_seconds: float = DEFAULT_DEBOUNCE_SECONDS,
        timeout_seconds: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
        metrics: Optional[SessionMetricsReporter] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self._session = session
        self._translate = translate
        self.target_language = target_language
        self.source_language = source_language
        self._model_selector = model_selector
        self._on_change = on_change
        self._debounce_seconds = debounce_seconds
        self._timeout_seconds = timeout_seconds
        self._metrics = metrics
        self._loop = loop
        self._timer: Optional[asyncio.TimerHandle] = None
        self._sequence = 0
        self._in_flight: set[asyncio.Task[None]] = set()

    @property
    def has_pending_timer(self) -> bool:
        return self._timer is not None

    @property
    def latest_sequence(self) -> int:
        return self._sequence

    @property
    def in_flight_count(self) -> int:
        return len(self._in_flight)

    def submit(self, text: str) -> None:
        self.cancel_pending()
        if not text.strip():
            if not self._session.has_text:
                self._session.translation = ""
                self._session.is_translating = False
                self._notify()
            return
        loop = self._loop or asyncio.get_running_loop()
        self._timer = loop.call_later(self._debounce_seconds, self._fire, text)

    def execute(self, text: str) -> Optional[asyncio.Task[None]]:
        if not text.strip():
            if self._session.last_submitted_text == text or not self._session.last_submitted_text:
                self._session.translation = ""
                self._session.is_translating = False
                self._notify()
            return None

        self._sequence += 1
        sequence = self._sequence
        self._session.last_submitted_text = text
        self._session.is_translating = True
        self._session.error = None
        self._notify()
        logging.info("translation_dispatch seq=%d chars=%d", sequence, len(text))

        loop = self._loop or asyncio.get_running_loop()
        task = loop.create_task(self._run(sequence, text), name=f"translation-{sequence}")
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)
        return task

    def cancel_pending(self) -> bool:
        if self._timer is None:
            return False
        self._timer.cancel()
        self._timer = None
        return True

    def invalidate(self) -> None:
        """Drop the pending timer and orphan every in-flight call."""
        self.cancel_pending()
        self._sequence += 1

    async def drain(self) -> None:
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    def _fire(self, text: str) -> None:
        self._timer = None
        self.execute(text)

    def _is_current(self, sequence: int) -> bool:
        return sequence == self._sequence

    async def _run(self, sequence: int, text: str) -> None:
        started = perf_counter()
        try:
            pending = self._translate(text, self.target_language, self.source_language, self._model_selector())
            if self._timeout_seconds:
                translated = await asyncio.wait_for(pending, timeout=self._timeout_seconds)
            else:
                translated = await pending
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - translation boundary
            error = classify_translation_error(exc)
            latency = perf_counter() - started
            if self._is_current(sequence):
                self._session.error = error.user_message
                logging.warning(
                    "translation_failed seq=%d kind=%s detail=%s", sequence, error.kind.value, error.detail[:200]
                )
                self._record("error", sequence, text, latency, error.kind.value)
            else:
                logging.info("translation_stale_discarded seq=%d latest=%d failed=1", sequence, self._sequence)
                self._record("stale", sequence, text, latency, error.kind.value)
        else:
            latency = perf_counter() - started
            if self._is_current(sequence):
                self._session.translation = translated
                self._session.error = None
                logging.info("translation_applied seq=%d latency_s=%.3f", sequence, latency)
                self._record("applied", sequence, text, latency)
            else:
                logging.info("translation_stale_discarded seq=%d latest=%d", sequence, self._sequence)
                self._record("stale", sequence, text, latency)
        finally:
            if self._is_current(sequence):
                self._session.is_translating = False
            self._notify()

    def _record(self, outcome: str, sequence: int, text: str, latency: float, error_kind: str = "") -> None:
        if self._metrics is None:
            return
        self._metrics.record_translation(outcome, sequence, len(text), latency, error_kind=error_kind)

    def _notify(self) -> None:
        if self._on_change is not None:
            self._on_change()
