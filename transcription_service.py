from __future__ import annotations

import asyncio
import base64
import logging
import os
from contextlib import suppress
from typing import TYPE_CHECKING, Any, Optional, Protocol

import numpy as np
from openai import APIConnectionError, APIStatusError, AsyncOpenAI

from config_utils import read_float_env, read_int_env
from speech_events import (
    RecognitionEnded,
    RecognitionErrorCode,
    RecognitionEvent,
    RecognitionFailed,
    RecognitionResult,
    RecognitionStarted,
)
from transcript_accumulator import RecognizedSegment

if TYPE_CHECKING:
    from audio_listener import AudioFrame


class AudioSource(Protocol):
    @property
    def sample_rate(self) -> int: ...

    def has_input_device(self) -> bool: ...

    def start(self) -> None: ...

    def stop(self) -> None: ...


class RealtimeSpeechRecognizer:
    """Streaming speech capability over the OpenAI realtime transcription API.

    Microphone frames are forwarded to a transcription session with server-side VAD.
    Transcription deltas become interim segments and completed items become final
    segments, delivered as ordered `RecognitionEvent`s through `next_event`.
    """

    def __init__(
        self,
        audio_source: AudioSource,
        audio_queue: "asyncio.Queue[AudioFrame]",
        api_key: Optional[str] = None,
        language: Optional[str] = "ja",
        model: str = "gpt-4o-mini-transcribe",
        client: Optional[AsyncOpenAI] = None,
    ) -> None:
        self._api_key = api_key or os.getenv("OPENAI_API_KEY") or ""
        self._client = client
        self._audio_source = audio_source
        self._audio_queue = audio_queue
        primary_session_model = os.getenv("REALTIME_SESSION_MODEL", "gpt-realtime-mini").strip() or "gpt-realtime-mini"
        fallback_session_model = os.getenv("REALTIME_SESSION_FALLBACK_MODEL", "gpt-realtime").strip() or "gpt-realtime"
        self._session_models = [primary_session_model]
        if fallback_session_model and fallback_session_model not in self._session_models:
            self._session_models.append(fallback_session_model)
        self._model = os.getenv("TRANSCRIPTION_MODEL", model).strip() or model
        self._language = (language or "").strip().lower() or None
        self._vad_threshold = read_float_env("REALTIME_VAD_THRESHOLD", 0.45)
        self._vad_prefix_padding_ms = read_int_env("REALTIME_VAD_PREFIX_MS", 220)
        self._vad_silence_duration_ms = read_int_env("REALTIME_VAD_SILENCE_MS", 400)
        self._event_queue: asyncio.Queue[RecognitionEvent] = asyncio.Queue()
        self._connection: Any = None
        self._receiver_task: Optional[asyncio.Task[None]] = None
        self._sender_task: Optional[asyncio.Task[None]] = None
        self._stop_task: Optional[asyncio.Task[None]] = None
        self._previews: dict[str, str] = {}
        self._running = False

    @property
    def is_running(self) -> bool:
        return self._running

    def is_available(self) -> bool:
        return bool(self._api_key) and self._audio_source.has_input_device()

    async def start(self) -> None:
        if self._stop_task is not None and not self._stop_task.done():
            await self._stop_task
        if self._running:
            return
        self._drain_events()
        self._drain_audio()
        client = self._client or AsyncOpenAI(api_key=self._api_key)
        self._client = client
        last_error: Optional[Exception] = None
        for session_model in self._session_models:
            connection = None
            try:
                connection = await client.realtime.connect(model=session_model).enter()
                await connection.session.update(session=self._session_config())
                self._connection = connection
                break
            except Exception as exc:  # noqa: BLE001 - realtime startup boundary
                last_error = exc
                if connection is not None:
                    with suppress(Exception):
                        await connection.close()
        if self._connection is None:
            raise RuntimeError(f"Realtime transcription failed with all configured models: {last_error}") from last_error

        try:
            self._audio_source.start()
        except Exception:
            await self._close_connection()
            raise

        self._running = True
        self._previews.clear()
        self._receiver_task = asyncio.create_task(self._receive_events(), name="realtime-transcription-recv")
        self._sender_task = asyncio.create_task(self._send_audio(), name="realtime-transcription-send")
        self._event_queue.put_nowait(RecognitionStarted())
        logging.info("recognizer_started session_model=%s model=%s", self._connection_model_name(), self._model)

    def stop(self) -> None:
        if not self._running or (self._stop_task is not None and not self._stop_task.done()):
            return
        self._stop_task = asyncio.create_task(self._shutdown(), name="realtime-transcription-stop")

    def abort(self) -> None:
        self._running = False
        self._audio_source.stop()
        for task in (self._receiver_task, self._sender_task, self._stop_task):
            if task is not None and not task.done():
                task.cancel()
        self._receiver_task = None
        self._sender_task = None
        self._stop_task = None
        if self._connection is not None:
            connection = self._connection
            self._connection = None
            with suppress(RuntimeError):
                asyncio.get_running_loop().create_task(self._close_quietly(connection))
        self._previews.clear()
        self._drain_events()
        self._drain_audio()

    async def next_event(self) -> RecognitionEvent:
        return await self._event_queue.get()

    def _session_config(self) -> dict[str, Any]:
        transcription: dict[str, Any] = {"model": self._model}
        if self._language:
            transcription["language"] = self._language
        return {
            "type": "transcription",
            "audio": {
                "input": {
                    "format": {"type": "audio/pcm", "rate": 24000},
                    "transcription": transcription,
                    "turn_detection": {
                        "type": "server_vad",
                        "prefix_padding_ms": self._vad_prefix_padding_ms,
                        "silence_duration_ms": self._vad_silence_duration_ms,
                        "threshold": self._vad_threshold,
                    },
                }
            },
        }

    async def _shutdown(self) -> None:
        self._running = False
        self._audio_source.stop()
        for task in (self._sender_task, self._receiver_task):
            if task is not None and not task.done():
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task
        self._sender_task = None
        self._receiver_task = None
        await self._close_connection()
        self._previews.clear()
        self._event_queue.put_nowait(RecognitionEnded())
        logging.info("recognizer_stopped")

    async def _close_connection(self) -> None:
        connection = self._connection
        self._connection = None
        if connection is not None:
            await self._close_quietly(connection)

    @staticmethod
    async def _close_quietly(connection: Any) -> None:
        try:
            await connection.close()
        except Exception as exc:  # noqa: BLE001 - teardown boundary
            logging.debug("recognizer_close_failed error=%s", exc)

    async def _send_audio(self) -> None:
        try:
            while self._running:
                frame = await self._audio_queue.get()
                if self._connection is None:
                    return
                pcm16_bytes = self._to_pcm16_24khz(frame.samples, frame.sample_rate)
                await self._connection.input_audio_buffer.append(audio=base64.b64encode(pcm16_bytes).decode("ascii"))
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - realtime boundary
            self._fail(self._classify_exception(exc), str(exc))

    async def _receive_events(self) -> None:
        assert self._connection is not None
        try:
            async for event in self._connection:
                self.handle_server_event(event)
            self._fail(RecognitionErrorCode.NETWORK, "Realtime transcription connection closed")
        except asyncio.CancelledError:
            raise
        except Exception as exc:  # noqa: BLE001 - realtime boundary
            self._fail(self._classify_exception(exc), str(exc))

    def handle_server_event(self, event: Any) -> None:
        event_type = getattr(event, "type", "")
        item_id = getattr(event, "item_id", "") or ""
        if event_type == "conversation.item.input_audio_transcription.delta":
            delta = getattr(event, "delta", None) or ""
            if not item_id or not delta:
                return
            self._previews[item_id] = self._merge_preview_text(self._previews.get(item_id, ""), delta)
            self._emit_batch(final_text=None)
        elif event_type == "conversation.item.input_audio_transcription.completed":
            transcript = (getattr(event, "transcript", None) or "").strip()
            self._previews.pop(item_id, None)
            self._emit_batch(final_text=transcript)
        elif event_type == "conversation.item.input_audio_transcription.failed":
            message = getattr(getattr(event, "error", None), "message", None) or "Realtime transcription failed"
            logging.warning("recognizer_item_failed item=%s message=%s", item_id, message)
            self._previews.pop(item_id, None)
            self._emit_batch(final_text=None)
        elif event_type == "error":
            message = getattr(getattr(event, "error", None), "message", None) or "Unknown realtime transcription error"
            self._fail(self._classify_message(str(message)), str(message))

    def _emit_batch(self, final_text: Optional[str]) -> None:
        segments: list[RecognizedSegment] = []
        if final_text:
            segments.append(RecognizedSegment(transcript=final_text, is_final=True))
        segments.extend(RecognizedSegment(transcript=text, is_final=False) for text in self._previews.values())
        if not segments:
            segments.append(RecognizedSegment(transcript="", is_final=False))
        self._event_queue.put_nowait(RecognitionResult(result_index=0, results=tuple(segments)))

    def _fail(self, code: RecognitionErrorCode, message: str) -> None:
        if not self._running:
            return
        logging.warning("recognizer_failed code=%s message=%s", code.value, message)
        self._event_queue.put_nowait(RecognitionFailed(code=code, message=message))

    def _drain_events(self) -> None:
        while not self._event_queue.empty():
            try:
                self._event_queue.get_nowait()
            except asyncio.QueueEmpty:
                break

    def _drain_audio(self) -> None:
        while not self._audio_queue.empty():
            try:
                self._audio_queue.get_nowait()
            except asyncio.QueueEmpty:
                break

    def _connection_model_name(self) -> str:
        return str(getattr(self._connection, "model", "") or self._session_models[0])

    @staticmethod
    def _classify_exception(exc: BaseException) -> RecognitionErrorCode:
        if isinstance(exc, APIStatusError) and exc.status_code in (401, 403):
            return RecognitionErrorCode.SERVICE_NOT_ALLOWED
        if isinstance(exc, (APIConnectionError, ConnectionError, OSError)):
            return RecognitionErrorCode.NETWORK
        return RealtimeSpeechRecognizer._classify_message(str(exc))

    @staticmethod
    def _classify_message(message: str) -> RecognitionErrorCode:
        lowered = message.lower()
        if "language" in lowered and ("support" in lowered or "invalid" in lowered):
            return RecognitionErrorCode.LANGUAGE_NOT_SUPPORTED
        if "api key" in lowered or "unauthorized" in lowered or "permission" in lowered:
            return RecognitionErrorCode.SERVICE_NOT_ALLOWED
        if "audio" in lowered and "empty" in lowered:
            return RecognitionErrorCode.NO_SPEECH
        return RecognitionErrorCode.NETWORK

    @staticmethod
    def _merge_preview_text(current: str, delta: str) -> str:
        if not current:
            return delta.lstrip()
        return f"{current}{delta}"

    @staticmethod
    def _to_pcm16_24khz(samples: np.ndarray, sample_rate: int) -> bytes:
        mono = np.asarray(samples, dtype=np.float32).reshape(-1)
        if sample_rate != 24000:
            target_len = max(1, int(round(mono.shape[0] * 24000 / sample_rate)))
            src_x = np.linspace(0.0, 1.0, num=mono.shape[0], endpoint=False)
            dst_x = np.linspace(0.0, 1.0, num=target_len, endpoint=False)
            mono = np.interp(dst_x, src_x, mono).astype(np.float32)
        clamped = np.clip(mono, -1.0, 1.0)
        return (clamped * 32767).astype(np.int16).tobytes()
