from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol, Union

from transcript_accumulator import RecognizedSegment


class RecognitionErrorCode(str, Enum):
    NO_SPEECH = "no-speech"
    ABORTED = "aborted"
    AUDIO_CAPTURE = "audio-capture"
    NETWORK = "network"
    NOT_ALLOWED = "not-allowed"
    SERVICE_NOT_ALLOWED = "service-not-allowed"
    BAD_GRAMMAR = "bad-grammar"
    LANGUAGE_NOT_SUPPORTED = "language-not-supported"


def recognition_error_message(code: RecognitionErrorCode | str) -> str:
    raw = code.value if isinstance(code, RecognitionErrorCode) else str(code)
    if raw == RecognitionErrorCode.NETWORK.value:
        return "Network error. Check your connection."
    if raw in (RecognitionErrorCode.NOT_ALLOWED.value, RecognitionErrorCode.SERVICE_NOT_ALLOWED.value):
        return "Microphone access is not allowed."
    if raw == RecognitionErrorCode.NO_SPEECH.value:
        return "No speech was detected."
    return f"Speech recognition error: {raw}."


@dataclass(frozen=True)
class RecognitionStarted:
    pass


@dataclass(frozen=True)
class RecognitionResult:
    result_index: int = 0
    results: tuple[RecognizedSegment, ...] = field(default_factory=tuple)

    def pending_segments(self) -> list[RecognizedSegment]:
        return list(self.results[max(0, self.result_index) :])


@dataclass(frozen=True)
class RecognitionEnded:
    pass


@dataclass(frozen=True)
class RecognitionFailed:
    code: RecognitionErrorCode
    message: str = ""


RecognitionEvent = Union[RecognitionStarted, RecognitionResult, RecognitionEnded, RecognitionFailed]


class SpeechRecognizer(Protocol):
    """Speech capability consumed by the session controller.

    Events are delivered strictly in arrival order through `next_event`. `stop` requests a
    graceful end that is confirmed later by a `RecognitionEnded` event; `abort` tears down
    immediately and emits nothing.
    """

    def is_available(self) -> bool: ...

    async def start(self) -> None: ...

    def stop(self) -> None: ...

    def abort(self) -> None: ...

    async def next_event(self) -> RecognitionEvent: ...
