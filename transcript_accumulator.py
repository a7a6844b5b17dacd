from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from typing import Iterable, Optional


@dataclass(frozen=True)
class RecognizedSegment:
    transcript: str
    is_final: bool = False


class TranscriptAccumulator:
    """Merges recognition batches into an append-only committed transcript.

    Interim text is replaced on every batch and never carried over. Each non-empty final
    piece is appended to the committed transcript and to a bounded FIFO of display
    segments; the bound only affects display, never the text sent for translation.
    """

    DEFAULT_MAX_DISPLAY_SEGMENTS = 3

    def __init__(self, max_display_segments: int = DEFAULT_MAX_DISPLAY_SEGMENTS) -> None:
        self._committed: list[str] = []
        self._interim = ""
        self._display_segments: deque[str] = deque(maxlen=max(1, max_display_segments))

    @property
    def committed_transcript(self) -> str:
        return " ".join(self._committed)

    @property
    def interim_fragment(self) -> str:
        return self._interim

    @property
    def display_segments(self) -> list[str]:
        return list(self._display_segments)

    def apply(self, batch: Iterable[RecognizedSegment]) -> Optional[str]:
        segments = list(batch)
        if not segments:
            return None
        interim_parts: list[str] = []
        final_parts: list[str] = []
        for segment in segments:
            if segment.is_final:
                final_parts.append(segment.transcript or "")
            else:
                interim_parts.append(segment.transcript or "")

        self._interim = "".join(interim_parts).strip()
        final_piece = "".join(final_parts).strip()
        if not final_piece:
            return None
        self._committed.append(final_piece)
        self._display_segments.append(final_piece)
        return final_piece

    def text_to_translate(self) -> str:
        committed = self.committed_transcript
        if committed and self._interim:
            return f"{committed} {self._interim}"
        return committed or self._interim

    def display_text(self) -> str:
        parts = list(self._display_segments)
        if self._interim:
            parts.append(self._interim)
        return " ".join(parts)

    def clear_interim(self) -> None:
        self._interim = ""

    def reset(self) -> None:
        self._committed.clear()
        self._interim = ""
        self._display_segments.clear()
