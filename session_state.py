from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from transcript_accumulator import TranscriptAccumulator


class ListeningState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"


@dataclass
class Session:
    accumulator: TranscriptAccumulator = field(default_factory=TranscriptAccumulator)
    state: ListeningState = ListeningState.IDLE
    translation: str = ""
    last_submitted_text: str = ""
    is_translating: bool = False
    error: Optional[str] = None

    @property
    def is_listening(self) -> bool:
        return self.state == ListeningState.LISTENING

    @property
    def has_text(self) -> bool:
        return bool(self.accumulator.committed_transcript.strip() or self.accumulator.interim_fragment.strip())

    def reset(self) -> None:
        self.accumulator.reset()
        self.translation = ""
        self.last_submitted_text = ""
        self.is_translating = False
        self.error = None
