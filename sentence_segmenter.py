from __future__ import annotations

import re

_SENTENCE_PATTERN = re.compile(r"[^.!?]+[.!?]+|[^.!?]+$")


def split_into_sentences(text: str) -> list[str]:
    """Split text on `.`, `!` and `?`, keeping the terminal punctuation with each unit.

    A trailing fragment without terminal punctuation is its own unit. Input made only of
    punctuation is returned whole rather than dropped.
    """
    if not text or not text.strip():
        return []
    matches = _SENTENCE_PATTERN.findall(text)
    if not matches:
        return [text.strip()]
    return [part.strip() for part in matches if part.strip()]


def last_sentences(text: str, limit: int = 3) -> list[str]:
    sentences = split_into_sentences(text)
    if limit <= 0:
        return []
    return sentences[-limit:]
