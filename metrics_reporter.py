from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

OUTCOMES = ("applied", "stale", "error")


def _percentile(values: list[float], ratio: float) -> float:
    if not values:
        return 0.0
    ordered = sorted(values)
    if len(ordered) == 1:
        return ordered[0]
    index = (len(ordered) - 1) * ratio
    lower = int(index)
    upper = min(lower + 1, len(ordered) - 1)
    if lower == upper:
        return ordered[lower]
    weight = index - lower
    return ordered[lower] * (1.0 - weight) + ordered[upper] * weight


class SessionMetricsReporter:
    """Records translation outcomes per listening session as JSONL plus a summary file."""

    def __init__(self, enabled: bool, output_path: str, summary_path: str, append_mode: bool = False) -> None:
        self._enabled = enabled
        self._output_path = Path(output_path)
        self._summary_path = Path(summary_path)
        self._append_mode = append_mode
        self._session_started_at: Optional[datetime] = None
        self._applied_latencies: list[float] = []
        self._counts: dict[str, int] = {outcome: 0 for outcome in OUTCOMES}

    def start_session(self) -> None:
        if not self._enabled:
            return
        self._session_started_at = datetime.now()
        self._applied_latencies.clear()
        self._counts = {outcome: 0 for outcome in OUTCOMES}
        self._ensure_parent_dirs()
        if not self._append_mode:
            self._output_path.write_text("", encoding="utf-8")

    def record_translation(
        self,
        outcome: str,
        sequence: int,
        text_length: int,
        latency_s: float,
        error_kind: str = "",
    ) -> None:
        if not self._enabled or self._session_started_at is None:
            return
        if outcome not in self._counts:
            raise ValueError(f"Unknown translation outcome: {outcome}")
        self._counts[outcome] += 1
        if outcome == "applied":
            self._applied_latencies.append(latency_s)
        self._append_jsonl(
            {
                "event_type": "translation",
                "recorded_at": datetime.now().isoformat(timespec="milliseconds"),
                "outcome": outcome,
                "sequence": sequence,
                "text_length": text_length,
                "latency_s": latency_s,
                "error_kind": error_kind,
            }
        )

    def snapshot(self) -> dict[str, float]:
        total = sum(self._counts.values())
        if total == 0:
            return {"avg_latency_s": 0.0, "p95_latency_s": 0.0, "stale_rate_pct": 0.0, "error_rate_pct": 0.0}
        return {
            "avg_latency_s": (
                sum(self._applied_latencies) / len(self._applied_latencies) if self._applied_latencies else 0.0
            ),
            "p95_latency_s": _percentile(self._applied_latencies, 0.95),
            "stale_rate_pct": (self._counts["stale"] / total) * 100.0,
            "error_rate_pct": (self._counts["error"] / total) * 100.0,
        }

    def finalize_session(self) -> dict[str, Any]:
        if not self._enabled or self._session_started_at is None:
            return {}
        now = datetime.now()
        started = self._session_started_at
        summary = {
            "session_started_at": started.isoformat(timespec="milliseconds"),
            "session_ended_at": now.isoformat(timespec="milliseconds"),
            "session_duration_s": max(0.0, (now - started).total_seconds()),
            "translations_applied": self._counts["applied"],
            "translations_stale": self._counts["stale"],
            "translation_errors": self._counts["error"],
            "latency_avg_s": self.snapshot()["avg_latency_s"],
            "latency_p50_s": _percentile(self._applied_latencies, 0.50),
            "latency_p95_s": _percentile(self._applied_latencies, 0.95),
            "latency_max_s": max(self._applied_latencies) if self._applied_latencies else 0.0,
        }
        self._write_summary(summary)
        self._session_started_at = None
        return summary

    def _ensure_parent_dirs(self) -> None:
        self._output_path.parent.mkdir(parents=True, exist_ok=True)
        self._summary_path.parent.mkdir(parents=True, exist_ok=True)

    def _append_jsonl(self, payload: dict[str, Any]) -> None:
        self._ensure_parent_dirs()
        line = json.dumps(payload, ensure_ascii=False)
        with self._output_path.open("a", encoding="utf-8") as handle:
            handle.write(line)
            handle.write("\n")

    def _write_summary(self, summary: dict[str, Any]) -> None:
        self._ensure_parent_dirs()
        with self._summary_path.open("w", encoding="utf-8") as handle:
            json.dump(summary, handle, ensure_ascii=False, indent=2)
