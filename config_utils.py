from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Optional


def read_float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def read_int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def read_bool_env(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    if raw in {"1", "true", "yes", "on"}:
        return True
    if raw in {"0", "false", "no", "off"}:
        return False
    return default


def read_str_env(name: str, default: Optional[str]) -> Optional[str]:
    raw = (os.getenv(name) or "").strip()
    return raw or default


@dataclass(frozen=True)
class CaptionSettings:
    source_language: str = "Japanese"
    target_language: str = "English"
    recognition_language: str = "ja"
    debounce_seconds: float = 0.75
    timeout_seconds: float = 15.0
    max_display_items: int = 3
    model_config_path: str = "./models.json"
    active_model_id: Optional[str] = None
    metrics_enabled: bool = True
    metrics_output_path: str = "./reports/session_metrics.jsonl"
    metrics_summary_path: str = "./reports/session_summary.json"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "CaptionSettings":
        defaults = cls()
        return cls(
            source_language=read_str_env("SOURCE_LANGUAGE", defaults.source_language) or defaults.source_language,
            target_language=read_str_env("TARGET_LANGUAGE", defaults.target_language) or defaults.target_language,
            recognition_language=(
                read_str_env("RECOGNITION_LANGUAGE", defaults.recognition_language) or defaults.recognition_language
            ),
            debounce_seconds=read_int_env("TRANSLATION_DEBOUNCE_MS", 750) / 1000.0,
            timeout_seconds=read_float_env("TRANSLATION_TIMEOUT_SECONDS", defaults.timeout_seconds),
            max_display_items=read_int_env("MAX_DISPLAY_ITEMS", defaults.max_display_items),
            model_config_path=read_str_env("MODEL_CONFIG_PATH", defaults.model_config_path) or defaults.model_config_path,
            active_model_id=read_str_env("ACTIVE_MODEL_ID", None),
            metrics_enabled=read_bool_env("METRICS_ENABLED", defaults.metrics_enabled),
            metrics_output_path=(
                read_str_env("METRICS_OUTPUT_PATH", defaults.metrics_output_path) or defaults.metrics_output_path
            ),
            metrics_summary_path=(
                read_str_env("METRICS_SUMMARY_PATH", defaults.metrics_summary_path) or defaults.metrics_summary_path
            ),
            log_level=(read_str_env("LOG_LEVEL", defaults.log_level) or defaults.log_level).upper(),
        )
