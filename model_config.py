from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final, Iterable, Optional, Protocol

SUPPORTED_PROVIDERS: Final[tuple[str, ...]] = ("gemini", "openai", "anthropic", "custom")


@dataclass(frozen=True)
class ModelDescriptor:
    id: str
    name: str
    provider: str
    model_api_name: str
    credential: str = ""
    endpoint: Optional[str] = None

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "ModelDescriptor":
        provider = str(raw.get("provider") or "").strip().lower()
        if provider not in SUPPORTED_PROVIDERS:
            raise ValueError(f"Unsupported model provider: {provider or '<missing>'}")
        model_id = str(raw.get("id") or "").strip()
        model_api_name = str(raw.get("modelName") or raw.get("model_api_name") or "").strip()
        if not model_id or not model_api_name:
            raise ValueError("Model descriptors require 'id' and 'modelName'.")
        endpoint = str(raw.get("endpoint") or "").strip() or None
        if provider == "custom" and not endpoint:
            raise ValueError(f"Custom model '{model_id}' requires an endpoint.")
        return cls(
            id=model_id,
            name=str(raw.get("name") or model_id).strip(),
            provider=provider,
            model_api_name=model_api_name,
            credential=str(raw.get("apiKey") or raw.get("credential") or "").strip(),
            endpoint=endpoint,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "provider": self.provider,
            "modelName": self.model_api_name,
            "apiKey": self.credential,
        }
        if self.endpoint:
            payload["endpoint"] = self.endpoint
        return payload


DEFAULT_MODELS: Final[tuple[ModelDescriptor, ...]] = (
    ModelDescriptor(
        id="gemini-default",
        name="Gemini Flash (default)",
        provider="gemini",
        model_api_name="gemini-2.5-flash",
    ),
)


class ModelConfigProvider(Protocol):
    def read_models(self) -> list[ModelDescriptor]: ...


class StaticModelConfigProvider:
    def __init__(self, models: Iterable[ModelDescriptor]) -> None:
        self._models = list(models)

    def read_models(self) -> list[ModelDescriptor]:
        return list(self._models)


class JsonModelConfigStore:
    """Read-only view over a JSON list of model descriptors.

    A missing file yields the built-in defaults. Malformed content raises ValueError so a
    broken configuration is reported instead of silently replaced.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    def read_models(self) -> list[ModelDescriptor]:
        if not self._path.exists():
            return list(DEFAULT_MODELS)
        try:
            raw = json.loads(self._path.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ValueError(f"Model configuration {self._path} is not valid JSON: {exc}") from exc
        if not isinstance(raw, list):
            raise ValueError(f"Model configuration {self._path} must contain a JSON list.")
        models = [ModelDescriptor.from_dict(item) for item in raw if isinstance(item, dict)]
        return models or list(DEFAULT_MODELS)


def resolve_model(models: list[ModelDescriptor], model_id: Optional[str]) -> ModelDescriptor:
    if not models:
        raise LookupError("No translation models are configured.")
    if model_id is None:
        return models[0]
    for model in models:
        if model.id == model_id:
            return model
    raise KeyError(model_id)
