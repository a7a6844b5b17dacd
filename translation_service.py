from __future__ import annotations

import asyncio
import os
from enum import Enum
from typing import Any, Final, Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types
from openai import APIConnectionError, APIStatusError, AsyncOpenAI

from model_config import ModelDescriptor


class TranslationErrorKind(str, Enum):
    INVALID_CREDENTIAL = "invalid_credential"
    RATE_LIMITED = "rate_limited"
    CONTENT_BLOCKED = "content_blocked"
    MALFORMED_RESPONSE = "malformed_response"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


_USER_MESSAGES: Final[dict[TranslationErrorKind, str]] = {
    TranslationErrorKind.INVALID_CREDENTIAL: "The API key for the selected model appears to be invalid. Check the model settings.",
    TranslationErrorKind.RATE_LIMITED: "The translation API usage limit was exceeded. Wait a moment and try again.",
    TranslationErrorKind.CONTENT_BLOCKED: "The translation request was blocked by the content policy. Check the input.",
    TranslationErrorKind.MALFORMED_RESPONSE: "Received an unexpected response format from the translation API.",
    TranslationErrorKind.TIMEOUT: "The translation request timed out. It will be retried with the next update.",
}


class TranslationError(RuntimeError):
    def __init__(self, kind: TranslationErrorKind, detail: str = "") -> None:
        self.kind = kind
        self.detail = detail
        super().__init__(self.user_message)

    @property
    def user_message(self) -> str:
        if self.kind in _USER_MESSAGES:
            return _USER_MESSAGES[self.kind]
        return f"Translation API error: {self.detail or 'unknown error'}"


def _enum_value(value: Any) -> str:
    return str(getattr(value, "value", value) or "")


def classify_translation_error(exc: BaseException) -> TranslationError:
    if isinstance(exc, TranslationError):
        return exc
    if isinstance(exc, asyncio.TimeoutError):
        return TranslationError(TranslationErrorKind.TIMEOUT, str(exc))

    detail = str(exc)
    status_code: Optional[int] = None
    if isinstance(exc, APIStatusError):
        status_code = exc.status_code
    elif isinstance(exc, genai_errors.APIError):
        status_code = exc.code
    elif isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
        detail = f"{detail} {exc.response.text}".strip()

    lowered = detail.lower()
    if status_code in (401, 403) or "api key not valid" in lowered or "invalid api key" in lowered:
        return TranslationError(TranslationErrorKind.INVALID_CREDENTIAL, detail)
    if status_code == 429 or "quota" in lowered or "rate limit" in lowered:
        return TranslationError(TranslationErrorKind.RATE_LIMITED, detail)
    if "candidate was blocked" in lowered or "content_policy" in lowered or "safety" in lowered:
        return TranslationError(TranslationErrorKind.CONTENT_BLOCKED, detail)
    return TranslationError(TranslationErrorKind.UNKNOWN, detail)


class ModelTranslationService:
    """Translation capability backed by the configured LLM providers.

    `translate` is the only suspension point of the translation path. Failures are raised
    as `TranslationError`; callers decide whether the outcome is still relevant.
    """

    ANTHROPIC_URL: Final[str] = "https://api.anthropic.com/v1/messages"
    ANTHROPIC_VERSION: Final[str] = "2023-06-01"
    _GEMINI_BLOCKED_FINISH_REASONS: Final[frozenset[str]] = frozenset({"SAFETY", "PROHIBITED_CONTENT", "BLOCKLIST", "SPII"})
    _CREDENTIAL_ENV: Final[dict[str, str]] = {
        "gemini": "GEMINI_API_KEY",
        "openai": "OPENAI_API_KEY",
        "anthropic": "ANTHROPIC_API_KEY",
        "custom": "OPENAI_API_KEY",
    }
    _LANGUAGE_ALIASES: Final[dict[str, str]] = {
        "ja": "Japanese",
        "ja-jp": "Japanese",
        "en": "English",
        "en-us": "English",
        "es": "Spanish",
        "pt": "Portuguese (Brazil)",
        "pt-br": "Portuguese (Brazil)",
        "zh": "Mandarin Chinese (Simplified)",
        "zh-cn": "Mandarin Chinese (Simplified)",
        "ko": "Korean",
        "fr": "French",
        "de": "German",
        "hi": "Hindi",
    }

    def __init__(self, http_client: Optional[httpx.AsyncClient] = None, max_output_tokens: int = 1024) -> None:
        self._http = http_client or httpx.AsyncClient(timeout=httpx.Timeout(30.0))
        self._owns_http = http_client is None
        self._openai_clients: dict[tuple[str, Optional[str]], AsyncOpenAI] = {}
        self._gemini_clients: dict[str, genai.Client] = {}
        self._max_output_tokens = max_output_tokens

    async def translate(
        self,
        text: str,
        target_language: str,
        source_language: str,
        model: ModelDescriptor,
    ) -> str:
        if not text.strip():
            return ""
        prompt = self.build_prompt(
            text,
            target_language=self._normalize_language(target_language),
            source_language=self._normalize_language(source_language),
        )
        credential = self._credential_for(model)
        try:
            if model.provider == "gemini":
                translated = await self._translate_gemini(prompt, model, credential)
            elif model.provider == "anthropic":
                translated = await self._translate_anthropic(prompt, model, credential)
            else:
                translated = await self._translate_openai(prompt, model, credential)
        except (APIStatusError, APIConnectionError, genai_errors.APIError, httpx.HTTPError) as exc:
            raise classify_translation_error(exc) from exc
        except ValueError as exc:
            raise TranslationError(TranslationErrorKind.MALFORMED_RESPONSE, str(exc)[:200]) from exc
        if not isinstance(translated, str):
            raise TranslationError(TranslationErrorKind.MALFORMED_RESPONSE, repr(translated)[:200])
        return translated.strip()

    async def aclose(self) -> None:
        for client in self._openai_clients.values():
            await client.close()
        self._openai_clients.clear()
        self._gemini_clients.clear()
        if self._owns_http:
            await self._http.aclose()

    @staticmethod
    def build_prompt(text: str, target_language: str, source_language: str) -> str:
        return (
            f"You are a professional translator. Translate the following {source_language} text "
            f"into {target_language}. Return only the {target_language} translation. "
            "Do not include explanations, preambles, closing remarks, or any other conversational text.\n\n"
            f"{source_language} text:\n{text}"
        )

    def _credential_for(self, model: ModelDescriptor) -> str:
        credential = model.credential or os.getenv(self._CREDENTIAL_ENV.get(model.provider, ""), "")
        credential = (credential or "").strip()
        if not credential:
            raise TranslationError(
                TranslationErrorKind.INVALID_CREDENTIAL,
                f"No API key configured for model '{model.id}'.",
            )
        return credential

    async def _translate_openai(self, prompt: str, model: ModelDescriptor, credential: str) -> Any:
        key = (credential, model.endpoint if model.provider == "custom" else None)
        client = self._openai_clients.get(key)
        if client is None:
            client = AsyncOpenAI(api_key=key[0], base_url=key[1])
            self._openai_clients[key] = client
        response = await client.chat.completions.create(
            model=model.model_api_name,
            temperature=0.0,
            messages=[{"role": "user", "content": prompt}],
            max_tokens=self._max_output_tokens,
        )
        choices = getattr(response, "choices", None) or []
        if not choices:
            raise TranslationError(TranslationErrorKind.MALFORMED_RESPONSE, "response has no choices")
        choice = choices[0]
        if getattr(choice, "finish_reason", None) == "content_filter":
            raise TranslationError(TranslationErrorKind.CONTENT_BLOCKED, "finish_reason=content_filter")
        return choice.message.content

    async def _translate_gemini(self, prompt: str, model: ModelDescriptor, credential: str) -> Any:
        client = self._gemini_clients.get(credential)
        if client is None:
            client = genai.Client(api_key=credential)
            self._gemini_clients[credential] = client
        response = await client.aio.models.generate_content(
            model=model.model_api_name,
            contents=prompt,
            config=genai_types.GenerateContentConfig(temperature=0.0, max_output_tokens=self._max_output_tokens),
        )
        block_reason = getattr(getattr(response, "prompt_feedback", None), "block_reason", None)
        if block_reason:
            raise TranslationError(TranslationErrorKind.CONTENT_BLOCKED, f"block_reason={_enum_value(block_reason)}")
        candidates = getattr(response, "candidates", None) or []
        if not candidates:
            raise TranslationError(TranslationErrorKind.MALFORMED_RESPONSE, "response has no candidates")
        candidate = candidates[0]
        finish_reason = _enum_value(getattr(candidate, "finish_reason", None))
        if finish_reason in self._GEMINI_BLOCKED_FINISH_REASONS:
            raise TranslationError(TranslationErrorKind.CONTENT_BLOCKED, f"finish_reason={finish_reason}")
        parts = getattr(getattr(candidate, "content", None), "parts", None)
        if not isinstance(parts, list):
            raise TranslationError(TranslationErrorKind.MALFORMED_RESPONSE, "candidate has no content parts")
        texts = [getattr(part, "text", None) for part in parts]
        if not texts or not all(isinstance(value, str) for value in texts):
            return None
        return "".join(texts)

    async def _translate_anthropic(self, prompt: str, model: ModelDescriptor, credential: str) -> Any:
        response = await self._http.post(
            self.ANTHROPIC_URL,
            headers={
                "x-api-key": credential,
                "anthropic-version": self.ANTHROPIC_VERSION,
                "content-type": "application/json",
            },
            json={
                "model": model.model_api_name,
                "max_tokens": self._max_output_tokens,
                "messages": [{"role": "user", "content": prompt}],
            },
        )
        response.raise_for_status()
        payload = self._json_object(response)
        if payload.get("stop_reason") == "refusal":
            raise TranslationError(TranslationErrorKind.CONTENT_BLOCKED, "stop_reason=refusal")
        blocks = payload.get("content")
        if not isinstance(blocks, list):
            return None
        texts = [block.get("text") for block in blocks if isinstance(block, dict) and block.get("type") == "text"]
        if not texts:
            return None
        return "".join(texts)

    @staticmethod
    def _json_object(response: httpx.Response) -> dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as exc:
            raise TranslationError(TranslationErrorKind.MALFORMED_RESPONSE, f"response body is not JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise TranslationError(
                TranslationErrorKind.MALFORMED_RESPONSE, f"expected a JSON object, got {type(payload).__name__}"
            )
        return payload

    @classmethod
    def _normalize_language(cls, language: str) -> str:
        raw = (language or "").strip()
        if not raw:
            return "English"
        return cls._LANGUAGE_ALIASES.get(raw.lower(), raw)
