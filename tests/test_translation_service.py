from __future__ import annotations

import asyncio
import json
import os
import unittest
from types import SimpleNamespace
from typing import Optional
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
from google.genai import errors as genai_errors
from openai import APIStatusError

from model_config import ModelDescriptor
from translation_service import (
    ModelTranslationService,
    TranslationError,
    TranslationErrorKind,
    classify_translation_error,
)

GEMINI = ModelDescriptor(id="g", name="Gemini", provider="gemini", model_api_name="gemini-2.5-flash", credential="gk")
ANTHROPIC = ModelDescriptor(id="a", name="Claude", provider="anthropic", model_api_name="claude-test", credential="ak")
OPENAI = ModelDescriptor(id="o", name="GPT", provider="openai", model_api_name="gpt-test", credential="ok")


def _api_status_error(status_code: int, message: str) -> APIStatusError:
    request = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")
    response = httpx.Response(status_code=status_code, request=request)
    return APIStatusError(message, response=response, body={"error": {"message": message}})


def _service_with(handler) -> tuple[ModelTranslationService, httpx.AsyncClient]:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ModelTranslationService(http_client=client), client


def _genai_error(code: int, message: str, status: str) -> genai_errors.APIError:
    return genai_errors.ClientError(code, {"error": {"code": code, "message": message, "status": status}})


def _gemini_response(
    parts: Optional[list] = None,
    finish_reason: str = "STOP",
    block_reason: Optional[str] = None,
    candidates: Optional[list] = None,
) -> SimpleNamespace:
    if candidates is None:
        content = SimpleNamespace(parts=parts)
        candidates = [SimpleNamespace(content=content, finish_reason=finish_reason)]
    return SimpleNamespace(prompt_feedback=SimpleNamespace(block_reason=block_reason), candidates=candidates)


def _service_with_gemini(**mock_kwargs) -> tuple[ModelTranslationService, AsyncMock]:
    service = ModelTranslationService(http_client=MagicMock())
    generate = AsyncMock(**mock_kwargs)
    fake_client = MagicMock()
    fake_client.aio.models.generate_content = generate
    service._gemini_clients["gk"] = fake_client
    return service, generate


class GeminiTranslationTests(unittest.TestCase):
    def _error_kind(self, **mock_kwargs) -> TranslationErrorKind:
        service, _ = _service_with_gemini(**mock_kwargs)
        with self.assertRaises(TranslationError) as ctx:
            asyncio.run(service.translate("text", "English", "Japanese", GEMINI))
        return ctx.exception.kind

    def test_returns_trimmed_candidate_text(self) -> None:
        service, generate = _service_with_gemini(
            return_value=_gemini_response(parts=[SimpleNamespace(text="  Hello "), SimpleNamespace(text="there.\n")])
        )

        result = asyncio.run(service.translate("こんにちは", "English", "ja", GEMINI))

        self.assertEqual(result, "Hello there.")
        kwargs = generate.await_args.kwargs
        self.assertEqual(kwargs["model"], "gemini-2.5-flash")
        self.assertIn("Translate the following Japanese text into English", kwargs["contents"])
        self.assertTrue(kwargs["contents"].endswith("こんにちは"))

    def test_rate_limit_status_is_classified(self) -> None:
        kind = self._error_kind(side_effect=_genai_error(429, "Resource has been exhausted", "RESOURCE_EXHAUSTED"))
        self.assertEqual(kind, TranslationErrorKind.RATE_LIMITED)

    def test_invalid_key_message_is_classified(self) -> None:
        kind = self._error_kind(
            side_effect=_genai_error(400, "API key not valid. Please pass a valid API key.", "INVALID_ARGUMENT")
        )
        self.assertEqual(kind, TranslationErrorKind.INVALID_CREDENTIAL)

    def test_blocked_prompt_is_content_blocked(self) -> None:
        kind = self._error_kind(return_value=_gemini_response(block_reason="SAFETY", candidates=[]))
        self.assertEqual(kind, TranslationErrorKind.CONTENT_BLOCKED)

    def test_safety_finish_reason_is_content_blocked(self) -> None:
        kind = self._error_kind(return_value=_gemini_response(parts=None, finish_reason="SAFETY"))
        self.assertEqual(kind, TranslationErrorKind.CONTENT_BLOCKED)

    def test_missing_parts_is_malformed(self) -> None:
        kind = self._error_kind(return_value=_gemini_response(parts=None))
        self.assertEqual(kind, TranslationErrorKind.MALFORMED_RESPONSE)

    def test_unparseable_body_is_malformed(self) -> None:
        kind = self._error_kind(side_effect=json.JSONDecodeError("Expecting value", "<html>gateway</html>", 0))
        self.assertEqual(kind, TranslationErrorKind.MALFORMED_RESPONSE)

    def test_client_is_cached_per_credential(self) -> None:
        service, generate = _service_with_gemini(return_value=_gemini_response(parts=[SimpleNamespace(text="Hi")]))
        asyncio.run(service.translate("a", "English", "Japanese", GEMINI))
        asyncio.run(service.translate("b", "English", "Japanese", GEMINI))
        self.assertEqual(generate.await_count, 2)
        self.assertEqual(list(service._gemini_clients), ["gk"])


class OtherProviderTests(unittest.TestCase):
    def test_anthropic_joins_text_blocks(self) -> None:
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(
                200,
                json={"content": [{"type": "text", "text": "Good "}, {"type": "text", "text": "morning"}], "stop_reason": "end_turn"},
            )

        async def scenario() -> str:
            service, client = _service_with(handler)
            async with client:
                return await service.translate("おはよう", "English", "Japanese", ANTHROPIC)

        self.assertEqual(asyncio.run(scenario()), "Good morning")
        self.assertEqual(seen[0].headers["x-api-key"], "ak")
        self.assertEqual(seen[0].headers["anthropic-version"], "2023-06-01")
        self.assertEqual(json.loads(seen[0].content)["model"], "claude-test")

    def test_anthropic_refusal_is_content_blocked(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"content": [], "stop_reason": "refusal"})

        async def scenario() -> TranslationError:
            service, client = _service_with(handler)
            async with client:
                with self.assertRaises(TranslationError) as ctx:
                    await service.translate("text", "English", "Japanese", ANTHROPIC)
            return ctx.exception

        self.assertEqual(asyncio.run(scenario()).kind, TranslationErrorKind.CONTENT_BLOCKED)

    def test_anthropic_non_json_body_is_malformed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, text="<html>gateway</html>")

        async def scenario() -> TranslationError:
            service, client = _service_with(handler)
            async with client:
                with self.assertRaises(TranslationError) as ctx:
                    await service.translate("text", "English", "Japanese", ANTHROPIC)
            return ctx.exception

        self.assertEqual(asyncio.run(scenario()).kind, TranslationErrorKind.MALFORMED_RESPONSE)

    def test_anthropic_non_object_body_is_malformed(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json=[])

        async def scenario() -> TranslationError:
            service, client = _service_with(handler)
            async with client:
                with self.assertRaises(TranslationError) as ctx:
                    await service.translate("text", "English", "Japanese", ANTHROPIC)
            return ctx.exception

        error = asyncio.run(scenario())
        self.assertEqual(error.kind, TranslationErrorKind.MALFORMED_RESPONSE)
        self.assertIn("unexpected response format", error.user_message)

    def test_openai_client_is_cached_per_credential(self) -> None:
        service = ModelTranslationService(http_client=MagicMock())
        fake_client = MagicMock()
        fake_client.chat.completions.create = AsyncMock(
            return_value=SimpleNamespace(
                choices=[SimpleNamespace(finish_reason="stop", message=SimpleNamespace(content=" Hi "))]
            )
        )
        service._openai_clients[("ok", None)] = fake_client

        async def scenario() -> list[str]:
            return [
                await service.translate("やあ", "English", "Japanese", OPENAI),
                await service.translate("やあ", "English", "Japanese", OPENAI),
            ]

        self.assertEqual(asyncio.run(scenario()), ["Hi", "Hi"])
        self.assertEqual(fake_client.chat.completions.create.await_count, 2)
        kwargs = fake_client.chat.completions.create.await_args.kwargs
        self.assertEqual(kwargs["model"], "gpt-test")
        self.assertEqual(kwargs["temperature"], 0.0)

    def test_openai_content_filter_is_content_blocked(self) -> None:
        service = ModelTranslationService(http_client=MagicMock())
        fake_client = MagicMock()
        fake_client.chat.completions.create = AsyncMock(
            return_value=SimpleNamespace(
                choices=[SimpleNamespace(finish_reason="content_filter", message=SimpleNamespace(content=None))]
            )
        )
        service._openai_clients[("ok", None)] = fake_client

        with self.assertRaises(TranslationError) as ctx:
            asyncio.run(service.translate("text", "English", "Japanese", OPENAI))
        self.assertEqual(ctx.exception.kind, TranslationErrorKind.CONTENT_BLOCKED)

    def test_openai_status_error_is_wrapped(self) -> None:
        service = ModelTranslationService(http_client=MagicMock())
        fake_client = MagicMock()
        fake_client.chat.completions.create = AsyncMock(side_effect=_api_status_error(401, "Incorrect API key"))
        service._openai_clients[("ok", None)] = fake_client

        with self.assertRaises(TranslationError) as ctx:
            asyncio.run(service.translate("text", "English", "Japanese", OPENAI))
        self.assertEqual(ctx.exception.kind, TranslationErrorKind.INVALID_CREDENTIAL)

    def test_missing_credential_raises_before_any_request(self) -> None:
        http = MagicMock()
        service = ModelTranslationService(http_client=http)
        model = ModelDescriptor(id="g2", name="Gemini", provider="gemini", model_api_name="gemini-2.5-flash")

        with patch.dict(os.environ, {"GEMINI_API_KEY": ""}):
            with self.assertRaises(TranslationError) as ctx:
                asyncio.run(service.translate("text", "English", "Japanese", model))
        self.assertEqual(ctx.exception.kind, TranslationErrorKind.INVALID_CREDENTIAL)
        http.post.assert_not_called()

    def test_blank_text_returns_empty_without_request(self) -> None:
        http = MagicMock()
        service = ModelTranslationService(http_client=http)
        self.assertEqual(asyncio.run(service.translate("   ", "English", "Japanese", GEMINI)), "")
        http.post.assert_not_called()


class ClassifyTranslationErrorTests(unittest.TestCase):
    def test_status_codes_map_to_kinds(self) -> None:
        self.assertEqual(
            classify_translation_error(_api_status_error(401, "nope")).kind, TranslationErrorKind.INVALID_CREDENTIAL
        )
        self.assertEqual(
            classify_translation_error(_api_status_error(429, "slow down")).kind, TranslationErrorKind.RATE_LIMITED
        )

    def test_timeout_maps_to_timeout(self) -> None:
        error = classify_translation_error(asyncio.TimeoutError())
        self.assertEqual(error.kind, TranslationErrorKind.TIMEOUT)
        self.assertIn("timed out", error.user_message)

    def test_message_heuristics(self) -> None:
        self.assertEqual(
            classify_translation_error(RuntimeError("You exceeded your current quota")).kind,
            TranslationErrorKind.RATE_LIMITED,
        )
        self.assertEqual(
            classify_translation_error(RuntimeError("Candidate was blocked due to SAFETY")).kind,
            TranslationErrorKind.CONTENT_BLOCKED,
        )

    def test_unknown_errors_keep_detail(self) -> None:
        error = classify_translation_error(RuntimeError("boom"))
        self.assertEqual(error.kind, TranslationErrorKind.UNKNOWN)
        self.assertEqual(error.user_message, "Translation API error: boom")

    def test_existing_translation_error_passes_through(self) -> None:
        original = TranslationError(TranslationErrorKind.MALFORMED_RESPONSE, "x")
        self.assertIs(classify_translation_error(original), original)


class PromptTests(unittest.TestCase):
    def test_language_codes_are_expanded(self) -> None:
        self.assertEqual(ModelTranslationService._normalize_language("pt-BR"), "Portuguese (Brazil)")
        self.assertEqual(ModelTranslationService._normalize_language(""), "English")
        self.assertEqual(ModelTranslationService._normalize_language("Klingon"), "Klingon")

    def test_prompt_requests_translation_only(self) -> None:
        prompt = ModelTranslationService.build_prompt("テスト", target_language="English", source_language="Japanese")
        self.assertIn("Return only the English translation", prompt)
        self.assertIn("Japanese text:\nテスト", prompt)


if __name__ == "__main__":
    unittest.main()
