"""Tests for the Gemini backend."""

import base64
import json

import httpx
import pytest

from photoroute.config import ProviderEndpoint
from photoroute.exceptions import ErrorKind, ProviderError
from photoroute.models.edit import CostClass, EditOptions, EditTask
from photoroute.providers.credentials import StaticCredentialStore
from photoroute.providers.gemini import GeminiProvider, extract_inline_image

ENDPOINT = ProviderEndpoint(
    base_url="https://gemini.test/v1beta",
    api_key_env="GEMINI_API_KEY",
    model="gemini-2.0-flash-exp",
)


def _provider(handler) -> GeminiProvider:
    return GeminiProvider(
        ENDPOINT,
        StaticCredentialStore({"GEMINI_API_KEY": "g-key"}),
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


def _reply(image: bytes, camel: bool = True) -> dict:
    data = base64.b64encode(image).decode("ascii")
    inline = {"inlineData": {"mimeType": "image/png", "data": data}} if camel else {
        "inline_data": {"mime_type": "image/png", "data": data}
    }
    return {"candidates": [{"content": {"parts": [{"text": "Here you go"}, inline]}}]}


class TestExtractInlineImage:
    """Tests for reading images out of Gemini responses."""

    def test_camel_case(self, png_rgba_bytes) -> None:
        assert extract_inline_image(_reply(png_rgba_bytes)) == png_rgba_bytes

    def test_snake_case(self, png_rgba_bytes) -> None:
        assert extract_inline_image(_reply(png_rgba_bytes, camel=False)) == png_rgba_bytes

    def test_text_only(self) -> None:
        body = {"candidates": [{"content": {"parts": [{"text": "I cannot"}]}}]}
        assert extract_inline_image(body) is None

    def test_no_candidates(self) -> None:
        assert extract_inline_image({}) is None


class TestGeminiEdit:
    """Tests for GeminiProvider.edit."""

    def test_generate_content_request(self, jpeg_bytes, png_rgba_bytes) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=_reply(png_rgba_bytes))

        result = _provider(handler).edit(
            jpeg_bytes, EditTask.SUBJECT_CONSISTENCY, EditOptions(prompt="keep her face")
        )

        request = seen[0]
        assert request.url.path == "/v1beta/models/gemini-2.0-flash-exp:generateContent"
        assert request.headers["x-goog-api-key"] == "g-key"
        body = json.loads(request.content)
        parts = body["contents"][0]["parts"]
        assert parts[0]["text"].startswith("keep her face\n\n")
        assert parts[1]["inline_data"]["mime_type"] == "image/jpeg"
        assert body["generationConfig"]["responseModalities"] == ["TEXT", "IMAGE"]
        assert result.image == png_rgba_bytes
        assert result.cost_class is CostClass.PREMIUM

    def test_text_only_reply_is_decode_failed(self, jpeg_bytes) -> None:
        body = {"candidates": [{"content": {"parts": [{"text": "no image"}]}}]}
        provider = _provider(lambda request: httpx.Response(200, json=body))
        with pytest.raises(ProviderError) as exc_info:
            provider.edit(jpeg_bytes, EditTask.RESTYLE, EditOptions())
        assert exc_info.value.kind is ErrorKind.DECODE_FAILED

    def test_forbidden_is_quota_exceeded(self, jpeg_bytes) -> None:
        provider = _provider(lambda request: httpx.Response(403))
        with pytest.raises(ProviderError) as exc_info:
            provider.edit(jpeg_bytes, EditTask.RESTYLE, EditOptions())
        assert exc_info.value.kind is ErrorKind.QUOTA_EXCEEDED

    def test_sole_supporter_of_advanced_tasks(self) -> None:
        provider = _provider(lambda request: httpx.Response(200))
        assert provider.supports(EditTask.MULTI_IMAGE_FUSION)
        assert provider.is_primary_for(EditTask.SUBJECT_CONSISTENCY)
        assert not provider.supports(EditTask.CLEANUP)


class TestGeminiValidation:
    """Tests for the Gemini configuration check."""

    def test_models_probe(self) -> None:
        _provider(lambda request: httpx.Response(200, json={"models": []})).validate_configuration()

    def test_outage(self) -> None:
        with pytest.raises(ProviderError) as exc_info:
            _provider(lambda request: httpx.Response(500)).validate_configuration()
        assert exc_info.value.kind is ErrorKind.SERVICE_UNAVAILABLE
