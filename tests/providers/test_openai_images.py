"""Tests for the OpenAI Images backend."""

import base64

import httpx
import pytest

from photoroute.config import ProviderEndpoint
from photoroute.exceptions import ErrorKind, ProviderError
from photoroute.models.edit import EditOptions, EditTask
from photoroute.providers.credentials import StaticCredentialStore
from photoroute.providers.openai_images import OpenAIImageProvider

ENDPOINT = ProviderEndpoint(
    base_url="https://openai.test/v1", api_key_env="OPENAI_API_KEY", model="dall-e-2"
)


def _provider(handler) -> OpenAIImageProvider:
    return OpenAIImageProvider(
        ENDPOINT,
        StaticCredentialStore({"OPENAI_API_KEY": "sk-test"}),
        client=httpx.Client(transport=httpx.MockTransport(handler)),
    )


class TestOpenAIEdit:
    """Tests for OpenAIImageProvider.edit."""

    def test_multipart_png_upload(self, jpeg_bytes, png_rgba_bytes) -> None:
        seen = []
        encoded = base64.b64encode(png_rgba_bytes).decode("ascii")

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": [{"b64_json": encoded}]})

        result = _provider(handler).edit(jpeg_bytes, EditTask.CLEANUP, EditOptions())

        request = seen[0]
        assert request.url.path == "/v1/images/edits"
        assert request.headers["Authorization"] == "Bearer sk-test"
        assert b'name="image"' in request.content
        assert b"image/png" in request.content
        assert b"b64_json" in request.content
        assert b"dall-e-2" in request.content
        assert result.image == png_rgba_bytes
        assert result.metadata["prompt"].endswith(
            "Remove unwanted elements while maintaining image integrity."
        )

    def test_missing_data_is_decode_failed(self, jpeg_bytes) -> None:
        provider = _provider(lambda request: httpx.Response(200, json={"data": []}))
        with pytest.raises(ProviderError) as exc_info:
            provider.edit(jpeg_bytes, EditTask.RESTYLE, EditOptions())
        assert exc_info.value.kind is ErrorKind.DECODE_FAILED

    def test_invalid_base64_is_decode_failed(self, jpeg_bytes) -> None:
        provider = _provider(
            lambda request: httpx.Response(200, json={"data": [{"b64_json": "@@not-base64@@"}]})
        )
        with pytest.raises(ProviderError) as exc_info:
            provider.edit(jpeg_bytes, EditTask.RESTYLE, EditOptions())
        assert exc_info.value.kind is ErrorKind.DECODE_FAILED

    def test_does_not_support_background_removal(self, jpeg_bytes) -> None:
        provider = _provider(lambda request: httpx.Response(200))
        assert not provider.supports(EditTask.BG_REMOVE)
        assert provider.primary_tasks == frozenset()


class TestOpenAIValidation:
    """Tests for the OpenAI configuration check."""

    def test_models_probe(self) -> None:
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"data": []})

        _provider(handler).validate_configuration()
        assert seen[0].method == "GET"
        assert seen[0].url.path == "/v1/models"

    def test_rejected_key(self) -> None:
        with pytest.raises(ProviderError) as exc_info:
            _provider(lambda request: httpx.Response(401)).validate_configuration()
        assert exc_info.value.kind is ErrorKind.UNAUTHORIZED

    def test_rate_limited_probe_keeps_kind(self) -> None:
        with pytest.raises(ProviderError) as exc_info:
            _provider(lambda request: httpx.Response(429)).validate_configuration()
        assert exc_info.value.kind is ErrorKind.RATE_LIMITED
