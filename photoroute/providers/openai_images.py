"""
OpenAI Images backend: general-purpose edits.

Multipart PNG upload to ``/images/edits`` with bearer auth; the edited
image comes back base64-encoded in ``data[0].b64_json``.
"""

import base64
import binascii
import logging
import time

import httpx

from photoroute.exceptions import ErrorKind, ProviderError
from photoroute.models.edit import (
    CostClass,
    EditOptions,
    EditTask,
    ProviderID,
    ProviderResult,
)
from photoroute.providers.base import HttpImageProvider
from photoroute.providers.imaging import prepare_image
from photoroute.providers.prompts import openai_prompt

logger = logging.getLogger(__name__)

MAX_DIMENSION = 1024
MAX_BYTES = 4 * 1024 * 1024
OUTPUT_SIZE = "1024x1024"


class OpenAIImageProvider(HttpImageProvider):
    """Budget generalist covering enhancement, cleanup and creative edits."""

    provider_id = ProviderID.OPENAI
    cost_class = CostClass.BUDGET
    supported_tasks = frozenset({
        EditTask.SIMPLE_ENHANCE,
        EditTask.CLEANUP,
        EditTask.RESTYLE,
        EditTask.LOCAL_OBJECT_EDIT,
    })
    status_overrides = {403: ErrorKind.UNAUTHORIZED}

    @property
    def model(self) -> str:
        return self._endpoint.model or "dall-e-2"

    def edit(self, image: bytes, task: EditTask, options: EditOptions) -> ProviderResult:
        self._require_support(task)
        api_key = self._require_api_key()
        started = time.monotonic()

        payload = prepare_image(
            image, MAX_DIMENSION, MAX_BYTES, fmt="PNG", target_size=options.target_size
        )
        prompt = openai_prompt(task, options.prompt)

        logger.info("OpenAI image edit request", extra={"task": task.value, "model": self.model})
        response = self._send(
            "POST",
            f"{self.base_url}/images/edits",
            headers={"Authorization": f"Bearer {api_key}"},
            files={"image": ("image.png", payload, "image/png")},
            data={
                "model": self.model,
                "prompt": prompt,
                "n": "1",
                "size": OUTPUT_SIZE,
                "response_format": "b64_json",
            },
        )
        self._raise_for_status(response)
        output = self._checked_output(self._decode_b64(response))

        return self._result(
            output,
            started,
            {"model": self.model, "prompt": prompt, "task": task.value},
        )

    def _decode_b64(self, response: httpx.Response) -> bytes:
        try:
            encoded = response.json()["data"][0]["b64_json"]
            return base64.b64decode(encoded, validate=True)
        except (ValueError, KeyError, IndexError, TypeError, binascii.Error) as exc:
            raise ProviderError(
                ErrorKind.DECODE_FAILED, "openai response has no decodable image"
            ) from exc

    def validate_configuration(self) -> None:
        api_key = self._configured_key()
        response = self._send(
            "GET",
            f"{self.base_url}/models",
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=self._endpoint.probe_timeout_seconds,
        )
        self._check_probe(response)
