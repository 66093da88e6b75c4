"""
Gemini backend: premium multimodal edits.

The only backend for subject consistency and multi-image fusion.  JSON
``generateContent`` call carrying a text part and an ``inline_data``
JPEG part, authenticated with ``x-goog-api-key``.  The edited image is
read from the first inline-data part of the first candidate; a reply
that holds only text is a decode failure.
"""

import base64
import binascii
import logging
import time
from typing import Any, Dict, Optional

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
from photoroute.providers.prompts import gemini_prompt

logger = logging.getLogger(__name__)

MAX_DIMENSION = 3072
MAX_BYTES = 15 * 1024 * 1024

GENERATION_CONFIG = {
    "temperature": 0.1,
    "topK": 32,
    "topP": 1.0,
    "maxOutputTokens": 4096,
    "responseModalities": ["TEXT", "IMAGE"],
}


def extract_inline_image(body: Dict[str, Any]) -> Optional[bytes]:
    """Return decoded bytes of the first inline image part, if any.

    Accepts both the snake_case (``inline_data``) and camelCase
    (``inlineData``) spellings the API uses.
    """
    for candidate in body.get("candidates") or []:
        parts = ((candidate or {}).get("content") or {}).get("parts") or []
        for part in parts:
            inline = part.get("inline_data") or part.get("inlineData")
            if inline and inline.get("data"):
                return base64.b64decode(inline["data"], validate=True)
    return None


class GeminiProvider(HttpImageProvider):
    """Premium multimodal backend."""

    provider_id = ProviderID.GEMINI
    cost_class = CostClass.PREMIUM
    supported_tasks = frozenset({
        EditTask.SIMPLE_ENHANCE,
        EditTask.BG_REMOVE,
        EditTask.RESTYLE,
        EditTask.LOCAL_OBJECT_EDIT,
        EditTask.SUBJECT_CONSISTENCY,
        EditTask.MULTI_IMAGE_FUSION,
    })
    primary_tasks = frozenset({EditTask.SUBJECT_CONSISTENCY, EditTask.MULTI_IMAGE_FUSION})
    status_overrides = {403: ErrorKind.QUOTA_EXCEEDED}

    @property
    def model(self) -> str:
        return self._endpoint.model or "gemini-2.0-flash-exp"

    def build_payload(self, image: bytes, task: EditTask, options: EditOptions) -> Dict[str, Any]:
        return {
            "contents": [
                {
                    "parts": [
                        {"text": gemini_prompt(task, options.prompt)},
                        {
                            "inline_data": {
                                "mime_type": "image/jpeg",
                                "data": base64.b64encode(image).decode("ascii"),
                            }
                        },
                    ]
                }
            ],
            "generationConfig": GENERATION_CONFIG,
        }

    def edit(self, image: bytes, task: EditTask, options: EditOptions) -> ProviderResult:
        self._require_support(task)
        api_key = self._require_api_key()
        started = time.monotonic()

        source = prepare_image(
            image, MAX_DIMENSION, MAX_BYTES, fmt="JPEG", target_size=options.target_size
        )
        body = self.build_payload(source, task, options)

        logger.info("Gemini generateContent request", extra={"task": task.value, "model": self.model})
        response = self._send(
            "POST",
            f"{self.base_url}/models/{self.model}:generateContent",
            headers={"x-goog-api-key": api_key},
            json=body,
        )
        self._raise_for_status(response)
        output = self._checked_output(self._image_from(response))

        return self._result(
            output,
            started,
            {
                "model": self.model,
                "prompt": body["contents"][0]["parts"][0]["text"],
                "task": task.value,
            },
        )

    def _image_from(self, response: httpx.Response) -> bytes:
        try:
            data = extract_inline_image(response.json())
        except (ValueError, TypeError, AttributeError, binascii.Error) as exc:
            raise ProviderError(
                ErrorKind.DECODE_FAILED, "gemini response could not be parsed"
            ) from exc
        if data is None:
            raise ProviderError(
                ErrorKind.DECODE_FAILED, "gemini answered without an image"
            )
        return data

    def validate_configuration(self) -> None:
        api_key = self._configured_key()
        response = self._send(
            "GET",
            f"{self.base_url}/models",
            headers={"x-goog-api-key": api_key},
            timeout=self._endpoint.probe_timeout_seconds,
        )
        self._check_probe(response)
