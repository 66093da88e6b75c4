"""
Fal.ai FLUX backend: fast creative image-to-image edits.

JSON request with the source image embedded as a base64 data URI and
``Authorization: Key <key>``.  The response lists generated image URLs;
the first one is downloaded.
"""

import base64
import logging
import time
from typing import Any, Dict, Optional

import httpx

from photoroute.exceptions import ErrorKind, ProviderError
from photoroute.models.edit import (
    CostClass,
    EditOptions,
    EditTask,
    ImageSize,
    ProviderID,
    ProviderResult,
)
from photoroute.providers.base import HttpImageProvider
from photoroute.providers.imaging import prepare_image
from photoroute.providers.prompts import flux_prompt

logger = logging.getLogger(__name__)

MAX_DIMENSION = 1024
MAX_BYTES = 8 * 1024 * 1024

MODEL_SCHNELL = "flux/schnell"
MODEL_DEV = "flux/dev"
MODEL_PRO = "flux-pro"

# (low quality, high quality) inference steps per model
_INFERENCE_STEPS = {
    MODEL_SCHNELL: (4, 8),
    MODEL_DEV: (15, 25),
    MODEL_PRO: (30, 50),
}

# How far the output may drift from the source
_STRENGTH = {
    EditTask.SIMPLE_ENHANCE: 0.3,
    EditTask.CLEANUP: 0.5,
    EditTask.RESTYLE: 0.7,
    EditTask.LOCAL_OBJECT_EDIT: 0.6,
}


def select_model(task: EditTask, quality: float) -> str:
    """Pick the FLUX model for a task at a given 0-1 quality."""
    if task is EditTask.SIMPLE_ENHANCE:
        return MODEL_DEV if quality > 0.8 else MODEL_SCHNELL
    if task is EditTask.CLEANUP:
        return MODEL_DEV
    if task in (EditTask.RESTYLE, EditTask.LOCAL_OBJECT_EDIT):
        return MODEL_PRO if quality > 0.9 else MODEL_DEV
    return MODEL_SCHNELL


def inference_steps(model: str, quality: float) -> int:
    low, high = _INFERENCE_STEPS[model]
    return high if quality > 0.8 else low


def guidance_scale(quality: float) -> float:
    """Prompt adherence, 7.0 at quality 0 up to 10.0 at quality 1."""
    return round(7.0 + quality * 3.0, 2)


def image_size_preset(target: Optional[ImageSize]) -> str:
    """Map requested dimensions onto fal's named size presets."""
    if target is None:
        return "square_hd"
    if target.width == target.height:
        return "square" if target.width <= 512 else "square_hd"
    if target.width > target.height:
        return "landscape_4_3" if target.width <= 768 else "landscape_16_9"
    return "portrait_4_3" if target.height <= 768 else "portrait_16_9"


class FalFluxProvider(HttpImageProvider):
    """Budget creative backend for restyle and local object edits."""

    provider_id = ProviderID.FAL_FLUX
    cost_class = CostClass.BUDGET
    supported_tasks = frozenset({
        EditTask.SIMPLE_ENHANCE,
        EditTask.CLEANUP,
        EditTask.RESTYLE,
        EditTask.LOCAL_OBJECT_EDIT,
    })
    primary_tasks = frozenset({EditTask.RESTYLE, EditTask.LOCAL_OBJECT_EDIT})
    status_overrides = {403: ErrorKind.UNAUTHORIZED}

    def build_payload(self, image: bytes, task: EditTask, options: EditOptions, model: str) -> Dict[str, Any]:
        encoded = base64.b64encode(image).decode("ascii")
        return {
            "prompt": flux_prompt(task, options.prompt),
            "image_url": f"data:image/jpeg;base64,{encoded}",
            "strength": _STRENGTH.get(task, 0.5),
            "guidance_scale": guidance_scale(options.quality),
            "num_inference_steps": inference_steps(model, options.quality),
            "image_size": image_size_preset(options.target_size),
            "num_images": 1,
            "enable_safety_checker": True,
        }

    def edit(self, image: bytes, task: EditTask, options: EditOptions) -> ProviderResult:
        self._require_support(task)
        api_key = self._require_api_key()
        started = time.monotonic()

        model = select_model(task, options.quality)
        source = prepare_image(
            image, MAX_DIMENSION, MAX_BYTES, fmt="JPEG", target_size=options.target_size
        )
        body = self.build_payload(source, task, options, model)

        logger.info("Fal FLUX request", extra={"model": model, "task": task.value})
        response = self._send(
            "POST",
            f"{self.base_url}/{model}",
            headers={"Authorization": f"Key {api_key}"},
            json=body,
        )
        self._raise_for_status(response)

        url = self._first_image_url(response)
        download = self._send("GET", url)
        if download.status_code >= 400:
            raise ProviderError(
                ErrorKind.NETWORK_ERROR,
                f"fal_flux image download returned HTTP {download.status_code}",
                status_code=download.status_code,
            )
        output = self._checked_output(download.content)

        return self._result(
            output,
            started,
            {
                "model": model,
                "prompt": body["prompt"],
                "task": task.value,
                "strength": body["strength"],
            },
        )

    def _first_image_url(self, response: httpx.Response) -> str:
        try:
            url = response.json()["images"][0]["url"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ProviderError(
                ErrorKind.DECODE_FAILED, "fal_flux response has no image URL"
            ) from exc
        if not isinstance(url, str) or not url:
            raise ProviderError(ErrorKind.DECODE_FAILED, "fal_flux returned an empty image URL")
        return url

    def validate_configuration(self) -> None:
        api_key = self._configured_key()
        response = self._send(
            "POST",
            f"{self.base_url}/{MODEL_SCHNELL}",
            headers={"Authorization": f"Key {api_key}"},
            json={"prompt": "test", "image_size": "square_hd", "num_inference_steps": 1},
            timeout=self._endpoint.probe_timeout_seconds,
        )
        self._check_probe(response, accept=frozenset({400, 422}))
