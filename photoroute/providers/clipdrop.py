"""
Clipdrop backend: background removal and cleanup specialist.

Multipart upload of a JPEG ``image_file`` with the ``x-api-key`` header;
the response body is the edited image itself.
"""

import logging
import time

from photoroute.exceptions import ErrorKind
from photoroute.models.edit import (
    CostClass,
    EditOptions,
    EditTask,
    ProviderID,
    ProviderResult,
)
from photoroute.providers.base import HttpImageProvider
from photoroute.providers.imaging import prepare_image

logger = logging.getLogger(__name__)

MAX_DIMENSION = 4096
MAX_BYTES = 10 * 1024 * 1024

_ENDPOINTS = {
    EditTask.BG_REMOVE: "remove-background/v1",
    EditTask.CLEANUP: "cleanup/v1",
}


class ClipdropProvider(HttpImageProvider):
    """Budget specialist for ``bg_remove`` and ``cleanup``."""

    provider_id = ProviderID.CLIPDROP
    cost_class = CostClass.BUDGET
    supported_tasks = frozenset({EditTask.BG_REMOVE, EditTask.CLEANUP})
    primary_tasks = frozenset({EditTask.BG_REMOVE, EditTask.CLEANUP})
    status_overrides = {403: ErrorKind.UNAUTHORIZED}

    def endpoint_for(self, task: EditTask) -> str:
        return f"{self.base_url}/{_ENDPOINTS[task]}"

    def edit(self, image: bytes, task: EditTask, options: EditOptions) -> ProviderResult:
        self._require_support(task)
        api_key = self._require_api_key()
        started = time.monotonic()

        payload = prepare_image(
            image, MAX_DIMENSION, MAX_BYTES, fmt="JPEG", target_size=options.target_size
        )
        data = {}
        if task is EditTask.CLEANUP:
            data["mode"] = "quality" if options.quality >= 0.9 else "fast"

        logger.info(
            "Clipdrop request",
            extra={"task": task.value, "bytes": len(payload)},
        )
        response = self._send(
            "POST",
            self.endpoint_for(task),
            headers={"x-api-key": api_key},
            files={"image_file": ("image.jpg", payload, "image/jpeg")},
            data=data,
        )
        self._raise_for_status(response)
        output = self._checked_output(response.content)

        return self._result(
            output,
            started,
            {
                "endpoint": _ENDPOINTS[task],
                "task": task.value,
                "remaining_credits": response.headers.get("x-remaining-credits"),
            },
        )

    def validate_configuration(self) -> None:
        api_key = self._configured_key()
        # An empty upload is rejected with 400 by a healthy, authorised API
        response = self._send(
            "POST",
            self.endpoint_for(EditTask.BG_REMOVE),
            headers={"x-api-key": api_key},
            timeout=self._endpoint.probe_timeout_seconds,
        )
        self._check_probe(response, accept=frozenset({400}))
