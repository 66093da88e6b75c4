"""
Provider capability contract for PhotoRoute.

Every backend implements :class:`ImageEditProvider`.  Remote backends
derive from :class:`HttpImageProvider`, which owns the ``httpx`` client
and the translation of HTTP status codes and transport failures into
the shared :class:`~photoroute.exceptions.ErrorKind` taxonomy.  The
routing engine never sees vendor status codes or response bodies.
"""

import io
import logging
import time
from abc import ABC, abstractmethod
from typing import Dict, FrozenSet, Optional

import httpx
from PIL import Image, UnidentifiedImageError

from photoroute.config import ProviderEndpoint
from photoroute.exceptions import ErrorKind, ProviderError
from photoroute.models.edit import (
    CostClass,
    EditOptions,
    EditTask,
    ImageSize,
    ProviderID,
    ProviderResult,
)
from photoroute.providers.credentials import CredentialStore

logger = logging.getLogger(__name__)

# Base seconds per cost class for processing-time estimates
_BASE_SECONDS = {
    CostClass.FREE_LOCAL: 0.5,
    CostClass.BUDGET: 3.0,
    CostClass.PREMIUM: 8.0,
}


class ImageEditProvider(ABC):
    """Abstract base class for image edit backends.

    Subclasses declare ``provider_id``, ``cost_class``,
    ``supported_tasks`` and ``primary_tasks`` (tasks the backend is the
    preferred choice for within its cost class).
    """

    provider_id: ProviderID
    cost_class: CostClass
    supported_tasks: FrozenSet[EditTask] = frozenset()
    primary_tasks: FrozenSet[EditTask] = frozenset()

    @property
    def display_name(self) -> str:
        return self.provider_id.display_name

    def supports(self, task: EditTask) -> bool:
        """Return ``True`` if this backend can perform ``task``."""
        return task in self.supported_tasks

    def is_primary_for(self, task: EditTask) -> bool:
        return task in self.primary_tasks

    def estimated_processing_time(self, task: EditTask, image_size: ImageSize) -> float:
        """Rough seconds estimate: cost-class base x complexity x megapixels."""
        base = _BASE_SECONDS[self.cost_class]
        return base * int(task.complexity) * max(1.0, image_size.megapixels)

    @abstractmethod
    def edit(self, image: bytes, task: EditTask, options: EditOptions) -> ProviderResult:
        """Perform the edit.

        Raises:
            ProviderError: On any failure, classified by kind.
        """

    @abstractmethod
    def validate_configuration(self) -> None:
        """Check credentials and connectivity.

        Raises:
            ProviderError: If the backend is missing configuration or
                rejects the connectivity probe.
        """

    def configuration_token(self) -> Optional[str]:
        """Opaque value that changes whenever the backend's config changes."""
        return None

    def is_available(self) -> bool:
        try:
            self.validate_configuration()
        except ProviderError:
            return False
        return True

    def close(self) -> None:
        """Release network resources, if any."""

    def _require_support(self, task: EditTask) -> None:
        if not self.supports(task):
            raise ProviderError(
                ErrorKind.NOT_SUPPORTED,
                f"{self.provider_id.value} does not support {task.value}",
            )

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.provider_id.value} ({self.cost_class.value})>"


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a ``Retry-After`` header given in seconds."""
    if value is None:
        return None
    try:
        seconds = float(value.strip())
    except ValueError:
        return None
    return seconds if seconds >= 0 else None


class HttpImageProvider(ImageEditProvider):
    """Shared HTTP plumbing for remote backends.

    Args:
        endpoint: Base URL, timeout and credential name for the vendor.
        credentials: Source of the vendor API key.
        client: Optional pre-built ``httpx.Client`` (tests inject one
            backed by ``httpx.MockTransport``).
    """

    # Overrides of the default status -> kind mapping
    status_overrides: Dict[int, ErrorKind] = {}

    def __init__(
        self,
        endpoint: ProviderEndpoint,
        credentials: CredentialStore,
        client: Optional[httpx.Client] = None,
    ) -> None:
        self._endpoint = endpoint
        self._credentials = credentials
        self._client = client or httpx.Client(
            timeout=httpx.Timeout(endpoint.timeout_seconds),
            follow_redirects=True,
        )

    # ------------------------------------------------------------------
    # Credentials
    # ------------------------------------------------------------------

    @property
    def base_url(self) -> str:
        return self._endpoint.base_url.rstrip("/")

    def api_key(self) -> Optional[str]:
        key = self._credentials.get(self._endpoint.api_key_env)
        return key.strip() if key and key.strip() else None

    def configuration_token(self) -> Optional[str]:
        return self.api_key()

    def _require_api_key(self) -> str:
        key = self.api_key()
        if key is None:
            raise ProviderError(
                ErrorKind.UNAUTHORIZED,
                f"{self.provider_id.value} API key not configured",
            )
        return key

    def _configured_key(self) -> str:
        key = self.api_key()
        if key is None:
            raise ProviderError(
                ErrorKind.CONFIGURATION_ERROR,
                f"{self.provider_id.value} API key not configured "
                f"(expected in {self._endpoint.api_key_env})",
            )
        return key

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------

    def _send(
        self,
        method: str,
        url: str,
        *,
        timeout: Optional[float] = None,
        **kwargs,
    ) -> httpx.Response:
        """Send a request, translating transport failures to the taxonomy."""
        try:
            return self._client.request(
                method,
                url,
                timeout=timeout if timeout is not None else self._endpoint.timeout_seconds,
                **kwargs,
            )
        except httpx.TimeoutException as exc:
            raise ProviderError(
                ErrorKind.SERVICE_UNAVAILABLE,
                f"{self.provider_id.value} timed out: {exc}",
            ) from exc
        except httpx.HTTPError as exc:
            raise ProviderError(
                ErrorKind.NETWORK_ERROR,
                f"{self.provider_id.value} network error: {exc}",
            ) from exc

    def error_for_status(self, response: httpx.Response) -> Optional[ProviderError]:
        """Map a non-2xx response to a :class:`ProviderError` (``None`` on 2xx)."""
        status = response.status_code
        if 200 <= status < 300:
            return None

        kind = self.status_overrides.get(status)
        if kind is None:
            if status == 400:
                kind = ErrorKind.INVALID_INPUT
            elif status == 401:
                kind = ErrorKind.UNAUTHORIZED
            elif status == 402:
                kind = ErrorKind.QUOTA_EXCEEDED
            elif status == 429:
                kind = ErrorKind.RATE_LIMITED
            elif 500 <= status < 600:
                kind = ErrorKind.SERVICE_UNAVAILABLE
            else:
                kind = ErrorKind.UNKNOWN

        retry_after = None
        if kind is ErrorKind.RATE_LIMITED:
            retry_after = parse_retry_after(response.headers.get("Retry-After"))

        return ProviderError(
            kind,
            f"{self.provider_id.value} returned HTTP {status}",
            retry_after=retry_after,
            status_code=status,
        )

    def _raise_for_status(self, response: httpx.Response) -> None:
        error = self.error_for_status(response)
        if error is not None:
            raise error

    def _check_probe(self, response: httpx.Response, accept: FrozenSet[int] = frozenset()) -> None:
        """Interpret a connectivity probe response.

        Statuses in ``accept`` count as healthy (an empty probe request
        is expected to be rejected by some vendors).  Anything other than
        unauthorized / rate-limited is reported as unavailable.
        """
        if 200 <= response.status_code < 300 or response.status_code in accept:
            return
        error = self.error_for_status(response)
        if error is None:
            return
        if error.kind not in (ErrorKind.UNAUTHORIZED, ErrorKind.RATE_LIMITED):
            error = ProviderError(
                ErrorKind.SERVICE_UNAVAILABLE,
                error.message,
                status_code=error.status_code,
            )
        raise error

    def _checked_output(self, data: bytes) -> bytes:
        """Ensure a vendor returned a decodable image."""
        if not data:
            raise ProviderError(
                ErrorKind.DECODE_FAILED, f"{self.provider_id.value} returned no image data"
            )
        try:
            Image.open(io.BytesIO(data)).verify()
        except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
            raise ProviderError(
                ErrorKind.DECODE_FAILED,
                f"{self.provider_id.value} returned undecodable image: {exc}",
            ) from exc
        return data

    def _result(
        self,
        image: bytes,
        started: float,
        metadata: Dict[str, object],
    ) -> ProviderResult:
        elapsed = time.monotonic() - started
        metadata = {**metadata, "processing_time": round(elapsed, 3)}
        return ProviderResult(
            image=image,
            provider_id=self.provider_id,
            cost_class=self.cost_class,
            processing_time=elapsed,
            metadata=metadata,
        )

    def close(self) -> None:
        self._client.close()
