"""
Candidate selection policy.

Decides which backends may serve a task and in what order they are
tried, and remembers which backends passed configuration validation.

Ordering key, most significant first:

1. Cost-class weight, ascending (descending when the request asks for
   the highest quality).
2. Task suitability: backends that list the task as a primary task,
   or are its only supporter, come first.
3. Fixed tie-break ``on_device, clipdrop, fal_flux, openai, gemini``:
   specialist, then fast creative, then general, then complex.
"""

import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence

from photoroute.exceptions import ErrorKind, ProviderError
from photoroute.models.edit import EditQuality, EditTask, ProviderID
from photoroute.providers.base import ImageEditProvider

logger = logging.getLogger(__name__)

TIE_BREAK_ORDER: List[ProviderID] = [
    ProviderID.ON_DEVICE,
    ProviderID.CLIPDROP,
    ProviderID.FAL_FLUX,
    ProviderID.OPENAI,
    ProviderID.GEMINI,
]


def _tie_break(provider: ImageEditProvider) -> int:
    try:
        return TIE_BREAK_ORDER.index(provider.provider_id)
    except ValueError:
        return len(TIE_BREAK_ORDER)


def order_candidates(
    providers: Sequence[ImageEditProvider],
    task: EditTask,
    quality: EditQuality = EditQuality.STANDARD,
) -> List[ImageEditProvider]:
    """Filter ``providers`` to those supporting ``task`` and order them.

    Args:
        providers: Backends to consider.
        task: Requested edit task.
        quality: Request quality; ``ultra`` reverses the cost ordering.

    Returns:
        Capable backends in dispatch order (may be empty).
    """
    capable = [p for p in providers if p.supports(task)]
    sole = len(capable) == 1
    direction = -1 if quality.prefers_highest else 1

    def key(provider: ImageEditProvider):
        suited = sole or provider.is_primary_for(task)
        return (
            direction * provider.cost_class.weight,
            0 if suited else 1,
            _tie_break(provider),
        )

    return sorted(capable, key=key)


@dataclass
class _Validation:
    ok: bool
    token: Optional[str]
    checked_at: float
    kind: Optional[ErrorKind] = None


class ProviderAvailability:
    """Caches ``validate_configuration()`` outcomes per backend.

    A success is trusted for ``ttl_seconds``.  A credential failure
    (``unauthorized`` or ``configuration_error``) is remembered until the
    backend's configuration token changes, so a corrected credential
    re-enables it on the next request.  Other failures are retried
    after ``ttl_seconds``.

    Args:
        ttl_seconds: How long a validation result stays fresh.
        time_source: Monotonic seconds; injectable for tests.
    """

    def __init__(
        self,
        ttl_seconds: float = 300.0,
        time_source: Optional[Callable[[], float]] = None,
    ) -> None:
        self._ttl = ttl_seconds
        self._now = time_source or time.monotonic
        self._lock = threading.Lock()
        self._results: Dict[ProviderID, _Validation] = {}

    def is_valid(self, provider: ImageEditProvider) -> bool:
        """Return whether ``provider`` may receive requests, validating if stale."""
        token = provider.configuration_token()
        now = self._now()
        with self._lock:
            cached = self._results.get(provider.provider_id)
        if cached is not None and self._fresh(cached, token, now):
            return cached.ok
        return self.validate(provider)

    def validate(self, provider: ImageEditProvider) -> bool:
        """Run ``validate_configuration()`` now and cache the outcome."""
        token = provider.configuration_token()
        try:
            provider.validate_configuration()
        except ProviderError as exc:
            logger.warning(
                "Provider failed validation",
                extra={"provider": provider.provider_id.value, "error_kind": exc.kind.value},
            )
            record = _Validation(ok=False, token=token, checked_at=self._now(), kind=exc.kind)
        else:
            record = _Validation(ok=True, token=token, checked_at=self._now())
        with self._lock:
            self._results[provider.provider_id] = record
        return record.ok

    def mark_invalid(self, provider: ImageEditProvider, kind: ErrorKind) -> None:
        """Record a credential failure seen during dispatch."""
        with self._lock:
            self._results[provider.provider_id] = _Validation(
                ok=False,
                token=provider.configuration_token(),
                checked_at=self._now(),
                kind=kind,
            )
        logger.warning(
            "Provider marked invalid",
            extra={"provider": provider.provider_id.value, "error_kind": kind.value},
        )

    def forget(self, provider_id: Optional[ProviderID] = None) -> None:
        """Drop cached results for one backend, or for all of them."""
        with self._lock:
            if provider_id is None:
                self._results.clear()
            else:
                self._results.pop(provider_id, None)

    def _fresh(self, cached: _Validation, token: Optional[str], now: float) -> bool:
        if cached.token != token:
            return False
        if not cached.ok and cached.kind is not None and cached.kind.invalidates_configuration:
            return True
        return now - cached.checked_at < self._ttl
