"""
Routing engine for PhotoRoute.

Turns an :class:`EditRequest` into exactly one routing decision:

1. **Cache check**: a fingerprint hit is returned immediately, before
   any credit check or network call.
2. **Candidate selection**: capable, correctly configured backends in
   policy order (see :mod:`photoroute.routing.policy`).
3. **Credit check**: one credit is reserved for each metered candidate
   before dispatch; a refused reservation moves on to the next
   candidate of equal or lower cost.
4. **Dispatch**: success commits the reservation, stores the result in
   the cache and returns :class:`Routed`.
5. **Failure handling**: retryable errors are retried on the same
   backend; exhausted or non-retryable errors release the reservation
   and fall back to the next candidate.  A higher cost class is only
   tried when the request asked for the highest quality or a backend
   has already failed.
"""

import logging
import threading
import time
from typing import Callable, Dict, List, Optional, Tuple

from pydantic import BaseModel

from photoroute.cache.results import ResultCache
from photoroute.config import RoutingSettings, Settings, get_settings
from photoroute.exceptions import ErrorKind, ProviderError
from photoroute.ledger.usage import CreditReservation, UsageTracker
from photoroute.models.edit import (
    CostClass,
    EditOptions,
    EditQuality,
    EditRequest,
    EditTask,
    ProviderID,
    ProviderResult,
    Tier,
)
from photoroute.providers.base import ImageEditProvider
from photoroute.providers.credentials import CredentialStore
from photoroute.providers.registry import ProviderRegistry, build_default_registry
from photoroute.routing.decisions import (
    AggregatedError,
    Failed,
    ProviderAttempt,
    RequiresUpgrade,
    Routed,
    RoutingDecision,
    UpgradeReason,
)
from photoroute.routing.policy import ProviderAvailability, order_candidates
from photoroute.tracking.tracker import EventTracker, RoutingEvent

logger = logging.getLogger(__name__)

# wait(seconds, cancel_event) -> True if cancelled while waiting
Waiter = Callable[[float, Optional[threading.Event]], bool]


def _default_wait(seconds: float, cancel_event: Optional[threading.Event]) -> bool:
    if cancel_event is None:
        time.sleep(seconds)
        return False
    return cancel_event.wait(seconds)


def _is_cancelled(cancel_event: Optional[threading.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


class CandidatePreview(BaseModel):
    """A candidate as :meth:`RoutingEngine.preview` reports it."""

    provider_id: ProviderID
    cost_class: CostClass
    configured: bool
    affordable: bool
    remaining: Optional[int] = None


class RoutingEngine:
    """Routes edit requests across the registered backends.

    The ledger, cache and registry are injected; the engine owns no
    global state.  ``route()`` may be called from any number of threads.

    Args:
        registry: Backends to route across.
        ledger: Credit ledger.
        cache: Result cache.
        settings: Retry and validation settings.
        tracker: Optional event tracker; one event per decision.
        availability: Validation cache; built from ``settings`` if omitted.
        wait: Backoff waiter; injectable so tests do not sleep.
        clock: Monotonic seconds, used for latency measurement.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        ledger: UsageTracker,
        cache: ResultCache,
        settings: Optional[RoutingSettings] = None,
        tracker: Optional[EventTracker] = None,
        availability: Optional[ProviderAvailability] = None,
        wait: Optional[Waiter] = None,
        clock: Optional[Callable[[], float]] = None,
    ) -> None:
        self._registry = registry
        self._ledger = ledger
        self._cache = cache
        self._settings = settings or get_settings().routing
        self._tracker = tracker
        self._availability = availability or ProviderAvailability(
            ttl_seconds=self._settings.validation_ttl_seconds
        )
        self._wait = wait or _default_wait
        self._clock = clock or time.monotonic

    @property
    def availability(self) -> ProviderAvailability:
        return self._availability

    @property
    def registry(self) -> ProviderRegistry:
        return self._registry

    @property
    def ledger(self) -> UsageTracker:
        return self._ledger

    @property
    def cache(self) -> ResultCache:
        return self._cache

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def route(
        self,
        request: EditRequest,
        cancel_event: Optional[threading.Event] = None,
    ) -> RoutingDecision:
        """Route one request to a decision.

        Args:
            request: The edit request.
            cancel_event: Set by the caller to abandon the request.  A
                result that arrives after cancellation is discarded and
                its credit released.

        Returns:
            :class:`Routed`, :class:`RequiresUpgrade` or :class:`Failed`.
        """
        started = self._clock()
        attempts: List[ProviderAttempt] = []
        decision, charged = self._route(request, cancel_event, attempts)
        self._record(request, decision, attempts, charged, started)
        return decision

    def preview(
        self,
        task: EditTask,
        tier: Tier,
        user_id: str = "anonymous",
        quality: EditQuality = EditQuality.STANDARD,
    ) -> List[CandidatePreview]:
        """Ordered candidates for a task with affordability; spends nothing."""
        previews = []
        for provider in order_candidates(self._registry.all(), task, quality):
            remaining = None
            affordable = True
            if provider.cost_class.consumes_credit:
                remaining = self._ledger.remaining(user_id, tier, provider.cost_class)
                affordable = remaining > 0
            previews.append(
                CandidatePreview(
                    provider_id=provider.provider_id,
                    cost_class=provider.cost_class,
                    configured=self._availability.is_valid(provider),
                    affordable=affordable,
                    remaining=remaining,
                )
            )
        return previews

    def validate_providers(self) -> Dict[ProviderID, bool]:
        """Re-validate every backend now and return the outcomes."""
        return {
            provider.provider_id: self._availability.validate(provider)
            for provider in self._registry.all()
        }

    # ------------------------------------------------------------------
    # Decision flow
    # ------------------------------------------------------------------

    def _route(
        self,
        request: EditRequest,
        cancel_event: Optional[threading.Event],
        attempts: List[ProviderAttempt],
    ) -> Tuple[RoutingDecision, int]:
        options = request.options

        try:
            key = self._cache.fingerprint(request.image, request.task, options)
        except ProviderError as exc:
            return self._failed(exc.kind, exc.message, attempts), 0

        cached = self._cache.lookup(request.user_id, key)
        if cached is not None:
            logger.info(
                "Served from cache",
                extra={"request_id": request.request_id, "provider": cached.provider_id.value},
            )
            return Routed(
                provider_id=cached.provider_id,
                result=cached,
                cost_class=cached.cost_class,
                cache_hit=True,
            ), 0

        if _is_cancelled(cancel_event):
            return self._failed(ErrorKind.UNKNOWN, "Request cancelled", attempts, cancelled=True), 0

        capable = order_candidates(self._registry.all(), request.task, request.quality)
        if not capable:
            return self._failed(
                ErrorKind.NOT_SUPPORTED,
                f"No provider supports {request.task.value}",
                attempts,
            ), 0

        candidates = [p for p in capable if self._availability.is_valid(p)]
        if not candidates:
            return self._failed(
                ErrorKind.CONFIGURATION_ERROR,
                f"No configured provider for {request.task.value}",
                attempts,
            ), 0

        ceiling = candidates[0].cost_class
        denials: List[CostClass] = []
        failed_any = False

        for provider in candidates:
            if _is_cancelled(cancel_event):
                break
            if (
                provider.cost_class > ceiling
                and not request.quality.prefers_highest
                and not failed_any
            ):
                logger.debug(
                    "Escalation skipped",
                    extra={"request_id": request.request_id, "provider": provider.provider_id.value},
                )
                continue

            reservation: Optional[CreditReservation] = None
            if provider.cost_class.consumes_credit:
                reservation = self._ledger.reserve(request.user_id, request.tier, provider.cost_class)
                if reservation is None:
                    logger.info(
                        "Insufficient credits; trying next candidate",
                        extra={
                            "request_id": request.request_id,
                            "provider": provider.provider_id.value,
                            "cost_class": provider.cost_class.value,
                        },
                    )
                    denials.append(provider.cost_class)
                    continue

            settled = False
            charged = False
            try:
                result = self._dispatch(provider, request, options, attempts, cancel_event)
                if result is None:
                    failed_any = True
                    continue
                if _is_cancelled(cancel_event):
                    logger.info(
                        "Result discarded after cancellation",
                        extra={"request_id": request.request_id, "provider": provider.provider_id.value},
                    )
                    break
                if reservation is not None:
                    # False when a migrate revoked the hold; nothing was spent
                    charged = self._ledger.commit(reservation)
                settled = True
            finally:
                if reservation is not None and not settled:
                    self._ledger.release(reservation)

            self._cache.store(request.user_id, key, result)
            logger.info(
                "Request routed",
                extra={
                    "request_id": request.request_id,
                    "provider": provider.provider_id.value,
                    "cost_class": provider.cost_class.value,
                    "attempts": len(attempts) + 1,
                },
            )
            return Routed(
                provider_id=provider.provider_id,
                result=result,
                cost_class=provider.cost_class,
                attempts=list(attempts),
            ), 1 if charged else 0

        if _is_cancelled(cancel_event):
            return self._failed(ErrorKind.UNKNOWN, "Request cancelled", attempts, cancelled=True), 0
        if denials:
            return self._upgrade(request, denials[0]), 0
        return self._failed(None, None, attempts), 0

    def _dispatch(
        self,
        provider: ImageEditProvider,
        request: EditRequest,
        options: EditOptions,
        attempts: List[ProviderAttempt],
        cancel_event: Optional[threading.Event],
    ) -> Optional[ProviderResult]:
        """Call one backend with retries.  ``None`` means give up on it."""
        max_attempts = 1 + max(0, self._settings.max_retries)
        for attempt in range(1, max_attempts + 1):
            try:
                return provider.edit(request.image, request.task, options)
            except ProviderError as exc:
                attempts.append(
                    ProviderAttempt(
                        provider_id=provider.provider_id,
                        attempt=attempt,
                        error_kind=exc.kind,
                        message=exc.message,
                        retry_after=exc.retry_after,
                    )
                )
                logger.warning(
                    "Provider call failed",
                    extra={
                        "request_id": request.request_id,
                        "provider": provider.provider_id.value,
                        "error_kind": exc.kind.value,
                        "attempt": attempt,
                    },
                )
                if exc.kind.invalidates_configuration:
                    self._availability.mark_invalid(provider, exc.kind)
                if not exc.is_retryable or attempt == max_attempts:
                    logger.info(
                        "Provider excluded for request",
                        extra={"request_id": request.request_id, "provider": provider.provider_id.value},
                    )
                    return None
                if self._wait(self._retry_delay(exc), cancel_event):
                    return None
        return None

    def _retry_delay(self, error: ProviderError) -> float:
        if error.retry_after is not None:
            return min(error.retry_after, self._settings.max_retry_after_seconds)
        return self._settings.retry_backoff_seconds

    # ------------------------------------------------------------------
    # Decision builders
    # ------------------------------------------------------------------

    def _upgrade(self, request: EditRequest, cost_class: CostClass) -> RequiresUpgrade:
        capacity = self._ledger.capacity(request.tier, cost_class)
        if capacity == 0:
            reason = UpgradeReason.PREMIUM_FEATURE_REQUIRED
        elif request.tier is Tier.PRO:
            reason = UpgradeReason.TIER_LIMIT_REACHED
        elif cost_class is CostClass.PREMIUM:
            reason = UpgradeReason.INSUFFICIENT_PREMIUM_CREDITS
        else:
            reason = UpgradeReason.INSUFFICIENT_BUDGET_CREDITS

        decision = RequiresUpgrade(
            reason=reason,
            cost_class=cost_class,
            required=1,
            remaining=self._ledger.remaining(request.user_id, request.tier, cost_class),
            tier=request.tier,
            resets_at=self._ledger.next_reset(),
        )
        logger.info(
            "Upgrade required",
            extra={
                "request_id": request.request_id,
                "reason": reason.value,
                "cost_class": cost_class.value,
                "remaining": decision.remaining,
            },
        )
        return decision

    def _failed(
        self,
        kind: Optional[ErrorKind],
        message: Optional[str],
        attempts: List[ProviderAttempt],
        cancelled: bool = False,
    ) -> Failed:
        if kind is None:
            kind = attempts[-1].error_kind if attempts else ErrorKind.UNKNOWN
        if message is None:
            tried = ", ".join(f"{a.provider_id.value}: {a.error_kind.value}" for a in attempts)
            message = f"All providers failed ({tried})" if tried else "No provider could be tried"
        decision = Failed(
            error=AggregatedError(
                error_kind=kind,
                message=message,
                attempts=list(attempts),
                cancelled=cancelled,
            )
        )
        logger.warning(
            "Request failed",
            extra={"error_kind": kind.value, "attempts": len(attempts), "cancelled": cancelled},
        )
        return decision

    def _record(
        self,
        request: EditRequest,
        decision: RoutingDecision,
        attempts: List[ProviderAttempt],
        charged: int,
        started: float,
    ) -> None:
        if self._tracker is None:
            return
        event = RoutingEvent(
            request_id=request.request_id,
            user_id=request.user_id,
            task=request.task.value,
            tier=request.tier.value,
            quality=request.quality.value,
            outcome=decision.kind,
            attempts=len(attempts),
            credits_charged=charged,
            latency_ms=int((self._clock() - started) * 1000),
        )
        if isinstance(decision, Routed):
            event.provider_id = decision.provider_id.value
            event.cost_class = decision.cost_class.value
            event.cache_hit = decision.cache_hit
        elif isinstance(decision, RequiresUpgrade):
            event.cost_class = decision.cost_class.value
            event.upgrade_reason = decision.reason.value
        else:
            event.error_kind = decision.error_kind.value
        self._tracker.log_event(event)


def build_engine(
    settings: Optional[Settings] = None,
    credentials: Optional[CredentialStore] = None,
    tracker: Optional[EventTracker] = None,
) -> RoutingEngine:
    """Wire the default registry, ledger and cache into an engine."""
    settings = settings or get_settings()
    return RoutingEngine(
        registry=build_default_registry(credentials, settings),
        ledger=UsageTracker(settings.credits),
        cache=ResultCache(settings.cache),
        settings=settings.routing,
        tracker=tracker,
    )
