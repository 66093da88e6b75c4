"""
Routing decision types.

Every ``route()`` call returns exactly one of :class:`Routed`,
:class:`RequiresUpgrade` or :class:`Failed`.  Each carries enough
structured detail for the UI to render a specific message without
inspecting vendor error bodies.
"""

from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field

from photoroute.exceptions import ErrorKind
from photoroute.models.edit import CostClass, ProviderID, ProviderResult, Tier


class UpgradeReason(str, Enum):
    """Why a request cannot proceed on the user's current plan."""

    INSUFFICIENT_BUDGET_CREDITS = "insufficient_budget_credits"
    INSUFFICIENT_PREMIUM_CREDITS = "insufficient_premium_credits"
    PREMIUM_FEATURE_REQUIRED = "premium_feature_required"
    TIER_LIMIT_REACHED = "tier_limit_reached"


class ProviderAttempt(BaseModel):
    """One failed dispatch to a provider.

    Attributes:
        provider_id: Backend that was called.
        attempt: 1-based attempt number on that backend.
        error_kind: Classified failure.
        message: Diagnostic message (not shown to end users).
        retry_after: Vendor retry hint in seconds, if any.
    """

    provider_id: ProviderID
    attempt: int = Field(ge=1)
    error_kind: ErrorKind
    message: str = ""
    retry_after: Optional[float] = None


class Routed(BaseModel):
    """The request was served, from a provider or from the cache."""

    kind: Literal["routed"] = "routed"
    provider_id: ProviderID
    result: ProviderResult
    cost_class: CostClass
    cache_hit: bool = False
    attempts: List[ProviderAttempt] = Field(default_factory=list)


class RequiresUpgrade(BaseModel):
    """The user lacks credits (or plan) for every capable provider.

    Attributes:
        reason: Upgrade reason for the UI.
        cost_class: Cost class whose credits were missing.
        required: Credits the request needed.
        remaining: Credits the user has left for that class.
        tier: The user's current tier.
        resets_at: When the monthly quota refills.
    """

    kind: Literal["requires_upgrade"] = "requires_upgrade"
    reason: UpgradeReason
    cost_class: CostClass
    required: int = 1
    remaining: int = 0
    tier: Tier
    resets_at: Optional[datetime] = None


class AggregatedError(BaseModel):
    """Summary of why every candidate failed."""

    error_kind: ErrorKind
    message: str
    attempts: List[ProviderAttempt] = Field(default_factory=list)
    cancelled: bool = False

    @property
    def providers_tried(self) -> List[ProviderID]:
        seen: List[ProviderID] = []
        for attempt in self.attempts:
            if attempt.provider_id not in seen:
                seen.append(attempt.provider_id)
        return seen


class Failed(BaseModel):
    """No provider produced a result."""

    kind: Literal["failed"] = "failed"
    error: AggregatedError

    @property
    def error_kind(self) -> ErrorKind:
        return self.error.error_kind

    @property
    def message(self) -> str:
        return self.error.message

    @property
    def attempts(self) -> List[ProviderAttempt]:
        return self.error.attempts

    @property
    def cancelled(self) -> bool:
        return self.error.cancelled


RoutingDecision = Union[Routed, RequiresUpgrade, Failed]
