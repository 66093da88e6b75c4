"""Routing engine, candidate policy, task detection and decision types."""

from photoroute.routing.decisions import (
    AggregatedError,
    Failed,
    ProviderAttempt,
    RequiresUpgrade,
    Routed,
    RoutingDecision,
    UpgradeReason,
)
from photoroute.routing.engine import CandidatePreview, RoutingEngine, build_engine
from photoroute.routing.policy import TIE_BREAK_ORDER, ProviderAvailability, order_candidates
from photoroute.routing.task_detector import (
    EditTaskDetector,
    TaskDetection,
    request_from_prompt,
)

__all__ = [
    "AggregatedError",
    "CandidatePreview",
    "EditTaskDetector",
    "Failed",
    "ProviderAttempt",
    "ProviderAvailability",
    "RequiresUpgrade",
    "Routed",
    "RoutingDecision",
    "RoutingEngine",
    "TIE_BREAK_ORDER",
    "TaskDetection",
    "UpgradeReason",
    "build_engine",
    "order_candidates",
    "request_from_prompt",
]
