"""Edit request/result data model."""

from photoroute.models.edit import (
    CostClass,
    EditOptions,
    EditQuality,
    EditRequest,
    EditTask,
    ImageSize,
    ProviderID,
    ProviderResult,
    TaskComplexity,
    Tier,
)

__all__ = [
    "CostClass",
    "EditOptions",
    "EditQuality",
    "EditRequest",
    "EditTask",
    "ImageSize",
    "ProviderID",
    "ProviderResult",
    "TaskComplexity",
    "Tier",
]
