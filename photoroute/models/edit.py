"""
Core edit data model for PhotoRoute.

Leaf types shared by providers, the credit ledger, the result cache and
the routing engine: edit tasks and their complexity, cost classes,
provider identifiers, subscription tiers, and the request/result
payloads that flow through a routing decision.
"""

import uuid
from enum import Enum, IntEnum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class TaskComplexity(IntEnum):
    """Complexity rank of an edit task, used as a routing heuristic."""

    SIMPLE = 1
    MODERATE = 2
    COMPLEX = 3
    ADVANCED = 4


class EditTask(str, Enum):
    """Enumerated edit intents."""

    SIMPLE_ENHANCE = "simple_enhance"
    BG_REMOVE = "bg_remove"
    CLEANUP = "cleanup"
    RESTYLE = "restyle"
    LOCAL_OBJECT_EDIT = "local_object_edit"
    SUBJECT_CONSISTENCY = "subject_consistency"
    MULTI_IMAGE_FUSION = "multi_image_fusion"

    @property
    def complexity(self) -> TaskComplexity:
        return _TASK_COMPLEXITY[self]

    @property
    def display_name(self) -> str:
        return _TASK_NAMES[self]


_TASK_COMPLEXITY = {
    EditTask.SIMPLE_ENHANCE: TaskComplexity.SIMPLE,
    EditTask.BG_REMOVE: TaskComplexity.MODERATE,
    EditTask.CLEANUP: TaskComplexity.MODERATE,
    EditTask.RESTYLE: TaskComplexity.COMPLEX,
    EditTask.LOCAL_OBJECT_EDIT: TaskComplexity.COMPLEX,
    EditTask.SUBJECT_CONSISTENCY: TaskComplexity.ADVANCED,
    EditTask.MULTI_IMAGE_FUSION: TaskComplexity.ADVANCED,
}

_TASK_NAMES = {
    EditTask.SIMPLE_ENHANCE: "Simple Enhancement",
    EditTask.BG_REMOVE: "Background Removal",
    EditTask.CLEANUP: "Cleanup",
    EditTask.RESTYLE: "Restyle",
    EditTask.LOCAL_OBJECT_EDIT: "Local Object Edit",
    EditTask.SUBJECT_CONSISTENCY: "Subject Consistency",
    EditTask.MULTI_IMAGE_FUSION: "Multi-Image Fusion",
}


class CostClass(str, Enum):
    """Monetary tier of invoking a provider, totally ordered by weight."""

    FREE_LOCAL = "free_local"
    BUDGET = "budget"
    PREMIUM = "premium"

    @property
    def weight(self) -> int:
        return _COST_WEIGHTS[self]

    @property
    def consumes_credit(self) -> bool:
        return self is not CostClass.FREE_LOCAL

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, CostClass):
            return NotImplemented
        return self.weight < other.weight

    def __le__(self, other: object) -> bool:
        if not isinstance(other, CostClass):
            return NotImplemented
        return self.weight <= other.weight

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, CostClass):
            return NotImplemented
        return self.weight > other.weight

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, CostClass):
            return NotImplemented
        return self.weight >= other.weight


_COST_WEIGHTS = {
    CostClass.FREE_LOCAL: 0,
    CostClass.BUDGET: 1,
    CostClass.PREMIUM: 5,
}


class ProviderID(str, Enum):
    """Stable identifier of each backend.  Values are never reused."""

    ON_DEVICE = "on_device"
    CLIPDROP = "clipdrop"
    FAL_FLUX = "fal_flux"
    OPENAI = "openai"
    GEMINI = "gemini"

    @property
    def display_name(self) -> str:
        return _PROVIDER_NAMES[self]


_PROVIDER_NAMES = {
    ProviderID.ON_DEVICE: "On-Device",
    ProviderID.CLIPDROP: "Clipdrop",
    ProviderID.FAL_FLUX: "Fal.ai FLUX",
    ProviderID.OPENAI: "OpenAI Images",
    ProviderID.GEMINI: "Gemini Flash",
}


class Tier(str, Enum):
    """User subscription tier."""

    FREE = "free"
    PRO = "pro"


class EditQuality(str, Enum):
    """Quality hint attached to a request.

    ``ULTRA`` is the explicit "highest quality" request: the engine then
    orders candidates from the most to the least capable cost class.
    """

    DRAFT = "draft"
    STANDARD = "standard"
    HIGH = "high"
    ULTRA = "ultra"

    @property
    def level(self) -> float:
        """Numeric quality in ``[0, 1]`` handed to provider adapters."""
        return _QUALITY_LEVELS[self]

    @property
    def prefers_highest(self) -> bool:
        return self is EditQuality.ULTRA


_QUALITY_LEVELS = {
    EditQuality.DRAFT: 0.6,
    EditQuality.STANDARD: 0.8,
    EditQuality.HIGH: 0.9,
    EditQuality.ULTRA: 1.0,
}


class ImageSize(BaseModel):
    """Pixel dimensions of an image."""

    model_config = ConfigDict(frozen=True)

    width: int = Field(gt=0)
    height: int = Field(gt=0)

    @property
    def megapixels(self) -> float:
        return (self.width * self.height) / (1024 * 1024)

    def __str__(self) -> str:
        return f"{self.width}x{self.height}"


class EditOptions(BaseModel):
    """Provider-facing options derived from an :class:`EditRequest`.

    Attributes:
        prompt: Free-text instruction, if any.
        target_size: Requested output dimensions.
        quality: Numeric quality between 0.0 and 1.0 (clamped).
        allow_watermark: Whether vendor watermarks are acceptable.
        preserve_metadata: Keep source metadata where the backend allows.
    """

    model_config = ConfigDict(frozen=True)

    prompt: Optional[str] = None
    target_size: Optional[ImageSize] = None
    quality: float = 0.8
    allow_watermark: bool = True
    preserve_metadata: bool = True

    @field_validator("quality")
    @classmethod
    def clamp_quality(cls, v: float) -> float:
        """Clamp quality into ``[0, 1]``."""
        return max(0.0, min(1.0, float(v)))


class EditRequest(BaseModel):
    """An immutable edit request coming from the capture/UI layer.

    Attributes:
        image: Encoded source image bytes (JPEG, PNG, ...).
        prompt: Free-text instruction (may be empty).
        task: Edit intent.
        quality: Quality hint.
        target_size: Optional output dimensions.
        tier: Requesting user's subscription tier.
        user_id: Opaque user key from the identity collaborator.
        allow_watermark: Whether vendor watermarks are acceptable.
        request_id: Identifier for tracing.
    """

    model_config = ConfigDict(frozen=True)

    image: bytes = Field(repr=False)
    prompt: str = ""
    task: EditTask = EditTask.SIMPLE_ENHANCE
    quality: EditQuality = EditQuality.STANDARD
    target_size: Optional[ImageSize] = None
    tier: Tier = Tier.FREE
    user_id: str = "anonymous"
    allow_watermark: bool = True
    request_id: str = Field(default_factory=lambda: uuid.uuid4().hex[:12])

    @field_validator("image")
    @classmethod
    def image_must_not_be_empty(cls, v: bytes) -> bytes:
        """Validate that image content is present."""
        if not v:
            raise ValueError("Image must not be empty")
        return v

    @property
    def options(self) -> EditOptions:
        """Options handed to provider adapters."""
        prompt = self.prompt.strip()
        return EditOptions(
            prompt=prompt or None,
            target_size=self.target_size,
            quality=self.quality.level,
            allow_watermark=self.allow_watermark,
        )


class ProviderResult(BaseModel):
    """Output of one successful provider dispatch.

    Attributes:
        image: Encoded output image bytes.
        provider_id: Backend that produced the image.
        cost_class: Cost class charged for the work.
        processing_time: Wall-clock seconds spent in the provider.
        metadata: Free-form provider metadata.
    """

    # JSON form carries the image as base64 (persisted cache entries)
    model_config = ConfigDict(ser_json_bytes="base64", val_json_bytes="base64")

    image: bytes = Field(repr=False)
    provider_id: ProviderID
    cost_class: CostClass
    processing_time: float = 0.0
    metadata: Dict[str, Any] = Field(default_factory=dict)

    @property
    def size_bytes(self) -> int:
        return len(self.image)
