"""
Shared fixtures for PhotoRoute tests: sample images, a scriptable fake
backend, and an engine wired to in-memory collaborators.
"""

import io
import threading
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

import pytest
from PIL import Image

from photoroute.cache.results import ResultCache
from photoroute.config import CacheSettings, CreditSettings, RoutingSettings
from photoroute.exceptions import ErrorKind, ProviderError
from photoroute.ledger.usage import UsageTracker
from photoroute.models.edit import (
    CostClass,
    EditOptions,
    EditTask,
    ProviderID,
    ProviderResult,
)
from photoroute.providers.base import ImageEditProvider
from photoroute.providers.registry import ProviderRegistry
from photoroute.routing.engine import RoutingEngine

FIXED_NOW = datetime(2024, 5, 15, 12, 0, tzinfo=timezone.utc)


def make_image(
    size=(64, 48),
    color=(120, 90, 60),
    fmt: str = "JPEG",
    mode: str = "RGB",
) -> bytes:
    buf = io.BytesIO()
    Image.new(mode, size, color).save(buf, format=fmt)
    return buf.getvalue()


class FakeProvider(ImageEditProvider):
    """Backend whose outcomes are scripted per call.

    ``outcomes`` is consumed one entry per ``edit()`` call: an
    :class:`ErrorKind` or :class:`ProviderError` is raised, anything else
    (or an exhausted script) succeeds.
    """

    def __init__(
        self,
        provider_id: ProviderID,
        cost_class: CostClass,
        tasks: Iterable[EditTask],
        primary: Iterable[EditTask] = (),
        outcomes: Optional[Sequence[object]] = None,
        config_error: Optional[ErrorKind] = None,
    ) -> None:
        self.provider_id = provider_id
        self.cost_class = cost_class
        self.supported_tasks = frozenset(tasks)
        self.primary_tasks = frozenset(primary)
        self.outcomes: List[object] = list(outcomes or [])
        self.config_error = config_error
        self.token = "token-1"
        self.calls: List[EditTask] = []
        self.validations = 0
        self.on_edit = None

    def edit(self, image: bytes, task: EditTask, options: EditOptions) -> ProviderResult:
        self._require_support(task)
        self.calls.append(task)
        if self.on_edit is not None:
            self.on_edit()
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, ErrorKind):
                raise ProviderError(outcome)
            if isinstance(outcome, ProviderError):
                raise outcome
        return ProviderResult(
            image=f"edited-by-{self.provider_id.value}".encode(),
            provider_id=self.provider_id,
            cost_class=self.cost_class,
        )

    def validate_configuration(self) -> None:
        self.validations += 1
        if self.config_error is not None:
            raise ProviderError(self.config_error)

    def configuration_token(self) -> Optional[str]:
        return self.token


def standard_fakes() -> List[FakeProvider]:
    """Fakes mirroring the production capability matrix."""
    return [
        FakeProvider(
            ProviderID.ON_DEVICE,
            CostClass.FREE_LOCAL,
            [EditTask.SIMPLE_ENHANCE],
            primary=[EditTask.SIMPLE_ENHANCE],
        ),
        FakeProvider(
            ProviderID.CLIPDROP,
            CostClass.BUDGET,
            [EditTask.BG_REMOVE, EditTask.CLEANUP],
            primary=[EditTask.BG_REMOVE, EditTask.CLEANUP],
        ),
        FakeProvider(
            ProviderID.FAL_FLUX,
            CostClass.BUDGET,
            [EditTask.SIMPLE_ENHANCE, EditTask.CLEANUP, EditTask.RESTYLE, EditTask.LOCAL_OBJECT_EDIT],
            primary=[EditTask.RESTYLE, EditTask.LOCAL_OBJECT_EDIT],
        ),
        FakeProvider(
            ProviderID.OPENAI,
            CostClass.BUDGET,
            [EditTask.SIMPLE_ENHANCE, EditTask.CLEANUP, EditTask.RESTYLE, EditTask.LOCAL_OBJECT_EDIT],
        ),
        FakeProvider(
            ProviderID.GEMINI,
            CostClass.PREMIUM,
            [
                EditTask.SIMPLE_ENHANCE,
                EditTask.BG_REMOVE,
                EditTask.RESTYLE,
                EditTask.LOCAL_OBJECT_EDIT,
                EditTask.SUBJECT_CONSISTENCY,
                EditTask.MULTI_IMAGE_FUSION,
            ],
            primary=[EditTask.SUBJECT_CONSISTENCY, EditTask.MULTI_IMAGE_FUSION],
        ),
    ]


class RecordingWait:
    """Backoff waiter that records delays instead of sleeping."""

    def __init__(self, cancel_on_call: Optional[threading.Event] = None) -> None:
        self.delays: List[float] = []
        self._cancel = cancel_on_call

    def __call__(self, seconds: float, cancel_event: Optional[threading.Event]) -> bool:
        self.delays.append(seconds)
        if self._cancel is not None:
            self._cancel.set()
        return cancel_event is not None and cancel_event.is_set()


@pytest.fixture
def jpeg_bytes() -> bytes:
    return make_image()


@pytest.fixture
def png_rgba_bytes() -> bytes:
    return make_image(fmt="PNG", mode="RGBA", color=(10, 200, 30, 128))


@pytest.fixture
def fakes() -> List[FakeProvider]:
    return standard_fakes()


@pytest.fixture
def fake_by_id(fakes):
    return {p.provider_id: p for p in fakes}


@pytest.fixture
def registry(fakes) -> ProviderRegistry:
    reg = ProviderRegistry()
    for provider in fakes:
        reg.add(provider)
    return reg


@pytest.fixture
def credits() -> CreditSettings:
    return CreditSettings(free_budget=3, free_premium=1, pro_budget=10, pro_premium=5)


@pytest.fixture
def ledger(credits) -> UsageTracker:
    return UsageTracker(credits, clock=lambda: FIXED_NOW)


@pytest.fixture
def cache() -> ResultCache:
    return ResultCache(CacheSettings(ttl_seconds=3600, max_entries=50, max_bytes=10_000_000))


@pytest.fixture
def waiter() -> RecordingWait:
    return RecordingWait()


@pytest.fixture
def engine(registry, ledger, cache, waiter) -> RoutingEngine:
    return RoutingEngine(
        registry=registry,
        ledger=ledger,
        cache=cache,
        settings=RoutingSettings(max_retries=2, retry_backoff_seconds=1.0, max_retry_after_seconds=30.0),
        wait=waiter,
    )


@pytest.fixture
def image_factory():
    return make_image


@pytest.fixture
def make_fake():
    return FakeProvider


@pytest.fixture
def waiter_factory():
    return RecordingWait
