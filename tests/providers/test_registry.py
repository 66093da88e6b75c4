"""Tests for ProviderRegistry and the default backend set."""

import pytest

from photoroute.config import Settings
from photoroute.exceptions import ProviderNotFoundError
from photoroute.models.edit import CostClass, EditTask, ProviderID
from photoroute.providers.credentials import StaticCredentialStore
from photoroute.providers.registry import ProviderRegistry, build_default_registry

# task -> providers that support it
CAPABILITIES = {
    EditTask.SIMPLE_ENHANCE: {ProviderID.ON_DEVICE, ProviderID.FAL_FLUX, ProviderID.OPENAI, ProviderID.GEMINI},
    EditTask.BG_REMOVE: {ProviderID.CLIPDROP, ProviderID.GEMINI},
    EditTask.CLEANUP: {ProviderID.CLIPDROP, ProviderID.FAL_FLUX, ProviderID.OPENAI},
    EditTask.RESTYLE: {ProviderID.FAL_FLUX, ProviderID.OPENAI, ProviderID.GEMINI},
    EditTask.LOCAL_OBJECT_EDIT: {ProviderID.FAL_FLUX, ProviderID.OPENAI, ProviderID.GEMINI},
    EditTask.SUBJECT_CONSISTENCY: {ProviderID.GEMINI},
    EditTask.MULTI_IMAGE_FUSION: {ProviderID.GEMINI},
}


@pytest.fixture
def default_registry():
    registry = build_default_registry(StaticCredentialStore(), Settings())
    yield registry
    registry.close()


class TestDefaultRegistry:
    """Tests for the default backend capability matrix."""

    def test_holds_all_five_backends(self, default_registry) -> None:
        assert len(default_registry) == 5
        assert [p.provider_id for p in default_registry.all()] == list(ProviderID)

    @pytest.mark.parametrize("task", list(EditTask))
    def test_capability_matrix(self, default_registry, task) -> None:
        supporting = {p.provider_id for p in default_registry.supporting(task)}
        assert supporting == CAPABILITIES[task]

    def test_cost_classes(self, default_registry) -> None:
        classes = {p.provider_id: p.cost_class for p in default_registry.all()}
        assert classes == {
            ProviderID.ON_DEVICE: CostClass.FREE_LOCAL,
            ProviderID.CLIPDROP: CostClass.BUDGET,
            ProviderID.FAL_FLUX: CostClass.BUDGET,
            ProviderID.OPENAI: CostClass.BUDGET,
            ProviderID.GEMINI: CostClass.PREMIUM,
        }

    def test_to_dict(self, default_registry) -> None:
        data = default_registry.to_dict()
        assert data["count"] == 5
        gemini = next(p for p in data["providers"] if p["id"] == "gemini")
        assert gemini["cost_class"] == "premium"
        assert "subject_consistency" in gemini["primary_tasks"]


class TestProviderRegistry:
    """Tests for ProviderRegistry operations."""

    def test_get_and_contains(self, make_fake) -> None:
        registry = ProviderRegistry()
        fake = make_fake(ProviderID.CLIPDROP, CostClass.BUDGET, [EditTask.BG_REMOVE])
        registry.add(fake)
        assert registry.get(ProviderID.CLIPDROP) is fake
        assert ProviderID.CLIPDROP in registry
        assert ProviderID.GEMINI not in registry

    def test_get_unknown_raises(self) -> None:
        with pytest.raises(ProviderNotFoundError):
            ProviderRegistry().get(ProviderID.GEMINI)

    def test_add_replaces(self, make_fake) -> None:
        registry = ProviderRegistry()
        first = make_fake(ProviderID.OPENAI, CostClass.BUDGET, [EditTask.RESTYLE])
        second = make_fake(ProviderID.OPENAI, CostClass.BUDGET, [EditTask.CLEANUP])
        registry.add(first)
        registry.add(second)
        assert len(registry) == 1
        assert registry.get(ProviderID.OPENAI) is second

    def test_remove(self, make_fake) -> None:
        registry = ProviderRegistry()
        registry.add(make_fake(ProviderID.OPENAI, CostClass.BUDGET, [EditTask.RESTYLE]))
        registry.remove(ProviderID.OPENAI)
        assert len(registry) == 0
        with pytest.raises(ProviderNotFoundError):
            registry.remove(ProviderID.OPENAI)
