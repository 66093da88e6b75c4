"""Tests for the on-device enhancement backend."""

import io

import pytest
from PIL import Image

from photoroute.exceptions import ErrorKind, ProviderError
from photoroute.models.edit import CostClass, EditOptions, EditTask, ImageSize, ProviderID
from photoroute.providers.local import LocalEnhanceProvider


@pytest.fixture
def provider() -> LocalEnhanceProvider:
    return LocalEnhanceProvider()


def _names(steps):
    return [name for name, _ in steps]


class TestPlanAdjustments:
    """Tests for on-device adjustment planning."""

    def test_dark_image_is_brightened(self, provider) -> None:
        steps = provider.plan_adjustments(Image.new("RGB", (8, 8), (20, 20, 20)), None)
        assert ("brightness", 1.25) in steps

    def test_bright_image_is_toned_down(self, provider) -> None:
        steps = provider.plan_adjustments(Image.new("RGB", (8, 8), (240, 240, 240)), None)
        assert ("brightness", 0.9) in steps

    def test_midtone_image_keeps_exposure(self, provider) -> None:
        steps = provider.plan_adjustments(Image.new("RGB", (8, 8), (128, 128, 128)), None)
        assert "brightness" not in _names(steps)

    def test_prompt_keywords_steer_colour(self, provider) -> None:
        image = Image.new("RGB", (8, 8), (128, 128, 128))
        assert ("color", 1.35) in provider.plan_adjustments(image, "make it VIBRANT")
        assert ("color", 0.9) in provider.plan_adjustments(image, "keep it natural")
        assert ("color", 1.1) in provider.plan_adjustments(image, "")

    def test_noise_keyword_adds_denoise(self, provider) -> None:
        image = Image.new("RGB", (8, 8), (128, 128, 128))
        assert "denoise" in _names(provider.plan_adjustments(image, "reduce the grain"))
        assert "denoise" not in _names(provider.plan_adjustments(image, "brighten"))

    def test_always_ends_with_sharpen(self, provider) -> None:
        steps = provider.plan_adjustments(Image.new("RGB", (8, 8)), None)
        assert _names(steps)[-1] == "sharpen"
        assert "autocontrast" in _names(steps)


class TestLocalEdit:
    """Tests for LocalEnhanceProvider.edit."""

    def test_jpeg_in_jpeg_out(self, provider, jpeg_bytes) -> None:
        result = provider.edit(jpeg_bytes, EditTask.SIMPLE_ENHANCE, EditOptions())
        output = Image.open(io.BytesIO(result.image))
        assert output.format == "JPEG"
        assert output.size == (64, 48)
        assert result.provider_id is ProviderID.ON_DEVICE
        assert result.cost_class is CostClass.FREE_LOCAL
        assert result.metadata["format"] == "JPEG"
        assert result.metadata["adjustments"][-1] == "sharpen"

    def test_alpha_is_preserved(self, provider, png_rgba_bytes) -> None:
        result = provider.edit(png_rgba_bytes, EditTask.SIMPLE_ENHANCE, EditOptions())
        output = Image.open(io.BytesIO(result.image))
        assert output.format == "PNG"
        assert output.mode == "RGBA"
        assert output.getpixel((0, 0))[3] == 128

    def test_target_size(self, provider, jpeg_bytes) -> None:
        options = EditOptions(target_size=ImageSize(width=20, height=10))
        result = provider.edit(jpeg_bytes, EditTask.SIMPLE_ENHANCE, options)
        assert Image.open(io.BytesIO(result.image)).size == (20, 10)
        assert result.metadata["image_size"] == "20x10"

    def test_other_tasks_not_supported(self, provider, jpeg_bytes) -> None:
        with pytest.raises(ProviderError) as exc_info:
            provider.edit(jpeg_bytes, EditTask.BG_REMOVE, EditOptions())
        assert exc_info.value.kind is ErrorKind.NOT_SUPPORTED

    def test_garbage_input(self, provider) -> None:
        with pytest.raises(ProviderError) as exc_info:
            provider.edit(b"nope", EditTask.SIMPLE_ENHANCE, EditOptions())
        assert exc_info.value.kind is ErrorKind.INVALID_INPUT

    def test_always_configured(self, provider) -> None:
        provider.validate_configuration()
        assert provider.is_available()
        assert provider.configuration_token() == "local"
