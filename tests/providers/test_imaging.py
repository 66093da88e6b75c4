"""Tests for image payload helpers."""

import io

import pytest
from PIL import Image

from photoroute.exceptions import ErrorKind, ProviderError
from photoroute.models.edit import ImageSize
from photoroute.providers.imaging import (
    decode_image,
    encode_image,
    image_size,
    normalized_thumbnail,
    prepare_image,
)


def _noise_jpeg(width: int, height: int) -> bytes:
    noise = Image.effect_noise((width, height), 120).convert("RGB")
    return encode_image(noise, fmt="JPEG", quality=95)


def _open(data: bytes) -> Image.Image:
    return Image.open(io.BytesIO(data))


class TestDecode:
    """Tests for image decoding."""

    def test_decode_valid(self, jpeg_bytes: bytes) -> None:
        image = decode_image(jpeg_bytes)
        assert image.size == (64, 48)

    def test_decode_garbage_is_invalid_input(self) -> None:
        with pytest.raises(ProviderError) as exc_info:
            decode_image(b"definitely not an image")
        assert exc_info.value.kind is ErrorKind.INVALID_INPUT

    def test_oversized_pixel_count_is_invalid_input(self, jpeg_bytes, monkeypatch) -> None:
        monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
        with pytest.raises(ProviderError) as exc_info:
            decode_image(jpeg_bytes)
        assert exc_info.value.kind is ErrorKind.INVALID_INPUT

    def test_image_size(self, jpeg_bytes: bytes) -> None:
        assert image_size(jpeg_bytes) == ImageSize(width=64, height=48)


class TestPrepareImage:
    """Tests for vendor payload preparation."""

    def test_small_image_keeps_dimensions(self, jpeg_bytes: bytes) -> None:
        out = prepare_image(jpeg_bytes, max_dimension=1024, max_bytes=1_000_000)
        assert _open(out).size == (64, 48)

    def test_downscales_to_max_dimension(self, image_factory) -> None:
        big = image_factory(size=(2000, 1000))
        out = prepare_image(big, max_dimension=500, max_bytes=10_000_000)
        assert _open(out).size == (500, 250)

    def test_recompresses_to_fit_byte_limit(self) -> None:
        source = _noise_jpeg(800, 800)
        limit = len(source) // 3
        out = prepare_image(source, max_dimension=4096, max_bytes=limit)
        assert len(out) <= limit

    def test_png_output_format(self, png_rgba_bytes: bytes) -> None:
        out = prepare_image(png_rgba_bytes, max_dimension=1024, max_bytes=1_000_000, fmt="PNG")
        assert _open(out).format == "PNG"

    def test_target_size_applied(self, jpeg_bytes: bytes) -> None:
        out = prepare_image(
            jpeg_bytes,
            max_dimension=1024,
            max_bytes=1_000_000,
            target_size=ImageSize(width=32, height=32),
        )
        assert _open(out).size == (32, 32)

    def test_unshrinkable_payload_is_invalid_input(self) -> None:
        with pytest.raises(ProviderError) as exc_info:
            prepare_image(_noise_jpeg(300, 300), max_dimension=4096, max_bytes=10)
        assert exc_info.value.kind is ErrorKind.INVALID_INPUT


class TestNormalizedThumbnail:
    """Tests for the fingerprint thumbnail."""

    def test_same_pixels_different_container(self, image_factory) -> None:
        png = image_factory(fmt="PNG")
        bmp = image_factory(fmt="BMP")
        assert png != bmp
        assert normalized_thumbnail(png) == normalized_thumbnail(bmp)

    def test_different_resolution_differs(self, image_factory) -> None:
        small = image_factory(size=(64, 48), fmt="PNG")
        large = image_factory(size=(128, 96), fmt="PNG")
        assert normalized_thumbnail(small) != normalized_thumbnail(large)

    def test_different_pixels_differ(self, image_factory) -> None:
        a = image_factory(color=(0, 0, 0), fmt="PNG")
        b = image_factory(color=(255, 255, 255), fmt="PNG")
        assert normalized_thumbnail(a) != normalized_thumbnail(b)
