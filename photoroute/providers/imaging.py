"""
Image payload helpers for provider adapters.

Decoding, vendor-limit enforcement (max dimension and payload size),
recompression, and the normalised thumbnail used by the result cache
fingerprint.  Oversized sources are downscaled/recompressed rather than
rejected.
"""

import io
import logging
from typing import Optional, Tuple

from PIL import Image, ImageOps, UnidentifiedImageError

from photoroute.exceptions import ErrorKind, ProviderError
from photoroute.models.edit import ImageSize

logger = logging.getLogger(__name__)

# JPEG quality steps tried before shrinking dimensions
_JPEG_QUALITY_STEPS = (95, 85, 75, 65, 50)
_MIN_DIMENSION = 64


def decode_image(data: bytes) -> Image.Image:
    """Decode image bytes and apply EXIF orientation.

    Raises:
        ProviderError: ``invalid_input`` if the bytes are not an image or
            exceed Pillow's decompression-bomb pixel limit.
    """
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise ProviderError(
            ErrorKind.INVALID_INPUT, f"Unreadable image data: {exc}"
        ) from exc
    return ImageOps.exif_transpose(image)


def image_size(data: bytes) -> ImageSize:
    """Return the pixel dimensions of encoded image bytes."""
    image = decode_image(data)
    return ImageSize(width=image.width, height=image.height)


def _fit_within(image: Image.Image, max_dimension: int) -> Image.Image:
    if max(image.size) <= max_dimension:
        return image
    scale = max_dimension / max(image.size)
    new_size = (max(1, round(image.width * scale)), max(1, round(image.height * scale)))
    return image.resize(new_size, Image.Resampling.LANCZOS)


def _encode(image: Image.Image, fmt: str, quality: int) -> bytes:
    buf = io.BytesIO()
    if fmt == "JPEG":
        image.convert("RGB").save(buf, format="JPEG", quality=quality, optimize=True)
    else:
        if image.mode not in ("RGB", "RGBA", "L", "LA"):
            image = image.convert("RGBA")
        image.save(buf, format=fmt, optimize=True)
    return buf.getvalue()


def encode_image(image: Image.Image, fmt: str = "JPEG", quality: int = 95) -> bytes:
    """Encode a Pillow image to bytes in the given format."""
    return _encode(image, fmt.upper(), quality)


def prepare_image(
    data: bytes,
    max_dimension: int,
    max_bytes: int,
    fmt: str = "JPEG",
    target_size: Optional[ImageSize] = None,
) -> bytes:
    """Fit an image into a vendor's payload constraints.

    Applies the requested target size, downscales to ``max_dimension``
    (aspect preserved), then lowers JPEG quality and finally halves the
    dimensions until the encoded payload is at most ``max_bytes``.

    Args:
        data: Source image bytes.
        max_dimension: Largest allowed width/height in pixels.
        max_bytes: Largest allowed encoded payload.
        fmt: Output format accepted by the vendor (``JPEG`` or ``PNG``).
        target_size: Requested output dimensions, if any.

    Returns:
        Encoded bytes satisfying both limits.

    Raises:
        ProviderError: ``invalid_input`` if the source cannot be decoded
            or cannot be shrunk below ``max_bytes``.
    """
    fmt = fmt.upper()
    image = decode_image(data)
    original = image.size

    if target_size is not None:
        image = image.resize(
            (target_size.width, target_size.height), Image.Resampling.LANCZOS
        )
    image = _fit_within(image, max_dimension)

    qualities: Tuple[int, ...] = _JPEG_QUALITY_STEPS if fmt == "JPEG" else (100,)
    while True:
        for quality in qualities:
            payload = _encode(image, fmt, quality)
            if len(payload) <= max_bytes:
                if image.size != original or quality != qualities[0]:
                    logger.debug(
                        "Image adjusted to provider limits",
                        extra={
                            "original": f"{original[0]}x{original[1]}",
                            "final": f"{image.width}x{image.height}",
                            "quality": quality,
                            "bytes": len(payload),
                        },
                    )
                return payload
        if max(image.size) <= _MIN_DIMENSION:
            raise ProviderError(
                ErrorKind.INVALID_INPUT,
                f"Image cannot be reduced below {max_bytes} bytes",
            )
        image = _fit_within(image, max(_MIN_DIMENSION, max(image.size) // 2))


def normalized_thumbnail(data: bytes, size: int = 256) -> bytes:
    """Deterministic, format-independent digest input for an image.

    The image is EXIF-transposed, converted to RGB and fitted into a
    ``size`` x ``size`` box; the raw pixels are prefixed with the
    original dimensions so container metadata does not affect the key
    while different resolutions do.
    """
    image = decode_image(data)
    header = f"{image.width}x{image.height}|".encode("ascii")
    thumb = image.convert("RGB")
    thumb.thumbnail((size, size), Image.Resampling.BILINEAR)
    return header + thumb.tobytes()
