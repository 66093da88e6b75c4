"""
On-device enhancement backend.

Runs entirely in-process with Pillow: exposure correction driven by the
image's mean luminance, colour and contrast boosts steered by prompt
keywords, optional light denoise, and a final unsharp mask.  Free,
always configured, never touches the network.
"""

import logging
import time
from typing import List, Optional, Tuple

from PIL import Image, ImageEnhance, ImageFilter, ImageOps, ImageStat

from photoroute.models.edit import (
    CostClass,
    EditOptions,
    EditTask,
    ProviderID,
    ProviderResult,
)
from photoroute.providers.base import ImageEditProvider
from photoroute.providers.imaging import decode_image, encode_image

logger = logging.getLogger(__name__)

# Mean luminance (0-255) outside which exposure is corrected
_DARK_THRESHOLD = 85
_BRIGHT_THRESHOLD = 190

_VIVID_KEYWORDS = ("vibrant", "vivid", "colorful", "colourful", "saturat", "pop")
_MUTED_KEYWORDS = ("muted", "subtle", "natural", "desaturat")
_NOISE_KEYWORDS = ("noise", "grain", "denoise", "smooth")


class LocalEnhanceProvider(ImageEditProvider):
    """Free in-process enhancer for ``simple_enhance``."""

    provider_id = ProviderID.ON_DEVICE
    cost_class = CostClass.FREE_LOCAL
    supported_tasks = frozenset({EditTask.SIMPLE_ENHANCE})
    primary_tasks = frozenset({EditTask.SIMPLE_ENHANCE})

    def edit(self, image: bytes, task: EditTask, options: EditOptions) -> ProviderResult:
        self._require_support(task)
        started = time.monotonic()

        source = decode_image(image)
        has_alpha = source.mode in ("RGBA", "LA") or "transparency" in source.info
        working = source.convert("RGBA" if has_alpha else "RGB")
        if options.target_size is not None:
            working = working.resize(
                (options.target_size.width, options.target_size.height),
                Image.Resampling.LANCZOS,
            )

        steps = self.plan_adjustments(working, options.prompt)
        enhanced = self._apply(working, steps, options.quality)

        fmt = "PNG" if has_alpha else "JPEG"
        payload = encode_image(enhanced, fmt=fmt, quality=int(80 + 15 * options.quality))
        elapsed = time.monotonic() - started

        logger.debug(
            "On-device enhancement applied",
            extra={"steps": [name for name, _ in steps], "elapsed": round(elapsed, 3)},
        )
        return ProviderResult(
            image=payload,
            provider_id=self.provider_id,
            cost_class=self.cost_class,
            processing_time=elapsed,
            metadata={
                "adjustments": [name for name, _ in steps],
                "image_size": f"{enhanced.width}x{enhanced.height}",
                "task": task.value,
                "format": fmt,
            },
        )

    def validate_configuration(self) -> None:
        """Always configured; there is no credential or endpoint."""

    def configuration_token(self) -> Optional[str]:
        return "local"

    # ------------------------------------------------------------------
    # Adjustment planning
    # ------------------------------------------------------------------

    @staticmethod
    def plan_adjustments(
        image: Image.Image, prompt: Optional[str]
    ) -> List[Tuple[str, float]]:
        """Choose ``(adjustment, factor)`` steps for an image and prompt."""
        text = (prompt or "").lower()
        luminance = ImageStat.Stat(image.convert("L")).mean[0]
        steps: List[Tuple[str, float]] = []

        if luminance < _DARK_THRESHOLD:
            steps.append(("brightness", 1.25))
        elif luminance > _BRIGHT_THRESHOLD:
            steps.append(("brightness", 0.9))

        steps.append(("autocontrast", 1.0))

        if any(word in text for word in _VIVID_KEYWORDS):
            steps.append(("color", 1.35))
        elif any(word in text for word in _MUTED_KEYWORDS):
            steps.append(("color", 0.9))
        else:
            steps.append(("color", 1.1))

        if any(word in text for word in _NOISE_KEYWORDS):
            steps.append(("denoise", 3))

        steps.append(("sharpen", 1.0))
        return steps

    @staticmethod
    def _apply(
        image: Image.Image, steps: List[Tuple[str, float]], quality: float
    ) -> Image.Image:
        alpha = image.getchannel("A") if image.mode == "RGBA" else None
        result = image.convert("RGB")
        for name, factor in steps:
            if name == "brightness":
                result = ImageEnhance.Brightness(result).enhance(factor)
            elif name == "autocontrast":
                result = ImageOps.autocontrast(result, cutoff=1)
            elif name == "color":
                result = ImageEnhance.Color(result).enhance(factor)
            elif name == "denoise":
                result = result.filter(ImageFilter.MedianFilter(size=int(factor)))
            elif name == "sharpen":
                # Stronger unsharp mask at higher quality
                percent = int(60 + 80 * quality)
                result = result.filter(
                    ImageFilter.UnsharpMask(radius=1.5, percent=percent, threshold=3)
                )
        if alpha is not None:
            result.putalpha(alpha)
        return result
