"""
imaging.enhancer — Receipt image enhancement before model extraction.

The pipeline order is fixed::

    orientation -> grayscale -> denoise -> contrast_normalization
                -> sharpen -> compression

Denoising always precedes sharpening and sharpening is a single pass.
Each step that actually runs is recorded by name in
``EnhancementResult.applied_steps``.

Re-compression is bounded: the output may not be more than
``max_compression_percent`` smaller than the input unless the caller passes
``allow_aggressive=True``.  The enhancer first raises JPEG quality, then
tries lossless PNG, and as a last resort returns the input unprocessed.
"""

from __future__ import annotations

import base64
import logging
import time
from dataclasses import dataclass, field
from typing import Dict, Tuple

import cv2
import numpy as np
from PIL import ImageOps

from .quality import ImageStats, OCRReadiness, image_stats, ocr_readiness
from .utils import encode_jpeg, encode_png, open_image, to_gray_u8

logger = logging.getLogger(__name__)

STEP_ORDER = (
    "orientation",
    "grayscale",
    "denoise",
    "contrast_normalization",
    "sharpen",
    "compression",
)


@dataclass(frozen=True)
class EnhancementConfig:
    name: str = "optimal"
    enable_processing: bool = False
    quality: int = 92
    max_compression_percent: float = 10.0
    quality_step: int = 2
    grayscale: bool = True
    denoise_kernel: int = 3
    normalize: bool = True
    sharpen_amount: float = 1.2
    # step triggers, measured on the input image
    noise_threshold: float = 15.0
    contrast_threshold: float = 60.0
    sharpness_threshold: float = 70.0


OPTIMAL_CONFIG = EnhancementConfig()

WEAK_IMAGE_CONFIG = EnhancementConfig(
    name="weak_image",
    enable_processing=True,
    quality=95,
    sharpen_amount=1.5,
    noise_threshold=10.0,
    contrast_threshold=70.0,
    sharpness_threshold=80.0,
)


@dataclass(frozen=True)
class EnhancementResult:
    buffer: bytes = field(repr=False)
    base64: str = field(repr=False)         # data URL, ready for the model
    original_size: int
    final_size: int
    compression_percent: float
    was_processed: bool
    applied_steps: Tuple[str, ...]
    ocr_readiness: OCRReadiness
    quality_improvement: Dict[str, float]
    processing_time_ms: float
    final_quality: int | None = None        # None when PNG or passthrough
    compression_warning: str | None = None

    def to_dict(self) -> dict:
        return {
            "original_size": self.original_size,
            "final_size": self.final_size,
            "compression_percent": round(self.compression_percent, 2),
            "was_processed": self.was_processed,
            "applied_steps": list(self.applied_steps),
            "ocr_readiness": self.ocr_readiness.to_dict(),
            "quality_improvement": {k: round(v, 2) for k, v in self.quality_improvement.items()},
            "processing_time_ms": round(self.processing_time_ms, 1),
            "final_quality": self.final_quality,
            "compression_warning": self.compression_warning,
        }


def _compression_percent(original_size: int, final_size: int) -> float:
    if original_size <= 0:
        return 0.0
    return max(0.0, (original_size - final_size) / original_size * 100.0)


def _mime(buffer: bytes) -> str:
    return "image/png" if buffer[:8] == b"\x89PNG\r\n\x1a\n" else "image/jpeg"


class ReceiptEnhancer:
    """Applies an :class:`EnhancementConfig` to raw receipt bytes."""

    def __init__(self, config: EnhancementConfig = OPTIMAL_CONFIG):
        self.config = config

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def enhance(
        self,
        data: bytes,
        config: EnhancementConfig | None = None,
        allow_aggressive: bool = False,
    ) -> EnhancementResult:
        """Enhance ``data``. Raises DecodeError if the buffer is not an image."""
        cfg = config or self.config
        started = time.perf_counter()

        img = open_image(data)
        original_size = len(data)
        steps: list[str] = []

        if cfg.enable_processing and self._has_rotation(img):
            img = ImageOps.exif_transpose(img)
            steps.append("orientation")
        arr = np.array(img.convert("RGB"), dtype=np.uint8)

        before = image_stats(arr)
        if cfg.enable_processing:
            arr = self._process(arr, before, cfg, steps)

        buffer, quality, warning = self._compress(arr, data, cfg, allow_aggressive)
        if buffer is data:
            # nothing survived the size cap; hand back the input untouched
            steps = []
            after_arr = np.array(open_image(data).convert("RGB"), dtype=np.uint8)
        else:
            steps.append("compression")
            after_arr = arr

        after = image_stats(after_arr)
        readiness = ocr_readiness(after)
        final_size = len(buffer)
        elapsed_ms = (time.perf_counter() - started) * 1000.0

        result = EnhancementResult(
            buffer=buffer,
            base64=f"data:{_mime(buffer)};base64,{base64.b64encode(buffer).decode('ascii')}",
            original_size=original_size,
            final_size=final_size,
            compression_percent=_compression_percent(original_size, final_size),
            was_processed=bool(steps) and any(s != "compression" for s in steps),
            applied_steps=tuple(steps),
            ocr_readiness=readiness,
            quality_improvement=self._improvement(before, after),
            processing_time_ms=elapsed_ms,
            final_quality=quality,
            compression_warning=warning,
        )
        logger.info(
            "Enhanced image with %s profile: steps=%s size %d->%d (%.1f%%) readiness=%s",
            cfg.name, list(result.applied_steps), original_size, final_size,
            result.compression_percent, readiness.level,
        )
        return result

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    @staticmethod
    def _has_rotation(img) -> bool:
        try:
            orientation = img.getexif().get(0x0112, 1)
        except (AttributeError, ValueError):
            return False
        return orientation not in (None, 1)

    def _process(
        self,
        arr: np.ndarray,
        stats: ImageStats,
        cfg: EnhancementConfig,
        steps: list[str],
    ) -> np.ndarray:
        if cfg.grayscale:
            arr = to_gray_u8(arr)
            steps.append("grayscale")

        if stats.noise_level > cfg.noise_threshold and cfg.denoise_kernel >= 3:
            kernel = cfg.denoise_kernel if cfg.denoise_kernel % 2 else cfg.denoise_kernel + 1
            arr = cv2.medianBlur(arr, kernel)
            steps.append("denoise")

        if cfg.normalize and stats.contrast < cfg.contrast_threshold:
            arr = self._stretch_contrast(arr)
            steps.append("contrast_normalization")

        if cfg.sharpen_amount > 0 and stats.sharpness < cfg.sharpness_threshold:
            blurred = cv2.GaussianBlur(arr, (0, 0), 1.0)
            arr = cv2.addWeighted(arr, 1.0 + cfg.sharpen_amount, blurred, -cfg.sharpen_amount, 0)
            steps.append("sharpen")

        return arr

    @staticmethod
    def _stretch_contrast(arr: np.ndarray, low_pct: float = 1.0, high_pct: float = 99.0) -> np.ndarray:
        lo, hi = np.percentile(arr, [low_pct, high_pct])
        if hi - lo < 1.0:
            return arr
        out = (arr.astype(np.float32) - lo) * (255.0 / (hi - lo))
        return np.clip(out, 0, 255).astype(np.uint8)

    def _compress(
        self,
        arr: np.ndarray,
        original: bytes,
        cfg: EnhancementConfig,
        allow_aggressive: bool,
    ) -> Tuple[bytes, int | None, str | None]:
        quality = max(1, min(100, cfg.quality))
        buffer = encode_jpeg(arr, quality)
        pct = _compression_percent(len(original), len(buffer))
        if pct <= cfg.max_compression_percent:
            return buffer, quality, None

        if allow_aggressive:
            return buffer, quality, (
                f"Compression {pct:.1f}% exceeds the {cfg.max_compression_percent:.0f}% cap "
                "(aggressive pass requested)"
            )

        while quality < 100:
            quality = min(100, quality + cfg.quality_step)
            buffer = encode_jpeg(arr, quality)
            if _compression_percent(len(original), len(buffer)) <= cfg.max_compression_percent:
                return buffer, quality, None

        png = encode_png(arr)
        if _compression_percent(len(original), len(png)) <= cfg.max_compression_percent:
            return png, None, None

        logger.warning(
            "No encoding of the %s output stays within the %.0f%% compression cap; "
            "returning the original image",
            cfg.name, cfg.max_compression_percent,
        )
        return original, None, "Enhancement discarded: output would exceed the compression cap"

    @staticmethod
    def _improvement(before: ImageStats, after: ImageStats) -> Dict[str, float]:
        return {
            "contrast": after.contrast - before.contrast,
            "sharpness": after.sharpness - before.sharpness,
            "noise_reduction": before.noise_level - after.noise_level,
        }


# ---------------------------------------------------------------------------
# Convenience helpers
# ---------------------------------------------------------------------------

def enhance_receipt_image(data: bytes, allow_aggressive: bool = False) -> EnhancementResult:
    return ReceiptEnhancer(OPTIMAL_CONFIG).enhance(data, allow_aggressive=allow_aggressive)


def enhance_weak_receipt_image(data: bytes, allow_aggressive: bool = False) -> EnhancementResult:
    return ReceiptEnhancer(WEAK_IMAGE_CONFIG).enhance(data, allow_aggressive=allow_aggressive)


def select_profile(readiness: OCRReadiness) -> EnhancementConfig:
    """Weak-image profile for poor/acceptable images, pass-through otherwise."""
    if readiness.level in ("poor", "acceptable"):
        return WEAK_IMAGE_CONFIG
    return OPTIMAL_CONFIG
