"""
imaging.quality — Image statistics and OCR-readiness scoring.

Provides two functions:

* :func:`image_stats` — Global descriptors of a decoded receipt photo
  (brightness, contrast, Laplacian sharpness and a median-residual noise
  estimate).
* :func:`analyze_image` — Decodes raw bytes and derives an
  :class:`OCRReadiness` verdict from the stats.  Never raises: unreadable
  buffers get conservative default stats so the pipeline can still try
  the model.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Tuple

import cv2
import numpy as np

from verification.errors import DecodeError

from .utils import load_rgb, to_gray_u8

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Readiness thresholds
# ---------------------------------------------------------------------------

DARK_BRIGHTNESS = 80.0          # mean below this => "dark"
LOW_CONTRAST_STDEV = 40.0       # grayscale stdev below this => "low-contrast"
EXCELLENT_BRIGHTNESS = 200.0    # bright AND ...
EXCELLENT_STDEV = 60.0          # ... contrasty => excellent, no processing

WEIGHTS = {"contrast": 0.3, "sharpness": 0.3, "brightness": 0.2, "noise": 0.2}
ISSUE_PENALTY = 10.0
GOOD_SCORE = 70.0
ACCEPTABLE_SCORE = 50.0

# Used when the buffer cannot be decoded.
DEFAULT_STATS = {
    "contrast": 50.0,
    "brightness": 128.0,
    "sharpness": 50.0,
    "noise_level": 25.0,
}


@dataclass(frozen=True)
class ImageStats:
    width: int
    height: int
    contrast: float         # 0-100
    brightness: float       # 0-255
    sharpness: float        # 0-100
    noise_level: float      # 0-100
    stdev: float = 0.0      # raw grayscale standard deviation (0-127.5)

    def to_dict(self) -> dict:
        return {
            "width": self.width,
            "height": self.height,
            "contrast": round(self.contrast, 2),
            "brightness": round(self.brightness, 2),
            "sharpness": round(self.sharpness, 2),
            "noise_level": round(self.noise_level, 2),
            "stdev": round(self.stdev, 2),
        }


@dataclass(frozen=True)
class OCRReadiness:
    score: float
    level: str              # excellent | good | acceptable | poor
    issues: Tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {"score": round(self.score, 1), "level": self.level, "issues": list(self.issues)}


def image_stats(rgb: np.ndarray) -> ImageStats:
    """Compute global image statistics.

    Parameters
    ----------
    rgb : np.ndarray
        Decoded image, ``(H, W, 3)`` RGB or ``(H, W)`` grayscale, ``uint8``.

    Returns
    -------
    ImageStats
        * ``brightness`` — Mean grayscale intensity (0-255).
        * ``contrast`` — Grayscale standard deviation scaled to 0-100.
        * ``sharpness`` — Laplacian variance / 10, capped at 100.
        * ``noise_level`` — Mean absolute residual against a 3x3 median
          filter, x4, capped at 100.
    """
    gray = to_gray_u8(rgb)
    g = gray.astype(np.float32)
    h, w = gray.shape[:2]

    brightness = float(np.mean(g))
    stdev = float(np.std(g))
    contrast = min(100.0, stdev / 127.5 * 100.0)

    lap_var = float(cv2.Laplacian(gray, cv2.CV_64F).var())
    sharpness = min(100.0, lap_var / 10.0)

    residual = np.abs(g - cv2.medianBlur(gray, 3).astype(np.float32))
    noise_level = min(100.0, float(residual.mean()) * 4.0)

    return ImageStats(
        width=int(w),
        height=int(h),
        contrast=contrast,
        brightness=brightness,
        sharpness=sharpness,
        noise_level=noise_level,
        stdev=stdev,
    )


def _brightness_score(brightness: float) -> float:
    # peaks for a white thermal slip (~200), falls off both ways
    return max(0.0, 100.0 - abs(brightness - 200.0) / 2.0)


def ocr_readiness(stats: ImageStats) -> OCRReadiness:
    """Derive the readiness verdict from :class:`ImageStats`."""
    issues = []
    if stats.brightness < DARK_BRIGHTNESS:
        issues.append("dark")
    if stats.stdev < LOW_CONTRAST_STDEV:
        issues.append("low-contrast")

    composite = (
        WEIGHTS["contrast"] * stats.contrast
        + WEIGHTS["sharpness"] * stats.sharpness
        + WEIGHTS["brightness"] * _brightness_score(stats.brightness)
        + WEIGHTS["noise"] * (100.0 - stats.noise_level)
    )

    if stats.brightness > EXCELLENT_BRIGHTNESS and stats.stdev > EXCELLENT_STDEV:
        return OCRReadiness(score=max(composite, 85.0), level="excellent", issues=tuple(issues))

    score = max(0.0, min(100.0, composite - ISSUE_PENALTY * len(issues)))
    if score >= GOOD_SCORE:
        level = "good"
    elif score >= ACCEPTABLE_SCORE:
        level = "acceptable"
    else:
        level = "poor"
    return OCRReadiness(score=score, level=level, issues=tuple(issues))


def analyze_image(data: bytes) -> Tuple[ImageStats, OCRReadiness]:
    """Decode ``data`` and return its stats and OCR readiness."""
    try:
        rgb = load_rgb(data)
    except DecodeError as exc:
        logger.warning("Image analysis fell back to defaults: %s", exc)
        stats = ImageStats(width=0, height=0, stdev=DEFAULT_STATS["contrast"] / 100.0 * 127.5, **DEFAULT_STATS)
        readiness = ocr_readiness(stats)
        return stats, OCRReadiness(
            score=readiness.score,
            level=readiness.level,
            issues=readiness.issues + ("undecodable",),
        )
    stats = image_stats(rgb)
    return stats, ocr_readiness(stats)


def ocr_readiness_suggestions(readiness: OCRReadiness) -> list[str]:
    """Human-readable hints for the operator, one per detected issue."""
    hints = {
        "dark": "Retake the photo in better light or turn on the flash.",
        "low-contrast": "The print looks faded; photograph it flat against a dark surface.",
        "undecodable": "The file is not a readable image; upload a JPEG or PNG photo.",
    }
    out = [hints[i] for i in readiness.issues if i in hints]
    if readiness.level == "poor" and not out:
        out.append("Hold the camera steady and fill the frame with the receipt.")
    return out
