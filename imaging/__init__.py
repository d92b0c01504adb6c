"""
imaging — Receipt photo analysis and enhancement.

Modules
-------
quality   Image statistics (brightness, contrast, sharpness, noise) and
          the derived OCR-readiness score.
enhancer  Ordered correction pipeline with bounded re-compression.
utils     Decoding, encoding and data-URL helpers.
"""

from .enhancer import (
    OPTIMAL_CONFIG,
    WEAK_IMAGE_CONFIG,
    EnhancementConfig,
    EnhancementResult,
    ReceiptEnhancer,
    enhance_receipt_image,
    enhance_weak_receipt_image,
    select_profile,
)
from .quality import ImageStats, OCRReadiness, analyze_image, ocr_readiness_suggestions

__all__ = [
    "OPTIMAL_CONFIG",
    "WEAK_IMAGE_CONFIG",
    "EnhancementConfig",
    "EnhancementResult",
    "ReceiptEnhancer",
    "enhance_receipt_image",
    "enhance_weak_receipt_image",
    "select_profile",
    "ImageStats",
    "OCRReadiness",
    "analyze_image",
    "ocr_readiness_suggestions",
]
