"""
RetryOrchestrator: drives sequential extraction attempts over one image.

The first attempt goes out on the untouched photo.  Only when an attempt
fails or comes back with low/none confidence is the weak-image enhancement
applied (once), after which the remaining prompt variants are tried on the
enhanced image.  The loop stops at the first high-confidence attempt;
otherwise the ConsensusEngine reconciles everything that was collected.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import date
from typing import List, Sequence

from extractors.base_extractor import BaseExtractor, ExtractionAttempt
from extractors.consensus import CombinedExtractionResult, ConsensusEngine
from extractors.prompts import PromptVariant, resolve_prompts
from imaging.enhancer import WEAK_IMAGE_CONFIG, ReceiptEnhancer
from imaging.quality import ImageStats, OCRReadiness, analyze_image
from imaging.utils import to_data_url

from .errors import DecodeError

logger = logging.getLogger(__name__)

DEFAULT_MAX_RETRIES = 3


@dataclass
class RetryResult:
    final_result: CombinedExtractionResult
    attempts: List[ExtractionAttempt]
    best_attempt: ExtractionAttempt | None = None
    stats: ImageStats | None = None
    readiness: OCRReadiness | None = None
    enhanced: bool = False
    cancelled: bool = False
    enhancement_steps: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.final_result.success

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "final_result": self.final_result.to_dict(),
            "attempts": [a.to_dict() for a in self.attempts],
            "best_attempt": self.best_attempt.prompt_name if self.best_attempt else None,
            "stats": self.stats.to_dict() if self.stats else None,
            "readiness": self.readiness.to_dict() if self.readiness else None,
            "enhanced": self.enhanced,
            "enhancement_steps": self.enhancement_steps,
            "cancelled": self.cancelled,
        }


class RetryOrchestrator:
    """
    Args:
        extractor: model backend used for every attempt.
        prompts: prompt variants (or their names) in the order they are tried.
        max_retries: upper bound on model calls, capped at the number of prompts.
        consensus: engine used when no attempt reaches high confidence.
        enable_smart_fallback: enhance the image after a weak first attempt.
        allow_aggressive_enhancement: let the enhancer exceed its compression cap.
    """

    def __init__(
        self,
        extractor: BaseExtractor,
        prompts: Sequence[PromptVariant | str] | None = None,
        max_retries: int = DEFAULT_MAX_RETRIES,
        consensus: ConsensusEngine | None = None,
        enable_smart_fallback: bool = True,
        allow_aggressive_enhancement: bool = False,
        enhancer: ReceiptEnhancer | None = None,
    ):
        self.extractor = extractor
        self.prompts = self._resolve(prompts)
        self.max_retries = max(1, min(int(max_retries), len(self.prompts)))
        self.consensus = consensus or ConsensusEngine()
        self.enable_smart_fallback = enable_smart_fallback
        self.allow_aggressive_enhancement = allow_aggressive_enhancement
        self.enhancer = enhancer or ReceiptEnhancer(WEAK_IMAGE_CONFIG)

    @staticmethod
    def _resolve(prompts) -> List[PromptVariant]:
        if not prompts:
            return resolve_prompts()
        return [p if isinstance(p, PromptVariant) else resolve_prompts([p])[0] for p in prompts]

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def extract_with_retry(
        self,
        image: bytes,
        reference_date: date | None = None,
        cancel_event: threading.Event | None = None,
    ) -> RetryResult:
        stats, readiness = analyze_image(image)
        logger.info(
            "OCR readiness %s (%.0f) issues=%s", readiness.level, readiness.score, list(readiness.issues)
        )

        image_url = to_data_url(image)
        attempts: List[ExtractionAttempt] = []
        enhanced = False
        enhancement_tried = False
        enhancement_steps: List[str] = []
        cancelled = False
        high_attempt = None

        for i, prompt in enumerate(self.prompts[: self.max_retries], start=1):
            if cancel_event is not None and cancel_event.is_set():
                logger.info("Extraction cancelled before attempt %d", i)
                cancelled = True
                break

            attempt = self.extractor.extract(image_url, prompt, reference_date=reference_date)
            attempts.append(attempt)

            if attempt.success and attempt.confidence == "high":
                high_attempt = attempt
                break

            weak = not attempt.success or attempt.confidence in ("low", "none")
            if weak and self.enable_smart_fallback and not enhancement_tried:
                enhancement_tried = True
                new_url, enhancement_steps = self._enhance(image)
                if new_url is not None:
                    image_url = new_url
                    enhanced = True

        if high_attempt is not None:
            final = CombinedExtractionResult.from_attempt(high_attempt)
        elif attempts:
            final = self.consensus.combine(attempts)
        else:
            final = CombinedExtractionResult(
                prompt_name="none",
                temperature=0.0,
                success=False,
                error="Extraction cancelled before any attempt",
                error_type="Cancelled",
            )

        successes = [a for a in attempts if a.success]
        best = self.consensus.rank(successes)[0] if successes else None

        return RetryResult(
            final_result=final,
            attempts=attempts,
            best_attempt=best,
            stats=stats,
            readiness=readiness,
            enhanced=enhanced,
            cancelled=cancelled,
            enhancement_steps=enhancement_steps,
        )

    def _enhance(self, image: bytes) -> tuple[str | None, List[str]]:
        try:
            result = self.enhancer.enhance(image, allow_aggressive=self.allow_aggressive_enhancement)
        except DecodeError as exc:
            logger.warning("Smart fallback skipped, image not decodable: %s", exc)
            return None, []
        if not result.was_processed:
            logger.info("Smart fallback produced no processed image; retrying on the original")
            return None, list(result.applied_steps)
        logger.info("Smart fallback: retrying on enhanced image (%s)", ", ".join(result.applied_steps))
        return result.base64, list(result.applied_steps)
