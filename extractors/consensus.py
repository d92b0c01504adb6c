"""
ConsensusEngine: reconciles several ExtractionAttempt objects into one
CombinedExtractionResult.

=== Confidence-ranked consensus with median fallback ===

1. Only successful attempts with a positive grand total vote on the amount.
2. Attempts are ranked by confidence (high > medium > low > none), ties
   broken by the larger grand total.
3. If the spread of the voting totals (max - min) exceeds
   ``variance_threshold`` x mean, the value is *contested*: the median total
   (upper median for an even count) replaces the top-ranked one, so a single
   hallucinated read cannot win on confidence alone.
4. A contested value keeps only the confidence of the attempts that agree
   with it, and is capped at "medium" unless at least two attempts agree.
5. Sections are merged by name (case-insensitive).  For each name the
   section reporting the larger total wins.
"""

from __future__ import annotations

import logging
import statistics
from dataclasses import dataclass
from typing import Dict, List

from verification.matcher import CONFIDENCE_RANK, amounts_match, min_confidence

from .base_extractor import ExtractionAttempt, PaymentSection

logger = logging.getLogger(__name__)

DEFAULT_VARIANCE_THRESHOLD = 0.1


@dataclass
class CombinedExtractionResult(ExtractionAttempt):
    """An ExtractionAttempt reconciled from one or more attempts."""

    source_attempt_count: int = 0
    used_median: bool = False
    contested: bool = False

    def to_dict(self) -> dict:
        d = super().to_dict()
        d.update({
            "source_attempt_count": self.source_attempt_count,
            "used_median": self.used_median,
            "contested": self.contested,
        })
        return d

    @classmethod
    def from_attempt(cls, attempt: ExtractionAttempt, source_attempt_count: int = 1) -> "CombinedExtractionResult":
        return cls(
            prompt_name=attempt.prompt_name,
            temperature=attempt.temperature,
            sections=list(attempt.sections),
            grand_total=attempt.grand_total,
            extracted_date=attempt.extracted_date,
            confidence=attempt.confidence,
            raw_text=attempt.raw_text,
            success=attempt.success,
            error=attempt.error,
            error_type=attempt.error_type,
            duration_ms=attempt.duration_ms,
            issues=list(attempt.issues),
            source_attempt_count=source_attempt_count,
        )


class ConsensusEngine:
    """
    Combines ExtractionAttempt objects into a CombinedExtractionResult.

    Args:
        variance_threshold: relative spread (of the mean) above which the
            grand total is considered contested.
    """

    def __init__(self, variance_threshold: float = DEFAULT_VARIANCE_THRESHOLD):
        self.variance_threshold = variance_threshold

    def combine(self, attempts: List[ExtractionAttempt]) -> CombinedExtractionResult:
        if not attempts:
            raise ValueError("No extraction attempts provided to ConsensusEngine.")

        successes = [a for a in attempts if a.success]
        if not successes:
            return self._all_failed(attempts)

        voters = [a for a in successes if a.grand_total is not None and a.grand_total > 0]
        if not voters:
            # only "NO TRANSACTIONS"-style zero reads
            best = self.rank(successes)[0]
            combined = CombinedExtractionResult.from_attempt(best, source_attempt_count=len(successes))
            combined.sections = self.merge_sections(successes)
            return combined

        ranked = self.rank(voters)
        top = ranked[0]
        totals = [a.grand_total for a in voters]
        mean = sum(totals) / len(totals)
        spread = max(totals) - min(totals)
        contested = len(voters) > 1 and spread > mean * self.variance_threshold

        if contested:
            chosen_total = statistics.median_high(totals)
            agreeing = [a for a in ranked if amounts_match(a.grand_total, chosen_total)]
            source = agreeing[0]
            confidence = source.confidence
            if len(agreeing) < 2:
                confidence = min_confidence(confidence, "medium")
            logger.info(
                "Contested totals %s (spread %.2f > %.0f%% of mean %.2f); using median %.2f "
                "with %d agreeing attempt(s)",
                totals, spread, self.variance_threshold * 100, mean, chosen_total, len(agreeing),
            )
        else:
            chosen_total = top.grand_total
            source = top
            confidence = top.confidence

        combined = CombinedExtractionResult.from_attempt(source, source_attempt_count=len(voters))
        combined.grand_total = chosen_total
        combined.confidence = confidence
        combined.sections = self.merge_sections(successes)
        combined.used_median = contested
        combined.contested = contested
        combined.duration_ms = sum(a.duration_ms for a in attempts)
        if len(voters) > 1:
            combined.prompt_name = "consensus:" + "+".join(a.prompt_name for a in voters)
        if combined.extracted_date is None:
            combined.extracted_date = next(
                (a.extracted_date for a in ranked if a.extracted_date), None
            )
        return combined

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    @staticmethod
    def rank(attempts: List[ExtractionAttempt]) -> List[ExtractionAttempt]:
        return sorted(
            attempts,
            key=lambda a: (CONFIDENCE_RANK.get(a.confidence, 0), a.grand_total or 0.0),
            reverse=True,
        )

    @staticmethod
    def merge_sections(attempts: List[ExtractionAttempt]) -> List[PaymentSection]:
        """Union of sections across attempts; the larger total wins per name."""
        merged: Dict[str, PaymentSection] = {}
        for a in attempts:
            for s in a.sections:
                key = s.name.strip().lower()
                current = merged.get(key)
                if current is None or s.total > current.total:
                    merged[key] = PaymentSection(s.name, s.host_total, s.terminal_total, s.count)
        return list(merged.values())

    @staticmethod
    def _all_failed(attempts: List[ExtractionAttempt]) -> CombinedExtractionResult:
        last = attempts[-1]
        errors = "; ".join(f"{a.prompt_name}: {a.error}" for a in attempts if a.error)
        return CombinedExtractionResult(
            prompt_name=last.prompt_name,
            temperature=last.temperature,
            confidence="none",
            raw_text=last.raw_text,
            success=False,
            error=errors or "All extraction attempts failed",
            error_type=last.error_type,
            duration_ms=sum(a.duration_ms for a in attempts),
            source_attempt_count=0,
        )
