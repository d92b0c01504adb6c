"""
BalanceVerifier: the inbound entry point.

    verify(images, expected_amount, expected_date=None, context=None)
        -> BalanceVerificationResult

Every code path ends in a well-formed BalanceVerificationResult; nothing
raised inside the pipeline reaches the caller.  After the result is final
it is written to the audit log and, when :func:`should_send_alert` says
so, handed to the alerter.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import date
from pathlib import Path
from typing import Any, Mapping, Sequence

from extractors import load_extractor_from_config
from extractors.base_extractor import BaseExtractor
from extractors.consensus import ConsensusEngine

from .alerts import Alerter, LoggingAlerter, create_discrepancy_details, should_send_alert
from .audit import AuditLog, JsonlAuditLog, NullAuditLog, build_audit_record
from .config import VerificationSettings
from .errors import ImageUnavailableError, ReferenceExpiredError
from .image_source import ImageResolver
from .matcher import (
    amounts_match,
    dates_match,
    determine_confidence,
    sections_consistent,
)
from .models import BalanceVerificationResult, ImageInput, VerificationContext
from .normalizer import normalize_date, parse_amount, parse_iso_date
from .ocr_warnings import generate_warnings
from .retry import RetryOrchestrator

logger = logging.getLogger(__name__)


def as_image_input(image: Any) -> ImageInput:
    """Accept ImageInput, raw bytes, a URL/path/key string or a mapping."""
    if isinstance(image, ImageInput):
        return image
    if isinstance(image, (bytes, bytearray, str)):
        return ImageInput(url_or_bytes=image)
    if isinstance(image, Mapping):
        ref = image.get("url_or_bytes") or image.get("url") or image.get("bytes") or image.get("key")
        return ImageInput(
            url_or_bytes=ref,
            key=image.get("key"),
            uploaded_at=image.get("uploaded_at") or image.get("uploadedAt"),
        )
    raise TypeError(f"Unsupported image reference: {type(image).__name__}")


class BalanceVerifier:
    """
    Verifies a settlement receipt photo against an operator-entered amount.

    Args:
        extractor: vision-model backend.
        settings: tolerances, retry policy and alert thresholds.
        resolver: turns image references into bytes.
        audit_log: receives one record per verification.
        alerter: receives discrepancy details.
    """

    def __init__(
        self,
        extractor: BaseExtractor,
        settings: VerificationSettings | None = None,
        resolver: ImageResolver | None = None,
        audit_log: AuditLog | None = None,
        alerter: Alerter | None = None,
        orchestrator: RetryOrchestrator | None = None,
    ):
        self.settings = settings or VerificationSettings()
        self.extractor = extractor
        self.resolver = resolver or ImageResolver()
        self.audit_log = audit_log or NullAuditLog()
        self.alerter = alerter or LoggingAlerter()
        self.orchestrator = orchestrator or RetryOrchestrator(
            extractor,
            prompts=self.settings.prompt_order,
            max_retries=self.settings.max_retries,
            consensus=ConsensusEngine(self.settings.variance_threshold),
            enable_smart_fallback=self.settings.enable_smart_fallback,
            allow_aggressive_enhancement=self.settings.allow_aggressive_enhancement,
        )

    @classmethod
    def from_config(
        cls,
        settings_path: str | Path | None = None,
        extractor_config_path: str | Path = "configs/extractor.yaml",
        **kwargs,
    ) -> "BalanceVerifier":
        settings = VerificationSettings.from_yaml(settings_path)
        audit_log = kwargs.pop("audit_log", None)
        if audit_log is None and settings.audit_log_path:
            audit_log = JsonlAuditLog(settings.audit_log_path)
        return cls(
            load_extractor_from_config(extractor_config_path),
            settings=settings,
            audit_log=audit_log,
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def verify(
        self,
        images: Sequence[Any] | None,
        expected_amount: float,
        expected_date: str | date | None = None,
        context: VerificationContext | None = None,
        cancel_event: threading.Event | None = None,
    ) -> BalanceVerificationResult:
        started = time.perf_counter()
        raw_amount = expected_amount
        expected_amount = parse_amount(raw_amount)
        expected_iso = normalize_date(expected_date) if expected_date else None

        if expected_amount is None:
            logger.warning("Rejecting unparseable expected amount %r", raw_amount)
            result = BalanceVerificationResult.failure(
                0.0,
                f"Invalid expected amount: {raw_amount!r}",
                expected_date=expected_iso,
                processing_time_ms=self._elapsed(started),
            )
            return self._finish(result, context, error="invalid expected amount")

        if not images:
            result = BalanceVerificationResult.failure(
                expected_amount,
                "No receipt images were supplied for verification",
                expected_date=expected_iso,
            )
            return self._finish(result, context, no_image=True)

        if expected_amount == 0:
            result = BalanceVerificationResult(
                success=True,
                is_matched=True,
                is_date_matched=True,
                extracted_amount=0.0,
                expected_amount=0.0,
                difference=0.0,
                extracted_date=None,
                expected_date=expected_iso,
                confidence="high",
                message="No network amount to verify",
                processing_time_ms=self._elapsed(started),
            )
            return self._finish(result, context)

        image_key = None
        error = None
        try:
            image = as_image_input(images[0])
            image_key = image.key
            try:
                data = self.resolver.resolve(image)
            except (ReferenceExpiredError, ImageUnavailableError) as exc:
                logger.warning("Could not resolve receipt image: %s", exc)
                error = str(exc)
                result = BalanceVerificationResult.failure(
                    expected_amount,
                    f"The receipt image could not be retrieved: {exc}",
                    expected_date=expected_iso,
                    processing_time_ms=self._elapsed(started),
                )
            else:
                if expected_iso is None and image.uploaded_at:
                    expected_iso = normalize_date(image.uploaded_at)
                result = self._verify_bytes(data, expected_amount, expected_iso, started, cancel_event)

        except Exception as exc:
            logger.exception("Verification failed unexpectedly")
            error = f"{type(exc).__name__}: {exc}"
            result = BalanceVerificationResult.failure(
                expected_amount,
                f"Verification failed: {exc}",
                expected_date=expected_iso,
                processing_time_ms=self._elapsed(started),
            )

        # audit and alerting run once the verdict is final
        return self._finish(result, context, image_key=image_key, error=error)

    # ------------------------------------------------------------------
    # Core
    # ------------------------------------------------------------------

    def _verify_bytes(
        self,
        data: bytes,
        expected_amount: float,
        expected_date: str | None,
        started: float,
        cancel_event: threading.Event | None,
    ) -> BalanceVerificationResult:
        s = self.settings
        reference = parse_iso_date(expected_date) or date.today()
        retry = self.orchestrator.extract_with_retry(data, reference_date=reference, cancel_event=cancel_event)
        final = retry.final_result
        attempt_count = len(retry.attempts)

        if not final.success or final.grand_total is None:
            if retry.cancelled and not retry.attempts:
                message = "Verification was cancelled before the receipt was read"
            else:
                message = "Could not read the amount from the receipt image"
                if final.error:
                    message += f" ({final.error})"
            warnings = generate_warnings(
                final, expected_amount, expected_date, False, False, "none",
                limits=s.amount_limits, known_sections=s.known_sections,
            )
            return BalanceVerificationResult.failure(
                expected_amount,
                message,
                expected_date=expected_date,
                warnings=tuple(warnings),
                processing_time_ms=self._elapsed(started),
                attempt_count=attempt_count,
            )

        extracted = round(final.grand_total, 2)
        difference = round(abs(extracted - expected_amount), 2)
        is_matched = amounts_match(
            extracted, expected_amount,
            tolerance=s.amount_tolerance_percentage,
            graduated=s.use_graduated_tolerance,
        )
        if expected_date:
            is_date_matched = dates_match(final.extracted_date, expected_date, s.date_tolerance_days)
        else:
            is_date_matched = True

        confidence = determine_confidence(
            final.confidence,
            is_matched,
            is_date_matched,
            sections_consistent(final.sections, final.grand_total),
        )
        warnings = generate_warnings(
            final, expected_amount, expected_date, is_matched, is_date_matched, confidence,
            limits=s.amount_limits, known_sections=s.known_sections,
        )

        return BalanceVerificationResult(
            success=True,
            is_matched=is_matched,
            is_date_matched=is_date_matched,
            extracted_amount=extracted,
            expected_amount=expected_amount,
            difference=difference,
            extracted_date=final.extracted_date,
            expected_date=expected_date,
            confidence=confidence,
            message=self._message(
                is_matched, is_date_matched, extracted, expected_amount, difference,
                final.extracted_date, expected_date,
            ),
            warnings=tuple(warnings),
            sections=tuple(final.sections) if final.sections else None,
            processing_time_ms=self._elapsed(started),
            attempt_count=attempt_count,
        )

    @staticmethod
    def _message(
        is_matched: bool,
        is_date_matched: bool,
        extracted: float,
        expected: float,
        difference: float,
        extracted_date: str | None,
        expected_date: str | None,
    ) -> str:
        if is_matched and difference == 0:
            parts = ["Amount matches the receipt exactly"]
        elif is_matched:
            parts = [f"Amount matches within tolerance (difference {difference:.2f} SAR)"]
        else:
            parts = [
                f"Amount does not match: entered {expected:.2f} SAR, "
                f"receipt shows {extracted:.2f} SAR (difference {difference:.2f} SAR)"
            ]
        if expected_date and not is_date_matched:
            parts.append(
                f"date does not match: receipt {extracted_date or 'unreadable'}, expected {expected_date}"
            )
        return "; ".join(parts)

    # ------------------------------------------------------------------
    # Collaborators
    # ------------------------------------------------------------------

    def _finish(
        self,
        result: BalanceVerificationResult,
        context: VerificationContext | None,
        image_key: str | None = None,
        no_image: bool = False,
        error: str | None = None,
    ) -> BalanceVerificationResult:
        self.audit_log.record(
            build_audit_record(result, context, image_key=image_key, no_image=no_image, error=error)
        )
        if should_send_alert(result, self.settings.min_amount_difference):
            details = create_discrepancy_details(result, context, image_url=image_key)
            try:
                self.alerter.send(details)
            except Exception:
                logger.exception("Failed to send discrepancy alert")
        logger.info(
            "Verification %s: matched=%s date_matched=%s confidence=%s extracted=%s expected=%.2f",
            "ok" if result.success else "failed", result.is_matched, result.is_date_matched,
            result.confidence, result.extracted_amount, result.expected_amount,
        )
        return result

    @staticmethod
    def _elapsed(started: float) -> float:
        return (time.perf_counter() - started) * 1000.0
