from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Tuple

from extractors.base_extractor import PaymentSection

from .ocr_warnings import OCRWarning


@dataclass(frozen=True)
class ImageInput:
    """One uploaded receipt photo: inline bytes, a URL, or a storage key."""

    url_or_bytes: bytes | str
    key: str | None = None
    uploaded_at: datetime | str | None = None


@dataclass(frozen=True)
class VerificationContext:
    """Operator/branch identity carried into audit records and alerts."""

    branch_id: str | None = None
    branch_name: str | None = None
    employee_name: str | None = None
    request_id: str | None = None


@dataclass(frozen=True)
class BalanceVerificationResult:
    """The single externally visible verdict of one verification call."""

    success: bool
    is_matched: bool
    is_date_matched: bool
    extracted_amount: float | None
    expected_amount: float
    difference: float | None
    extracted_date: str | None
    expected_date: str | None
    confidence: str
    message: str
    warnings: Tuple[OCRWarning, ...] = field(default_factory=tuple)
    sections: Tuple[PaymentSection, ...] | None = None
    processing_time_ms: float = 0.0
    attempt_count: int = 0

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "is_matched": self.is_matched,
            "is_date_matched": self.is_date_matched,
            "extracted_amount": self.extracted_amount,
            "expected_amount": self.expected_amount,
            "difference": self.difference,
            "extracted_date": self.extracted_date,
            "expected_date": self.expected_date,
            "confidence": self.confidence,
            "message": self.message,
            "warnings": [w.to_dict() for w in self.warnings],
            "sections": [s.to_dict() for s in self.sections] if self.sections is not None else None,
            "processing_time_ms": round(self.processing_time_ms, 1),
            "attempt_count": self.attempt_count,
        }

    @classmethod
    def failure(
        cls,
        expected_amount: float,
        message: str,
        expected_date: str | None = None,
        warnings: Tuple[OCRWarning, ...] = (),
        processing_time_ms: float = 0.0,
        attempt_count: int = 0,
    ) -> "BalanceVerificationResult":
        return cls(
            success=False,
            is_matched=False,
            is_date_matched=False,
            extracted_amount=None,
            expected_amount=expected_amount,
            difference=None,
            extracted_date=None,
            expected_date=expected_date,
            confidence="none",
            message=message,
            warnings=tuple(warnings),
            processing_time_ms=processing_time_ms,
            attempt_count=attempt_count,
        )
