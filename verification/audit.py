"""
Audit log collaborator: one record per verification call, written after
the result is final.  Audit failures are logged and never fail the
verification itself.
"""

from __future__ import annotations

import json
import logging
import threading
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import List

from .models import BalanceVerificationResult, VerificationContext
from .ocr_warnings import has_critical

logger = logging.getLogger(__name__)

AUDIT_STATUSES = (
    "success",
    "amount_mismatch",
    "date_mismatch",
    "both_mismatch",
    "low_confidence",
    "extraction_failed",
    "no_image",
    "error",
)


@dataclass
class AuditRecord:
    status: str
    success: bool
    expected_amount: float
    extracted_amount: float | None
    difference: float | None
    expected_date: str | None
    extracted_date: str | None
    is_matched: bool
    is_date_matched: bool
    confidence: str
    message: str
    processing_time_ms: float
    attempt_count: int
    warnings: List[str] = field(default_factory=list)
    has_critical_warning: bool = False
    branch_id: str | None = None
    branch_name: str | None = None
    employee_name: str | None = None
    request_id: str | None = None
    image_key: str | None = None
    error: str | None = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        return asdict(self)


def derive_status(
    result: BalanceVerificationResult,
    no_image: bool = False,
    error: str | None = None,
) -> str:
    if no_image:
        return "no_image"
    if error:
        return "error"
    if not result.success:
        return "extraction_failed"
    if not result.is_matched and not result.is_date_matched:
        return "both_mismatch"
    if not result.is_matched:
        return "amount_mismatch"
    if not result.is_date_matched:
        return "date_mismatch"
    if result.confidence in ("low", "none"):
        return "low_confidence"
    return "success"


def build_audit_record(
    result: BalanceVerificationResult,
    context: VerificationContext | None = None,
    image_key: str | None = None,
    no_image: bool = False,
    error: str | None = None,
) -> AuditRecord:
    context = context or VerificationContext()
    return AuditRecord(
        status=derive_status(result, no_image=no_image, error=error),
        success=result.success,
        expected_amount=result.expected_amount,
        extracted_amount=result.extracted_amount,
        difference=result.difference,
        expected_date=result.expected_date,
        extracted_date=result.extracted_date,
        is_matched=result.is_matched,
        is_date_matched=result.is_date_matched,
        confidence=result.confidence,
        message=result.message,
        processing_time_ms=round(result.processing_time_ms, 1),
        attempt_count=result.attempt_count,
        warnings=[w.type for w in result.warnings],
        has_critical_warning=has_critical(result.warnings),
        branch_id=context.branch_id,
        branch_name=context.branch_name,
        employee_name=context.employee_name,
        request_id=context.request_id,
        image_key=image_key,
        error=error,
    )


class AuditLog(ABC):
    """Sink for audit records."""

    def record(self, record: AuditRecord) -> None:
        """Write ``record``; failures are logged, not raised."""
        try:
            self._write(record)
        except Exception as exc:
            logger.exception("Failed to write audit record (%s): %s", record.status, exc)

    @abstractmethod
    def _write(self, record: AuditRecord) -> None:
        ...


class NullAuditLog(AuditLog):
    def _write(self, record: AuditRecord) -> None:
        logger.debug("Audit (discarded): %s", record.status)


class JsonlAuditLog(AuditLog):
    """Appends one JSON line per verification to ``path``."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self._lock = threading.Lock()

    def _write(self, record: AuditRecord) -> None:
        line = json.dumps(record.to_dict(), ensure_ascii=False)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(line + "\n")

    def read_all(self) -> List[dict]:
        if not self.path.exists():
            return []
        with open(self.path, encoding="utf-8") as f:
            return [json.loads(line) for line in f if line.strip()]
