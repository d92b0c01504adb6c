"""
Discrepancy alerts.

An alert is due whenever a verification is not a clean, confident match.
Amount-only discrepancies below ``min_amount_difference`` are treated as
rounding noise and do not alert.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List

from .matcher import is_confidence_sufficient
from .models import BalanceVerificationResult, VerificationContext

logger = logging.getLogger(__name__)

MIN_AMOUNT_DIFFERENCE = 1.0


@dataclass(frozen=True)
class DiscrepancyDetails:
    branch_id: str | None
    branch_name: str | None
    employee_name: str | None
    date: str | None
    entered_amount: float
    extracted_amount: float | None
    difference: float | None
    is_amount_matched: bool
    entered_date: str | None
    extracted_date: str | None
    is_date_matched: bool
    confidence: str
    message: str
    warnings: List[str] = field(default_factory=list)
    sections: List[dict] = field(default_factory=list)
    image_url: str | None = None

    def to_dict(self) -> dict:
        return {
            "branch_id": self.branch_id,
            "branch_name": self.branch_name,
            "employee_name": self.employee_name,
            "date": self.date,
            "entered_amount": self.entered_amount,
            "extracted_amount": self.extracted_amount,
            "difference": self.difference,
            "is_amount_matched": self.is_amount_matched,
            "entered_date": self.entered_date,
            "extracted_date": self.extracted_date,
            "is_date_matched": self.is_date_matched,
            "confidence": self.confidence,
            "message": self.message,
            "warnings": list(self.warnings),
            "sections": list(self.sections),
            "image_url": self.image_url,
        }


def should_send_alert(
    result: BalanceVerificationResult,
    min_amount_difference: float = MIN_AMOUNT_DIFFERENCE,
) -> bool:
    clean = (
        result.is_matched
        and result.is_date_matched
        and is_confidence_sufficient(result.confidence)
    )
    if clean:
        return False

    amount_only = (
        not result.is_matched
        and result.is_date_matched
        and is_confidence_sufficient(result.confidence)
    )
    if amount_only and result.difference is not None and result.difference < min_amount_difference:
        return False
    return True


def create_discrepancy_details(
    result: BalanceVerificationResult,
    context: VerificationContext | None = None,
    image_url: str | None = None,
) -> DiscrepancyDetails:
    context = context or VerificationContext()
    return DiscrepancyDetails(
        branch_id=context.branch_id,
        branch_name=context.branch_name,
        employee_name=context.employee_name,
        date=result.expected_date or result.extracted_date,
        entered_amount=result.expected_amount,
        extracted_amount=result.extracted_amount,
        difference=result.difference,
        is_amount_matched=result.is_matched,
        entered_date=result.expected_date,
        extracted_date=result.extracted_date,
        is_date_matched=result.is_date_matched,
        confidence=result.confidence,
        message=result.message,
        warnings=[w.message for w in result.warnings],
        sections=[s.to_dict() for s in (result.sections or ())],
        image_url=image_url,
    )


class Alerter(ABC):
    """Delivery side of discrepancy alerts (e-mail, queue, ...)."""

    @abstractmethod
    def send(self, details: DiscrepancyDetails) -> None:
        ...


class LoggingAlerter(Alerter):
    def send(self, details: DiscrepancyDetails) -> None:
        logger.warning(
            "Discrepancy at branch %s (%s): entered %.2f, extracted %s, date %s/%s, confidence %s",
            details.branch_id, details.branch_name, details.entered_amount,
            details.extracted_amount, details.entered_date, details.extracted_date,
            details.confidence,
        )


class CollectingAlerter(Alerter):
    """Keeps alerts in memory; used by the batch CLI summary."""

    def __init__(self):
        self.sent: List[DiscrepancyDetails] = []

    def send(self, details: DiscrepancyDetails) -> None:
        self.sent.append(details)
