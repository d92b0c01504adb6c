"""
Warning generator for verification results.

Turns the combined extraction and the match outcome into typed,
severity-ranked OCRWarning objects with operator-facing suggestions.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterable, List, Sequence

KNOWN_PAYMENT_SECTIONS = (
    "mada",
    "VISA",
    "MasterCard",
    "DISCOVER",
    "Maestro",
    "GCCNET",
    "JN ONPAY",
    "AMEX",
    "UnionPay",
)

SEVERITY_ORDER = {"critical": 0, "warning": 1, "info": 2}

# A single network above this total suggests other sections were cut off.
PARTIAL_READ_MIN_AMOUNT = 1000.0


@dataclass(frozen=True)
class AmountLimits:
    minimum: float = 0.0
    maximum: float = 10_000_000.0
    suspicious: float = 1_000_000.0


@dataclass(frozen=True)
class OCRWarning:
    type: str
    severity: str           # info | warning | critical
    message: str
    suggestion: str

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "severity": self.severity,
            "message": self.message,
            "suggestion": self.suggestion,
        }


@dataclass
class SectionsAnalysis:
    is_valid: bool = False
    total_amount: float = 0.0
    active_sections: List = field(default_factory=list)
    inactive_sections: List[str] = field(default_factory=list)
    unknown_sections: List[str] = field(default_factory=list)
    host_terminal_mismatches: List[str] = field(default_factory=list)
    zero_count_sections: List[str] = field(default_factory=list)
    issues: List[str] = field(default_factory=list)
    confidence: int = 100


def is_known_section(name: str, known: Iterable[str] = KNOWN_PAYMENT_SECTIONS) -> bool:
    key = name.strip().lower()
    return any(key == k.lower() for k in known)


def analyze_sections(sections: Sequence, known: Iterable[str] = KNOWN_PAYMENT_SECTIONS) -> SectionsAnalysis:
    """Section-level sanity checks: activity, unknown names, host/terminal agreement, counts."""
    known = tuple(known)
    result = SectionsAnalysis()
    if not sections:
        result.issues.append("No payment sections were extracted")
        result.confidence = 0
        return result

    for s in sections:
        if s.terminal_total > 0 or s.host_total > 0:
            result.active_sections.append(s)
            result.total_amount += s.total
        else:
            result.inactive_sections.append(s.name)

    if not result.active_sections:
        result.issues.append("All sections report no transactions")
        result.confidence = 20
        return result

    for s in result.active_sections:
        if not is_known_section(s.name, known):
            result.unknown_sections.append(s.name)
        if abs(s.host_total - s.terminal_total) > 0.01:
            result.host_terminal_mismatches.append(s.name)
            result.issues.append(
                f"{s.name}: host total {s.host_total:.2f} differs from terminal total {s.terminal_total:.2f}"
            )
        if s.count == 0:
            result.zero_count_sections.append(s.name)
            result.issues.append(f"{s.name}: amount without a transaction count")

    if result.unknown_sections:
        result.issues.append(f"Unknown sections: {', '.join(result.unknown_sections)}")

    result.confidence -= 10 if result.unknown_sections else 0
    result.confidence -= 15 * len(result.host_terminal_mismatches)
    result.confidence -= 5 * len(result.zero_count_sections)
    result.confidence = max(0, min(100, result.confidence))
    result.is_valid = True
    return result


# ---------------------------------------------------------------------------
# Warning factories
# ---------------------------------------------------------------------------

def _amount_mismatch(extracted: float | None, expected: float) -> OCRWarning:
    extracted = extracted or 0.0
    diff = abs(extracted - expected)
    pct = diff / expected * 100 if expected else 0.0
    return OCRWarning(
        "amount_mismatch",
        "critical",
        f"Amount mismatch: expected {expected:.2f} SAR, receipt shows {extracted:.2f} SAR "
        f"(difference {diff:.2f} SAR = {pct:.1f}%)",
        "Check the entered network amount against the TOTALS of every section on the receipt.",
    )


def _date_mismatch(extracted: str | None, expected: str | None) -> OCRWarning:
    return OCRWarning(
        "date_mismatch",
        "critical",
        f"Date mismatch: receipt date {extracted or 'unknown'}, expected {expected or 'unspecified'}",
        "Make sure the receipt is from the selected day, or pick the matching date.",
    )


def _low_confidence(level: str) -> OCRWarning:
    return OCRWarning(
        "low_confidence",
        "critical" if level == "none" else "warning",
        "The receipt could not be read" if level == "none" else "Reading confidence is low; figures may be inaccurate",
        "Verify the amounts manually against the physical receipt.",
    )


UNCLEAR_IMAGE = OCRWarning(
    "unclear_image",
    "warning",
    "The image is unclear or of low quality",
    "Upload a sharper photo in good light, without shake, with the receipt flat and uncreased.",
)

NO_DATE = OCRWarning(
    "no_date",
    "warning",
    "The receipt date could not be read",
    "Make sure the date at the top of the receipt is visible and not folded or cut off.",
)

NO_SECTIONS = OCRWarning(
    "no_sections",
    "warning",
    "Payment sections (mada, VISA, ...) could not be identified",
    "Make sure the whole receipt is in the photo with every section visible.",
)


def _out_of_range(amount: float, limits: AmountLimits) -> OCRWarning | None:
    if amount < limits.minimum or amount > limits.maximum:
        return OCRWarning(
            "amount_out_of_range",
            "critical",
            f"Extracted amount {amount:.2f} is outside the plausible range "
            f"{limits.minimum:.0f}-{limits.maximum:.0f}",
            "The reading is almost certainly wrong; check the receipt manually.",
        )
    if amount > limits.suspicious:
        return OCRWarning(
            "amount_out_of_range",
            "warning",
            f"Extracted amount {amount:.2f} is unusually large",
            "Confirm the amount; a misplaced decimal point is the most common cause.",
        )
    return None


# ---------------------------------------------------------------------------
# Generator
# ---------------------------------------------------------------------------

def generate_warnings(
    extraction,
    expected_amount: float,
    expected_date: str | None,
    is_matched: bool,
    is_date_matched: bool,
    confidence: str,
    limits: AmountLimits = AmountLimits(),
    known_sections: Iterable[str] = KNOWN_PAYMENT_SECTIONS,
) -> List[OCRWarning]:
    """Warnings for one verification, most severe first."""
    warnings: List[OCRWarning] = []

    if extraction is None or not extraction.success:
        warnings.append(UNCLEAR_IMAGE)
        warnings.append(_low_confidence("none"))
        return sort_warnings(warnings)

    sections = list(extraction.sections or [])
    amount = extraction.grand_total

    if not is_matched:
        warnings.append(_amount_mismatch(amount, expected_amount))

    if extraction.extracted_date is None:
        warnings.append(NO_DATE)
    elif expected_date and not is_date_matched:
        warnings.append(_date_mismatch(extraction.extracted_date, expected_date))

    if confidence in ("low", "none"):
        warnings.append(UNCLEAR_IMAGE)
        warnings.append(_low_confidence(confidence))

    if amount is not None:
        w = _out_of_range(amount, limits)
        if w is not None:
            warnings.append(w)

    if not sections:
        warnings.append(NO_SECTIONS)
        return sort_warnings(warnings)

    analysis = analyze_sections(sections, known_sections)
    for name in analysis.unknown_sections:
        warnings.append(OCRWarning(
            "unknown_section",
            "warning",
            f"Unknown payment network '{name}'",
            f"Expected one of: {', '.join(known_sections)}. The label may have been misread.",
        ))
    for name in analysis.host_terminal_mismatches:
        s = next(x for x in analysis.active_sections if x.name == name)
        warnings.append(OCRWarning(
            "host_terminal_mismatch",
            "warning",
            f"{name}: host total {s.host_total:.2f} and terminal total {s.terminal_total:.2f} differ",
            "A correctly printed slip has equal host and terminal totals; check the section by hand.",
        ))
    for name in analysis.zero_count_sections:
        warnings.append(OCRWarning(
            "section_count_anomaly",
            "info",
            f"{name} reports an amount but no transaction count",
            "Check the transaction count printed for this section.",
        ))

    if len(analysis.active_sections) == 1 and (amount or 0.0) >= PARTIAL_READ_MIN_AMOUNT:
        warnings.append(OCRWarning(
            "partial_read",
            "info",
            "Only 1 payment section was read",
            "If the receipt has other sections (mada, VISA, MasterCard, ...), make sure they are fully visible.",
        ))

    return sort_warnings(warnings)


def sort_warnings(warnings: List[OCRWarning]) -> List[OCRWarning]:
    return sorted(warnings, key=lambda w: SEVERITY_ORDER.get(w.severity, 3))


def has_critical(warnings: Iterable[OCRWarning]) -> bool:
    return any(w.severity == "critical" for w in warnings)
