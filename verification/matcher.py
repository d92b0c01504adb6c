"""
Matcher & confidence resolver.

Compares normalized extracted values with the operator-entered ones and
maps the outcome onto the four-tier confidence scale.
"""

from __future__ import annotations

from typing import Iterable

from .normalizer import parse_iso_date

AMOUNT_TOLERANCE_PERCENTAGE = 0.02
DATE_TOLERANCE_DAYS = 1

CONFIDENCE_LEVELS = ("high", "medium", "low", "none")
CONFIDENCE_RANK = {"high": 3, "medium": 2, "low": 1, "none": 0}

# (upper bound exclusive, tolerance)
GRADUATED_TOLERANCE_TIERS = (
    (500.0, 0.03),
    (2000.0, 0.025),
    (10000.0, 0.02),
    (float("inf"), 0.01),
)

_CONFIDENCE_KEYWORDS = (
    ("high", ("high", "عالي")),
    ("medium", ("medium", "متوسط")),
    ("low", ("low", "منخفض")),
)


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------

def graduated_tolerance(expected: float) -> float:
    """Tolerance ratio that tightens as the expected amount grows."""
    value = abs(expected)
    for upper, tolerance in GRADUATED_TOLERANCE_TIERS:
        if value < upper:
            return tolerance
    return GRADUATED_TOLERANCE_TIERS[-1][1]


def amounts_match(
    extracted: float | None,
    expected: float,
    tolerance: float = AMOUNT_TOLERANCE_PERCENTAGE,
    graduated: bool = False,
) -> bool:
    """True when ``extracted`` is within the relative tolerance of ``expected``.

    An expected amount of zero means there is nothing to check.
    """
    if expected == 0:
        return True
    if extracted is None:
        return False
    if graduated:
        tolerance = graduated_tolerance(expected)
    # small epsilon so 1019 vs 1000 at 2% is not lost to float rounding
    return abs(extracted - expected) <= abs(expected) * tolerance + 1e-9


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

def dates_match(extracted, expected, tolerance_days: int = DATE_TOLERANCE_DAYS) -> bool:
    """True when both dates parse and lie within ``tolerance_days`` of each other."""
    a = parse_iso_date(extracted)
    b = parse_iso_date(expected)
    if a is None or b is None:
        return False
    return abs((a - b).days) <= tolerance_days


# ---------------------------------------------------------------------------
# Confidence
# ---------------------------------------------------------------------------

def coerce_confidence(raw, amount: float | None) -> str:
    """Map the model's free-form confidence label onto the four tiers.

    A missing amount always yields ``none``; an amount without a usable label
    defaults to ``medium``. English and Arabic labels are recognised.
    """
    if amount is None:
        return "none"
    text = str(raw or "").strip().lower()
    if text == "none":
        return "none"
    for level, keywords in _CONFIDENCE_KEYWORDS:
        if any(k in text for k in keywords):
            return level
    return "medium"


def lower_confidence(level: str, steps: int = 1) -> str:
    rank = max(0, CONFIDENCE_RANK.get(level, 0) - steps)
    return CONFIDENCE_LEVELS[len(CONFIDENCE_LEVELS) - 1 - rank]


def min_confidence(*levels: str) -> str:
    return min(levels, key=lambda lvl: CONFIDENCE_RANK.get(lvl, 0))


def sections_consistent(sections: Iterable, grand_total: float | None) -> bool:
    """Host and terminal totals agree and the sections add up to the grand total."""
    sections = list(sections)
    for s in sections:
        if abs(s.host_total - s.terminal_total) > 0.01:
            return False
    if not sections or grand_total is None:
        return True
    section_sum = sum(max(s.host_total, s.terminal_total) for s in sections)
    return amounts_match(section_sum, grand_total)


def determine_confidence(
    extraction_confidence: str,
    amount_matched: bool,
    date_matched: bool,
    sections_consistent: bool = True,
) -> str:
    """Final confidence tier for a verification.

    Starts from the extraction's own tier and can only go down: section
    inconsistencies cost one tier, and a high-confidence read that disagrees
    on both amount and date drops to medium (likely the wrong slip was
    photographed). Matching values never raise the tier.
    """
    level = extraction_confidence if extraction_confidence in CONFIDENCE_RANK else "none"
    if level in ("none", "low"):
        return level
    if not sections_consistent:
        level = lower_confidence(level)
    if level == "high" and not amount_matched and not date_matched:
        level = "medium"
    return level


def is_confidence_sufficient(level: str, minimum: str = "medium") -> bool:
    return CONFIDENCE_RANK.get(level, 0) >= CONFIDENCE_RANK[minimum]
