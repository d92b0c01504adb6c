"""
Normalizer: turns raw strings read off a receipt into typed values.

Two pure entry points:

* :func:`parse_amount` — locale-aware amount parsing (Arabic-Indic digits,
  currency tokens, thousands separators).
* :func:`normalize_date` — multi-format date parsing followed by the
  year-plausibility correction implemented in :func:`correct_year`.
"""

from __future__ import annotations

import re
from datetime import date, datetime, timedelta

# ---------------------------------------------------------------------------
# Digit scripts
# ---------------------------------------------------------------------------

# Arabic-Indic (U+0660..U+0669) and Extended Arabic-Indic (U+06F0..U+06F9)
_DIGIT_MAP = {ord(c): str(i) for i, c in enumerate("٠١٢٣٤٥٦٧٨٩")}
_DIGIT_MAP.update({ord(c): str(i) for i, c in enumerate("۰۱۲۳۴۵۶۷۸۹")})
_DIGIT_MAP[ord("٫")] = "."   # Arabic decimal separator
_DIGIT_MAP[ord("٬")] = ","   # Arabic thousands separator
_DIGIT_MAP[ord("،")] = ","   # Arabic comma

_CURRENCY_TOKENS = re.compile(
    r"(ر\s*\.?\s*س\s*\.?|ريال|SAR|SR|S\.R\.?|\$|USD|EUR|€)",
    re.IGNORECASE,
)
_DECIMAL_COMMA = re.compile(r"^\d+,\d{1,2}$")

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

# Years outside this range are not Gregorian receipt years (e.g. Hijri 1447).
MIN_PLAUSIBLE_YEAR = 2000
MAX_PLAUSIBLE_YEAR = 2100
YEAR_WINDOW = 1
MAX_FUTURE_DAYS = 183


def to_latin_digits(text: str) -> str:
    """Map Arabic-Indic digits and separators to their Latin equivalents."""
    return text.translate(_DIGIT_MAP)


# ---------------------------------------------------------------------------
# Amounts
# ---------------------------------------------------------------------------

def parse_amount(raw) -> float | None:
    """Parse a currency-formatted amount.

    Returns ``None`` for empty or non-numeric input. Signs are dropped;
    a settlement total is never negative.

    >>> parse_amount("١٬٥٠٠٫٥٠ ر.س")
    1500.5
    >>> parse_amount("Total: 2,500.50")
    2500.5
    """
    if raw is None or isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return abs(float(raw))

    text = to_latin_digits(str(raw))
    text = _CURRENCY_TOKENS.sub(" ", text)
    cleaned = re.sub(r"[^\d.,]", "", text).strip(".,")
    if not cleaned or not re.search(r"\d", cleaned):
        return None

    if "," in cleaned and "." in cleaned and cleaned.rfind(",") > cleaned.rfind("."):
        # 1.234,56
        cleaned = cleaned.replace(".", "").replace(",", ".")
    elif _DECIMAL_COMMA.match(cleaned):
        cleaned = cleaned.replace(",", ".")
    else:
        cleaned = cleaned.replace(",", "")

    parts = cleaned.split(".")
    if len(parts) > 2:
        if 1 <= len(parts[0]) <= 3 and all(len(p) == 3 for p in parts[1:]):
            # 1.234.567: every dot groups thousands
            cleaned = "".join(parts)
        else:
            # keep the last dot as the decimal point
            cleaned = "".join(parts[:-1]) + "." + parts[-1]

    try:
        return float(cleaned)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

_ISO = re.compile(r"^(\d{4})[-/.](\d{1,2})[-/.](\d{1,2})(?:[T\s].*)?$")
_DMY = re.compile(r"^(\d{1,2})[-/.](\d{1,2})[-/.](\d{2}|\d{4})(?:\s.*)?$")
_D_MON_Y = re.compile(r"^(\d{1,2})[\s\-/.]*([A-Za-z]{3})[A-Za-z]*\.?[\s\-/.,]*(\d{2}|\d{4})\b")
_MON_D_Y = re.compile(r"^([A-Za-z]{3})[A-Za-z]*\.?[\s\-/.]*(\d{1,2})(?:st|nd|rd|th)?,?[\s\-/.]*(\d{2}|\d{4})\b")


def _split_date(text: str) -> tuple[int, int, int] | None:
    """Return (year, month, day) as printed, before any plausibility checks."""
    m = _ISO.match(text)
    if m:
        return int(m.group(1)), int(m.group(2)), int(m.group(3))

    m = _DMY.match(text)
    if m:
        first, second, year = int(m.group(1)), int(m.group(2)), int(m.group(3))
        # Day-first unless only the month-first reading is a valid date.
        if first <= 12 < second:
            return year, first, second
        return year, second, first

    m = _D_MON_Y.match(text)
    if m and m.group(2).lower() in MONTHS:
        return int(m.group(3)), MONTHS[m.group(2).lower()], int(m.group(1))

    m = _MON_D_Y.match(text)
    if m and m.group(1).lower() in MONTHS:
        return int(m.group(3)), MONTHS[m.group(1).lower()], int(m.group(2))

    return None


def correct_year(
    year: int,
    month: int,
    day: int,
    reference: date,
    window: int = YEAR_WINDOW,
) -> int | None:
    """Year-plausibility correction for receipt printer clocks.

    Rules, applied in order:

    1. Two-digit years are read as ``2000 + yy``.
    2. Years outside ``[MIN_PLAUSIBLE_YEAR, MAX_PLAUSIBLE_YEAR]`` are not
       trusted at all and yield ``None``.
    3. Years within ``window`` of the reference year are kept.
    4. Any other year is treated as a mis-set terminal clock: the
       reference year is substituted, or the year before it when that
       would place the receipt more than ``MAX_FUTURE_DAYS`` after the
       reference date.

    Rule 4 cannot tell a wrong clock from an old slip: a genuine receipt
    printed two or more years before the reference, on the same day and
    month, comes back with the reference year and will match that date.
    Set ``correct_year: false`` in the extractor config where terminal
    clocks are known to be right.

    >>> correct_year(2016, 1, 31, date(2026, 1, 31))
    2026
    >>> correct_year(2015, 12, 31, date(2026, 1, 2))
    2025
    """
    if year < 100:
        year += 2000
    if not MIN_PLAUSIBLE_YEAR <= year <= MAX_PLAUSIBLE_YEAR:
        return None
    if abs(year - reference.year) <= window:
        return year

    candidate = reference.year
    try:
        corrected = date(candidate, month, day)
    except ValueError:
        return None
    if corrected - reference > timedelta(days=MAX_FUTURE_DAYS):
        candidate -= 1
    return candidate


def normalize_date(
    raw,
    reference: date | None = None,
    year_window: int = YEAR_WINDOW,
    apply_correction: bool = True,
) -> str | None:
    """Normalize a printed receipt date to ``YYYY-MM-DD``.

    Without a ``reference`` the printed year is kept as-is (two-digit years
    are still expanded). With one, :func:`correct_year` is applied.
    Returns ``None`` when the input cannot be read as a real calendar date.
    """
    if raw is None:
        return None
    if isinstance(raw, datetime):
        return raw.date().isoformat()
    if isinstance(raw, date):
        return raw.isoformat()

    text = to_latin_digits(str(raw)).strip()
    if not text or text.lower() in {"null", "none", "n/a"}:
        return None

    parts = _split_date(text)
    if parts is None:
        return None
    year, month, day = parts

    if reference is not None and apply_correction:
        year = correct_year(year, month, day, reference, window=year_window)
        if year is None:
            return None
    elif year < 100:
        year += 2000

    try:
        return date(year, month, day).isoformat()
    except ValueError:
        return None


def parse_iso_date(value) -> date | None:
    """Parse an already-normalized ISO date (or datetime) string."""
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()[:10]
    try:
        return date.fromisoformat(text)
    except ValueError:
        return None
