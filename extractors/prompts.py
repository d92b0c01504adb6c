"""
Prompt variants for settlement-receipt extraction.

Four variants trade specificity for robustness.  All pin the temperature
at or below 0.2; TOTAL_ONLY uses the lowest.  System prompts carry the
current year so the model does not guess the era from a faded date.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Dict, List, Sequence

KNOWN_NETWORKS = "mada, VISA, MasterCard, AMEX, DISCOVER, Maestro, GCCNET, JN ONPAY, UnionPay"


@dataclass(frozen=True)
class PromptVariant:
    name: str
    system_prompt: str
    user_prompt: str
    temperature: float
    max_tokens: int = 1024

    def render_system(self, today: date | None = None) -> str:
        today = today or date.today()
        return self.system_prompt.format(current_year=today.year)


DIRECT_READ = PromptVariant(
    name="direct_read",
    system_prompt=(
        "You are an expert at reading POS terminal settlement receipts.\n"
        "Extract the financial figures exactly as printed.\n"
        "Current year: {current_year}"
    ),
    user_prompt=(
        "Read this settlement receipt and extract:\n"
        "1. The receipt date (YYYY-MM-DD)\n"
        f"2. The TOTALS line of every card network section ({KNOWN_NETWORKS})\n"
        "3. The grand total\n\n"
        "Look for:\n"
        '- "TOTALS" or "TOTAL" inside each section\n'
        '- "NO TRANSACTIONS" means the section total is 0\n'
        "- The date near the top of the receipt\n\n"
        "Answer with JSON only:\n"
        '{"date":"YYYY-MM-DD","sections":[{"name":"mada","total":0,"count":0}],'
        '"grandTotal":0,"confidence":"high/medium/low","rawText":"short summary"}'
    ),
    temperature=0.1,
)

NUMBERS_FOCUS = PromptVariant(
    name="numbers_focus",
    system_prompt=(
        "You are a financial analyst reading numbers off thermal receipts.\n"
        "Focus only on amounts and totals; ignore all other text.\n"
        "Current year: {current_year}"
    ),
    user_prompt=(
        "Extract only the totals from this receipt:\n"
        '1. Any number following "TOTAL", "TOTALS" or "المجموع"\n'
        "2. Numbers formatted as XXX.XX or X,XXX.XX\n"
        "3. The date in any format (DD/MM/YYYY or YYYY-MM-DD)\n\n"
        "Amounts are in Saudi riyals (SAR).\n\n"
        "Answer with JSON:\n"
        '{"date":"YYYY-MM-DD","amounts":[{"label":"mada","value":0},{"label":"VISA","value":0}],'
        '"grandTotal":0,"confidence":"high/medium/low"}'
    ),
    temperature=0.2,
)

DETAILED_READ = PromptVariant(
    name="detailed_read",
    system_prompt=(
        "You are an OCR specialist for hard-to-read thermal receipts.\n"
        "You are experienced with faded or blurred prints, fading thermal ink "
        "and skewed or out-of-focus photos.\n"
        "Current year: {current_year}"
    ),
    user_prompt=(
        "This is a daily settlement slip from a POS terminal. The image may be unclear.\n\n"
        "Steps:\n"
        "1. Decide whether this is a POS settlement receipt at all\n"
        "2. If it is, find:\n"
        "   - the date (usually at the top)\n"
        f"   - the card network sections ({KNOWN_NETWORKS})\n"
        "   - the word TOTALS or TOTAL followed by a number\n"
        "   - the grand total (GRAND TOTAL or TOTAL AMOUNT)\n"
        "3. If parts are unreadable, report what you can read\n\n"
        "Answer with JSON:\n"
        "{\n"
        '  "isReceipt": true,\n'
        '  "date": "YYYY-MM-DD or null",\n'
        '  "sections": [{"name": "mada", "total": 0, "count": 0}],\n'
        '  "grandTotal": 0,\n'
        '  "confidence": "high/medium/low/none",\n'
        '  "readableText": "the text you could read",\n'
        '  "issues": ["reading problems"]\n'
        "}"
    ),
    temperature=0.15,
)

TOTAL_ONLY = PromptVariant(
    name="total_only",
    system_prompt=(
        "Your task is simple: extract only the grand total from a POS receipt.\n"
        "Current year: {current_year}"
    ),
    user_prompt=(
        "Find the grand total on this receipt. It is usually the largest amount, "
        "printed after TOTAL or GRAND TOTAL near the bottom.\n\n"
        "Answer with JSON:\n"
        '{"grandTotal":0,"date":"YYYY-MM-DD or null","confidence":"high/medium/low"}'
    ),
    temperature=0.05,
    max_tokens=256,
)

PROMPTS: Dict[str, PromptVariant] = {
    "DIRECT_READ": DIRECT_READ,
    "NUMBERS_FOCUS": NUMBERS_FOCUS,
    "DETAILED_READ": DETAILED_READ,
    "TOTAL_ONLY": TOTAL_ONLY,
}

DEFAULT_PROMPT_ORDER = ("DIRECT_READ", "DETAILED_READ", "NUMBERS_FOCUS", "TOTAL_ONLY")


def resolve_prompts(names: Sequence[str] | None = None) -> List[PromptVariant]:
    """Map prompt names (either key or variant name, any case) to variants."""
    names = names or DEFAULT_PROMPT_ORDER
    by_variant_name = {p.name: p for p in PROMPTS.values()}
    out = []
    for n in names:
        key = str(n).strip()
        variant = PROMPTS.get(key.upper()) or by_variant_name.get(key.lower())
        if variant is None:
            raise ValueError(f"Unknown prompt variant: {n}")
        out.append(variant)
    return out
