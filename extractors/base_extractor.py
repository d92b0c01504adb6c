"""
BaseExtractor: Abstract base class for vision-model receipt extractors.
Defines the contract every model backend must fulfil.
"""

from __future__ import annotations

import json
import logging
import re
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List

from verification.errors import ExtractionParseError, ModelInvocationError
from verification.matcher import coerce_confidence
from verification.normalizer import normalize_date, parse_amount

from .prompts import PromptVariant

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data model for a single extraction attempt
# ---------------------------------------------------------------------------

# Labels the model sometimes returns as an "amount" that are really the total.
TOTAL_LABELS = {"total", "totals", "grand total", "grandtotal", "total amount", "المجموع", "الإجمالي"}


@dataclass
class PaymentSection:
    """One payment network's subtotal block on the receipt."""

    name: str
    host_total: float
    terminal_total: float
    count: int = 0

    @property
    def total(self) -> float:
        return max(self.host_total, self.terminal_total)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "host_total": self.host_total,
            "terminal_total": self.terminal_total,
            "count": self.count,
        }


@dataclass
class ExtractionAttempt:
    """Structured output of one model call."""

    prompt_name: str
    temperature: float
    sections: List[PaymentSection] = field(default_factory=list)
    grand_total: float | None = None
    extracted_date: str | None = None       # ISO YYYY-MM-DD
    confidence: str = "none"                # high | medium | low | none
    raw_text: str | None = field(default=None, repr=False)
    success: bool = False
    error: str | None = None
    error_type: str | None = None           # exception class name when success is False
    duration_ms: float = 0.0
    issues: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "prompt_name": self.prompt_name,
            "temperature": self.temperature,
            "sections": [s.to_dict() for s in self.sections],
            "grand_total": self.grand_total,
            "extracted_date": self.extracted_date,
            "confidence": self.confidence,
            "raw_text": self.raw_text,
            "success": self.success,
            "error": self.error,
            "error_type": self.error_type,
            "duration_ms": round(self.duration_ms, 1),
            "issues": self.issues,
        }

    @classmethod
    def failure(cls, prompt: PromptVariant, error: Exception, raw_text: str | None = None) -> "ExtractionAttempt":
        """Failed attempt carrying the error as a value rather than raising it."""
        return cls(
            prompt_name=prompt.name,
            temperature=prompt.temperature,
            confidence="none",
            raw_text=raw_text,
            success=False,
            error=str(error),
            error_type=type(error).__name__,
        )


# ---------------------------------------------------------------------------
# Abstract base class
# ---------------------------------------------------------------------------

class BaseExtractor(ABC):
    """
    Abstract base extractor. Subclasses implement `_call_api` to hit the
    specific model endpoint. The base class builds the messages, parses the
    reply into an ExtractionAttempt and retries a provider failure once.
    """

    MAX_INVOCATION_RETRIES = 1

    def __init__(
        self,
        extractor_id: str = "extractor",
        year_window: int = 1,
        correct_year: bool = True,
    ):
        self.extractor_id = extractor_id
        self.year_window = year_window
        self.correct_year = correct_year

    # ------------------------------------------------------------------
    # Public interface
    # ------------------------------------------------------------------

    def extract(
        self,
        image_data_url: str,
        prompt: PromptVariant,
        reference_date: date | None = None,
    ) -> ExtractionAttempt:
        """
        Main entry point. Sends one image and one prompt variant to the model
        and returns the parsed attempt. Never raises.
        """
        started = time.perf_counter()
        messages = self.build_messages(image_data_url, prompt)

        raw = None
        last_error: Exception | None = None
        for attempt in range(1, self.MAX_INVOCATION_RETRIES + 2):
            try:
                raw = self._call_api(messages, prompt.temperature, prompt.max_tokens)
                break
            except ModelInvocationError as exc:
                last_error = exc
                logger.warning(
                    "[%s] %s invocation %d failed: %s",
                    self.extractor_id, prompt.name, attempt, exc,
                )
            except Exception as exc:
                last_error = ModelInvocationError(f"{type(exc).__name__}: {exc}")
                logger.exception("[%s] %s invocation raised unexpectedly", self.extractor_id, prompt.name)
                break

        if raw is None:
            result = ExtractionAttempt.failure(prompt, last_error or ModelInvocationError("No reply"))
        else:
            result = self._parse_response(raw, prompt, reference_date or date.today())

        result.duration_ms = (time.perf_counter() - started) * 1000.0
        logger.info(
            "[%s] %s -> success=%s total=%s date=%s confidence=%s (%.0f ms)",
            self.extractor_id, prompt.name, result.success, result.grand_total,
            result.extracted_date, result.confidence, result.duration_ms,
        )
        return result

    @staticmethod
    def build_messages(image_data_url: str, prompt: PromptVariant) -> List[Dict[str, Any]]:
        return [
            {"role": "system", "content": prompt.render_system()},
            {
                "role": "user",
                "content": [
                    {"type": "image_url", "image_url": {"url": image_data_url}},
                    {"type": "text", "text": prompt.user_prompt},
                ],
            },
        ]

    # ------------------------------------------------------------------
    # Subclass contract
    # ------------------------------------------------------------------

    @abstractmethod
    def _call_api(self, messages: List[Dict[str, Any]], temperature: float, max_tokens: int) -> str:
        """
        Call the vision model and return the raw text reply.
        Implementations raise ModelInvocationError on provider failures.
        """
        ...

    # ------------------------------------------------------------------
    # JSON parsing
    # ------------------------------------------------------------------

    def _parse_response(self, raw: str, prompt: PromptVariant, reference_date: date) -> ExtractionAttempt:
        """Map any of the accepted reply shapes onto an ExtractionAttempt."""
        json_str = self._extract_json(raw)
        try:
            data = json.loads(json_str)
        except json.JSONDecodeError as exc:
            return ExtractionAttempt.failure(
                prompt, ExtractionParseError(f"JSON decode error: {exc}"), raw_text=raw,
            )
        if not isinstance(data, dict):
            return ExtractionAttempt.failure(
                prompt, ExtractionParseError("Reply JSON is not an object"), raw_text=raw,
            )

        if data.get("isReceipt") is False:
            return ExtractionAttempt.failure(
                prompt, ExtractionParseError("Model reports the image is not a POS receipt"),
                raw_text=self._raw_text(data) or raw,
            )

        sections, total_hint = self._sections(data)
        grand_raw = parse_amount(self._first(data, "grandTotal", "grand_total", "total", "amount"))
        if grand_raw is None:
            grand_raw = total_hint

        grand_total = None
        if sections or grand_raw is not None:
            section_sum = sum(s.total for s in sections)
            grand_total = max(section_sum, grand_raw or 0.0)

        success = bool(sections) or (grand_total is not None and grand_total > 0)
        if not success:
            return ExtractionAttempt.failure(
                prompt, ExtractionParseError("No amount found in reply"),
                raw_text=self._raw_text(data) or raw,
            )

        extracted_date = normalize_date(
            data.get("date"),
            reference=reference_date,
            year_window=self.year_window,
            apply_correction=self.correct_year,
        )
        issues = data.get("issues") or []
        if not isinstance(issues, list):
            issues = [issues]

        return ExtractionAttempt(
            prompt_name=prompt.name,
            temperature=prompt.temperature,
            sections=sections,
            grand_total=grand_total,
            extracted_date=extracted_date,
            confidence=coerce_confidence(data.get("confidence"), grand_total),
            raw_text=self._raw_text(data),
            success=True,
            issues=[str(i) for i in issues],
        )

    @staticmethod
    def _first(data: dict, *keys: str):
        for k in keys:
            if data.get(k) is not None:
                return data[k]
        return None

    @staticmethod
    def _raw_text(data: dict) -> str | None:
        text = data.get("rawText") or data.get("readableText")
        return str(text) if text else None

    def _sections(self, data: dict) -> tuple[List[PaymentSection], float | None]:
        """Normalize ``sections`` and flat ``amounts`` shapes into PaymentSections.

        Returns the sections plus any total the model filed as an amount.
        """
        sections: List[PaymentSection] = []
        total_hint = None

        for item in data.get("sections") or []:
            if not isinstance(item, dict):
                continue
            name = str(item.get("name") or "").strip()
            total = parse_amount(self._first(item, "total", "amount", "value"))
            host = parse_amount(item.get("hostTotal"))
            terminal = parse_amount(item.get("terminalTotal"))
            if host is None and terminal is None:
                if total is None:
                    continue
                host = terminal = total
            host = host if host is not None else terminal
            terminal = terminal if terminal is not None else host
            if not name:
                continue
            sections.append(PaymentSection(name, host, terminal, self._count(item.get("count"))))

        for item in data.get("amounts") or []:
            if not isinstance(item, dict):
                continue
            label = str(item.get("label") or "").strip()
            value = parse_amount(item.get("value"))
            if value is None or not label:
                continue
            if label.lower() in TOTAL_LABELS:
                total_hint = max(total_hint or 0.0, value)
                continue
            sections.append(PaymentSection(label, value, value, self._count(item.get("count"))))

        return sections, total_hint

    @staticmethod
    def _count(value) -> int:
        n = parse_amount(value)
        return int(n) if n is not None else 0

    @staticmethod
    def _extract_json(text: str) -> str:
        """
        Attempt to extract a JSON object from the raw response text.
        Handles markdown code fences and extra surrounding text.
        """
        # Strip markdown fences
        text = re.sub(r"```(?:json)?", "", text or "").strip()
        # Find first { ... } block
        match = re.search(r"\{.*\}", text, re.DOTALL)
        if match:
            return match.group(0)
        return text
