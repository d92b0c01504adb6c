"""Tests for reply parsing, invocation retry and the prompt catalogue."""

import json
from datetime import date
from types import SimpleNamespace

import pytest

from extractors.base_extractor import BaseExtractor
from extractors.hf_extractor import HFVisionExtractor
from extractors.prompts import (
    DEFAULT_PROMPT_ORDER,
    DIRECT_READ,
    NUMBERS_FOCUS,
    PROMPTS,
    TOTAL_ONLY,
    resolve_prompts,
)
from verification.errors import ModelInvocationError

REFERENCE = date(2026, 1, 31)

VALID_REPLY = json.dumps({
    "date": "2026-01-31",
    "sections": [
        {"name": "mada", "total": "600.00", "count": 4},
        {"name": "VISA", "total": 300, "count": 1},
    ],
    "grandTotal": "900.00",
    "confidence": "high",
    "rawText": "mada TOTALS 600.00 VISA TOTALS 300.00",
})


class DummyExtractor(BaseExtractor):
    """Concrete extractor for testing the base class."""

    def __init__(self, fake_response: str = ""):
        super().__init__(extractor_id="test_extractor")
        self._fake_response = fake_response

    def _call_api(self, messages, temperature, max_tokens):
        return self._fake_response


def parse(raw: str, prompt=DIRECT_READ):
    return DummyExtractor(raw)._parse_response(raw, prompt, REFERENCE)


def test_valid_json_parsed_correctly():
    result = parse(VALID_REPLY)
    assert result.success
    assert result.grand_total == 900.0
    assert [s.name for s in result.sections] == ["mada", "VISA"]
    assert result.sections[0].count == 4
    assert result.extracted_date == "2026-01-31"
    assert result.confidence == "high"
    assert result.prompt_name == "direct_read"


def test_json_inside_markdown_fence():
    wrapped = f"Here you go:\n```json\n{VALID_REPLY}\n```"
    result = parse(wrapped)
    assert result.success
    assert result.grand_total == 900.0


def test_flat_amounts_shape():
    raw = json.dumps({
        "date": "31/01/2026",
        "amounts": [
            {"label": "mada", "value": "١٬٠٥٥٫٠٠"},
            {"label": "Total", "value": "1,055.00"},
        ],
        "confidence": "medium",
    })
    result = parse(raw, NUMBERS_FOCUS)
    assert result.success
    assert [s.name for s in result.sections] == ["mada"]
    assert result.grand_total == 1055.0
    assert result.extracted_date == "2026-01-31"


def test_total_only_shape():
    raw = json.dumps({"grandTotal": 1200, "date": None, "confidence": "low"})
    result = parse(raw, TOTAL_ONLY)
    assert result.success
    assert result.sections == []
    assert result.grand_total == 1200.0
    assert result.extracted_date is None
    assert result.confidence == "low"


def test_grand_total_is_at_least_section_sum():
    raw = json.dumps({
        "sections": [{"name": "mada", "total": 600}, {"name": "VISA", "total": 300}],
        "grandTotal": 600,
        "confidence": "high",
    })
    assert parse(raw).grand_total == 900.0


def test_host_and_terminal_totals_are_kept():
    raw = json.dumps({
        "sections": [{"name": "mada", "hostTotal": "500.00", "terminalTotal": "480.00", "count": 2}],
        "confidence": "high",
    })
    section = parse(raw).sections[0]
    assert section.host_total == 500.0
    assert section.terminal_total == 480.0
    assert section.total == 500.0


def test_year_correction_applied_with_reference():
    raw = json.dumps({"date": "31/01/2016", "grandTotal": 1055, "confidence": "high"})
    assert parse(raw).extracted_date == "2026-01-31"


def test_not_a_receipt_is_a_failure():
    raw = json.dumps({"isReceipt": False, "readableText": "a cat", "confidence": "none"})
    result = parse(raw)
    assert not result.success
    assert result.error_type == "ExtractionParseError"
    assert result.confidence == "none"


def test_reply_without_amount_is_a_failure():
    result = parse(json.dumps({"date": "2026-01-31", "confidence": "high"}))
    assert not result.success
    assert result.grand_total is None


def test_completely_invalid_json_returns_error_result():
    result = parse("This is not JSON at all!!")
    assert not result.success
    assert result.error_type == "ExtractionParseError"
    assert result.raw_text == "This is not JSON at all!!"


def test_no_transactions_section_is_a_zero_read():
    raw = json.dumps({"sections": [{"name": "mada", "total": 0, "count": 0}], "confidence": "high"})
    result = parse(raw)
    assert result.success
    assert result.grand_total == 0.0


# ---------------------------------------------------------------------------
# Invocation
# ---------------------------------------------------------------------------

def test_invocation_failure_retried_once(scripted):
    extractor = scripted([ModelInvocationError("503"), VALID_REPLY])
    result = extractor.extract("data:image/png;base64,AAAA", DIRECT_READ, REFERENCE)
    assert result.success
    assert len(extractor.calls) == 2


def test_repeated_invocation_failure_becomes_failed_attempt(scripted):
    extractor = scripted([ModelInvocationError("503"), ModelInvocationError("503")])
    result = extractor.extract("data:image/png;base64,AAAA", DIRECT_READ, REFERENCE)
    assert not result.success
    assert result.error_type == "ModelInvocationError"
    assert len(extractor.calls) == 2


def test_unexpected_exception_is_not_retried(scripted):
    extractor = scripted([KeyError("choices"), VALID_REPLY])
    result = extractor.extract("data:image/png;base64,AAAA", DIRECT_READ, REFERENCE)
    assert not result.success
    assert result.error_type == "ModelInvocationError"
    assert len(extractor.calls) == 1


def test_messages_carry_image_and_prompt(scripted):
    extractor = scripted([VALID_REPLY])
    extractor.extract("data:image/png;base64,AAAA", TOTAL_ONLY, REFERENCE)
    call = extractor.calls[0]
    assert call["image_url"] == "data:image/png;base64,AAAA"
    assert call["temperature"] == TOTAL_ONLY.temperature
    assert call["max_tokens"] == 256


# ---------------------------------------------------------------------------
# HF backend
# ---------------------------------------------------------------------------

def fake_client(content):
    create = lambda **kwargs: SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content))]
    )
    return SimpleNamespace(chat=SimpleNamespace(completions=SimpleNamespace(create=create)))


def test_hf_extractor_with_injected_client():
    extractor = HFVisionExtractor(client=fake_client(VALID_REPLY))
    result = extractor.extract("data:image/png;base64,AAAA", DIRECT_READ, REFERENCE)
    assert result.success
    assert result.grand_total == 900.0


def test_hf_extractor_empty_reply_is_invocation_error():
    extractor = HFVisionExtractor(client=fake_client(""))
    with pytest.raises(ModelInvocationError):
        extractor._call_api([], 0.1, 64)


def test_hf_extractor_requires_token(monkeypatch):
    monkeypatch.delenv("HF_TOKEN", raising=False)
    with pytest.raises(RuntimeError, match="HF_TOKEN"):
        HFVisionExtractor()


# ---------------------------------------------------------------------------
# Prompts
# ---------------------------------------------------------------------------

def test_prompt_temperatures_are_low():
    assert all(p.temperature <= 0.2 for p in PROMPTS.values())
    assert min(PROMPTS.values(), key=lambda p: p.temperature) is TOTAL_ONLY


def test_system_prompt_carries_current_year():
    assert "Current year: 2026" in DIRECT_READ.render_system(REFERENCE)


def test_resolve_prompts_by_key_or_name():
    assert [p.name for p in resolve_prompts()] == [PROMPTS[k].name for k in DEFAULT_PROMPT_ORDER]
    assert resolve_prompts(["direct_read", "TOTAL_ONLY"]) == [DIRECT_READ, TOTAL_ONLY]
    with pytest.raises(ValueError, match="Unknown prompt"):
        resolve_prompts(["creative_writing"])
