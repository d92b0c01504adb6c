"""Tests for the ConsensusEngine."""

import pytest

from extractors.base_extractor import ExtractionAttempt, PaymentSection
from extractors.consensus import ConsensusEngine


def make_attempt(total, confidence="medium", name="p", sections=None, date="2026-01-31", success=True):
    return ExtractionAttempt(
        prompt_name=name,
        temperature=0.1,
        sections=sections or [],
        grand_total=total,
        extracted_date=date,
        confidence=confidence,
        success=success,
        error=None if success else "parse failed",
    )


def test_empty_input_raises():
    with pytest.raises(ValueError):
        ConsensusEngine().combine([])


def test_single_attempt_passes_through():
    combined = ConsensusEngine().combine([make_attempt(1055.0, "high", "direct_read")])
    assert combined.grand_total == 1055.0
    assert combined.confidence == "high"
    assert combined.prompt_name == "direct_read"
    assert not combined.contested


def test_close_totals_use_top_ranked_attempt():
    attempts = [
        make_attempt(1000.0, "medium", "a"),
        make_attempt(1010.0, "medium", "b"),
        make_attempt(1005.0, "low", "c"),
    ]
    combined = ConsensusEngine().combine(attempts)
    assert combined.grand_total == 1010.0
    assert combined.confidence == "medium"
    assert not combined.used_median
    assert combined.prompt_name == "consensus:a+b+c"
    assert combined.source_attempt_count == 3


def test_sections_merged_across_attempts():
    a = make_attempt(900.0, "medium", "a", sections=[
        PaymentSection("mada", 600.0, 600.0, 4), PaymentSection("VISA", 300.0, 300.0, 1),
    ])
    b = make_attempt(600.0, "medium", "b", sections=[PaymentSection("MADA", 600.0, 600.0, 4)])
    combined = ConsensusEngine().combine([a, b])
    assert {s.name.lower(): s.total for s in combined.sections} == {"mada": 600.0, "visa": 300.0}
    assert combined.grand_total == 900.0


def test_larger_section_total_wins():
    a = make_attempt(500.0, "medium", "a", sections=[PaymentSection("mada", 500.0, 500.0, 2)])
    b = make_attempt(900.0, "medium", "b", sections=[
        PaymentSection("mada", 600.0, 600.0, 3), PaymentSection("VISA", 300.0, 300.0, 1),
    ])
    combined = ConsensusEngine().combine([a, b])
    assert {s.name: s.total for s in combined.sections} == {"mada": 600.0, "VISA": 300.0}


def test_contested_totals_use_median():
    attempts = [
        make_attempt(1000.0, "medium", "a"),
        make_attempt(1000.0, "medium", "b"),
        make_attempt(9000.0, "high", "c"),
    ]
    combined = ConsensusEngine().combine(attempts)
    assert combined.contested
    assert combined.used_median
    assert combined.grand_total == 1000.0
    assert combined.confidence == "medium"


def test_contested_single_supporter_is_not_high():
    attempts = [make_attempt(5000.0, "high", "a"), make_attempt(1000.0, "none", "b")]
    combined = ConsensusEngine().combine(attempts)
    assert combined.contested
    assert combined.confidence != "high"


def test_all_failed_attempts():
    attempts = [make_attempt(None, "none", "a", success=False), make_attempt(None, "none", "b", success=False)]
    combined = ConsensusEngine().combine(attempts)
    assert not combined.success
    assert combined.confidence == "none"
    assert "a: parse failed" in combined.error
    assert "b: parse failed" in combined.error


def test_failed_attempts_do_not_vote():
    attempts = [make_attempt(None, "none", "a", success=False), make_attempt(750.0, "medium", "b")]
    combined = ConsensusEngine().combine(attempts)
    assert combined.success
    assert combined.grand_total == 750.0


def test_date_taken_from_any_ranked_attempt():
    attempts = [make_attempt(1000.0, "high", "a", date=None), make_attempt(1000.0, "low", "b")]
    combined = ConsensusEngine().combine(attempts)
    assert combined.extracted_date == "2026-01-31"


def test_zero_reads_only():
    combined = ConsensusEngine().combine([make_attempt(0.0, "high", "a")])
    assert combined.success
    assert combined.grand_total == 0.0
