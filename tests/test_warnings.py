"""Tests for warning generation and section analysis."""

from extractors.base_extractor import ExtractionAttempt, PaymentSection
from verification.ocr_warnings import (
    AmountLimits,
    analyze_sections,
    generate_warnings,
    has_critical,
    is_known_section,
)


def extraction(total=1055.0, sections=None, date="2026-01-31", confidence="high", success=True):
    if sections is None:
        sections = [PaymentSection("mada", total, total, 5)]
    return ExtractionAttempt(
        prompt_name="direct_read",
        temperature=0.1,
        sections=sections,
        grand_total=total,
        extracted_date=date,
        confidence=confidence,
        success=success,
    )


def types(warnings):
    return [w.type for w in warnings]


def test_clean_match_has_no_warnings():
    sections = [PaymentSection("mada", 600.0, 600.0, 4), PaymentSection("VISA", 300.0, 300.0, 2)]
    warnings = generate_warnings(extraction(900.0, sections), 900.0, "2026-01-31", True, True, "high")
    assert warnings == []


def test_failed_extraction():
    warnings = generate_warnings(extraction(None, [], success=False), 1000.0, None, False, False, "none")
    assert types(warnings) == ["low_confidence", "unclear_image"]
    assert warnings[0].severity == "critical"


def test_amount_mismatch_is_critical_and_first():
    warnings = generate_warnings(extraction(1200.0), 1000.0, "2026-01-31", False, True, "high")
    assert warnings[0].type == "amount_mismatch"
    assert warnings[0].severity == "critical"
    assert "200.00" in warnings[0].message
    assert has_critical(warnings)


def test_missing_date_is_a_warning():
    warnings = generate_warnings(extraction(date=None), 1055.0, "2026-01-31", True, False, "high")
    assert "no_date" in types(warnings)
    assert "date_mismatch" not in types(warnings)


def test_date_mismatch():
    warnings = generate_warnings(extraction(date="2026-01-20"), 1055.0, "2026-01-31", True, False, "high")
    mismatch = next(w for w in warnings if w.type == "date_mismatch")
    assert mismatch.severity == "critical"


def test_low_confidence_severity_depends_on_tier():
    low = generate_warnings(extraction(confidence="low"), 1055.0, None, True, True, "low")
    none = generate_warnings(extraction(confidence="none"), 1055.0, None, True, True, "none")
    assert next(w for w in low if w.type == "low_confidence").severity == "warning"
    assert next(w for w in none if w.type == "low_confidence").severity == "critical"
    assert "unclear_image" in types(low)


def test_amount_out_of_range():
    limits = AmountLimits(minimum=0.0, maximum=10_000.0, suspicious=5_000.0)
    huge = generate_warnings(extraction(20_000.0), 20_000.0, None, True, True, "high", limits=limits)
    big = generate_warnings(extraction(6_000.0), 6_000.0, None, True, True, "high", limits=limits)
    assert next(w for w in huge if w.type == "amount_out_of_range").severity == "critical"
    assert next(w for w in big if w.type == "amount_out_of_range").severity == "warning"


def test_no_sections():
    warnings = generate_warnings(extraction(500.0, sections=[]), 500.0, None, True, True, "medium")
    assert types(warnings) == ["no_sections"]


def test_section_anomalies():
    sections = [
        PaymentSection("mada", 400.0, 380.0, 3),
        PaymentSection("STC Pay", 100.0, 100.0, 0),
    ]
    warnings = generate_warnings(extraction(500.0, sections), 500.0, None, True, True, "medium")
    assert "host_terminal_mismatch" in types(warnings)
    assert "unknown_section" in types(warnings)
    assert "section_count_anomaly" in types(warnings)
    # info after warnings
    assert types(warnings)[-1] == "section_count_anomaly"


def test_partial_read_for_single_large_section():
    warnings = generate_warnings(extraction(1500.0), 1500.0, None, True, True, "high")
    assert types(warnings) == ["partial_read"]
    assert warnings[0].severity == "info"
    small = generate_warnings(extraction(200.0), 200.0, None, True, True, "high")
    assert small == []


def test_analyze_sections():
    sections = [
        PaymentSection("mada", 600.0, 600.0, 4),
        PaymentSection("VISA", 0.0, 0.0, 0),
        PaymentSection("Unknown Net", 50.0, 50.0, 1),
    ]
    analysis = analyze_sections(sections)
    assert analysis.is_valid
    assert analysis.total_amount == 650.0
    assert analysis.inactive_sections == ["VISA"]
    assert analysis.unknown_sections == ["Unknown Net"]
    assert analysis.confidence == 90


def test_all_inactive_sections():
    analysis = analyze_sections([PaymentSection("mada", 0.0, 0.0, 0)])
    assert not analysis.is_valid
    assert analysis.confidence == 20


def test_known_section_lookup_is_case_insensitive():
    assert is_known_section("MADA")
    assert is_known_section(" visa ")
    assert not is_known_section("STC Pay")
