"""Tests for alert gating, audit records and settings loading."""

from dataclasses import replace

import pytest

from extractors.base_extractor import PaymentSection
from verification.alerts import create_discrepancy_details, should_send_alert
from verification.audit import (
    AuditLog,
    JsonlAuditLog,
    NullAuditLog,
    build_audit_record,
    derive_status,
)
from verification.config import CONFIG_PATH, VerificationSettings
from verification.models import BalanceVerificationResult, VerificationContext
from verification.ocr_warnings import OCRWarning


def make_result(matched=True, date_matched=True, confidence="high", difference=0.0, success=True):
    return BalanceVerificationResult(
        success=success,
        is_matched=matched,
        is_date_matched=date_matched,
        extracted_amount=1000.0 + difference,
        expected_amount=1000.0,
        difference=difference,
        extracted_date="2026-01-31",
        expected_date="2026-01-31",
        confidence=confidence,
        message="test",
        warnings=(OCRWarning("partial_read", "info", "one section", "check"),),
        sections=(PaymentSection("mada", 1000.0, 1000.0, 3),),
    )


# ---------------------------------------------------------------------------
# Alerts
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("kwargs, expected", [
    ({}, False),
    ({"confidence": "medium"}, False),
    ({"confidence": "low"}, True),
    ({"confidence": "none"}, True),
    ({"matched": False, "difference": 200.0}, True),
    ({"matched": False, "difference": 0.5}, False),
    ({"matched": False, "difference": 0.5, "confidence": "low"}, True),
    ({"date_matched": False}, True),
    ({"matched": False, "date_matched": False, "difference": 0.5}, True),
])
def test_should_send_alert(kwargs, expected):
    assert should_send_alert(make_result(**kwargs)) is expected


def test_min_amount_difference_is_configurable():
    result = make_result(matched=False, difference=3.0)
    assert should_send_alert(result, min_amount_difference=1.0)
    assert not should_send_alert(result, min_amount_difference=5.0)


def test_discrepancy_details():
    context = VerificationContext(branch_id="B-1", branch_name="Olaya", employee_name="Sara")
    details = create_discrepancy_details(make_result(matched=False, difference=200.0), context, "s3://r/1.jpg")
    d = details.to_dict()
    assert d["branch_id"] == "B-1"
    assert d["entered_amount"] == 1000.0
    assert d["extracted_amount"] == 1200.0
    assert d["warnings"] == ["one section"]
    assert d["sections"][0]["name"] == "mada"
    assert d["image_url"] == "s3://r/1.jpg"


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------

@pytest.mark.parametrize("kwargs, flags, expected", [
    ({}, {}, "success"),
    ({"matched": False}, {}, "amount_mismatch"),
    ({"date_matched": False}, {}, "date_mismatch"),
    ({"matched": False, "date_matched": False}, {}, "both_mismatch"),
    ({"confidence": "low"}, {}, "low_confidence"),
    ({"success": False}, {}, "extraction_failed"),
    ({"success": False}, {"no_image": True}, "no_image"),
    ({"success": False}, {"error": "boom"}, "error"),
])
def test_derive_status(kwargs, flags, expected):
    assert derive_status(make_result(**kwargs), **flags) == expected


def test_jsonl_audit_log_appends(tmp_path):
    log = JsonlAuditLog(tmp_path / "nested" / "audit.jsonl")
    context = VerificationContext(branch_id="B-1", request_id="r-9")
    log.record(build_audit_record(make_result(), context, image_key="k1"))
    log.record(build_audit_record(make_result(matched=False), context))
    records = log.read_all()
    assert [r["status"] for r in records] == ["success", "amount_mismatch"]
    assert records[0]["image_key"] == "k1"
    assert records[0]["request_id"] == "r-9"
    assert records[0]["warnings"] == ["partial_read"]
    assert records[0]["timestamp"]


def test_audit_record_flags_critical_warnings():
    assert not build_audit_record(make_result()).has_critical_warning
    critical = replace(
        make_result(matched=False, difference=200.0),
        warnings=(OCRWarning("amount_mismatch", "critical", "entered 1000, read 1200", "recount"),),
    )
    assert build_audit_record(critical).has_critical_warning


def test_audit_write_failure_is_swallowed(caplog):
    class BrokenLog(AuditLog):
        def _write(self, record):
            raise OSError("read-only filesystem")

    BrokenLog().record(build_audit_record(make_result()))
    assert "read-only filesystem" in caplog.text


def test_audit_catches_any_sink_error(caplog):
    class DriverErrorLog(AuditLog):
        def _write(self, record):
            raise RuntimeError("connection reset by peer")

    DriverErrorLog().record(build_audit_record(make_result()))
    assert "connection reset by peer" in caplog.text


def test_null_audit_log():
    NullAuditLog().record(build_audit_record(make_result()))


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------

def test_settings_defaults_when_file_missing(tmp_path):
    settings = VerificationSettings.from_yaml(tmp_path / "missing.yaml")
    assert settings.amount_tolerance_percentage == 0.02
    assert settings.date_tolerance_days == 1
    assert settings.max_retries == 3
    assert settings.audit_log_path is None


def test_settings_from_yaml(tmp_path):
    path = tmp_path / "verification.yaml"
    path.write_text(
        "matching:\n"
        "  amount_tolerance_percentage: 0.05\n"
        "  use_graduated_tolerance: true\n"
        "retry:\n"
        "  max_retries: 2\n"
        "  prompt_order: [TOTAL_ONLY, DIRECT_READ]\n"
        "amount_limits:\n"
        "  suspicious: 50000\n",
        encoding="utf-8",
    )
    settings = VerificationSettings.from_yaml(path)
    assert settings.amount_tolerance_percentage == 0.05
    assert settings.use_graduated_tolerance
    assert settings.max_retries == 2
    assert settings.prompt_order == ["TOTAL_ONLY", "DIRECT_READ"]
    assert settings.amount_limits.suspicious == 50000.0
    assert settings.amount_limits.maximum == 10_000_000.0


def test_settings_env_override(tmp_path, monkeypatch):
    path = tmp_path / "env.yaml"
    path.write_text("alerts:\n  min_amount_difference: 5\n", encoding="utf-8")
    monkeypatch.setenv("VERIFICATION_CONFIG", str(path))
    assert VerificationSettings.from_yaml().min_amount_difference == 5.0


def test_shipped_config_loads():
    settings = VerificationSettings.from_yaml(CONFIG_PATH)
    assert settings.prompt_order[0] == "DIRECT_READ"
    assert "mada" in settings.known_sections
    assert settings.audit_log_path.endswith(".jsonl")
