"""Tests for the command-line entry points."""

import json

import pytest

import main
from conftest import encode, receipt_array
from imaging.quality import OCRReadiness
from verification.verifier import BalanceVerifier


def test_build_parser_verify():
    args = main.build_parser().parse_args(
        ["verify", "r.jpg", "--amount", "1055", "--date", "2026-01-31", "--branch-id", "B-1"]
    )
    assert args.command == "verify"
    assert args.amount == 1055.0
    assert args.branch_id == "B-1"
    assert main.build_parser().parse_args(["-v", "analyze", "r.jpg"]).verbose


def test_parser_requires_command():
    with pytest.raises(SystemExit):
        main.build_parser().parse_args([])


def test_cmd_analyze(tmp_path, capsys):
    path = tmp_path / "r.png"
    path.write_bytes(encode(receipt_array()))
    main.cmd_analyze(main.build_parser().parse_args(["analyze", str(path)]))
    out = json.loads(capsys.readouterr().out)
    assert out["stats"]["width"] == 160
    assert out["readiness"]["level"] in ("excellent", "good", "acceptable", "poor")


def test_cmd_enhance_writes_output(tmp_path, capsys):
    src = tmp_path / "r.png"
    dst = tmp_path / "out.jpg"
    src.write_bytes(encode(receipt_array()))
    main.cmd_enhance(main.build_parser().parse_args(["enhance", str(src), str(dst), "--weak"]))
    out = json.loads(capsys.readouterr().out)
    assert dst.exists()
    assert dst.stat().st_size == out["final_size"]


def test_cmd_enhance_picks_profile_from_readiness(tmp_path, capsys, monkeypatch):
    src = tmp_path / "r.png"
    src.write_bytes(encode(receipt_array()))

    monkeypatch.setattr(main, "analyze_image", lambda data: (None, OCRReadiness(30.0, "poor")))
    main.cmd_enhance(main.build_parser().parse_args(["enhance", str(src), str(tmp_path / "a.jpg")]))
    assert json.loads(capsys.readouterr().out)["profile"] == "weak_image"

    monkeypatch.setattr(main, "analyze_image", lambda data: (None, OCRReadiness(92.0, "excellent")))
    main.cmd_enhance(main.build_parser().parse_args(["enhance", str(src), str(tmp_path / "b.jpg")]))
    out = json.loads(capsys.readouterr().out)
    assert out["profile"] == "optimal"
    assert not out["was_processed"]


def test_verify_batch(tmp_path, monkeypatch, scripted):
    image = tmp_path / "r.png"
    image.write_bytes(encode(receipt_array()))
    manifest = tmp_path / "batch.yaml"
    manifest.write_text(
        "verifications:\n"
        f"  - id: ok\n    image: {image}\n    amount: 1055\n    date: 2026-01-31\n    branch_id: B-1\n"
        f"  - id: short\n    image: {image}\n    amount: 1000\n    date: 2026-01-31\n    branch_id: B-2\n",
        encoding="utf-8",
    )
    replies = [
        {"date": "2026-01-31", "grandTotal": 1055, "confidence": "high",
         "sections": [{"name": "mada", "total": 1055, "count": 5}]},
        {"date": "2026-01-31", "grandTotal": 1200, "confidence": "high",
         "sections": [{"name": "mada", "total": 1200, "count": 5}]},
    ]
    extractor = scripted(replies)

    def from_config(settings_path=None, extractor_config_path=None, **kwargs):
        return BalanceVerifier(extractor, **kwargs)

    monkeypatch.setattr(BalanceVerifier, "from_config", staticmethod(from_config))

    api = main.ReceiptVerifierAPI()
    summary = api.verify_batch(manifest, save_path=tmp_path / "out" / "summary.json")
    assert summary["total"] == 2
    assert summary["matched"] == 1
    assert summary["failed"] == 0
    assert [a["branch_id"] for a in summary["alerts"]] == ["B-2"]
    saved = json.loads((tmp_path / "out" / "summary.json").read_text(encoding="utf-8"))
    assert saved["results"][0]["id"] == "ok"
