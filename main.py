"""High-level API + CLI for the POS settlement receipt verifier."""

from __future__ import annotations

import argparse
import json
import logging
from pathlib import Path
from typing import Any

import yaml
from tqdm import tqdm

from imaging import ReceiptEnhancer, analyze_image, ocr_readiness_suggestions, select_profile
from imaging.enhancer import WEAK_IMAGE_CONFIG
from imaging.utils import save_json
from verification.alerts import CollectingAlerter
from verification.models import ImageInput, VerificationContext
from verification.verifier import BalanceVerifier

CONFIG_VERIFICATION = Path("configs/verification.yaml")
CONFIG_EXTRACTOR = Path("configs/extractor.yaml")


class ReceiptVerifierAPI:
    """High-level orchestration API usable from CLI or notebooks."""

    def __init__(
        self,
        settings_path: Path = CONFIG_VERIFICATION,
        extractor_config_path: Path = CONFIG_EXTRACTOR,
    ):
        self.settings_path = settings_path
        self.extractor_config_path = extractor_config_path
        self._verifier: BalanceVerifier | None = None

    def _ensure_runtime(self, **kwargs) -> BalanceVerifier:
        if self._verifier is None:
            self._verifier = BalanceVerifier.from_config(
                self.settings_path, self.extractor_config_path, **kwargs
            )
        return self._verifier

    def verify(
        self,
        image: str,
        amount: float,
        date: str | None = None,
        context: VerificationContext | None = None,
    ) -> dict[str, Any]:
        verifier = self._ensure_runtime()
        result = verifier.verify([ImageInput(url_or_bytes=image)], amount, date, context=context)
        return result.to_dict()

    def verify_batch(self, manifest_path: str | Path, save_path: str | Path | None = None) -> dict[str, Any]:
        with open(manifest_path, encoding="utf-8") as f:
            manifest = yaml.safe_load(f) or {}
        entries = manifest.get("verifications", [])

        alerter = CollectingAlerter()
        verifier = self._ensure_runtime(alerter=alerter)

        outputs = []
        for entry in tqdm(entries, desc="verifying", unit="receipt", ncols=80):
            context = VerificationContext(
                branch_id=entry.get("branch_id"),
                branch_name=entry.get("branch_name"),
                employee_name=entry.get("employee_name"),
                request_id=entry.get("id"),
            )
            images = [ImageInput(url_or_bytes=str(entry["image"]))] if entry.get("image") else []
            result = verifier.verify(images, float(entry.get("amount", 0)), entry.get("date"), context=context)
            outputs.append({"id": entry.get("id"), **result.to_dict()})

        summary = {
            "total": len(outputs),
            "matched": sum(1 for o in outputs if o["success"] and o["is_matched"] and o["is_date_matched"]),
            "failed": sum(1 for o in outputs if not o["success"]),
            "alerts": [a.to_dict() for a in alerter.sent],
            "results": outputs,
        }
        if save_path:
            Path(save_path).parent.mkdir(parents=True, exist_ok=True)
            save_json(summary, save_path)
        return summary

    @staticmethod
    def analyze(image_path: str | Path) -> dict[str, Any]:
        stats, readiness = analyze_image(Path(image_path).read_bytes())
        return {
            "stats": stats.to_dict(),
            "readiness": readiness.to_dict(),
            "suggestions": ocr_readiness_suggestions(readiness),
        }

    @staticmethod
    def enhance(
        image_path: str | Path,
        out_path: str | Path,
        weak: bool = False,
        aggressive: bool = False,
    ) -> dict[str, Any]:
        data = Path(image_path).read_bytes()
        if weak:
            config = WEAK_IMAGE_CONFIG
        else:
            _, readiness = analyze_image(data)
            config = select_profile(readiness)
        result = ReceiptEnhancer(config).enhance(data, allow_aggressive=aggressive)
        Path(out_path).write_bytes(result.buffer)
        return {"profile": config.name, **result.to_dict()}


# -------------------- CLI commands --------------------

def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, ensure_ascii=False))


def cmd_verify(args: argparse.Namespace) -> None:
    api = ReceiptVerifierAPI(Path(args.config), Path(args.extractor_config))
    context = VerificationContext(
        branch_id=args.branch_id, branch_name=args.branch_name, employee_name=args.employee
    )
    _print(api.verify(args.image, args.amount, args.date, context=context))


def cmd_verify_batch(args: argparse.Namespace) -> None:
    api = ReceiptVerifierAPI(Path(args.config), Path(args.extractor_config))
    summary = api.verify_batch(args.manifest, save_path=args.out)
    print(
        f"[verify-batch] {summary['matched']}/{summary['total']} matched, "
        f"{summary['failed']} failed, {len(summary['alerts'])} alert(s)."
        + (f" Results in {args.out}" if args.out else "")
    )


def cmd_analyze(args: argparse.Namespace) -> None:
    _print(ReceiptVerifierAPI.analyze(args.image))


def cmd_enhance(args: argparse.Namespace) -> None:
    _print(ReceiptVerifierAPI.enhance(args.image, args.out, weak=args.weak, aggressive=args.aggressive))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="POS settlement receipt verifier")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    parser.add_argument("--config", default=str(CONFIG_VERIFICATION), help="Verification settings YAML")
    parser.add_argument("--extractor-config", default=str(CONFIG_EXTRACTOR), help="Extractor YAML")
    sub = parser.add_subparsers(dest="command", required=True)

    verify_p = sub.add_parser("verify", help="Verify one receipt photo against an entered amount")
    verify_p.add_argument("image", help="Image path, URL or data URL")
    verify_p.add_argument("--amount", type=float, required=True, help="Operator-entered network total")
    verify_p.add_argument("--date", default=None, help="Operator-entered date (YYYY-MM-DD)")
    verify_p.add_argument("--branch-id", default=None)
    verify_p.add_argument("--branch-name", default=None)
    verify_p.add_argument("--employee", default=None)

    batch_p = sub.add_parser("verify-batch", help="Verify every entry of a YAML manifest")
    batch_p.add_argument("manifest", help="YAML file with a 'verifications' list")
    batch_p.add_argument("--out", default="outputs/verifications.json", help="Summary JSON path")

    analyze_p = sub.add_parser("analyze", help="Report image statistics and OCR readiness")
    analyze_p.add_argument("image", help="Image path")

    enhance_p = sub.add_parser("enhance", help="Run the enhancement pipeline on an image")
    enhance_p.add_argument("image", help="Image path")
    enhance_p.add_argument("out", help="Output path")
    enhance_p.add_argument("--weak", action="store_true", help="Force the weak-image profile instead of choosing by readiness")
    enhance_p.add_argument("--aggressive", action="store_true", help="Allow exceeding the compression cap")

    return parser


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(name)s] %(levelname)s %(message)s",
    )

    commands = {
        "verify": cmd_verify,
        "verify-batch": cmd_verify_batch,
        "analyze": cmd_analyze,
        "enhance": cmd_enhance,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()
