"""
VerificationSettings: tunables for the verification pipeline, loaded from
``configs/verification.yaml``.  Missing files or keys fall back to the
defaults below; ``VERIFICATION_CONFIG`` overrides the file location.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

import yaml

from extractors.prompts import DEFAULT_PROMPT_ORDER

from .alerts import MIN_AMOUNT_DIFFERENCE
from .matcher import AMOUNT_TOLERANCE_PERCENTAGE, DATE_TOLERANCE_DAYS
from .ocr_warnings import KNOWN_PAYMENT_SECTIONS, AmountLimits

logger = logging.getLogger(__name__)

CONFIG_PATH = Path(__file__).parent.parent / "configs" / "verification.yaml"
CONFIG_ENV_VAR = "VERIFICATION_CONFIG"


@dataclass
class VerificationSettings:
    # matching
    amount_tolerance_percentage: float = AMOUNT_TOLERANCE_PERCENTAGE
    date_tolerance_days: int = DATE_TOLERANCE_DAYS
    use_graduated_tolerance: bool = False
    # retry / consensus
    max_retries: int = 3
    prompt_order: List[str] = field(default_factory=lambda: list(DEFAULT_PROMPT_ORDER))
    variance_threshold: float = 0.1
    enable_smart_fallback: bool = True
    allow_aggressive_enhancement: bool = False
    # warnings / alerts
    min_amount_difference: float = MIN_AMOUNT_DIFFERENCE
    amount_limits: AmountLimits = field(default_factory=AmountLimits)
    known_sections: List[str] = field(default_factory=lambda: list(KNOWN_PAYMENT_SECTIONS))
    # audit
    audit_log_path: str | None = None

    @classmethod
    def from_yaml(cls, config_path: str | Path | None = None) -> "VerificationSettings":
        path = Path(config_path or os.getenv(CONFIG_ENV_VAR) or CONFIG_PATH)
        if not path.exists():
            logger.info("No verification config at %s; using defaults", path)
            return cls()

        with open(path, encoding="utf-8") as f:
            cfg = yaml.safe_load(f) or {}
        return cls.from_dict(cfg)

    @classmethod
    def from_dict(cls, cfg: dict) -> "VerificationSettings":
        d = cls()
        m_cfg = cfg.get("matching", {}) or {}
        r_cfg = cfg.get("retry", {}) or {}
        a_cfg = cfg.get("alerts", {}) or {}
        l_cfg = cfg.get("amount_limits", {}) or {}
        au_cfg = cfg.get("audit", {}) or {}

        return cls(
            amount_tolerance_percentage=float(m_cfg.get("amount_tolerance_percentage", d.amount_tolerance_percentage)),
            date_tolerance_days=int(m_cfg.get("date_tolerance_days", d.date_tolerance_days)),
            use_graduated_tolerance=bool(m_cfg.get("use_graduated_tolerance", d.use_graduated_tolerance)),
            max_retries=int(r_cfg.get("max_retries", d.max_retries)),
            prompt_order=list(r_cfg.get("prompt_order") or d.prompt_order),
            variance_threshold=float(r_cfg.get("variance_threshold", d.variance_threshold)),
            enable_smart_fallback=bool(r_cfg.get("enable_smart_fallback", d.enable_smart_fallback)),
            allow_aggressive_enhancement=bool(
                r_cfg.get("allow_aggressive_enhancement", d.allow_aggressive_enhancement)
            ),
            min_amount_difference=float(a_cfg.get("min_amount_difference", d.min_amount_difference)),
            amount_limits=AmountLimits(
                minimum=float(l_cfg.get("min", d.amount_limits.minimum)),
                maximum=float(l_cfg.get("max", d.amount_limits.maximum)),
                suspicious=float(l_cfg.get("suspicious", d.amount_limits.suspicious)),
            ),
            known_sections=list(cfg.get("known_sections") or d.known_sections),
            audit_log_path=au_cfg.get("path", d.audit_log_path),
        )
