from __future__ import annotations

from pathlib import Path

import yaml

from .base_extractor import BaseExtractor, ExtractionAttempt, PaymentSection
from .consensus import CombinedExtractionResult, ConsensusEngine
from .hf_extractor import HFVisionExtractor
from .prompts import DEFAULT_PROMPT_ORDER, PROMPTS, PromptVariant, resolve_prompts


def load_extractor_from_config(config_path: str | Path = "configs/extractor.yaml") -> BaseExtractor:
    cfg_path = Path(config_path)
    with open(cfg_path, encoding="utf-8") as f:
        cfg = yaml.safe_load(f) or {}

    ec = cfg.get("extractor", {})
    backend = str(ec.get("backend", "huggingface")).strip().lower()
    if backend not in ("huggingface", "hf"):
        raise ValueError(f"Unsupported extractor backend in config: {backend}")

    return HFVisionExtractor(
        extractor_id=str(ec.get("id", "hf_vision")),
        model_id=str(ec.get("model", "")).strip() or None,
        provider=ec.get("provider"),
        timeout_s=float(ec.get("timeout_s", 120.0)),
        year_window=int(ec.get("year_window", 1)),
        correct_year=bool(ec.get("correct_year", True)),
    )


__all__ = [
    "BaseExtractor",
    "ExtractionAttempt",
    "PaymentSection",
    "HFVisionExtractor",
    "ConsensusEngine",
    "CombinedExtractionResult",
    "PromptVariant",
    "PROMPTS",
    "DEFAULT_PROMPT_ORDER",
    "resolve_prompts",
    "load_extractor_from_config",
]
