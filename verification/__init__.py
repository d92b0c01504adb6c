"""
verification — Settlement receipt verification pipeline.

Modules
-------
verifier      Entry point: ``BalanceVerifier.verify()``.
retry         Sequential extraction attempts with smart enhancement fallback.
normalizer    Amount and date parsing, year-plausibility correction.
matcher       Tolerance matching and confidence resolution.
ocr_warnings  Typed, severity-ranked warnings and section analysis.
models        Result and input dataclasses.
image_source  Image reference resolution with a signed URL cache.
audit         Audit log records and sinks.
alerts        Discrepancy alert gating and delivery.
config        YAML-backed settings.
errors        Exception taxonomy.

Import the entry point from its module (``from verification.verifier import
BalanceVerifier``); this package is imported by ``extractors`` and
``imaging`` for the shared errors and must stay import-light.
"""

from .errors import (
    DecodeError,
    ExtractionParseError,
    ImageUnavailableError,
    ModelInvocationError,
    ReferenceExpiredError,
    VerificationError,
)

__all__ = [
    "VerificationError",
    "DecodeError",
    "ExtractionParseError",
    "ModelInvocationError",
    "ReferenceExpiredError",
    "ImageUnavailableError",
]
