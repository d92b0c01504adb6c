"""
Exception taxonomy for the verification pipeline.

Every error raised inside the pipeline derives from VerificationError so
that callers at the outer boundary can catch one type.
"""

from __future__ import annotations


class VerificationError(RuntimeError):
    """Base class for all pipeline errors."""


class DecodeError(VerificationError):
    """Image bytes could not be decoded."""


class ExtractionParseError(VerificationError):
    """Model reply could not be parsed into the canonical extraction shape."""


class ModelInvocationError(VerificationError):
    """Network or provider failure while calling the vision model."""


class ReferenceExpiredError(VerificationError):
    """A signed image reference expired and could not be refreshed."""


class ImageUnavailableError(VerificationError):
    """An image reference could not be fetched for a reason other than expiry."""


__all__ = [
    "VerificationError",
    "DecodeError",
    "ExtractionParseError",
    "ModelInvocationError",
    "ReferenceExpiredError",
    "ImageUnavailableError",
]
