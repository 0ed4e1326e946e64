"""PII sanitization module."""

from .sanitizer import (
    REDACTED,
    REDACTED_CARD,
    REDACTED_EMAIL,
    REDACTED_SSN,
    PiiSanitizer,
    sanitize,
    sanitize_headers,
)

__all__ = [
    "PiiSanitizer",
    "sanitize",
    "sanitize_headers",
    "REDACTED",
    "REDACTED_CARD",
    "REDACTED_EMAIL",
    "REDACTED_SSN",
]
