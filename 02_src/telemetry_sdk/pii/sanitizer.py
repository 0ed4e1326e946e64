"""PII redaction for event payloads.

Two independent rules apply while walking a structure:

1. Mapping keys containing a blocked field name (case-insensitive substring)
   have their whole value replaced with ``[REDACTED]``.
2. String values that look like an email, a 16-digit card number or a US SSN
   are replaced with a type-specific marker, wherever they appear.

The markers never match the detectors, so sanitizing twice is a no-op.
"""

import re
from collections.abc import Iterable, Mapping
from typing import Any

from ..config import DEFAULT_PII_FIELDS
from ..logging_config import get_logger

logger = get_logger(__name__)

REDACTED = "[REDACTED]"
REDACTED_EMAIL = "[REDACTED_EMAIL]"
REDACTED_CARD = "[REDACTED_CARD]"
REDACTED_SSN = "[REDACTED_SSN]"
TRUNCATED = "[TRUNCATED]"

MAX_DEPTH = 32

_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
_CARD_RE = re.compile(r"^\d{4}-?\d{4}-?\d{4}-?\d{4}$")
_SSN_RE = re.compile(r"^\d{3}-?\d{2}-?\d{4}$")


def _normalise_fields(blocked_fields: Iterable[str]) -> tuple[str, ...]:
    return tuple(f.lower() for f in blocked_fields if f)


def _is_blocked(key: Any, blocked: tuple[str, ...]) -> bool:
    lower_key = str(key).lower()
    return any(name in lower_key for name in blocked)


def _redact_string(value: str) -> str:
    if _EMAIL_RE.match(value):
        return REDACTED_EMAIL
    if _CARD_RE.match(re.sub(r"\s", "", value)):
        return REDACTED_CARD
    if _SSN_RE.match(value):
        return REDACTED_SSN
    return value


def _walk(value: Any, blocked: tuple[str, ...], depth: int) -> Any:
    if depth > MAX_DEPTH:
        return TRUNCATED
    try:
        if isinstance(value, str):
            return _redact_string(value)
        if isinstance(value, Mapping):
            return {
                key: REDACTED if _is_blocked(key, blocked) else _walk(item, blocked, depth + 1)
                for key, item in value.items()
            }
        if isinstance(value, list):
            return [_walk(item, blocked, depth + 1) for item in value]
        if isinstance(value, tuple):
            return tuple(_walk(item, blocked, depth + 1) for item in value)
    except Exception:
        logger.debug("Unsanitizable value of type %s passed through", type(value).__name__)
    return value


def sanitize(value: Any, blocked_fields: Iterable[str] = DEFAULT_PII_FIELDS) -> Any:
    """Return a redacted copy of *value*. Never raises."""
    return _walk(value, _normalise_fields(blocked_fields), 0)


def sanitize_headers(
    headers: Mapping[str, Any] | None,
    blocked_fields: Iterable[str] = DEFAULT_PII_FIELDS,
) -> dict[str, str]:
    """Redact blocked header names. Values are opaque and never pattern-checked."""
    if not headers:
        return {}
    blocked = _normalise_fields(blocked_fields)
    sanitized: dict[str, str] = {}
    try:
        for key, value in headers.items():
            if _is_blocked(key, blocked):
                sanitized[key] = REDACTED
            elif isinstance(value, (list, tuple)):
                sanitized[key] = ", ".join(str(v) for v in value)
            else:
                sanitized[key] = "" if value is None else str(value)
    except Exception:
        logger.debug("Header map of type %s could not be sanitized", type(headers).__name__)
    return sanitized


class PiiSanitizer:
    """Blocked-field list plus an on/off switch, applied field by field."""

    def __init__(self, blocked_fields: Iterable[str] = DEFAULT_PII_FIELDS, enabled: bool = True):
        self._blocked_fields = tuple(blocked_fields)
        self._enabled = enabled

    @property
    def enabled(self) -> bool:
        return self._enabled

    def value(self, value: Any) -> Any:
        """Sanitize an arbitrary structure (no-op when disabled)."""
        if not self._enabled or value is None:
            return value
        return sanitize(value, self._blocked_fields)

    def headers(self, headers: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
        """Sanitize a header map (no-op when disabled)."""
        if not self._enabled:
            return headers
        return sanitize_headers(headers, self._blocked_fields)
