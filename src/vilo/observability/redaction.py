"""Redaction helpers for safe logging. Guest contact data and payment
secrets must pass through these before reaching a log line."""

import re
from typing import Any

_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

# Keys whose values are dropped entirely, whatever they look like
_SENSITIVE_KEYS = ("secret", "authorization", "password", "token", "signature", "account_number")

# Opaque identifiers (UUIDs, booking references) can look like phone numbers
_IDENTIFIER_SUFFIXES = ("_id", "reference")

_REDACTED = "[REDACTED]"


def mask_email(email: str) -> str:
    """Keep the first character and the domain: jane@x.com -> j***@x.com."""
    local, sep, domain = email.partition("@")
    if not sep or not local:
        return _REDACTED
    return f"{local[0]}***@{domain}"


def redact_string(value: str) -> str:
    result = _PHONE_PATTERN.sub(_REDACTED, value)
    result = _EMAIL_PATTERN.sub(lambda m: mask_email(m.group(0)), result)
    return result


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        # structure only, never values
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple, set, frozenset)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(marker in lowered for marker in _SENSITIVE_KEYS)


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    context: dict[str, str] = {}
    for k, v in kwargs.items():
        if _is_sensitive(k):
            context[k] = _REDACTED
        elif isinstance(v, str) and k.lower().endswith(_IDENTIFIER_SUFFIXES):
            context[k] = v
        else:
            context[k] = redact_value(v)
    return context
