from __future__ import annotations

import re
from typing import Any


_EMAIL_RE = re.compile(r"\b([A-Za-z0-9._%+-])([A-Za-z0-9._%+-]*)(@[A-Za-z0-9.-]+\.[A-Za-z]{2,})\b")
_STRIPE_KEY_RE = re.compile(r"\b(sk|rk|pk)_(live|test)_[A-Za-z0-9]+\b")
_WEBHOOK_SECRET_RE = re.compile(r"\bwhsec_[A-Za-z0-9]+\b")
_CLIENT_SECRET_RE = re.compile(r"\b(pi|seti)_[A-Za-z0-9]+_secret_[A-Za-z0-9]+\b")

_SENSITIVE_KEY_MARKERS = (
    "token",
    "authorization",
    "cookie",
    "secret",
    "signature",
    "password",
    "api_key",
)


def _mask_email(match: re.Match) -> str:
    first = match.group(1)
    domain = match.group(3)
    return f"{first}***{domain}"


def redact_text(value: str) -> str:
    """
    Mask what processor error text tends to echo back: customer emails,
    API keys, webhook secrets, client secrets. Account/transfer ids stay
    readable since operators need them.
    """
    masked = _EMAIL_RE.sub(_mask_email, value)
    masked = _STRIPE_KEY_RE.sub(lambda m: f"{m.group(1)}_{m.group(2)}_[REDACTED]", masked)
    masked = _WEBHOOK_SECRET_RE.sub("whsec_[REDACTED]", masked)
    masked = _CLIENT_SECRET_RE.sub("[REDACTED]", masked)

    if "bearer " in masked.lower():
        return "[REDACTED]"

    return masked


def _is_sensitive_key(key: str) -> bool:
    key_l = (key or "").lower()
    return any(marker in key_l for marker in _SENSITIVE_KEY_MARKERS)


def redact_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, str):
        return redact_text(value)
    if isinstance(value, dict):
        return redact_dict(value)
    if isinstance(value, list):
        return [redact_value(v) for v in value]
    return value


def redact_dict(payload: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for k, v in payload.items():
        if _is_sensitive_key(k):
            out[k] = "[REDACTED]"
        else:
            out[k] = redact_value(v)
    return out
