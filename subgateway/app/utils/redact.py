from __future__ import annotations

import re
from typing import Any

# Dict keys whose values never reach a log line in clear.
SENSITIVE_KEYS = frozenset({"password", "passwd", "secret", "token", "cookie", "session", "twofactorcode", "totp"})

# Subscription ids and client emails travel in URL paths:
#   /<sub_path>/<sub_id>, /api/traffic/<sub_id>, /getClientTraffics/<email>
_URL_ID_RE = re.compile(r"(/(?:sub|traffic|getClientTraffics)/)([^/\s?#]{3,})", re.IGNORECASE)
_HEADER_COOKIE_RE = re.compile(r"((?:set-)?cookie\s*[:=]\s*)([^\s,;\"']+)", re.IGNORECASE)
_ASSIGNMENT_RE = re.compile(
    r"([\"']?(?:password|passwd|secret|twoFactorCode|totp_secret|session|cookie)[\"']?\s*[:=]\s*[\"']?)"
    r"([^\s,\"'}&]+)",
    re.IGNORECASE,
)


def _stars(text: str, head: int, tail: int) -> str:
    n = len(text)
    if n <= 2:
        return "*" * n
    if head + tail >= n:
        head, tail = 1, (1 if n > 3 else 0)
    return text[:head] + "*" * (n - head - tail) + text[n - tail:]


def mask_secret(value: Any, keep_start: int = 3, keep_end: int = 2) -> str:
    s = str(value or "").strip()
    return _stars(s, keep_start, keep_end) if s else ""


def mask_identifier(value: Any) -> str:
    """Mask a client email or subscription id, keeping enough to correlate logs."""
    s = str(value or "").strip()
    if "@" in s:
        local, _, domain = s.partition("@")
        return f"{_stars(local, 2, 0)}@{domain}"
    return _stars(s, 2, 2)


def redact_log_text(value: Any) -> str:
    text = str(value or "")
    text = _URL_ID_RE.sub(lambda m: m.group(1) + mask_identifier(m.group(2)), text)
    text = _HEADER_COOKIE_RE.sub(lambda m: m.group(1) + mask_secret(m.group(2)), text)
    return _ASSIGNMENT_RE.sub(lambda m: m.group(1) + mask_secret(m.group(2)), text)


def _is_sensitive(key: str) -> bool:
    k = key.strip().lower().replace("_", "")
    return bool(k) and any(word in k for word in SENSITIVE_KEYS)


def redact_for_log(value: Any, *, key_hint: str = "") -> Any:
    """Walk a log payload, masking values under sensitive keys and scrubbing free text."""
    if isinstance(value, dict):
        return {str(k): redact_for_log(v, key_hint=str(k)) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        items = [redact_for_log(v, key_hint=key_hint) for v in value]
        return items if isinstance(value, list) else tuple(items)
    if key_hint and _is_sensitive(key_hint):
        return mask_secret(value)
    return redact_log_text(value) if isinstance(value, str) else value
