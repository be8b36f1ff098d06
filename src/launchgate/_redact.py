"""Helpers for safe debug logging.

Attribution and destination payloads carry device identifiers, push tokens
and the provider dev key. Secrets are replaced outright; identifiers keep
their last four characters so log lines from one device can still be
correlated.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

_SECRET_KEYS: frozenset[str] = frozenset(
    {
        "devkey",
        "dev_key",
        "push_token",
        "token",
        "authorization",
        "cookie",
    }
)

_IDENTIFIER_KEYS: frozenset[str] = frozenset(
    {
        "device_id",
        "af_id",
        "idfa",
        "idfv",
        "customer_user_id",
    }
)


def mask_identifier(value: Any) -> str:
    """Mask an identifier, keeping only its last four characters."""
    text = str(value)
    if len(text) <= 4:
        return "****"
    return f"****{text[-4:]}"


def redact_for_log(value: Any, *, max_string: int = 512, _depth: int = 0) -> Any:
    """Return a redacted copy of *value* suitable for debug logs."""
    if _depth > 20:
        return "<max-depth>"

    if value is None or isinstance(value, (int, float, bool)):
        return value

    if isinstance(value, str):
        return value if len(value) <= max_string else f"{value[:max_string]}…<truncated>"

    if isinstance(value, bytes):
        return f"<bytes:{len(value)}b>"

    if isinstance(value, Mapping):
        redacted: dict[str, Any] = {}
        for k, v in value.items():
            key = str(k)
            lowered = key.lower()
            if lowered in _SECRET_KEYS:
                redacted[key] = "<redacted>"
            elif lowered in _IDENTIFIER_KEYS and v not in (None, ""):
                redacted[key] = mask_identifier(v)
            else:
                redacted[key] = redact_for_log(v, max_string=max_string, _depth=_depth + 1)
        return redacted

    if isinstance(value, Sequence) and not isinstance(value, bytearray):
        return [redact_for_log(v, max_string=max_string, _depth=_depth + 1) for v in value]

    return repr(value)
