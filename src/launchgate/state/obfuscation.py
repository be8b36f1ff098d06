"""Reversible encoding for values that should not sit in plain text.

This is not encryption. It only keeps the routing record from being
readable at a glance in the preferences file.
"""

from __future__ import annotations

import base64
import binascii

_SWAPS: tuple[tuple[str, str], ...] = (("=", "?"), ("+", ":"))


def protect(text: str) -> str:
    """Encode *text* as base64 with ``=`` and ``+`` swapped out."""
    encoded = base64.b64encode(text.encode("utf-8")).decode("ascii")
    for plain, swapped in _SWAPS:
        encoded = encoded.replace(plain, swapped)
    return encoded


def unprotect(text: str) -> str | None:
    """Reverse :func:`protect`. Returns ``None`` for undecodable input."""
    encoded = text
    for plain, swapped in _SWAPS:
        encoded = encoded.replace(swapped, plain)
    try:
        raw = base64.b64decode(encoded, validate=True)
        return raw.decode("utf-8")
    except (binascii.Error, ValueError):
        return None
