"""Push payload handling.

A notification can carry a destination URL of its own. It is parked in a
volatile slot and consumed by the orchestrator's resolution step, ahead of
any network call.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from typing import Any

from launchgate.state.store import PersistentStore

_logger = logging.getLogger(__name__)


class PendingDestination:
    """Process-local slot for a destination delivered out-of-band."""

    def __init__(self) -> None:
        self._url: str | None = None
        self._set_at: float | None = None

    @property
    def set_at(self) -> float | None:
        """Epoch seconds of the last :meth:`set`."""
        return self._set_at

    def set(self, url: str) -> None:
        self._url = url
        self._set_at = time.time()

    def peek(self) -> str | None:
        return self._url

    def take(self) -> str | None:
        url, self._url = self._url, None
        return url


def _nested(payload: Mapping[Any, Any], *path: str) -> Any:
    node: Any = payload
    for key in path:
        if not isinstance(node, Mapping):
            return None
        node = node.get(key)
    return node


# Locations a destination URL has been seen in, most specific last.
_URL_PATHS: tuple[tuple[str, ...], ...] = (
    ("url",),
    ("data", "url"),
    ("aps", "data", "url"),
    ("custom", "target_url"),
)


class PushPayloadExtractor:
    """Pulls a destination URL out of notification payloads."""

    def __init__(self, slot: PendingDestination, store: PersistentStore | None = None) -> None:
        self._slot = slot
        self._store = store

    @staticmethod
    def extract(payload: Mapping[Any, Any]) -> str | None:
        for path in _URL_PATHS:
            value = _nested(payload, *path)
            if isinstance(value, str) and value:
                return value
        return None

    def handle(self, payload: Mapping[Any, Any]) -> str | None:
        """Park the payload's destination, if any, and return it."""
        url = self.extract(payload)
        if url is None:
            return None
        _logger.info("Push payload carries a destination; parking it")
        self._slot.set(url)
        return url

    def on_token(self, token: str) -> None:
        """Remember the push registration token for destination requests."""
        if self._store is None or not token:
            return
        self._store.put_push_token(token)
