"""Key/value backends for durable launch state.

A backend stores JSON-compatible scalars under string keys. Writes must be
durable by the time :meth:`KeyValueBackend.write` returns.
"""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any, Protocol

from launchgate.exceptions import LaunchGateStorageError

_logger = logging.getLogger(__name__)


class KeyValueBackend(Protocol):
    """Structural interface used by :class:`~launchgate.state.store.LaunchStore`."""

    def read(self, key: str) -> Any: ...

    def write(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryBackend:
    """Process-local backend. State is lost when the process exits."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = dict(initial or {})
        self.writes = 0

    def read(self, key: str) -> Any:
        return self._values.get(key)

    def write(self, key: str, value: Any) -> None:
        self._values[key] = value
        self.writes += 1

    def delete(self, key: str) -> None:
        self._values.pop(key, None)

    def snapshot(self) -> dict[str, Any]:
        return dict(self._values)


class JsonFileBackend:
    """Single JSON document on disk, rewritten atomically on every change."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)
        self._values: dict[str, Any] = self._load()

    @property
    def path(self) -> Path:
        return self._path

    def _load(self) -> dict[str, Any]:
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise LaunchGateStorageError(f"Cannot read {self._path}: {exc}") from exc

        try:
            data = json.loads(text)
        except json.JSONDecodeError:
            _logger.warning("State file %s is corrupt; starting from empty state", self._path)
            return {}
        if not isinstance(data, dict):
            _logger.warning("State file %s does not hold an object; starting from empty state", self._path)
            return {}
        return data

    def _flush(self) -> None:
        tmp = self._path.with_suffix(self._path.suffix + ".tmp")
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            with tmp.open("w", encoding="utf-8") as fh:
                json.dump(self._values, fh, separators=(",", ":"))
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp, self._path)
        except OSError as exc:
            raise LaunchGateStorageError(f"Cannot write {self._path}: {exc}") from exc

    def read(self, key: str) -> Any:
        return self._values.get(key)

    def write(self, key: str, value: Any) -> None:
        self._values[key] = value
        self._flush()

    def delete(self, key: str) -> None:
        if self._values.pop(key, None) is not None:
            self._flush()
