"""Durable launch state.

:class:`LaunchStore` is the only component that touches persisted bytes.
Everything else keeps in-memory copies and writes through this store.
"""

from __future__ import annotations

import json
import logging
from datetime import UTC, datetime
from typing import Any, Protocol

from launchgate.models.permission import PermissionPromptState
from launchgate.models.records import AttributionRecord, RoutingRecord
from launchgate.models.workflow import SetupState
from launchgate.state.backends import KeyValueBackend, MemoryBackend
from launchgate.state.obfuscation import protect, unprotect

_logger = logging.getLogger(__name__)


class StoreKey:
    """Logical keys of the persisted layout."""

    ATTRIBUTION = "lg_attribution_record"
    ROUTING = "lg_routing_record"
    DESTINATION = "lg_resolved_destination"
    SETUP_STATUS = "lg_setup_status"
    FIRST_RUN_DONE = "lg_first_run_done"
    PERMISSION_GRANTED = "lg_permission_granted"
    PERMISSION_DENIED = "lg_permission_denied"
    PERMISSION_ASKED_AT = "lg_permission_asked_at"
    ROUTING_FINALIZED = "lg_routing_finalized"
    PUSH_TOKEN = "lg_push_token"


class PersistentStore(Protocol):
    """Typed accessors for durable launch state."""

    def put_attribution(self, record: AttributionRecord) -> None: ...

    def get_attribution(self) -> AttributionRecord: ...

    def put_routing(self, record: RoutingRecord) -> None: ...

    def get_routing(self) -> RoutingRecord: ...

    def put_destination(self, url: str) -> None: ...

    def get_destination(self) -> str | None: ...

    def put_setup_status(self, status: str) -> None: ...

    def get_setup_status(self) -> str | None: ...

    def mark_first_run_complete(self) -> None: ...

    def is_first_run(self) -> bool: ...

    def put_permission(self, state: PermissionPromptState) -> None: ...

    def get_permission(self) -> PermissionPromptState: ...

    def mark_routing_finalized(self) -> None: ...

    def is_routing_finalized(self) -> bool: ...

    def put_push_token(self, token: str) -> None: ...

    def get_push_token(self) -> str | None: ...

    def load_setup(self) -> SetupState: ...


def _to_json(values: dict[str, str]) -> str:
    return json.dumps(values, separators=(",", ":"), ensure_ascii=False)


def _from_json(text: Any) -> dict[str, Any] | None:
    if not isinstance(text, str) or not text:
        return None
    try:
        data = json.loads(text)
    except json.JSONDecodeError:
        return None
    return data if isinstance(data, dict) else None


def _epoch_ms(value: datetime) -> float:
    return value.timestamp() * 1000.0


def _from_epoch_ms(value: Any) -> datetime | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        return None
    return datetime.fromtimestamp(value / 1000.0, tz=UTC)


class LaunchStore:
    """:class:`PersistentStore` over a :class:`KeyValueBackend`.

    The resolved destination is read on every launch and after every
    resolution, so it is shadowed in memory. The backend stays the source
    of truth: the shadow is filled from it at construction.
    """

    def __init__(self, backend: KeyValueBackend | None = None) -> None:
        self._backend: KeyValueBackend = backend if backend is not None else MemoryBackend()
        self._hot: dict[str, str] = {}
        self._warm_up()

    @property
    def backend(self) -> KeyValueBackend:
        return self._backend

    def _warm_up(self) -> None:
        url = self._backend.read(StoreKey.DESTINATION)
        if isinstance(url, str) and url:
            self._hot[StoreKey.DESTINATION] = url

    def _read_str(self, key: str) -> str | None:
        value = self._backend.read(key)
        return value if isinstance(value, str) and value else None

    def _read_bool(self, key: str) -> bool:
        return self._backend.read(key) is True

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def put_attribution(self, record: AttributionRecord) -> None:
        self._backend.write(StoreKey.ATTRIBUTION, _to_json(record.as_dict()))

    def get_attribution(self) -> AttributionRecord:
        data = _from_json(self._backend.read(StoreKey.ATTRIBUTION))
        if data is None:
            return AttributionRecord()
        return AttributionRecord(data=data)

    def put_routing(self, record: RoutingRecord) -> None:
        self._backend.write(StoreKey.ROUTING, protect(_to_json(record.as_dict())))

    def get_routing(self) -> RoutingRecord:
        stored = self._read_str(StoreKey.ROUTING)
        if stored is None:
            return RoutingRecord()
        text = unprotect(stored)
        data = _from_json(text)
        if data is None:
            _logger.debug("Stored routing record is unreadable; ignoring it")
            return RoutingRecord()
        return RoutingRecord(data=data)

    # ------------------------------------------------------------------
    # Destination / setup
    # ------------------------------------------------------------------

    def put_destination(self, url: str) -> None:
        self._backend.write(StoreKey.DESTINATION, url)
        self._hot[StoreKey.DESTINATION] = url

    def get_destination(self) -> str | None:
        hot = self._hot.get(StoreKey.DESTINATION)
        if hot is not None:
            return hot
        return self._read_str(StoreKey.DESTINATION)

    def put_setup_status(self, status: str) -> None:
        self._backend.write(StoreKey.SETUP_STATUS, status)

    def get_setup_status(self) -> str | None:
        return self._read_str(StoreKey.SETUP_STATUS)

    def mark_first_run_complete(self) -> None:
        self._backend.write(StoreKey.FIRST_RUN_DONE, True)

    def is_first_run(self) -> bool:
        return not self._read_bool(StoreKey.FIRST_RUN_DONE)

    def load_setup(self) -> SetupState:
        return SetupState(
            is_first_run=self.is_first_run(),
            last_resolved_destination=self.get_destination(),
            last_resolved_status=self.get_setup_status(),
        )

    # ------------------------------------------------------------------
    # Permission prompt
    # ------------------------------------------------------------------

    def put_permission(self, state: PermissionPromptState) -> None:
        self._backend.write(StoreKey.PERMISSION_GRANTED, state.granted)
        self._backend.write(StoreKey.PERMISSION_DENIED, state.denied)
        if state.asked_at is not None:
            self._backend.write(StoreKey.PERMISSION_ASKED_AT, _epoch_ms(state.asked_at))
        else:
            self._backend.delete(StoreKey.PERMISSION_ASKED_AT)

    def get_permission(self) -> PermissionPromptState:
        granted = self._read_bool(StoreKey.PERMISSION_GRANTED)
        denied = self._read_bool(StoreKey.PERMISSION_DENIED)
        if granted and denied:
            # Both flags can only be set by a foreign writer; trust neither.
            _logger.warning("Stored permission state is contradictory; resetting it")
            granted = denied = False
        return PermissionPromptState(
            granted=granted,
            denied=denied,
            asked_at=_from_epoch_ms(self._backend.read(StoreKey.PERMISSION_ASKED_AT)),
        )

    # ------------------------------------------------------------------
    # Misc flags
    # ------------------------------------------------------------------

    def mark_routing_finalized(self) -> None:
        self._backend.write(StoreKey.ROUTING_FINALIZED, True)

    def is_routing_finalized(self) -> bool:
        return self._read_bool(StoreKey.ROUTING_FINALIZED)

    def put_push_token(self, token: str) -> None:
        self._backend.write(StoreKey.PUSH_TOKEN, token)

    def get_push_token(self) -> str | None:
        return self._read_str(StoreKey.PUSH_TOKEN)
