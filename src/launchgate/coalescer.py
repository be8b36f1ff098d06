"""Attribution coalescing.

The attribution provider and the deep-link callback deliver independently
and in no fixed order. The coalescer merges whatever has arrived into one
record, waiting a bounded window for routing after each attribution
delivery.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Mapping
from typing import Any

from launchgate._constants import COALESCE_WINDOW_S, ROUTING_PREFIX
from launchgate.models.records import AttributionRecord, RoutingRecord, merge_records
from launchgate.state.store import PersistentStore

_logger = logging.getLogger(__name__)


class AttributionCoalescer:
    """Merge attribution and routing deliveries into one record.

    Parameters
    ----------
    store : PersistentStore
        Receives every record as it arrives, and holds the durable
        "routing finalized" flag.
    on_merged : callable
        Called with the merged :class:`AttributionRecord`. May be called
        more than once per session; each call supersedes the previous one.
    on_routing : callable, optional
        Called with the :class:`RoutingRecord` as soon as it arrives.
    window : float
        Seconds to wait for routing after the latest attribution delivery.
    loop : asyncio.AbstractEventLoop, optional
        Loop that runs the window timer. Defaults to the running loop.
    """

    def __init__(
        self,
        store: PersistentStore,
        *,
        on_merged: Callable[[AttributionRecord], None],
        on_routing: Callable[[RoutingRecord], None] | None = None,
        window: float = COALESCE_WINDOW_S,
        prefix: str = ROUTING_PREFIX,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self._store = store
        self._on_merged = on_merged
        self._on_routing = on_routing
        self._window = window
        self._prefix = prefix
        self._loop = loop
        self._attribution: AttributionRecord | None = None
        self._routing: RoutingRecord | None = None
        self._timer: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        """Whether a window timer is armed."""
        return self._timer is not None

    @property
    def attribution(self) -> AttributionRecord | None:
        return self._attribution

    @property
    def routing(self) -> RoutingRecord | None:
        return self._routing

    def _get_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def on_attribution(self, data: Mapping[Any, Any] | AttributionRecord) -> None:
        """Accept an attribution delivery and (re)open the window."""
        record = data if isinstance(data, AttributionRecord) else AttributionRecord.from_raw(data)
        self._attribution = record
        self._store.put_attribution(record)
        _logger.debug("Attribution received (%d keys, error=%s)", len(record.data), record.is_error)

        self._arm_timer()
        if self._routing is not None:
            self._emit()

    def on_attribution_failure(self, message: str) -> None:
        """Provider reported failure instead of data."""
        _logger.info("Attribution provider failed: %s", message)
        self.on_attribution(AttributionRecord.failure(message))

    def on_routing(self, data: Mapping[Any, Any] | RoutingRecord) -> None:
        """Accept the deep-link delivery.

        Ignored once the durable finalized flag is set, so duplicate
        callbacks and warm restarts do not reprocess routing.
        """
        if self._store.is_routing_finalized():
            _logger.debug("Routing already finalized; ignoring delivery")
            return

        record = data if isinstance(data, RoutingRecord) else RoutingRecord.from_raw(data)
        self._routing = record
        self._store.put_routing(record)
        self._store.mark_routing_finalized()
        _logger.debug("Routing received (%d keys)", len(record.data))

        if self._on_routing is not None:
            try:
                self._on_routing(record)
            except Exception:
                _logger.debug("on_routing callback failed", exc_info=True)

        self._cancel_timer()
        if self._attribution is not None:
            self._emit()

    def close(self) -> None:
        self._cancel_timer()

    def _arm_timer(self) -> None:
        self._cancel_timer()
        self._timer = self._get_loop().call_later(self._window, self._on_window_elapsed)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_window_elapsed(self) -> None:
        self._timer = None
        _logger.debug("Coalescing window elapsed without routing")
        self._emit()

    def _emit(self) -> None:
        self._cancel_timer()
        attribution = self._attribution
        if attribution is None:
            return
        merged = merge_records(attribution, self._routing, prefix=self._prefix)
        try:
            self._on_merged(merged)
        except Exception:
            _logger.debug("on_merged callback failed", exc_info=True)
