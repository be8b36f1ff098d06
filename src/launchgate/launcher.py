"""Wiring of the launch components for a host application."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable, Callable, Mapping
from typing import Any

from launchgate._transport import Transport
from launchgate.coalescer import AttributionCoalescer
from launchgate.config import LaunchConfig
from launchgate.exceptions import LaunchGateError
from launchgate.models.workflow import Decision
from launchgate.orchestrator import EligibilityCheck, PermissionRequester, WorkflowOrchestrator
from launchgate.push import PendingDestination, PushPayloadExtractor
from launchgate.remote import RemoteClient
from launchgate.state.backends import JsonFileBackend, MemoryBackend
from launchgate.state.store import LaunchStore, PersistentStore

_logger = logging.getLogger(__name__)


def open_store(config: LaunchConfig) -> LaunchStore:
    """Store backed by ``config.storage_path``, or memory when unset."""
    if config.storage_path:
        return LaunchStore(JsonFileBackend(config.storage_path))
    return LaunchStore(MemoryBackend())


class LaunchSession:
    """One launch: store, remote client, coalescer and orchestrator.

    SDK callbacks usually arrive on foreign threads; the ``post_*``
    methods hop onto the session's loop before touching any state.

    Usage::

        async with LaunchSession(config, eligibility=check, device_id=get_uid) as launch:
            sdk.on_conversion = launch.post_attribution
            sdk.on_deep_link = launch.post_routing
            decision = await launch.wait_decision()
    """

    def __init__(
        self,
        config: LaunchConfig,
        *,
        eligibility: EligibilityCheck,
        device_id: Callable[[], str],
        store: PersistentStore | None = None,
        permission: PermissionRequester | None = None,
        reachability: AsyncIterable[bool] | None = None,
        transport: Transport | None = None,
    ) -> None:
        self._config = config
        self.store: PersistentStore = store if store is not None else open_store(config)
        self.pending = PendingDestination()
        self.push = PushPayloadExtractor(self.pending, self.store)
        self.remote = RemoteClient(config, transport=transport)
        self.orchestrator = WorkflowOrchestrator(
            config,
            self.store,
            self.remote,
            eligibility,
            device_id=device_id,
            permission=permission,
            pending=self.pending,
            reachability=reachability,
        )
        self._coalescer: AttributionCoalescer | None = None
        self._loop: asyncio.AbstractEventLoop | None = None

    @property
    def coalescer(self) -> AttributionCoalescer:
        if self._coalescer is None:
            raise LaunchGateError("Session not started. Use 'async with LaunchSession(...) as launch:'")
        return self._coalescer

    async def __aenter__(self) -> LaunchSession:
        self._loop = asyncio.get_running_loop()
        await self.remote.__aenter__()
        self._coalescer = AttributionCoalescer(
            self.store,
            on_merged=self.orchestrator.on_merged_record,
            on_routing=self.orchestrator.on_routing_record,
            window=self._config.coalesce_window,
            loop=self._loop,
        )
        self.orchestrator.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        if self._coalescer is not None:
            self._coalescer.close()
        await self.orchestrator.close()
        await self.remote.close()
        self._loop = None

    async def wait_decision(self) -> Decision:
        return await self.orchestrator.wait_decision()

    def _post(self, fn: Callable[..., Any], *args: Any) -> None:
        loop = self._loop
        if loop is None:
            raise LaunchGateError("Session not started")
        loop.call_soon_threadsafe(fn, *args)

    def post_attribution(self, data: Mapping[Any, Any]) -> None:
        self._post(self.coalescer.on_attribution, dict(data))

    def post_attribution_failure(self, message: str) -> None:
        self._post(self.coalescer.on_attribution_failure, message)

    def post_routing(self, data: Mapping[Any, Any]) -> None:
        self._post(self.coalescer.on_routing, dict(data))

    def post_connectivity(self, connected: bool) -> None:
        self._post(self.orchestrator.set_connectivity, connected)

    def post_push_payload(self, payload: Mapping[Any, Any]) -> None:
        self._post(self.push.handle, dict(payload))

    def post_push_token(self, token: str) -> None:
        self._post(self.push.on_token, token)
