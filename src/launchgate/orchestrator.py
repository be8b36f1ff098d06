"""Launch workflow orchestration.

Decides, once per launch, whether the user goes to native content or to a
remotely resolved destination.

All state lives on the event loop that called :meth:`WorkflowOrchestrator.start`.
Timers, the pipeline task and the reachability watcher run as separate
tasks or callbacks on that loop, and every one of them ends in
:meth:`WorkflowOrchestrator._decide`, the only place a navigation decision
is taken.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import AsyncIterable, Awaitable, Callable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any, Protocol

from launchgate._constants import STATUS_ACTIVE
from launchgate.config import LaunchConfig
from launchgate.exceptions import LaunchGateError
from launchgate.models.permission import PermissionPromptState
from launchgate.models.records import AttributionRecord, RoutingRecord, fill_missing
from launchgate.models.workflow import Decision, DecisionKind, DecisionReason, SetupState, WorkflowState
from launchgate.push import PendingDestination
from launchgate.remote import build_destination_payload
from launchgate.signals import UiSignals
from launchgate.state.store import PersistentStore

_logger = logging.getLogger(__name__)


class EligibilityCheck(Protocol):
    async def run_check(self) -> bool: ...


class PermissionRequester(Protocol):
    async def request_notification_permission(self) -> bool: ...


class DestinationSource(Protocol):
    """The part of :class:`~launchgate.remote.RemoteClient` the orchestrator uses."""

    async def pull_attribution(self, device_id: str) -> dict[str, Any]: ...

    async def pull_destination(self, payload: Mapping[str, Any]) -> str: ...


def _utcnow() -> datetime:
    return datetime.now(UTC)


class WorkflowOrchestrator:
    """Launch-time state machine.

    Usage::

        orchestrator = WorkflowOrchestrator(config, store, remote, check, device_id=get_uid)
        orchestrator.start()
        coalescer = AttributionCoalescer(store, on_merged=orchestrator.on_merged_record)
        ...
        decision = await orchestrator.wait_decision()

    Parameters
    ----------
    config : LaunchConfig
        Timings and endpoint settings.
    store : PersistentStore
        Durable state; read in :meth:`start`, written from the loop only.
    remote : DestinationSource
        Attribution and destination calls.
    eligibility : EligibilityCheck
        Gate consulted once per launch. Failures count as "not eligible".
    device_id : callable
        Returns the attribution provider's device identifier.
    permission : PermissionRequester, optional
        Asks the OS for notification permission when the user accepts the
        in-app prompt.
    pending : PendingDestination, optional
        Slot filled by push handling with a destination that bypasses the
        network calls.
    reachability : async iterable of bool, optional
        Connectivity feed. ``False`` shows the offline overlay until a
        decision is taken.
    """

    def __init__(
        self,
        config: LaunchConfig,
        store: PersistentStore,
        remote: DestinationSource,
        eligibility: EligibilityCheck,
        *,
        device_id: Callable[[], str],
        permission: PermissionRequester | None = None,
        pending: PendingDestination | None = None,
        reachability: AsyncIterable[bool] | None = None,
        signals: UiSignals | None = None,
        clock: Callable[[], datetime] = _utcnow,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._config = config
        self._store = store
        self._remote = remote
        self._eligibility = eligibility
        self._device_id = device_id
        self._permission = permission
        self._pending = pending
        self._reachability = reachability
        self._signals = signals if signals is not None else UiSignals()
        self._clock = clock
        self._sleep = sleep

        self._state = WorkflowState.INITIALIZING
        self._attribution = AttributionRecord()
        self._routing = RoutingRecord()
        self._prompt_state = PermissionPromptState.initial()
        self._setup = SetupState()
        self._connected = True

        self._loop: asyncio.AbstractEventLoop | None = None
        self._decision: Decision | None = None
        self._decision_future: asyncio.Future[Decision] | None = None
        self._deadline: asyncio.TimerHandle | None = None
        self._pipeline: asyncio.Task[None] | None = None
        self._watcher: asyncio.Task[None] | None = None
        self._answering_prompt = False

    # ------------------------------------------------------------------
    # Context manager lifecycle
    # ------------------------------------------------------------------

    async def __aenter__(self) -> WorkflowOrchestrator:
        self.start()
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    def start(self) -> None:
        """Restore persisted state, arm the deadline and begin processing."""
        if self._state != WorkflowState.INITIALIZING:
            raise LaunchGateError("Orchestrator already started")
        loop = asyncio.get_running_loop()
        self._loop = loop
        self._decision_future = loop.create_future()

        self._restore()
        if self._reachability is not None:
            self._watcher = loop.create_task(self._watch_reachability(self._reachability))
        self._deadline = loop.call_later(self._config.deadline, self._on_deadline)
        self._set_state(WorkflowState.PROCESSING)

    async def close(self) -> None:
        """Cancel timers and background tasks.

        If no decision was taken, pending :meth:`wait_decision` calls are
        cancelled.
        """
        if self._decision_future is not None and not self._decision_future.done():
            self._decision_future.cancel()
        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None
        tasks = [task for task in (self._pipeline, self._watcher) if task is not None and not task.done()]
        for task in tasks:
            task.cancel()
        for task in tasks:
            with contextlib.suppress(asyncio.CancelledError):
                await task

    def _restore(self) -> None:
        self._attribution = self._store.get_attribution()
        self._routing = self._store.get_routing()
        self._prompt_state = self._store.get_permission()
        self._setup = self._store.load_setup()
        _logger.debug(
            "Restored state: first_run=%s cached_destination=%s",
            self._setup.is_first_run,
            self._setup.last_resolved_destination is not None,
        )

    # ------------------------------------------------------------------
    # Public state
    # ------------------------------------------------------------------

    @property
    def state(self) -> WorkflowState:
        return self._state

    @property
    def display_state(self) -> WorkflowState:
        """:attr:`state`, overlaid with ``DISCONNECTED`` while offline and undecided."""
        if not self._connected and self._decision is None:
            return WorkflowState.DISCONNECTED
        return self._state

    @property
    def decision(self) -> Decision | None:
        return self._decision

    @property
    def signals(self) -> UiSignals:
        return self._signals

    @property
    def setup(self) -> SetupState:
        return self._setup

    @property
    def attribution(self) -> AttributionRecord:
        return self._attribution

    @property
    def permission_state(self) -> PermissionPromptState:
        return self._prompt_state

    async def wait_decision(self) -> Decision:
        if self._decision_future is None:
            raise LaunchGateError("Orchestrator not started")
        return await asyncio.shield(self._decision_future)

    def _set_state(self, state: WorkflowState) -> None:
        if state == self._state:
            return
        _logger.info("Workflow %s -> %s", self._state.value, state.value)
        self._state = state

    # ------------------------------------------------------------------
    # Inputs
    # ------------------------------------------------------------------

    def on_merged_record(self, record: AttributionRecord) -> None:
        """Accept a merged record from the coalescer.

        The first record starts verification. Later records replace the
        one the running pipeline will send; they never start a second
        pipeline.
        """
        self._attribution = record
        if self._decision is not None:
            _logger.debug("Merged record after decision; ignoring")
            return
        if self._state == WorkflowState.INITIALIZING:
            raise LaunchGateError("Orchestrator not started")
        if self._pipeline is not None:
            _logger.debug("Merged record updated while pipeline is running")
            return

        self._set_state(WorkflowState.VERIFYING)
        assert self._loop is not None  # noqa: S101
        self._pipeline = self._loop.create_task(self._run_pipeline())

    def on_routing_record(self, record: RoutingRecord) -> None:
        """Keep the latest routing record for the re-attribution merge."""
        self._routing = record

    def set_connectivity(self, connected: bool) -> None:
        """Apply a reachability update. Never changes :attr:`state`."""
        self._connected = connected
        if self._decision is not None:
            return
        self._signals.show_offline_overlay.set(not connected)

    async def _watch_reachability(self, feed: AsyncIterable[bool]) -> None:
        try:
            async for connected in feed:
                self.set_connectivity(bool(connected))
        except asyncio.CancelledError:
            raise
        except Exception:
            _logger.debug("Reachability feed failed", exc_info=True)

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def _run_pipeline(self) -> None:
        try:
            eligible = await self._eligibility.run_check()
        except asyncio.CancelledError:
            raise
        except Exception:
            _logger.warning("Eligibility check failed; staying on native content", exc_info=True)
            eligible = False

        if not eligible:
            self._decide(Decision.native(DecisionReason.INELIGIBLE))
            return

        self._set_state(WorkflowState.VERIFIED)
        try:
            decision = await self._resolve()
        except asyncio.CancelledError:
            raise
        except Exception:
            _logger.warning("Launch pipeline failed; falling back", exc_info=True)
            decision = self._fallback(DecisionReason.PIPELINE_FAILED)
        self._decide(decision)

    async def _resolve(self) -> Decision:
        if not self._attribution.has_data:
            return self._fallback(DecisionReason.NO_DATA)

        pending = self._pending.take() if self._pending is not None else None
        if pending:
            _logger.info("Using destination delivered by push")
            return Decision.destination(pending, DecisionReason.PENDING)

        organic = self._attribution.is_organic(self._config.organic_key, self._config.organic_value)
        if self._setup.is_first_run and organic:
            try:
                await self._reattribute()
            except asyncio.CancelledError:
                raise
            except Exception:
                _logger.warning("Re-attribution failed; staying on native content", exc_info=True)
                return Decision.native(DecisionReason.REATTRIBUTION_FAILED)

        return await self._fetch_destination()

    async def _reattribute(self) -> None:
        """Give late attribution a grace period, then pull a fresh snapshot."""
        await self._sleep(self._config.reattribution_grace)
        pulled = await self._remote.pull_attribution(self._device_id())
        record = fill_missing(AttributionRecord.from_raw(pulled), self._routing)
        self._attribution = record
        self._store.put_attribution(record)
        _logger.info("Re-attribution pulled %d keys", len(record.data))

    async def _fetch_destination(self) -> Decision:
        payload = build_destination_payload(
            self._config,
            self._attribution,
            device_id=self._device_id(),
            push_token=self._store.get_push_token(),
        )
        try:
            url = await self._remote.pull_destination(payload)
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            _logger.warning("Destination fetch failed: %s", exc)
            return self._fallback(DecisionReason.REMOTE_FAILED)

        self._store.put_destination(url)
        self._store.put_setup_status(STATUS_ACTIVE)
        self._store.mark_first_run_complete()
        self._setup = SetupState(
            is_first_run=False,
            last_resolved_destination=url,
            last_resolved_status=STATUS_ACTIVE,
        )
        return Decision.destination(url, DecisionReason.REMOTE)

    def _fallback(self, reason: DecisionReason) -> Decision:
        cached = self._setup.last_resolved_destination
        if cached:
            _logger.info("Falling back to cached destination (%s)", reason.value)
            return Decision.destination(cached, DecisionReason.CACHE)
        return Decision.native(reason)

    # ------------------------------------------------------------------
    # Arbitration
    # ------------------------------------------------------------------

    def _on_deadline(self) -> None:
        self._deadline = None
        if self._decision is not None:
            return
        _logger.warning("No decision after %.1fs; going to native content", self._config.deadline)
        self._decide(Decision.native(DecisionReason.DEADLINE))

    def _decide(self, decision: Decision) -> bool:
        """Take the launch's navigation decision. Only the first call wins."""
        if self._decision is not None:
            _logger.debug("Decision %s discarded; already decided", decision.reason.value)
            return False
        self._decision = decision

        if self._deadline is not None:
            self._deadline.cancel()
            self._deadline = None
        pipeline = self._pipeline
        if pipeline is not None and not pipeline.done() and pipeline is not asyncio.current_task():
            pipeline.cancel()

        self._set_state(decision.state)
        self._signals.show_offline_overlay.set(False)
        _logger.info("Decision: %s (%s)", decision.kind.value, decision.reason.value)

        if decision.kind == DecisionKind.DESTINATION:
            if self._prompt_state.should_prompt(self._clock(), timedelta(seconds=self._config.prompt_cooldown)):
                self._signals.show_permission_prompt.set(True)
            else:
                self._signals.navigate_to_destination.set(decision.url)
        else:
            self._signals.navigate_to_native_content.set(True)

        if self._decision_future is not None and not self._decision_future.done():
            self._decision_future.set_result(decision)
        return True

    # ------------------------------------------------------------------
    # Permission prompt
    # ------------------------------------------------------------------

    async def allow_permission(self) -> bool:
        """User accepted the in-app prompt: ask the OS, then navigate.

        Returns whether permission was granted.
        """
        if not self._signals.show_permission_prompt.value or self._answering_prompt:
            return False
        self._answering_prompt = True
        granted = False
        if self._permission is not None:
            try:
                granted = await self._permission.request_notification_permission()
            except asyncio.CancelledError:
                raise
            except Exception:
                _logger.debug("Permission request failed", exc_info=True)
        self._answer_prompt(PermissionPromptState.answered(granted, self._clock()))
        return granted

    def skip_permission(self) -> None:
        """User dismissed the in-app prompt; it may come back after the cooldown."""
        if not self._signals.show_permission_prompt.value or self._answering_prompt:
            return
        self._answering_prompt = True
        self._answer_prompt(PermissionPromptState.skipped(self._clock()))

    def _answer_prompt(self, state: PermissionPromptState) -> None:
        self._prompt_state = state
        self._store.put_permission(state)
        self._signals.show_permission_prompt.set(False)
        assert self._decision is not None and self._decision.url is not None  # noqa: S101
        self._signals.navigate_to_destination.set(self._decision.url)
