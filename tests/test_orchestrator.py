from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

import pytest

from launchgate._transport import HttpResponse
from launchgate.config import LaunchConfig
from launchgate.exceptions import (
    EligibilityError,
    LaunchGateError,
    LaunchGateStorageError,
    RemoteProtocolError,
    RemoteTransportError,
)
from launchgate.models import (
    AttributionRecord,
    DecisionKind,
    DecisionReason,
    PermissionPromptState,
    RoutingRecord,
    WorkflowState,
)
from launchgate.orchestrator import WorkflowOrchestrator
from launchgate.push import PendingDestination
from launchgate.remote import RemoteClient
from launchgate.state import LaunchStore, MemoryBackend
from launchgate.state.store import StoreKey

NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
LANDING = "https://example.test/landing"
CACHED = "https://example.test/cached"
PAID = AttributionRecord(data={"af_status": "Non-organic", "campaign": "spring"})
ORGANIC = AttributionRecord(data={"af_status": "Organic"})


class _Check:
    def __init__(self, result: bool = True, *, error: Exception | None = None, gate: asyncio.Event | None = None) -> None:
        self._result = result
        self._error = error
        self._gate = gate
        self.calls = 0

    async def run_check(self) -> bool:
        self.calls += 1
        if self._gate is not None:
            await self._gate.wait()
        if self._error is not None:
            raise self._error
        return self._result


class _Remote:
    def __init__(
        self,
        url: str = LANDING,
        *,
        error: Exception | None = None,
        attribution: dict[str, Any] | Exception | None = None,
    ) -> None:
        self._url = url
        self._error = error
        self._attribution = attribution if attribution is not None else {"af_status": "Organic"}
        self.destination_payloads: list[dict[str, Any]] = []
        self.attribution_devices: list[str] = []

    async def pull_attribution(self, device_id: str) -> dict[str, Any]:
        self.attribution_devices.append(device_id)
        if isinstance(self._attribution, Exception):
            raise self._attribution
        return dict(self._attribution)

    async def pull_destination(self, payload: Mapping[str, Any]) -> str:
        self.destination_payloads.append(dict(payload))
        if self._error is not None:
            raise self._error
        return self._url


class _Permission:
    def __init__(self, granted: bool) -> None:
        self._granted = granted
        self.calls = 0

    async def request_notification_permission(self) -> bool:
        self.calls += 1
        return self._granted


class _RecordingSleep:
    def __init__(self) -> None:
        self.waits: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.waits.append(seconds)


class _Emissions:
    def __init__(self, orchestrator: WorkflowOrchestrator) -> None:
        self.native: list[bool | None] = []
        self.destination: list[str | None] = []
        self.prompt: list[bool] = []
        self.offline: list[bool] = []
        signals = orchestrator.signals
        signals.navigate_to_native_content.subscribe(self.native.append)
        signals.navigate_to_destination.subscribe(self.destination.append)
        signals.show_permission_prompt.subscribe(self.prompt.append)
        signals.show_offline_overlay.subscribe(self.offline.append)

    @property
    def navigations(self) -> int:
        return len(self.native) + len(self.destination)


def _store(
    *,
    cached: str | None = None,
    first_run: bool = True,
    permission: PermissionPromptState | None = None,
) -> LaunchStore:
    store = LaunchStore(MemoryBackend())
    if cached is not None:
        store.put_destination(cached)
    if not first_run:
        store.mark_first_run_complete()
    store.put_permission(permission or PermissionPromptState.answered(True, NOW - timedelta(days=10)))
    return store


def _orchestrator(
    store: LaunchStore,
    remote: Any,
    check: _Check | None = None,
    *,
    deadline: float = 5.0,
    pending: PendingDestination | None = None,
    permission: _Permission | None = None,
    reachability: Any = None,
    sleep: _RecordingSleep | None = None,
) -> WorkflowOrchestrator:
    config = LaunchConfig(app_id="123", deadline=deadline, reattribution_grace=5.0)
    return WorkflowOrchestrator(
        config,
        store,
        remote,
        check or _Check(),
        device_id=lambda: "device-1",
        permission=permission,
        pending=pending,
        reachability=reachability,
        clock=lambda: NOW,
        sleep=sleep or _RecordingSleep(),
    )


@pytest.mark.asyncio
async def test_start_moves_to_processing_and_waits_for_record() -> None:
    orchestrator = _orchestrator(_store(), _Remote())
    assert orchestrator.state == WorkflowState.INITIALIZING

    orchestrator.start()
    await asyncio.sleep(0)

    assert orchestrator.state == WorkflowState.PROCESSING
    assert orchestrator.decision is None
    with pytest.raises(LaunchGateError):
        orchestrator.start()
    await orchestrator.close()


@pytest.mark.asyncio
async def test_record_before_start_is_rejected() -> None:
    orchestrator = _orchestrator(_store(), _Remote())

    with pytest.raises(LaunchGateError):
        orchestrator.on_merged_record(PAID)


@pytest.mark.asyncio
async def test_eligible_paid_install_resolves_remote_destination() -> None:
    store = _store()
    remote = _Remote()
    orchestrator = _orchestrator(store, remote)
    emissions = _Emissions(orchestrator)

    async with orchestrator:
        orchestrator.on_merged_record(PAID)
        assert orchestrator.state == WorkflowState.VERIFYING
        decision = await orchestrator.wait_decision()

    assert decision.kind == DecisionKind.DESTINATION
    assert decision.url == LANDING
    assert decision.reason == DecisionReason.REMOTE
    assert orchestrator.state == WorkflowState.ACTIVE
    assert emissions.destination == [LANDING]
    assert emissions.native == []

    assert store.get_destination() == LANDING
    assert store.get_setup_status() == "Active"
    assert not store.is_first_run()
    assert orchestrator.setup.is_first_run is False

    payload = remote.destination_payloads[0]
    assert payload["af_status"] == "Non-organic"
    assert payload["af_id"] == "device-1"
    assert payload["store_id"] == "id123"


@pytest.mark.parametrize(
    "check",
    [
        _Check(False),
        _Check(error=RuntimeError("check backend down")),
        _Check(error=EligibilityError("device rejected")),
    ],
)
@pytest.mark.asyncio
async def test_ineligible_or_failing_check_fails_open_to_native(check: _Check) -> None:
    store = _store(cached=CACHED)
    remote = _Remote()
    orchestrator = _orchestrator(store, remote, check)
    emissions = _Emissions(orchestrator)

    async with orchestrator:
        orchestrator.on_merged_record(PAID)
        decision = await orchestrator.wait_decision()

    assert decision.kind == DecisionKind.NATIVE
    assert decision.reason == DecisionReason.INELIGIBLE
    assert orchestrator.state == WorkflowState.STANDBY
    assert emissions.native == [True]
    assert emissions.destination == []
    assert remote.destination_payloads == []


@pytest.mark.asyncio
async def test_transient_failures_then_success_makes_three_calls() -> None:
    class _Transport:
        def __init__(self) -> None:
            self.calls = 0

        async def get(self, url: str, **_kwargs: Any) -> HttpResponse:  # pragma: no cover
            raise AssertionError("attribution pull not expected")

        async def post_json(self, url: str, **_kwargs: Any) -> HttpResponse:
            self.calls += 1
            if self.calls < 3:
                raise RemoteTransportError("connection reset", endpoint=url)
            return HttpResponse(status=200, text=f'{{"ok": true, "url": "{LANDING}"}}', url=url)

    transport = _Transport()
    sleep = _RecordingSleep()
    config = LaunchConfig(app_id="123")
    store = _store()

    async with RemoteClient(config, transport=transport, sleep=sleep) as remote:
        orchestrator = _orchestrator(store, remote)
        async with orchestrator:
            orchestrator.on_merged_record(PAID)
            decision = await orchestrator.wait_decision()

    assert decision.kind == DecisionKind.DESTINATION
    assert decision.url == LANDING
    assert orchestrator.state == WorkflowState.ACTIVE
    assert transport.calls == 3
    assert sleep.waits == [4.5, 9.0]


@pytest.mark.asyncio
async def test_remote_failure_falls_back_to_cache_without_flipping_first_run() -> None:
    store = _store(cached=CACHED)
    orchestrator = _orchestrator(store, _Remote(error=RemoteProtocolError("HTTP 500", status_code=500)))
    emissions = _Emissions(orchestrator)

    async with orchestrator:
        orchestrator.on_merged_record(PAID)
        decision = await orchestrator.wait_decision()

    assert decision.url == CACHED
    assert decision.reason == DecisionReason.CACHE
    assert orchestrator.state == WorkflowState.ACTIVE
    assert emissions.destination == [CACHED]
    assert store.is_first_run()
    assert store.get_setup_status() is None


@pytest.mark.asyncio
async def test_remote_failure_without_cache_goes_to_standby() -> None:
    store = _store()
    orchestrator = _orchestrator(store, _Remote(error=RemoteTransportError("offline")))

    async with orchestrator:
        orchestrator.on_merged_record(PAID)
        decision = await orchestrator.wait_decision()

    assert decision.kind == DecisionKind.NATIVE
    assert decision.reason == DecisionReason.REMOTE_FAILED
    assert orchestrator.state == WorkflowState.STANDBY
    assert store.is_first_run()


@pytest.mark.parametrize(("cached", "kind"), [(CACHED, DecisionKind.DESTINATION), (None, DecisionKind.NATIVE)])
@pytest.mark.asyncio
async def test_empty_record_uses_cache_or_standby(cached: str | None, kind: DecisionKind) -> None:
    remote = _Remote()
    orchestrator = _orchestrator(_store(cached=cached), remote)

    async with orchestrator:
        orchestrator.on_merged_record(AttributionRecord())
        decision = await orchestrator.wait_decision()

    assert decision.kind == kind
    assert decision.url == cached
    assert remote.destination_payloads == []


@pytest.mark.asyncio
async def test_pending_destination_skips_network() -> None:
    pending = PendingDestination()
    pending.set("https://example.test/from-push")
    remote = _Remote()
    store = _store()
    check = _Check()
    orchestrator = _orchestrator(store, remote, check, pending=pending)

    async with orchestrator:
        orchestrator.on_merged_record(ORGANIC)
        decision = await orchestrator.wait_decision()

    assert decision.url == "https://example.test/from-push"
    assert decision.reason == DecisionReason.PENDING
    assert check.calls == 1
    assert remote.destination_payloads == []
    assert remote.attribution_devices == []
    assert pending.peek() is None
    assert store.is_first_run()


@pytest.mark.asyncio
async def test_organic_first_run_pulls_fresh_attribution() -> None:
    store = _store()
    store.put_routing(RoutingRecord(data={"deep_link_value": "promo", "af_status": "ignored"}))
    remote = _Remote(attribution={"af_status": "Non-organic", "media_source": "late_network"})
    sleep = _RecordingSleep()
    orchestrator = _orchestrator(store, remote, sleep=sleep)

    async with orchestrator:
        orchestrator.on_merged_record(ORGANIC)
        decision = await orchestrator.wait_decision()

    assert decision.url == LANDING
    assert sleep.waits == [5.0]
    assert remote.attribution_devices == ["device-1"]
    payload = remote.destination_payloads[0]
    assert payload["af_status"] == "Non-organic"
    assert payload["media_source"] == "late_network"
    assert payload["deep_link_value"] == "promo"
    assert store.get_attribution().data == {
        "af_status": "Non-organic",
        "media_source": "late_network",
        "deep_link_value": "promo",
    }


@pytest.mark.asyncio
async def test_organic_returning_user_skips_reattribution() -> None:
    remote = _Remote()
    sleep = _RecordingSleep()
    orchestrator = _orchestrator(_store(first_run=False), remote, sleep=sleep)

    async with orchestrator:
        orchestrator.on_merged_record(ORGANIC)
        await orchestrator.wait_decision()

    assert sleep.waits == []
    assert remote.attribution_devices == []
    assert len(remote.destination_payloads) == 1


@pytest.mark.asyncio
async def test_reattribution_failure_goes_to_standby() -> None:
    remote = _Remote(attribution=RemoteProtocolError("HTTP 404", status_code=404))
    orchestrator = _orchestrator(_store(cached=CACHED), remote)

    async with orchestrator:
        orchestrator.on_merged_record(ORGANIC)
        decision = await orchestrator.wait_decision()

    assert decision.kind == DecisionKind.NATIVE
    assert decision.reason == DecisionReason.REATTRIBUTION_FAILED
    assert remote.destination_payloads == []


@pytest.mark.asyncio
async def test_deadline_without_any_record_goes_native_once() -> None:
    orchestrator = _orchestrator(_store(), _Remote(), deadline=0.05)
    emissions = _Emissions(orchestrator)

    async with orchestrator:
        decision = await asyncio.wait_for(orchestrator.wait_decision(), timeout=1.0)
        await asyncio.sleep(0.1)

    assert decision.reason == DecisionReason.DEADLINE
    assert orchestrator.state == WorkflowState.STANDBY
    assert emissions.native == [True]
    assert emissions.navigations == 1


@pytest.mark.asyncio
async def test_deadline_beats_slow_pipeline_and_pipeline_result_is_discarded() -> None:
    gate = asyncio.Event()
    check = _Check(gate=gate)
    remote = _Remote()
    store = _store()
    orchestrator = _orchestrator(store, remote, check, deadline=0.05)
    emissions = _Emissions(orchestrator)

    async with orchestrator:
        orchestrator.on_merged_record(PAID)
        decision = await asyncio.wait_for(orchestrator.wait_decision(), timeout=1.0)
        gate.set()
        await asyncio.sleep(0.05)

    assert decision.reason == DecisionReason.DEADLINE
    assert emissions.native == [True]
    assert emissions.destination == []
    assert remote.destination_payloads == []
    assert store.get_destination() is None
    assert store.is_first_run()


@pytest.mark.asyncio
async def test_pipeline_success_cancels_deadline() -> None:
    orchestrator = _orchestrator(_store(), _Remote(), deadline=0.1)
    emissions = _Emissions(orchestrator)

    async with orchestrator:
        orchestrator.on_merged_record(PAID)
        await orchestrator.wait_decision()
        await asyncio.sleep(0.2)

    assert orchestrator.decision is not None
    assert orchestrator.decision.reason == DecisionReason.REMOTE
    assert emissions.navigations == 1
    assert emissions.native == []


@pytest.mark.asyncio
async def test_later_records_update_running_pipeline_without_second_check() -> None:
    gate = asyncio.Event()
    check = _Check(gate=gate)
    remote = _Remote()
    orchestrator = _orchestrator(_store(), remote, check)

    async with orchestrator:
        orchestrator.on_merged_record(AttributionRecord(data={"af_status": "Non-organic", "v": "1"}))
        await asyncio.sleep(0)
        orchestrator.on_merged_record(AttributionRecord(data={"af_status": "Non-organic", "v": "2"}))
        gate.set()
        await orchestrator.wait_decision()
        orchestrator.on_merged_record(AttributionRecord(data={"af_status": "Non-organic", "v": "3"}))
        await asyncio.sleep(0)

    assert check.calls == 1
    assert len(remote.destination_payloads) == 1
    assert remote.destination_payloads[0]["v"] == "2"


@pytest.mark.asyncio
async def test_offline_overlay_follows_connectivity_until_decision() -> None:
    orchestrator = _orchestrator(_store(), _Remote())
    emissions = _Emissions(orchestrator)

    async with orchestrator:
        orchestrator.set_connectivity(False)
        assert orchestrator.signals.show_offline_overlay.value is True
        assert orchestrator.display_state == WorkflowState.DISCONNECTED
        assert orchestrator.state == WorkflowState.PROCESSING

        orchestrator.set_connectivity(True)
        assert orchestrator.signals.show_offline_overlay.value is False

        orchestrator.set_connectivity(False)
        orchestrator.on_merged_record(PAID)
        await orchestrator.wait_decision()
        assert orchestrator.signals.show_offline_overlay.value is False

        orchestrator.set_connectivity(False)
        assert orchestrator.signals.show_offline_overlay.value is False
        assert orchestrator.display_state == WorkflowState.ACTIVE

    assert emissions.offline == [True, False, True, False]


@pytest.mark.asyncio
async def test_reachability_feed_drives_overlay() -> None:
    seen = asyncio.Event()

    async def _feed() -> AsyncIterator[bool]:
        yield False
        seen.set()
        await asyncio.Event().wait()

    orchestrator = _orchestrator(_store(), _Remote(), reachability=_feed())

    async with orchestrator:
        await asyncio.wait_for(seen.wait(), timeout=1.0)
        assert orchestrator.signals.show_offline_overlay.value is True


@pytest.mark.asyncio
async def test_prompt_shown_then_allow_requests_permission_and_navigates() -> None:
    store = _store(permission=PermissionPromptState.initial())
    permission = _Permission(granted=True)
    orchestrator = _orchestrator(store, _Remote(), permission=permission)
    emissions = _Emissions(orchestrator)

    async with orchestrator:
        orchestrator.on_merged_record(PAID)
        await orchestrator.wait_decision()
        assert emissions.prompt == [True]
        assert emissions.destination == []

        granted = await orchestrator.allow_permission()

    assert granted is True
    assert permission.calls == 1
    assert emissions.prompt == [True, False]
    assert emissions.destination == [LANDING]
    assert store.get_permission() == PermissionPromptState.answered(True, NOW)


@pytest.mark.asyncio
async def test_skip_prompt_persists_cooldown_and_navigates() -> None:
    store = _store(permission=PermissionPromptState.skipped(NOW - timedelta(days=4)))
    permission = _Permission(granted=True)
    orchestrator = _orchestrator(store, _Remote(), permission=permission)
    emissions = _Emissions(orchestrator)

    async with orchestrator:
        orchestrator.on_merged_record(PAID)
        await orchestrator.wait_decision()
        orchestrator.skip_permission()
        orchestrator.skip_permission()
        assert await orchestrator.allow_permission() is False

    assert permission.calls == 0
    assert emissions.destination == [LANDING]
    assert store.get_permission() == PermissionPromptState.skipped(NOW)


@pytest.mark.asyncio
async def test_recently_skipped_prompt_is_not_shown() -> None:
    store = _store(permission=PermissionPromptState.skipped(NOW - timedelta(days=2)))
    orchestrator = _orchestrator(store, _Remote())
    emissions = _Emissions(orchestrator)

    async with orchestrator:
        orchestrator.on_merged_record(PAID)
        await orchestrator.wait_decision()

    assert emissions.prompt == []
    assert emissions.destination == [LANDING]


@pytest.mark.asyncio
async def test_native_decision_never_prompts() -> None:
    store = _store(permission=PermissionPromptState.initial())
    orchestrator = _orchestrator(store, _Remote(), _Check(False))
    emissions = _Emissions(orchestrator)

    async with orchestrator:
        orchestrator.on_merged_record(PAID)
        await orchestrator.wait_decision()

    assert emissions.prompt == []
    assert emissions.native == [True]


class _FullDiskStore(LaunchStore):
    def put_destination(self, url: str) -> None:
        raise LaunchGateStorageError("disk full")


@pytest.mark.parametrize(("cached", "kind"), [(CACHED, DecisionKind.DESTINATION), (None, DecisionKind.NATIVE)])
@pytest.mark.asyncio
async def test_storage_failure_in_pipeline_falls_back_without_waiting_for_deadline(
    cached: str | None, kind: DecisionKind
) -> None:
    backend = MemoryBackend()
    if cached is not None:
        backend.write(StoreKey.DESTINATION, cached)
    store = _FullDiskStore(backend)
    store.put_permission(PermissionPromptState.answered(True, NOW - timedelta(days=10)))
    orchestrator = _orchestrator(store, _Remote(), deadline=30.0)
    emissions = _Emissions(orchestrator)

    async with orchestrator:
        orchestrator.on_merged_record(PAID)
        decision = await asyncio.wait_for(orchestrator.wait_decision(), timeout=1.0)

    assert decision.kind == kind
    assert decision.url == cached
    assert emissions.navigations == 1
    if cached is None:
        assert decision.reason == DecisionReason.PIPELINE_FAILED
        assert orchestrator.state == WorkflowState.STANDBY
    assert store.is_first_run()


@pytest.mark.asyncio
async def test_failing_device_id_accessor_falls_back() -> None:
    config = LaunchConfig(app_id="123", deadline=30.0)

    def _device_id() -> str:
        raise RuntimeError("sdk not ready")

    orchestrator = WorkflowOrchestrator(config, _store(), _Remote(), _Check(), device_id=_device_id, clock=lambda: NOW)

    async with orchestrator:
        orchestrator.on_merged_record(PAID)
        decision = await asyncio.wait_for(orchestrator.wait_decision(), timeout=1.0)

    assert decision.reason == DecisionReason.PIPELINE_FAILED


@pytest.mark.asyncio
async def test_close_before_decision_releases_waiters() -> None:
    orchestrator = _orchestrator(_store(), _Remote())
    orchestrator.start()
    waiter = asyncio.ensure_future(orchestrator.wait_decision())
    await asyncio.sleep(0)

    await orchestrator.close()

    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(waiter, timeout=1.0)
    assert orchestrator.decision is None
