"""launchgate - Attribution-gated launch workflow for mobile app shells."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("launchgate")
except PackageNotFoundError:
    __version__ = "0+local"
from launchgate.coalescer import AttributionCoalescer
from launchgate.config import EnvironmentProfile, LaunchConfig
from launchgate.exceptions import (
    EligibilityError,
    LaunchGateConfigError,
    LaunchGateError,
    LaunchGateStorageError,
    RemoteError,
    RemoteProtocolError,
    RemoteRateLimitError,
    RemoteTransportError,
)
from launchgate.launcher import LaunchSession, open_store
from launchgate.models import (
    AttributionRecord,
    Decision,
    DecisionKind,
    DecisionReason,
    PermissionPromptState,
    RoutingRecord,
    SetupState,
    WorkflowState,
    merge_records,
)
from launchgate.orchestrator import WorkflowOrchestrator
from launchgate.push import PendingDestination, PushPayloadExtractor
from launchgate.remote import RemoteClient, build_destination_payload
from launchgate.signals import OnceSignal, Signal, UiSignals
from launchgate.state import JsonFileBackend, LaunchStore, MemoryBackend, PersistentStore

__all__ = [
    "__version__",
    "AttributionCoalescer",
    "AttributionRecord",
    "Decision",
    "DecisionKind",
    "DecisionReason",
    "EligibilityError",
    "EnvironmentProfile",
    "JsonFileBackend",
    "LaunchConfig",
    "LaunchGateConfigError",
    "LaunchGateError",
    "LaunchGateStorageError",
    "LaunchSession",
    "LaunchStore",
    "MemoryBackend",
    "OnceSignal",
    "PendingDestination",
    "PermissionPromptState",
    "PersistentStore",
    "PushPayloadExtractor",
    "RemoteClient",
    "RemoteError",
    "RemoteProtocolError",
    "RemoteRateLimitError",
    "RemoteTransportError",
    "RoutingRecord",
    "SetupState",
    "Signal",
    "UiSignals",
    "WorkflowOrchestrator",
    "WorkflowState",
    "build_destination_payload",
    "merge_records",
    "open_store",
]
