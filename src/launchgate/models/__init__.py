"""Data models for launch attribution and workflow state."""

from launchgate.models._base import StringRecord, stringify_mapping, stringify_value
from launchgate.models.permission import DEFAULT_PROMPT_COOLDOWN, PermissionPromptState
from launchgate.models.records import AttributionRecord, RoutingRecord, fill_missing, merge_records
from launchgate.models.workflow import (
    Decision,
    DecisionKind,
    DecisionReason,
    SetupState,
    WorkflowState,
)

__all__ = [
    "DEFAULT_PROMPT_COOLDOWN",
    "AttributionRecord",
    "Decision",
    "DecisionKind",
    "DecisionReason",
    "PermissionPromptState",
    "RoutingRecord",
    "SetupState",
    "StringRecord",
    "WorkflowState",
    "fill_missing",
    "merge_records",
    "stringify_mapping",
    "stringify_value",
]
