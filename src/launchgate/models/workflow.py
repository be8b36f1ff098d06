"""Workflow state machine models."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, model_validator


class WorkflowState(StrEnum):
    INITIALIZING = "initializing"
    PROCESSING = "processing"
    VERIFYING = "verifying"
    VERIFIED = "verified"
    ACTIVE = "active"
    STANDBY = "standby"
    DISCONNECTED = "disconnected"

    @property
    def is_terminal(self) -> bool:
        return self in (WorkflowState.ACTIVE, WorkflowState.STANDBY)


class DecisionKind(StrEnum):
    NATIVE = "native"
    DESTINATION = "destination"


class DecisionReason(StrEnum):
    DEADLINE = "deadline"
    INELIGIBLE = "ineligible"
    NO_DATA = "no_data"
    PENDING = "pending"
    REMOTE = "remote"
    REMOTE_FAILED = "remote_failed"
    CACHE = "cache"
    REATTRIBUTION_FAILED = "reattribution_failed"
    PIPELINE_FAILED = "pipeline_failed"


class SetupState(BaseModel):
    """Durable setup flags restored at launch."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    is_first_run: bool = True
    last_resolved_destination: str | None = None
    last_resolved_status: str | None = None


class Decision(BaseModel):
    """The single terminal navigation outcome of a launch."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: DecisionKind
    reason: DecisionReason
    url: str | None = None
    decided_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @model_validator(mode="after")
    def _url_matches_kind(self) -> Decision:
        if self.kind == DecisionKind.DESTINATION and not self.url:
            raise ValueError("destination decision requires a url")
        if self.kind == DecisionKind.NATIVE and self.url is not None:
            raise ValueError("native decision must not carry a url")
        return self

    @classmethod
    def native(cls, reason: DecisionReason) -> Decision:
        return cls(kind=DecisionKind.NATIVE, reason=reason)

    @classmethod
    def destination(cls, url: str, reason: DecisionReason) -> Decision:
        return cls(kind=DecisionKind.DESTINATION, url=url, reason=reason)

    @property
    def state(self) -> WorkflowState:
        """Workflow state this decision settles in."""
        if self.kind == DecisionKind.DESTINATION:
            return WorkflowState.ACTIVE
        return WorkflowState.STANDBY
