"""Notification permission prompt state."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

from pydantic import BaseModel, ConfigDict, field_validator, model_validator

from launchgate._constants import PROMPT_COOLDOWN_S

DEFAULT_PROMPT_COOLDOWN = timedelta(seconds=PROMPT_COOLDOWN_S)


class PermissionPromptState(BaseModel):
    """What the user answered the last time the prompt was shown.

    Parameters
    ----------
    granted : bool
        The user allowed notifications.
    denied : bool
        The user was asked by the system and refused.
    asked_at : datetime or None
        When the prompt was last answered or skipped.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    granted: bool = False
    denied: bool = False
    asked_at: datetime | None = None

    @field_validator("asked_at")
    @classmethod
    def _ensure_tz_aware(cls, value: datetime | None) -> datetime | None:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value

    @model_validator(mode="after")
    def _granted_xor_denied(self) -> PermissionPromptState:
        if self.granted and self.denied:
            raise ValueError("permission cannot be both granted and denied")
        return self

    @classmethod
    def initial(cls) -> PermissionPromptState:
        return cls()

    @classmethod
    def answered(cls, granted: bool, now: datetime) -> PermissionPromptState:
        """State after the user accepted the in-app prompt and the system asked."""
        return cls(granted=granted, denied=not granted, asked_at=now)

    @classmethod
    def skipped(cls, now: datetime) -> PermissionPromptState:
        """State after the user dismissed the in-app prompt."""
        return cls(granted=False, denied=False, asked_at=now)

    def should_prompt(self, now: datetime, cooldown: timedelta = DEFAULT_PROMPT_COOLDOWN) -> bool:
        if self.granted or self.denied:
            return False
        if self.asked_at is None:
            return True
        return now - self.asked_at >= cooldown
