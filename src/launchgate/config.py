"""Launch configuration for launchgate."""

from __future__ import annotations

import dataclasses
import os
from typing import Any

from launchgate import _constants as c
from launchgate.exceptions import LaunchGateConfigError


def _env_bool(value: str | None, default: bool) -> bool:
    if value is None:
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    return default


def _env_float(env_key: str, value: str) -> float:
    try:
        return float(value)
    except ValueError as exc:
        raise LaunchGateConfigError(f"{env_key} must be a number, got {value!r}") from exc


def _env_waits(env_key: str, value: str) -> tuple[float, ...]:
    parts = [part.strip() for part in value.split(",") if part.strip()]
    if not parts:
        raise LaunchGateConfigError(f"{env_key} must list at least one wait")
    return tuple(_env_float(env_key, part) for part in parts)


@dataclasses.dataclass(frozen=True)
class EnvironmentProfile:
    """Environment fields sent with every destination request.

    These identify the installed app to the configuration endpoint,
    next to the attribution data itself.
    """

    platform: str = "iOS"
    bundle_id: str = ""
    sender_id: str = ""
    locale: str = "EN"
    user_agent: str = c.USER_AGENT


@dataclasses.dataclass(frozen=True)
class LaunchConfig:
    """Launch workflow configuration.

    Parameters
    ----------
    app_id : str
        Numeric store id of the app (sent as ``id<app_id>``).
    dev_key : str
        Attribution provider dev key used by the attribution pull.
    attribution_base_url : str
        Base URL of the install-data endpoint.
    destination_url : str
        Configuration endpoint that resolves the destination.
    coalesce_window : float
        Seconds to wait for a routing record after the latest
        attribution record before emitting attribution alone.
    deadline : float
        Hard wall-clock budget, in seconds, for reaching a navigation
        decision.  When it elapses the user lands in native content.
    reattribution_grace : float
        Seconds to wait before pulling a fresh attribution snapshot for
        organic first runs.
    request_timeout : float
        Per-request socket timeout in seconds.
    resource_timeout : float
        Total timeout in seconds for a single request, including body.
    destination_retry_waits : tuple of float
        Wait between destination fetch attempts; its length is the
        attempt budget.
    prompt_cooldown : float
        Seconds before a skipped permission prompt may be shown again.
    organic_key, organic_value : str
        Attribution field and value that mark an organic install.
    storage_path : str or None
        JSON file for durable state.  ``None`` keeps state in memory.
    environment : EnvironmentProfile
        Environment fields for the destination request.
    """

    app_id: str = ""
    dev_key: str = ""
    attribution_base_url: str = c.ATTRIBUTION_BASE_URL
    destination_url: str = c.DESTINATION_URL
    coalesce_window: float = c.COALESCE_WINDOW_S
    deadline: float = c.DEADLINE_S
    reattribution_grace: float = c.REATTRIBUTION_GRACE_S
    request_timeout: float = c.REQUEST_TIMEOUT_S
    resource_timeout: float = c.RESOURCE_TIMEOUT_S
    destination_retry_waits: tuple[float, ...] = c.DESTINATION_RETRY_WAITS_S
    prompt_cooldown: float = c.PROMPT_COOLDOWN_S
    organic_key: str = c.ORGANIC_KEY
    organic_value: str = c.ORGANIC_VALUE
    storage_path: str | None = None
    debug_payloads: bool = False
    environment: EnvironmentProfile = dataclasses.field(default_factory=EnvironmentProfile)

    def __post_init__(self) -> None:
        for name in ("coalesce_window", "deadline", "reattribution_grace", "prompt_cooldown"):
            if getattr(self, name) < 0:
                raise LaunchGateConfigError(f"{name} must not be negative")
        if self.request_timeout <= 0 or self.resource_timeout <= 0:
            raise LaunchGateConfigError("timeouts must be positive")
        if not self.destination_retry_waits:
            raise LaunchGateConfigError("destination_retry_waits must not be empty")
        if any(wait < 0 for wait in self.destination_retry_waits):
            raise LaunchGateConfigError("destination_retry_waits must not be negative")

    @property
    def store_id(self) -> str:
        """Store identifier as the endpoints expect it."""
        return f"id{self.app_id}"

    @classmethod
    def from_env(cls, **overrides: Any) -> LaunchConfig:
        """Create configuration from environment variables.

        Reads ``LAUNCHGATE_*`` variables. Explicit keyword arguments
        override environment values.

        Raises
        ------
        LaunchGateConfigError
            If a numeric variable cannot be parsed.
        """
        env = os.environ

        env_kwargs: dict[str, str] = {}
        _ENV_ENVIRONMENT_MAP = {
            "LAUNCHGATE_PLATFORM": "platform",
            "LAUNCHGATE_BUNDLE_ID": "bundle_id",
            "LAUNCHGATE_SENDER_ID": "sender_id",
            "LAUNCHGATE_LOCALE": "locale",
            "LAUNCHGATE_USER_AGENT": "user_agent",
        }
        for env_key, field_name in _ENV_ENVIRONMENT_MAP.items():
            val = env.get(env_key)
            if val is not None:
                env_kwargs[field_name] = val

        environment_overrides = overrides.pop("environment", None)
        if isinstance(environment_overrides, dict):
            env_kwargs.update(environment_overrides)
        elif isinstance(environment_overrides, EnvironmentProfile):
            env_kwargs = dataclasses.asdict(environment_overrides)

        environment = EnvironmentProfile(**env_kwargs) if env_kwargs else EnvironmentProfile()

        _ENV_CONFIG_MAP = {
            "LAUNCHGATE_APP_ID": "app_id",
            "LAUNCHGATE_DEV_KEY": "dev_key",
            "LAUNCHGATE_ATTRIBUTION_URL": "attribution_base_url",
            "LAUNCHGATE_DESTINATION_URL": "destination_url",
            "LAUNCHGATE_ORGANIC_KEY": "organic_key",
            "LAUNCHGATE_ORGANIC_VALUE": "organic_value",
            "LAUNCHGATE_STORAGE_PATH": "storage_path",
        }
        config_kwargs: dict[str, Any] = {"environment": environment}
        for env_key, field_name in _ENV_CONFIG_MAP.items():
            val = env.get(env_key)
            if val is not None:
                config_kwargs[field_name] = val

        _ENV_SECONDS_MAP = {
            "LAUNCHGATE_COALESCE_WINDOW": "coalesce_window",
            "LAUNCHGATE_DEADLINE": "deadline",
            "LAUNCHGATE_REATTRIBUTION_GRACE": "reattribution_grace",
            "LAUNCHGATE_REQUEST_TIMEOUT": "request_timeout",
            "LAUNCHGATE_RESOURCE_TIMEOUT": "resource_timeout",
            "LAUNCHGATE_PROMPT_COOLDOWN": "prompt_cooldown",
        }
        for env_key, field_name in _ENV_SECONDS_MAP.items():
            val = env.get(env_key)
            if val is not None and field_name not in overrides:
                config_kwargs[field_name] = _env_float(env_key, val)

        waits_env = env.get("LAUNCHGATE_RETRY_WAITS")
        if waits_env is not None and "destination_retry_waits" not in overrides:
            config_kwargs["destination_retry_waits"] = _env_waits("LAUNCHGATE_RETRY_WAITS", waits_env)

        if "debug_payloads" not in overrides:
            config_kwargs["debug_payloads"] = _env_bool(env.get("LAUNCHGATE_DEBUG_PAYLOADS"), False)

        config_kwargs.update(overrides)

        return cls(**config_kwargs)
