"""Custom exception hierarchy for launchgate."""

from __future__ import annotations


class LaunchGateError(Exception):
    """Base exception for all launchgate errors."""


class LaunchGateConfigError(LaunchGateError):
    """Invalid or missing configuration."""


class LaunchGateStorageError(LaunchGateError):
    """Durable store could not be read or written."""


class RemoteError(LaunchGateError):
    """A remote call failed."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        endpoint: str = "",
    ) -> None:
        self.status_code = status_code
        self.endpoint = endpoint
        super().__init__(message)


class RemoteTransportError(RemoteError):
    """Network-level failure (timeout, DNS, connection reset).

    These are the only failures the destination fetch retries on its own.
    """


class RemoteProtocolError(RemoteError):
    """Server answered, but not with something usable (non-2xx, bad JSON)."""


class RemoteRateLimitError(RemoteError):
    """Server kept answering 429 until the attempt budget ran out."""


class EligibilityError(LaunchGateError):
    """Eligibility check could not produce an answer.

    Check implementations may raise this (or anything else); the
    orchestrator treats every failure as "not eligible".
    """
