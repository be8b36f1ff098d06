"""Remote calls: attribution pull and destination pull."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from typing import Any

import aiohttp

from launchgate._redact import redact_for_log
from launchgate._transport import AiohttpTransport, HttpResponse, Transport, new_http_session
from launchgate.config import LaunchConfig
from launchgate.exceptions import (
    LaunchGateError,
    RemoteError,
    RemoteProtocolError,
    RemoteRateLimitError,
    RemoteTransportError,
)
from launchgate.models.records import AttributionRecord

_logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[Any]]

HTTP_TOO_MANY_REQUESTS = 429


def build_destination_payload(
    config: LaunchConfig,
    record: AttributionRecord,
    *,
    device_id: str,
    push_token: str | None,
) -> dict[str, Any]:
    """Request body for the destination endpoint.

    The merged attribution record goes out as is; environment fields are
    layered on top and win over same-named attribution keys.
    """
    env = config.environment
    body: dict[str, Any] = dict(record.data)
    body["os"] = env.platform
    body["af_id"] = device_id
    body["bundle_id"] = env.bundle_id
    body["firebase_project_id"] = env.sender_id or None
    body["store_id"] = config.store_id
    body["push_token"] = push_token
    body["locale"] = env.locale[:2].upper() if env.locale else "EN"
    return body


def _parse_destination(response: HttpResponse) -> str:
    data = response.json_object()
    url = data.get("url")
    if data.get("ok") is not True or not isinstance(url, str) or not url:
        raise RemoteProtocolError(
            "Destination response is missing ok/url",
            status_code=response.status,
            endpoint=response.url,
        )
    return url


class RemoteClient:
    """Async client for the attribution and destination endpoints.

    Neither call touches workflow state; they return data or raise a
    :class:`~launchgate.exceptions.RemoteError`.

    Usage::

        async with RemoteClient(config) as remote:
            url = await remote.pull_destination(payload)
    """

    def __init__(
        self,
        config: LaunchConfig,
        *,
        transport: Transport | None = None,
        session: aiohttp.ClientSession | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self._config = config
        self._transport = transport
        self._http_session = session
        self._owns_session = False
        self._sleep = sleep

    async def __aenter__(self) -> RemoteClient:
        if self._transport is None:
            if self._http_session is None:
                self._http_session = new_http_session(self._config.resource_timeout)
                self._owns_session = True
            self._transport = AiohttpTransport(
                self._http_session,
                resource_timeout=self._config.resource_timeout,
            )
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.close()

    async def close(self) -> None:
        if self._owns_session and self._http_session is not None:
            await self._http_session.close()
            self._http_session = None
            self._transport = None
            self._owns_session = False

    def _require_transport(self) -> Transport:
        if self._transport is None:
            raise LaunchGateError("Client not initialized. Use 'async with RemoteClient(...) as remote:'")
        return self._transport

    # ------------------------------------------------------------------
    # Attribution
    # ------------------------------------------------------------------

    async def pull_attribution(self, device_id: str) -> dict[str, Any]:
        """Fetch the install attribution snapshot for *device_id*.

        Single attempt. Any transport failure, non-2xx answer or
        non-object body is raised to the caller.
        """
        transport = self._require_transport()
        url = f"{self._config.attribution_base_url}/{self._config.store_id}"
        response = await transport.get(
            url,
            params={"devkey": self._config.dev_key, "device_id": device_id},
            headers={"accept": "application/json"},
            timeout=self._config.request_timeout,
        )
        if not response.ok:
            raise RemoteProtocolError(
                f"HTTP {response.status} from attribution endpoint",
                status_code=response.status,
                endpoint=url,
            )
        data = response.json_object()
        if self._config.debug_payloads:
            _logger.debug("Attribution snapshot: %s", redact_for_log(data))
        return data

    # ------------------------------------------------------------------
    # Destination
    # ------------------------------------------------------------------

    async def pull_destination(self, payload: Mapping[str, Any]) -> str:
        """Resolve the destination URL for *payload*.

        One attempt per entry of ``config.destination_retry_waits``.

        * Transport errors sleep the attempt's wait and try again.
        * HTTP 429 sleeps ``wait * attempt_number`` and tries again; the
          429 still uses up its attempt.
        * Any other non-2xx answer, or a 2xx without ``ok``/``url``, is
          raised immediately.

        Raises
        ------
        RemoteTransportError
            Last transport error once the attempts ran out.
        RemoteRateLimitError
            If the final attempt was answered with 429.
        RemoteProtocolError
            On a non-retryable answer.
        """
        transport = self._require_transport()
        url = self._config.destination_url
        waits = self._config.destination_retry_waits
        headers = {"user-agent": self._config.environment.user_agent}
        last_exc: RemoteError | None = None

        if self._config.debug_payloads:
            _logger.debug("Destination payload: %s", redact_for_log(dict(payload)))

        for index, wait in enumerate(waits):
            attempt = index + 1
            is_last = attempt == len(waits)
            try:
                response = await transport.post_json(
                    url,
                    payload=payload,
                    headers=headers,
                    timeout=self._config.request_timeout,
                )
            except RemoteTransportError as exc:
                last_exc = exc
                _logger.info("Destination attempt %d/%d failed: %s", attempt, len(waits), exc)
                if not is_last:
                    await self._sleep(wait)
                continue

            if response.ok:
                return _parse_destination(response)

            if response.status == HTTP_TOO_MANY_REQUESTS:
                backoff = wait * attempt
                last_exc = RemoteRateLimitError(
                    f"Destination endpoint rate-limited after {attempt} attempts",
                    status_code=response.status,
                    endpoint=url,
                )
                _logger.info(
                    "Destination rate-limited (429), attempt %d/%d, backing off %.1fs",
                    attempt,
                    len(waits),
                    backoff,
                )
                if not is_last:
                    await self._sleep(backoff)
                continue

            raise RemoteProtocolError(
                f"HTTP {response.status} from destination endpoint: {response.text[:200]}",
                status_code=response.status,
                endpoint=url,
            )

        assert last_exc is not None  # noqa: S101
        raise last_exc
