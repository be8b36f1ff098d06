"""HTTP transport for the two remote endpoints."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Protocol

import aiohttp

from launchgate._constants import RESOURCE_TIMEOUT_S
from launchgate.exceptions import RemoteProtocolError, RemoteTransportError

_logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class HttpResponse:
    """Status and body of a completed request."""

    status: int
    text: str
    url: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status <= 299

    def json_object(self) -> dict[str, Any]:
        """Decode the body as a JSON object.

        Raises
        ------
        RemoteProtocolError
            If the body is not JSON or not an object.
        """
        try:
            data = json.loads(self.text)
        except json.JSONDecodeError as exc:
            raise RemoteProtocolError(
                f"Invalid JSON from {self.url}: {self.text[:200]}",
                status_code=self.status,
                endpoint=self.url,
            ) from exc
        if not isinstance(data, dict):
            raise RemoteProtocolError(
                f"Expected a JSON object from {self.url}",
                status_code=self.status,
                endpoint=self.url,
            )
        return data


class Transport(Protocol):
    """Transport interface used by :class:`~launchgate.remote.RemoteClient`.

    Implementations raise :class:`RemoteTransportError` for network-level
    failures and return every HTTP answer, whatever its status.
    """

    async def get(
        self,
        url: str,
        *,
        params: Mapping[str, str],
        headers: Mapping[str, str],
        timeout: float,
    ) -> HttpResponse: ...

    async def post_json(
        self,
        url: str,
        *,
        payload: Mapping[str, Any],
        headers: Mapping[str, str],
        timeout: float,
    ) -> HttpResponse: ...


def new_http_session(resource_timeout: float) -> aiohttp.ClientSession:
    """Session with no cookie persistence and no response caching."""
    return aiohttp.ClientSession(
        cookie_jar=aiohttp.DummyCookieJar(),
        headers={"Cache-Control": "no-cache", "Pragma": "no-cache"},
        timeout=aiohttp.ClientTimeout(total=resource_timeout),
    )


class AiohttpTransport:
    """:class:`Transport` over an ``aiohttp.ClientSession``.

    Each request gets ``timeout`` for connecting and for every read, and
    ``resource_timeout`` for the whole exchange.
    """

    def __init__(self, http_session: aiohttp.ClientSession, *, resource_timeout: float = RESOURCE_TIMEOUT_S) -> None:
        self._http = http_session
        self._resource_timeout = resource_timeout

    async def _send(
        self,
        method: str,
        url: str,
        *,
        timeout: float,
        **kwargs: Any,
    ) -> HttpResponse:
        _logger.debug("%s %s", method, url)
        try:
            async with self._http.request(
                method,
                url,
                timeout=aiohttp.ClientTimeout(
                    total=self._resource_timeout,
                    sock_connect=timeout,
                    sock_read=timeout,
                ),
                **kwargs,
            ) as resp:
                try:
                    text = await resp.text()
                except UnicodeDecodeError as exc:
                    raise RemoteProtocolError(
                        f"Undecodable body from {url}",
                        status_code=resp.status,
                        endpoint=url,
                    ) from exc
                _logger.debug("%s %s -> HTTP %d", method, url, resp.status)
                return HttpResponse(status=resp.status, text=text, url=url)
        except TimeoutError as exc:
            raise RemoteTransportError(f"Request to {url} timed out", endpoint=url) from exc
        except aiohttp.ClientError as exc:
            raise RemoteTransportError(f"Request to {url} failed: {exc}", endpoint=url) from exc

    async def get(
        self,
        url: str,
        *,
        params: Mapping[str, str],
        headers: Mapping[str, str],
        timeout: float,
    ) -> HttpResponse:
        return await self._send("GET", url, params=dict(params), headers=dict(headers), timeout=timeout)

    async def post_json(
        self,
        url: str,
        *,
        payload: Mapping[str, Any],
        headers: Mapping[str, str],
        timeout: float,
    ) -> HttpResponse:
        body = json.dumps(payload, separators=(",", ":"))
        merged_headers = {"content-type": "application/json", **headers}
        return await self._send("POST", url, data=body, headers=merged_headers, timeout=timeout)
