"""
Transports for the IPFS HTTP API.

A transport is one open connection to one endpoint. ``RemoteStoreClient``
creates transports through a factory, so tests can substitute an
in-process fake for ``HttpRemoteTransport``.
"""

from __future__ import annotations

import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from typing import Any

import aiohttp

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v0"


class TransportResponseError(Exception):
    """Non-2xx answer from the IPFS API."""

    def __init__(self, status_code: int, message: str):
        super().__init__(f"HTTP {status_code}: {message}")
        self.status_code = status_code
        self.message = message


class RemoteTransport(ABC):
    """One connection to a content-addressable store endpoint."""

    endpoint: str

    @abstractmethod
    async def identity(self) -> dict[str, Any]:
        """Liveness probe; returns the node's identity document."""
        ...

    @abstractmethod
    async def add(self, data: bytes, **options: Any) -> dict[str, Any]:
        """Store bytes; returns a dict with at least ``Hash`` and ``Size``."""
        ...

    @abstractmethod
    async def cat(self, cid: str) -> bytes:
        """Read the full content behind a CID."""
        ...

    @abstractmethod
    async def close(self) -> None:
        ...


TransportFactory = Callable[[str, float], RemoteTransport]


class HttpRemoteTransport(RemoteTransport):
    """IPFS (Kubo) HTTP RPC API over aiohttp.

    The timeout is fixed when the session is created and applies to each
    request independently.
    """

    def __init__(self, endpoint: str, timeout: float):
        self.endpoint = endpoint.rstrip("/")
        self.timeout = timeout
        self._session: aiohttp.ClientSession | None = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        return self._session

    def _url(self, command: str) -> str:
        return f"{self.endpoint}{API_PREFIX}/{command}"

    @staticmethod
    async def _check(response: aiohttp.ClientResponse) -> None:
        if response.status >= 400:
            body = await response.text()
            try:
                message = json.loads(body).get("Message", body)
            except (json.JSONDecodeError, AttributeError):
                message = body
            raise TransportResponseError(response.status, message.strip() or response.reason or "")

    async def identity(self) -> dict[str, Any]:
        async with self._get_session().post(self._url("id")) as response:
            await self._check(response)
            return await response.json(content_type=None)

    async def add(self, data: bytes, **options: Any) -> dict[str, Any]:
        form = aiohttp.FormData()
        form.add_field("file", data, filename="blob", content_type="application/octet-stream")
        params = {key: str(value).lower() if isinstance(value, bool) else str(value)
                  for key, value in options.items()}
        async with self._get_session().post(self._url("add"), data=form, params=params) as response:
            await self._check(response)
            # add streams one JSON object per line; the last one is the root
            lines = [line for line in (await response.text()).splitlines() if line.strip()]
            if not lines:
                raise TransportResponseError(response.status, "empty add response")
            return json.loads(lines[-1])

    async def cat(self, cid: str) -> bytes:
        async with self._get_session().post(self._url("cat"), params={"arg": cid}) as response:
            await self._check(response)
            return await response.read()

    async def close(self) -> None:
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


def http_transport_factory(endpoint: str, timeout: float) -> RemoteTransport:
    """Default factory used by RemoteStoreClient."""
    return HttpRemoteTransport(endpoint, timeout)
