"""Pytest configuration and fixtures for tvhclient_core tests."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest

from tvhclient_core.errors import TvhConnectionError
from tvhclient_core.transport.codec import encode_message
from tvhclient_core.transport.connection import HtspStreamMessage, HtspStreamMessageType
from tvhclient_core.transport.protocol import auth_digest

CHALLENGE = b"0123456789abcdef0123456789abcdef"

Responder = Callable[[dict[str, Any]], "dict[str, Any] | None"]


class FakeHtspConnection:
    """In-memory stand-in for HtspConnection driven by a FakeTvhServer."""

    def __init__(self, server: FakeTvhServer) -> None:
        self.server = server
        self.sent: list[dict[str, Any]] = []
        self._inbox: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
        self._open = False

    async def connect(self, host: str, port: int, *, timeout: float = 15.0) -> None:
        if self.server.refuse_connect:
            raise TvhConnectionError(f"Connection to {host}:{port} refused")
        self._open = True
        self.server.connections.append(self)

    @property
    def is_open(self) -> bool:
        return self._open

    async def close(self) -> None:
        if self._open:
            self._open = False
            self._inbox.put_nowait(None)

    async def send_message(self, message: dict[str, Any]) -> None:
        if not self._open:
            raise TvhConnectionError("HTSP stream is not connected")
        encode_message(message)
        self.sent.append(message)
        for reply in self.server.respond(message):
            self._inbox.put_nowait(reply)

    def push(self, message: dict[str, Any]) -> None:
        """Deliver a server-initiated message."""
        self._inbox.put_nowait(message)

    def drop(self) -> None:
        """Simulate the server closing the stream."""
        self._open = False
        self._inbox.put_nowait(None)

    def __aiter__(self) -> AsyncIterator[HtspStreamMessage]:
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[HtspStreamMessage]:
        while True:
            message = await self._inbox.get()
            if message is None:
                yield HtspStreamMessage(type=HtspStreamMessageType.CLOSED)
                return
            yield HtspStreamMessage(type=HtspStreamMessageType.MESSAGE, data=message)


class FakeTvhServer:
    """Scripted HTSP server.

    Requests are answered from ``handlers`` (method -> responder) or a
    default reply. Methods listed in ``silent`` never get an answer.
    ``enableAsyncMetadata`` is followed by the ``catalog`` pushes and,
    unless ``complete_sync`` is False, by ``initialSyncCompleted``.
    """

    def __init__(self, *, password: str = "secret") -> None:
        self.password = password
        self.handlers: dict[str, Responder] = {}
        self.silent: set[str] = set()
        self.catalog: list[dict[str, Any]] = []
        self.complete_sync = True
        self.refuse_connect = False
        self.connections: list[FakeHtspConnection] = []
        self.requests: list[dict[str, Any]] = []

    def factory(self) -> FakeHtspConnection:
        return FakeHtspConnection(self)

    @property
    def connection(self) -> FakeHtspConnection:
        return self.connections[-1]

    def methods(self) -> list[str]:
        return [str(r.get("method")) for r in self.requests]

    def respond(self, message: dict[str, Any]) -> list[dict[str, Any]]:
        method = str(message.get("method"))
        self.requests.append(message)
        if method in self.silent:
            return []

        handler = self.handlers.get(method)
        reply = handler(message) if handler else self._default_reply(message)
        out = [] if reply is None else [{**reply, "seq": message["seq"]}]
        if method == "enableAsyncMetadata":
            out.extend(self.catalog)
            if self.complete_sync:
                out.append({"method": "initialSyncCompleted"})
        return out

    def _default_reply(self, message: dict[str, Any]) -> dict[str, Any]:
        method = message.get("method")
        if method == "hello":
            return {
                "htspversion": 25,
                "servername": "Tvheadend",
                "serverversion": "4.2.8",
                "challenge": CHALLENGE,
            }
        if method == "authenticate":
            if message.get("digest") == auth_digest(self.password, CHALLENGE):
                return {}
            return {"noaccess": 1}
        if method == "getDiskSpace":
            return {"freediskspace": 10 * 1024**3, "totaldiskspace": 100 * 1024**3}
        if method == "getSysTime":
            return {"time": 1_700_000_000, "timezone": 0}
        if method == "enableAsyncMetadata":
            return {}
        return {"success": 1}


@pytest.fixture
def fake_server() -> FakeTvhServer:
    """Create a scripted HTSP server."""
    return FakeTvhServer()


@pytest.fixture
def mock_session() -> MagicMock:
    """Create a mock aiohttp ClientSession."""
    import aiohttp

    return MagicMock(spec=aiohttp.ClientSession)


def create_mock_response(
    status: int = 200,
    json_data: dict[str, Any] | list[Any] | None = None,
) -> AsyncMock:
    """Create a configured mock response.

    Args:
        status: HTTP status code
        json_data: Data to return from json() call

    Returns:
        Configured AsyncMock response
    """
    response = AsyncMock()
    response.status = status

    if json_data is not None:
        response.json.return_value = json_data

    response.__aenter__.return_value = response
    response.__aexit__.return_value = None

    return response


def channel_add(
    channel_id: int,
    name: str,
    *,
    number: int | None = None,
    services: list[dict[str, Any]] | None = None,
) -> dict[str, Any]:
    message: dict[str, Any] = {
        "method": "channelAdd",
        "channelId": channel_id,
        "channelName": name,
    }
    if number is not None:
        message["channelNumber"] = number
    if services is not None:
        message["services"] = services
    return message


def dvr_add(entry_id: int, channel_id: int, title: str, state: str, **extra: Any) -> dict[str, Any]:
    return {
        "method": "dvrEntryAdd",
        "id": entry_id,
        "channel": channel_id,
        "title": title,
        "state": state,
        "start": 1_700_000_000,
        "stop": 1_700_003_600,
        **extra,
    }
