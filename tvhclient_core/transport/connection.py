"""Byte-stream connection carrying HTSMSG frames."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from ..errors import TvhConnectionError, TvhProtocolError, TvhTimeout
from .codec import decode_message, encode_message, frame_length

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

_LOGGER = logging.getLogger(__name__)


async def connect_stream(
    host: str,
    port: int,
    *,
    timeout: float = 15.0,
) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
    """Open a TCP stream to the HTSP endpoint."""
    try:
        return await asyncio.wait_for(
            asyncio.open_connection(host, port),
            timeout=timeout,
        )
    except TimeoutError as err:
        raise TvhTimeout(f"Connection to {host}:{port} timed out") from err
    except OSError as err:
        raise TvhConnectionError(f"Connection to {host}:{port} failed: {err}") from err


class HtspStreamMessageType(Enum):
    """Normalized stream message types."""

    MESSAGE = "message"
    CLOSED = "closed"
    ERROR = "error"


@dataclass(frozen=True)
class HtspStreamMessage:
    """One item read from the stream."""

    type: HtspStreamMessageType
    data: dict[str, Any] | None = None
    error: Exception | None = None


class HtspConnection:
    """Wrapper around an asyncio stream pair speaking HTSMSG."""

    def __init__(self) -> None:
        self._reader: asyncio.StreamReader | None = None
        self._writer: asyncio.StreamWriter | None = None

    @classmethod
    def from_streams(
        cls, reader: asyncio.StreamReader, writer: asyncio.StreamWriter
    ) -> HtspConnection:
        """Wrap an already-open stream pair."""
        connection = cls()
        connection._reader = reader
        connection._writer = writer
        return connection

    async def connect(self, host: str, port: int, *, timeout: float = 15.0) -> None:
        """Connect to the server."""
        self._reader, self._writer = await connect_stream(host, port, timeout=timeout)

    @property
    def is_open(self) -> bool:
        """Return True while the write side is usable."""
        return self._writer is not None and not self._writer.is_closing()

    async def close(self) -> None:
        """Close the stream. Safe to call multiple times."""
        writer = self._writer
        self._writer = None
        if writer is None:
            return
        writer.close()
        try:
            await writer.wait_closed()
        except (OSError, ConnectionError) as err:
            _LOGGER.debug("Error while closing stream: %s", err)

    async def send_message(self, message: dict[str, Any]) -> None:
        """Encode and write one message."""
        if self._writer is None or self._writer.is_closing():
            raise TvhConnectionError("HTSP stream is not connected")
        frame = encode_message(message)
        try:
            self._writer.write(frame)
            await self._writer.drain()
        except (OSError, ConnectionError) as err:
            raise TvhConnectionError(f"Write failed: {err}") from err

    async def receive_message(self) -> dict[str, Any]:
        """Read exactly one message from the stream."""
        if self._reader is None:
            raise TvhConnectionError("HTSP stream is not connected")
        try:
            header = await self._reader.readexactly(4)
            body = await self._reader.readexactly(frame_length(header))
        except asyncio.IncompleteReadError as err:
            raise TvhConnectionError("Connection closed by server") from err
        except (OSError, ConnectionError) as err:
            raise TvhConnectionError(f"Read failed: {err}") from err
        return decode_message(body)

    def __aiter__(self) -> AsyncIterator[HtspStreamMessage]:
        if self._reader is None:
            raise TvhConnectionError("HTSP stream is not connected")
        return self._iter_messages()

    async def _iter_messages(self) -> AsyncIterator[HtspStreamMessage]:
        while True:
            try:
                message = await self.receive_message()
            except TvhConnectionError:
                yield HtspStreamMessage(type=HtspStreamMessageType.CLOSED)
                return
            except TvhProtocolError as err:
                yield HtspStreamMessage(type=HtspStreamMessageType.ERROR, error=err)
                return
            yield HtspStreamMessage(type=HtspStreamMessageType.MESSAGE, data=message)
