"""HTSP connection session.

This module owns the single duplex connection to a TVHeadend server. It
handles:
- Opening the stream and running the one background receive task
- The hello/authenticate handshake and server identity
- Request sending with ``seq`` correlation
- Keepalive probing and staleness detection

A session is never repaired: once ``needs_restart()`` reports True the
owner builds a new session object.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from .correlator import LoopBackResponseHandler, MessageHandler, ResponseCorrelator
from .errors import (
    TvhClientError,
    TvhConnectionError,
    TvhHandshakeError,
    TvhProtocolError,
    TvhTimeout,
)
from .transport.connection import HtspConnection, HtspStreamMessageType
from .transport.protocol import (
    build_authenticate,
    build_enable_async_metadata,
    build_get_disk_space,
    build_get_sys_time,
    build_hello,
    parse_hello,
)

_LOGGER = logging.getLogger(__name__)

HANDSHAKE_TIMEOUT = 30.0


def format_disk_space(free_bytes: Any, total_bytes: Any = None) -> str:
    """Human readable free space, e.g. ``"12.5 GiB of 931.5 GiB"``."""
    if not isinstance(free_bytes, int):
        return "unknown"
    text = f"{free_bytes / 1024**3:.1f} GiB"
    if isinstance(total_bytes, int) and total_bytes > 0:
        text += f" of {total_bytes / 1024**3:.1f} GiB"
    return text


class HtspSession:
    """Low-level HTSP session.

    Usage:
        session = HtspSession("TVHclient", "1.0")
        session.on_error(my_error_handler)
        await session.open("tvh.local", 9982)
        if await session.authenticate("user", "secret"):
            reply = await session.request({"method": "getSysTime"})
        await session.stop()
    """

    def __init__(
        self,
        client_name: str,
        client_version: str,
        *,
        connect_timeout: float = 15.0,
        handshake_timeout: float = HANDSHAKE_TIMEOUT,
        keepalive_interval: float | None = None,
        keepalive_timeout: float = 20.0,
        connection_factory: Callable[[], HtspConnection] = HtspConnection,
    ) -> None:
        """Initialize session.

        Args:
            client_name: Name announced in ``hello``
            client_version: Version announced in ``hello``
            connect_timeout: TCP connect deadline (seconds)
            handshake_timeout: Deadline for each handshake exchange (seconds)
            keepalive_interval: Seconds between ``getSysTime`` probes, None disables
            keepalive_timeout: Seconds a probe may stay unanswered
            connection_factory: Builds the stream wrapper (tests inject fakes)
        """
        self.client_name = client_name
        self.client_version = client_version
        self.host: str | None = None
        self.port: int | None = None

        self._connect_timeout = connect_timeout
        self._handshake_timeout = handshake_timeout
        self._keepalive_interval = keepalive_interval
        self._keepalive_timeout = keepalive_timeout
        self._connection_factory = connection_factory

        # Connection state
        self._connection: HtspConnection | None = None
        self._correlator = ResponseCorrelator()
        self._listen_task: asyncio.Task[None] | None = None
        self._keepalive_task: asyncio.Task[None] | None = None
        self._connected = False
        self._authenticated = False
        self._restart_required = False
        self._shutdown_requested = False
        self.last_error: Exception | None = None

        # Server identity
        self.server_name: str | None = None
        self.server_version: str | None = None
        self.server_protocol_version: int | None = None
        self.disk_space: str | None = None

        self._error_callback: Callable[[Exception], None] | None = None

    @property
    def _tag(self) -> str:
        return f"{self.host}:{self.port}"

    # -------------------------------------------------------------------------
    # Public API: Lifecycle
    # -------------------------------------------------------------------------

    @property
    def correlator(self) -> ResponseCorrelator:
        return self._correlator

    @property
    def is_connected(self) -> bool:
        return self._connected

    @property
    def is_authenticated(self) -> bool:
        return self._connected and self._authenticated

    def on_error(self, callback: Callable[[Exception], None]) -> None:
        """Register the listener told about receive-loop failures."""
        self._error_callback = callback

    def needs_restart(self) -> bool:
        """True once the transport can no longer send or receive."""
        if self._restart_required:
            return True
        return self._connection is not None and not self._connection.is_open

    async def open(self, host: str, port: int) -> None:
        """Open the stream and start the receive task.

        Raises:
            TvhConnectionError: server unreachable
        """
        if self._connection is not None:
            raise RuntimeError("Session already opened; create a new session instead")

        self.host = host
        self.port = port
        _LOGGER.info("[%s] Connecting", self._tag)

        connection = self._connection_factory()
        try:
            await connection.connect(host, port, timeout=self._connect_timeout)
        except TvhTimeout as err:
            self._restart_required = True
            raise TvhConnectionError(f"Connection to {self._tag} timed out") from err
        except TvhConnectionError:
            self._restart_required = True
            raise

        self._connection = connection
        self._connected = True
        self._listen_task = asyncio.create_task(self._listen())
        _LOGGER.debug("[%s] Stream open, receive task started", self._tag)

    async def authenticate(self, username: str, password: str) -> bool:
        """Run hello + authenticate; fetch disk space on success.

        Returns:
            True when the server accepted the credentials.

        Raises:
            TvhHandshakeError: hello failed or a handshake exchange timed out
        """
        try:
            hello = parse_hello(await self._handshake_request(build_hello(
                self.client_name, self.client_version
            )))
        except TvhProtocolError as err:
            raise TvhHandshakeError(f"[{self._tag}] Invalid hello response: {err}") from err

        self.server_name = hello["server_name"]
        self.server_version = hello["server_version"]
        self.server_protocol_version = hello["protocol_version"]
        _LOGGER.debug(
            "[%s] Server %s %s (HTSP v%d)",
            self._tag,
            self.server_name,
            self.server_version,
            self.server_protocol_version,
        )

        reply = await self._handshake_request(
            build_authenticate(username, password, hello["challenge"])
        )
        if reply.get("noaccess") or "error" in reply:
            _LOGGER.error("[%s] Authentication rejected for user %s", self._tag, username)
            self._authenticated = False
            return False

        self._authenticated = True
        _LOGGER.info("[%s] Authenticated as %s", self._tag, username)

        try:
            space = await self._handshake_request(build_get_disk_space())
            self.disk_space = format_disk_space(
                space.get("freediskspace"), space.get("totaldiskspace")
            )
        except TvhClientError as err:
            _LOGGER.warning("[%s] Could not read disk space: %s", self._tag, err)
            self.disk_space = "unknown"

        if self._keepalive_interval and self._keepalive_task is None:
            self._keepalive_task = asyncio.create_task(self._keepalive_loop())
        return True

    async def enable_async_metadata(self) -> None:
        """Start the server's initial replay of its catalog."""
        await self._handshake_request(build_enable_async_metadata())
        _LOGGER.debug("[%s] Async metadata enabled", self._tag)

    async def stop(self) -> None:
        """Tear down the session. Safe to call multiple times."""
        self._shutdown_requested = True
        self._connected = False
        self._restart_required = True

        current = asyncio.current_task()
        for task in (self._keepalive_task, self._listen_task):
            if task is None or task is current or task.done():
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._keepalive_task = None
        self._listen_task = None

        if self._connection is not None:
            await self._connection.close()
        abandoned = self._correlator.abandon_all()
        if abandoned:
            _LOGGER.debug("[%s] Abandoned %d pending requests", self._tag, abandoned)

    # -------------------------------------------------------------------------
    # Public API: Requests
    # -------------------------------------------------------------------------

    async def send_message(self, message: dict[str, Any], handler: MessageHandler) -> int:
        """Send a request; ``handler`` receives the correlated response.

        Returns:
            The ``seq`` correlation key assigned to the request.
        """
        if not self._connected or self._connection is None:
            raise TvhConnectionError(f"[{self._tag}] Session is not connected")

        seq = self._correlator.next_seq()
        self._correlator.register(seq, handler)
        try:
            await self._connection.send_message({**message, "seq": seq})
        except Exception:
            self._correlator.unregister(seq)
            raise
        _LOGGER.debug("[%s] Sent %s seq=%d", self._tag, message.get("method"), seq)
        return seq

    async def request(self, message: dict[str, Any]) -> dict[str, Any]:
        """Send a request and wait for its response."""
        handler = LoopBackResponseHandler()
        seq = await self.send_message(message, handler)
        try:
            return await handler.get_response()
        except asyncio.CancelledError:
            self._correlator.unregister(seq)
            raise

    async def _handshake_request(self, message: dict[str, Any]) -> dict[str, Any]:
        try:
            return await asyncio.wait_for(self.request(message), self._handshake_timeout)
        except TimeoutError as err:
            raise TvhHandshakeError(
                f"[{self._tag}] {message.get('method')} timed out"
            ) from err

    # -------------------------------------------------------------------------
    # Internal: Receive loop
    # -------------------------------------------------------------------------

    async def _listen(self) -> None:
        """Read and dispatch frames until the stream fails."""
        if self._connection is None:
            return

        message_count = 0
        failure: Exception | None = None

        try:
            async for msg in self._connection:
                if msg.type == HtspStreamMessageType.MESSAGE and msg.data is not None:
                    message_count += 1
                    self._correlator.dispatch(msg.data)
                elif msg.type == HtspStreamMessageType.CLOSED:
                    failure = TvhConnectionError("Connection closed by server")
                    break
                elif msg.type == HtspStreamMessageType.ERROR:
                    failure = msg.error or TvhProtocolError("Malformed HTSP frame")
                    break
            else:
                failure = TvhConnectionError("Stream ended")
        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Receive task cancelled (%d messages)", self._tag, message_count)
            raise
        except Exception as err:
            _LOGGER.exception("[%s] Unexpected receive error: %s", self._tag, err)
            failure = err

        if failure is not None and not self._shutdown_requested:
            self._fail(failure)
            await self._connection.close()

    def _fail(self, err: Exception) -> None:
        """Mark the session dead and notify the error listener once."""
        if self._restart_required:
            return
        self.last_error = err
        self._connected = False
        self._restart_required = True
        _LOGGER.warning("[%s] HTSP session failed: %s", self._tag, err)

        if self._keepalive_task is not None and self._keepalive_task is not asyncio.current_task():
            self._keepalive_task.cancel()
        abandoned = self._correlator.abandon_all()
        if abandoned:
            _LOGGER.debug("[%s] Abandoned %d pending requests", self._tag, abandoned)

        if self._error_callback:
            try:
                self._error_callback(err)
            except Exception as cb_err:
                _LOGGER.exception("[%s] Error callback failed: %s", self._tag, cb_err)

    # -------------------------------------------------------------------------
    # Internal: Keepalive
    # -------------------------------------------------------------------------

    async def _keepalive_loop(self) -> None:
        """Probe the server with getSysTime; a silent server marks the session stale."""
        assert self._keepalive_interval is not None
        try:
            while self._connected and not self._shutdown_requested:
                await asyncio.sleep(self._keepalive_interval)
                try:
                    await asyncio.wait_for(
                        self.request(build_get_sys_time()), self._keepalive_timeout
                    )
                except TimeoutError:
                    _LOGGER.error(
                        "[%s] Keepalive unanswered after %.0fs",
                        self._tag,
                        self._keepalive_timeout,
                    )
                    self._fail(TvhTimeout("Keepalive timed out"))
                    if self._connection is not None:
                        await self._connection.close()
                    break
                except TvhConnectionError:
                    break
        except asyncio.CancelledError:
            _LOGGER.debug("[%s] Keepalive cancelled", self._tag)
