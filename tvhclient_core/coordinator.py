"""High-level coordinator for TVHeadend live TV access.

This module provides the API host integrations use. It handles:
- Lazy connect/authenticate and session recreation after failures
- The initial-sync barrier gating every read
- Deadline supervision of every public operation
- Turning backend failures into empty results and log lines

Only TvhConfigurationError ever escapes a public method.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import TYPE_CHECKING, Any, TypeVar

from .barrier import SyncBarrier, SyncState
from .config import TvhConfig
from .errors import TvhClientError
from .helpers import (
    AutorecDataHelper,
    ChannelDataHelper,
    DvrDataHelper,
    TunerDataHelper,
)
from .helpers.epg import build_programs
from .models import (
    ChannelInfo,
    ProgramInfo,
    RecordingInfo,
    SeriesTimerDefaults,
    SeriesTimerInfo,
    SeriesTimerRequest,
    ServiceStatus,
    StatusInfo,
    StreamInfo,
    TimerInfo,
    TimerRequest,
    TunerInfo,
)
from .session import HtspSession
from .timeout import TimeoutSupervisor
from .transport.connection import HtspConnection
from .transport.http import TvhHttpClient
from .transport.protocol import (
    AUTOREC_EVENTS,
    DVR_EVENTS,
    INITIAL_SYNC_COMPLETED,
    build_add_autorec_entry,
    build_add_dvr_entry,
    build_cancel_dvr_entry,
    build_delete_autorec_entry,
    build_delete_dvr_entry,
    build_get_events,
    build_get_ticket,
    build_update_autorec_entry,
    build_update_dvr_entry,
    check_response,
)

if TYPE_CHECKING:
    import aiohttp

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

MAX_SUBSCRIPTION_ID = 2_147_483_647


class TvhCoordinator:
    """Single-session TVHeadend client with cached catalog views.

    Usage:
        coordinator = TvhCoordinator(TvhConfig("tvh.local", "user", "secret"))
        coordinator.on_recording_status_changed(my_refresh)
        channels = await coordinator.get_channels()
        await coordinator.create_timer(TimerRequest(...))
        await coordinator.close()
    """

    def __init__(
        self,
        config: TvhConfig,
        *,
        http_session: aiohttp.ClientSession | None = None,
        connection_factory: Callable[[], HtspConnection] = HtspConnection,
    ) -> None:
        self._config = config
        self._connection_factory = connection_factory
        self._http_session = http_session

        self._tuner_helper = TunerDataHelper()
        self._channel_helper = ChannelDataHelper(self._tuner_helper)
        self._dvr_helper = DvrDataHelper(self._channel_helper)
        self._autorec_helper = AutorecDataHelper(self._channel_helper)

        self._barrier = SyncBarrier()
        self._supervisor = TimeoutSupervisor(
            config.request_timeout, cancel_on_timeout=config.cancel_on_timeout
        )
        self._connect_lock = asyncio.Lock()
        self._connected = False
        self._closed = False
        self._subscription_id = 0
        self._http: TvhHttpClient | None = None
        self._session: HtspSession = self._create_session()

        self._recording_status_callback: Callable[[], None] | None = None
        self._data_source_callback: Callable[[], None] | None = None

    # -------------------------------------------------------------------------
    # Public API: State and callbacks
    # -------------------------------------------------------------------------

    @property
    def sync_state(self) -> SyncState:
        return self._barrier.state

    @property
    def is_connected(self) -> bool:
        return self._connected and self._session.is_authenticated

    @property
    def session(self) -> HtspSession:
        return self._session

    def on_recording_status_changed(self, callback: Callable[[], None]) -> None:
        """Register callback fired after every dvr or autorec delta."""
        self._recording_status_callback = callback

    def on_data_source_changed(self, callback: Callable[[], None]) -> None:
        """Register callback fired when the connection is lost."""
        self._data_source_callback = callback

    def cache_stats(self) -> dict[str, dict[str, int]]:
        """Entity counts and unknown-id counters per cache."""
        stats: dict[str, dict[str, int]] = {}
        for helper in (
            self._channel_helper,
            self._tuner_helper,
            self._dvr_helper,
            self._autorec_helper,
        ):
            cache = helper.cache
            stats[cache.kind] = {
                "entities": len(cache),
                "unknown_updates": cache.unknown_updates,
                "unknown_deletes": cache.unknown_deletes,
            }
        return stats

    # -------------------------------------------------------------------------
    # Public API: Connection management
    # -------------------------------------------------------------------------

    async def ensure_connection(self) -> bool:
        """Connect, authenticate and start the initial sync when needed.

        Returns:
            True when an authenticated session is available.

        Raises:
            TvhConfigurationError: required settings are missing
        """
        async with self._connect_lock:
            if self._closed:
                return False

            if self._session.needs_restart():
                _LOGGER.info("[%s] Recreating HTSP session", self._config.server_name)
                old_session = self._session
                self._session = self._create_session()
                self._connected = False
                await old_session.stop()

            if self._connected:
                return True

            config = self._config.validate()
            self._config = config
            self._barrier.mark_disconnected()
            self._http = TvhHttpClient(
                self._http_session,
                config.server_name,
                config.http_port,
                username=config.username,
                password=config.password,
            )

            session = self._session
            try:
                await session.open(config.server_name, config.htsp_port)
                self._barrier.mark_connected()
                authenticated = await session.authenticate(config.username, config.password)
            except TvhClientError as err:
                _LOGGER.warning(
                    "[%s] Connection failed: %s", config.server_name, err
                )
                await self._abort(session)
                return False

            _LOGGER.info(
                "[%s] Connection established: %s", config.server_name, authenticated
            )
            if not authenticated:
                await self._abort(session)
                return False

            self._clean_caches()
            self._barrier.begin_sync()
            self._connected = True
            try:
                await session.enable_async_metadata()
            except TvhClientError as err:
                _LOGGER.warning(
                    "[%s] Could not start initial sync: %s", config.server_name, err
                )
                await self._abort(session)
                return False
            return True

    async def wait_for_initial_sync(
        self, cancel_event: asyncio.Event | None = None
    ) -> bool:
        """Wait for the initial catalog; False on ceiling timeout or cancellation."""
        return await self._barrier.wait(
            self._config.initial_sync_timeout, cancel_event=cancel_event
        )

    async def close(self) -> None:
        """Gracefully close the coordinator."""
        _LOGGER.info("[%s] Closing coordinator", self._config.server_name)
        async with self._connect_lock:
            self._closed = True
            self._connected = False
            self._barrier.mark_disconnected()
            await self._session.stop()

    # -------------------------------------------------------------------------
    # Public API: Catalog snapshots
    # -------------------------------------------------------------------------

    async def get_channels(
        self, cancel_event: asyncio.Event | None = None
    ) -> list[ChannelInfo]:
        return await self._read_snapshot(
            "get_channels", self._channel_helper.build_channels, cancel_event
        )

    async def get_recordings(
        self, cancel_event: asyncio.Event | None = None
    ) -> list[RecordingInfo]:
        """Recordings in progress or completed (scheduled ones are timers)."""
        return await self._read_snapshot(
            "get_recordings", self._dvr_helper.build_recordings, cancel_event
        )

    async def get_timers(
        self, cancel_event: asyncio.Event | None = None
    ) -> list[TimerInfo]:
        return await self._read_snapshot(
            "get_timers", self._dvr_helper.build_timers, cancel_event
        )

    async def get_series_timers(
        self, cancel_event: asyncio.Event | None = None
    ) -> list[SeriesTimerInfo]:
        return await self._read_snapshot(
            "get_series_timers", self._autorec_helper.build_series_timers, cancel_event
        )

    async def get_tuners(
        self, cancel_event: asyncio.Event | None = None
    ) -> list[TunerInfo]:
        return await self._read_snapshot(
            "get_tuners", self._tuner_helper.build_tuners, cancel_event
        )

    async def get_status_info(
        self, cancel_event: asyncio.Event | None = None
    ) -> StatusInfo:
        """Server identity and tuners; UNAVAILABLE when not ready in time."""
        if not await self._prepare("get_status_info", cancel_event):
            return StatusInfo(status=ServiceStatus.UNAVAILABLE)

        outcome = await self._supervisor.run(
            self._tuner_helper.build_tuners(cancel_event)
        )
        tuners: list[TunerInfo] = [] if outcome.has_timeout else outcome.result or []

        http_api_version = None
        if self._http is not None and self._http.has_session:
            try:
                info = await self._http.fetch_server_info()
            except TvhClientError as err:
                _LOGGER.debug("[%s] Server info unavailable: %s", self._config.server_name, err)
            else:
                if info is not None:
                    http_api_version = info.get("api_version")

        session = self._session
        return StatusInfo(
            status=ServiceStatus.OK,
            server_name=session.server_name,
            server_version=session.server_version,
            protocol_version=session.server_protocol_version,
            disk_space=session.disk_space,
            http_api_version=http_api_version,
            tuners=tuners,
        )

    async def get_programs(
        self,
        channel_id: str,
        start: datetime,
        end: datetime,
        cancel_event: asyncio.Event | None = None,
    ) -> list[ProgramInfo]:
        """Guide events of one channel starting within [start, end)."""
        if not await self._prepare("get_programs", cancel_event):
            return []
        response = await self._exchange(
            "get_programs", build_get_events(channel_id)
        )
        if response is None:
            return []
        try:
            return build_programs(response, start, end, cancel_event)
        except (TypeError, ValueError) as err:
            _LOGGER.exception(
                "[%s] get_programs: malformed guide data: %s", self._config.server_name, err
            )
            return []

    # -------------------------------------------------------------------------
    # Public API: Streams
    # -------------------------------------------------------------------------

    async def get_channel_stream(
        self, channel_id: str, cancel_event: asyncio.Event | None = None
    ) -> StreamInfo | None:
        return await self._get_stream(
            "get_channel_stream", build_get_ticket(channel_id=channel_id), cancel_event
        )

    async def get_recording_stream(
        self, recording_id: str, cancel_event: asyncio.Event | None = None
    ) -> StreamInfo | None:
        return await self._get_stream(
            "get_recording_stream", build_get_ticket(dvr_id=recording_id), cancel_event
        )

    async def close_live_stream(self, subscription_id: str) -> None:
        """Ticketed HTTP streams need no server-side teardown."""
        _LOGGER.debug(
            "[%s] Live stream %s closed", self._config.server_name, subscription_id
        )

    # -------------------------------------------------------------------------
    # Public API: Recordings and timers
    # -------------------------------------------------------------------------

    async def create_timer(
        self, request: TimerRequest, cancel_event: asyncio.Event | None = None
    ) -> None:
        await self._mutate(
            "create_timer", lambda: self._dvr_fields(request), cancel_event
        )

    async def update_timer(
        self, request: TimerRequest, cancel_event: asyncio.Event | None = None
    ) -> None:
        """Update the padding of a scheduled recording."""
        if request.id is None:
            _LOGGER.error("[%s] Can't update timer without id", self._config.server_name)
            return
        timer_id = request.id
        await self._mutate(
            "update_timer",
            lambda: build_update_dvr_entry(
                timer_id,
                start_extra_minutes=request.pre_padding_seconds // 60,
                stop_extra_minutes=request.post_padding_seconds // 60,
            ),
            cancel_event,
        )

    async def cancel_timer(
        self, timer_id: str, cancel_event: asyncio.Event | None = None
    ) -> None:
        await self._mutate(
            "cancel_timer", lambda: build_cancel_dvr_entry(timer_id), cancel_event
        )

    async def delete_recording(
        self, recording_id: str, cancel_event: asyncio.Event | None = None
    ) -> None:
        await self._mutate(
            "delete_recording", lambda: build_delete_dvr_entry(recording_id), cancel_event
        )

    async def create_series_timer(
        self, request: SeriesTimerRequest, cancel_event: asyncio.Event | None = None
    ) -> None:
        await self._mutate(
            "create_series_timer",
            lambda: build_add_autorec_entry(**self._autorec_fields(request)),
            cancel_event,
        )

    async def update_series_timer(
        self, request: SeriesTimerRequest, cancel_event: asyncio.Event | None = None
    ) -> None:
        if request.id is None:
            _LOGGER.error(
                "[%s] Can't update series timer without id", self._config.server_name
            )
            return
        rule_id = request.id
        await self._mutate(
            "update_series_timer",
            lambda: build_update_autorec_entry(rule_id, **self._autorec_fields(request)),
            cancel_event,
        )

    async def cancel_series_timer(
        self, rule_id: str, cancel_event: asyncio.Event | None = None
    ) -> None:
        await self._mutate(
            "cancel_series_timer", lambda: build_delete_autorec_entry(rule_id), cancel_event
        )

    async def get_new_timer_defaults(self) -> SeriesTimerDefaults:
        return SeriesTimerDefaults()

    # -------------------------------------------------------------------------
    # Internal: Session and push handling
    # -------------------------------------------------------------------------

    def _create_session(self) -> HtspSession:
        config = self._config
        _LOGGER.debug("[%s] Creating HTSP session", config.server_name)
        session = HtspSession(
            config.client_name,
            config.client_version,
            connect_timeout=config.connect_timeout,
            keepalive_interval=config.keepalive_interval,
            keepalive_timeout=config.keepalive_timeout,
            connection_factory=self._connection_factory,
        )
        session.on_error(self._on_session_error)

        correlator = session.correlator
        self._channel_helper.subscribe(correlator)
        self._dvr_helper.subscribe(correlator)
        self._autorec_helper.subscribe(correlator)
        correlator.subscribe((*DVR_EVENTS, *AUTOREC_EVENTS), self._on_recording_event)
        correlator.subscribe(INITIAL_SYNC_COMPLETED, self._on_initial_sync_completed)
        return session

    async def _abort(self, session: HtspSession) -> None:
        """Discard a half-open session; the next call builds a fresh one."""
        self._connected = False
        self._barrier.mark_disconnected()
        await session.stop()

    def _clean_caches(self) -> None:
        self._channel_helper.clean()
        self._tuner_helper.clean()
        self._dvr_helper.clean()
        self._autorec_helper.clean()

    def _on_initial_sync_completed(self, _message: dict[str, Any]) -> None:
        _LOGGER.info(
            "[%s] Initial sync completed (%d channels, %d dvr entries, %d autorecs)",
            self._config.server_name,
            len(self._channel_helper.cache),
            len(self._dvr_helper.cache),
            len(self._autorec_helper.cache),
        )
        self._barrier.complete()

    def _on_recording_event(self, _message: dict[str, Any]) -> None:
        if self._recording_status_callback:
            self._recording_status_callback()

    def _on_session_error(self, err: Exception) -> None:
        _LOGGER.error("[%s] HTSP error: %s", self._config.server_name, err)
        self._connected = False
        self._barrier.mark_disconnected()
        if self._data_source_callback:
            try:
                self._data_source_callback()
            except Exception as cb_err:
                _LOGGER.exception(
                    "[%s] Data source callback error: %s", self._config.server_name, cb_err
                )

    # -------------------------------------------------------------------------
    # Internal: Operation plumbing
    # -------------------------------------------------------------------------

    async def _prepare(self, operation: str, cancel_event: asyncio.Event | None) -> bool:
        """Ensure connection and wait for the initial sync."""
        if not await self.ensure_connection():
            _LOGGER.info(
                "[%s] %s: not connected", self._config.server_name, operation
            )
            return False
        # The barrier ceiling and the operation deadline both apply; the nearer wins.
        synced = await self._supervisor.run(self.wait_for_initial_sync(cancel_event))
        if synced.has_timeout or not synced.result or (
            cancel_event is not None and cancel_event.is_set()
        ):
            _LOGGER.info(
                "[%s] %s: call cancelled or timed out",
                self._config.server_name,
                operation,
            )
            return False
        return True

    async def _read_snapshot(
        self,
        operation: str,
        build: Callable[[asyncio.Event | None], Awaitable[list[T]]],
        cancel_event: asyncio.Event | None,
    ) -> list[T]:
        if not await self._prepare(operation, cancel_event):
            return []
        try:
            outcome = await self._supervisor.run(build(cancel_event))
        except Exception as err:
            _LOGGER.exception(
                "[%s] %s failed: %s", self._config.server_name, operation, err
            )
            return []
        if outcome.has_timeout:
            _LOGGER.error("[%s] %s timed out", self._config.server_name, operation)
            return []
        return outcome.result or []

    async def _exchange(
        self, operation: str, message: dict[str, Any]
    ) -> dict[str, Any] | None:
        """Supervised request; None on timeout, failure or lost session."""
        method = str(message.get("method"))
        try:
            outcome = await self._supervisor.run(self._session.request(message))
        except TvhClientError as err:
            _LOGGER.error("[%s] %s: %s", self._config.server_name, operation, err)
            return None
        except (TypeError, ValueError) as err:
            _LOGGER.exception(
                "[%s] Can't %s: request not encodable: %s", self._config.server_name, operation, err
            )
            return None
        if outcome.has_timeout:
            _LOGGER.error(
                "[%s] Can't %s because of timeout", self._config.server_name, operation
            )
            return None
        try:
            return check_response(method, outcome.result or {})
        except TvhClientError as err:
            _LOGGER.error("[%s] Can't %s: '%s'", self._config.server_name, operation, err)
            return None

    async def _mutate(
        self,
        operation: str,
        build: Callable[[], dict[str, Any]],
        cancel_event: asyncio.Event | None,
    ) -> None:
        if not await self._prepare(operation, cancel_event):
            return
        try:
            message = build()
        except (TypeError, ValueError) as err:
            _LOGGER.error(
                "[%s] Can't %s: invalid request: %s", self._config.server_name, operation, err
            )
            return
        await self._exchange(operation, message)

    async def _get_stream(
        self,
        operation: str,
        message: dict[str, Any],
        cancel_event: asyncio.Event | None,
    ) -> StreamInfo | None:
        if not await self.ensure_connection():
            return None
        if cancel_event is not None and cancel_event.is_set():
            return None
        response = await self._exchange(operation, message)
        if response is None or self._http is None:
            return None
        path = response.get("path")
        ticket = response.get("ticket")
        if not isinstance(path, str) or not isinstance(ticket, str):
            _LOGGER.error(
                "[%s] %s: ticket response without path/ticket",
                self._config.server_name,
                operation,
            )
            return None
        return StreamInfo(id=str(self._next_subscription_id()), url=self._http.stream_url(path, ticket))

    def _next_subscription_id(self) -> int:
        if self._subscription_id >= MAX_SUBSCRIPTION_ID:
            self._subscription_id = 0
        current = self._subscription_id
        self._subscription_id += 1
        return current

    def _dvr_fields(self, request: TimerRequest) -> dict[str, Any]:
        config = self._config
        return build_add_dvr_entry(
            channel_id=request.channel_id,
            start=request.start_date,
            stop=request.end_date,
            start_extra_minutes=request.pre_padding_seconds // 60,
            stop_extra_minutes=request.post_padding_seconds // 60,
            priority=config.priority,
            config_name=config.profile,
            title=request.name,
            description=request.overview,
            creator=config.username,
        )

    def _autorec_fields(self, request: SeriesTimerRequest) -> dict[str, Any]:
        config = self._config
        return {
            "title": request.title,
            "name": request.name,
            "channel_id": request.channel_id,
            "days_of_week": request.days,
            "start_minutes": request.start_minutes,
            "start_window_minutes": request.start_window_minutes,
            "start_extra_minutes": request.pre_padding_seconds // 60,
            "stop_extra_minutes": request.post_padding_seconds // 60,
            "priority": config.priority,
            "config_name": config.profile,
            "comment": request.overview,
        }
