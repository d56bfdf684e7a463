"""Initial-sync barrier gating reads until the first full catalog arrived."""

from __future__ import annotations

import asyncio
import logging
from enum import Enum

_LOGGER = logging.getLogger(__name__)

DEFAULT_SYNC_TIMEOUT = 900.0


class SyncState(str, Enum):
    """Session sync lifecycle."""

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    SYNC_IN_PROGRESS = "sync_in_progress"
    SYNC_COMPLETE = "sync_complete"


class SyncBarrier:
    """One-shot notification opened by ``initialSyncCompleted``.

    Re-armed on every (re)connection; waiters block on an event instead of
    polling.
    """

    def __init__(self) -> None:
        self._state = SyncState.DISCONNECTED
        self._event = asyncio.Event()

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_open(self) -> bool:
        return self._state is SyncState.SYNC_COMPLETE

    def mark_disconnected(self) -> None:
        self._set_state(SyncState.DISCONNECTED)
        self._event.clear()

    def mark_connected(self) -> None:
        self._set_state(SyncState.CONNECTED)
        self._event.clear()

    def begin_sync(self) -> None:
        self._set_state(SyncState.SYNC_IN_PROGRESS)
        self._event.clear()

    def complete(self) -> None:
        if self._state is SyncState.SYNC_COMPLETE:
            return
        if self._state is not SyncState.SYNC_IN_PROGRESS:
            _LOGGER.debug("Sync completed while in state %s", self._state.value)
        self._set_state(SyncState.SYNC_COMPLETE)
        self._event.set()

    async def wait(
        self,
        timeout: float = DEFAULT_SYNC_TIMEOUT,
        *,
        cancel_event: asyncio.Event | None = None,
    ) -> bool:
        """Wait until the barrier opens.

        Returns False on timeout or when ``cancel_event`` is set first.
        """
        if self.is_open:
            return True
        if cancel_event is not None and cancel_event.is_set():
            return False

        opened = asyncio.ensure_future(self._event.wait())
        waiters: set[asyncio.Future[object]] = {opened}
        cancelled = None
        if cancel_event is not None:
            cancelled = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancelled)
        try:
            await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                waiter.cancel()
        return self.is_open and not (cancel_event is not None and cancel_event.is_set())

    def _set_state(self, state: SyncState) -> None:
        if self._state is not state:
            _LOGGER.debug("Sync state: %s → %s", self._state.value, state.value)
            self._state = state
