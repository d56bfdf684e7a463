"""Deadline supervision for asynchronous operations."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_TIMEOUT = 300.0


@dataclass(frozen=True, slots=True)
class TimeoutResult(Generic[T]):
    """Outcome of a supervised operation."""

    has_timeout: bool
    result: T | None = None


class TimeoutSupervisor:
    """Race an operation against a fixed deadline.

    By default the operation is left running when the deadline fires; its
    eventual result is discarded. With ``cancel_on_timeout=True`` it is
    cancelled instead.
    """

    def __init__(
        self, timeout: float = DEFAULT_TIMEOUT, *, cancel_on_timeout: bool = False
    ) -> None:
        self.timeout = timeout
        self.cancel_on_timeout = cancel_on_timeout
        self._background: set[asyncio.Future[Any]] = set()

    @property
    def background_count(self) -> int:
        """Operations that outlived their deadline and are still running."""
        return len(self._background)

    async def run(self, operation: Awaitable[T]) -> TimeoutResult[T]:
        """Run ``operation``; return its result or a timeout indicator.

        Exceptions raised by the operation before the deadline propagate.
        """
        task = asyncio.ensure_future(operation)
        done, _ = await asyncio.wait({task}, timeout=self.timeout)
        if task in done:
            return TimeoutResult(has_timeout=False, result=task.result())

        if self.cancel_on_timeout:
            task.cancel()
        else:
            self._background.add(task)
            task.add_done_callback(self._discard)
        _LOGGER.debug("Operation timed out after %.1fs", self.timeout)
        return TimeoutResult(has_timeout=True)

    def _discard(self, task: asyncio.Future[Any]) -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        err = task.exception()
        if err is not None:
            _LOGGER.debug("Late failure of timed-out operation: %s", err)


async def run_with_timeout(
    operation: Awaitable[T],
    timeout: float = DEFAULT_TIMEOUT,
    *,
    cancel_on_timeout: bool = False,
) -> TimeoutResult[T]:
    """One-off helper around TimeoutSupervisor."""
    supervisor = TimeoutSupervisor(timeout, cancel_on_timeout=cancel_on_timeout)
    return await supervisor.run(operation)
