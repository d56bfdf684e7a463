"""Request/response correlation and push-event routing."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterable
from typing import Any

_LOGGER = logging.getLogger(__name__)

MessageHandler = Callable[[dict[str, Any]], None]

MAX_SEQ = 2_147_483_647


class ResponseCorrelator:
    """Registry of in-flight requests plus the inbound dispatch point.

    ``dispatch`` is only ever called from the session's receive task, which
    gives every inbound message a single total order.
    """

    def __init__(self) -> None:
        self._pending: dict[int, MessageHandler] = {}
        self._subscribers: dict[str, list[MessageHandler]] = {}
        self._seq = 0
        self.unmatched_responses = 0
        self.ignored_events = 0

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def next_seq(self) -> int:
        """Allocate a correlation key that has no unresolved entry."""
        for _ in range(MAX_SEQ):
            self._seq = self._seq + 1 if self._seq < MAX_SEQ else 1
            if self._seq not in self._pending:
                return self._seq
        raise RuntimeError("No free correlation keys")

    def register(self, seq: int, handler: MessageHandler) -> None:
        if seq in self._pending:
            raise ValueError(f"Correlation key {seq} is still pending")
        self._pending[seq] = handler

    def unregister(self, seq: int) -> None:
        self._pending.pop(seq, None)

    def subscribe(self, methods: str | Iterable[str], handler: MessageHandler) -> None:
        """Route push events with the given method name(s) to ``handler``."""
        if isinstance(methods, str):
            methods = (methods,)
        for method in methods:
            self._subscribers.setdefault(method, []).append(handler)

    def abandon_all(self) -> int:
        """Drop every pending request; their waiters are left to time out."""
        count = len(self._pending)
        self._pending.clear()
        return count

    def dispatch(self, message: dict[str, Any]) -> None:
        seq = message.get("seq")
        if isinstance(seq, int) and seq in self._pending:
            handler = self._pending.pop(seq)
            self._invoke(handler, message, f"response seq={seq}")
            return

        method = message.get("method")
        if method is None and isinstance(seq, int):
            self.unmatched_responses += 1
            _LOGGER.debug("Dropping response for unknown seq=%s", seq)
            return
        handlers = self._subscribers.get(method) if isinstance(method, str) else None
        if not handlers:
            self.ignored_events += 1
            _LOGGER.debug("Ignoring push event: %s", method)
            return
        for handler in handlers:
            self._invoke(handler, message, str(method))

    @staticmethod
    def _invoke(handler: MessageHandler, message: dict[str, Any], label: str) -> None:
        try:
            handler(message)
        except Exception as err:
            _LOGGER.exception("Handler error for %s: %s", label, err)


class LoopBackResponseHandler:
    """One-shot handler that hands the response to an awaiting caller."""

    def __init__(self) -> None:
        self._future: asyncio.Future[dict[str, Any]] = (
            asyncio.get_running_loop().create_future()
        )

    def __call__(self, message: dict[str, Any]) -> None:
        if not self._future.done():
            self._future.set_result(message)

    async def get_response(self) -> dict[str, Any]:
        return await self._future
