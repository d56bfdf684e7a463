"""Recording (dvr entry) cache."""

from __future__ import annotations

import asyncio
from typing import Any

from ..models import RecordingInfo, RecordingStatus, TimerInfo, from_unix
from ..transport.protocol import DVR_EVENTS
from .base import EntityDataHelper
from .channel import ChannelDataHelper


def _opt_str(value: Any) -> str | None:
    return None if value is None else str(value)


class DvrDataHelper(EntityDataHelper):
    """Scheduled, running and finished recordings.

    Scheduled entries are listed as timers, everything else as recordings.
    """

    kind = "dvr"
    id_field = "id"
    add_method, update_method, delete_method = DVR_EVENTS

    def __init__(self, channel_helper: ChannelDataHelper) -> None:
        super().__init__()
        self._channels = channel_helper

    def entry(self, entry_id: Any) -> dict[str, Any] | None:
        return self._cache.get(entry_id)

    async def build_recordings(
        self, cancel_event: asyncio.Event | None = None
    ) -> list[RecordingInfo]:
        recordings: list[RecordingInfo] = []
        for entry in self._cache.values():
            if self.is_cancelled(cancel_event):
                return []
            status = RecordingStatus.from_state(entry.get("state"))
            if status is RecordingStatus.SCHEDULED:
                continue
            channel_id = entry.get("channel")
            recordings.append(
                RecordingInfo(
                    id=str(entry["id"]),
                    channel_id=_opt_str(channel_id),
                    channel_name=self._channels.channel_name(channel_id),
                    title=entry.get("title"),
                    episode_title=entry.get("subtitle"),
                    overview=entry.get("description") or entry.get("summary"),
                    start_date=from_unix(entry.get("start")),
                    end_date=from_unix(entry.get("stop")),
                    status=status,
                    path=entry.get("path"),
                    error=entry.get("error"),
                    series_timer_id=entry.get("autorecId"),
                )
            )
        return recordings

    async def build_timers(
        self, cancel_event: asyncio.Event | None = None
    ) -> list[TimerInfo]:
        timers: list[TimerInfo] = []
        for entry in self._cache.values():
            if self.is_cancelled(cancel_event):
                return []
            if RecordingStatus.from_state(entry.get("state")) is not RecordingStatus.SCHEDULED:
                continue
            channel_id = entry.get("channel")
            timers.append(
                TimerInfo(
                    id=str(entry["id"]),
                    channel_id=_opt_str(channel_id),
                    channel_name=self._channels.channel_name(channel_id),
                    name=entry.get("title"),
                    overview=entry.get("description") or entry.get("summary"),
                    start_date=from_unix(entry.get("start")),
                    end_date=from_unix(entry.get("stop")),
                    pre_padding_seconds=int(entry.get("startExtra") or 0) * 60,
                    post_padding_seconds=int(entry.get("stopExtra") or 0) * 60,
                    priority=entry.get("priority"),
                    program_id=_opt_str(entry.get("eventId")),
                    series_timer_id=entry.get("autorecId"),
                )
            )
        return timers
