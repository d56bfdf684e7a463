"""Recurring recording rule (autorec) cache."""

from __future__ import annotations

import asyncio

from ..models import SeriesTimerInfo, weekdays_from_mask
from ..transport.protocol import AUTOREC_EVENTS
from .base import EntityDataHelper
from .channel import ChannelDataHelper


class AutorecDataHelper(EntityDataHelper):
    kind = "autorec"
    id_field = "id"
    add_method, update_method, delete_method = AUTOREC_EVENTS

    def __init__(self, channel_helper: ChannelDataHelper) -> None:
        super().__init__()
        self._channels = channel_helper

    async def build_series_timers(
        self, cancel_event: asyncio.Event | None = None
    ) -> list[SeriesTimerInfo]:
        rules: list[SeriesTimerInfo] = []
        for rule in self._cache.values():
            if self.is_cancelled(cancel_event):
                return []
            channel_id = rule.get("channel")
            start = rule.get("start", rule.get("approxTime"))
            # -1 marks "any time" on older servers
            if isinstance(start, int) and start < 0:
                start = None
            rules.append(
                SeriesTimerInfo(
                    id=str(rule["id"]),
                    name=rule.get("name") or rule.get("title"),
                    title=rule.get("title"),
                    channel_id=None if channel_id is None else str(channel_id),
                    channel_name=self._channels.channel_name(channel_id),
                    days=weekdays_from_mask(rule.get("daysOfWeek")),
                    start_minutes=start,
                    start_window_minutes=rule.get("startWindow"),
                    pre_padding_seconds=int(rule.get("startExtra") or 0) * 60,
                    post_padding_seconds=int(rule.get("stopExtra") or 0) * 60,
                    priority=rule.get("priority"),
                    enabled=bool(rule.get("enabled", 1)),
                    overview=rule.get("comment"),
                )
            )
        return rules
