"""Channel cache."""

from __future__ import annotations

import asyncio
from typing import Any

from ..models import ChannelInfo, ChannelType
from ..transport.protocol import CHANNEL_EVENTS
from .base import EntityDataHelper
from .tuner import TunerDataHelper


class ChannelDataHelper(EntityDataHelper):
    kind = "channel"
    id_field = "channelId"
    add_method, update_method, delete_method = CHANNEL_EVENTS

    def __init__(self, tuner_helper: TunerDataHelper) -> None:
        super().__init__()
        self._tuners = tuner_helper

    def clean(self) -> None:
        super().clean()
        self._tuners.clean()

    def entity_add(self, message: dict[str, Any]) -> None:
        channel_id = self._cache.add(message)
        self._tuners.attach(channel_id, message.get("services"))

    def entity_update(self, message: dict[str, Any]) -> None:
        channel_id = self._cache.update(message)
        if "services" in message:
            self._tuners.attach(channel_id, message["services"])

    def entity_delete(self, message: dict[str, Any]) -> None:
        channel_id = self._cache.delete(message)
        self._tuners.detach(channel_id)

    def channel_name(self, channel_id: Any) -> str | None:
        """Name of a channel, or None when it is not (yet) known."""
        channel = self._cache.get(channel_id)
        if channel is None:
            return None
        return channel.get("channelName")

    @staticmethod
    def _channel_type(channel: dict[str, Any]) -> ChannelType:
        services = channel.get("services")
        if isinstance(services, list) and services:
            types = [
                str(s.get("type", "")).lower() for s in services if isinstance(s, dict)
            ]
            if types and all("radio" in t for t in types):
                return ChannelType.RADIO
        return ChannelType.TV

    @staticmethod
    def _channel_number(channel: dict[str, Any]) -> str | None:
        number = channel.get("channelNumber")
        if number is None:
            return None
        minor = channel.get("channelNumberMinor")
        return f"{number}.{minor}" if minor else str(number)

    async def build_channels(
        self, cancel_event: asyncio.Event | None = None
    ) -> list[ChannelInfo]:
        if self.is_cancelled(cancel_event):
            return []
        channels: list[ChannelInfo] = []
        for channel in self._cache.values():
            channel_id = channel["channelId"]
            channels.append(
                ChannelInfo(
                    id=str(channel_id),
                    name=channel.get("channelName") or str(channel_id),
                    number=self._channel_number(channel),
                    icon_url=channel.get("channelIcon"),
                    channel_type=self._channel_type(channel),
                    tuner_ids=self._tuners.tuner_ids_for(channel_id),
                )
            )
        return channels
