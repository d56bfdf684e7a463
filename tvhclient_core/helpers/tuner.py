"""Tuner inputs derived from the services listed on each channel."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from ..models import TunerInfo
from .base import EntityDataHelper

_LOGGER = logging.getLogger(__name__)


class TunerDataHelper(EntityDataHelper):
    """Tuner cache keyed by service name.

    There are no tuner push events; channel deltas attach and detach the
    services they carry.
    """

    kind = "tuner"
    id_field = "name"

    def attach(self, channel_id: Any, services: Any) -> None:
        """Make ``channel_id`` reference exactly the tuners in ``services``."""
        wanted: dict[str, dict[str, Any]] = {}
        if isinstance(services, list):
            for service in services:
                if isinstance(service, dict) and service.get("name"):
                    wanted[str(service["name"])] = service

        for tuner in self._cache.values():
            if channel_id in tuner["channels"] and tuner["name"] not in wanted:
                self._remove_channel(tuner, channel_id)

        for name, service in wanted.items():
            current = self._cache.get(name)
            channels = current["channels"] if current else ()
            if channel_id not in channels:
                channels = (*channels, channel_id)
            self._cache.add(
                {
                    "name": name,
                    "type": service.get("type", current.get("type") if current else None),
                    "channels": channels,
                }
            )

    def detach(self, channel_id: Any) -> None:
        for tuner in self._cache.values():
            if channel_id in tuner["channels"]:
                self._remove_channel(tuner, channel_id)

    def tuner_ids_for(self, channel_id: Any) -> tuple[str, ...]:
        return tuple(
            tuner["name"] for tuner in self._cache.values() if channel_id in tuner["channels"]
        )

    def _remove_channel(self, tuner: dict[str, Any], channel_id: Any) -> None:
        remaining = tuple(c for c in tuner["channels"] if c != channel_id)
        if remaining:
            self._cache.add({**tuner, "channels": remaining})
        else:
            self._cache.delete(tuner)

    async def build_tuners(
        self, cancel_event: asyncio.Event | None = None
    ) -> list[TunerInfo]:
        if self.is_cancelled(cancel_event):
            return []
        return [
            TunerInfo(
                id=tuner["name"],
                name=tuner["name"],
                source_type=tuner.get("type"),
                channel_ids=tuple(str(c) for c in tuner["channels"]),
            )
            for tuner in self._cache.values()
        ]
