"""Program guide events returned by ``getEvents``."""

from __future__ import annotations

import asyncio
import logging
from datetime import UTC, datetime
from typing import Any

from ..models import ProgramInfo, from_unix

_LOGGER = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    """Naive bounds are taken as UTC."""
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


def build_programs(
    response: dict[str, Any],
    start: datetime,
    end: datetime,
    cancel_event: asyncio.Event | None = None,
) -> list[ProgramInfo]:
    """Convert a ``getEvents`` response into programs starting in [start, end)."""
    events = response.get("events")
    if not isinstance(events, list):
        return []
    start = _as_utc(start)
    end = _as_utc(end)

    programs: list[ProgramInfo] = []
    for event in events:
        if cancel_event is not None and cancel_event.is_set():
            return []
        if not isinstance(event, dict) or "eventId" not in event:
            continue
        event_start = from_unix(event.get("start"))
        if event_start is None or not start <= event_start < end:
            continue
        programs.append(
            ProgramInfo(
                id=str(event["eventId"]),
                channel_id=str(event.get("channelId", "")),
                title=event.get("title"),
                start_date=event_start,
                end_date=from_unix(event.get("stop")),
                episode_title=event.get("subtitle"),
                overview=event.get("description") or event.get("summary"),
                genre_code=event.get("contentType"),
                season_number=event.get("seasonNumber"),
                episode_number=event.get("episodeNumber"),
                image_url=event.get("image"),
            )
        )
    _LOGGER.debug("Kept %d of %d guide events", len(programs), len(events))
    return programs
