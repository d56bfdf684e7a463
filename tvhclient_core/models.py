"""Snapshot data structures returned to callers.

Caches keep the raw message fields; these frozen dataclasses are what the
``build_*`` operations hand out, so callers never share mutable state with
the receive task.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


class ChannelType(Enum):
    """Channel medium derived from its services."""

    TV = "tv"
    RADIO = "radio"


class RecordingStatus(Enum):
    """Recording lifecycle as reported in the dvr ``state`` field."""

    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    ERROR = "error"

    @classmethod
    def from_state(cls, state: Any) -> RecordingStatus:
        mapping = {
            "scheduled": cls.SCHEDULED,
            "recording": cls.IN_PROGRESS,
            "completed": cls.COMPLETED,
        }
        return mapping.get(state, cls.ERROR)


class ServiceStatus(Enum):
    """Backend availability as seen by the coordinator."""

    OK = "ok"
    UNAVAILABLE = "unavailable"


def from_unix(value: Any) -> datetime | None:
    if not isinstance(value, int) or isinstance(value, bool):
        return None
    return datetime.fromtimestamp(value, tz=UTC)


def weekdays_from_mask(mask: Any) -> tuple[int, ...]:
    """Decode the HTSP weekday bitmask into ``datetime.weekday()`` values."""
    if not isinstance(mask, int):
        return ()
    return tuple(day for day in range(7) if mask & (1 << day))


@dataclass(frozen=True)
class ChannelInfo:
    id: str
    name: str
    number: str | None = None
    icon_url: str | None = None
    channel_type: ChannelType = ChannelType.TV
    tuner_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class TunerInfo:
    id: str
    name: str
    source_type: str | None = None
    channel_ids: tuple[str, ...] = ()


@dataclass(frozen=True)
class RecordingInfo:
    """A recording that is in progress or finished."""

    id: str
    channel_id: str | None
    channel_name: str | None
    title: str | None
    episode_title: str | None = None
    overview: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    status: RecordingStatus = RecordingStatus.COMPLETED
    path: str | None = None
    error: str | None = None
    series_timer_id: str | None = None


@dataclass(frozen=True)
class TimerInfo:
    """A scheduled (pending) recording."""

    id: str
    channel_id: str | None
    channel_name: str | None
    name: str | None
    overview: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    pre_padding_seconds: int = 0
    post_padding_seconds: int = 0
    priority: int | None = None
    program_id: str | None = None
    series_timer_id: str | None = None
    status: RecordingStatus = RecordingStatus.SCHEDULED


@dataclass(frozen=True)
class SeriesTimerInfo:
    """A recurring recording rule."""

    id: str
    name: str | None
    title: str | None = None
    channel_id: str | None = None
    channel_name: str | None = None
    days: tuple[int, ...] = ()
    start_minutes: int | None = None
    start_window_minutes: int | None = None
    pre_padding_seconds: int = 0
    post_padding_seconds: int = 0
    priority: int | None = None
    enabled: bool = True
    overview: str | None = None

    @property
    def record_any_channel(self) -> bool:
        return self.channel_id is None

    @property
    def record_any_time(self) -> bool:
        return self.start_minutes is None


@dataclass(frozen=True)
class SeriesTimerDefaults:
    pre_padding_seconds: int = 0
    post_padding_seconds: int = 0
    record_any_channel: bool = True
    record_any_time: bool = True
    record_new_only: bool = False


@dataclass(frozen=True)
class ProgramInfo:
    id: str
    channel_id: str
    title: str | None
    start_date: datetime | None
    end_date: datetime | None
    episode_title: str | None = None
    overview: str | None = None
    genre_code: int | None = None
    season_number: int | None = None
    episode_number: int | None = None
    image_url: str | None = None


@dataclass(frozen=True)
class StreamInfo:
    """Ticketed playback location for a channel or recording."""

    id: str
    url: str


@dataclass(frozen=True)
class StatusInfo:
    status: ServiceStatus
    server_name: str | None = None
    server_version: str | None = None
    protocol_version: int | None = None
    disk_space: str | None = None
    http_api_version: int | None = None
    tuners: list[TunerInfo] = field(default_factory=lambda: list[TunerInfo]())

    @property
    def version_text(self) -> str:
        return (
            f"{self.server_name or ''} {self.server_version or ''}".strip()
            + f" (HTSP v{self.protocol_version}, free disk space: {self.disk_space})"
        )


@dataclass(frozen=True)
class TimerRequest:
    """Parameters for creating or updating a one-off recording."""

    channel_id: str
    start_date: datetime
    end_date: datetime
    name: str | None = None
    overview: str | None = None
    pre_padding_seconds: int = 0
    post_padding_seconds: int = 0
    id: str | None = None


@dataclass(frozen=True)
class SeriesTimerRequest:
    """Parameters for creating or updating a recurring rule."""

    title: str
    channel_id: str | None = None
    days: tuple[int, ...] | None = None
    start_minutes: int | None = None
    start_window_minutes: int | None = None
    pre_padding_seconds: int = 0
    post_padding_seconds: int = 0
    overview: str | None = None
    name: str | None = None
    id: str | None = None
