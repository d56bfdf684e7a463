"""Request builders for the HTSP wire protocol.

Every builder returns a plain message dict; the session assigns the ``seq``
correlation field when the message is sent.
"""

from __future__ import annotations

import hashlib
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from ..errors import TvhProtocolError, TvhRequestError

HTSP_VERSION = 25

# Push events consumed by the entity caches.
CHANNEL_EVENTS = ("channelAdd", "channelUpdate", "channelDelete")
DVR_EVENTS = ("dvrEntryAdd", "dvrEntryUpdate", "dvrEntryDelete")
AUTOREC_EVENTS = ("autorecEntryAdd", "autorecEntryUpdate", "autorecEntryDelete")
INITIAL_SYNC_COMPLETED = "initialSyncCompleted"


def coerce_id(value: Any) -> Any:
    """Return numeric identifiers as int, leave anything else untouched."""
    if isinstance(value, str) and value.strip().isdigit():
        return int(value)
    return value


def to_unix(value: datetime | int) -> int:
    """Convert a timezone-aware datetime (or epoch seconds) to epoch seconds."""
    if isinstance(value, datetime):
        return int(value.timestamp())
    return int(value)


def days_of_week_mask(days: Iterable[int]) -> int:
    """Build the HTSP weekday bitmask (bit 0 = Monday) from ``datetime.weekday()`` values."""
    mask = 0
    for day in days:
        if not 0 <= day <= 6:
            raise ValueError(f"Weekday out of range: {day}")
        mask |= 1 << day
    return mask


def auth_digest(password: str, challenge: bytes) -> bytes:
    """SHA-1 digest of the password followed by the server challenge."""
    return hashlib.sha1(password.encode("utf-8") + challenge).digest()


def build_hello(client_name: str, client_version: str) -> dict[str, Any]:
    return {
        "method": "hello",
        "htspversion": HTSP_VERSION,
        "clientname": client_name,
        "clientversion": client_version,
    }


def build_authenticate(username: str, password: str, challenge: bytes) -> dict[str, Any]:
    return {
        "method": "authenticate",
        "username": username,
        "digest": auth_digest(password, challenge),
    }


def build_get_disk_space() -> dict[str, Any]:
    return {"method": "getDiskSpace"}


def build_get_sys_time() -> dict[str, Any]:
    return {"method": "getSysTime"}


def build_enable_async_metadata(*, epg: bool = False) -> dict[str, Any]:
    """Ask the server to start pushing its catalog.

    The guide is pulled per channel with ``getEvents`` so EPG push is
    disabled by default.
    """
    return {"method": "enableAsyncMetadata", "epg": 1 if epg else 0}


def build_add_dvr_entry(
    *,
    channel_id: Any,
    start: datetime | int,
    stop: datetime | int,
    start_extra_minutes: int,
    stop_extra_minutes: int,
    priority: int,
    config_name: str | None,
    title: str | None,
    description: str | None,
    creator: str | None,
) -> dict[str, Any]:
    return {
        "method": "addDvrEntry",
        "channelId": coerce_id(channel_id),
        "start": to_unix(start),
        "stop": to_unix(stop),
        "startExtra": start_extra_minutes,
        "stopExtra": stop_extra_minutes,
        "priority": priority,
        "configName": config_name,
        "title": title,
        "description": description,
        "creator": creator,
    }


def build_update_dvr_entry(
    entry_id: Any, *, start_extra_minutes: int, stop_extra_minutes: int
) -> dict[str, Any]:
    return {
        "method": "updateDvrEntry",
        "id": coerce_id(entry_id),
        "startExtra": start_extra_minutes,
        "stopExtra": stop_extra_minutes,
    }


def build_cancel_dvr_entry(entry_id: Any) -> dict[str, Any]:
    return {"method": "cancelDvrEntry", "id": coerce_id(entry_id)}


def build_delete_dvr_entry(entry_id: Any) -> dict[str, Any]:
    return {"method": "deleteDvrEntry", "id": coerce_id(entry_id)}


def build_add_autorec_entry(
    *,
    title: str,
    channel_id: Any | None,
    days_of_week: Iterable[int] | None,
    start_minutes: int | None,
    start_window_minutes: int | None,
    start_extra_minutes: int,
    stop_extra_minutes: int,
    priority: int,
    config_name: str | None,
    comment: str | None,
    name: str | None = None,
) -> dict[str, Any]:
    """Build an ``addAutorecEntry`` request.

    ``channel_id=None`` records on any channel, ``start_minutes=None`` at any
    time. Start times are minutes after local midnight.
    """
    message: dict[str, Any] = {
        "method": "addAutorecEntry",
        "title": title,
        "name": name or title,
        "startExtra": start_extra_minutes,
        "stopExtra": stop_extra_minutes,
        "priority": priority,
        "configName": config_name,
        "comment": comment,
    }
    if channel_id is not None:
        message["channelId"] = coerce_id(channel_id)
    if days_of_week is not None:
        message["daysOfWeek"] = days_of_week_mask(days_of_week)
    if start_minutes is not None:
        message["start"] = start_minutes
        if start_window_minutes is not None:
            message["startWindow"] = start_window_minutes
    return message


def build_update_autorec_entry(rule_id: str, **fields: Any) -> dict[str, Any]:
    message = build_add_autorec_entry(**fields)
    message["method"] = "updateAutorecEntry"
    message["id"] = rule_id
    return message


def build_delete_autorec_entry(rule_id: str) -> dict[str, Any]:
    return {"method": "deleteAutorecEntry", "id": rule_id}


def build_get_ticket(
    *, channel_id: Any | None = None, dvr_id: Any | None = None
) -> dict[str, Any]:
    if (channel_id is None) == (dvr_id is None):
        raise ValueError("Exactly one of channel_id or dvr_id is required")
    if channel_id is not None:
        return {"method": "getTicket", "channelId": coerce_id(channel_id)}
    return {"method": "getTicket", "dvrId": coerce_id(dvr_id)}


def build_get_events(channel_id: Any) -> dict[str, Any]:
    return {"method": "getEvents", "channelId": coerce_id(channel_id)}


def check_response(method: str, response: dict[str, Any]) -> dict[str, Any]:
    """Raise TvhRequestError when the server reports a failure.

    Servers report failures either as an ``error`` string, a ``noaccess``
    flag, or ``success=0`` on mutation requests.
    """
    if not isinstance(response, dict):
        raise TvhProtocolError(f"{method}: response is not a message")
    if "error" in response:
        raise TvhRequestError(method, str(response["error"]))
    if response.get("noaccess"):
        raise TvhRequestError(method, "access denied")
    if "success" in response and response.get("success") != 1:
        raise TvhRequestError(method, str(response.get("error", "request failed")))
    return response


def parse_hello(response: dict[str, Any]) -> dict[str, Any]:
    """Extract server identity from a ``hello`` response."""
    challenge = response.get("challenge")
    if not isinstance(challenge, bytes):
        raise TvhProtocolError("hello response carries no challenge")
    version = response.get("htspversion")
    if not isinstance(version, int) or isinstance(version, bool):
        raise TvhProtocolError("hello response carries no htspversion")
    return {
        "server_name": str(response.get("servername", "")),
        "server_version": str(response.get("serverversion", "")),
        "protocol_version": version,
        "challenge": challenge,
    }
