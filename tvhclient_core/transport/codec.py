"""HTSMSG binary codec.

Wire layout of one message:

    [u32 BE body length][field][field]...

and of every field:

    [u8 type][u8 name length][u32 BE data length][name][data]

Messages are represented as plain ``dict[str, Any]`` on the Python side.
Integers travel as variable-width little-endian s64, lists are maps whose
children carry empty names.
"""

from __future__ import annotations

import logging
import struct
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from ..errors import TvhProtocolError

_LOGGER = logging.getLogger(__name__)

HMF_MAP = 1
HMF_S64 = 2
HMF_STR = 3
HMF_BIN = 4
HMF_LIST = 5
HMF_DBL = 6
HMF_BOOL = 7

MAX_MESSAGE_SIZE = 32 * 1024 * 1024

_FIELD_HEADER = struct.Struct(">BBI")
_LENGTH = struct.Struct(">I")
_U64_MASK = 0xFFFFFFFFFFFFFFFF


def _encode_s64(value: int) -> bytes:
    raw = value & _U64_MASK
    out = bytearray()
    while raw:
        out.append(raw & 0xFF)
        raw >>= 8
    return bytes(out)


def _decode_s64(data: bytes) -> int:
    if len(data) > 8:
        raise TvhProtocolError(f"s64 field too wide ({len(data)} bytes)")
    value = int.from_bytes(data, "little", signed=False)
    if len(data) == 8 and value & (1 << 63):
        value -= 1 << 64
    return value


def _encode_value(value: Any) -> tuple[int, bytes] | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return HMF_S64, _encode_s64(int(value))
    if isinstance(value, int):
        return HMF_S64, _encode_s64(value)
    if isinstance(value, str):
        return HMF_STR, value.encode("utf-8")
    if isinstance(value, (bytes, bytearray, memoryview)):
        return HMF_BIN, bytes(value)
    if isinstance(value, Mapping):
        return HMF_MAP, _encode_fields(value.items())
    if isinstance(value, (list, tuple)):
        return HMF_LIST, _encode_fields(("", item) for item in value)
    raise TypeError(f"Cannot encode {type(value).__name__} as an HTSMSG field")


def _encode_fields(items: Iterable[tuple[str, Any]]) -> bytes:
    out = bytearray()
    for name, value in items:
        encoded = _encode_value(value)
        if encoded is None:
            continue
        field_type, data = encoded
        name_bytes = name.encode("utf-8")
        if len(name_bytes) > 0xFF:
            raise ValueError(f"Field name too long: {name[:32]}...")
        out += _FIELD_HEADER.pack(field_type, len(name_bytes), len(data))
        out += name_bytes
        out += data
    return bytes(out)


def encode_message(message: Mapping[str, Any]) -> bytes:
    """Serialize a message into a length-prefixed HTSMSG frame."""
    body = _encode_fields(message.items())
    return _LENGTH.pack(len(body)) + body


def _iter_fields(data: bytes) -> Iterator[tuple[str, Any]]:
    offset = 0
    size = len(data)

    while offset < size:
        if size - offset < _FIELD_HEADER.size:
            raise TvhProtocolError("Truncated HTSMSG field header")
        field_type, name_len, data_len = _FIELD_HEADER.unpack_from(data, offset)
        offset += _FIELD_HEADER.size
        if size - offset < name_len + data_len:
            raise TvhProtocolError("Truncated HTSMSG field payload")

        name = data[offset : offset + name_len].decode("utf-8", errors="replace")
        offset += name_len
        payload = data[offset : offset + data_len]
        offset += data_len

        if field_type == HMF_S64:
            value: Any = _decode_s64(payload)
        elif field_type == HMF_STR:
            value = payload.decode("utf-8", errors="replace")
        elif field_type == HMF_BIN:
            value = bytes(payload)
        elif field_type == HMF_MAP:
            value = _decode_map(payload)
        elif field_type == HMF_LIST:
            value = _decode_list(payload)
        elif field_type == HMF_DBL:
            if data_len != 8:
                raise TvhProtocolError("Double field must be 8 bytes")
            value = struct.unpack("<d", payload)[0]
        elif field_type == HMF_BOOL:
            value = bool(payload[0]) if payload else False
        else:
            _LOGGER.debug("Skipping unknown HTSMSG field type %d (%s)", field_type, name)
            continue

        yield name, value


def _decode_map(data: bytes) -> dict[str, Any]:
    return dict(_iter_fields(data))


def _decode_list(data: bytes) -> list[Any]:
    return [value for _, value in _iter_fields(data)]


def decode_message(body: bytes) -> dict[str, Any]:
    """Decode an HTSMSG body (without its length prefix)."""
    return _decode_map(body)


def frame_length(header: bytes) -> int:
    """Return the body length announced by a 4-byte frame header."""
    if len(header) != _LENGTH.size:
        raise TvhProtocolError("Frame header must be 4 bytes")
    (length,) = _LENGTH.unpack(header)
    if length > MAX_MESSAGE_SIZE:
        raise TvhProtocolError(f"Frame of {length} bytes exceeds limit")
    return length
