"""Transport layer for the TVHeadend client.

This package contains all IO, wire encoding and network handling.

Components:
- codec: HTSMSG binary encoding
- connection: TCP stream carrying HTSMSG frames
- protocol: HTSP request builders and response checks
- http: HTTP client for the web port (stream URLs, server info)
"""

from .codec import decode_message, encode_message
from .connection import (
    HtspConnection,
    HtspStreamMessage,
    HtspStreamMessageType,
    connect_stream,
)
from .http import TvhHttpClient
from .protocol import HTSP_VERSION, auth_digest, check_response

__all__ = [
    "HTSP_VERSION",
    "HtspConnection",
    "HtspStreamMessage",
    "HtspStreamMessageType",
    "TvhHttpClient",
    "auth_digest",
    "check_response",
    "connect_stream",
    "decode_message",
    "encode_message",
]
