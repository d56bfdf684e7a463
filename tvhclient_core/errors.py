"""Client error types for TVHeadend HTSP interactions."""

from __future__ import annotations


class TvhClientError(Exception):
    """Base error for TVHeadend client failures."""


class TvhConfigurationError(TvhClientError):
    """Required connection settings are missing or invalid."""


class TvhTimeout(TvhClientError):
    """Timeout while communicating with the server."""


class TvhConnectionError(TvhClientError):
    """Network connection to the server failed or was lost."""


class TvhHandshakeError(TvhConnectionError):
    """HTSP hello/authenticate exchange failed."""


class TvhProtocolError(TvhClientError):
    """Malformed or unexpected message on the HTSP stream."""


class TvhRequestError(TvhClientError):
    """Server answered a request with an explicit failure."""

    def __init__(self, method: str, message: str) -> None:
        super().__init__(f"{method}: {message}")
        self.method = method
        self.message = message


class TvhResponseError(TvhClientError):
    """HTTP response error from the server."""

    def __init__(self, status: int, message: str) -> None:
        super().__init__(message)
        self.status = status
