"""HTTP client for TVHeadend web endpoints."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import aiohttp

from ..errors import (
    TvhConnectionError,
    TvhResponseError,
    TvhTimeout,
)


class TvhHttpClient:
    """HTTP client wrapper for the TVHeadend web port."""

    def __init__(
        self,
        session: aiohttp.ClientSession | None,
        host: str,
        port: int,
        *,
        username: str | None = None,
        password: str | None = None,
    ) -> None:
        self._session = session
        self._host = host
        self._port = port
        self._username = username
        self._password = password

    @property
    def base_url(self) -> str:
        return f"http://{self._host}:{self._port}"

    @property
    def has_session(self) -> bool:
        return self._session is not None

    def _url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    def _auth(self) -> aiohttp.BasicAuth | None:
        if not self._username:
            return None
        return aiohttp.BasicAuth(self._username, self._password or "")

    def stream_url(self, path: str, ticket: str) -> str:
        """Build a ticketed playback URL from a ``getTicket`` response."""
        if not path.startswith("/"):
            path = f"/{path}"
        return f"{self._url(path)}?ticket={quote(ticket, safe='')}"

    async def fetch_server_info(self) -> dict[str, Any] | None:
        """Fetch /api/serverinfo (software and API versions)."""
        if self._session is None:
            return None
        url = self._url("/api/serverinfo")
        try:
            async with self._session.get(
                url,
                auth=self._auth(),
                timeout=aiohttp.ClientTimeout(total=5),
            ) as resp:
                if resp.status != 200:
                    raise TvhResponseError(
                        resp.status, "Server info request failed with non-200 response"
                    )
                data = await resp.json()
                if not isinstance(data, dict):
                    return None
                return data
        except TimeoutError as err:
            raise TvhTimeout("Server info request timed out") from err
        except aiohttp.ClientError as err:
            raise TvhConnectionError("Failed to fetch server info") from err
