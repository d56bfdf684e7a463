"""Connection settings for the TVHeadend coordinator."""

from __future__ import annotations

import logging
from dataclasses import dataclass, replace

from .barrier import DEFAULT_SYNC_TIMEOUT
from .errors import TvhConfigurationError
from .timeout import DEFAULT_TIMEOUT

_LOGGER = logging.getLogger(__name__)

DEFAULT_HTSP_PORT = 9982
DEFAULT_HTTP_PORT = 9981
DEFAULT_PRIORITY = 2


@dataclass(frozen=True)
class TvhConfig:
    """Settings passed explicitly to TvhCoordinator.

    Attributes:
        server_name: Host name or IP of the TVHeadend server.
        username: HTSP user.
        password: HTSP password.
        htsp_port: HTSP (binary protocol) port.
        http_port: Web port used for ticketed stream URLs.
        priority: Recording priority 0 (important) .. 4 (unimportant).
        profile: DVR configuration name used for new recordings.
        request_timeout: Deadline applied to every public operation (seconds).
        initial_sync_timeout: Ceiling for the initial-sync wait (seconds).
        connect_timeout: TCP connect deadline (seconds).
        cancel_on_timeout: Cancel the underlying operation when its deadline fires.
        keepalive_interval: Seconds between keepalive probes, None disables them.
        keepalive_timeout: Seconds a keepalive probe may stay unanswered.
    """

    server_name: str
    username: str
    password: str
    htsp_port: int = DEFAULT_HTSP_PORT
    http_port: int = DEFAULT_HTTP_PORT
    priority: int = DEFAULT_PRIORITY
    profile: str = ""
    client_name: str = "TVHclient"
    client_version: str = "0.1.0"
    request_timeout: float = DEFAULT_TIMEOUT
    initial_sync_timeout: float = DEFAULT_SYNC_TIMEOUT
    connect_timeout: float = 15.0
    cancel_on_timeout: bool = False
    keepalive_interval: float | None = 60.0
    keepalive_timeout: float = 20.0

    def validate(self) -> TvhConfig:
        """Return a usable config or raise TvhConfigurationError.

        An out-of-range priority is replaced with the default.
        """
        if not self.server_name:
            raise TvhConfigurationError("TVH server name must be configured")
        if not self.username:
            raise TvhConfigurationError("Username must be configured")
        if not self.password:
            raise TvhConfigurationError("Password must be configured")
        if not 0 <= self.priority <= 4:
            _LOGGER.info(
                "Priority %s out of range [0-4] - using %d",
                self.priority,
                DEFAULT_PRIORITY,
            )
            return replace(self, priority=DEFAULT_PRIORITY)
        return self
