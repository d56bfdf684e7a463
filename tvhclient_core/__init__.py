"""TVHeadend HTSP client core.

Components:
- coordinator: high-level client used by host integrations
- session: one authenticated HTSP connection
- helpers: entity caches fed by push events
- transport: wire codec, TCP stream and HTTP side channel
"""

from .barrier import SyncBarrier, SyncState
from .config import TvhConfig
from .coordinator import TvhCoordinator
from .errors import (
    TvhClientError,
    TvhConfigurationError,
    TvhConnectionError,
    TvhHandshakeError,
    TvhProtocolError,
    TvhRequestError,
    TvhResponseError,
    TvhTimeout,
)
from .models import (
    ChannelInfo,
    ChannelType,
    ProgramInfo,
    RecordingInfo,
    RecordingStatus,
    SeriesTimerDefaults,
    SeriesTimerInfo,
    SeriesTimerRequest,
    ServiceStatus,
    StatusInfo,
    StreamInfo,
    TimerInfo,
    TimerRequest,
    TunerInfo,
)
from .session import HtspSession
from .timeout import TimeoutResult, TimeoutSupervisor

__version__ = "0.1.0"

__all__ = [
    "ChannelInfo",
    "ChannelType",
    "HtspSession",
    "ProgramInfo",
    "RecordingInfo",
    "RecordingStatus",
    "SeriesTimerDefaults",
    "SeriesTimerInfo",
    "SeriesTimerRequest",
    "ServiceStatus",
    "StatusInfo",
    "StreamInfo",
    "SyncBarrier",
    "SyncState",
    "TimeoutResult",
    "TimeoutSupervisor",
    "TimerInfo",
    "TimerRequest",
    "TunerInfo",
    "TvhClientError",
    "TvhConfig",
    "TvhConfigurationError",
    "TvhConnectionError",
    "TvhCoordinator",
    "TvhHandshakeError",
    "TvhProtocolError",
    "TvhRequestError",
    "TvhResponseError",
    "TvhTimeout",
]
