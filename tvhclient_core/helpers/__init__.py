"""Entity caches fed by HTSP push events."""

from .autorec import AutorecDataHelper
from .base import EntityCache, EntityDataHelper
from .channel import ChannelDataHelper
from .dvr import DvrDataHelper
from .tuner import TunerDataHelper

__all__ = [
    "AutorecDataHelper",
    "ChannelDataHelper",
    "DvrDataHelper",
    "EntityCache",
    "EntityDataHelper",
    "TunerDataHelper",
]
