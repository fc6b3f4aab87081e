"""Platform adapters for the verification engine."""

from .base import PlatformAdapter, TokenRefreshResult
from .twitch import TwitchAdapter
from .youtube import YouTubeAdapter

__all__ = [
    "PlatformAdapter",
    "TokenRefreshResult",
    "TwitchAdapter",
    "YouTubeAdapter",
]
