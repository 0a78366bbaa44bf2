"""Client for gpodder-compatible synchronization servers."""

from .client import GpodderClient
from .models import (
    EpisodeActionChanges,
    RemoteEpisodeAction,
    ServerSession,
    SubscriptionChanges,
    UploadResponse,
)

__all__ = [
    "GpodderClient",
    "EpisodeActionChanges",
    "RemoteEpisodeAction",
    "ServerSession",
    "SubscriptionChanges",
    "UploadResponse",
]
