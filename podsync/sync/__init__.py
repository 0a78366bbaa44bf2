"""Sync core: action queue, session management, sync engine and scheduling."""

from .action_queue import ActionQueue
from .base import SyncMode, SyncResult, SyncStatus
from .config import SyncConfig
from .engine import SyncEngine
from .events import PlaybackEvent, PlaybackEventConsumer
from .factory import create_sync_engine
from .scheduler import SyncScheduler
from .session import SessionManager

__all__ = [
    "ActionQueue",
    "PlaybackEvent",
    "PlaybackEventConsumer",
    "SessionManager",
    "SyncConfig",
    "SyncEngine",
    "SyncMode",
    "SyncResult",
    "SyncScheduler",
    "SyncStatus",
    "create_sync_engine",
]
