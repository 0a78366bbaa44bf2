"""Database module for the local podcast store.

Provides:
- SQLAlchemy ORM models (Podcast, Episode, EpisodeAction, SyncState, ServerConfiguration)
- Repository interface and implementation
- Factory functions for creating repositories
"""

from .factory import create_repository, create_repository_from_config
from .models import (
    ActionType,
    Base,
    DownloadState,
    Episode,
    EpisodeAction,
    Podcast,
    ServerConfiguration,
    SyncState,
    make_episode_id,
)
from .repository import PodcastRepositoryInterface, SQLAlchemyPodcastRepository

__all__ = [
    "ActionType",
    "Base",
    "DownloadState",
    "Episode",
    "EpisodeAction",
    "Podcast",
    "ServerConfiguration",
    "SyncState",
    "make_episode_id",
    "PodcastRepositoryInterface",
    "SQLAlchemyPodcastRepository",
    "create_repository",
    "create_repository_from_config",
]
