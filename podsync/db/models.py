"""SQLAlchemy ORM models for the local podcast library and sync bookkeeping."""

import hashlib
import uuid
from datetime import datetime
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.types import JSON

from ..utils.time_utils import utcnow

SYNC_STATE_ID = "sync-state"
SERVER_CONFIG_ID = "server-config"


def make_episode_id(feed_url: str, guid: str) -> str:
    """
    Build the composite episode key from its feed URL and feed-scoped GUID.

    Each part is prefixed with its length before hashing, so no choice of
    separator characters inside a URL or GUID can make two different pairs
    share a key.

    Returns:
        str: 64-character hex SHA-256 digest of the length-prefixed pair.

    Examples:
        >>> make_episode_id("https://x.example/f?a", "b|c") == make_episode_id("https://x.example/f?a|b", "c")
        False
    """
    encoded = f"{len(feed_url)}:{feed_url}{len(guid)}:{guid}".encode("utf-8")
    return hashlib.sha256(encoded).hexdigest()


class DownloadState:
    """Allowed values for Episode.download_state."""

    NOT_DOWNLOADED = "not_downloaded"
    DOWNLOADING = "downloading"
    DOWNLOADED = "downloaded"
    FAILED = "failed"


class ActionType:
    """Allowed values for EpisodeAction.action."""

    PLAY = "play"
    SUBSCRIBE = "subscribe"
    UNSUBSCRIBE = "unsubscribe"

    SUBSCRIPTION = (SUBSCRIBE, UNSUBSCRIBE)


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


class Podcast(Base):
    """Podcast model, keyed by its feed URL.

    Remote-derived metadata is overwritten by feed merges; subscription and
    sync flags are owned locally.
    """

    __tablename__ = "podcasts"

    # Primary key
    feed_url: Mapped[str] = mapped_column(String(2048), primary_key=True)

    # Metadata from RSS feed
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    author: Mapped[Optional[str]] = mapped_column(String(512))
    description: Mapped[Optional[str]] = mapped_column(Text)
    artwork_url: Mapped[Optional[str]] = mapped_column(String(2048))
    link: Mapped[Optional[str]] = mapped_column(String(2048))
    language: Mapped[Optional[str]] = mapped_column(String(32))
    categories: Mapped[List[str]] = mapped_column(JSON, default=list)

    # Local state
    is_subscribed: Mapped[bool] = mapped_column(Boolean, default=True)
    date_added: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    last_updated: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_refresh_error: Mapped[Optional[str]] = mapped_column(Text)

    # Sync state
    needs_sync: Mapped[bool] = mapped_column(Boolean, default=False)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Relationships
    episodes: Mapped[List["Episode"]] = relationship(
        "Episode", cascade="all, delete-orphan"
    )

    __table_args__ = (Index("ix_podcasts_is_subscribed", "is_subscribed"),)

    def __repr__(self) -> str:
        """
        Provide a concise developer-facing string representation of the Podcast.

        Returns:
            str: A string in the form "<Podcast(feed_url=<url>, title='<title>')>".
        """
        return f"<Podcast(feed_url={self.feed_url}, title={self.title!r})>"


class Episode(Base):
    """Episode model.

    The primary key is derived from the owning feed URL and the episode GUID,
    so two podcasts reusing a GUID never collide. Remote-derived fields are
    refreshed on every merge; playback and download state are local-only.
    """

    __tablename__ = "episodes"

    # Digest of (feed_url, guid), see make_episode_id; never reassigned
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    podcast_feed_url: Mapped[str] = mapped_column(
        String(2048), ForeignKey("podcasts.feed_url", ondelete="CASCADE"), nullable=False
    )
    guid: Mapped[str] = mapped_column(String(2048), nullable=False)

    # Remote-derived metadata
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    summary: Mapped[Optional[str]] = mapped_column(Text)
    audio_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    file_size: Mapped[Optional[int]] = mapped_column(Integer)
    duration: Mapped[Optional[float]] = mapped_column(Float)
    publish_date: Mapped[Optional[datetime]] = mapped_column(DateTime)
    artwork_url: Mapped[Optional[str]] = mapped_column(String(2048))
    link: Mapped[Optional[str]] = mapped_column(String(2048))
    episode_number: Mapped[Optional[int]] = mapped_column(Integer)
    season_number: Mapped[Optional[int]] = mapped_column(Integer)

    # Local-only playback state
    playback_position: Mapped[float] = mapped_column(Float, default=0.0)
    is_played: Mapped[bool] = mapped_column(Boolean, default=False)
    last_played_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Local-only download state
    download_state: Mapped[str] = mapped_column(
        String(32), default=DownloadState.NOT_DOWNLOADED
    )  # not_downloaded, downloading, downloaded, failed
    local_file_path: Mapped[Optional[str]] = mapped_column(String(1024))

    # Sync state
    needs_sync: Mapped[bool] = mapped_column(Boolean, default=False)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    __table_args__ = (
        UniqueConstraint("podcast_feed_url", "guid", name="uq_episodes_feed_guid"),
        Index("ix_episodes_podcast_feed_url", "podcast_feed_url"),
        Index("ix_episodes_audio_url", "audio_url"),
        Index("ix_episodes_publish_date", "publish_date"),
    )

    def __repr__(self) -> str:
        """
        Return a concise debug-friendly representation of the Episode instance.

        Returns:
            A string in the format "<Episode(id=<id>, title='<title>')>" representing the instance.
        """
        return f"<Episode(id={self.id}, title={self.title!r})>"

    def effective_artwork_url(self, podcast: Optional[Podcast]) -> Optional[str]:
        """
        Resolve the artwork to display for this episode.

        Parameters:
            podcast: The owning podcast, looked up by the caller.

        Returns:
            The episode's own artwork if present, otherwise the podcast artwork.
        """
        if self.artwork_url:
            return self.artwork_url
        return podcast.artwork_url if podcast else None

    @property
    def progress(self) -> float:
        """Fraction of the episode listened to (0-1), 0 when the duration is unknown."""
        if not self.duration:
            return 0.0
        return min(1.0, self.playback_position / self.duration)


class EpisodeAction(Base):
    """A pending user action waiting for server acknowledgment.

    Play actions carry episode progress; subscribe/unsubscribe actions carry a
    feed URL. Only the coalesced payload and the sync bookkeeping fields
    change after creation.
    """

    __tablename__ = "episode_actions"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=lambda: str(uuid.uuid4())
    )
    action: Mapped[str] = mapped_column(String(16), nullable=False)

    # Targets
    episode_id: Mapped[Optional[str]] = mapped_column(String(64))
    podcast_url: Mapped[str] = mapped_column(String(2048), nullable=False)
    episode_url: Mapped[Optional[str]] = mapped_column(String(2048))
    guid: Mapped[Optional[str]] = mapped_column(String(2048))

    # Payload
    position: Mapped[Optional[float]] = mapped_column(Float)
    duration: Mapped[Optional[float]] = mapped_column(Float)
    completed: Mapped[bool] = mapped_column(Boolean, default=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    # Sync bookkeeping
    is_synced: Mapped[bool] = mapped_column(Boolean, default=False)
    sync_attempts: Mapped[int] = mapped_column(Integer, default=0)
    last_sync_error: Mapped[Optional[str]] = mapped_column(Text)

    __table_args__ = (
        Index("ix_episode_actions_episode_id", "episode_id"),
        Index("ix_episode_actions_is_synced", "is_synced"),
    )

    def __repr__(self) -> str:
        """Return a concise representation of the EpisodeAction instance."""
        target = self.episode_id or self.podcast_url
        return f"<EpisodeAction(action={self.action}, target={target!r}, synced={self.is_synced})>"


class SyncState(Base):
    """Singleton row tracking sync cycles for the whole local store."""

    __tablename__ = "sync_state"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=SYNC_STATE_ID)

    # Last successful sync timestamps
    last_subscription_sync: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_progress_sync: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_full_sync: Mapped[Optional[datetime]] = mapped_column(DateTime)

    # Server-issued cursors for incremental pulls
    subscription_timestamp: Mapped[Optional[int]] = mapped_column(Integer)
    episode_action_timestamp: Mapped[Optional[int]] = mapped_column(Integer)

    # Cycle status
    is_syncing: Mapped[bool] = mapped_column(Boolean, default=False)
    # Lease held by the running cycle; a heartbeat older than the lease is stale
    sync_owner: Mapped[Optional[str]] = mapped_column(String(128))
    sync_heartbeat_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_sync_attempt: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_sync_status: Mapped[Optional[str]] = mapped_column(String(32))
    last_sync_error: Mapped[Optional[str]] = mapped_column(Text)

    # Statistics
    total_syncs: Mapped[int] = mapped_column(Integer, default=0)
    failed_syncs: Mapped[int] = mapped_column(Integer, default=0)
    consecutive_smart_failures: Mapped[int] = mapped_column(Integer, default=0)

    def __repr__(self) -> str:
        """Return a concise representation of the SyncState instance."""
        return f"<SyncState(is_syncing={self.is_syncing}, last_status={self.last_sync_status})>"

    @property
    def needs_initial_sync(self) -> bool:
        """True until a full sync has completed at least once."""
        return self.last_full_sync is None


class ServerConfiguration(Base):
    """Singleton row holding the sync server identity and session."""

    __tablename__ = "server_configuration"

    id: Mapped[str] = mapped_column(String(32), primary_key=True, default=SERVER_CONFIG_ID)

    # Server details
    server_url: Mapped[str] = mapped_column(String(2048), default="")
    username: Mapped[str] = mapped_column(String(256), default="")
    device_id: Mapped[str] = mapped_column(String(64), nullable=False)

    # Authentication state
    session_token: Mapped[Optional[str]] = mapped_column(Text)
    is_authenticated: Mapped[bool] = mapped_column(Boolean, default=False)
    last_authenticated_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    def __repr__(self) -> str:
        """Return a concise representation of the ServerConfiguration instance."""
        return f"<ServerConfiguration(server_url={self.server_url!r}, username={self.username!r})>"

    @property
    def is_configured(self) -> bool:
        """True when both server URL and username are set."""
        return bool(self.server_url and self.username)
