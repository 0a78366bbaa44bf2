"""Repository pattern implementation for the local podcast store.

Provides an abstract interface and a SQLAlchemy implementation. Every method
opens its own short-lived session; multi-row changes that must be atomic
(feed merges, progress writes, action coalescing) are applied inside a single transaction.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, create_engine, delete, func, or_, select, update
from sqlalchemy.orm import Session, sessionmaker

from .models import (
    SERVER_CONFIG_ID,
    SYNC_STATE_ID,
    ActionType,
    Base,
    Episode,
    EpisodeAction,
    Podcast,
    ServerConfiguration,
    SyncState,
    make_episode_id,
)

logger = logging.getLogger(__name__)


class PodcastRepositoryInterface(ABC):
    """Abstract interface for the local podcast store.

    Implementations must be safe to call from several threads; callers
    serialize writes themselves.
    """

    # --- Podcast Operations ---

    @abstractmethod
    def create_podcast(self, feed_url: str, title: str, **kwargs) -> Podcast:
        """
        Create and persist a podcast for the given feed URL.

        Parameters:
            feed_url (str): RSS or Atom feed URL, the podcast's identity.
            title (str): Display title.
            **kwargs: Additional Podcast attributes to set.

        Returns:
            Podcast: The persisted Podcast instance.
        """
        pass

    @abstractmethod
    def get_podcast(self, feed_url: str) -> Optional[Podcast]:
        """
        Retrieve a podcast by its feed URL.

        Returns:
            Podcast if it exists, `None` otherwise.
        """
        pass

    @abstractmethod
    def list_podcasts(
        self, subscribed_only: bool = True, limit: Optional[int] = None
    ) -> List[Podcast]:
        """
        Return podcasts ordered by title, optionally only subscribed ones.

        Parameters:
            subscribed_only (bool): If True, include only subscribed podcasts.
            limit (Optional[int]): Maximum number of podcasts to return.

        Returns:
            List[Podcast]: Podcasts matching the filters.
        """
        pass

    @abstractmethod
    def list_stale_podcasts(self, older_than: datetime) -> List[Podcast]:
        """
        Return subscribed podcasts never refreshed or last refreshed before `older_than`.

        Parameters:
            older_than (datetime): Naive UTC cutoff.

        Returns:
            List[Podcast]: Podcasts due for a feed refresh.
        """
        pass

    @abstractmethod
    def update_podcast(self, feed_url: str, **kwargs) -> Optional[Podcast]:
        """
        Update attributes of an existing podcast.

        Returns:
            Optional[Podcast]: The updated Podcast, or `None` if it does not exist.
        """
        pass

    @abstractmethod
    def delete_podcast(self, feed_url: str) -> bool:
        """
        Delete a podcast together with all of its episodes.

        Returns:
            bool: `True` if a podcast was deleted, `False` if none matched.
        """
        pass

    # --- Episode Operations ---

    @abstractmethod
    def get_episode(self, episode_id: str) -> Optional[Episode]:
        """Retrieve an episode by its composite id, or `None`."""
        pass

    @abstractmethod
    def find_episode(
        self,
        feed_url: str,
        audio_url: Optional[str] = None,
        guid: Optional[str] = None,
    ) -> Optional[Episode]:
        """
        Locate an episode of a podcast by GUID or, failing that, by audio URL.

        Parameters:
            feed_url (str): Owning podcast feed URL.
            audio_url (Optional[str]): Enclosure URL reported by the server.
            guid (Optional[str]): Feed-scoped GUID, when the server knows it.

        Returns:
            Optional[Episode]: The matching episode, or `None`.
        """
        pass

    @abstractmethod
    def list_episodes(self, feed_url: str) -> List[Episode]:
        """Return a podcast's episodes, newest first."""
        pass

    @abstractmethod
    def update_episode(self, episode_id: str, **kwargs) -> Optional[Episode]:
        """
        Update attributes of an existing episode.

        Returns:
            Optional[Episode]: The updated Episode, or `None` if it does not exist.
        """
        pass

    @abstractmethod
    def count_unplayed(self, feed_url: str) -> int:
        """Return the number of episodes of a podcast not marked as played."""
        pass

    @abstractmethod
    def merge_feed(
        self,
        feed_url: str,
        podcast_fields: Dict[str, Any],
        episode_records: Sequence[Dict[str, Any]],
        merged_at: datetime,
        create_defaults: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Podcast, int, int]:
        """
        Apply one parsed feed to the store in a single transaction.

        Remote-derived podcast and episode fields are overwritten; local-only
        fields are left alone. Episodes missing from `episode_records` are kept.

        Parameters:
            feed_url (str): Podcast identity.
            podcast_fields (Dict[str, Any]): Remote-derived podcast attributes.
            episode_records (Sequence[Dict[str, Any]]): Remote-derived episode
                attributes; each must contain `guid`.
            merged_at (datetime): Value written to `last_updated`.
            create_defaults (Optional[Dict[str, Any]]): Local attributes used
                only when the podcast does not exist yet.

        Returns:
            Tuple[Podcast, int, int]: The podcast, inserted and updated episode counts.
        """
        pass

    # --- Episode Action Operations ---

    @abstractmethod
    def save_play_action(
        self,
        episode_id: str,
        podcast_url: str,
        episode_url: Optional[str],
        guid: Optional[str],
        position: float,
        completed: bool,
        duration: Optional[float],
        timestamp: datetime,
    ) -> EpisodeAction:
        """
        Insert a play action, or coalesce onto the episode's unsynced one.

        Returns:
            EpisodeAction: The single pending play action for the episode.
        """
        pass

    @abstractmethod
    def save_progress(
        self,
        episode_id: str,
        position: float,
        completed: bool,
        duration: Optional[float],
        timestamp: datetime,
    ) -> Optional[Tuple[Episode, EpisodeAction]]:
        """
        Write an episode's playback state and its pending play action in one transaction.

        Either both the episode row and the coalesced play action are
        committed, or neither is.

        Parameters:
            duration (Optional[float]): Reported duration; the episode's own
                duration is used when omitted.
            timestamp (datetime): Stored as `last_played_at` and as the action time.

        Returns:
            Optional[Tuple[Episode, EpisodeAction]]: The updated episode and
            its pending play action, or `None` if the episode does not exist.
        """
        pass

    @abstractmethod
    def save_subscription_action(
        self, feed_url: str, action: str, timestamp: datetime
    ) -> EpisodeAction:
        """
        Insert a subscribe/unsubscribe action, or coalesce onto the feed's unsynced one.

        Returns:
            EpisodeAction: The single pending subscription action for the feed.
        """
        pass

    @abstractmethod
    def list_pending_actions(
        self,
        actions: Optional[Iterable[str]] = None,
        limit: Optional[int] = None,
    ) -> List[EpisodeAction]:
        """
        Return unsynced actions, oldest first.

        Parameters:
            actions (Optional[Iterable[str]]): Restrict to these action types.
            limit (Optional[int]): Maximum number of actions to return.
        """
        pass

    @abstractmethod
    def count_pending_actions(self, actions: Optional[Iterable[str]] = None) -> int:
        """Return the number of unsynced actions."""
        pass

    @abstractmethod
    def get_pending_action_for_episode(self, episode_id: str) -> Optional[EpisodeAction]:
        """Return the unsynced play action for an episode, or `None`."""
        pass

    @abstractmethod
    def get_pending_action_for_feed(self, feed_url: str) -> Optional[EpisodeAction]:
        """Return the unsynced subscription action for a feed, or `None`."""
        pass

    @abstractmethod
    def delete_acknowledged_actions(
        self, snapshots: Sequence[Tuple[str, datetime]]
    ) -> int:
        """
        Delete acknowledged actions that were not coalesced again since they were read.

        Parameters:
            snapshots: (action id, timestamp) pairs as uploaded. A row whose
                timestamp changed in the meantime carries newer data and is kept.

        Returns:
            int: Number of rows removed.
        """
        pass

    @abstractmethod
    def record_action_failure(
        self, action_ids: Sequence[str], error: str
    ) -> List[EpisodeAction]:
        """
        Increment `sync_attempts` and store `error` on each listed action.

        Returns:
            List[EpisodeAction]: The updated actions.
        """
        pass

    # --- Singleton Operations ---

    @abstractmethod
    def get_sync_state(self) -> SyncState:
        """Return the sync state row, creating it on first access."""
        pass

    @abstractmethod
    def update_sync_state(self, **kwargs) -> SyncState:
        """Update the sync state row and return it."""
        pass

    @abstractmethod
    def claim_sync_cycle(self, owner: str, now: datetime, stale_before: datetime) -> bool:
        """
        Atomically mark a cycle as running under `owner`.

        Succeeds when no cycle is running, or when the running cycle's
        heartbeat is older than `stale_before`.

        Returns:
            bool: True if `owner` now holds the cycle.
        """
        pass

    @abstractmethod
    def touch_sync_cycle(self, owner: str, now: datetime) -> bool:
        """Renew the heartbeat of the cycle held by `owner`; False if it is no longer held."""
        pass

    @abstractmethod
    def release_sync_cycle(self, owner: str, **kwargs) -> bool:
        """
        End the cycle held by `owner` and apply `kwargs` to the sync state.

        Nothing is written when another owner has taken the cycle over.

        Returns:
            bool: True if the cycle was still held by `owner`.
        """
        pass

    @abstractmethod
    def clear_stale_sync_cycle(self, stale_before: datetime, **kwargs) -> bool:
        """
        End a running cycle whose heartbeat is older than `stale_before`.

        Returns:
            bool: True if a stale cycle was cleared and `kwargs` applied.
        """
        pass

    @abstractmethod
    def get_server_config(self, device_id: Optional[str] = None) -> ServerConfiguration:
        """
        Return the server configuration row, creating it on first access.

        Parameters:
            device_id (Optional[str]): Device id to use when the row is
                created; a random one is generated when omitted. Ignored for
                an existing row.
        """
        pass

    @abstractmethod
    def update_server_config(self, **kwargs) -> ServerConfiguration:
        """Update the server configuration row and return it."""
        pass

    @abstractmethod
    def close(self) -> None:
        """Release all database connections held by the repository."""
        pass


class SQLAlchemyPodcastRepository(PodcastRepositoryInterface):
    """SQLAlchemy-based implementation of the podcast repository.

    Supports SQLite for local use and any server database SQLAlchemy can reach.
    """

    def __init__(
        self,
        database_url: str,
        pool_size: int = 5,
        max_overflow: int = 10,
        echo: bool = False,
        create_tables: bool = True,
    ):
        """
        Initialize the repository and configure its SQLAlchemy engine and session factory.

        Parameters:
            database_url (str): SQLAlchemy-compatible database URL.
            pool_size (int): Connection pool size for non-SQLite databases.
            max_overflow (int): Maximum overflow connections for non-SQLite databases.
            echo (bool): If true, enable SQLAlchemy SQL statement logging.
            create_tables (bool): Create missing tables on startup.
        """
        self.database_url = database_url

        # SQLite doesn't support connection pooling
        if database_url.startswith("sqlite"):
            self.engine = create_engine(
                database_url,
                echo=echo,
                connect_args={"check_same_thread": False},
            )
        else:
            self.engine = create_engine(
                database_url,
                pool_size=pool_size,
                max_overflow=max_overflow,
                echo=echo,
            )

        if create_tables:
            Base.metadata.create_all(self.engine)

        self.SessionLocal = sessionmaker(bind=self.engine, expire_on_commit=False)

        logger.info(f"Database initialized: {database_url.split('@')[-1] if '@' in database_url else database_url}")

    def _get_session(self) -> Session:
        """Obtain a new session bound to the repository's engine."""
        return self.SessionLocal()

    @staticmethod
    def _apply(obj, values: Dict[str, Any]) -> None:
        for key, value in values.items():
            if hasattr(obj, key):
                setattr(obj, key, value)

    # --- Podcast Operations ---

    def create_podcast(self, feed_url: str, title: str, **kwargs) -> Podcast:
        with self._get_session() as session:
            podcast = Podcast(feed_url=feed_url, title=title, **kwargs)
            session.add(podcast)
            session.commit()
            session.refresh(podcast)
            logger.info(f"Created podcast: {title} ({feed_url})")
            return podcast

    def get_podcast(self, feed_url: str) -> Optional[Podcast]:
        with self._get_session() as session:
            return session.get(Podcast, feed_url)

    def list_podcasts(
        self, subscribed_only: bool = True, limit: Optional[int] = None
    ) -> List[Podcast]:
        with self._get_session() as session:
            stmt = select(Podcast)
            if subscribed_only:
                stmt = stmt.where(Podcast.is_subscribed.is_(True))
            stmt = stmt.order_by(Podcast.title)
            if limit:
                stmt = stmt.limit(limit)
            return list(session.scalars(stmt).all())

    def list_stale_podcasts(self, older_than: datetime) -> List[Podcast]:
        with self._get_session() as session:
            stmt = (
                select(Podcast)
                .where(Podcast.is_subscribed.is_(True))
                .where(
                    or_(
                        Podcast.last_updated.is_(None),
                        Podcast.last_updated < older_than,
                    )
                )
                .order_by(Podcast.title)
            )
            return list(session.scalars(stmt).all())

    def update_podcast(self, feed_url: str, **kwargs) -> Optional[Podcast]:
        with self._get_session() as session:
            podcast = session.get(Podcast, feed_url)
            if podcast:
                self._apply(podcast, kwargs)
                session.commit()
                session.refresh(podcast)
            return podcast

    def delete_podcast(self, feed_url: str) -> bool:
        with self._get_session() as session:
            podcast = session.get(Podcast, feed_url)
            if not podcast:
                return False
            session.delete(podcast)
            session.commit()
            logger.info(f"Deleted podcast: {podcast.title} ({feed_url})")
            return True

    # --- Episode Operations ---

    def get_episode(self, episode_id: str) -> Optional[Episode]:
        with self._get_session() as session:
            return session.get(Episode, episode_id)

    def find_episode(
        self,
        feed_url: str,
        audio_url: Optional[str] = None,
        guid: Optional[str] = None,
    ) -> Optional[Episode]:
        with self._get_session() as session:
            if guid:
                episode = session.get(Episode, make_episode_id(feed_url, guid))
                if episode:
                    return episode
            if not audio_url:
                return None
            stmt = (
                select(Episode)
                .where(Episode.podcast_feed_url == feed_url)
                .where(Episode.audio_url == audio_url)
                .limit(1)
            )
            return session.scalar(stmt)

    def list_episodes(self, feed_url: str) -> List[Episode]:
        with self._get_session() as session:
            stmt = (
                select(Episode)
                .where(Episode.podcast_feed_url == feed_url)
                .order_by(Episode.publish_date.desc())
            )
            return list(session.scalars(stmt).all())

    def update_episode(self, episode_id: str, **kwargs) -> Optional[Episode]:
        with self._get_session() as session:
            episode = session.get(Episode, episode_id)
            if episode:
                self._apply(episode, kwargs)
                session.commit()
                session.refresh(episode)
            return episode

    def count_unplayed(self, feed_url: str) -> int:
        with self._get_session() as session:
            stmt = (
                select(func.count())
                .select_from(Episode)
                .where(Episode.podcast_feed_url == feed_url)
                .where(Episode.is_played.is_(False))
            )
            return session.scalar(stmt) or 0

    def merge_feed(
        self,
        feed_url: str,
        podcast_fields: Dict[str, Any],
        episode_records: Sequence[Dict[str, Any]],
        merged_at: datetime,
        create_defaults: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Podcast, int, int]:
        inserted = 0
        updated = 0

        with self._get_session() as session:
            podcast = session.get(Podcast, feed_url)
            if podcast is None:
                podcast = Podcast(feed_url=feed_url, **(create_defaults or {}))
                session.add(podcast)
            self._apply(podcast, podcast_fields)
            podcast.last_updated = merged_at
            podcast.last_refresh_error = None

            ids = [make_episode_id(feed_url, record["guid"]) for record in episode_records]
            existing = {}
            if ids:
                stmt = select(Episode).where(Episode.id.in_(ids))
                existing = {episode.id: episode for episode in session.scalars(stmt)}

            for episode_id, record in zip(ids, episode_records):
                episode = existing.get(episode_id)
                if episode is None:
                    episode = Episode(id=episode_id, podcast_feed_url=feed_url, **record)
                    session.add(episode)
                    existing[episode_id] = episode
                    inserted += 1
                else:
                    self._apply(episode, record)
                    updated += 1

            session.commit()
            session.refresh(podcast)

        logger.debug(f"Merged {feed_url}: {inserted} inserted, {updated} updated")
        return podcast, inserted, updated

    # --- Episode Action Operations ---

    def _pending_stmt(self):
        return select(EpisodeAction).where(EpisodeAction.is_synced.is_(False))

    def _upsert_play_action(
        self,
        session: Session,
        episode_id: str,
        podcast_url: str,
        episode_url: Optional[str],
        guid: Optional[str],
        position: float,
        completed: bool,
        duration: Optional[float],
        timestamp: datetime,
    ) -> EpisodeAction:
        stmt = (
            self._pending_stmt()
            .where(EpisodeAction.action == ActionType.PLAY)
            .where(EpisodeAction.episode_id == episode_id)
        )
        action = session.scalar(stmt)
        if action is None:
            action = EpisodeAction(
                id=str(uuid.uuid4()),
                action=ActionType.PLAY,
                episode_id=episode_id,
                podcast_url=podcast_url,
                episode_url=episode_url,
                guid=guid,
                sync_attempts=0,
                is_synced=False,
            )
            session.add(action)
        action.position = position
        action.completed = completed
        if duration is not None:
            action.duration = duration
        action.timestamp = timestamp
        return action

    def save_play_action(
        self,
        episode_id: str,
        podcast_url: str,
        episode_url: Optional[str],
        guid: Optional[str],
        position: float,
        completed: bool,
        duration: Optional[float],
        timestamp: datetime,
    ) -> EpisodeAction:
        with self._get_session() as session:
            action = self._upsert_play_action(
                session,
                episode_id=episode_id,
                podcast_url=podcast_url,
                episode_url=episode_url,
                guid=guid,
                position=position,
                completed=completed,
                duration=duration,
                timestamp=timestamp,
            )
            session.commit()
            session.refresh(action)
            return action

    def save_progress(
        self,
        episode_id: str,
        position: float,
        completed: bool,
        duration: Optional[float],
        timestamp: datetime,
    ) -> Optional[Tuple[Episode, EpisodeAction]]:
        with self._get_session() as session:
            episode = session.get(Episode, episode_id)
            if episode is None:
                return None

            episode.playback_position = position
            episode.is_played = completed
            episode.last_played_at = timestamp
            episode.needs_sync = True

            action = self._upsert_play_action(
                session,
                episode_id=episode.id,
                podcast_url=episode.podcast_feed_url,
                episode_url=episode.audio_url,
                guid=episode.guid,
                position=position,
                completed=completed,
                duration=duration if duration is not None else episode.duration,
                timestamp=timestamp,
            )
            session.commit()
            session.refresh(episode)
            session.refresh(action)
            return episode, action

    def save_subscription_action(
        self, feed_url: str, action: str, timestamp: datetime
    ) -> EpisodeAction:
        with self._get_session() as session:
            stmt = (
                self._pending_stmt()
                .where(EpisodeAction.action.in_(ActionType.SUBSCRIPTION))
                .where(EpisodeAction.podcast_url == feed_url)
            )
            entry = session.scalar(stmt)
            if entry is None:
                entry = EpisodeAction(
                    id=str(uuid.uuid4()),
                    podcast_url=feed_url,
                    sync_attempts=0,
                    is_synced=False,
                )
                session.add(entry)
            entry.action = action
            entry.timestamp = timestamp
            session.commit()
            session.refresh(entry)
            return entry

    def list_pending_actions(
        self,
        actions: Optional[Iterable[str]] = None,
        limit: Optional[int] = None,
    ) -> List[EpisodeAction]:
        with self._get_session() as session:
            stmt = self._pending_stmt()
            if actions is not None:
                stmt = stmt.where(EpisodeAction.action.in_(list(actions)))
            stmt = stmt.order_by(EpisodeAction.timestamp, EpisodeAction.id)
            if limit:
                stmt = stmt.limit(limit)
            return list(session.scalars(stmt).all())

    def count_pending_actions(self, actions: Optional[Iterable[str]] = None) -> int:
        with self._get_session() as session:
            stmt = (
                select(func.count())
                .select_from(EpisodeAction)
                .where(EpisodeAction.is_synced.is_(False))
            )
            if actions is not None:
                stmt = stmt.where(EpisodeAction.action.in_(list(actions)))
            return session.scalar(stmt) or 0

    def get_pending_action_for_episode(self, episode_id: str) -> Optional[EpisodeAction]:
        with self._get_session() as session:
            stmt = (
                self._pending_stmt()
                .where(EpisodeAction.action == ActionType.PLAY)
                .where(EpisodeAction.episode_id == episode_id)
            )
            return session.scalar(stmt)

    def get_pending_action_for_feed(self, feed_url: str) -> Optional[EpisodeAction]:
        with self._get_session() as session:
            stmt = (
                self._pending_stmt()
                .where(EpisodeAction.action.in_(ActionType.SUBSCRIPTION))
                .where(EpisodeAction.podcast_url == feed_url)
            )
            return session.scalar(stmt)

    def delete_acknowledged_actions(
        self, snapshots: Sequence[Tuple[str, datetime]]
    ) -> int:
        removed = 0
        with self._get_session() as session:
            for action_id, timestamp in snapshots:
                result = session.execute(
                    delete(EpisodeAction)
                    .where(EpisodeAction.id == action_id)
                    .where(EpisodeAction.timestamp == timestamp)
                )
                removed += result.rowcount or 0
            session.commit()
        return removed

    def record_action_failure(
        self, action_ids: Sequence[str], error: str
    ) -> List[EpisodeAction]:
        if not action_ids:
            return []
        with self._get_session() as session:
            stmt = select(EpisodeAction).where(EpisodeAction.id.in_(list(action_ids)))
            actions = list(session.scalars(stmt).all())
            for action in actions:
                action.sync_attempts = (action.sync_attempts or 0) + 1
                action.last_sync_error = error
            session.commit()
            return actions

    # --- Singleton Operations ---

    def get_sync_state(self) -> SyncState:
        with self._get_session() as session:
            state = session.get(SyncState, SYNC_STATE_ID)
            if state is None:
                state = SyncState(
                    id=SYNC_STATE_ID,
                    is_syncing=False,
                    total_syncs=0,
                    failed_syncs=0,
                    consecutive_smart_failures=0,
                )
                session.add(state)
                session.commit()
                session.refresh(state)
            return state

    def update_sync_state(self, **kwargs) -> SyncState:
        self.get_sync_state()
        with self._get_session() as session:
            state = session.get(SyncState, SYNC_STATE_ID)
            self._apply(state, kwargs)
            session.commit()
            session.refresh(state)
            return state

    @staticmethod
    def _stale_heartbeat(stale_before: datetime):
        return or_(
            SyncState.sync_heartbeat_at.is_(None),
            SyncState.sync_heartbeat_at < stale_before,
        )

    def _update_sync_state_where(self, condition, values: Dict[str, Any]) -> bool:
        """Apply `values` to the sync state row only if `condition` holds, in one UPDATE."""
        self.get_sync_state()
        values = {key: value for key, value in values.items() if hasattr(SyncState, key)}
        with self._get_session() as session:
            result = session.execute(
                update(SyncState)
                .where(SyncState.id == SYNC_STATE_ID)
                .where(condition)
                .values(**values)
            )
            session.commit()
            return bool(result.rowcount)

    def claim_sync_cycle(self, owner: str, now: datetime, stale_before: datetime) -> bool:
        return self._update_sync_state_where(
            or_(SyncState.is_syncing.is_not(True), self._stale_heartbeat(stale_before)),
            {
                "is_syncing": True,
                "sync_owner": owner,
                "sync_heartbeat_at": now,
                "last_sync_attempt": now,
            },
        )

    def touch_sync_cycle(self, owner: str, now: datetime) -> bool:
        return self._update_sync_state_where(
            and_(SyncState.is_syncing.is_(True), SyncState.sync_owner == owner),
            {"sync_heartbeat_at": now},
        )

    def release_sync_cycle(self, owner: str, **kwargs) -> bool:
        values = dict(kwargs, is_syncing=False, sync_owner=None, sync_heartbeat_at=None)
        return self._update_sync_state_where(
            and_(SyncState.is_syncing.is_(True), SyncState.sync_owner == owner),
            values,
        )

    def clear_stale_sync_cycle(self, stale_before: datetime, **kwargs) -> bool:
        values = dict(kwargs, is_syncing=False, sync_owner=None, sync_heartbeat_at=None)
        return self._update_sync_state_where(
            and_(SyncState.is_syncing.is_(True), self._stale_heartbeat(stale_before)),
            values,
        )

    def get_server_config(self, device_id: Optional[str] = None) -> ServerConfiguration:
        with self._get_session() as session:
            server_config = session.get(ServerConfiguration, SERVER_CONFIG_ID)
            if server_config is None:
                server_config = ServerConfiguration(
                    id=SERVER_CONFIG_ID,
                    server_url="",
                    username="",
                    device_id=device_id or f"podsync-{uuid.uuid4().hex[:12]}",
                    is_authenticated=False,
                )
                session.add(server_config)
                session.commit()
                session.refresh(server_config)
                logger.info(f"Registered device id {server_config.device_id}")
            return server_config

    def update_server_config(self, **kwargs) -> ServerConfiguration:
        self.get_server_config()
        with self._get_session() as session:
            server_config = session.get(ServerConfiguration, SERVER_CONFIG_ID)
            self._apply(server_config, kwargs)
            session.commit()
            session.refresh(server_config)
            return server_config

    def close(self) -> None:
        """
        Dispose the engine and release its connection pool.
        """
        self.engine.dispose()
        logger.info("Database connections closed")
