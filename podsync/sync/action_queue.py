"""Durable, coalescing queue of user actions awaiting server acknowledgment.

At most one unsynced play action exists per episode and at most one
subscription action per feed URL: new events overwrite the pending entry's
payload instead of appending. Entries are never dropped because of failed
uploads; they stay queued until the server acknowledges them.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError

from ..db.models import ActionType, Episode, EpisodeAction
from ..db.repository import PodcastRepositoryInterface
from ..errors import EpisodeNotFoundError, QueueWriteError
from ..gpodder.models import format_timestamp
from ..utils.time_utils import utcnow

logger = logging.getLogger(__name__)


class ActionQueue:
    """Pending EpisodeAction entries stored in the local database.

    Args:
        repository: Local store holding the entries.
        warn_every: Log a warning each time an entry's failed attempt count
            reaches a multiple of this value.
    """

    def __init__(self, repository: PodcastRepositoryInterface, warn_every: int = 10):
        self.repository = repository
        self.warn_every = max(1, warn_every)

    # --- Enqueue ---

    def enqueue_progress(
        self,
        episode: Episode,
        position: float,
        completed: bool,
        duration: Optional[float] = None,
        timestamp: Optional[datetime] = None,
    ) -> EpisodeAction:
        """Queue a playback update, coalescing onto the episode's pending entry.

        Raises:
            QueueWriteError: If the entry could not be persisted.
        """
        try:
            action = self.repository.save_play_action(
                episode_id=episode.id,
                podcast_url=episode.podcast_feed_url,
                episode_url=episode.audio_url,
                guid=episode.guid,
                position=float(position),
                completed=bool(completed),
                duration=duration if duration is not None else episode.duration,
                timestamp=timestamp or utcnow(),
            )
        except SQLAlchemyError as e:
            raise QueueWriteError(f"Failed to queue progress for {episode.id}: {e}") from e

        logger.debug(
            f"Queued play action for {episode.id}: position={action.position}, "
            f"completed={action.completed}"
        )
        return action

    def record_progress(
        self,
        episode_id: str,
        position: float,
        completed: bool,
        duration: Optional[float] = None,
        timestamp: Optional[datetime] = None,
    ) -> EpisodeAction:
        """Save an episode's playback state and queue it, in one transaction.

        Raises:
            EpisodeNotFoundError: If the episode is unknown.
            QueueWriteError: If the write failed; nothing was persisted.
        """
        try:
            saved = self.repository.save_progress(
                episode_id,
                position=float(position),
                completed=bool(completed),
                duration=duration,
                timestamp=timestamp or utcnow(),
            )
        except SQLAlchemyError as e:
            raise QueueWriteError(f"Failed to save progress for {episode_id}: {e}") from e

        if saved is None:
            raise EpisodeNotFoundError(episode_id)

        _, action = saved
        logger.debug(
            f"Saved progress for {episode_id}: position={action.position}, "
            f"completed={action.completed}"
        )
        return action

    def enqueue_subscription(
        self,
        feed_url: str,
        subscribed: bool,
        timestamp: Optional[datetime] = None,
    ) -> EpisodeAction:
        """Queue a subscribe or unsubscribe, replacing any pending one for the feed.

        Raises:
            QueueWriteError: If the entry could not be persisted.
        """
        action = ActionType.SUBSCRIBE if subscribed else ActionType.UNSUBSCRIBE
        try:
            entry = self.repository.save_subscription_action(
                feed_url, action, timestamp or utcnow()
            )
        except SQLAlchemyError as e:
            raise QueueWriteError(f"Failed to queue {action} for {feed_url}: {e}") from e

        logger.debug(f"Queued {action} for {feed_url}")
        return entry

    # --- Inspect ---

    def pending(self, kind: Optional[str] = None, limit: Optional[int] = None) -> List[EpisodeAction]:
        """Return unsynced entries, oldest first.

        Args:
            kind: "play" for progress entries, "subscription" for
                subscribe/unsubscribe entries, None for everything.
            limit: Maximum number of entries to return.
        """
        return self.repository.list_pending_actions(actions=self._kinds(kind), limit=limit)

    def pending_count(self, kind: Optional[str] = None) -> int:
        return self.repository.count_pending_actions(actions=self._kinds(kind))

    def pending_for_episode(self, episode_id: str) -> Optional[EpisodeAction]:
        return self.repository.get_pending_action_for_episode(episode_id)

    def pending_for_feed(self, feed_url: str) -> Optional[EpisodeAction]:
        return self.repository.get_pending_action_for_feed(feed_url)

    @staticmethod
    def _kinds(kind: Optional[str]):
        if kind is None:
            return None
        if kind == "subscription":
            return ActionType.SUBSCRIPTION
        if kind == ActionType.PLAY:
            return (ActionType.PLAY,)
        raise ValueError(f"Unknown action kind: {kind}")

    # --- Drain ---

    @staticmethod
    def to_wire(action: EpisodeAction, device_id: Optional[str] = None) -> Dict[str, Any]:
        """Convert a play entry to a gpodder episode action record.

        A completed entry reports its position as the full duration when the
        duration is known, which is how gpodder marks an episode as played.
        """
        position = action.position or 0.0
        total = action.duration
        if action.completed and total:
            position = total

        record: Dict[str, Any] = {
            "podcast": action.podcast_url,
            "episode": action.episode_url,
            "action": ActionType.PLAY,
            "timestamp": format_timestamp(action.timestamp),
            "started": 0,
            "position": int(round(position)),
        }
        if total:
            record["total"] = int(round(total))
        if action.guid:
            record["guid"] = action.guid
        if device_id:
            record["device"] = device_id
        return record

    def mark_synced(self, actions: Sequence[EpisodeAction]) -> int:
        """Prune acknowledged entries.

        Entries coalesced again while their upload was in flight carry newer
        data than the server saw, so they stay pending.
        """
        removed = self.repository.delete_acknowledged_actions(
            [(action.id, action.timestamp) for action in actions]
        )
        if removed < len(actions):
            logger.debug(f"{len(actions) - removed} actions changed during upload, kept pending")
        logger.debug(f"Pruned {removed} acknowledged actions")
        return removed

    def record_failure(self, action_ids: Sequence[str], error: str) -> List[EpisodeAction]:
        """Count a failed upload attempt; entries stay pending."""
        actions = self.repository.record_action_failure(list(action_ids), error)
        for action in actions:
            if action.sync_attempts % self.warn_every == 0:
                target = action.episode_id or action.podcast_url
                logger.warning(
                    f"Action {action.action} for {target} has failed "
                    f"{action.sync_attempts} times, last error: {error}"
                )
        return actions
