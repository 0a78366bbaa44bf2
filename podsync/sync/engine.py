"""Sync orchestration: one cycle at a time, against feeds and the sync server.

A cycle authenticates, reconciles subscriptions, refreshes feeds, pulls
remote playback actions and pushes the local action queue. Network calls are
made without holding the store lock, so direct writes from the UI and the
player (subscribe, record_progress) are never blocked on latency.

Engines sharing a store run one cycle at a time between them: the running
cycle holds a lease in the sync state row and renews its heartbeat between
steps.
"""

import logging
import math
import os
import socket
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..db.models import ActionType, EpisodeAction, Podcast, SyncState
from ..db.repository import PodcastRepositoryInterface
from ..errors import (
    AuthError,
    NetworkError,
    ParseError,
    PodcastNotFoundError,
    PodsyncError,
)
from ..gpodder.client import GpodderClient
from ..gpodder.models import RemoteEpisodeAction
from ..podcast.feed_merger import FeedMerger
from ..podcast.feed_parser import FeedParser, ParsedPodcast
from ..utils.time_utils import utcnow
from .action_queue import ActionQueue
from .base import SyncMode, SyncResult, SyncStatus
from .config import SyncConfig
from .session import SessionManager

logger = logging.getLogger(__name__)


@dataclass
class _CycleProgress:
    """Which steps of the running cycle completed, and the cursors they earned."""

    server_enabled: bool = True
    auth_error: Optional[str] = None
    subscriptions_ok: bool = False
    subscription_cursor: Optional[int] = None
    actions_pulled_ok: bool = False
    action_cursor: Optional[int] = None
    actions_pushed_ok: bool = False


class SyncEngine:
    """Runs sync cycles and serializes every write to the local store.

    Example:
        engine = SyncEngine(repository, parser, merger, queue, sessions, client)
        result = engine.perform_sync(SyncMode.FULL)
        print(result.status)
    """

    def __init__(
        self,
        repository: PodcastRepositoryInterface,
        feed_parser: FeedParser,
        feed_merger: FeedMerger,
        action_queue: ActionQueue,
        session_manager: SessionManager,
        client: GpodderClient,
        config: Optional[SyncConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Create a sync engine.

        Parameters:
            repository: Local store.
            feed_parser: Fetches and parses feeds.
            feed_merger: Applies parsed feeds to the store.
            action_queue: Pending user actions.
            session_manager: Provides authenticated server sessions.
            client: gpodder client for server calls.
            config: Sync tuning; read from the environment when omitted.
            clock: Source of naive UTC "now", replaceable in tests.
        """
        self.repository = repository
        self.feed_parser = feed_parser
        self.feed_merger = feed_merger
        self.queue = action_queue
        self.sessions = session_manager
        self.client = client
        self.config = config or SyncConfig.from_env()
        self._clock = clock

        # Serializes every store mutation; never held across network calls
        self._store_lock = threading.RLock()
        # At most one cycle in flight per engine
        self._cycle_lock = threading.Lock()
        self._cancel_event = threading.Event()
        # Identifies this engine's cycles in the persisted lease
        self._owner = f"{socket.gethostname()}:{os.getpid()}:{uuid.uuid4().hex[:8]}"

        self._recover_interrupted_cycle()

    def _lease_cutoff(self) -> datetime:
        return self._clock() - timedelta(seconds=self.config.cycle_lease_seconds)

    def _recover_interrupted_cycle(self) -> None:
        # A cycle that still renews its heartbeat belongs to a live process
        cleared = self.repository.clear_stale_sync_cycle(
            stale_before=self._lease_cutoff(),
            last_sync_status=SyncStatus.FAILED.value,
            last_sync_error="Interrupted before completion",
        )
        if cleared:
            logger.warning("Previous sync cycle stopped renewing its lease, marking it failed")

    @property
    def is_syncing(self) -> bool:
        return self._cycle_lock.locked()

    # --- Direct writes ---

    def subscribe(self, feed_url: str) -> Podcast:
        """Fetch, parse and merge a feed, then mark it subscribed and queue the change.

        The fetch runs without the store lock; only the merge is serialized.

        Raises:
            NetworkError: If the feed cannot be downloaded
            ParseError: If the feed is malformed
            InvalidFeedError: If the document is not a podcast feed
        """
        feed_url = feed_url.strip()
        parsed = self.feed_parser.fetch(feed_url)

        with self._store_lock:
            self.feed_merger.merge(feed_url, parsed, now=self._clock(), subscribe=True)
            podcast = self.repository.update_podcast(
                feed_url, is_subscribed=True, needs_sync=True
            )
            self.queue.enqueue_subscription(feed_url, subscribed=True, timestamp=self._clock())

        logger.info(f"Subscribed to '{podcast.title}' ({feed_url})")
        return podcast

    def unsubscribe(self, feed_url: str) -> Podcast:
        """Mark a podcast unsubscribed and queue the change; episodes are kept.

        Raises:
            PodcastNotFoundError: If the podcast is unknown
        """
        with self._store_lock:
            podcast = self.repository.get_podcast(feed_url)
            if podcast is None:
                raise PodcastNotFoundError(feed_url)
            podcast = self.repository.update_podcast(
                feed_url, is_subscribed=False, needs_sync=True
            )
            self.queue.enqueue_subscription(feed_url, subscribed=False, timestamp=self._clock())

        logger.info(f"Unsubscribed from '{podcast.title}' ({feed_url})")
        return podcast

    def record_progress(
        self,
        episode_id: str,
        position: float,
        completed: bool,
        duration: Optional[float] = None,
    ) -> EpisodeAction:
        """Write playback state locally and queue it for the server.

        The episode update and the queued action share one transaction. Never
        touches the network.

        Raises:
            EpisodeNotFoundError: If the episode is unknown
            QueueWriteError: If the local write fails; nothing is saved
            ValueError: If the position is negative
        """
        if position < 0:
            raise ValueError(f"Playback position must be >= 0, got {position}")

        with self._store_lock:
            return self.queue.record_progress(
                episode_id, position, completed, duration=duration, timestamp=self._clock()
            )

    def cancel(self) -> None:
        """Ask the in-flight cycle to stop at the next step boundary."""
        if self.is_syncing:
            logger.info("Cancelling sync cycle")
        self._cancel_event.set()

    def _cancelled(self) -> bool:
        return self._cancel_event.is_set()

    # --- Sync cycle ---

    def perform_sync(self, mode: SyncMode = SyncMode.SMART) -> SyncResult:
        """Run one sync cycle.

        Returns immediately with a SKIPPED result, without touching any
        state, if another cycle is already in flight in this engine or holds
        a live lease in the shared store. A lease whose heartbeat is older
        than `cycle_lease_seconds` is taken over.

        Args:
            mode: Requested mode; SMART may be escalated to FULL.

        Returns:
            SyncResult describing the cycle.
        """
        mode = SyncMode(mode)
        if not self._cycle_lock.acquire(blocking=False):
            logger.info("Sync already in progress, skipping")
            return SyncResult(mode=mode, status=SyncStatus.SKIPPED)

        try:
            with self._store_lock:
                previous = self.repository.get_sync_state()
                started_at = self._clock()
                claimed = self.repository.claim_sync_cycle(
                    self._owner, started_at, stale_before=self._lease_cutoff()
                )
                if not claimed:
                    logger.info(
                        f"Sync already in progress in {previous.sync_owner or 'another process'}, "
                        "skipping"
                    )
                    return SyncResult(mode=mode, status=SyncStatus.SKIPPED)

                if previous.is_syncing:
                    logger.warning(
                        f"Taking over stale sync cycle from {previous.sync_owner or 'unknown owner'}"
                    )
                state = self.repository.get_sync_state()
                mode = self._resolve_mode(mode, state)
                self._cancel_event.clear()

            result = SyncResult(mode=mode, started_at=started_at)
            progress = _CycleProgress()
            logger.info(f"Starting {mode.value} sync")

            try:
                self._run_cycle(result, progress, state)
            except AuthError as e:
                progress.auth_error = str(e)
            except Exception as e:
                logger.exception(f"Sync cycle aborted: {e}")
                result.add_error(f"Unexpected error: {e}")
                result.status = SyncStatus.FAILED
                result.error = str(e)
            finally:
                self._finish_cycle(result, progress, state)

            return result
        finally:
            self._cycle_lock.release()

    def _resolve_mode(self, mode: SyncMode, state: SyncState) -> SyncMode:
        if mode is SyncMode.FULL:
            return mode
        if state.last_full_sync is None:
            logger.info("No full sync has completed yet, escalating to full sync")
            return SyncMode.FULL
        if state.consecutive_smart_failures >= self.config.max_smart_failures:
            logger.info(
                f"{state.consecutive_smart_failures} consecutive smart sync failures, "
                "escalating to full sync"
            )
            return SyncMode.FULL
        return mode

    def _run_cycle(self, result: SyncResult, progress: _CycleProgress, state: SyncState) -> None:
        server_config = self.sessions.configuration()
        progress.server_enabled = server_config.is_configured

        if progress.server_enabled:
            try:
                self.sessions.ensure_session()
            except NetworkError as e:
                logger.warning(f"Sync server unreachable, refreshing feeds only: {e}")
                result.add_error(f"Sync server unreachable: {e}")
                progress.server_enabled = False
        else:
            logger.debug("No sync server configured, refreshing feeds only")

        if progress.server_enabled and not self._cancelled():
            self._sync_subscriptions(result, progress, state)

        self._heartbeat()
        if not self._cancelled():
            self._refresh_feeds(result)

        self._heartbeat()
        if progress.server_enabled and not self._cancelled():
            self._pull_episode_actions(result, progress, state)

        self._heartbeat()
        if progress.server_enabled and not self._cancelled():
            self._push_episode_actions(result, progress, server_config.device_id)

    def _heartbeat(self) -> None:
        """Renew this engine's cycle lease; cancel the cycle if it was taken over."""
        try:
            with self._store_lock:
                held = self.repository.touch_sync_cycle(self._owner, self._clock())
        except SQLAlchemyError as e:
            logger.warning(f"Failed to renew sync cycle lease: {e}")
            return
        if not held:
            logger.warning("Sync cycle lease was taken over by another process, cancelling")
            self._cancel_event.set()

    # --- Subscriptions ---

    def _sync_subscriptions(
        self, result: SyncResult, progress: _CycleProgress, state: SyncState
    ) -> None:
        since = 0 if result.mode is SyncMode.FULL else (state.subscription_timestamp or 0)

        try:
            changes = self.sessions.call(lambda s: self.client.get_subscriptions(s, since=since))
        except NetworkError as e:
            logger.error(f"Failed to pull subscriptions: {e}")
            result.add_error(f"Subscription pull failed: {e}")
            return

        now = self._clock()
        with self._store_lock:
            for feed_url in changes.add:
                if self._apply_remote_subscribe(feed_url, now):
                    result.subscriptions_added += 1
            for feed_url in changes.remove:
                if feed_url in changes.add:
                    continue
                if self._apply_remote_unsubscribe(feed_url):
                    result.subscriptions_removed += 1

        if self._cancelled():
            return

        pushed_ok = self._push_subscriptions(result)
        progress.subscription_cursor = changes.timestamp
        progress.subscriptions_ok = pushed_ok

    def _apply_remote_subscribe(self, feed_url: str, now: datetime) -> bool:
        if self.queue.pending_for_feed(feed_url) is not None:
            # A local change is waiting to be pushed and wins
            return False

        podcast = self.repository.get_podcast(feed_url)
        if podcast is None:
            # Title is filled in by the first feed refresh
            self.repository.create_podcast(
                feed_url=feed_url,
                title=feed_url,
                is_subscribed=True,
                needs_sync=False,
                last_synced_at=now,
            )
            logger.info(f"Added remote subscription {feed_url}")
            return True
        if not podcast.is_subscribed and not podcast.needs_sync:
            self.repository.update_podcast(feed_url, is_subscribed=True, last_synced_at=now)
            logger.info(f"Resubscribed to {feed_url} from server")
            return True
        return False

    def _apply_remote_unsubscribe(self, feed_url: str) -> bool:
        if self.queue.pending_for_feed(feed_url) is not None:
            return False
        podcast = self.repository.get_podcast(feed_url)
        if podcast is None or not podcast.is_subscribed or podcast.needs_sync:
            return False
        self.repository.update_podcast(feed_url, is_subscribed=False)
        logger.info(f"Unsubscribed from {feed_url} (removed on server)")
        return True

    def _push_subscriptions(self, result: SyncResult) -> bool:
        entries = self.queue.pending(kind="subscription")
        if not entries:
            return True

        add = [e.podcast_url for e in entries if e.action == ActionType.SUBSCRIBE]
        remove = [e.podcast_url for e in entries if e.action == ActionType.UNSUBSCRIBE]

        try:
            response = self.sessions.call(
                lambda s: self.client.update_subscriptions(s, add=add, remove=remove)
            )
        except NetworkError as e:
            logger.error(f"Failed to push {len(entries)} subscription changes: {e}")
            self.queue.record_failure([entry.id for entry in entries], str(e))
            result.add_error(f"Subscription push failed: {e}")
            return False

        for old_url, new_url in response.update_urls:
            if old_url != new_url:
                logger.info(f"Server rewrote feed URL {old_url} -> {new_url}")

        now = self._clock()
        with self._store_lock:
            self.queue.mark_synced(entries)
            for entry in entries:
                if self.queue.pending_for_feed(entry.podcast_url) is None:
                    self.repository.update_podcast(
                        entry.podcast_url, needs_sync=False, last_synced_at=now
                    )
        result.subscriptions_pushed += len(entries)
        logger.info(f"Pushed subscription changes: {len(add)} added, {len(remove)} removed")
        return True

    # --- Feeds ---

    def _refresh_feeds(self, result: SyncResult) -> None:
        if result.mode is SyncMode.FULL:
            podcasts = self.repository.list_podcasts(subscribed_only=True)
        else:
            cutoff = self._clock() - timedelta(minutes=self.config.stale_after_minutes)
            podcasts = self.repository.list_stale_podcasts(cutoff)

        if not podcasts:
            logger.info("No feeds to refresh")
            return

        result.feeds_attempted = len(podcasts)
        logger.info(
            f"Refreshing {len(podcasts)} feeds with {self.config.feed_workers} concurrent downloads"
        )

        with ThreadPoolExecutor(max_workers=self.config.feed_workers) as executor:
            future_to_url = {
                executor.submit(self.feed_parser.fetch, podcast.feed_url): podcast.feed_url
                for podcast in podcasts
            }

            for future in as_completed(future_to_url):
                feed_url = future_to_url[future]
                self._heartbeat()
                if self._cancelled():
                    for pending in future_to_url:
                        pending.cancel()
                    logger.info("Feed refresh cancelled")
                    break

                try:
                    parsed = future.result()
                except (NetworkError, ParseError) as e:
                    self._record_feed_error(result, feed_url, e)
                    continue
                except Exception as e:
                    logger.exception(f"Unexpected error fetching {feed_url}")
                    self._record_feed_error(result, feed_url, e)
                    continue

                self._merge_feed(result, feed_url, parsed)

        logger.info(
            f"Feed refresh complete: {result.feeds_synced} succeeded, {result.feeds_failed} failed"
        )

    def _merge_feed(self, result: SyncResult, feed_url: str, parsed: ParsedPodcast) -> None:
        try:
            with self._store_lock:
                merged = self.feed_merger.merge(feed_url, parsed, now=self._clock())
        except (PodsyncError, SQLAlchemyError) as e:
            self._record_feed_error(result, feed_url, e)
            return
        result.feeds_synced += 1
        result.new_episodes += merged.inserted

    def _record_feed_error(self, result: SyncResult, feed_url: str, error: Exception) -> None:
        message = str(error) or error.__class__.__name__
        logger.error(f"Failed to refresh {feed_url}: {message}")
        result.feed_errors[feed_url] = message
        try:
            with self._store_lock:
                self.repository.update_podcast(feed_url, last_refresh_error=message)
        except SQLAlchemyError as e:
            logger.error(f"Failed to record refresh error for {feed_url}: {e}")

    # --- Episode actions ---

    def _pull_episode_actions(
        self, result: SyncResult, progress: _CycleProgress, state: SyncState
    ) -> None:
        since = None if result.mode is SyncMode.FULL else state.episode_action_timestamp

        try:
            changes = self.sessions.call(lambda s: self.client.get_episode_actions(s, since=since))
        except NetworkError as e:
            logger.error(f"Failed to pull episode actions: {e}")
            result.add_error(f"Episode action pull failed: {e}")
            return

        with self._store_lock:
            for remote in changes.actions:
                if remote.is_play and self._apply_remote_play(remote):
                    result.actions_pulled += 1

        progress.actions_pulled_ok = True
        progress.action_cursor = changes.timestamp
        logger.info(f"Applied {result.actions_pulled} of {len(changes.actions)} remote episode actions")

    def _apply_remote_play(self, remote: RemoteEpisodeAction) -> bool:
        """Apply one remote play action, last writer wins."""
        if remote.position is None:
            return False

        episode = self.repository.find_episode(
            remote.podcast, audio_url=remote.episode, guid=remote.guid
        )
        if episode is None:
            return False

        remote_time = remote.timestamp or self._clock()

        pending = self.queue.pending_for_episode(episode.id)
        if pending is not None and pending.timestamp >= remote_time:
            logger.debug(f"Keeping newer local progress for {episode.id}")
            return False

        if episode.last_synced_at is not None and remote_time <= episode.last_synced_at:
            return False

        fields = {
            "playback_position": float(remote.position),
            "last_synced_at": remote_time,
        }
        if remote.is_completed:
            fields["is_played"] = True
        self.repository.update_episode(episode.id, **fields)
        return True

    def _push_episode_actions(
        self, result: SyncResult, progress: _CycleProgress, device_id: str
    ) -> None:
        batch_size = self.config.action_batch_size
        batches = math.ceil(self.queue.pending_count(kind=ActionType.PLAY) / batch_size)

        for _ in range(batches):
            if self._cancelled():
                return

            batch = self.queue.pending(kind=ActionType.PLAY, limit=batch_size)
            if not batch:
                break
            records = [self.queue.to_wire(action, device_id) for action in batch]

            try:
                self.sessions.call(lambda s: self.client.upload_episode_actions(s, records))
            except NetworkError as e:
                logger.error(f"Failed to push {len(batch)} episode actions: {e}")
                self.queue.record_failure([action.id for action in batch], str(e))
                result.add_error(f"Episode action push failed: {e}")
                return

            self._acknowledge_play_actions(batch)
            result.actions_pushed += len(batch)
            self._heartbeat()

        progress.actions_pushed_ok = True
        if result.actions_pushed:
            logger.info(f"Pushed {result.actions_pushed} episode actions")

    def _acknowledge_play_actions(self, batch: List[EpisodeAction]) -> None:
        now = self._clock()
        with self._store_lock:
            self.queue.mark_synced(batch)
            for action in batch:
                if self.queue.pending_for_episode(action.episode_id) is None:
                    self.repository.update_episode(
                        action.episode_id, needs_sync=False, last_synced_at=now
                    )

    # --- Completion ---

    def _finish_cycle(self, result: SyncResult, progress: _CycleProgress, state: SyncState) -> None:
        cancelled = self._cancelled()
        self._cancel_event.clear()

        if result.status is not SyncStatus.FAILED:
            result.status, result.error = self._classify(result, progress, cancelled)
        result.finished_at = self._clock()

        updates = {
            "last_sync_status": result.status.value,
            "last_sync_error": result.error,
            "total_syncs": (state.total_syncs or 0) + 1,
        }

        if result.status.is_failure:
            updates["failed_syncs"] = (state.failed_syncs or 0) + 1
            if result.mode is SyncMode.SMART:
                updates["consecutive_smart_failures"] = (state.consecutive_smart_failures or 0) + 1
        elif result.status is SyncStatus.SUCCEEDED:
            updates["consecutive_smart_failures"] = 0

        # Cursors and cycle timestamps only move when the cycle ran to completion
        if not cancelled and result.status is not SyncStatus.FAILED:
            now = result.finished_at
            if progress.subscriptions_ok:
                updates["last_subscription_sync"] = now
                if progress.subscription_cursor is not None:
                    updates["subscription_timestamp"] = progress.subscription_cursor
            if progress.actions_pulled_ok and progress.action_cursor is not None:
                updates["episode_action_timestamp"] = progress.action_cursor
            if progress.actions_pulled_ok and progress.actions_pushed_ok:
                updates["last_progress_sync"] = now
            if result.mode is SyncMode.FULL:
                updates["last_full_sync"] = now

        try:
            with self._store_lock:
                released = self.repository.release_sync_cycle(self._owner, **updates)
        except SQLAlchemyError as e:
            logger.error(f"Failed to persist sync state: {e}")
        else:
            if not released:
                logger.warning("Sync cycle lease was taken over, result not recorded")

        result.log_result()

    @staticmethod
    def _classify(result: SyncResult, progress: _CycleProgress, cancelled: bool):
        if cancelled:
            return SyncStatus.CANCELLED, "Sync cancelled"
        if progress.auth_error is not None:
            return SyncStatus.FAILED, f"Authentication failed: {progress.auth_error}"
        if result.feeds_attempted and not result.feeds_synced:
            return SyncStatus.FAILED, f"All {result.feeds_attempted} feeds failed to refresh"
        if result.feed_errors or result.errors:
            messages = []
            if result.feed_errors:
                messages.append(
                    f"{result.feeds_failed} of {result.feeds_attempted} feeds failed to refresh"
                )
            messages.extend(result.errors)
            return SyncStatus.PARTIALLY_FAILED, "; ".join(messages)
        return SyncStatus.SUCCEEDED, None
