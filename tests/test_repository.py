"""Tests for the podcast repository."""

from datetime import datetime, timedelta

import pytest

from podsync.db.factory import create_repository
from podsync.db.models import (
    SERVER_CONFIG_ID,
    SYNC_STATE_ID,
    ActionType,
    Episode,
    make_episode_id,
)
from podsync.db.repository import SQLAlchemyPodcastRepository

FEED_URL = "https://example.com/feed.xml"


@pytest.fixture
def sample_podcast(repository):
    """Create and persist a sample podcast used by tests."""
    return repository.create_podcast(
        feed_url=FEED_URL,
        title="Test Podcast",
        description="A test podcast",
        author="Test Author",
        language="en",
    )


@pytest.fixture
def sample_episode(repository, sample_podcast):
    """Create and persist one episode of the sample podcast."""
    podcast, _, _ = repository.merge_feed(
        FEED_URL,
        {"title": sample_podcast.title},
        [
            {
                "guid": "ep-1",
                "title": "Episode 1",
                "audio_url": "https://example.com/ep1.mp3",
                "duration": 1800.0,
            }
        ],
        merged_at=datetime(2024, 1, 1),
    )
    return repository.get_episode(make_episode_id(FEED_URL, "ep-1"))


class TestFactory:
    """Tests for repository construction."""

    def test_create_repository_returns_sqlalchemy_repository(self, tmp_path):
        repo = create_repository(f"sqlite:///{tmp_path / 'factory.db'}")
        try:
            assert isinstance(repo, SQLAlchemyPodcastRepository)
        finally:
            repo.close()

    def test_create_repository_reads_env(self, tmp_path, monkeypatch):
        url = f"sqlite:///{tmp_path / 'env.db'}"
        monkeypatch.setenv("DATABASE_URL", url)
        repo = create_repository()
        try:
            assert repo.database_url == url
        finally:
            repo.close()


class TestPodcastOperations:
    """Tests for podcast CRUD operations."""

    def test_create_podcast(self, repository):
        """Test creating a podcast."""
        podcast = repository.create_podcast(feed_url=FEED_URL, title="Test Podcast")

        assert podcast.feed_url == FEED_URL
        assert podcast.title == "Test Podcast"
        assert podcast.is_subscribed is True
        assert podcast.needs_sync is False
        assert podcast.categories == []

    def test_get_podcast(self, repository, sample_podcast):
        """Test getting a podcast by feed URL."""
        retrieved = repository.get_podcast(FEED_URL)

        assert retrieved is not None
        assert retrieved.title == sample_podcast.title

    def test_get_nonexistent_podcast(self, repository):
        assert repository.get_podcast("https://nowhere.example.com/feed") is None

    def test_list_podcasts(self, repository):
        """Test listing podcasts, subscribed only by default."""
        repository.create_podcast(feed_url="https://b.example.com", title="B")
        repository.create_podcast(feed_url="https://a.example.com", title="A")
        repository.create_podcast(
            feed_url="https://c.example.com", title="C", is_subscribed=False
        )

        assert [p.title for p in repository.list_podcasts()] == ["A", "B"]
        assert len(repository.list_podcasts(subscribed_only=False)) == 3
        assert len(repository.list_podcasts(subscribed_only=False, limit=2)) == 2

    def test_list_stale_podcasts(self, repository):
        """Test that only subscribed podcasts not refreshed since the cutoff are returned."""
        now = datetime(2024, 1, 1, 12, 0)
        repository.create_podcast(feed_url="https://never.example.com", title="Never")
        repository.create_podcast(
            feed_url="https://old.example.com", title="Old", last_updated=now - timedelta(hours=2)
        )
        repository.create_podcast(
            feed_url="https://fresh.example.com", title="Fresh", last_updated=now
        )
        repository.create_podcast(
            feed_url="https://gone.example.com", title="Gone", is_subscribed=False
        )

        stale = repository.list_stale_podcasts(now - timedelta(hours=1))

        assert [p.title for p in stale] == ["Never", "Old"]

    def test_update_podcast(self, repository, sample_podcast):
        updated = repository.update_podcast(FEED_URL, title="Renamed", needs_sync=True)

        assert updated.title == "Renamed"
        assert updated.needs_sync is True

    def test_update_nonexistent_podcast(self, repository):
        assert repository.update_podcast("https://nowhere.example.com", title="x") is None

    def test_delete_podcast_cascades(self, repository, sample_episode):
        """Test that deleting a podcast deletes its episodes."""
        assert repository.delete_podcast(FEED_URL) is True

        assert repository.get_podcast(FEED_URL) is None
        assert repository.get_episode(sample_episode.id) is None

    def test_delete_nonexistent_podcast(self, repository):
        assert repository.delete_podcast("https://nowhere.example.com") is False


class TestEpisodeOperations:
    """Tests for episode operations."""

    def test_find_episode_by_guid(self, repository, sample_episode):
        found = repository.find_episode(FEED_URL, guid="ep-1")
        assert found.id == sample_episode.id

    def test_find_episode_by_audio_url(self, repository, sample_episode):
        found = repository.find_episode(FEED_URL, audio_url="https://example.com/ep1.mp3")
        assert found.id == sample_episode.id

    def test_find_episode_unknown_guid_falls_back_to_audio_url(self, repository, sample_episode):
        found = repository.find_episode(
            FEED_URL, audio_url="https://example.com/ep1.mp3", guid="other"
        )
        assert found.id == sample_episode.id

    def test_find_episode_scoped_to_feed(self, repository, sample_episode):
        assert repository.find_episode("https://other.example.com", guid="ep-1") is None

    def test_update_episode(self, repository, sample_episode):
        updated = repository.update_episode(
            sample_episode.id, playback_position=42.0, is_played=True
        )

        assert updated.playback_position == 42.0
        assert updated.is_played is True
        assert repository.count_unplayed(FEED_URL) == 0

    def test_update_episode_ignores_unknown_fields(self, repository, sample_episode):
        updated = repository.update_episode(sample_episode.id, not_a_column="x")
        assert not hasattr(updated, "not_a_column")

    def test_progress(self, repository, sample_episode):
        episode = repository.update_episode(sample_episode.id, playback_position=900.0)
        assert episode.progress == 0.5

    def test_progress_without_duration(self):
        episode = Episode(id="x|y", podcast_feed_url="x", guid="y", title="t",
                          audio_url="u", duration=None, playback_position=10.0)
        assert episode.progress == 0.0


class TestActionOperations:
    """Tests for pending episode action storage."""

    def _save_play(self, repository, episode, position, timestamp, completed=False):
        return repository.save_play_action(
            episode_id=episode.id,
            podcast_url=episode.podcast_feed_url,
            episode_url=episode.audio_url,
            guid=episode.guid,
            position=position,
            completed=completed,
            duration=episode.duration,
            timestamp=timestamp,
        )

    def test_save_play_action_coalesces(self, repository, sample_episode):
        """Test that a second play action overwrites the pending one."""
        first = self._save_play(repository, sample_episode, 10.0, datetime(2024, 1, 1, 10))
        second = self._save_play(
            repository, sample_episode, 20.0, datetime(2024, 1, 1, 11), completed=True
        )

        assert first.id == second.id
        pending = repository.list_pending_actions()
        assert len(pending) == 1
        assert pending[0].position == 20.0
        assert pending[0].completed is True
        assert pending[0].timestamp == datetime(2024, 1, 1, 11)

    def test_save_progress_updates_episode_and_queues(self, repository, sample_episode):
        """Test that the episode row and its play action are written together."""
        episode, action = repository.save_progress(
            sample_episode.id, 120.0, False, None, datetime(2024, 1, 2, 10)
        )
        episode, again = repository.save_progress(
            sample_episode.id, 130.0, True, None, datetime(2024, 1, 2, 11)
        )

        assert again.id == action.id
        assert again.position == 130.0
        assert again.duration == 1800.0
        assert episode.playback_position == 130.0
        assert episode.is_played is True
        assert episode.needs_sync is True
        assert episode.last_played_at == datetime(2024, 1, 2, 11)
        assert repository.count_pending_actions() == 1

    def test_save_progress_unknown_episode(self, repository):
        assert repository.save_progress("missing", 1.0, False, None, datetime(2024, 1, 1)) is None
        assert repository.count_pending_actions() == 0

    def test_save_subscription_action_coalesces(self, repository):
        """Test that unsubscribe replaces a pending subscribe for the same feed."""
        repository.save_subscription_action(FEED_URL, ActionType.SUBSCRIBE, datetime(2024, 1, 1))
        repository.save_subscription_action(FEED_URL, ActionType.UNSUBSCRIBE, datetime(2024, 1, 2))

        pending = repository.list_pending_actions(actions=ActionType.SUBSCRIPTION)
        assert len(pending) == 1
        assert pending[0].action == ActionType.UNSUBSCRIBE
        assert repository.get_pending_action_for_feed(FEED_URL).id == pending[0].id

    def test_list_pending_actions_ordered_and_filtered(self, repository, sample_episode):
        self._save_play(repository, sample_episode, 5.0, datetime(2024, 1, 3))
        repository.save_subscription_action(FEED_URL, ActionType.SUBSCRIBE, datetime(2024, 1, 1))

        all_pending = repository.list_pending_actions()
        assert [a.action for a in all_pending] == [ActionType.SUBSCRIBE, ActionType.PLAY]
        assert repository.count_pending_actions() == 2
        assert repository.count_pending_actions(actions=(ActionType.PLAY,)) == 1
        assert len(repository.list_pending_actions(limit=1)) == 1

    def test_delete_acknowledged_actions(self, repository, sample_episode):
        action = self._save_play(repository, sample_episode, 5.0, datetime(2024, 1, 1))

        removed = repository.delete_acknowledged_actions([(action.id, action.timestamp)])

        assert removed == 1
        assert repository.get_pending_action_for_episode(sample_episode.id) is None

    def test_delete_skips_actions_changed_since_snapshot(self, repository, sample_episode):
        """Test that an entry coalesced after the upload snapshot is kept."""
        snapshot = self._save_play(repository, sample_episode, 5.0, datetime(2024, 1, 1))
        self._save_play(repository, sample_episode, 50.0, datetime(2024, 1, 2))

        removed = repository.delete_acknowledged_actions([(snapshot.id, snapshot.timestamp)])

        assert removed == 0
        pending = repository.get_pending_action_for_episode(sample_episode.id)
        assert pending.position == 50.0

    def test_record_action_failure(self, repository, sample_episode):
        action = self._save_play(repository, sample_episode, 5.0, datetime(2024, 1, 1))

        repository.record_action_failure([action.id], "timeout")
        updated = repository.record_action_failure([action.id], "HTTP 503")

        assert updated[0].sync_attempts == 2
        assert updated[0].last_sync_error == "HTTP 503"
        assert repository.count_pending_actions() == 1

    def test_record_action_failure_empty(self, repository):
        assert repository.record_action_failure([], "error") == []


class TestSingletons:
    """Tests for the sync state and server configuration rows."""

    def test_sync_state_created_on_first_access(self, repository):
        state = repository.get_sync_state()

        assert state.id == SYNC_STATE_ID
        assert state.is_syncing is False
        assert state.total_syncs == 0
        assert state.needs_initial_sync is True

    def test_update_sync_state(self, repository):
        repository.update_sync_state(last_full_sync=datetime(2024, 1, 1), total_syncs=3)
        state = repository.get_sync_state()

        assert state.total_syncs == 3
        assert state.needs_initial_sync is False

    def test_claim_and_release_sync_cycle(self, repository):
        now = datetime(2024, 1, 1, 12)

        assert repository.claim_sync_cycle("a", now, stale_before=now - timedelta(minutes=10))
        assert not repository.claim_sync_cycle("b", now, stale_before=now - timedelta(minutes=10))

        state = repository.get_sync_state()
        assert state.is_syncing is True
        assert state.sync_owner == "a"
        assert state.last_sync_attempt == now

        assert not repository.release_sync_cycle("b", total_syncs=5)
        assert repository.release_sync_cycle("a", total_syncs=1)

        state = repository.get_sync_state()
        assert state.is_syncing is False
        assert state.sync_owner is None
        assert state.total_syncs == 1

    def test_stale_sync_cycle_can_be_claimed(self, repository):
        then = datetime(2024, 1, 1, 12)
        later = then + timedelta(minutes=11)
        repository.claim_sync_cycle("a", then, stale_before=then - timedelta(minutes=10))

        assert repository.claim_sync_cycle("b", later, stale_before=later - timedelta(minutes=10))
        assert not repository.touch_sync_cycle("a", later)
        assert repository.touch_sync_cycle("b", later)
        assert repository.get_sync_state().sync_owner == "b"

    def test_clear_stale_sync_cycle(self, repository):
        then = datetime(2024, 1, 1, 12)
        repository.claim_sync_cycle("a", then, stale_before=then - timedelta(minutes=10))

        assert not repository.clear_stale_sync_cycle(then - timedelta(minutes=1))
        assert repository.clear_stale_sync_cycle(
            then + timedelta(minutes=1), last_sync_status="failed"
        )

        state = repository.get_sync_state()
        assert state.is_syncing is False
        assert state.sync_heartbeat_at is None
        assert state.last_sync_status == "failed"

    def test_server_config_device_id_is_stable(self, repository):
        first = repository.get_server_config()
        second = repository.get_server_config(device_id="ignored")

        assert first.id == SERVER_CONFIG_ID
        assert first.device_id.startswith("podsync-")
        assert second.device_id == first.device_id
        assert first.is_configured is False

    def test_server_config_explicit_device_id(self, repository):
        assert repository.get_server_config(device_id="laptop").device_id == "laptop"

    def test_update_server_config(self, repository):
        server_config = repository.update_server_config(
            server_url="https://gpodder.example.com", username="alice"
        )

        assert server_config.is_configured is True
        assert server_config.session_token is None
