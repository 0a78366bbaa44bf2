"""Tests for merging parsed feeds into the local store."""

from datetime import datetime

import pytest

from podsync.db.models import DownloadState, make_episode_id
from podsync.podcast.feed_merger import FeedMerger
from podsync.podcast.feed_parser import ParsedEpisode, ParsedPodcast

FEED_URL = "https://example.com/feed.xml"


def _episode(guid: str, title: str = None, **kwargs) -> ParsedEpisode:
    return ParsedEpisode(
        guid=guid,
        title=title or f"Episode {guid}",
        audio_url=kwargs.pop("audio_url", f"https://example.com/{guid}.mp3"),
        **kwargs,
    )


def _podcast(*episodes: ParsedEpisode, **kwargs) -> ParsedPodcast:
    fields = {"feed_url": FEED_URL, "title": "Test Podcast"}
    fields.update(kwargs)
    return ParsedPodcast(episodes=list(episodes), **fields)


@pytest.fixture
def merger(repository):
    return FeedMerger(repository)


class TestMergeNewPodcast:
    """Tests for merging a feed the store has never seen."""

    def test_creates_podcast_and_episodes(self, repository, merger):
        """Test that a first merge inserts every episode."""
        parsed = _podcast(_episode("a"), _episode("b"), _episode("c"), author="Host")

        result = merger.merge(FEED_URL, parsed, now=datetime(2024, 1, 1))

        assert result.inserted == 3
        assert result.updated == 0
        assert result.podcast.title == "Test Podcast"
        assert result.podcast.author == "Host"
        assert result.podcast.last_updated == datetime(2024, 1, 1)
        assert len(repository.list_episodes(FEED_URL)) == 3

    def test_episode_ids_are_composite(self, repository, merger):
        """Test that episode ids are derived from the feed URL and the guid."""
        merger.merge(FEED_URL, _podcast(_episode("a")))

        episode = repository.get_episode(make_episode_id(FEED_URL, "a"))
        assert episode is not None
        assert episode.guid == "a"
        assert episode.podcast_feed_url == FEED_URL
        assert episode.id != make_episode_id(FEED_URL + "a", "")

    def test_new_episodes_have_local_defaults(self, repository, merger):
        """Test that inserted episodes start unplayed and not downloaded."""
        merger.merge(FEED_URL, _podcast(_episode("a", duration=600)))

        episode = repository.get_episode(make_episode_id(FEED_URL, "a"))
        assert episode.playback_position == 0.0
        assert episode.is_played is False
        assert episode.download_state == DownloadState.NOT_DOWNLOADED
        assert episode.needs_sync is False
        assert episode.duration == 600.0

    def test_subscribe_flag_only_for_new_podcast(self, repository, merger):
        """Test that subscribe=False creates an unsubscribed podcast."""
        result = merger.merge(FEED_URL, _podcast(_episode("a")))
        assert result.podcast.is_subscribed is False

        result = merger.merge(FEED_URL, _podcast(_episode("a")), subscribe=True)
        assert result.podcast.is_subscribed is False

    def test_subscribe_creates_subscribed_podcast(self, merger):
        """Test that subscribe=True marks a new podcast subscribed."""
        result = merger.merge(FEED_URL, _podcast(_episode("a")), subscribe=True)
        assert result.podcast.is_subscribed is True


class TestMergeExistingPodcast:
    """Tests for refreshing an already-known feed."""

    def test_idempotent(self, repository, merger):
        """Test that merging the same feed twice yields the same rows."""
        parsed = _podcast(_episode("a"), _episode("b"))

        merger.merge(FEED_URL, parsed)
        before = {ep.id: (ep.title, ep.audio_url) for ep in repository.list_episodes(FEED_URL)}

        result = merger.merge(FEED_URL, parsed)
        after = {ep.id: (ep.title, ep.audio_url) for ep in repository.list_episodes(FEED_URL)}

        assert result.inserted == 0
        assert result.updated == 2
        assert before == after

    def test_local_state_preserved(self, repository, merger):
        """Test that playback and download state survive remote changes."""
        merger.merge(FEED_URL, _podcast(_episode("a", title="Old title")))
        episode_id = make_episode_id(FEED_URL, "a")
        repository.update_episode(
            episode_id,
            playback_position=321.0,
            is_played=True,
            download_state=DownloadState.DOWNLOADED,
            local_file_path="/tmp/a.mp3",
        )

        merger.merge(
            FEED_URL,
            _podcast(_episode("a", title="New title", audio_url="https://cdn.example.com/a.mp3")),
        )

        episode = repository.get_episode(episode_id)
        assert episode.title == "New title"
        assert episode.audio_url == "https://cdn.example.com/a.mp3"
        assert episode.playback_position == 321.0
        assert episode.is_played is True
        assert episode.download_state == DownloadState.DOWNLOADED
        assert episode.local_file_path == "/tmp/a.mp3"

    def test_podcast_local_flags_preserved(self, repository, merger):
        """Test that subscription and sync flags survive a refresh."""
        merger.merge(FEED_URL, _podcast(_episode("a")), subscribe=True)
        repository.update_podcast(FEED_URL, needs_sync=True, last_refresh_error="boom")

        result = merger.merge(FEED_URL, _podcast(_episode("a"), title="Renamed"))

        assert result.podcast.title == "Renamed"
        assert result.podcast.is_subscribed is True
        assert result.podcast.needs_sync is True
        assert result.podcast.last_refresh_error is None

    def test_missing_episodes_are_kept(self, repository, merger):
        """Test the 3 items, then +1/-1 scenario."""
        merger.merge(FEED_URL, _podcast(_episode("1"), _episode("2"), _episode("3")), subscribe=True)
        assert len(repository.list_podcasts()) == 1
        assert len(repository.list_episodes(FEED_URL)) == 3

        result = merger.merge(FEED_URL, _podcast(_episode("2"), _episode("3"), _episode("4")))

        assert result.inserted == 1
        assert result.updated == 2
        assert len(repository.list_episodes(FEED_URL)) == 4
        assert repository.count_unplayed(FEED_URL) == 4

    def test_duplicate_guids_collapse(self, repository, merger):
        """Test that a feed repeating a guid produces one row, first occurrence wins."""
        parsed = _podcast(_episode("dup", title="First"), _episode("dup", title="Second"))

        result = merger.merge(FEED_URL, parsed)

        episodes = repository.list_episodes(FEED_URL)
        assert result.inserted == 1
        assert len(episodes) == 1
        assert episodes[0].title == "First"

    def test_same_guid_in_two_feeds(self, repository, merger):
        """Test that guids are scoped to their feed."""
        other_feed = "https://other.example.com/feed.xml"

        merger.merge(FEED_URL, _podcast(_episode("shared")))
        merger.merge(other_feed, _podcast(_episode("shared"), feed_url=other_feed, title="Other"))

        assert repository.get_episode(make_episode_id(FEED_URL, "shared")) is not None
        assert repository.get_episode(make_episode_id(other_feed, "shared")) is not None

    def test_separator_characters_do_not_collide(self, repository, merger):
        """Test that a '|' moved between feed URL and guid yields two episodes."""
        feed_a = "https://x.example/f?a"
        feed_b = "https://x.example/f?a|b"

        merger.merge(feed_a, _podcast(_episode("b|c", title="From A"), feed_url=feed_a))
        result = merger.merge(feed_b, _podcast(_episode("c", title="From B"), feed_url=feed_b))

        assert result.inserted == 1
        assert make_episode_id(feed_a, "b|c") != make_episode_id(feed_b, "c")

        episodes_a = repository.list_episodes(feed_a)
        episodes_b = repository.list_episodes(feed_b)
        assert [(e.guid, e.title) for e in episodes_a] == [("b|c", "From A")]
        assert [(e.guid, e.title) for e in episodes_b] == [("c", "From B")]

    def test_categories_replaced(self, repository, merger):
        """Test that categories follow the latest feed."""
        merger.merge(FEED_URL, _podcast(categories=["News", "News"]))
        result = merger.merge(FEED_URL, _podcast(categories=["Comedy"]))

        assert result.podcast.categories == ["Comedy"]


class TestEffectiveArtwork:
    """Tests for episode artwork resolution."""

    def test_falls_back_to_podcast_artwork(self, repository, merger):
        merger.merge(
            FEED_URL,
            _podcast(
                _episode("a"),
                _episode("b", artwork_url="https://example.com/b.jpg"),
                artwork_url="https://example.com/show.jpg",
            ),
        )
        podcast = repository.get_podcast(FEED_URL)

        a = repository.get_episode(make_episode_id(FEED_URL, "a"))
        b = repository.get_episode(make_episode_id(FEED_URL, "b"))
        assert a.effective_artwork_url(podcast) == "https://example.com/show.jpg"
        assert b.effective_artwork_url(podcast) == "https://example.com/b.jpg"
