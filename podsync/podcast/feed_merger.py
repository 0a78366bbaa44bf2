"""Merges freshly parsed feeds into the local store.

Only remote-derived fields are written. Playback position, played flag,
download state and subscription flags belong to the user and are never
reset by a feed refresh.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..db.models import Podcast
from ..db.repository import PodcastRepositoryInterface
from ..utils.time_utils import utcnow
from .feed_parser import ParsedEpisode, ParsedPodcast

logger = logging.getLogger(__name__)

# Podcast columns owned by the feed; everything else is local state
PODCAST_REMOTE_FIELDS = (
    "title",
    "author",
    "description",
    "artwork_url",
    "link",
    "language",
    "categories",
)

# Episode columns owned by the feed
EPISODE_REMOTE_FIELDS = (
    "guid",
    "title",
    "description",
    "summary",
    "audio_url",
    "file_size",
    "duration",
    "publish_date",
    "artwork_url",
    "link",
    "episode_number",
    "season_number",
)


@dataclass
class MergeResult:
    """Outcome of merging one parsed feed."""

    podcast: Podcast
    inserted: int = 0
    updated: int = 0

    @property
    def total(self) -> int:
        return self.inserted + self.updated


class FeedMerger:
    """Reconciles parsed feeds against existing podcast and episode rows.

    Example:
        merger = FeedMerger(repository)
        result = merger.merge(feed_url, parser.fetch(feed_url))
        print(f"New episodes: {result.inserted}")
    """

    def __init__(self, repository: PodcastRepositoryInterface):
        self.repository = repository

    def merge(
        self,
        feed_url: str,
        parsed: ParsedPodcast,
        now: Optional[datetime] = None,
        subscribe: bool = False,
    ) -> MergeResult:
        """
        Apply a parsed feed to the store in a single transaction.

        Episodes are matched by their composite key (feed URL plus GUID).
        Unknown episodes are inserted with local fields at their defaults,
        known ones get their remote fields overwritten, and episodes the feed
        no longer lists are kept.

        Parameters:
            feed_url (str): The podcast's identity; may differ from `parsed.feed_url`.
            parsed (ParsedPodcast): Output of FeedParser.
            now (Optional[datetime]): Merge time written to `last_updated`.
            subscribe (bool): Subscription flag used only if the podcast is new.

        Returns:
            MergeResult: The podcast row and per-episode insert/update counts.
        """
        merged_at = now or utcnow()

        podcast_fields = self._podcast_fields(parsed)
        episode_records = self._episode_records(feed_url, parsed.episodes)

        podcast, inserted, updated = self.repository.merge_feed(
            feed_url,
            podcast_fields,
            episode_records,
            merged_at=merged_at,
            create_defaults={
                "is_subscribed": subscribe,
                "date_added": merged_at,
                "needs_sync": False,
            },
        )

        logger.info(
            f"Merged feed '{podcast.title}': {inserted} new, {updated} updated episodes"
        )
        return MergeResult(podcast=podcast, inserted=inserted, updated=updated)

    @staticmethod
    def _podcast_fields(parsed: ParsedPodcast) -> Dict[str, Any]:
        fields = {name: getattr(parsed, name) for name in PODCAST_REMOTE_FIELDS}
        fields["categories"] = list(parsed.categories)
        return fields

    @staticmethod
    def _episode_records(
        feed_url: str, episodes: List[ParsedEpisode]
    ) -> List[Dict[str, Any]]:
        """Convert parsed episodes to column dicts, first GUID occurrence wins."""
        records = []
        seen = set()
        for episode in episodes:
            if episode.guid in seen:
                logger.debug(f"Ignoring duplicate guid {episode.guid!r} in {feed_url}")
                continue
            seen.add(episode.guid)
            record = {name: getattr(episode, name) for name in EPISODE_REMOTE_FIELDS}
            if record["duration"] is not None:
                record["duration"] = float(record["duration"])
            records.append(record)
        return records
