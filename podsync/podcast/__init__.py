"""Podcast feed module.

Provides functionality for:
- RSS/Atom feed fetching and parsing
- Merging parsed feeds into the local store
"""

from .feed_merger import FeedMerger, MergeResult
from .feed_parser import FeedParser, ParsedEpisode, ParsedPodcast

__all__ = [
    "FeedParser",
    "ParsedPodcast",
    "ParsedEpisode",
    "FeedMerger",
    "MergeResult",
]
