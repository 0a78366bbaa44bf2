"""RSS/Atom feed parser for podcast metadata and episodes.

Uses feedparser library to handle various feed formats and extract
podcast metadata including iTunes and Media RSS namespace extensions.
The download goes through a retrying requests session; feedparser then
reads the body in a single SAX pass.
"""

import io
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime
from email.utils import parsedate_to_datetime
from html import unescape
from typing import List, Optional, Tuple
from urllib.parse import urlparse

import feedparser
import requests
from dateutil.parser import isoparse

from ..errors import InvalidFeedError, NetworkError, ParseError
from ..utils.http_session import create_session
from ..utils.time_utils import to_naive_utc

logger = logging.getLogger(__name__)

UNTITLED_EPISODE = "Untitled Episode"


@dataclass
class ParsedEpisode:
    """Parsed episode data from an RSS/Atom feed."""

    # Core identifiers
    guid: str
    title: str
    audio_url: str

    # Enclosure details
    file_size: Optional[int] = None
    mime_type: Optional[str] = None

    # Optional metadata
    description: Optional[str] = None  # Richest available, markup kept
    summary: Optional[str] = None  # Plain text
    link: Optional[str] = None
    publish_date: Optional[datetime] = None
    duration: Optional[int] = None  # Seconds
    artwork_url: Optional[str] = None  # Episode-level image only

    # Episode numbering
    episode_number: Optional[int] = None
    season_number: Optional[int] = None


@dataclass
class ParsedPodcast:
    """Parsed podcast data from an RSS/Atom feed."""

    feed_url: str
    title: str

    # Optional metadata
    author: Optional[str] = None
    description: Optional[str] = None
    artwork_url: Optional[str] = None
    link: Optional[str] = None
    language: Optional[str] = None
    categories: List[str] = field(default_factory=list)

    # Episodes
    episodes: List[ParsedEpisode] = field(default_factory=list)


def _to_int(value) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(str(value).strip())
    except ValueError:
        return None


class FeedParser:
    """Parser for podcast RSS/Atom feeds.

    Example:
        parser = FeedParser()
        podcast = parser.fetch("https://example.com/feed.xml")
        print(f"Podcast: {podcast.title}")
        for episode in podcast.episodes:
            print(f"  - {episode.title}")
    """

    # User agent for feed requests
    USER_AGENT = "podsync/1.0 (+https://github.com/podsync)"

    def __init__(
        self,
        user_agent: Optional[str] = None,
        timeout: float = 30.0,
        retry_attempts: int = 3,
        backoff_factor: float = 1.0,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the feed parser.

        Args:
            user_agent: Custom user agent string for requests
            timeout: Per-request timeout in seconds
            retry_attempts: Retries for transient HTTP failures
            backoff_factor: Exponential backoff multiplier between retries
            session: Pre-configured requests session (mainly for tests)
        """
        self.user_agent = user_agent or self.USER_AGENT
        self.timeout = timeout
        self.session = session or create_session(
            self.user_agent,
            retry_attempts=retry_attempts,
            backoff_factor=backoff_factor,
        )

    @classmethod
    def from_config(cls, config) -> "FeedParser":
        """Build a parser from a Config instance."""
        return cls(
            user_agent=config.FEED_USER_AGENT,
            timeout=config.HTTP_TIMEOUT_SECONDS,
            retry_attempts=config.HTTP_RETRY_ATTEMPTS,
            backoff_factor=config.HTTP_BACKOFF_FACTOR,
        )

    def fetch(self, feed_url: str) -> ParsedPodcast:
        """Download and parse a podcast feed.

        Args:
            feed_url: URL of the RSS/Atom feed

        Returns:
            ParsedPodcast with podcast and episode data

        Raises:
            NetworkError: On transport failure or a non-2xx status
            ParseError: If nothing could be recovered from the document
            InvalidFeedError: If the document has no feed title
        """
        logger.info(f"Fetching feed: {feed_url}")

        try:
            response = self.session.get(feed_url, timeout=self.timeout)
        except requests.RequestException as e:
            raise NetworkError(f"Failed to fetch {feed_url}: {e}") from e

        if not 200 <= response.status_code < 300:
            raise NetworkError(
                f"Failed to fetch {feed_url}: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        return self.parse(response.content, feed_url)

    def parse(self, data: bytes, feed_url: str = "") -> ParsedPodcast:
        """Parse a podcast feed from raw bytes.

        Args:
            data: RSS/Atom document
            feed_url: Original URL of the feed (for reference)

        Returns:
            ParsedPodcast with podcast and episode data

        Raises:
            ParseError: If nothing could be recovered from the document
            InvalidFeedError: If the document has no feed title
        """
        where = feed_url or "<bytes>"

        # Wrapped so feedparser never treats the payload as a URL or path
        feed = feedparser.parse(io.BytesIO(data))

        if feed.bozo and not feed.feed and not feed.entries:
            raise ParseError(f"Malformed feed {where}: {feed.get('bozo_exception')}")

        if not feed.feed.get("title"):
            raise InvalidFeedError(f"Feed has no title: {where}")

        if feed.bozo:
            logger.warning(f"Feed parsing warning for {where}: {feed.get('bozo_exception')}")

        return self._parse_feed(feed, feed_url)

    def _parse_feed(self, feed: feedparser.FeedParserDict, feed_url: str) -> ParsedPodcast:
        f = feed.feed

        podcast = ParsedPodcast(
            feed_url=feed_url,
            title=f.get("title"),
            author=f.get("author"),
            description=f.get("subtitle") or f.get("summary"),
            artwork_url=self._extract_image_url(f),
            link=f.get("link"),
            language=f.get("language"),
            # Document order, duplicates kept when their schemes differ
            categories=[tag.get("term") for tag in f.get("tags", []) if tag.get("term")],
        )

        skipped = 0
        for entry in feed.entries:
            episode = self._parse_episode(entry)
            if episode:
                podcast.episodes.append(episode)
            else:
                skipped += 1

        if skipped:
            logger.debug(f"Dropped {skipped} entries without audio from {feed_url}")
        logger.info(f"Parsed podcast '{podcast.title}' with {len(podcast.episodes)} episodes")
        return podcast

    def _parse_episode(self, entry: feedparser.FeedParserDict) -> Optional[ParsedEpisode]:
        """Parse a feed entry into a ParsedEpisode.

        Args:
            entry: Feed entry from feedparser

        Returns:
            ParsedEpisode or None if the entry has no audio
        """
        enclosure = self._extract_enclosure(entry)
        if not enclosure:
            logger.debug(f"Skipping entry without audio enclosure: {entry.get('title')}")
            return None

        audio_url, mime_type, file_size = enclosure

        content = None
        if entry.get("content"):
            content = entry.content[0].get("value")
        summary = entry.get("summary")

        return ParsedEpisode(
            # GUID falls back to the audio URL
            guid=entry.get("id") or audio_url,
            title=entry.get("title") or entry.get("itunes_title") or UNTITLED_EPISODE,
            audio_url=audio_url,
            file_size=file_size,
            mime_type=mime_type,
            description=content or summary or None,
            summary=_clean_html(summary or content),
            link=entry.get("link"),
            publish_date=_parse_date(entry.get("published") or entry.get("updated")),
            duration=_parse_duration(entry.get("itunes_duration")),
            artwork_url=self._extract_episode_image(entry),
            episode_number=_to_int(entry.get("itunes_episode")),
            season_number=_to_int(entry.get("itunes_season")),
        )

    def _extract_enclosure(
        self, entry: feedparser.FeedParserDict
    ) -> Optional[Tuple[str, Optional[str], Optional[int]]]:
        """Extract audio enclosure from feed entry.

        RSS enclosures and Atom rel="enclosure" links come first, then
        Media RSS content.

        Returns:
            Tuple of (url, type, length) or None if no audio found
        """
        for enclosure in entry.get("enclosures", []):
            url = enclosure.get("href")
            mime_type = enclosure.get("type", "")
            if url and _is_audio_type(mime_type, url):
                return (url, mime_type or None, _to_int(enclosure.get("length")))

        for media in entry.get("media_content", []):
            url = media.get("url")
            mime_type = media.get("type", "")
            if url and _is_audio_type(mime_type, url):
                return (url, mime_type or None, _to_int(media.get("filesize")))

        return None

    def _extract_image_url(self, feed: feedparser.FeedParserDict) -> Optional[str]:
        """Extract podcast image URL from feed.

        feedparser stores both itunes:image and the RSS <image> under
        `image`; Atom logos and icons land under `logo` and `icon`.
        """
        image = feed.get("image")
        if image and image.get("href"):
            return image.get("href")

        for key in ("logo", "icon"):
            if feed.get(key):
                return feed.get(key)

        thumbs = feed.get("media_thumbnail")
        if thumbs:
            return thumbs[0].get("url")

        return None

    def _extract_episode_image(self, entry: feedparser.FeedParserDict) -> Optional[str]:
        image = entry.get("image")
        if image and image.get("href"):
            return image.get("href")

        thumbs = entry.get("media_thumbnail")
        if thumbs:
            return thumbs[0].get("url")

        return None


def _is_audio_type(mime_type: str, url: str) -> bool:
    """Check if content is an audio file.

    Args:
        mime_type: MIME type string
        url: URL of the content

    Returns:
        True if this appears to be an audio file
    """
    if mime_type:
        if mime_type.startswith("audio/"):
            return True
        if mime_type != "application/octet-stream":
            return False

    path = urlparse(url).path.lower()
    audio_extensions = (".mp3", ".m4a", ".mp4", ".ogg", ".opus", ".wav", ".aac")
    return any(path.endswith(ext) for ext in audio_extensions)


def _parse_date(value: Optional[str]) -> Optional[datetime]:
    """Parse a feed date into naive UTC.

    Tries, in order: RFC-822 with a numeric offset, RFC-822 with a named zone
    (GMT, EST, ...), then ISO-8601. Unparseable values return None.

    Examples:
        >>> _parse_date("Mon, 01 Jan 2024 10:00:00 +0200")
        datetime.datetime(2024, 1, 1, 8, 0)
        >>> _parse_date("Mon, 01 Jan 2024 10:00:00 GMT")
        datetime.datetime(2024, 1, 1, 10, 0)
        >>> _parse_date("2024-01-01T10:00:00Z")
        datetime.datetime(2024, 1, 1, 10, 0)
        >>> _parse_date("last tuesday") is None
        True
    """
    if not value:
        return None

    value = value.strip()

    try:
        return to_naive_utc(datetime.strptime(value, "%a, %d %b %Y %H:%M:%S %z"))
    except ValueError:
        pass

    try:
        return to_naive_utc(parsedate_to_datetime(value))
    except (TypeError, ValueError, IndexError):
        pass

    try:
        return to_naive_utc(isoparse(value))
    except (ValueError, OverflowError):
        pass

    logger.debug(f"Unparseable date: {value!r}")
    return None


def _parse_duration(value: Optional[str]) -> Optional[int]:
    """Parse a duration string into seconds.

    Accepts "SS", "MM:SS" and "HH:MM:SS"; anything else returns None.

    Examples:
        >>> _parse_duration("3600")
        3600
        >>> _parse_duration("45:30")
        2730
        >>> _parse_duration("1:02:03")
        3723
        >>> _parse_duration("1h30m") is None
        True
    """
    if not value:
        return None

    parts = value.strip().split(":")
    if len(parts) > 3 or not all(part.isdigit() for part in parts):
        return None

    seconds = 0
    for part in parts:
        seconds = seconds * 60 + int(part)
    return seconds


def _clean_html(text: Optional[str]) -> Optional[str]:
    """Remove HTML tags from text.

    Examples:
        >>> _clean_html("<p>Hello &amp; <b>welcome</b></p>")
        'Hello & welcome'
    """
    if not text:
        return None

    clean = re.sub(r"<[^>]+>", " ", text)
    clean = unescape(clean)
    clean = re.sub(r"\s+", " ", clean).strip()

    return clean if clean else None
