"""Error classes raised by the sync core."""

from typing import Optional


class PodsyncError(Exception):
    """Base error for all sync core failures."""

    pass


class NetworkError(PodsyncError):
    """Transport or HTTP failure (timeouts, refused connections, non-2xx)."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ParseError(PodsyncError):
    """Feed document could not be parsed."""

    pass


class InvalidFeedError(ParseError):
    """Document parsed but does not describe a podcast (no title)."""

    pass


class AuthError(PodsyncError):
    """Credentials were rejected or no session could be established."""

    pass


class QueueWriteError(PodsyncError):
    """Local persistence failed while recording a pending action."""

    pass


class EpisodeNotFoundError(PodsyncError, LookupError):
    """Referenced episode does not exist in the local store."""

    def __init__(self, episode_id: str) -> None:
        super().__init__(f"Episode not found: {episode_id}")
        self.episode_id = episode_id


class PodcastNotFoundError(PodsyncError, LookupError):
    """Referenced podcast does not exist in the local store."""

    def __init__(self, feed_url: str) -> None:
        super().__init__(f"Podcast not found: {feed_url}")
        self.feed_url = feed_url
