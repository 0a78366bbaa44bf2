"""Podcast subscription and playback sync client for gpodder-compatible servers."""

__version__ = "0.1.0"
