"""Utility modules for the podsync package."""

from .http_session import create_session
from .time_utils import to_naive_utc, utcnow

__all__ = [
    'create_session',
    'to_naive_utc',
    'utcnow',
]
