"""Shared requests session construction for feed and sync server traffic."""

from typing import Iterable

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

RETRY_STATUS_CODES = [429, 500, 502, 503, 504]


def create_session(
    user_agent: str,
    retry_attempts: int = 3,
    backoff_factor: float = 1.0,
    allowed_methods: Iterable[str] = ("GET", "HEAD"),
) -> requests.Session:
    """Create a requests session with retry logic.

    Transient failures (connection errors and the status codes in
    RETRY_STATUS_CODES) are retried with exponential backoff. Once the
    attempts are used up the last response is returned as-is, so callers can
    map its status code.

    Args:
        user_agent: User-Agent header sent with every request
        retry_attempts: Retries after the first attempt
        backoff_factor: Multiplier for the exponential backoff sleep
        allowed_methods: HTTP methods that may be retried

    Returns:
        Configured requests.Session
    """
    session = requests.Session()

    retry_strategy = Retry(
        total=retry_attempts,
        backoff_factor=backoff_factor,
        status_forcelist=RETRY_STATUS_CODES,
        allowed_methods=list(allowed_methods),
        raise_on_status=False,
    )

    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update({"User-Agent": user_agent})

    return session
