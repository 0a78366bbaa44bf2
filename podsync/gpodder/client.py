"""HTTP client for the gpodder.net API v2 and compatible servers.

Authentication uses HTTP basic auth once, then the session cookie the server
sets. Every non-2xx answer is mapped onto the podsync error taxonomy:
401/403 become AuthError, everything else becomes NetworkError.
"""

import logging
from typing import Any, Dict, List, Optional, Sequence
from urllib.parse import quote

import requests

from ..errors import AuthError, NetworkError
from ..utils.http_session import create_session
from .models import (
    EpisodeActionChanges,
    ServerSession,
    SubscriptionChanges,
    UploadResponse,
)

logger = logging.getLogger(__name__)

AUTH_STATUS_CODES = (401, 403)

# Device endpoint answers these when the server only implements the simple API
DEVICE_FALLBACK_STATUS_CODES = (400, 404)


class GpodderClient:
    """Client for the gpodder subscription and episode action endpoints.

    Example:
        client = GpodderClient()
        token = client.login("https://gpodder.net", "alice", "secret")
        session = ServerSession("https://gpodder.net", "alice", "podsync-1", token)
        changes = client.get_subscriptions(session, since=0)
    """

    USER_AGENT = "podsync/1.0 (+https://github.com/podsync)"

    def __init__(
        self,
        timeout: float = 30.0,
        retry_attempts: int = 3,
        backoff_factor: float = 1.0,
        user_agent: Optional[str] = None,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the client.

        Args:
            timeout: Per-request timeout in seconds
            retry_attempts: Retries for transient HTTP failures
            backoff_factor: Exponential backoff multiplier between retries
            user_agent: Custom user agent string
            session: Pre-configured requests session (mainly for tests)
        """
        self.timeout = timeout
        self.http = session or create_session(
            user_agent or self.USER_AGENT,
            retry_attempts=retry_attempts,
            backoff_factor=backoff_factor,
            allowed_methods=("GET", "POST", "PUT"),
        )

    @classmethod
    def from_config(cls, config) -> "GpodderClient":
        """Build a client from a Config instance."""
        return cls(
            timeout=config.HTTP_TIMEOUT_SECONDS,
            retry_attempts=config.HTTP_RETRY_ATTEMPTS,
            backoff_factor=config.HTTP_BACKOFF_FACTOR,
            user_agent=config.FEED_USER_AGENT,
        )

    # --- Authentication ---

    def login(self, server_url: str, username: str, password: str) -> str:
        """Log in and return the session cookie to send with later calls.

        Raises:
            AuthError: If the server rejects the credentials
            NetworkError: On transport failure or any other error status
        """
        url = f"{server_url.rstrip('/')}/api/2/auth/{quote(username, safe='')}/login.json"
        logger.info(f"Logging in to {server_url} as {username}")

        response = self._request("POST", url, auth=(username, password))
        self._raise_for_status(response, "login")

        token = "; ".join(f"{name}={value}" for name, value in response.cookies.items())
        if not token:
            # Some servers keep the session on the connection only
            token = response.headers.get("Set-Cookie", "").split(";", 1)[0]
        if not token:
            raise AuthError(f"Login to {server_url} returned no session cookie")
        return token

    # --- Subscriptions ---

    def get_subscriptions(
        self, session: ServerSession, since: Optional[int] = None
    ) -> SubscriptionChanges:
        """Fetch subscription changes for this device since a server timestamp.

        Falls back to the simple API's plain URL list when the server does not
        know the device endpoint.
        """
        url = self._device_url(session, "subscriptions")
        params = {"since": since if since is not None else 0}
        response = self._request("GET", url, session=session, params=params)

        if response.status_code in DEVICE_FALLBACK_STATUS_CODES:
            logger.info(
                f"Device subscriptions endpoint unavailable (HTTP {response.status_code}), "
                "falling back to the simple API"
            )
            return self._get_subscription_list(session)

        self._raise_for_status(response, "get subscriptions")
        data = self._json(response, "get subscriptions")
        try:
            return SubscriptionChanges.from_dict(data)
        except (AttributeError, TypeError, ValueError) as e:
            raise NetworkError(f"Unexpected subscriptions payload: {e}") from e

    def _get_subscription_list(self, session: ServerSession) -> SubscriptionChanges:
        url = f"{session.server_url}/subscriptions/{quote(session.username, safe='')}.json"
        response = self._request("GET", url, session=session)
        self._raise_for_status(response, "get subscription list")
        data = self._json(response, "get subscription list")
        if not isinstance(data, list):
            raise NetworkError("Unexpected subscription list payload")
        return SubscriptionChanges(add=[str(feed_url) for feed_url in data])

    def update_subscriptions(
        self,
        session: ServerSession,
        add: Sequence[str] = (),
        remove: Sequence[str] = (),
    ) -> UploadResponse:
        """Push subscription additions and removals for this device."""
        url = self._device_url(session, "subscriptions")
        payload = {"add": list(add), "remove": list(remove)}
        response = self._request("POST", url, session=session, json=payload)
        self._raise_for_status(response, "update subscriptions")
        return self._upload_response(response, "update subscriptions")

    # --- Episode Actions ---

    def get_episode_actions(
        self, session: ServerSession, since: Optional[int] = None
    ) -> EpisodeActionChanges:
        """Fetch the account's episode action history since a server timestamp."""
        url = f"{session.server_url}/api/2/episodes/{quote(session.username, safe='')}.json"
        params = {"since": since} if since is not None else None
        response = self._request("GET", url, session=session, params=params)
        self._raise_for_status(response, "get episode actions")
        data = self._json(response, "get episode actions")
        try:
            return EpisodeActionChanges.from_dict(data)
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise NetworkError(f"Unexpected episode actions payload: {e}") from e

    def upload_episode_actions(
        self, session: ServerSession, actions: List[Dict[str, Any]]
    ) -> UploadResponse:
        """Upload a batch of episode action records."""
        url = f"{session.server_url}/api/2/episodes/{quote(session.username, safe='')}.json"
        response = self._request("POST", url, session=session, json=actions)
        self._raise_for_status(response, "upload episode actions")
        return self._upload_response(response, "upload episode actions")

    # --- Helpers ---

    @staticmethod
    def _device_url(session: ServerSession, resource: str) -> str:
        return (
            f"{session.server_url}/api/2/{resource}/"
            f"{quote(session.username, safe='')}/{quote(session.device_id, safe='')}.json"
        )

    def _request(
        self,
        method: str,
        url: str,
        session: Optional[ServerSession] = None,
        **kwargs,
    ) -> requests.Response:
        headers = {"Accept": "application/json"}
        if session is not None:
            headers["Cookie"] = session.token
        try:
            return self.http.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise NetworkError(f"{method} {url} failed: {e}") from e

    @staticmethod
    def _raise_for_status(response: requests.Response, operation: str) -> None:
        status = response.status_code
        if status in AUTH_STATUS_CODES:
            raise AuthError(f"Server rejected {operation} (HTTP {status})")
        if not 200 <= status < 300:
            raise NetworkError(f"{operation} failed: HTTP {status}", status_code=status)

    @staticmethod
    def _json(response: requests.Response, operation: str) -> Any:
        try:
            return response.json()
        except ValueError as e:
            raise NetworkError(f"{operation} returned an undecodable body: {e}") from e

    def _upload_response(self, response: requests.Response, operation: str) -> UploadResponse:
        if not response.content:
            return UploadResponse()
        data = self._json(response, operation)
        try:
            return UploadResponse.from_dict(data)
        except (AttributeError, TypeError, ValueError) as e:
            raise NetworkError(f"Unexpected {operation} payload: {e}") from e

    def close(self) -> None:
        self.http.close()
