"""Server credentials and session lifecycle.

The session token and account identity live in the ServerConfiguration row.
The password is held in memory only and is used to re-authenticate when the
server rejects the stored session.
"""

import logging
import threading
from typing import Callable, Optional, TypeVar

from ..db.models import ServerConfiguration
from ..db.repository import PodcastRepositoryInterface
from ..errors import AuthError
from ..gpodder.client import GpodderClient
from ..gpodder.models import ServerSession
from ..utils.time_utils import utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SessionManager:
    """Owns the ServerConfiguration row and hands out valid sessions.

    Example:
        sessions = SessionManager(repository, client, password="secret")
        changes = sessions.call(lambda s: client.get_subscriptions(s, since=0))
    """

    def __init__(
        self,
        repository: PodcastRepositoryInterface,
        client: GpodderClient,
        server_url: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        device_id: Optional[str] = None,
    ):
        """
        Create a session manager, seeding the stored configuration if needed.

        Parameters:
            repository: Local store holding the ServerConfiguration row.
            client: gpodder client used to log in.
            server_url: Server to use; replaces the stored one when different.
            username: Account name; replaces the stored one when different.
            password: Kept in memory for re-authentication.
            device_id: Device id used only when the row is first created.
        """
        self.repository = repository
        self.client = client
        self._password = password or None
        self._lock = threading.RLock()

        server_config = repository.get_server_config(device_id=device_id)
        changes = {}
        if server_url and server_url.rstrip("/") != server_config.server_url:
            changes["server_url"] = server_url.rstrip("/")
        if username and username != server_config.username:
            changes["username"] = username
        if changes:
            # A different account or server invalidates the stored session
            changes.update(session_token=None, is_authenticated=False)
            repository.update_server_config(**changes)
            logger.info(f"Sync server set to {changes.get('server_url', server_config.server_url)}")

    @property
    def has_password(self) -> bool:
        return self._password is not None

    def configuration(self) -> ServerConfiguration:
        return self.repository.get_server_config()

    def current(self) -> Optional[ServerSession]:
        """Return the stored session, or None when not authenticated."""
        server_config = self.repository.get_server_config()
        if not (
            server_config.is_configured
            and server_config.is_authenticated
            and server_config.session_token
        ):
            return None
        return ServerSession(
            server_url=server_config.server_url,
            username=server_config.username,
            device_id=server_config.device_id,
            token=server_config.session_token,
        )

    def login(self, server_url: str, username: str, password: str) -> ServerSession:
        """Authenticate against a server and persist the new session.

        Raises:
            AuthError: If the credentials are rejected
            NetworkError: If the server cannot be reached
        """
        server_url = server_url.rstrip("/")
        with self._lock:
            try:
                token = self.client.login(server_url, username, password)
            except AuthError:
                self._invalidate()
                raise

            server_config = self.repository.update_server_config(
                server_url=server_url,
                username=username,
                session_token=token,
                is_authenticated=True,
                last_authenticated_at=utcnow(),
            )
            self._password = password
            logger.info(f"Authenticated as {username} on {server_url}")

            return ServerSession(
                server_url=server_config.server_url,
                username=server_config.username,
                device_id=server_config.device_id,
                token=token,
            )

    def logout(self) -> None:
        """Forget the session token and the in-memory password."""
        with self._lock:
            self._invalidate()
            self._password = None
            logger.info("Logged out of sync server")

    def ensure_session(self) -> ServerSession:
        """Return a usable session, logging in with stored credentials if needed.

        Raises:
            AuthError: If no session exists and re-authentication is impossible or fails
        """
        with self._lock:
            session = self.current()
            if session is not None:
                return session
            return self.reauthenticate()

    def reauthenticate(self) -> ServerSession:
        """Log in again with the stored identity and in-memory password.

        Raises:
            AuthError: If credentials are missing or rejected
        """
        with self._lock:
            server_config = self.repository.get_server_config()
            if not server_config.is_configured:
                raise AuthError("No sync server configured")
            if self._password is None:
                self._invalidate()
                raise AuthError(
                    f"No password available to re-authenticate {server_config.username}"
                )
            logger.info(f"Re-authenticating {server_config.username} on {server_config.server_url}")
            return self.login(server_config.server_url, server_config.username, self._password)

    def call(self, fn: Callable[[ServerSession], T]) -> T:
        """Run a server call, re-authenticating exactly once on AuthError.

        Raises:
            AuthError: If the call is rejected again after re-authentication
        """
        session = self.ensure_session()
        try:
            return fn(session)
        except AuthError as e:
            logger.warning(f"Session rejected ({e}), re-authenticating once")
            session = self.reauthenticate()
            return fn(session)

    def _invalidate(self) -> None:
        self.repository.update_server_config(session_token=None, is_authenticated=False)
