import os

from dotenv import load_dotenv


class Config:
    def __init__(self, env_file=None):
        """
        Initialize configuration by loading environment variables and setting default attributes.

        Loads environment variables from the provided .env file path when `env_file` is given; otherwise loads from the default environment. After loading, sets configuration attributes (database connection, sync server credentials, HTTP transport behaviour and feed fetching) using environment values with sensible defaults.
        Parameters:
            env_file (str | None): Optional path to a .env file to load environment variables from. If omitted, the default environment or default .env discovery is used.
        """
        if env_file:
            load_dotenv(env_file)
        else:
            load_dotenv()

        # Database configuration
        self.DATABASE_URL = os.getenv(
            "DATABASE_URL", "sqlite:///./podsync.db"
        )
        self.DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", "5"))
        self.DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", "10"))
        self.DB_ECHO = os.getenv("DB_ECHO", "false").lower() == "true"

        # gpodder-compatible sync server
        server_url = os.getenv("SYNC_SERVER_URL", "")
        if server_url and not server_url.lower().startswith(("http://", "https://")):
            raise ValueError(
                f"SYNC_SERVER_URL must start with http:// or https://, got: {server_url}"
            )
        self.SYNC_SERVER_URL = server_url.rstrip("/") if server_url else ""
        self.SYNC_USERNAME = os.getenv("SYNC_USERNAME", "")
        # Only kept in memory for re-authentication, never written to the database
        self.SYNC_PASSWORD = os.getenv("SYNC_PASSWORD", "")
        self.SYNC_DEVICE_ID = os.getenv("SYNC_DEVICE_ID", "") or None

        # HTTP transport
        self.HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))
        self.HTTP_RETRY_ATTEMPTS = int(os.getenv("HTTP_RETRY_ATTEMPTS", "3"))
        self.HTTP_BACKOFF_FACTOR = float(os.getenv("HTTP_BACKOFF_FACTOR", "1.0"))
        if self.HTTP_RETRY_ATTEMPTS < 0:
            raise ValueError(
                f"HTTP_RETRY_ATTEMPTS must be >= 0, got {self.HTTP_RETRY_ATTEMPTS}"
            )

        # Feed fetching
        self.FEED_USER_AGENT = os.getenv(
            "FEED_USER_AGENT", "podsync/1.0 (+https://github.com/podsync)"
        )

    @property
    def has_credentials(self) -> bool:
        """True when server URL, username and password are all configured."""
        return bool(self.SYNC_SERVER_URL and self.SYNC_USERNAME and self.SYNC_PASSWORD)
