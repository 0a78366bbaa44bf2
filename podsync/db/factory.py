"""Database factory for creating repository instances.

Detects the database type from the URL and configures the engine for SQLite
(the default, a file next to the working directory) or a pooled server
database.
"""

import logging
import os
from typing import Optional

from sqlalchemy.engine import make_url

from .repository import PodcastRepositoryInterface, SQLAlchemyPodcastRepository

logger = logging.getLogger(__name__)

# Default database URL for local use
DEFAULT_DATABASE_URL = "sqlite:///./podsync.db"


def create_repository(
    database_url: Optional[str] = None,
    pool_size: int = 5,
    max_overflow: int = 10,
    echo: bool = False,
    create_tables: bool = True,
) -> PodcastRepositoryInterface:
    """
    Create a repository configured from the provided or discovered database URL.

    If `database_url` is not provided, it is read from the `DATABASE_URL`
    environment variable; if that is unset, a local SQLite default is used.
    Pool settings are ignored for SQLite.

    Parameters:
        database_url (Optional[str]): SQLAlchemy database URL to use.
        pool_size (int): Connection pool size for server databases.
        max_overflow (int): Maximum overflow connections for server databases.
        echo (bool): If true, enable SQL statement logging.
        create_tables (bool): Create missing tables when the repository starts.

    Returns:
        PodcastRepositoryInterface: A repository backed by the resolved URL.
    """
    if database_url is None:
        database_url = os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL)

    url = make_url(database_url)
    logger.info(
        f"Opening {url.get_backend_name()} store: {url.render_as_string(hide_password=True)}"
    )

    return SQLAlchemyPodcastRepository(
        database_url=database_url,
        pool_size=pool_size,
        max_overflow=max_overflow,
        echo=echo,
        create_tables=create_tables,
    )


def create_repository_from_config(config) -> PodcastRepositoryInterface:
    """
    Build a repository from a `Config` instance.

    Parameters:
        config: An object exposing `DATABASE_URL`, `DB_POOL_SIZE`,
            `DB_MAX_OVERFLOW` and `DB_ECHO`.
    """
    return create_repository(
        database_url=getattr(config, "DATABASE_URL", None)
        or os.getenv("DATABASE_URL", DEFAULT_DATABASE_URL),
        pool_size=getattr(config, "DB_POOL_SIZE", 5),
        max_overflow=getattr(config, "DB_MAX_OVERFLOW", 10),
        echo=getattr(config, "DB_ECHO", False),
    )
