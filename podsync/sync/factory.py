"""Wires a SyncEngine and its collaborators from configuration."""

import logging
from typing import Optional

from ..config import Config
from ..db.factory import create_repository_from_config
from ..db.repository import PodcastRepositoryInterface
from ..gpodder.client import GpodderClient
from ..podcast.feed_merger import FeedMerger
from ..podcast.feed_parser import FeedParser
from .action_queue import ActionQueue
from .config import SyncConfig
from .engine import SyncEngine
from .session import SessionManager

logger = logging.getLogger(__name__)


def create_sync_engine(
    config: Config,
    repository: Optional[PodcastRepositoryInterface] = None,
    sync_config: Optional[SyncConfig] = None,
) -> SyncEngine:
    """
    Build a fully wired SyncEngine.

    Parameters:
        config: Application configuration (database, server, HTTP settings).
        repository: Store to use; created from `config` when omitted.
        sync_config: Sync tuning; read from the environment when omitted.

    Returns:
        SyncEngine ready for perform_sync, subscribe and record_progress.
    """
    repository = repository or create_repository_from_config(config)
    sync_config = sync_config or SyncConfig.from_env()

    client = GpodderClient.from_config(config)
    sessions = SessionManager(
        repository,
        client,
        server_url=config.SYNC_SERVER_URL or None,
        username=config.SYNC_USERNAME or None,
        password=config.SYNC_PASSWORD or None,
        device_id=config.SYNC_DEVICE_ID,
    )

    engine = SyncEngine(
        repository=repository,
        feed_parser=FeedParser.from_config(config),
        feed_merger=FeedMerger(repository),
        action_queue=ActionQueue(repository, warn_every=sync_config.action_warn_attempts),
        session_manager=sessions,
        client=client,
        config=sync_config,
    )
    logger.debug("Sync engine created")
    return engine
