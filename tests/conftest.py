"""
Pytest configuration and fixtures for podsync tests.

This module runs before any test imports, setting up the test environment.
Sync and database environment variables are cleared so a developer's .env
or shell never leaks a real server or database into the tests.
"""

import os

import pytest

from podsync.db.factory import create_repository

for _name in (
    "DATABASE_URL",
    "SYNC_SERVER_URL",
    "SYNC_USERNAME",
    "SYNC_PASSWORD",
    "SYNC_DEVICE_ID",
    "SYNC_FEED_WORKERS",
    "SYNC_STALE_AFTER_MINUTES",
    "SYNC_SMART_INTERVAL_SECONDS",
    "SYNC_MAX_SMART_FAILURES",
    "SYNC_ACTION_BATCH_SIZE",
    "SYNC_ACTION_WARN_ATTEMPTS",
    "SYNC_CYCLE_LEASE_SECONDS",
):
    os.environ.pop(_name, None)


@pytest.fixture
def repository(tmp_path):
    """
    Create a temporary SQLite-backed repository for tests.

    Yields a repository using a SQLite file under the provided temporary path
    and closes it when the fixture is torn down.
    """
    db_path = tmp_path / "test.db"
    repo = create_repository(f"sqlite:///{db_path}", create_tables=True)
    yield repo
    repo.close()
