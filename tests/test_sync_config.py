"""Tests for sync configuration and result types."""

import logging
from datetime import datetime
from unittest.mock import patch

import pytest

from podsync.sync.base import SyncMode, SyncResult, SyncStatus
from podsync.sync.config import SyncConfig


class TestSyncConfig:
    """Tests for SyncConfig."""

    def test_default_values(self):
        """Test default configuration values."""
        config = SyncConfig()

        assert config.feed_workers == 4
        assert config.stale_after_minutes == 60
        assert config.smart_sync_interval_seconds == 900
        assert config.max_smart_failures == 3
        assert config.action_batch_size == 100
        assert config.action_warn_attempts == 10
        assert config.cycle_lease_seconds == 600

    def test_from_env(self):
        """Test loading configuration from environment variables."""
        with patch.dict(
            "os.environ",
            {
                "SYNC_FEED_WORKERS": "8",
                "SYNC_SMART_INTERVAL_SECONDS": "300",
                "SYNC_ACTION_BATCH_SIZE": "25",
                "SYNC_CYCLE_LEASE_SECONDS": "120",
            },
        ):
            config = SyncConfig.from_env()

            assert config.feed_workers == 8
            assert config.smart_sync_interval_seconds == 300
            assert config.action_batch_size == 25
            assert config.cycle_lease_seconds == 120
            assert config.stale_after_minutes == 60

    def test_from_env_zero_staleness_allowed(self):
        with patch.dict("os.environ", {"SYNC_STALE_AFTER_MINUTES": "0"}):
            assert SyncConfig.from_env().stale_after_minutes == 0

    def test_from_env_not_an_integer(self):
        with patch.dict("os.environ", {"SYNC_FEED_WORKERS": "many"}):
            with pytest.raises(ValueError, match="not a valid integer"):
                SyncConfig.from_env()

    @pytest.mark.parametrize(
        "name,value",
        [
            ("SYNC_FEED_WORKERS", "0"),
            ("SYNC_FEED_WORKERS", "17"),
            ("SYNC_SMART_INTERVAL_SECONDS", "0"),
            ("SYNC_MAX_SMART_FAILURES", "0"),
            ("SYNC_ACTION_WARN_ATTEMPTS", "-1"),
            ("SYNC_CYCLE_LEASE_SECONDS", "0"),
        ],
    )
    def test_from_env_out_of_range(self, name, value):
        with patch.dict("os.environ", {name: value}):
            with pytest.raises(ValueError, match=name):
                SyncConfig.from_env()


class TestSyncResult:
    """Tests for SyncResult."""

    def test_default_values(self):
        result = SyncResult(mode=SyncMode.SMART)

        assert result.status is SyncStatus.SUCCEEDED
        assert result.feeds_failed == 0
        assert result.errors == []
        assert result.duration_seconds is None

    def test_duration(self):
        result = SyncResult(
            mode=SyncMode.FULL,
            started_at=datetime(2024, 1, 1, 12, 0, 0),
            finished_at=datetime(2024, 1, 1, 12, 0, 30),
        )
        assert result.duration_seconds == 30.0

    def test_feeds_failed_counts_errors(self):
        result = SyncResult(mode=SyncMode.FULL)
        result.feed_errors["https://a.example.com"] = "timeout"
        result.feed_errors["https://b.example.com"] = "HTTP 404"

        assert result.feeds_failed == 2

    def test_log_result_warns_on_failure(self, caplog):
        result = SyncResult(mode=SyncMode.FULL, status=SyncStatus.FAILED, error="boom")

        with caplog.at_level(logging.INFO, logger="podsync.sync.base"):
            result.log_result()

        assert "full sync failed" in caplog.text
        assert "boom" in caplog.text
        assert caplog.records[-1].levelno == logging.WARNING


class TestSyncStatus:
    """Tests for SyncStatus."""

    @pytest.mark.parametrize(
        "status,expected",
        [
            (SyncStatus.SUCCEEDED, False),
            (SyncStatus.PARTIALLY_FAILED, True),
            (SyncStatus.FAILED, True),
            (SyncStatus.SKIPPED, False),
            (SyncStatus.CANCELLED, False),
        ],
    )
    def test_is_failure(self, status, expected):
        assert status.is_failure is expected

    def test_mode_from_string(self):
        assert SyncMode("full") is SyncMode.FULL
