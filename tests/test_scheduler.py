"""Tests for the foreground sync timer."""

from unittest.mock import Mock

import pytest

from podsync.sync.base import SyncMode, SyncResult, SyncStatus
from podsync.sync.scheduler import COLD_START_JOB_ID, SMART_SYNC_JOB_ID, SyncScheduler


@pytest.fixture
def mock_engine():
    """Create a mock engine with a 15 minute smart sync interval."""
    engine = Mock()
    engine.config.smart_sync_interval_seconds = 900
    engine.perform_sync.return_value = SyncResult(mode=SyncMode.SMART)
    return engine


@pytest.fixture
def mock_scheduler():
    scheduler = Mock()
    scheduler.running = False
    return scheduler


@pytest.fixture
def sync_scheduler(mock_engine, mock_scheduler):
    return SyncScheduler(mock_engine, scheduler=mock_scheduler)


def _job(mock_scheduler, job_id):
    for call in mock_scheduler.add_job.call_args_list:
        if call.kwargs.get("id") == job_id:
            return call
    raise AssertionError(f"job {job_id} was not scheduled")


class TestSyncScheduler:
    """Tests for SyncScheduler."""

    def test_interval_defaults_to_engine_config(self, sync_scheduler):
        assert sync_scheduler.interval_seconds == 900

    def test_explicit_interval(self, mock_engine, mock_scheduler):
        scheduler = SyncScheduler(mock_engine, interval_seconds=60, scheduler=mock_scheduler)
        assert scheduler.interval_seconds == 60

    def test_start_schedules_cold_start_and_interval(self, sync_scheduler, mock_scheduler):
        """Test that start adds a one-off full sync and a smart sync interval."""
        sync_scheduler.start()

        cold_start = _job(mock_scheduler, COLD_START_JOB_ID)
        assert cold_start.args[1] == "date"
        assert cold_start.kwargs["args"] == [SyncMode.FULL]

        smart = _job(mock_scheduler, SMART_SYNC_JOB_ID)
        assert smart.args[1] == "interval"
        assert smart.kwargs["seconds"] == 900
        assert smart.kwargs["args"] == [SyncMode.SMART]
        assert smart.kwargs["max_instances"] == 1
        assert smart.kwargs["coalesce"] is True

        mock_scheduler.start.assert_called_once()

    def test_scheduled_job_runs_engine(self, sync_scheduler, mock_scheduler, mock_engine):
        sync_scheduler.start()
        smart = _job(mock_scheduler, SMART_SYNC_JOB_ID)

        result = smart.args[0](*smart.kwargs["args"])

        mock_engine.perform_sync.assert_called_once_with(SyncMode.SMART)
        assert result.status is SyncStatus.SUCCEEDED

    def test_suspend_pauses_and_cancels(self, sync_scheduler, mock_scheduler, mock_engine):
        sync_scheduler.suspend()

        assert sync_scheduler.suspended is True
        mock_scheduler.pause_job.assert_called_once_with(SMART_SYNC_JOB_ID)
        mock_engine.cancel.assert_called_once()

    def test_suspend_twice_is_noop(self, sync_scheduler, mock_scheduler):
        sync_scheduler.suspend()
        sync_scheduler.suspend()

        assert mock_scheduler.pause_job.call_count == 1

    def test_resume(self, sync_scheduler, mock_scheduler):
        sync_scheduler.suspend()
        sync_scheduler.resume()

        assert sync_scheduler.suspended is False
        mock_scheduler.resume_job.assert_called_once_with(SMART_SYNC_JOB_ID)

    def test_resume_without_suspend_is_noop(self, sync_scheduler, mock_scheduler):
        sync_scheduler.resume()
        mock_scheduler.resume_job.assert_not_called()

    def test_trigger_adds_one_off_job(self, sync_scheduler, mock_scheduler):
        sync_scheduler.trigger(SyncMode.FULL)

        call = mock_scheduler.add_job.call_args
        assert call.args[1] == "date"
        assert call.kwargs["args"] == [SyncMode.FULL]

    def test_shutdown(self, sync_scheduler, mock_scheduler, mock_engine):
        mock_scheduler.running = True

        sync_scheduler.shutdown(wait=False)

        mock_engine.cancel.assert_called_once()
        mock_scheduler.shutdown.assert_called_once_with(wait=False)

    def test_shutdown_when_not_running(self, sync_scheduler, mock_scheduler):
        sync_scheduler.shutdown()
        mock_scheduler.shutdown.assert_not_called()

    def test_running_reflects_scheduler(self, sync_scheduler, mock_scheduler):
        assert sync_scheduler.running is False
        mock_scheduler.running = True
        assert sync_scheduler.running is True
