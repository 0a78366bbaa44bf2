"""Tests for the playback event consumer."""

from unittest.mock import Mock, call

import pytest

from podsync.errors import EpisodeNotFoundError, QueueWriteError
from podsync.sync.events import PlaybackEvent, PlaybackEventConsumer


@pytest.fixture
def mock_engine():
    return Mock()


@pytest.fixture
def consumer(mock_engine):
    consumer = PlaybackEventConsumer(mock_engine)
    consumer.start()
    yield consumer
    consumer.stop(wait=False)


class TestPlaybackEventConsumer:
    """Tests for PlaybackEventConsumer."""

    def test_position_events_recorded_in_order(self, consumer, mock_engine):
        consumer.emit_position("feed|ep-1", 10.0)
        consumer.emit_position("feed|ep-1", 20.0, duration=1800.0)
        consumer.join()

        assert mock_engine.record_progress.call_args_list == [
            call("feed|ep-1", 10.0, False, duration=None),
            call("feed|ep-1", 20.0, False, duration=1800.0),
        ]
        assert consumer.stats.recorded == 2

    def test_completed_uses_duration(self, consumer, mock_engine):
        consumer.emit_completed("feed|ep-1", duration=1800.0)
        consumer.join()

        mock_engine.record_progress.assert_called_once_with(
            "feed|ep-1", 1800.0, True, duration=1800.0
        )

    def test_completed_without_duration_uses_last_position(self, consumer, mock_engine):
        consumer.emit_position("feed|ep-1", 1750.0)
        consumer.emit_completed("feed|ep-1")
        consumer.join()

        assert mock_engine.record_progress.call_args == call(
            "feed|ep-1", 1750.0, True, duration=None
        )

    def test_unknown_episode_dropped(self, consumer, mock_engine):
        mock_engine.record_progress.side_effect = [EpisodeNotFoundError("nope"), Mock()]

        consumer.emit(PlaybackEvent("nope", 10.0))
        consumer.emit(PlaybackEvent("feed|ep-1", 10.0))
        consumer.join()

        assert consumer.stats.failed == 1
        assert consumer.stats.recorded == 1
        assert consumer.running is True

    def test_write_failure_counted(self, consumer, mock_engine):
        mock_engine.record_progress.side_effect = QueueWriteError("disk full")

        consumer.emit_position("feed|ep-1", 10.0)
        consumer.join()

        assert consumer.stats.failed == 1

    def test_unexpected_error_keeps_consumer_alive(self, consumer, mock_engine, caplog):
        """Test that an error outside the known types does not kill the thread."""
        mock_engine.record_progress.side_effect = [RuntimeError("database is locked"), Mock()]

        consumer.emit_position("feed|ep-1", 10.0)
        consumer.emit_position("feed|ep-1", 20.0)
        consumer.join()

        assert consumer.running is True
        assert mock_engine.record_progress.call_count == 2
        assert mock_engine.record_progress.call_args == call(
            "feed|ep-1", 20.0, False, duration=None
        )
        assert consumer.stats.failed == 1
        assert consumer.stats.recorded == 1
        assert "database is locked" in caplog.text

    def test_stop_drains_queue(self, mock_engine):
        consumer = PlaybackEventConsumer(mock_engine)
        consumer.start()
        for second in range(5):
            consumer.emit_position("feed|ep-1", float(second))

        consumer.stop()

        assert mock_engine.record_progress.call_count == 5
        assert consumer.running is False

    def test_start_twice_keeps_one_thread(self, consumer):
        thread = consumer._thread
        consumer.start()
        assert consumer._thread is thread
