"""Playback event channel between the audio player and the sync core.

The player emits position and completion events from its own timer thread;
a single consumer thread drains them into SyncEngine.record_progress, so the
player never waits on the store.
"""

import logging
import queue
import threading
from dataclasses import dataclass, field
from typing import Dict, Optional

from ..errors import EpisodeNotFoundError, QueueWriteError
from .engine import SyncEngine

logger = logging.getLogger(__name__)

# Seconds the consumer waits on an empty channel before checking for shutdown
POLL_INTERVAL = 0.5


@dataclass(frozen=True)
class PlaybackEvent:
    """One report from the player."""

    episode_id: str
    position: float
    completed: bool = False
    duration: Optional[float] = None


@dataclass
class PlaybackEventStats:
    """Thread-safe counters for consumed events."""

    recorded: int = 0
    failed: int = 0
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def increment_recorded(self) -> None:
        with self._lock:
            self.recorded += 1

    def increment_failed(self) -> None:
        with self._lock:
            self.failed += 1


class PlaybackEventConsumer:
    """Feeds player events into the engine on a background thread.

    Example:
        consumer = PlaybackEventConsumer(engine)
        consumer.start()
        consumer.emit_position(episode_id, 120.0)
        consumer.emit_completed(episode_id, duration=3600.0)
        consumer.stop()
    """

    def __init__(self, engine: SyncEngine, maxsize: int = 0):
        self.engine = engine
        self.stats = PlaybackEventStats()
        self._events: "queue.Queue[PlaybackEvent]" = queue.Queue(maxsize=maxsize)
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._last_position: Dict[str, float] = {}

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        """Start the consumer thread."""
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._consume, name="playback-events", daemon=True
        )
        self._thread.start()
        logger.info("Playback event consumer started")

    def stop(self, wait: bool = True) -> None:
        """Stop the consumer, by default after draining queued events."""
        if wait:
            self._events.join()
        self._stop.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None
        logger.info("Playback event consumer stopped")

    def emit(self, event: PlaybackEvent) -> None:
        self._events.put(event)

    def emit_position(
        self, episode_id: str, position: float, duration: Optional[float] = None
    ) -> None:
        """Report the current playback position."""
        self._last_position[episode_id] = position
        self.emit(PlaybackEvent(episode_id, position, completed=False, duration=duration))

    def emit_completed(self, episode_id: str, duration: Optional[float] = None) -> None:
        """Report that playback reached the end of the episode."""
        position = duration if duration is not None else self._last_position.get(episode_id, 0.0)
        self._last_position.pop(episode_id, None)
        self.emit(PlaybackEvent(episode_id, position, completed=True, duration=duration))

    def join(self) -> None:
        """Block until every queued event has been handled."""
        self._events.join()

    def _consume(self) -> None:
        while not self._stop.is_set():
            try:
                event = self._events.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                continue
            try:
                self._handle(event)
            finally:
                self._events.task_done()

    def _handle(self, event: PlaybackEvent) -> None:
        try:
            self.engine.record_progress(
                event.episode_id,
                event.position,
                event.completed,
                duration=event.duration,
            )
            self.stats.increment_recorded()
        except (EpisodeNotFoundError, ValueError) as e:
            logger.warning(f"Dropping playback event: {e}")
            self.stats.increment_failed()
        except QueueWriteError as e:
            logger.error(f"Failed to record playback event for {event.episode_id}: {e}")
            self.stats.increment_failed()
        except Exception as e:
            # The consumer thread must outlive any single bad event
            logger.exception(f"Unexpected error recording playback event for {event.episode_id}: {e}")
            self.stats.increment_failed()
