"""Result types shared by the sync engine and its callers."""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


class SyncMode(str, Enum):
    """How much a sync cycle pulls and refreshes."""

    FULL = "full"
    SMART = "smart"


class SyncStatus(str, Enum):
    """Outcome of one sync cycle."""

    SUCCEEDED = "succeeded"
    PARTIALLY_FAILED = "partially_failed"
    FAILED = "failed"
    SKIPPED = "skipped"  # Another cycle was already in flight
    CANCELLED = "cancelled"

    @property
    def is_failure(self) -> bool:
        return self in (SyncStatus.FAILED, SyncStatus.PARTIALLY_FAILED)


@dataclass
class SyncResult:
    """Result of a sync cycle.

    Attributes:
        mode: Mode the cycle actually ran in (after any escalation).
        status: Overall outcome.
        feeds_attempted: Podcasts whose feed was fetched.
        feeds_synced: Podcasts whose feed was fetched and merged.
        feed_errors: Error message per failed feed URL.
        new_episodes: Episodes inserted by feed merges.
        subscriptions_added: Remote-only feeds subscribed locally.
        subscriptions_removed: Local podcasts unsubscribed by remote removals.
        subscriptions_pushed: Subscription actions acknowledged by the server.
        actions_pulled: Remote play actions applied locally.
        actions_pushed: Play actions acknowledged by the server.
        errors: Step-level error messages.
        error: Human-readable summary for the user.
    """

    mode: SyncMode
    status: SyncStatus = SyncStatus.SUCCEEDED
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None

    feeds_attempted: int = 0
    feeds_synced: int = 0
    feed_errors: Dict[str, str] = field(default_factory=dict)
    new_episodes: int = 0

    subscriptions_added: int = 0
    subscriptions_removed: int = 0
    subscriptions_pushed: int = 0
    actions_pulled: int = 0
    actions_pushed: int = 0

    errors: List[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def feeds_failed(self) -> int:
        return len(self.feed_errors)

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def add_error(self, message: str) -> None:
        """Record a step failure that does not abort the cycle."""
        self.errors.append(message)

    def log_result(self) -> None:
        """Log a one-line summary of the cycle."""
        summary = (
            f"{self.mode.value} sync {self.status.value}: "
            f"{self.feeds_synced}/{self.feeds_attempted} feeds, "
            f"{self.new_episodes} new episodes, "
            f"{self.actions_pushed} actions pushed, {self.actions_pulled} pulled"
        )
        if self.status.is_failure:
            logger.warning(f"{summary} ({self.error})")
        else:
            logger.info(summary)
