"""Configuration for the sync engine.

Provides environment-based configuration for feed concurrency, staleness,
scheduling intervals and smart-sync escalation.
"""

import os
from dataclasses import dataclass
from typing import Optional


def _env_int(
    name: str,
    default: int,
    lower: Optional[int] = None,
    upper: Optional[int] = None,
) -> int:
    """Read a bounded integer setting; `default` applies when `name` is unset.

    Raises:
        ValueError: If the value is not an integer or falls outside
            [lower, upper].
    """
    raw = os.getenv(name)
    if raw is None:
        return default

    try:
        value = int(raw.strip())
    except ValueError:
        raise ValueError(f"{name}={raw!r} is not a valid integer") from None

    if lower is not None and value < lower:
        raise ValueError(f"{name}={value} is below the minimum of {lower}")
    if upper is not None and value > upper:
        raise ValueError(f"{name}={value} is above the maximum of {upper}")

    return value


@dataclass
class SyncConfig:
    """Configuration for sync cycles and the foreground timer.

    All settings can be overridden via environment variables.
    """

    # Feed refresh
    feed_workers: int = 4  # Concurrent feed downloads per cycle
    stale_after_minutes: int = 60  # Smart sync refetches feeds older than this

    # Scheduling
    smart_sync_interval_seconds: int = 900  # 15 minutes

    # Escalation: consecutive unsuccessful smart syncs before forcing a full sync
    max_smart_failures: int = 3

    # Action queue
    action_batch_size: int = 100  # Episode actions uploaded per request
    action_warn_attempts: int = 10  # Log a warning every N failed attempts

    # Cycle lease: a cycle whose heartbeat is older than this is considered dead
    cycle_lease_seconds: int = 600

    @classmethod
    def from_env(cls) -> "SyncConfig":
        """Create configuration from environment variables.

        Returns:
            SyncConfig instance with values from environment or defaults.

        Raises:
            ValueError: If any environment variable has an invalid value.
        """
        return cls(
            feed_workers=_env_int("SYNC_FEED_WORKERS", 4, lower=1, upper=16),
            stale_after_minutes=_env_int(
                "SYNC_STALE_AFTER_MINUTES", 60, lower=0
            ),
            smart_sync_interval_seconds=_env_int(
                "SYNC_SMART_INTERVAL_SECONDS", 900, lower=1
            ),
            max_smart_failures=_env_int(
                "SYNC_MAX_SMART_FAILURES", 3, lower=1
            ),
            action_batch_size=_env_int(
                "SYNC_ACTION_BATCH_SIZE", 100, lower=1
            ),
            action_warn_attempts=_env_int(
                "SYNC_ACTION_WARN_ATTEMPTS", 10, lower=1
            ),
            cycle_lease_seconds=_env_int(
                "SYNC_CYCLE_LEASE_SECONDS", 600, lower=1
            ),
        )
