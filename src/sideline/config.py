"""Core configuration with sensible defaults for a sideline deployment."""

from dataclasses import dataclass


@dataclass
class CoreConfig:
    """Configuration for the match-logging core.

    Timing values are in seconds unless the name says otherwise.
    """

    # Persistent data storage
    data_dir: str = "data"
    db_path: str = "data/sideline.db"

    # SQLite busy timeout.  Concurrent writers queue on the write lock
    # for this long before the driver raises "database is locked".
    busy_timeout_ms: int = 5000

    # tenacity stop_after_attempt for lock contention on write transactions
    max_write_attempts: int = 5

    # Exponential jitter bounds between write attempts
    retry_initial_wait: float = 0.05
    retry_max_wait: float = 1.0

    # Number of most recent events shown on the live dashboard
    live_event_limit: int = 10
