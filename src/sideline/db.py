"""SQLite database connection manager with migration support.

Manages the connection lifecycle, applies PRAGMAs (WAL, foreign keys,
busy_timeout) on every connect, and runs pending SQL migrations from
the package's migrations/ directory using PRAGMA user_version for tracking.

Also provides the write-transaction helpers every mutating operation goes
through: ``immediate_transaction`` takes the database write lock *before*
the first read, so a check-then-write sequence is serialized against other
connections, and ``run_write`` retries lock contention with tenacity.
"""

import logging
import sqlite3
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, TypeVar

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from sideline.config import CoreConfig

logger = logging.getLogger(__name__)

T = TypeVar("T")

MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"


class Database:
    """SQLite connection manager with migration support.

    Usage::

        db = Database("data/sideline.db")
        db.initialize()  # connect + apply migrations
        # ... use db.conn ...
        db.close()

    Or as a context manager::

        with Database("data/sideline.db") as db:
            db.apply_migrations()
            # ... use db.conn ...
    """

    def __init__(self, db_path: str | Path, busy_timeout_ms: int = 5000) -> None:
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.busy_timeout_ms = busy_timeout_ms
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open connection and configure PRAGMAs.

        Sets WAL journal mode, enables foreign keys, and configures
        the busy timeout used while waiting for another writer.
        """
        self._conn = sqlite3.connect(
            str(self.db_path),
            timeout=self.busy_timeout_ms / 1000,
        )
        self._conn.row_factory = sqlite3.Row
        # PRAGMAs must be set per-connection
        self._conn.execute("PRAGMA journal_mode = WAL")
        self._conn.execute("PRAGMA foreign_keys = ON")
        # NORMAL is safe with WAL and avoids the full fsync on every commit
        self._conn.execute("PRAGMA synchronous = NORMAL")
        self._conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        return self._conn

    @property
    def conn(self) -> sqlite3.Connection:
        """Return the active connection or raise if not connected."""
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    def close(self) -> None:
        """Close the database connection."""
        if self._conn:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> "Database":
        self.connect()
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def get_schema_version(self) -> int:
        """Return the current schema version (PRAGMA user_version)."""
        return self.conn.execute("PRAGMA user_version").fetchone()[0]

    def apply_migrations(self, migrations_dir: Path | None = None) -> int:
        """Apply pending SQL migration files.

        Migration files are named ``NNN_description.sql`` where NNN is
        the version number.  Files with version <= current user_version
        are skipped.  After each file is applied, user_version is set
        to the file's version number.

        Args:
            migrations_dir: Directory containing .sql files.
                Defaults to ``sideline/migrations`` inside the package.

        Returns:
            Number of migrations applied.
        """
        migrations_dir = Path(migrations_dir) if migrations_dir else MIGRATIONS_DIR

        current = self.get_schema_version()
        applied = 0

        for migration_file in sorted(migrations_dir.glob("*.sql")):
            # 001_reference.sql -> 1
            version = int(migration_file.name.split("_")[0])
            if version <= current:
                continue

            sql = migration_file.read_text(encoding="utf-8")
            self.conn.executescript(sql)
            self.conn.execute(f"PRAGMA user_version = {version}")
            logger.debug("Applied migration %s", migration_file.name)
            applied += 1

        return applied

    def initialize(self) -> sqlite3.Connection:
        """Connect and apply all pending migrations.

        This is the standard entry point for application code.

        Returns:
            The active sqlite3.Connection.
        """
        self.connect()
        self.apply_migrations()
        return self.conn


# ---------------------------------------------------------------------------
# Write transactions
# ---------------------------------------------------------------------------

def is_lock_contention(exc: BaseException) -> bool:
    """True for the OperationalError SQLite raises when the write lock is held."""
    if not isinstance(exc, sqlite3.OperationalError):
        return False
    text = str(exc).lower()
    return "locked" in text or "busy" in text


@contextmanager
def immediate_transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run a block inside ``BEGIN IMMEDIATE`` ... ``COMMIT``.

    The RESERVED lock is taken up front, so reads inside the block see a
    state no other connection can change before we commit.  Any exception
    rolls the whole block back.
    """
    conn.execute("BEGIN IMMEDIATE")
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    conn.commit()


def run_write(
    conn: sqlite3.Connection,
    work: Callable[[], T],
    config: CoreConfig | None = None,
) -> T:
    """Execute *work* in an immediate transaction, retrying lock contention.

    Only "database is locked" errors are retried; domain errors raised by
    *work* (Conflict, ValidationFailed, ...) roll back and propagate at once.
    """
    config = config or CoreConfig()
    retrying = Retrying(
        retry=retry_if_exception(is_lock_contention),
        wait=wait_exponential_jitter(
            initial=config.retry_initial_wait,
            max=config.retry_max_wait,
            jitter=config.retry_initial_wait,
        ),
        stop=stop_after_attempt(config.max_write_attempts),
        before_sleep=before_sleep_log(logger, logging.WARNING),
        reraise=True,
    )
    for attempt in retrying:
        with attempt:
            with immediate_transaction(conn):
                return work()
    raise AssertionError("unreachable")  # pragma: no cover


@contextmanager
def read_snapshot(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """Run several reads against one consistent WAL snapshot."""
    conn.execute("BEGIN")
    try:
        yield conn
    finally:
        conn.rollback()
