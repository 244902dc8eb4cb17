"""Unit tests for the Database connection manager, migrations and write
transaction helpers."""

import sqlite3

import pytest

from sideline.config import CoreConfig
from sideline.db import (
    Database,
    immediate_transaction,
    is_lock_contention,
    read_snapshot,
    run_write,
)

EXPECTED_TABLES = {
    "teams",
    "players",
    "matches",
    "positions",
    "match_events",
    "lineup_intervals",
    "match_periods",
}


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "test.db")
    database.initialize()
    yield database
    database.close()


def fast_config(**overrides):
    """Config with near-zero retry waits so tests stay quick."""
    values = {"retry_initial_wait": 0.001, "retry_max_wait": 0.01}
    values.update(overrides)
    return CoreConfig(**values)


class TestDatabaseLifecycle:
    """Tests for file creation, connection state and context manager use."""

    def test_database_creates_parent_directories(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "test.db"
        database = Database(db_path)
        database.initialize()
        assert db_path.exists()
        database.close()

    def test_conn_raises_before_connect(self, tmp_path):
        database = Database(tmp_path / "test.db")
        with pytest.raises(RuntimeError, match="not connected"):
            database.conn

    def test_close_is_idempotent(self, tmp_path):
        database = Database(tmp_path / "test.db")
        database.connect()
        database.close()
        database.close()
        with pytest.raises(RuntimeError):
            database.conn

    def test_context_manager_connects_and_closes(self, tmp_path):
        with Database(tmp_path / "test.db") as database:
            assert database.conn.execute("SELECT 1").fetchone()[0] == 1
        with pytest.raises(RuntimeError):
            database.conn


class TestDatabasePragmas:
    def test_wal_mode(self, db):
        assert db.conn.execute("PRAGMA journal_mode").fetchone()[0] == "wal"

    def test_foreign_keys_enabled(self, db):
        assert db.conn.execute("PRAGMA foreign_keys").fetchone()[0] == 1

    def test_busy_timeout_applied(self, tmp_path):
        database = Database(tmp_path / "test.db", busy_timeout_ms=1234)
        database.connect()
        assert database.conn.execute("PRAGMA busy_timeout").fetchone()[0] == 1234
        database.close()

    def test_row_factory_is_row(self, db):
        row = db.conn.execute("SELECT 1 AS one").fetchone()
        assert row["one"] == 1


class TestMigrations:
    def test_all_tables_created(self, db):
        rows = db.conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table'"
        ).fetchall()
        assert EXPECTED_TABLES <= {r[0] for r in rows}

    def test_schema_version_matches_last_migration(self, db):
        assert db.get_schema_version() == 3

    def test_reapplying_is_a_no_op(self, db):
        assert db.apply_migrations() == 0
        assert db.get_schema_version() == 3

    def test_partial_unique_indexes_exist(self, db):
        names = {
            r[0] for r in db.conn.execute(
                "SELECT name FROM sqlite_master WHERE type = 'index'"
            ).fetchall()
        }
        assert "idx_intervals_one_open" in names
        assert "idx_periods_one_active" in names

    def test_custom_migrations_dir(self, tmp_path):
        migrations = tmp_path / "migrations"
        migrations.mkdir()
        (migrations / "001_only.sql").write_text("CREATE TABLE only_one (id INTEGER);")
        database = Database(tmp_path / "custom.db")
        database.connect()
        assert database.apply_migrations(migrations) == 1
        assert database.get_schema_version() == 1
        database.close()


class TestImmediateTransaction:
    def test_commits_on_success(self, db):
        with immediate_transaction(db.conn):
            db.conn.execute("INSERT INTO positions (code, long_name) VALUES ('GK', 'Goalkeeper')")
        assert db.conn.execute("SELECT COUNT(*) FROM positions").fetchone()[0] == 1

    def test_rolls_back_on_error(self, db):
        with pytest.raises(ValueError):
            with immediate_transaction(db.conn):
                db.conn.execute(
                    "INSERT INTO positions (code, long_name) VALUES ('GK', 'Goalkeeper')"
                )
                raise ValueError("boom")
        assert db.conn.execute("SELECT COUNT(*) FROM positions").fetchone()[0] == 0
        assert not db.conn.in_transaction

    def test_read_snapshot_leaves_no_transaction(self, db):
        with read_snapshot(db.conn):
            db.conn.execute("SELECT COUNT(*) FROM teams").fetchone()
        assert not db.conn.in_transaction


class TestRunWrite:
    def test_returns_work_result(self, db):
        assert run_write(db.conn, lambda: 42, fast_config()) == 42

    def test_retries_lock_contention(self, db):
        attempts = []

        def work():
            attempts.append(1)
            if len(attempts) < 3:
                raise sqlite3.OperationalError("database is locked")
            return "done"

        assert run_write(db.conn, work, fast_config()) == "done"
        assert len(attempts) == 3

    def test_gives_up_after_max_attempts(self, db):
        attempts = []

        def work():
            attempts.append(1)
            raise sqlite3.OperationalError("database is locked")

        with pytest.raises(sqlite3.OperationalError, match="locked"):
            run_write(db.conn, work, fast_config(max_write_attempts=2))
        assert len(attempts) == 2

    def test_other_errors_are_not_retried(self, db):
        attempts = []

        def work():
            attempts.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            run_write(db.conn, work, fast_config())
        assert len(attempts) == 1


class TestIsLockContention:
    def test_locked_and_busy(self):
        assert is_lock_contention(sqlite3.OperationalError("database is locked"))
        assert is_lock_contention(sqlite3.OperationalError("database is busy"))

    def test_other_errors(self):
        assert not is_lock_contention(sqlite3.OperationalError("no such table: x"))
        assert not is_lock_contention(ValueError("database is locked"))
