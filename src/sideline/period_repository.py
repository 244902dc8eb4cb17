"""Data access layer for match periods.

Same conventions as LineupIntervalRepository: raw connection, module-level
SQL, dict returns, and no transaction handling of its own.  Timestamps are
stored as UTC ISO-8601 strings.
"""

import sqlite3

INSERT_PERIOD = """
    INSERT INTO match_periods (
        period_id, match_id, period_number, period_type, started_at,
        notes, created_by, created_at, updated_at
    ) VALUES (
        :period_id, :match_id, :period_number, :period_type, :started_at,
        :notes, :created_by, :now, :now
    )
"""

# Import replays overwrite timing; the first id and created_* survive.
UPSERT_IMPORTED_PERIOD = """
    INSERT INTO match_periods (
        period_id, match_id, period_number, period_type, started_at,
        ended_at, duration_seconds, created_by, created_at, updated_at
    ) VALUES (
        :period_id, :match_id, :period_number, :period_type, :started_at,
        :ended_at, :duration_seconds, :created_by, :now, :now
    )
    ON CONFLICT(match_id, period_number, period_type) DO UPDATE SET
        started_at       = excluded.started_at,
        ended_at         = excluded.ended_at,
        duration_seconds = excluded.duration_seconds,
        updated_at       = excluded.updated_at
"""

CLOSE_PERIOD = """
    UPDATE match_periods SET
        ended_at         = :ended_at,
        duration_seconds = :duration_seconds,
        end_reason       = :end_reason,
        updated_at       = :now
    WHERE period_id = :period_id AND ended_at IS NULL
"""


class PeriodRepository:
    """Data access layer for the ``match_periods`` table."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    # ------------------------------------------------------------------
    # Writes (caller owns the transaction)
    # ------------------------------------------------------------------

    def insert(self, data: dict) -> None:
        self.conn.execute(INSERT_PERIOD, data)

    def upsert_import(self, data: dict) -> None:
        self.conn.execute(UPSERT_IMPORTED_PERIOD, data)

    def close(self, data: dict) -> bool:
        """Close an active period.  Returns False if it was already closed."""
        cursor = self.conn.execute(CLOSE_PERIOD, data)
        return cursor.rowcount == 1

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, period_id: str) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM match_periods WHERE period_id = ?", (period_id,)
        ).fetchone()
        return dict(row) if row is not None else None

    def get_by_key(self, match_id: str, period_number: int, period_type: str) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM match_periods "
            "WHERE match_id = ? AND period_number = ? AND period_type = ?",
            (match_id, period_number, period_type),
        ).fetchone()
        return dict(row) if row is not None else None

    def get_active(self, match_id: str) -> dict | None:
        """Return the match's open period, if any."""
        row = self.conn.execute(
            "SELECT * FROM match_periods WHERE match_id = ? AND ended_at IS NULL",
            (match_id,),
        ).fetchone()
        return dict(row) if row is not None else None

    def count_by_type(self, match_id: str, period_type: str) -> int:
        return self.conn.execute(
            "SELECT COUNT(*) FROM match_periods WHERE match_id = ? AND period_type = ?",
            (match_id, period_type),
        ).fetchone()[0]

    def max_number(self, match_id: str, period_type: str) -> int:
        return self.conn.execute(
            "SELECT COALESCE(MAX(period_number), 0) FROM match_periods "
            "WHERE match_id = ? AND period_type = ?",
            (match_id, period_type),
        ).fetchone()[0]

    def list_for_match(self, match_id: str) -> list[dict]:
        """All periods of a match, grouped by type then ordered by number."""
        rows = self.conn.execute(
            "SELECT * FROM match_periods WHERE match_id = ? "
            "ORDER BY CASE period_type "
            "  WHEN 'REGULAR' THEN 0 WHEN 'EXTRA_TIME' THEN 1 ELSE 2 END, "
            "period_number",
            (match_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    def list_by_type(self, match_id: str, period_type: str) -> list[dict]:
        rows = self.conn.execute(
            "SELECT * FROM match_periods WHERE match_id = ? AND period_type = ? "
            "ORDER BY period_number",
            (match_id, period_type),
        ).fetchall()
        return [dict(r) for r in rows]

    def completed_seconds(self, match_id: str) -> int:
        """Sum of duration_seconds over closed periods."""
        return self.conn.execute(
            "SELECT COALESCE(SUM(duration_seconds), 0) FROM match_periods "
            "WHERE match_id = ? AND ended_at IS NOT NULL",
            (match_id,),
        ).fetchone()[0]
