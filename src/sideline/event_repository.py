"""Adapter over the externally owned match event log.

The core reads events for the live views and appends substitution and
formation-change markers.  ``insert`` joins the caller's transaction; use
``record`` for a standalone append.
"""

import sqlite3

INSERT_EVENT = """
    INSERT INTO match_events (
        event_id, match_id, kind, team_id, player_id, period_number,
        clock_ms, notes, sentiment, created_by, created_at
    ) VALUES (
        :event_id, :match_id, :kind, :team_id, :player_id, :period_number,
        :clock_ms, :notes, :sentiment, :created_by, :created_at
    )
"""

# Timeline rows carry display names for the player and team
SELECT_ENRICHED = """
    SELECT e.*, p.name AS player_name, t.name AS team_name
    FROM match_events e
    LEFT JOIN players p ON p.player_id = e.player_id
    LEFT JOIN teams t ON t.team_id = e.team_id
    WHERE e.match_id = ?
"""


class EventRepository:
    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    def insert(self, data: dict) -> None:
        self.conn.execute(INSERT_EVENT, data)

    def record(self, data: dict) -> None:
        """Append one event in its own transaction."""
        with self.conn:
            self.conn.execute(INSERT_EVENT, data)

    def get(self, event_id: str) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM match_events WHERE event_id = ?", (event_id,)
        ).fetchone()
        return dict(row) if row is not None else None

    def list_for_match(self, match_id: str) -> list[dict]:
        """Every event of a match in clock order."""
        rows = self.conn.execute(
            SELECT_ENRICHED + " ORDER BY e.clock_ms, e.created_at", (match_id,)
        ).fetchall()
        return [dict(r) for r in rows]

    def list_recent(self, match_id: str, limit: int) -> list[dict]:
        """The latest *limit* events, newest clock first."""
        rows = self.conn.execute(
            SELECT_ENRICHED + " ORDER BY e.clock_ms DESC, e.created_at DESC LIMIT ?",
            (match_id, limit),
        ).fetchall()
        return [dict(r) for r in rows]

    def count_kinds(self, match_id: str, kinds: frozenset[str] | set[str]) -> int:
        if not kinds:
            return 0
        placeholders = ", ".join("?" for _ in kinds)
        return self.conn.execute(
            f"SELECT COUNT(*) FROM match_events WHERE match_id = ? AND kind IN ({placeholders})",
            (match_id, *sorted(kinds)),
        ).fetchone()[0]

    def last_created_at(self, match_id: str) -> str | None:
        return self.conn.execute(
            "SELECT MAX(created_at) FROM match_events WHERE match_id = ?", (match_id,)
        ).fetchone()[0]
