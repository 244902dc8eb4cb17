"""Data access layer for lineup intervals (the Lineup Interval Store).

Provides LineupIntervalRepository with insert / restore / patch / tombstone
writes and the point-in-time reads the query engine builds on.

Unlike the reference repository, write methods here do NOT open their own
transaction: they are always called from inside ``db.run_write`` so that
the overlap check and the write it guards share one ``BEGIN IMMEDIATE``.
Exceptions (IntegrityError, OperationalError) propagate to callers.
"""

import sqlite3

# ---------------------------------------------------------------------------
# SQL constants
# ---------------------------------------------------------------------------

INSERT_INTERVAL = """
    INSERT INTO lineup_intervals (
        interval_id, match_id, player_id, position,
        start_minute, end_minute, pitch_x, pitch_y, substitution_reason,
        created_by, created_at, updated_at
    ) VALUES (
        :interval_id, :match_id, :player_id, :position,
        :start_minute, :end_minute, :pitch_x, :pitch_y, :substitution_reason,
        :created_by, :now, :now
    )
"""

# Restore-on-recreate: clear the tombstone and overwrite the mutable fields.
RESTORE_INTERVAL = """
    UPDATE lineup_intervals SET
        position            = :position,
        end_minute          = :end_minute,
        pitch_x             = :pitch_x,
        pitch_y             = :pitch_y,
        substitution_reason = :substitution_reason,
        created_by          = :created_by,
        updated_at          = :now,
        deleted_at          = NULL,
        deleted_by          = NULL
    WHERE interval_id = :interval_id
"""

TOMBSTONE_INTERVAL = """
    UPDATE lineup_intervals SET
        deleted_at = :now,
        deleted_by = :deleted_by,
        updated_at = :now
    WHERE interval_id = :interval_id AND deleted_at IS NULL
"""

CLOSE_INTERVAL = """
    UPDATE lineup_intervals SET
        end_minute          = :end_minute,
        substitution_reason = COALESCE(:substitution_reason, substitution_reason),
        updated_at          = :now
    WHERE interval_id = :interval_id AND end_minute IS NULL AND deleted_at IS NULL
"""

# Columns update_interval may touch
PATCHABLE_COLUMNS = ("end_minute", "position", "pitch_x", "pitch_y", "substitution_reason")

# Half-open overlap: [a, b) and [c, d) overlap iff a < d and c < b,
# with a missing end meaning "still on the pitch".
OVERLAP_WHERE = """
    match_id = :match_id
    AND player_id = :player_id
    AND deleted_at IS NULL
    AND interval_id != :exclude_id
    AND (end_minute IS NULL OR end_minute > :start_minute)
    AND (:end_minute IS NULL OR start_minute < :end_minute)
    AND NOT (end_minute IS NOT NULL AND end_minute = start_minute)
"""

ACTIVE_AT_WHERE = """
    li.match_id = :match_id
    AND li.deleted_at IS NULL
    AND li.start_minute <= :minute
    AND (li.end_minute IS NULL OR li.end_minute > :minute)
"""


# ---------------------------------------------------------------------------
# Repository class
# ---------------------------------------------------------------------------

class LineupIntervalRepository:
    """Data access layer for the ``lineup_intervals`` table.

    Receives a raw ``sqlite3.Connection`` (not a Database instance) so tests
    can pass any connection.  Read methods return dicts via sqlite3.Row.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    # ------------------------------------------------------------------
    # Writes (caller owns the transaction)
    # ------------------------------------------------------------------

    def insert(self, data: dict) -> None:
        """Insert a new interval row.  *data* must carry every INSERT column."""
        self.conn.execute(INSERT_INTERVAL, data)

    def restore(self, data: dict) -> None:
        """Clear a tombstone and overwrite the mutable fields."""
        self.conn.execute(RESTORE_INTERVAL, data)

    def patch(self, interval_id: str, changes: dict, now: str) -> None:
        """Apply a partial update to the given columns."""
        columns = [c for c in changes if c in PATCHABLE_COLUMNS]
        if not columns:
            return
        assignments = ", ".join(f"{c} = :{c}" for c in columns)
        params = {c: changes[c] for c in columns}
        params.update(interval_id=interval_id, now=now)
        self.conn.execute(
            f"UPDATE lineup_intervals SET {assignments}, updated_at = :now "
            "WHERE interval_id = :interval_id",
            params,
        )

    def tombstone(self, interval_id: str, deleted_by: str | None, now: str) -> bool:
        """Soft-delete an interval.  Returns False if it was already deleted."""
        cursor = self.conn.execute(
            TOMBSTONE_INTERVAL,
            {"interval_id": interval_id, "deleted_by": deleted_by, "now": now},
        )
        return cursor.rowcount == 1

    def close(
        self,
        interval_id: str,
        end_minute: float,
        now: str,
        substitution_reason: str | None = None,
    ) -> bool:
        """Set end_minute on an open interval.  Returns False if it was not open."""
        cursor = self.conn.execute(
            CLOSE_INTERVAL,
            {"interval_id": interval_id, "end_minute": end_minute,
             "substitution_reason": substitution_reason, "now": now},
        )
        return cursor.rowcount == 1

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get(self, interval_id: str) -> dict | None:
        """Return an interval (deleted or not) by id."""
        row = self.conn.execute(
            "SELECT * FROM lineup_intervals WHERE interval_id = ?", (interval_id,)
        ).fetchone()
        return dict(row) if row is not None else None

    def get_by_key(self, match_id: str, player_id: str, start_minute: float) -> dict | None:
        """Return the row holding a natural key, including tombstoned rows."""
        row = self.conn.execute(
            "SELECT * FROM lineup_intervals "
            "WHERE match_id = ? AND player_id = ? AND start_minute = ?",
            (match_id, player_id, start_minute),
        ).fetchone()
        return dict(row) if row is not None else None

    def get_open_for_player(self, match_id: str, player_id: str) -> dict | None:
        """Return the player's live interval with no end minute, if any."""
        row = self.conn.execute(
            "SELECT * FROM lineup_intervals "
            "WHERE match_id = ? AND player_id = ? "
            "AND end_minute IS NULL AND deleted_at IS NULL",
            (match_id, player_id),
        ).fetchone()
        return dict(row) if row is not None else None

    def find_overlapping(
        self,
        match_id: str,
        player_id: str,
        start_minute: float,
        end_minute: float | None,
        exclude_id: str = "",
    ) -> list[dict]:
        """Return live intervals of the player overlapping ``[start, end)``.

        Zero-length stints occupy no time and never overlap anything.
        """
        rows = self.conn.execute(
            f"SELECT * FROM lineup_intervals WHERE {OVERLAP_WHERE} "
            "ORDER BY start_minute",
            {"match_id": match_id, "player_id": player_id,
             "start_minute": start_minute, "end_minute": end_minute,
             "exclude_id": exclude_id},
        ).fetchall()
        return [dict(r) for r in rows]

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def list_active_at(self, match_id: str, minute: float) -> list[dict]:
        """Live intervals covering *minute*, latest start first, with player names."""
        rows = self.conn.execute(
            "SELECT li.*, p.name AS player_name FROM lineup_intervals li "
            "LEFT JOIN players p ON p.player_id = li.player_id "
            f"WHERE {ACTIVE_AT_WHERE} "
            "ORDER BY li.start_minute DESC, li.created_at DESC",
            {"match_id": match_id, "minute": minute},
        ).fetchall()
        return [dict(r) for r in rows]

    def list_for_match(self, match_id: str) -> list[dict]:
        """All live intervals of a match (past stints included), by start minute."""
        rows = self.conn.execute(
            "SELECT li.*, p.name AS player_name, p.team_id AS team_id "
            "FROM lineup_intervals li "
            "LEFT JOIN players p ON p.player_id = li.player_id "
            "WHERE li.match_id = ? AND li.deleted_at IS NULL "
            "ORDER BY li.start_minute, li.created_at",
            (match_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    def list_for_player(self, match_id: str, player_id: str) -> list[dict]:
        """All live stints of one player in a match, by start minute."""
        rows = self.conn.execute(
            "SELECT * FROM lineup_intervals "
            "WHERE match_id = ? AND player_id = ? AND deleted_at IS NULL "
            "ORDER BY start_minute",
            (match_id, player_id),
        ).fetchall()
        return [dict(r) for r in rows]

    def list_open_for_match(self, match_id: str) -> list[dict]:
        """Live intervals with no end minute, i.e. everyone on the pitch now."""
        rows = self.conn.execute(
            "SELECT * FROM lineup_intervals "
            "WHERE match_id = ? AND end_minute IS NULL AND deleted_at IS NULL "
            "ORDER BY start_minute, created_at",
            (match_id,),
        ).fetchall()
        return [dict(r) for r in rows]

    def list_for_position(self, position: str, owner_id: str | None = None) -> list[dict]:
        """Live intervals in *position* across matches that are not deleted.

        *owner_id* limits the result to that owner's matches; None means all.
        """
        rows = self.conn.execute(
            "SELECT li.* FROM lineup_intervals li "
            "JOIN matches m ON m.match_id = li.match_id "
            "WHERE li.position = :position AND li.deleted_at IS NULL "
            "AND m.is_deleted = 0 "
            "AND (:owner_id IS NULL OR m.owner_id = :owner_id) "
            "ORDER BY li.match_id DESC, li.start_minute, li.created_at",
            {"position": position, "owner_id": owner_id},
        ).fetchall()
        return [dict(r) for r in rows]
