"""Data access layer for collaborator-owned reference data.

Teams, players, matches and position codes are maintained outside this
core.  ReferenceRepository gives the core read access to them and offers
UPSERT writers so a deployment (or a test) can seed them.

Follows the same patterns as the other repositories: receives a raw
``sqlite3.Connection``, uses module-level SQL constants, and wraps
mutations in ``with self.conn:`` for automatic commit/rollback.
"""

import sqlite3
from datetime import datetime, timezone

# Codes accepted out of the box; deployments may add more.
DEFAULT_POSITIONS: dict[str, str] = {
    "GK": "Goalkeeper",
    "CB": "Centre Back",
    "LB": "Left Back",
    "RB": "Right Back",
    "LWB": "Left Wing Back",
    "RWB": "Right Wing Back",
    "CDM": "Defensive Midfielder",
    "CM": "Central Midfielder",
    "CAM": "Attacking Midfielder",
    "LM": "Left Midfielder",
    "RM": "Right Midfielder",
    "LW": "Left Winger",
    "RW": "Right Winger",
    "CF": "Centre Forward",
    "ST": "Striker",
}

# ---------------------------------------------------------------------------
# UPSERT SQL constants
# ---------------------------------------------------------------------------

UPSERT_TEAM = """
    INSERT INTO teams (team_id, name, created_by, created_at)
    VALUES (:team_id, :name, :created_by, :created_at)
    ON CONFLICT(team_id) DO UPDATE SET
        name = excluded.name
"""

UPSERT_PLAYER = """
    INSERT INTO players (player_id, name, squad_number, team_id, created_at)
    VALUES (:player_id, :name, :squad_number, :team_id, :created_at)
    ON CONFLICT(player_id) DO UPDATE SET
        name         = excluded.name,
        squad_number = excluded.squad_number,
        team_id      = excluded.team_id
"""

UPSERT_MATCH = """
    INSERT INTO matches (
        match_id, home_team_id, away_team_id, kickoff_at,
        competition, venue, owner_id, is_deleted, created_at
    ) VALUES (
        :match_id, :home_team_id, :away_team_id, :kickoff_at,
        :competition, :venue, :owner_id, :is_deleted, :created_at
    )
    ON CONFLICT(match_id) DO UPDATE SET
        home_team_id = excluded.home_team_id,
        away_team_id = excluded.away_team_id,
        kickoff_at   = excluded.kickoff_at,
        competition  = excluded.competition,
        venue        = excluded.venue,
        owner_id     = excluded.owner_id,
        is_deleted   = excluded.is_deleted
"""

UPSERT_POSITION = """
    INSERT INTO positions (code, long_name) VALUES (?, ?)
    ON CONFLICT(code) DO UPDATE SET long_name = excluded.long_name
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Repository class
# ---------------------------------------------------------------------------

class ReferenceRepository:
    """Read/seed access to teams, players, matches and position codes."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn

    # ------------------------------------------------------------------
    # Seeding
    # ------------------------------------------------------------------

    def upsert_team(self, team_id: str, name: str, created_by: str | None = None) -> None:
        with self.conn:
            self.conn.execute(
                UPSERT_TEAM,
                {"team_id": team_id, "name": name,
                 "created_by": created_by, "created_at": _now()},
            )

    def upsert_player(
        self,
        player_id: str,
        name: str,
        team_id: str | None = None,
        squad_number: int | None = None,
    ) -> None:
        with self.conn:
            self.conn.execute(
                UPSERT_PLAYER,
                {"player_id": player_id, "name": name, "team_id": team_id,
                 "squad_number": squad_number, "created_at": _now()},
            )

    def upsert_match(self, data: dict) -> None:
        """Insert or update a match.  ``match_id`` and ``owner_id`` are required."""
        row = {
            "home_team_id": None,
            "away_team_id": None,
            "kickoff_at": None,
            "competition": None,
            "venue": None,
            "is_deleted": 0,
            "created_at": _now(),
            **data,
        }
        with self.conn:
            self.conn.execute(UPSERT_MATCH, row)

    def upsert_positions(self, positions: dict[str, str] | None = None) -> None:
        """Seed position codes (DEFAULT_POSITIONS when none given)."""
        positions = DEFAULT_POSITIONS if positions is None else positions
        with self.conn:
            self.conn.executemany(UPSERT_POSITION, list(positions.items()))

    # ------------------------------------------------------------------
    # Read methods
    # ------------------------------------------------------------------

    def get_match(self, match_id: str) -> dict | None:
        """Return a match joined with its team names, or None if not found."""
        row = self.conn.execute(
            "SELECT m.*, ht.name AS home_team_name, awt.name AS away_team_name "
            "FROM matches m "
            "LEFT JOIN teams ht ON ht.team_id = m.home_team_id "
            "LEFT JOIN teams awt ON awt.team_id = m.away_team_id "
            "WHERE m.match_id = ?",
            (match_id,),
        ).fetchone()
        return dict(row) if row is not None else None

    def get_player(self, player_id: str) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM players WHERE player_id = ?", (player_id,)
        ).fetchone()
        return dict(row) if row is not None else None

    def get_team(self, team_id: str) -> dict | None:
        row = self.conn.execute(
            "SELECT * FROM teams WHERE team_id = ?", (team_id,)
        ).fetchone()
        return dict(row) if row is not None else None

    def position_exists(self, code: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM positions WHERE code = ?", (code,)
        ).fetchone()
        return row is not None

    def list_positions(self) -> list[str]:
        rows = self.conn.execute("SELECT code FROM positions ORDER BY code").fetchall()
        return [r[0] for r in rows]
