"""Lineup Query Engine: who was on the pitch at minute *t*.

An interval covers *t* when ``start_minute <= t`` and it is either open or
``end_minute > t``: a player subbed off at 30 is gone at 30, the
replacement is already on.
"""

import sqlite3

from sideline.access import Caller, MatchAccess
from sideline.interval_repository import LineupIntervalRepository
from sideline.models import ActivePlayer, LineupEntry, LineupInterval
from sideline.operations import guarded
from sideline.reference import ReferenceRepository
from sideline.validation import require_minute


class LineupQueryEngine:
    """Point-in-time reads over lineup intervals."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self.conn = conn
        self.intervals = LineupIntervalRepository(conn)
        self.access = MatchAccess(ReferenceRepository(conn))

    def get_current_lineup(
        self, caller: Caller, match_id: str, at_minute: float
    ) -> list[LineupEntry]:
        """Intervals covering *at_minute*, latest start first, with player names."""
        operation = "get_current_lineup"
        minute = require_minute(at_minute, {"match_id": match_id, "operation": operation})
        with guarded(operation, match_id):
            self.access.authorize(match_id, caller, operation)
            rows = self.intervals.list_active_at(match_id, minute)
        return to_entries(rows)

    def get_active_players_at_time(
        self, caller: Caller, match_id: str, at_minute: float
    ) -> list[ActivePlayer]:
        """One entry per player on the pitch at *at_minute*.

        Should a player somehow hold two covering stints, the one that
        started last wins.
        """
        operation = "get_active_players_at_time"
        minute = require_minute(at_minute, {"match_id": match_id, "operation": operation})
        with guarded(operation, match_id):
            self.access.authorize(match_id, caller, operation)
            rows = self.intervals.list_active_at(match_id, minute)

        players: dict[str, ActivePlayer] = {}
        for row in rows:
            if row["player_id"] in players:
                continue
            players[row["player_id"]] = ActivePlayer(
                player_id=row["player_id"],
                player_name=row["player_name"],
                position=row["position"],
                start_minute=row["start_minute"],
            )
        return list(players.values())


def to_entries(rows: list[dict]) -> list[LineupEntry]:
    return [
        LineupEntry(interval=LineupInterval.from_row(r), player_name=r.get("player_name"))
        for r in rows
    ]
