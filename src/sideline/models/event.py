"""Pydantic v2 models for match timeline events.

The event log belongs to an external collaborator; the core reads it for
the live views and appends substitution and formation-change markers.
"""

from enum import Enum

from pydantic import BaseModel

MS_PER_MINUTE = 60_000


class EventKind(str, Enum):
    GOAL = "goal"
    ASSIST = "assist"
    KEY_PASS = "key_pass"
    SAVE = "save"
    INTERCEPTION = "interception"
    TACKLE = "tackle"
    FOUL = "foul"
    PENALTY = "penalty"
    FREE_KICK = "free_kick"
    BALL_OUT = "ball_out"
    OWN_GOAL = "own_goal"
    SUBSTITUTION_OFF = "substitution_off"
    SUBSTITUTION_ON = "substitution_on"
    FORMATION_CHANGE = "formation_change"


# Kinds that count toward the score line
SCORING_KINDS = frozenset({EventKind.GOAL.value, EventKind.OWN_GOAL.value})


class TimelineEvent(BaseModel):
    """A stored event, optionally enriched with player and team names."""

    id: str
    match_id: str
    kind: EventKind
    team_id: str | None = None
    player_id: str | None = None
    period_number: int | None = None
    clock_ms: int
    notes: str | None = None
    sentiment: int = 0
    created_by: str | None = None
    created_at: str
    player_name: str | None = None
    team_name: str | None = None

    @property
    def minute(self) -> float:
        return self.clock_ms / MS_PER_MINUTE

    @classmethod
    def from_row(cls, row: dict) -> "TimelineEvent":
        return cls(
            id=row["event_id"],
            match_id=row["match_id"],
            kind=row["kind"],
            team_id=row["team_id"],
            player_id=row["player_id"],
            period_number=row["period_number"],
            clock_ms=row["clock_ms"],
            notes=row["notes"],
            sentiment=row["sentiment"],
            created_by=row["created_by"],
            created_at=row["created_at"],
            player_name=row.get("player_name"),
            team_name=row.get("team_name"),
        )
