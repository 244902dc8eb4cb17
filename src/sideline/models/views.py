"""Read-side result models returned by the query engine, the substitution
handler and the live state aggregator."""

from enum import Enum

from pydantic import BaseModel, Field

from .event import TimelineEvent
from .interval import LineupInterval
from .period import MatchPeriod


class MatchStatus(str, Enum):
    """Match status derived from the period record."""

    SCHEDULED = "SCHEDULED"  # no period yet
    LIVE = "LIVE"            # one period open
    PAUSED = "PAUSED"        # periods exist, none open


class LineupEntry(BaseModel):
    """An interval plus the occupying player's display name."""

    interval: LineupInterval
    player_name: str | None = None


class ActivePlayer(BaseModel):
    player_id: str
    player_name: str | None = None
    position: str
    start_minute: float


class SubstitutionResult(BaseModel):
    off_interval: LineupInterval
    on_interval: LineupInterval
    timeline_events: list[TimelineEvent]
    warnings: list[str] = Field(default_factory=list)


class SubstitutionPair(BaseModel):
    """Outgoing and incoming player paired by order; either side may be empty."""

    player_off_id: str | None = None
    player_on_id: str | None = None


class FormationChangeResult(BaseModel):
    closed: list[LineupInterval] = Field(default_factory=list)
    opened: list[LineupInterval] = Field(default_factory=list)
    substitutions: list[SubstitutionPair] = Field(default_factory=list)
    event: TimelineEvent | None = None
    replayed: bool = False
    warnings: list[str] = Field(default_factory=list)


class BatchItemError(BaseModel):
    key: str
    error: str
    code: str


class BatchOutcome(BaseModel):
    success: int = 0
    failed: int = 0
    errors: list[BatchItemError] = Field(default_factory=list)


class BatchResult(BaseModel):
    created: BatchOutcome = Field(default_factory=BatchOutcome)
    updated: BatchOutcome = Field(default_factory=BatchOutcome)
    deleted: BatchOutcome = Field(default_factory=BatchOutcome)


class LiveStats(BaseModel):
    total_goals: int = 0
    last_updated: str | None = None


class LiveState(BaseModel):
    match: dict
    status: MatchStatus
    current_period: MatchPeriod | None = None
    elapsed_seconds: int = 0
    current_minute: float = 0.0
    current_lineup: list[LineupEntry] = Field(default_factory=list)
    recent_events: list[TimelineEvent] = Field(default_factory=list)
    stats: LiveStats = Field(default_factory=LiveStats)


class TeamSummary(BaseModel):
    team_id: str
    name: str | None = None
    goals: int = 0
    events: int = 0
    players_used: int = 0


class FullDetails(BaseModel):
    match: dict
    status: MatchStatus
    periods: list[MatchPeriod] = Field(default_factory=list)
    events: list[TimelineEvent] = Field(default_factory=list)
    lineups: list[LineupEntry] = Field(default_factory=list)
    team_summaries: list[TeamSummary] = Field(default_factory=list)
