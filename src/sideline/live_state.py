"""Live State Aggregator: read-only dashboards over one match.

Each view is assembled from a single WAL read snapshot so the lineup,
period and event sections agree with each other even while devices keep
writing.  Matches without data yield empty collections, never errors.
"""

import logging
import sqlite3
from datetime import datetime
from typing import Callable

from sideline.access import Caller, MatchAccess
from sideline.config import CoreConfig
from sideline.db import read_snapshot
from sideline.event_repository import EventRepository
from sideline.interval_repository import LineupIntervalRepository
from sideline.lineup_queries import to_entries
from sideline.models import (
    FullDetails,
    LiveState,
    LiveStats,
    MatchPeriod,
    TeamSummary,
    TimelineEvent,
)
from sideline.models.event import EventKind, SCORING_KINDS
from sideline.operations import guarded, utc_now
from sideline.period_repository import PeriodRepository
from sideline.periods import PeriodStateMachine
from sideline.reference import ReferenceRepository
from sideline.validation import require_minute

logger = logging.getLogger(__name__)


class LiveStateAggregator:
    def __init__(
        self,
        conn: sqlite3.Connection,
        config: CoreConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.conn = conn
        self.config = config or CoreConfig()
        self.intervals = LineupIntervalRepository(conn)
        self.periods = PeriodRepository(conn)
        self.events = EventRepository(conn)
        self.access = MatchAccess(ReferenceRepository(conn))
        self.period_machine = PeriodStateMachine(conn, self.config, clock)

    def get_live_state(
        self, caller: Caller, match_id: str, at_minute: float | None = None
    ) -> LiveState:
        """Snapshot for the live dashboard.

        The lineup is taken at *at_minute* when given, otherwise at the
        elapsed match clock.
        """
        operation = "get_live_state"
        minute = None
        if at_minute is not None:
            minute = require_minute(at_minute, {"match_id": match_id, "operation": operation})

        with guarded(operation, match_id), read_snapshot(self.conn):
            match = self.access.authorize(match_id, caller, operation)
            active = self.periods.get_active(match_id)
            elapsed = self.period_machine.elapsed_for(match_id)
            status = self.period_machine.status_for(match_id)
            now_minute = minute if minute is not None else elapsed / 60
            lineup_rows = self.intervals.list_active_at(match_id, now_minute)
            recent_rows = self.events.list_recent(match_id, self.config.live_event_limit)
            goals = self.events.count_kinds(match_id, SCORING_KINDS)
            last_updated = self.events.last_created_at(match_id)

        logger.debug(
            "Live state for match %s: %s, minute %.2f, %d on pitch",
            match_id, status.value, now_minute, len(lineup_rows),
        )
        return LiveState(
            match=match,
            status=status,
            current_period=MatchPeriod.from_row(active) if active else None,
            elapsed_seconds=elapsed,
            current_minute=now_minute,
            current_lineup=to_entries(lineup_rows),
            recent_events=[TimelineEvent.from_row(r) for r in recent_rows],
            stats=LiveStats(total_goals=goals, last_updated=last_updated),
        )

    def get_full_details(self, caller: Caller, match_id: str) -> FullDetails:
        """Everything recorded for a match, plus per-team summaries."""
        operation = "get_full_details"
        with guarded(operation, match_id), read_snapshot(self.conn):
            match = self.access.authorize(match_id, caller, operation)
            status = self.period_machine.status_for(match_id)
            period_rows = self.periods.list_for_match(match_id)
            event_rows = self.events.list_for_match(match_id)
            interval_rows = self.intervals.list_for_match(match_id)

        events = [TimelineEvent.from_row(r) for r in event_rows]
        return FullDetails(
            match=match,
            status=status,
            periods=[MatchPeriod.from_row(r) for r in period_rows],
            events=events,
            lineups=to_entries(interval_rows),
            team_summaries=summarize_teams(match, events, interval_rows),
        )

    def get_timeline(self, caller: Caller, match_id: str) -> list[TimelineEvent]:
        """Events in clock order with player and team names."""
        operation = "get_timeline"
        with guarded(operation, match_id):
            self.access.authorize(match_id, caller, operation)
            rows = self.events.list_for_match(match_id)
        return [TimelineEvent.from_row(r) for r in rows]


def summarize_teams(
    match: dict, events: list[TimelineEvent], interval_rows: list[dict]
) -> list[TeamSummary]:
    """Goals, event counts and distinct players used, per team.

    An own goal is scored for the other side of the fixture.
    """
    home, away = match.get("home_team_id"), match.get("away_team_id")
    summaries: dict[str, TeamSummary] = {}
    if home:
        summaries[home] = TeamSummary(team_id=home, name=match.get("home_team_name"))
    if away:
        summaries[away] = TeamSummary(team_id=away, name=match.get("away_team_name"))

    def summary(team_id: str, name: str | None = None) -> TeamSummary:
        if team_id not in summaries:
            summaries[team_id] = TeamSummary(team_id=team_id, name=name)
        return summaries[team_id]

    for event in events:
        if not event.team_id:
            continue
        summary(event.team_id, event.team_name).events += 1
        if event.kind is EventKind.GOAL:
            summary(event.team_id).goals += 1
        elif event.kind is EventKind.OWN_GOAL:
            beneficiary = {home: away, away: home}.get(event.team_id)
            if beneficiary:
                summary(beneficiary).goals += 1

    players: dict[str, set[str]] = {}
    for row in interval_rows:
        if row.get("team_id"):
            players.setdefault(row["team_id"], set()).add(row["player_id"])
    for team_id, used in players.items():
        summary(team_id).players_used = len(used)

    return list(summaries.values())
