"""Tests for LiveStateAggregator dashboards."""

from datetime import datetime, timedelta, timezone

import pytest

from sideline.access import Caller
from sideline.db import Database
from sideline.event_repository import EventRepository
from sideline.exceptions import Forbidden, NotFound
from sideline.lineups import LineupIntervalManager
from sideline.live_state import LiveStateAggregator
from sideline.models import MatchStatus
from sideline.periods import PeriodStateMachine
from sideline.reference import ReferenceRepository
from sideline.substitution import SubstitutionHandler

OWNER = Caller("coach-1")
KICKOFF = datetime(2026, 3, 1, 15, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, start=KICKOFF):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += timedelta(seconds=seconds)


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "test.db")
    database.initialize()
    ref = ReferenceRepository(database.conn)
    ref.upsert_positions()
    ref.upsert_team("home", "Harbour FC")
    ref.upsert_team("away", "Valley Rovers")
    ref.upsert_match({
        "match_id": "m1", "owner_id": "coach-1",
        "home_team_id": "home", "away_team_id": "away",
    })
    for player_id, name, team in (
        ("pA", "Alex Ash", "home"),
        ("pB", "Billie Birch", "home"),
        ("pC", "Casey Cole", "home"),
        ("pX", "Xan Xu", "away"),
    ):
        ref.upsert_player(player_id, name, team)
    yield database
    database.close()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def aggregator(db, clock):
    return LiveStateAggregator(db.conn, clock=clock)


@pytest.fixture
def events(db):
    return EventRepository(db.conn)


def make_event_data(event_id, kind="goal", minute=10, **overrides):
    data = {
        "event_id": event_id,
        "match_id": "m1",
        "kind": kind,
        "team_id": "home",
        "player_id": "pA",
        "period_number": 1,
        "clock_ms": int(minute * 60_000),
        "notes": None,
        "sentiment": 0,
        "created_by": "coach-1",
        "created_at": f"2026-03-01T15:{int(minute):02d}:00+00:00",
    }
    data.update(overrides)
    return data


class TestEmptyMatch:
    def test_live_state_without_data(self, aggregator):
        state = aggregator.get_live_state(OWNER, "m1")
        assert state.status is MatchStatus.SCHEDULED
        assert state.current_period is None
        assert state.elapsed_seconds == 0
        assert state.current_lineup == []
        assert state.recent_events == []
        assert state.stats.total_goals == 0
        assert state.stats.last_updated is None
        assert state.match["match_id"] == "m1"

    def test_full_details_without_data(self, aggregator):
        details = aggregator.get_full_details(OWNER, "m1")
        assert details.periods == [] and details.events == [] and details.lineups == []
        assert {s.team_id for s in details.team_summaries} == {"home", "away"}
        assert all(s.goals == 0 for s in details.team_summaries)

    def test_timeline_without_data(self, aggregator):
        assert aggregator.get_timeline(OWNER, "m1") == []

    def test_access_checks(self, aggregator):
        with pytest.raises(NotFound):
            aggregator.get_live_state(OWNER, "m404")
        with pytest.raises(Forbidden):
            aggregator.get_timeline(Caller("someone-else"), "m1")


class TestLiveState:
    def test_lineup_follows_match_clock(self, db, aggregator, clock):
        PeriodStateMachine(db.conn, clock=clock).start_period(OWNER, "m1")
        LineupIntervalManager(db.conn).create_interval(OWNER, "m1", "pA", "GK", 0)
        SubstitutionHandler(db.conn).substitute(OWNER, "m1", "pA", "pB", "GK", 30)

        clock.advance(20 * 60)
        state = aggregator.get_live_state(OWNER, "m1")
        assert state.status is MatchStatus.LIVE
        assert state.elapsed_seconds == 1200
        assert state.current_minute == 20
        assert [e.interval.player_id for e in state.current_lineup] == ["pA"]

        clock.advance(15 * 60)
        state = aggregator.get_live_state(OWNER, "m1")
        assert [e.interval.player_id for e in state.current_lineup] == ["pB"]
        assert state.current_lineup[0].player_name == "Billie Birch"

    def test_explicit_minute_overrides_clock(self, db, aggregator):
        LineupIntervalManager(db.conn).create_interval(OWNER, "m1", "pC", "CB", 50)
        state = aggregator.get_live_state(OWNER, "m1", at_minute=60)
        assert state.current_minute == 60
        assert [e.interval.player_id for e in state.current_lineup] == ["pC"]

    def test_recent_events_limited_and_newest_first(self, aggregator, events):
        for minute in range(1, 13):
            events.record(make_event_data(f"e{minute:02d}", kind="tackle", minute=minute))
        state = aggregator.get_live_state(OWNER, "m1")
        minutes = [e.minute for e in state.recent_events]
        assert minutes == list(range(12, 2, -1))

    def test_stats_count_goals_and_own_goals(self, aggregator, events):
        events.record(make_event_data("e1", kind="goal", minute=5))
        events.record(make_event_data("e2", kind="own_goal", minute=12, team_id="away",
                                      player_id="pX"))
        events.record(make_event_data("e3", kind="foul", minute=20))
        state = aggregator.get_live_state(OWNER, "m1")
        assert state.stats.total_goals == 2
        assert state.stats.last_updated == "2026-03-01T15:20:00+00:00"


class TestFullDetails:
    def test_team_summaries(self, db, aggregator, events):
        manager = LineupIntervalManager(db.conn)
        manager.create_interval(OWNER, "m1", "pA", "GK", 0, end_minute=30)
        manager.create_interval(OWNER, "m1", "pB", "GK", 30)
        manager.create_interval(OWNER, "m1", "pX", "ST", 0)
        events.record(make_event_data("e1", kind="goal", minute=5))
        events.record(make_event_data("e2", kind="own_goal", minute=12, team_id="home"))
        events.record(make_event_data("e3", kind="save", minute=20, team_id="away",
                                      player_id="pX"))

        details = aggregator.get_full_details(OWNER, "m1")
        summaries = {s.team_id: s for s in details.team_summaries}

        assert summaries["home"].name == "Harbour FC"
        assert summaries["home"].goals == 1
        assert summaries["home"].events == 2
        assert summaries["home"].players_used == 2
        assert summaries["away"].goals == 1
        assert summaries["away"].events == 1
        assert summaries["away"].players_used == 1
        assert len(details.lineups) == 3
        assert [e.id for e in details.events] == ["e1", "e2", "e3"]

    def test_periods_and_status(self, db, aggregator, clock):
        machine = PeriodStateMachine(db.conn, clock=clock)
        period = machine.start_period(OWNER, "m1")
        clock.advance(60)
        machine.end_period(OWNER, "m1", period.id)
        details = aggregator.get_full_details(OWNER, "m1")
        assert details.status is MatchStatus.PAUSED
        assert [p.id for p in details.periods] == [period.id]


class TestTimeline:
    def test_ascending_with_names(self, aggregator, events):
        events.record(make_event_data("late", minute=40))
        events.record(make_event_data("early", minute=3, team_id="away", player_id="pX"))
        timeline = aggregator.get_timeline(OWNER, "m1")
        assert [e.id for e in timeline] == ["early", "late"]
        assert timeline[0].player_name == "Xan Xu"
        assert timeline[0].team_name == "Valley Rovers"
        assert timeline[1].team_name == "Harbour FC"
