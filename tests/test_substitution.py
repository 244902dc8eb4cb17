"""Tests for SubstitutionHandler: the happy path, each failure mode, and
atomic rollback of the three writes."""

import json
import logging

import pytest

from sideline.access import Caller
from sideline.db import Database
from sideline.event_repository import EventRepository
from sideline.exceptions import (
    Conflict,
    Forbidden,
    InvalidState,
    NotFound,
    PlayerNotOnPitch,
    ValidationFailed,
)
from sideline.lineup_queries import LineupQueryEngine
from sideline.lineups import LineupIntervalManager
from sideline.models import EventKind
from sideline.periods import PeriodStateMachine
from sideline.reference import ReferenceRepository
from sideline.substitution import SubstitutionHandler

OWNER = Caller("coach-1")


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "test.db")
    database.initialize()
    ref = ReferenceRepository(database.conn)
    ref.upsert_positions()
    ref.upsert_team("home", "Harbour FC")
    ref.upsert_match({"match_id": "m1", "owner_id": "coach-1", "home_team_id": "home"})
    for player_id, name in (("pA", "Alex Ash"), ("pB", "Billie Birch"), ("pC", "Casey Cole")):
        ref.upsert_player(player_id, name, "home")
    yield database
    database.close()


@pytest.fixture
def manager(db):
    return LineupIntervalManager(db.conn)


@pytest.fixture
def handler(db):
    return SubstitutionHandler(db.conn)


@pytest.fixture
def events(db):
    return EventRepository(db.conn)


def snapshot(db):
    """Every interval and event row, for before/after comparisons."""
    intervals = [dict(r) for r in db.conn.execute(
        "SELECT * FROM lineup_intervals ORDER BY interval_id").fetchall()]
    events = [dict(r) for r in db.conn.execute(
        "SELECT * FROM match_events ORDER BY event_id").fetchall()]
    return intervals, events


class TestSubstitute:
    def test_goalkeeper_swap(self, db, manager, handler):
        """A plays GK from 0, B replaces A at 30, only B is on at 45."""
        manager.create_interval(OWNER, "m1", "pA", "GK", 0)

        result = handler.substitute(OWNER, "m1", "pA", "pB", "GK", 30)

        assert result.off_interval.end_minute == 30
        assert result.on_interval.start_minute == 30
        assert result.on_interval.end_minute is None
        assert result.warnings == []
        active = LineupQueryEngine(db.conn).get_active_players_at_time(OWNER, "m1", 45)
        assert [p.player_id for p in active] == ["pB"]

    def test_reason_stored_on_outgoing_interval(self, manager, handler):
        manager.create_interval(OWNER, "m1", "pA", "CM", 0)
        result = handler.substitute(OWNER, "m1", "pA", "pB", "CM", 61, reason="injury")
        assert result.off_interval.substitution_reason == "injury"
        assert result.on_interval.substitution_reason is None

    def test_timeline_markers(self, manager, handler, events):
        manager.create_interval(OWNER, "m1", "pA", "GK", 0)
        result = handler.substitute(OWNER, "m1", "pA", "pB", "GK", 30.5)

        kinds = [e.kind for e in result.timeline_events]
        assert kinds == [EventKind.SUBSTITUTION_OFF, EventKind.SUBSTITUTION_ON]
        assert all(e.clock_ms == 1_830_000 for e in result.timeline_events)
        assert [e.player_id for e in result.timeline_events] == ["pA", "pB"]
        assert all(e.team_id == "home" for e in result.timeline_events)
        assert all(e.period_number is None for e in result.timeline_events)
        assert len(events.list_for_match("m1")) == 2

    def test_markers_carry_active_period_number(self, db, manager, handler):
        PeriodStateMachine(db.conn).start_period(OWNER, "m1")
        manager.create_interval(OWNER, "m1", "pA", "GK", 0)
        result = handler.substitute(OWNER, "m1", "pA", "pB", "GK", 30)
        assert all(e.period_number == 1 for e in result.timeline_events)

    def test_zero_length_stint_warns(self, manager, handler, caplog):
        manager.create_interval(OWNER, "m1", "pA", "GK", 30)
        with caplog.at_level(logging.WARNING, logger="sideline.substitution"):
            result = handler.substitute(OWNER, "m1", "pA", "pB", "GK", 30)
        assert result.off_interval.start_minute == result.off_interval.end_minute == 30
        assert len(result.warnings) == 1
        assert "zero-length" in caplog.text

    def test_returning_player_gets_new_stint(self, manager, handler):
        manager.create_interval(OWNER, "m1", "pA", "GK", 0)
        handler.substitute(OWNER, "m1", "pA", "pB", "GK", 30)
        result = handler.substitute(OWNER, "m1", "pB", "pA", "GK", 60)
        stints = manager.list_player_intervals(OWNER, "m1", "pA")
        assert [(s.start_minute, s.end_minute) for s in stints] == [(0, 30), (60, None)]
        assert result.on_interval.id == stints[1].id

    def test_incoming_restores_tombstoned_row(self, manager, handler):
        old = manager.create_interval(OWNER, "m1", "pB", "ST", 30, end_minute=40)
        manager.delete_interval(OWNER, old.id)
        manager.create_interval(OWNER, "m1", "pA", "GK", 0)
        result = handler.substitute(OWNER, "m1", "pA", "pB", "GK", 30)
        assert result.on_interval.id == old.id
        assert result.on_interval.position == "GK"
        assert result.on_interval.end_minute is None


class TestSubstituteFailures:
    def test_outgoing_not_on_pitch(self, handler):
        with pytest.raises(PlayerNotOnPitch, match="not currently on the pitch"):
            handler.substitute(OWNER, "m1", "pA", "pB", "GK", 30)

    def test_outgoing_came_on_later(self, manager, handler):
        manager.create_interval(OWNER, "m1", "pA", "GK", 40)
        with pytest.raises(InvalidState, match="after the substitution minute"):
            handler.substitute(OWNER, "m1", "pA", "pB", "GK", 30)

    def test_same_player_rejected(self, handler):
        with pytest.raises(ValidationFailed, match="different players"):
            handler.substitute(OWNER, "m1", "pA", "pA", "GK", 30)

    def test_unknown_position(self, manager, handler):
        manager.create_interval(OWNER, "m1", "pA", "GK", 0)
        with pytest.raises(ValidationFailed):
            handler.substitute(OWNER, "m1", "pA", "pB", "ZZ", 30)

    def test_unknown_incoming_player(self, manager, handler):
        manager.create_interval(OWNER, "m1", "pA", "GK", 0)
        with pytest.raises(NotFound):
            handler.substitute(OWNER, "m1", "pA", "nobody", "GK", 30)

    def test_forbidden(self, manager, handler):
        manager.create_interval(OWNER, "m1", "pA", "GK", 0)
        with pytest.raises(Forbidden):
            handler.substitute(Caller("someone-else"), "m1", "pA", "pB", "GK", 30)

    def test_incoming_already_on_pitch_rolls_back(self, db, manager, handler):
        manager.create_interval(OWNER, "m1", "pA", "GK", 0)
        manager.create_interval(OWNER, "m1", "pB", "CB", 0)
        before = snapshot(db)

        with pytest.raises(Conflict, match="already on the pitch"):
            handler.substitute(OWNER, "m1", "pA", "pB", "GK", 30)

        assert snapshot(db) == before
        assert manager.list_player_intervals(OWNER, "m1", "pA")[0].is_open

    def test_incoming_overlapping_earlier_stint_rolls_back(self, db, manager, handler):
        manager.create_interval(OWNER, "m1", "pA", "GK", 0)
        manager.create_interval(OWNER, "m1", "pB", "CB", 20, end_minute=50)
        before = snapshot(db)

        with pytest.raises(Conflict):
            handler.substitute(OWNER, "m1", "pA", "pB", "GK", 30)

        assert snapshot(db) == before


def slot(player_id, position, x=None, y=None):
    return {"player_id": player_id, "position": position, "pitch_x": x, "pitch_y": y}


class TestFormationChange:
    def test_move_and_bring_on(self, db, manager, handler):
        keeper = manager.create_interval(OWNER, "m1", "pA", "GK", 0)
        manager.create_interval(OWNER, "m1", "pB", "CB", 0)

        result = handler.apply_formation_change(
            OWNER, "m1", 60, [slot("pA", "GK"), slot("pB", "CM"), slot("pC", "CB")]
        )

        assert [(i.player_id, i.end_minute) for i in result.closed] == [("pB", 60)]
        assert sorted((i.player_id, i.position) for i in result.opened) == [
            ("pB", "CM"), ("pC", "CB"),
        ]
        assert manager.get_interval(OWNER, keeper.id).is_open
        assert [(p.player_off_id, p.player_on_id) for p in result.substitutions] == [
            (None, "pC"),
        ]
        active = LineupQueryEngine(db.conn).get_active_players_at_time(OWNER, "m1", 70)
        assert {(p.player_id, p.position) for p in active} == {
            ("pA", "GK"), ("pB", "CM"), ("pC", "CB"),
        }

    def test_players_left_out_go_off(self, manager, handler):
        manager.create_interval(OWNER, "m1", "pA", "GK", 0)
        manager.create_interval(OWNER, "m1", "pB", "CB", 0)

        result = handler.apply_formation_change(
            OWNER, "m1", 45, [slot("pA", "GK"), slot("pC", "CB")], reason="tactical"
        )

        assert [(i.player_id, i.end_minute) for i in result.closed] == [("pB", 45)]
        assert result.closed[0].substitution_reason == "tactical"
        assert [(p.player_off_id, p.player_on_id) for p in result.substitutions] == [
            ("pB", "pC"),
        ]

    def test_coordinates_stored(self, handler):
        result = handler.apply_formation_change(
            OWNER, "m1", 0, [slot("pA", "GK", 5, 50), slot("pB", "ST", 85.5, 48)]
        )
        coords = {i.player_id: (i.pitch_x, i.pitch_y) for i in result.opened}
        assert coords == {"pA": (5, 50), "pB": (85.5, 48)}

    def test_single_marker_event(self, db, manager, handler, events):
        PeriodStateMachine(db.conn).start_period(OWNER, "m1")
        manager.create_interval(OWNER, "m1", "pA", "GK", 0)

        result = handler.apply_formation_change(
            OWNER, "m1", 45, [slot("pB", "GK")], reason="injury"
        )

        event = result.event
        assert event.kind is EventKind.FORMATION_CHANGE
        assert event.clock_ms == 2_700_000
        assert event.period_number == 1
        assert event.team_id is None
        notes = json.loads(event.notes)
        assert notes["reason"] == "injury"
        assert notes["substitutions"] == [{"player_off_id": "pA", "player_on_id": "pB"}]
        assert [e["kind"] for e in events.list_for_match("m1")] == ["formation_change"]

    def test_stint_starting_at_change_minute_rewritten_in_place(self, manager, handler):
        original = manager.create_interval(OWNER, "m1", "pA", "GK", 30)
        result = handler.apply_formation_change(OWNER, "m1", 30, [slot("pA", "CB", 20, 50)])
        assert result.closed == []
        assert [i.id for i in result.opened] == [original.id]
        assert result.opened[0].position == "CB"
        assert result.opened[0].is_open


class TestFormationChangeReplay:
    def test_same_change_id_applies_once(self, db, manager, handler):
        manager.create_interval(OWNER, "m1", "pA", "GK", 0)
        first = handler.apply_formation_change(
            OWNER, "m1", 45, [slot("pB", "GK")], change_id="change-1"
        )
        before = snapshot(db)

        again = handler.apply_formation_change(
            OWNER, "m1", 45, [slot("pB", "GK")], change_id="change-1"
        )

        assert first.event.id == "change-1"
        assert not first.replayed
        assert again.replayed
        assert again.event.id == "change-1"
        assert again.opened == again.closed == []
        assert snapshot(db) == before

    def test_change_id_of_other_event_conflicts(self, manager, handler):
        manager.create_interval(OWNER, "m1", "pA", "GK", 0)
        marker = handler.substitute(OWNER, "m1", "pA", "pB", "GK", 30).timeline_events[0]
        with pytest.raises(Conflict, match="different event") as exc_info:
            handler.apply_formation_change(
                OWNER, "m1", 40, [slot("pC", "GK")], change_id=marker.id
            )
        assert not exc_info.value.retryable


class TestFormationChangeFailures:
    def test_duplicate_player_rejected(self, handler):
        with pytest.raises(ValidationFailed, match="appears twice"):
            handler.apply_formation_change(
                OWNER, "m1", 10, [slot("pA", "GK"), slot("pA", "CB")]
            )

    def test_empty_formation_rejected(self, handler):
        with pytest.raises(ValidationFailed):
            handler.apply_formation_change(OWNER, "m1", 10, [])

    def test_unknown_position(self, handler):
        with pytest.raises(ValidationFailed, match="Unknown position"):
            handler.apply_formation_change(OWNER, "m1", 10, [slot("pA", "ZZ")])

    def test_coordinates_out_of_range(self, handler):
        with pytest.raises(ValidationFailed):
            handler.apply_formation_change(OWNER, "m1", 10, [slot("pA", "GK", 120, 50)])

    def test_player_came_on_later(self, manager, handler):
        manager.create_interval(OWNER, "m1", "pA", "GK", 50)
        with pytest.raises(InvalidState, match="after the substitution minute"):
            handler.apply_formation_change(OWNER, "m1", 40, [slot("pB", "GK")])

    def test_forbidden(self, handler):
        with pytest.raises(Forbidden):
            handler.apply_formation_change(Caller("someone-else"), "m1", 0, [slot("pA", "GK")])

    def test_overlap_rolls_back_every_player(self, db, manager, handler):
        manager.create_interval(OWNER, "m1", "pA", "GK", 0)
        manager.create_interval(OWNER, "m1", "pC", "CB", 20, end_minute=70)
        before = snapshot(db)

        with pytest.raises(Conflict, match="already played past"):
            handler.apply_formation_change(
                OWNER, "m1", 30, [slot("pB", "GK"), slot("pC", "CB")]
            )

        assert snapshot(db) == before
