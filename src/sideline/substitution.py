"""Substitution Transaction Handler.

A substitution is three writes that must land together: close the
outgoing player's open interval, open the incoming player's interval, and
append the ``substitution_off`` / ``substitution_on`` markers to the event
log.  A formation change is the same transaction over many players at
once, with a single ``formation_change`` marker.  Everything runs inside
one ``BEGIN IMMEDIATE`` transaction; any exception rolls every step back.
"""

import json
import logging
import sqlite3
from itertools import zip_longest

from sideline.access import Caller, MatchAccess
from sideline.config import CoreConfig
from sideline.db import run_write
from sideline.event_repository import EventRepository
from sideline.exceptions import Conflict, InvalidState, PlayerNotOnPitch
from sideline.interval_repository import LineupIntervalRepository
from sideline.models import (
    EventKind,
    FormationChangeRequest,
    FormationChangeResult,
    LineupInterval,
    SubstitutionPair,
    SubstitutionRequest,
    SubstitutionResult,
    TimelineEvent,
)
from sideline.models.event import MS_PER_MINUTE
from sideline.operations import guarded, new_id, timestamp
from sideline.period_repository import PeriodRepository
from sideline.reference import ReferenceRepository
from sideline.validation import validate_payload

logger = logging.getLogger(__name__)


class SubstitutionHandler:
    def __init__(self, conn: sqlite3.Connection, config: CoreConfig | None = None) -> None:
        self.conn = conn
        self.config = config or CoreConfig()
        self.intervals = LineupIntervalRepository(conn)
        self.periods = PeriodRepository(conn)
        self.events = EventRepository(conn)
        self.access = MatchAccess(ReferenceRepository(conn))

    def substitute(
        self,
        caller: Caller,
        match_id: str,
        player_off_id: str,
        player_on_id: str,
        position: str,
        at_minute: float,
        reason: str | None = None,
    ) -> SubstitutionResult:
        """Swap *player_off_id* for *player_on_id* at *at_minute*.

        Raises:
            ValidationFailed: Same player on both sides, bad minute or
                unknown position.
            NotFound: Match or either player unknown.
            PlayerNotOnPitch: Outgoing player has no open interval.
            InvalidState: Outgoing player came on after *at_minute*.
            Conflict: Incoming player already on the pitch or would overlap
                one of their earlier stints.
        """
        operation = "substitute"
        payload = {
            "match_id": match_id,
            "player_off_id": player_off_id,
            "player_on_id": player_on_id,
            "position": position,
            "at_minute": at_minute,
            "reason": reason,
        }
        request = validate_payload(
            payload, SubstitutionRequest, {"match_id": match_id, "operation": operation}
        )

        def work() -> SubstitutionResult:
            self.access.authorize(match_id, caller, operation)
            self.access.require_position(request.position, match_id, operation)
            player_off = self.access.require_player(request.player_off_id, match_id, operation)
            player_on = self.access.require_player(request.player_on_id, match_id, operation)
            now = timestamp()

            current = self.intervals.get_open_for_player(match_id, request.player_off_id)
            if current is None:
                raise PlayerNotOnPitch(
                    "Player is not currently on the pitch",
                    match_id=match_id,
                    operation=operation,
                )
            off_interval, warnings = self._close(
                current, request.at_minute, request.reason, now, operation
            )
            if self.intervals.get_open_for_player(match_id, request.player_on_id):
                raise Conflict(
                    f"Player {request.player_on_id} is already on the pitch",
                    match_id=match_id,
                    operation=operation,
                )
            on_interval = self._open(
                match_id, request.player_on_id, request.position, request.at_minute,
                caller, now, operation,
            )

            timeline = [
                self._append_event(
                    match_id, kind, request.at_minute, caller, now,
                    team_id=player["team_id"], player_id=player["player_id"],
                    notes=request.reason,
                )
                for kind, player in (
                    (EventKind.SUBSTITUTION_OFF, player_off),
                    (EventKind.SUBSTITUTION_ON, player_on),
                )
            ]
            return SubstitutionResult(
                off_interval=off_interval,
                on_interval=on_interval,
                timeline_events=timeline,
                warnings=warnings,
            )

        with guarded(operation, match_id, payload):
            result = run_write(self.conn, work, self.config)

        logger.info(
            "Substitution in match %s at minute %g: %s off, %s on",
            match_id, request.at_minute, request.player_off_id, request.player_on_id,
        )
        return result

    def apply_formation_change(
        self,
        caller: Caller,
        match_id: str,
        at_minute: float,
        players: list[dict],
        reason: str | None = None,
        change_id: str | None = None,
    ) -> FormationChangeResult:
        """Make *players* the lineup from *at_minute* onward.

        Each entry of *players* carries ``player_id``, ``position`` and
        optional ``pitch_x`` / ``pitch_y``.  Players on the pitch who are
        missing from the list go off; listed players not on the pitch come
        on; players whose position or coordinates changed get a new stint.
        Unchanged players keep their current interval.

        A replay with an already recorded *change_id* writes nothing and
        returns ``replayed=True``.

        Raises:
            ValidationFailed: Duplicate player, bad minute or coordinates,
                unknown position.
            NotFound: Match or a listed player unknown.
            InvalidState: A player on the pitch came on after *at_minute*.
            Conflict: *change_id* belongs to another event, or an incoming
                player would overlap one of their earlier stints.
        """
        operation = "apply_formation_change"
        payload = {
            "match_id": match_id,
            "at_minute": at_minute,
            "players": players,
            "reason": reason,
            "change_id": change_id,
        }
        request = validate_payload(
            payload, FormationChangeRequest, {"match_id": match_id, "operation": operation}
        )

        def work() -> FormationChangeResult:
            self.access.authorize(match_id, caller, operation)
            if request.change_id:
                recorded = self.events.get(request.change_id)
                if recorded is not None:
                    return self._replayed_change(recorded, request, operation)

            for slot in request.players:
                self.access.require_position(slot.position, match_id, operation)
                self.access.require_player(slot.player_id, match_id, operation)

            now = timestamp()
            wanted = {slot.player_id: slot for slot in request.players}
            current = self.intervals.list_open_for_match(match_id)
            on_pitch = {row["player_id"] for row in current}
            result = FormationChangeResult()

            for row in current:
                slot = wanted.get(row["player_id"])
                if slot is not None and (
                    row["position"], row["pitch_x"], row["pitch_y"]
                ) == (slot.position, slot.pitch_x, slot.pitch_y):
                    continue
                if slot is not None and row["start_minute"] == request.at_minute:
                    # Came on at this minute: rewrite the stint in place
                    self.intervals.patch(
                        row["interval_id"],
                        {"position": slot.position, "pitch_x": slot.pitch_x,
                         "pitch_y": slot.pitch_y},
                        now,
                    )
                    result.opened.append(
                        LineupInterval.from_row(self.intervals.get(row["interval_id"]))
                    )
                    continue
                closed, warnings = self._close(
                    row, request.at_minute, request.reason, now, operation
                )
                result.closed.append(closed)
                result.warnings.extend(warnings)
                if slot is not None:
                    result.opened.append(self._open(
                        match_id, slot.player_id, slot.position, request.at_minute,
                        caller, now, operation, slot.pitch_x, slot.pitch_y,
                        request.reason,
                    ))

            for slot in request.players:
                if slot.player_id not in on_pitch:
                    result.opened.append(self._open(
                        match_id, slot.player_id, slot.position, request.at_minute,
                        caller, now, operation, slot.pitch_x, slot.pitch_y,
                        request.reason,
                    ))

            outs = [row["player_id"] for row in current if row["player_id"] not in wanted]
            ins = [slot.player_id for slot in request.players if slot.player_id not in on_pitch]
            result.substitutions = [
                SubstitutionPair(player_off_id=off, player_on_id=on)
                for off, on in zip_longest(outs, ins)
            ]
            notes = json.dumps({
                "reason": request.reason,
                "substitutions": [pair.model_dump() for pair in result.substitutions],
                "formation": [slot.model_dump() for slot in request.players],
            })
            result.event = self._append_event(
                match_id, EventKind.FORMATION_CHANGE, request.at_minute, caller, now,
                notes=notes, event_id=request.change_id,
            )
            return result

        with guarded(operation, match_id, payload):
            result = run_write(self.conn, work, self.config)

        if not result.replayed:
            logger.info(
                "Formation change in match %s at minute %g: %d closed, %d opened",
                match_id, request.at_minute, len(result.closed), len(result.opened),
            )
        return result

    # ------------------------------------------------------------------
    # Internal helpers (called inside an open transaction)
    # ------------------------------------------------------------------

    def _replayed_change(
        self, recorded: dict, request: FormationChangeRequest, operation: str
    ) -> FormationChangeResult:
        if (
            recorded["match_id"] != request.match_id
            or recorded["kind"] != EventKind.FORMATION_CHANGE.value
        ):
            raise Conflict(
                f"change_id {request.change_id} is already used by a different event",
                match_id=request.match_id,
                operation=operation,
            )
        logger.debug("Replayed formation change %s", request.change_id)
        return FormationChangeResult(
            event=TimelineEvent.from_row(recorded), replayed=True
        )

    def _close(
        self, row: dict, at_minute: float, reason: str | None, now: str, operation: str
    ) -> tuple[LineupInterval, list[str]]:
        """End an open interval at *at_minute*; warn on a zero-length stint."""
        if row["start_minute"] > at_minute:
            raise InvalidState(
                f"Player came on at minute {row['start_minute']:g}, "
                f"after the substitution minute {at_minute:g}",
                match_id=row["match_id"],
                operation=operation,
            )

        warnings = []
        if row["start_minute"] == at_minute:
            message = (
                f"Player {row['player_id']} is substituted at the minute "
                f"they came on ({at_minute:g}); recording a zero-length stint"
            )
            logger.warning("%s (match %s)", message, row["match_id"])
            warnings.append(message)

        self.intervals.close(row["interval_id"], at_minute, now, reason)
        return LineupInterval.from_row(self.intervals.get(row["interval_id"])), warnings

    def _open(
        self,
        match_id: str,
        player_id: str,
        position: str,
        at_minute: float,
        caller: Caller,
        now: str,
        operation: str,
        pitch_x: float | None = None,
        pitch_y: float | None = None,
        reason: str | None = None,
    ) -> LineupInterval:
        """Open a stint from *at_minute*, restoring a tombstoned row on the same key."""
        existing = self.intervals.get_by_key(match_id, player_id, at_minute)
        if existing is not None and existing["deleted_at"] is None:
            raise Conflict(
                "An interval already exists for this player at this start minute",
                match_id=match_id,
                operation=operation,
            )
        clashes = self.intervals.find_overlapping(
            match_id, player_id, at_minute, None,
            existing["interval_id"] if existing else "",
        )
        if clashes:
            raise Conflict(
                f"Player {player_id} already played past minute {at_minute:g}",
                match_id=match_id,
                operation=operation,
            )

        data = {
            "match_id": match_id,
            "player_id": player_id,
            "position": position,
            "start_minute": at_minute,
            "end_minute": None,
            "pitch_x": pitch_x,
            "pitch_y": pitch_y,
            "substitution_reason": reason,
            "created_by": caller.user_id,
            "now": now,
        }
        if existing is not None:
            data["interval_id"] = existing["interval_id"]
            self.intervals.restore(data)
            logger.warning(
                "Restored deleted interval %s for incoming player %s",
                existing["interval_id"], player_id,
            )
        else:
            data["interval_id"] = new_id()
            self.intervals.insert(data)
        return LineupInterval.from_row(self.intervals.get(data["interval_id"]))

    def _append_event(
        self,
        match_id: str,
        kind: EventKind,
        at_minute: float,
        caller: Caller,
        now: str,
        team_id: str | None = None,
        player_id: str | None = None,
        notes: str | None = None,
        event_id: str | None = None,
    ) -> TimelineEvent:
        active = self.periods.get_active(match_id)
        event_id = event_id or new_id()
        self.events.insert({
            "event_id": event_id,
            "match_id": match_id,
            "kind": kind.value,
            "team_id": team_id,
            "player_id": player_id,
            "period_number": active["period_number"] if active else None,
            "clock_ms": round(at_minute * MS_PER_MINUTE),
            "notes": notes,
            "sentiment": 0,
            "created_by": caller.user_id,
            "created_at": now,
        })
        return TimelineEvent.from_row(self.events.get(event_id))
