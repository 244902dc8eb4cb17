"""Lineup Interval Manager: create, update and soft-delete intervals.

Every write runs in one ``BEGIN IMMEDIATE`` transaction (``db.run_write``)
so the natural-key lookup, the overlap check and the write itself see the
same state.  The partial unique index on open intervals backs this up when
another process slips in between; ``guarded`` maps that to Conflict.

Replay semantics on the natural key (match_id, player_id, start_minute):

* tombstoned row  -> restored in place (same id), fields overwritten
* identical row   -> returned unchanged
* different row   -> Conflict
"""

import logging
import sqlite3
from collections.abc import Iterable

from sideline.access import Caller, MatchAccess
from sideline.config import CoreConfig
from sideline.db import run_write
from sideline.exceptions import Conflict, NotFound, SidelineError, ValidationFailed
from sideline.interval_repository import LineupIntervalRepository
from sideline.models import IntervalCreate, IntervalPatch, LineupInterval
from sideline.models.views import BatchItemError, BatchOutcome, BatchResult
from sideline.operations import guarded, new_id, timestamp
from sideline.reference import ReferenceRepository
from sideline.validation import require_minute, validate_payload

logger = logging.getLogger(__name__)

# Fields compared when deciding whether a create is a replay
_REPLAY_FIELDS = ("position", "end_minute", "pitch_x", "pitch_y", "substitution_reason")


class LineupIntervalManager:
    """Writes and direct lookups for lineup intervals."""

    def __init__(self, conn: sqlite3.Connection, config: CoreConfig | None = None) -> None:
        self.conn = conn
        self.config = config or CoreConfig()
        self.intervals = LineupIntervalRepository(conn)
        self.access = MatchAccess(ReferenceRepository(conn))

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_interval(
        self,
        caller: Caller,
        match_id: str,
        player_id: str,
        position: str,
        start_minute: float,
        end_minute: float | None = None,
        pitch_x: float | None = None,
        pitch_y: float | None = None,
        substitution_reason: str | None = None,
    ) -> LineupInterval:
        """Record that *player_id* plays *position* from *start_minute*.

        Raises:
            ValidationFailed: Bad range, coordinates or unknown position.
            NotFound: Match or player unknown.
            Forbidden: Caller may not manage the match.
            Conflict: Overlaps another stint, or the natural key is taken
                by an interval with different fields.
        """
        operation = "create_interval"
        payload = {
            "match_id": match_id,
            "player_id": player_id,
            "position": position,
            "start_minute": start_minute,
            "end_minute": end_minute,
            "pitch_x": pitch_x,
            "pitch_y": pitch_y,
            "substitution_reason": substitution_reason,
        }
        request = validate_payload(
            payload, IntervalCreate, {"match_id": match_id, "operation": operation}
        )

        def work() -> LineupInterval:
            self.access.authorize(request.match_id, caller, operation)
            self.access.require_position(request.position, request.match_id, operation)
            self.access.require_player(request.player_id, request.match_id, operation)
            return self._write_interval(request, caller, operation)

        with guarded(operation, match_id, payload):
            return run_write(self.conn, work, self.config)

    def update_interval(self, caller: Caller, interval_id: str, **patch) -> LineupInterval:
        """Apply a partial update.  ``end_minute=None`` re-opens the stint."""
        operation = "update_interval"
        request = validate_payload(patch, IntervalPatch, {"operation": operation})
        changes = request.changes()

        def work() -> LineupInterval:
            row = self._live_row(interval_id, operation)
            match_id = row["match_id"]
            self.access.authorize(match_id, caller, operation)
            if "position" in changes:
                self.access.require_position(changes["position"], match_id, operation)

            end_minute = changes.get("end_minute", row["end_minute"])
            # Zero-length stints from substitute keep their end when it is not patched
            if (
                "end_minute" in changes
                and end_minute is not None
                and end_minute <= row["start_minute"]
            ):
                raise ValidationFailed(
                    f"end_minute ({end_minute}) must be greater than "
                    f"start_minute ({row['start_minute']})",
                    match_id=match_id,
                    operation=operation,
                )
            self._check_overlap(
                match_id, row["player_id"], row["start_minute"], end_minute,
                operation, exclude_id=interval_id,
            )
            self.intervals.patch(interval_id, changes, timestamp())
            return LineupInterval.from_row(self.intervals.get(interval_id))

        with guarded(operation, None, {"interval_id": interval_id, **changes}):
            return run_write(self.conn, work, self.config)

    def delete_interval(self, caller: Caller, interval_id: str) -> LineupInterval:
        """Soft-delete an interval; the row stays for a later restore."""
        operation = "delete_interval"

        def work() -> LineupInterval:
            row = self._live_row(interval_id, operation)
            self.access.authorize(row["match_id"], caller, operation)
            self.intervals.tombstone(interval_id, caller.user_id, timestamp())
            return LineupInterval.from_row(self.intervals.get(interval_id))

        with guarded(operation, None, {"interval_id": interval_id}):
            interval = run_write(self.conn, work, self.config)
        logger.info("Deleted interval %s (match %s)", interval_id, interval.match_id)
        return interval

    def batch(
        self,
        caller: Caller,
        create: Iterable[dict] = (),
        update: Iterable[dict] = (),
        delete: Iterable[str] = (),
    ) -> BatchResult:
        """Apply many writes, each in its own transaction.

        ``create`` items carry create_interval keyword arguments, ``update``
        items carry ``id`` plus the patch fields, ``delete`` is a list of
        interval ids.  Failures are collected per item instead of aborting
        the batch.
        """
        result = BatchResult()

        for item in create:
            key = "{}:{}:{}".format(
                item.get("match_id"), item.get("player_id"), item.get("start_minute")
            )
            self._batch_step(result.created, key, lambda: self.create_interval(caller, **item))

        for item in update:
            fields = dict(item)
            interval_id = fields.pop("id", None)
            self._batch_step(
                result.updated, str(interval_id),
                lambda: self.update_interval(caller, interval_id, **fields),
            )

        for interval_id in delete:
            self._batch_step(
                result.deleted, str(interval_id),
                lambda: self.delete_interval(caller, interval_id),
            )

        logger.info(
            "Batch by %s: created %d/%d, updated %d/%d, deleted %d/%d",
            caller.user_id,
            result.created.success, result.created.success + result.created.failed,
            result.updated.success, result.updated.success + result.updated.failed,
            result.deleted.success, result.deleted.success + result.deleted.failed,
        )
        return result

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_interval(self, caller: Caller, interval_id: str) -> LineupInterval:
        operation = "get_interval"
        with guarded(operation):
            row = self._live_row(interval_id, operation)
            self.access.authorize(row["match_id"], caller, operation)
        return LineupInterval.from_row(row)

    def get_interval_by_key(
        self, caller: Caller, match_id: str, player_id: str, start_minute: float
    ) -> LineupInterval:
        operation = "get_interval_by_key"
        minute = require_minute(start_minute, {"match_id": match_id, "operation": operation})
        with guarded(operation, match_id):
            self.access.authorize(match_id, caller, operation)
            row = self.intervals.get_by_key(match_id, player_id, minute)
        if row is None or row["deleted_at"] is not None:
            raise NotFound(
                f"No interval for player {player_id} starting at minute {minute}",
                match_id=match_id,
                operation=operation,
            )
        return LineupInterval.from_row(row)

    def list_match_intervals(self, caller: Caller, match_id: str) -> list[LineupInterval]:
        """Every live stint of the match, earliest start first."""
        operation = "list_match_intervals"
        with guarded(operation, match_id):
            self.access.authorize(match_id, caller, operation)
            rows = self.intervals.list_for_match(match_id)
        return [LineupInterval.from_row(r) for r in rows]

    def list_player_intervals(
        self, caller: Caller, match_id: str, player_id: str
    ) -> list[LineupInterval]:
        operation = "list_player_intervals"
        with guarded(operation, match_id):
            self.access.authorize(match_id, caller, operation)
            rows = self.intervals.list_for_player(match_id, player_id)
        return [LineupInterval.from_row(r) for r in rows]

    def list_position_intervals(self, caller: Caller, position: str) -> list[LineupInterval]:
        """Stints played in *position* across every match the caller may see.

        Admins see all matches, other callers only the ones they own.
        Ordered by match id descending, then start minute.
        """
        operation = "list_position_intervals"
        with guarded(operation):
            self.access.require_position(position, None, operation)
            owner_id = None if caller.is_admin else caller.user_id
            rows = self.intervals.list_for_position(position, owner_id)
        return [LineupInterval.from_row(r) for r in rows]

    # ------------------------------------------------------------------
    # Internal helpers (called inside an open transaction)
    # ------------------------------------------------------------------

    def _write_interval(
        self, request: IntervalCreate, caller: Caller, operation: str
    ) -> LineupInterval:
        existing = self.intervals.get_by_key(
            request.match_id, request.player_id, request.start_minute
        )
        if existing is not None and existing["deleted_at"] is None:
            if all(existing[f] == getattr(request, f) for f in _REPLAY_FIELDS):
                logger.debug("Replayed create for interval %s", existing["interval_id"])
                return LineupInterval.from_row(existing)
            raise Conflict(
                "An interval already exists for this player at this start minute",
                match_id=request.match_id,
                operation=operation,
            )

        self._check_overlap(
            request.match_id, request.player_id, request.start_minute,
            request.end_minute, operation,
            exclude_id=existing["interval_id"] if existing else "",
        )

        data = request.model_dump()
        data["created_by"] = caller.user_id
        data["now"] = timestamp()
        if existing is not None:
            data["interval_id"] = existing["interval_id"]
            self.intervals.restore(data)
            logger.warning(
                "Restored deleted interval %s for player %s (match %s)",
                existing["interval_id"], request.player_id, request.match_id,
            )
        else:
            data["interval_id"] = new_id()
            self.intervals.insert(data)
        return LineupInterval.from_row(self.intervals.get(data["interval_id"]))

    def _check_overlap(
        self,
        match_id: str,
        player_id: str,
        start_minute: float,
        end_minute: float | None,
        operation: str,
        exclude_id: str = "",
    ) -> None:
        clashes = self.intervals.find_overlapping(
            match_id, player_id, start_minute, end_minute, exclude_id
        )
        if clashes:
            other = clashes[0]
            span = "onward" if other["end_minute"] is None else f"to {other['end_minute']:g}"
            raise Conflict(
                f"Interval overlaps existing interval {other['interval_id']} "
                f"(minute {other['start_minute']:g} {span})",
                match_id=match_id,
                operation=operation,
            )

    def _live_row(self, interval_id: str, operation: str) -> dict:
        row = self.intervals.get(interval_id)
        if row is None or row["deleted_at"] is not None:
            raise NotFound(f"Interval {interval_id} not found", operation=operation)
        return row

    @staticmethod
    def _batch_step(outcome: BatchOutcome, key: str, call) -> None:
        try:
            call()
        except SidelineError as e:
            outcome.failed += 1
            outcome.errors.append(BatchItemError(key=key, error=e.message, code=e.code))
        else:
            outcome.success += 1
