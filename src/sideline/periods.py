"""Period State Machine: start, end and import match periods.

State per match::

    SCHEDULED --start--> LIVE --end--> PAUSED --start--> LIVE ...

At most one period is open at a time across all period types.  Numbers
are per type: REGULAR 1, 2, then EXTRA_TIME 1, 2, then PENALTY_SHOOTOUT 1.

Live transitions take their timestamps from the injected clock (UTC by
default).  ``import_period`` takes caller-supplied timestamps for matches
recorded offline and is idempotent on (match_id, period_number,
period_type): replaying it overwrites the timing of the same row.
"""

import logging
import sqlite3
from datetime import datetime, timedelta
from typing import Callable

from sideline.access import Caller, MatchAccess
from sideline.config import CoreConfig
from sideline.db import run_write
from sideline.exceptions import Conflict, InvalidState, NotFound
from sideline.models import MatchPeriod, MatchStatus, PeriodEnd, PeriodImport, PeriodStart
from sideline.models.period import (
    MAX_NOTES_LENGTH,
    MAX_PERIOD_SECONDS,
    as_utc,
    elapsed_seconds,
)
from sideline.operations import guarded, new_id, timestamp, utc_now
from sideline.period_repository import PeriodRepository
from sideline.reference import ReferenceRepository
from sideline.validation import validate_payload

logger = logging.getLogger(__name__)

ACTIVE_PERIOD_CONFLICT = "Cannot start new period: another period is already active"


class PeriodStateMachine:
    """Period lifecycle plus the derived clock and status of a match."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        config: CoreConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.conn = conn
        self.config = config or CoreConfig()
        self.clock = clock
        self.periods = PeriodRepository(conn)
        self.access = MatchAccess(ReferenceRepository(conn))

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def start_period(
        self,
        caller: Caller,
        match_id: str,
        period_type: str = "REGULAR",
        notes: str | None = None,
    ) -> MatchPeriod:
        """Open the next period of *period_type*.

        Raises:
            Conflict: Another period is still open.
        """
        operation = "start_period"
        request = validate_payload(
            {"period_type": period_type, "notes": notes},
            PeriodStart,
            {"match_id": match_id, "operation": operation},
        )
        kind = request.period_type.value

        def work() -> MatchPeriod:
            self.access.authorize(match_id, caller, operation)
            if self.periods.get_active(match_id) is not None:
                raise Conflict(ACTIVE_PERIOD_CONFLICT, match_id=match_id, operation=operation)

            number = self.periods.count_by_type(match_id, kind) + 1
            if self.periods.get_by_key(match_id, number, kind) is not None:
                # An out-of-order import already holds that number
                number = self.periods.max_number(match_id, kind) + 1

            period_id = new_id()
            self.periods.insert({
                "period_id": period_id,
                "match_id": match_id,
                "period_number": number,
                "period_type": kind,
                "started_at": timestamp(self.clock()),
                "notes": request.notes,
                "created_by": caller.user_id,
                "now": timestamp(),
            })
            return MatchPeriod.from_row(self.periods.get(period_id))

        with guarded(operation, match_id, {"period_type": kind}):
            period = run_write(self.conn, work, self.config)
        logger.info(
            "Started %s period %d for match %s", kind, period.period_number, match_id
        )
        return period

    def end_period(
        self,
        caller: Caller,
        match_id: str,
        period_id: str,
        reason: str | None = None,
    ) -> MatchPeriod:
        """Close an open period and record its duration.

        A duration over MAX_PERIOD_SECONDS is stored capped, so it can be
        shorter than ``ended_at - started_at``; the cap is noted in
        ``end_reason``.

        Raises:
            NotFound: No such period in this match.
            InvalidState: The period has already ended.
        """
        operation = "end_period"
        request = validate_payload(
            {"reason": reason}, PeriodEnd, {"match_id": match_id, "operation": operation}
        )

        def work() -> MatchPeriod:
            self.access.authorize(match_id, caller, operation)
            row = self.periods.get(period_id)
            if row is None or row["match_id"] != match_id:
                raise NotFound(
                    f"Period {period_id} not found", match_id=match_id, operation=operation
                )
            if row["ended_at"] is not None:
                raise InvalidState(
                    "Period is already ended", match_id=match_id, operation=operation
                )

            started = as_utc(datetime.fromisoformat(row["started_at"]))
            ended = as_utc(self.clock())
            if ended <= started:
                logger.warning(
                    "Clock reads %s, not after period start %s; recording one second",
                    ended.isoformat(), started.isoformat(),
                )
                ended = started + timedelta(seconds=1)

            duration = elapsed_seconds(started, ended)
            end_reason = request.reason
            if duration > MAX_PERIOD_SECONDS:
                logger.warning(
                    "Period %s ran %ds; capping duration at %ds",
                    period_id, duration, MAX_PERIOD_SECONDS,
                )
                duration = MAX_PERIOD_SECONDS
                note = f"duration capped at {MAX_PERIOD_SECONDS}s"
                if end_reason:
                    room = MAX_NOTES_LENGTH - len(note) - 3
                    end_reason = f"{end_reason[:room]} ({note})"
                else:
                    end_reason = note

            self.periods.close({
                "period_id": period_id,
                "ended_at": timestamp(ended),
                "duration_seconds": duration,
                "end_reason": end_reason,
                "now": timestamp(),
            })
            return MatchPeriod.from_row(self.periods.get(period_id))

        with guarded(operation, match_id, {"period_id": period_id}):
            period = run_write(self.conn, work, self.config)
        logger.info(
            "Ended %s period %d for match %s after %ds",
            period.period_type.value, period.period_number, match_id,
            period.duration_seconds,
        )
        return period

    def import_period(
        self,
        caller: Caller,
        match_id: str,
        period_number: int,
        period_type: str,
        started_at: datetime | str,
        ended_at: datetime | str | None = None,
        duration_seconds: int | None = None,
    ) -> MatchPeriod:
        """Insert or overwrite a period by its natural key.

        Closed imports never conflict with the live flow.  An open import
        may not create a second open period.
        """
        operation = "import_period"
        payload = {
            "period_number": period_number,
            "period_type": period_type,
            "started_at": started_at,
            "ended_at": ended_at,
            "duration_seconds": duration_seconds,
        }
        request = validate_payload(
            payload, PeriodImport, {"match_id": match_id, "operation": operation}
        )
        kind = request.period_type.value

        def work() -> MatchPeriod:
            self.access.authorize(match_id, caller, operation)
            existing = self.periods.get_by_key(match_id, request.period_number, kind)

            if request.ended_at is None:
                active = self.periods.get_active(match_id)
                if active is not None and (
                    existing is None or active["period_id"] != existing["period_id"]
                ):
                    raise Conflict(ACTIVE_PERIOD_CONFLICT, match_id=match_id, operation=operation)

            self.periods.upsert_import({
                "period_id": existing["period_id"] if existing else new_id(),
                "match_id": match_id,
                "period_number": request.period_number,
                "period_type": kind,
                "started_at": timestamp(request.started_at),
                "ended_at": timestamp(request.ended_at) if request.ended_at else None,
                "duration_seconds": request.duration_seconds,
                "created_by": caller.user_id,
                "now": timestamp(),
            })
            return MatchPeriod.from_row(
                self.periods.get_by_key(match_id, request.period_number, kind)
            )

        with guarded(operation, match_id, payload):
            period = run_write(self.conn, work, self.config)
        logger.info(
            "Imported %s period %d for match %s", kind, period.period_number, match_id
        )
        return period

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_current_period(self, caller: Caller, match_id: str) -> MatchPeriod | None:
        operation = "get_current_period"
        with guarded(operation, match_id):
            self.access.authorize(match_id, caller, operation)
            row = self.periods.get_active(match_id)
        return MatchPeriod.from_row(row) if row is not None else None

    def list_periods(self, caller: Caller, match_id: str) -> list[MatchPeriod]:
        operation = "list_periods"
        with guarded(operation, match_id):
            self.access.authorize(match_id, caller, operation)
            rows = self.periods.list_for_match(match_id)
        return [MatchPeriod.from_row(r) for r in rows]

    def list_periods_by_type(
        self, caller: Caller, match_id: str, period_type: str
    ) -> list[MatchPeriod]:
        operation = "list_periods_by_type"
        request = validate_payload(
            {"period_type": period_type}, PeriodStart,
            {"match_id": match_id, "operation": operation},
        )
        with guarded(operation, match_id):
            self.access.authorize(match_id, caller, operation)
            rows = self.periods.list_by_type(match_id, request.period_type.value)
        return [MatchPeriod.from_row(r) for r in rows]

    def calculate_elapsed_seconds(self, caller: Caller, match_id: str) -> int:
        """Closed period durations plus the running time of the open one."""
        operation = "calculate_elapsed_seconds"
        with guarded(operation, match_id):
            self.access.authorize(match_id, caller, operation)
            return self.elapsed_for(match_id)

    def derive_status(self, caller: Caller, match_id: str) -> MatchStatus:
        operation = "derive_status"
        with guarded(operation, match_id):
            self.access.authorize(match_id, caller, operation)
            return self.status_for(match_id)

    # ------------------------------------------------------------------
    # Unchecked helpers for callers that already authorized
    # ------------------------------------------------------------------

    def elapsed_for(self, match_id: str) -> int:
        total = self.periods.completed_seconds(match_id)
        active = self.periods.get_active(match_id)
        if active is not None:
            started = as_utc(datetime.fromisoformat(active["started_at"]))
            total += max(0, elapsed_seconds(started, as_utc(self.clock())))
        return total

    def status_for(self, match_id: str) -> MatchStatus:
        if self.periods.get_active(match_id) is not None:
            return MatchStatus.LIVE
        if self.periods.list_for_match(match_id):
            return MatchStatus.PAUSED
        return MatchStatus.SCHEDULED
