"""Operation boundary: storage failures become structured errors.

Every public operation runs its storage work inside ``guarded``.  Domain
errors (``SidelineError`` subclasses) pass through untouched.  A uniqueness
violation on the open-interval / active-period indexes means a concurrent
writer got there first and becomes ``Conflict``.  Any other ``sqlite3.Error``
is logged with full operation context and surfaced as an opaque
``InternalError``.

Also home to the id and timestamp helpers shared by the services.
"""

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Iterator

from sideline.exceptions import Conflict, InternalError

logger = logging.getLogger(__name__)

# Index names from the migrations -> message shown to the losing writer
_UNIQUE_CONFLICTS = {
    "lineup_intervals.match_id, lineup_intervals.player_id, lineup_intervals.start_minute":
        "An interval already exists for this player at this start minute",
    "index 'idx_intervals_one_open'": "Player already has an open interval in this match",
    "lineup_intervals.match_id, lineup_intervals.player_id":
        "Player already has an open interval in this match",
    "index 'idx_periods_one_active'": "Cannot start new period: another period is already active",
    "match_periods.match_id":
        "Cannot start new period: another period is already active",
    "match_periods.match_id, match_periods.period_number, match_periods.period_type":
        "A period with this number and type already exists",
}


def _conflict_message(error: sqlite3.IntegrityError) -> str | None:
    text = str(error)
    if "UNIQUE" not in text:
        return None
    detail = text.split(":", 1)[-1].strip()
    return _UNIQUE_CONFLICTS.get(detail, "Concurrent write conflict")


@contextmanager
def guarded(operation: str, match_id: str | None = None, payload: dict | None = None) -> Iterator[None]:
    """Translate storage exceptions raised inside the block."""
    try:
        yield
    except sqlite3.IntegrityError as e:
        message = _conflict_message(e)
        if message is None:
            _log_internal(operation, match_id, payload)
            raise InternalError(
                "Storage failure", match_id=match_id, operation=operation
            ) from e
        logger.info("Conflict in %s (match %s): %s", operation, match_id, e)
        raise Conflict(
            message, retryable=True, match_id=match_id, operation=operation
        ) from e
    except sqlite3.Error as e:
        _log_internal(operation, match_id, payload)
        raise InternalError(
            "Storage failure", match_id=match_id, operation=operation
        ) from e


def _log_internal(operation: str, match_id: str | None, payload: dict | None) -> None:
    logger.exception(
        "Storage failure in %s (match %s) payload=%s",
        operation,
        match_id,
        json.dumps(payload or {}, default=str, sort_keys=True),
    )


def new_id() -> str:
    return str(uuid.uuid4())


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def timestamp(moment: datetime | None = None) -> str:
    """UTC ISO-8601 string stored in created_at / updated_at columns."""
    moment = moment or utc_now()
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat()
