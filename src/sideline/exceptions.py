"""Custom exception hierarchy for the sideline core.

Exception tree:
    SidelineError
    +-- ValidationFailed  (malformed input, bad enum, out-of-range value)
    +-- NotFound          (match/period/interval/player absent or hidden)
    +-- Forbidden         (caller lacks authorization over the match)
    +-- InvalidState      (operation not allowed in the record's state)
    |   +-- PlayerNotOnPitch
    +-- Conflict          (overlap, active period, duplicate; retryable on a lost race)
    +-- InternalError     (storage failure; details are only logged)

``retryable`` tells callers whether a fresh read-and-retry can succeed.
Terminal errors (Validation, NotFound, Forbidden, InvalidState) must not
be retried blindly.
"""

from typing import Optional


class SidelineError(Exception):
    """Base exception for all expected sideline outcomes."""

    code = "error"
    retryable = False

    def __init__(
        self,
        message: str,
        *,
        match_id: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        self.message = message
        self.match_id = match_id
        self.operation = operation
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "retryable": self.retryable,
            **({"match_id": self.match_id} if self.match_id else {}),
            **({"operation": self.operation} if self.operation else {}),
        }


class ValidationFailed(SidelineError):
    """Malformed input: bad enum, out-of-range coordinate/duration, end <= start."""

    code = "validation"


class NotFound(SidelineError):
    """The match, period, interval or player is absent or not visible."""

    code = "not_found"


class Forbidden(SidelineError):
    """The caller is neither the match owner nor an admin."""

    code = "forbidden"


class InvalidState(SidelineError):
    """The record exists but its lifecycle state forbids the operation."""

    code = "invalid_state"


class PlayerNotOnPitch(InvalidState):
    """A substitution named an outgoing player with no open interval."""

    pass


class Conflict(SidelineError):
    """A write clashes with an existing or concurrently written record.

    Not retryable by default: an overlap or a taken natural key fails the
    same way on every replay.  ``retryable=True`` marks a lost race on a
    unique index, where a fresh read may let the retry succeed.
    """

    code = "conflict"

    def __init__(self, message: str, *, retryable: bool = False, **context):
        super().__init__(message, **context)
        self.retryable = retryable


class InternalError(SidelineError):
    """Storage failure.  The caller only sees an opaque message."""

    code = "internal"
    retryable = True
