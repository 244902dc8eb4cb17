"""Authorization and reference checks shared by every operation.

A caller may act on a match when it is the match owner or holds the ADMIN
role.  Matches that do not exist, or were soft-deleted by their owner, are
reported as NotFound; visible matches the caller does not own are
Forbidden.
"""

from dataclasses import dataclass

from sideline.exceptions import Forbidden, NotFound, ValidationFailed
from sideline.reference import ReferenceRepository

ADMIN_ROLE = "ADMIN"


@dataclass(frozen=True)
class Caller:
    """The authenticated principal an operation runs on behalf of."""

    user_id: str
    role: str = "USER"

    @property
    def is_admin(self) -> bool:
        return self.role.upper() == ADMIN_ROLE


class MatchAccess:
    """Owner-or-admin checks plus position/player reference lookups."""

    def __init__(self, reference: ReferenceRepository) -> None:
        self.reference = reference

    def authorize(self, match_id: str, caller: Caller, operation: str) -> dict:
        """Return the match row if *caller* may act on it.

        Raises:
            NotFound: Match absent or deleted.
            Forbidden: Caller is neither owner nor admin.
        """
        match = self.reference.get_match(match_id)
        if match is None or match["is_deleted"]:
            raise NotFound(
                f"Match {match_id} not found", match_id=match_id, operation=operation
            )
        if not caller.is_admin and match["owner_id"] != caller.user_id:
            raise Forbidden(
                "Access denied: you do not have permission to manage this match",
                match_id=match_id,
                operation=operation,
            )
        return match

    def require_position(self, code: str, match_id: str | None, operation: str) -> None:
        if not self.reference.position_exists(code):
            raise ValidationFailed(
                f"Unknown position code {code!r}", match_id=match_id, operation=operation
            )

    def require_player(self, player_id: str, match_id: str, operation: str) -> dict:
        player = self.reference.get_player(player_id)
        if player is None:
            raise NotFound(
                f"Player {player_id} not found", match_id=match_id, operation=operation
            )
        return player
