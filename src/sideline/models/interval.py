"""Pydantic v2 models for lineup intervals.

IntervalCreate and IntervalPatch validate inbound writes.  LineupInterval
is the stored record; its lifecycle is a tagged state -- ``tombstone`` is
None while the interval is active and carries {deleted_at, deleted_by}
once it has been soft-deleted.
"""

from pydantic import BaseModel, ConfigDict, Field, model_validator
from typing_extensions import Self

MAX_MINUTE = 300.0
MAX_REASON_LENGTH = 100
MAX_POSITION_LENGTH = 10


class IntervalCreate(BaseModel):
    """Validation model for a new interval (lineup entry)."""

    model_config = ConfigDict(str_strip_whitespace=True)

    match_id: str = Field(min_length=1)
    player_id: str = Field(min_length=1)
    position: str = Field(min_length=1, max_length=MAX_POSITION_LENGTH)
    start_minute: float = Field(ge=0, le=MAX_MINUTE)
    end_minute: float | None = Field(default=None, ge=0, le=MAX_MINUTE)
    pitch_x: float | None = Field(default=None, ge=0, le=100)
    pitch_y: float | None = Field(default=None, ge=0, le=100)
    substitution_reason: str | None = Field(default=None, max_length=MAX_REASON_LENGTH)

    @model_validator(mode="after")
    def check_range(self) -> Self:
        """A closed interval must end strictly after it starts."""
        if self.end_minute is not None and self.end_minute <= self.start_minute:
            raise ValueError(
                f"end_minute ({self.end_minute}) must be greater than "
                f"start_minute ({self.start_minute})"
            )
        return self


class IntervalPatch(BaseModel):
    """Partial update.  Only fields the caller actually sent are applied.

    Sending ``end_minute=None`` explicitly re-opens the interval.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    end_minute: float | None = Field(default=None, ge=0, le=MAX_MINUTE)
    position: str | None = Field(default=None, min_length=1, max_length=MAX_POSITION_LENGTH)
    pitch_x: float | None = Field(default=None, ge=0, le=100)
    pitch_y: float | None = Field(default=None, ge=0, le=100)
    substitution_reason: str | None = Field(default=None, max_length=MAX_REASON_LENGTH)

    @model_validator(mode="after")
    def check_not_empty(self) -> Self:
        if not self.model_fields_set:
            raise ValueError("update must set at least one field")
        if "position" in self.model_fields_set and self.position is None:
            raise ValueError("position cannot be cleared")
        return self

    def changes(self) -> dict:
        """Return only the fields that were explicitly provided."""
        return {name: getattr(self, name) for name in self.model_fields_set}


class Tombstone(BaseModel):
    """Soft-delete marker."""

    deleted_at: str
    deleted_by: str | None = None


class LineupInterval(BaseModel):
    """A stored stint of one player in one position."""

    id: str
    match_id: str
    player_id: str
    position: str
    start_minute: float
    end_minute: float | None = None
    pitch_x: float | None = None
    pitch_y: float | None = None
    substitution_reason: str | None = None
    created_by: str | None = None
    created_at: str
    updated_at: str
    tombstone: Tombstone | None = None

    @property
    def is_open(self) -> bool:
        return self.end_minute is None

    @property
    def is_deleted(self) -> bool:
        return self.tombstone is not None

    @classmethod
    def from_row(cls, row: dict) -> "LineupInterval":
        tombstone = None
        if row.get("deleted_at") is not None:
            tombstone = Tombstone(
                deleted_at=row["deleted_at"], deleted_by=row.get("deleted_by")
            )
        return cls(
            id=row["interval_id"],
            match_id=row["match_id"],
            player_id=row["player_id"],
            position=row["position"],
            start_minute=row["start_minute"],
            end_minute=row["end_minute"],
            pitch_x=row["pitch_x"],
            pitch_y=row["pitch_y"],
            substitution_reason=row["substitution_reason"],
            created_by=row["created_by"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            tombstone=tombstone,
        )


class SubstitutionRequest(BaseModel):
    """Validation model for swapping one player for another mid-match."""

    model_config = ConfigDict(str_strip_whitespace=True)

    match_id: str = Field(min_length=1)
    player_off_id: str = Field(min_length=1)
    player_on_id: str = Field(min_length=1)
    position: str = Field(min_length=1, max_length=MAX_POSITION_LENGTH)
    at_minute: float = Field(ge=0, le=MAX_MINUTE)
    reason: str | None = Field(default=None, max_length=MAX_REASON_LENGTH)

    @model_validator(mode="after")
    def check_players_differ(self) -> Self:
        if self.player_off_id == self.player_on_id:
            raise ValueError("player_off_id and player_on_id must be different players")
        return self


class FormationSlot(BaseModel):
    """One player's place in a formation."""

    model_config = ConfigDict(str_strip_whitespace=True)

    player_id: str = Field(min_length=1)
    position: str = Field(min_length=1, max_length=MAX_POSITION_LENGTH)
    pitch_x: float | None = Field(default=None, ge=0, le=100)
    pitch_y: float | None = Field(default=None, ge=0, le=100)


class FormationChangeRequest(BaseModel):
    """The full set of players on the pitch from *at_minute* onward.

    ``change_id`` is a client-generated id; replaying a request with the
    same id returns without writing anything.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    match_id: str = Field(min_length=1)
    at_minute: float = Field(ge=0, le=MAX_MINUTE)
    players: list[FormationSlot] = Field(min_length=1)
    reason: str | None = Field(default=None, max_length=MAX_REASON_LENGTH)
    change_id: str | None = Field(default=None, min_length=1, max_length=64)

    @model_validator(mode="after")
    def check_unique_players(self) -> Self:
        seen = set()
        for slot in self.players:
            if slot.player_id in seen:
                raise ValueError(f"player {slot.player_id} appears twice in the formation")
            seen.add(slot.player_id)
        return self
