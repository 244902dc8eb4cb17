"""Pydantic v2 models for match periods.

PeriodStart / PeriodEnd validate live transitions, PeriodImport validates
caller-timestamped backfill, and MatchPeriod is the stored record.
"""

import math
from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field, field_validator, model_validator
from typing_extensions import Self

MAX_PERIOD_SECONDS = 7200
MAX_NOTES_LENGTH = 500
MAX_IMPORTED_PERIOD_NUMBER = 10


class PeriodType(str, Enum):
    REGULAR = "REGULAR"
    EXTRA_TIME = "EXTRA_TIME"
    PENALTY_SHOOTOUT = "PENALTY_SHOOTOUT"


def normalize_period_type(value):
    """Accept ``regular``/``extra_time``/``penalty_shootout`` aliases."""
    if isinstance(value, str):
        return value.strip().upper()
    return value


def as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def elapsed_seconds(started_at: datetime, ended_at: datetime) -> int:
    """Whole seconds between two instants, rounded up."""
    return math.ceil((ended_at - started_at).total_seconds())


class PeriodStart(BaseModel):
    period_type: PeriodType = PeriodType.REGULAR
    notes: str | None = Field(default=None, max_length=MAX_NOTES_LENGTH)

    @field_validator("period_type", mode="before")
    @classmethod
    def normalize_type(cls, value):
        return normalize_period_type(value)


class PeriodEnd(BaseModel):
    reason: str | None = Field(default=None, max_length=MAX_NOTES_LENGTH)


class PeriodImport(BaseModel):
    """Validation model for a period recorded offline and imported later."""

    period_number: int = Field(ge=1, le=MAX_IMPORTED_PERIOD_NUMBER)
    period_type: PeriodType
    started_at: datetime
    ended_at: datetime | None = None
    duration_seconds: int | None = Field(default=None, ge=0, le=MAX_PERIOD_SECONDS)

    @field_validator("period_type", mode="before")
    @classmethod
    def normalize_type(cls, value):
        return normalize_period_type(value)

    @field_validator("started_at", "ended_at")
    @classmethod
    def to_utc(cls, value: datetime | None) -> datetime | None:
        return as_utc(value) if value is not None else None

    @model_validator(mode="after")
    def check_timestamps(self) -> Self:
        """ended_at must follow started_at; derive a missing duration."""
        if self.ended_at is None:
            return self
        if self.ended_at <= self.started_at:
            raise ValueError(
                f"ended_at ({self.ended_at.isoformat()}) must be after "
                f"started_at ({self.started_at.isoformat()})"
            )
        if self.duration_seconds is None:
            computed = elapsed_seconds(self.started_at, self.ended_at)
            if computed > MAX_PERIOD_SECONDS:
                raise ValueError(
                    f"Computed duration {computed}s exceeds {MAX_PERIOD_SECONDS}s"
                )
            self.duration_seconds = computed
        return self


class MatchPeriod(BaseModel):
    """A stored match period."""

    id: str
    match_id: str
    period_number: int
    period_type: PeriodType
    started_at: datetime
    ended_at: datetime | None = None
    duration_seconds: int | None = None
    notes: str | None = None
    end_reason: str | None = None
    created_by: str | None = None
    created_at: str
    updated_at: str

    @property
    def is_active(self) -> bool:
        return self.ended_at is None

    @classmethod
    def from_row(cls, row: dict) -> "MatchPeriod":
        return cls(
            id=row["period_id"],
            match_id=row["match_id"],
            period_number=row["period_number"],
            period_type=row["period_type"],
            started_at=row["started_at"],
            ended_at=row["ended_at"],
            duration_seconds=row["duration_seconds"],
            notes=row["notes"],
            end_reason=row["end_reason"],
            created_by=row["created_by"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )
