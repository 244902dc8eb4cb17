"""Pydantic v2 models for all sideline entity types and read views.

Re-exports all model classes for convenient import::

    from sideline.models import IntervalCreate, LineupInterval, MatchPeriod, ...
"""

from .event import EventKind, TimelineEvent
from .interval import (
    FormationChangeRequest,
    FormationSlot,
    IntervalCreate,
    IntervalPatch,
    LineupInterval,
    SubstitutionRequest,
    Tombstone,
)
from .period import MatchPeriod, PeriodEnd, PeriodImport, PeriodStart, PeriodType
from .views import (
    ActivePlayer,
    BatchItemError,
    BatchOutcome,
    BatchResult,
    FormationChangeResult,
    FullDetails,
    LineupEntry,
    LiveState,
    LiveStats,
    MatchStatus,
    SubstitutionPair,
    SubstitutionResult,
    TeamSummary,
)

__all__ = [
    "IntervalCreate",
    "IntervalPatch",
    "LineupInterval",
    "Tombstone",
    "SubstitutionRequest",
    "FormationSlot",
    "FormationChangeRequest",
    "PeriodStart",
    "PeriodEnd",
    "PeriodImport",
    "PeriodType",
    "MatchPeriod",
    "EventKind",
    "TimelineEvent",
    "ActivePlayer",
    "BatchItemError",
    "BatchOutcome",
    "BatchResult",
    "FullDetails",
    "LineupEntry",
    "LiveState",
    "LiveStats",
    "MatchStatus",
    "SubstitutionPair",
    "SubstitutionResult",
    "FormationChangeResult",
    "TeamSummary",
]
