"""One entry point wiring every component to a single database connection.

Usage::

    from sideline.service import SidelineService
    from sideline.access import Caller

    with SidelineService.open(CoreConfig()) as svc:
        coach = Caller("coach-1")
        svc.periods.start_period(coach, match_id)
        svc.substitutions.substitute(coach, match_id, "p7", "p14", "CM", 60)

Each component keeps its own methods; the facade only builds them against
the same connection and configuration.  One SidelineService per thread:
sqlite3 connections must not be shared across threads.
"""

import logging
from datetime import datetime
from typing import Callable

from sideline.config import CoreConfig
from sideline.db import Database
from sideline.event_repository import EventRepository
from sideline.lineup_queries import LineupQueryEngine
from sideline.lineups import LineupIntervalManager
from sideline.live_state import LiveStateAggregator
from sideline.operations import utc_now
from sideline.periods import PeriodStateMachine
from sideline.reference import ReferenceRepository
from sideline.substitution import SubstitutionHandler

logger = logging.getLogger(__name__)


class SidelineService:
    def __init__(
        self,
        db: Database,
        config: CoreConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.db = db
        self.config = config or CoreConfig()
        conn = db.conn
        self.reference = ReferenceRepository(conn)
        self.events = EventRepository(conn)
        self.lineups = LineupIntervalManager(conn, self.config)
        self.queries = LineupQueryEngine(conn)
        self.substitutions = SubstitutionHandler(conn, self.config)
        self.periods = PeriodStateMachine(conn, self.config, clock)
        self.live = LiveStateAggregator(conn, self.config, clock)

    @classmethod
    def open(
        cls,
        config: CoreConfig | None = None,
        clock: Callable[[], datetime] = utc_now,
    ) -> "SidelineService":
        """Connect to ``config.db_path`` and apply pending migrations."""
        config = config or CoreConfig()
        db = Database(config.db_path, busy_timeout_ms=config.busy_timeout_ms)
        db.initialize()
        logger.debug("Opened %s (schema v%d)", config.db_path, db.get_schema_version())
        return cls(db, config, clock)

    def close(self) -> None:
        self.db.close()

    def __enter__(self) -> "SidelineService":
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
