"""CLI entry point for the sideline core.

Provides ``main()`` for the ``sideline`` console script.  Every command
opens the database under ``--data-dir``, runs one operation as the
``--user`` / ``--role`` caller and prints the result as JSON.  Domain
errors print their ``to_dict()`` form and exit with status 1.

Usage::

    sideline init
    sideline seed-match m1 --owner coach --home h --away a
    sideline add-player p7 "Sam Reid" --team h
    sideline --user coach add-interval m1 p7 GK 0
    sideline --user coach substitute m1 p7 p14 GK 30 --reason tactical
    sideline --user coach formation m1 60 p7:GK p14:CB:30:20 --change-id c-1
    sideline --user coach start-period m1
    sideline --user coach live m1
"""

import argparse
import json
import logging
import sys

from pydantic import BaseModel

from sideline.access import Caller
from sideline.config import CoreConfig
from sideline.exceptions import SidelineError
from sideline.logging_config import setup_logging
from sideline.service import SidelineService

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser for the sideline CLI."""
    parser = argparse.ArgumentParser(
        prog="sideline",
        description="Record lineups, substitutions and periods for a match",
    )
    parser.add_argument(
        "--data-dir",
        type=str,
        default="data",
        help="Data directory for the database and logs (default: data)",
    )
    parser.add_argument(
        "--user",
        type=str,
        default="cli",
        help="User id the command runs as (default: cli)",
    )
    parser.add_argument(
        "--role",
        type=str,
        default="USER",
        help="Caller role, USER or ADMIN (default: USER)",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Show DEBUG messages on the console",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init", help="Create the database and seed position codes")

    p = sub.add_parser("seed-match", help="Create or update a match")
    p.add_argument("match_id")
    p.add_argument("--owner", required=True, help="Owner user id")
    p.add_argument("--home", default=None, help="Home team id (created if missing)")
    p.add_argument("--away", default=None, help="Away team id (created if missing)")
    p.add_argument("--kickoff", default=None, help="Kickoff time, ISO-8601")
    p.add_argument("--competition", default=None)

    p = sub.add_parser("add-player", help="Create or update a player")
    p.add_argument("player_id")
    p.add_argument("name")
    p.add_argument("--team", default=None)
    p.add_argument("--number", type=int, default=None, help="Squad number")

    p = sub.add_parser("add-interval", help="Put a player in a position from a minute")
    p.add_argument("match_id")
    p.add_argument("player_id")
    p.add_argument("position")
    p.add_argument("start_minute", type=float)
    p.add_argument("--end", type=float, default=None, dest="end_minute")
    p.add_argument("--x", type=float, default=None, dest="pitch_x")
    p.add_argument("--y", type=float, default=None, dest="pitch_y")
    p.add_argument("--reason", default=None, dest="substitution_reason")

    p = sub.add_parser("update-interval", help="Change fields of an interval")
    p.add_argument("interval_id")
    p.add_argument("--end", type=float, dest="end_minute")
    p.add_argument("--reopen", action="store_true", help="Clear the end minute")
    p.add_argument("--position")
    p.add_argument("--x", type=float, dest="pitch_x")
    p.add_argument("--y", type=float, dest="pitch_y")
    p.add_argument("--reason", dest="substitution_reason")

    p = sub.add_parser("delete-interval", help="Soft-delete an interval")
    p.add_argument("interval_id")

    for name, text in (
        ("lineup", "Intervals covering a minute"),
        ("active", "Players on the pitch at a minute"),
    ):
        p = sub.add_parser(name, help=text)
        p.add_argument("match_id")
        p.add_argument("minute", type=float)

    p = sub.add_parser("substitute", help="Swap two players at a minute")
    p.add_argument("match_id")
    p.add_argument("player_off_id")
    p.add_argument("player_on_id")
    p.add_argument("position")
    p.add_argument("at_minute", type=float)
    p.add_argument("--reason", default=None)

    p = sub.add_parser("formation", help="Set the whole lineup from a minute")
    p.add_argument("match_id")
    p.add_argument("at_minute", type=float)
    p.add_argument(
        "players",
        nargs="+",
        type=_formation_slot,
        help="PLAYER:POSITION or PLAYER:POSITION:X:Y",
    )
    p.add_argument("--reason", default=None)
    p.add_argument("--change-id", default=None, help="Client id; replays are ignored")

    p = sub.add_parser("position-intervals", help="Stints in a position across matches")
    p.add_argument("position")

    p = sub.add_parser("start-period", help="Start the next period")
    p.add_argument("match_id")
    p.add_argument("--type", default="REGULAR", dest="period_type")
    p.add_argument("--notes", default=None)

    p = sub.add_parser("end-period", help="End the active period")
    p.add_argument("match_id")
    p.add_argument("period_id")
    p.add_argument("--reason", default=None)

    p = sub.add_parser("import-period", help="Import a period recorded offline")
    p.add_argument("match_id")
    p.add_argument("period_number", type=int)
    p.add_argument("period_type")
    p.add_argument("started_at")
    p.add_argument("--ended-at", default=None)
    p.add_argument("--duration", type=int, default=None, dest="duration_seconds")

    p = sub.add_parser("live", help="Live dashboard state")
    p.add_argument("match_id")
    p.add_argument("--at", type=float, default=None, dest="at_minute")

    for name, text in (
        ("details", "Full match details"),
        ("timeline", "Match events in clock order"),
    ):
        p = sub.add_parser(name, help=text)
        p.add_argument("match_id")

    return parser


def _formation_slot(text: str) -> dict:
    parts = text.split(":")
    if len(parts) not in (2, 4):
        raise argparse.ArgumentTypeError(
            f"expected PLAYER:POSITION or PLAYER:POSITION:X:Y, got {text!r}"
        )
    slot = {"player_id": parts[0], "position": parts[1]}
    if len(parts) == 4:
        try:
            slot["pitch_x"], slot["pitch_y"] = float(parts[2]), float(parts[3])
        except ValueError:
            raise argparse.ArgumentTypeError(f"bad coordinates in {text!r}") from None
    return slot


def _jsonable(result):
    if isinstance(result, BaseModel):
        return result.model_dump(mode="json")
    if isinstance(result, list):
        return [_jsonable(item) for item in result]
    return result


def _interval_patch(args: argparse.Namespace) -> dict:
    patch = {}
    for field in ("end_minute", "position", "pitch_x", "pitch_y", "substitution_reason"):
        value = getattr(args, field)
        if value is not None:
            patch[field] = value
    if args.reopen:
        patch["end_minute"] = None
    return patch


def run_command(svc: SidelineService, caller: Caller, args: argparse.Namespace):
    """Dispatch one parsed command and return its JSON-ready result."""
    cmd = args.command

    if cmd == "init":
        svc.reference.upsert_positions()
        return {"schema_version": svc.db.get_schema_version(),
                "positions": svc.reference.list_positions()}
    if cmd == "seed-match":
        for team_id in (args.home, args.away):
            if team_id and svc.reference.get_team(team_id) is None:
                svc.reference.upsert_team(team_id, team_id, created_by=caller.user_id)
        svc.reference.upsert_match({
            "match_id": args.match_id,
            "owner_id": args.owner,
            "home_team_id": args.home,
            "away_team_id": args.away,
            "kickoff_at": args.kickoff,
            "competition": args.competition,
        })
        return svc.reference.get_match(args.match_id)
    if cmd == "add-player":
        svc.reference.upsert_player(args.player_id, args.name, args.team, args.number)
        return svc.reference.get_player(args.player_id)

    if cmd == "add-interval":
        return svc.lineups.create_interval(
            caller, args.match_id, args.player_id, args.position, args.start_minute,
            end_minute=args.end_minute, pitch_x=args.pitch_x, pitch_y=args.pitch_y,
            substitution_reason=args.substitution_reason,
        )
    if cmd == "update-interval":
        return svc.lineups.update_interval(caller, args.interval_id, **_interval_patch(args))
    if cmd == "delete-interval":
        return svc.lineups.delete_interval(caller, args.interval_id)
    if cmd == "lineup":
        return svc.queries.get_current_lineup(caller, args.match_id, args.minute)
    if cmd == "active":
        return svc.queries.get_active_players_at_time(caller, args.match_id, args.minute)
    if cmd == "substitute":
        return svc.substitutions.substitute(
            caller, args.match_id, args.player_off_id, args.player_on_id,
            args.position, args.at_minute, reason=args.reason,
        )
    if cmd == "formation":
        return svc.substitutions.apply_formation_change(
            caller, args.match_id, args.at_minute, args.players,
            reason=args.reason, change_id=args.change_id,
        )
    if cmd == "position-intervals":
        return svc.lineups.list_position_intervals(caller, args.position)

    if cmd == "start-period":
        return svc.periods.start_period(caller, args.match_id, args.period_type, args.notes)
    if cmd == "end-period":
        return svc.periods.end_period(caller, args.match_id, args.period_id, args.reason)
    if cmd == "import-period":
        return svc.periods.import_period(
            caller, args.match_id, args.period_number, args.period_type,
            args.started_at, ended_at=args.ended_at,
            duration_seconds=args.duration_seconds,
        )

    if cmd == "live":
        return svc.live.get_live_state(caller, args.match_id, args.at_minute)
    if cmd == "details":
        return svc.live.get_full_details(caller, args.match_id)
    if cmd == "timeline":
        return svc.live.get_timeline(caller, args.match_id)

    raise ValueError(f"Unknown command {cmd!r}")


def main(argv: list[str] | None = None) -> int:
    """Entry point for the sideline console script."""
    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(
        data_dir=args.data_dir,
        console_level=logging.DEBUG if args.verbose else logging.WARNING,
    )
    config = CoreConfig(data_dir=args.data_dir, db_path=f"{args.data_dir}/sideline.db")
    caller = Caller(user_id=args.user, role=args.role.upper())

    with SidelineService.open(config) as svc:
        try:
            result = run_command(svc, caller, args)
        except SidelineError as e:
            logger.info("%s failed: %s", args.command, e.message)
            print(json.dumps(e.to_dict(), indent=2))
            return 1

    print(json.dumps(_jsonable(result), indent=2, default=str))
    return 0


if __name__ == "__main__":
    sys.exit(main())
