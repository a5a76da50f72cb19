"""Command-line entry point for cron-driven execution and manual overrides."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from .database import get_engine, is_database_configured
from .db_models import Base
from .events import record_event
from .generator import ScheduleGenerator
from .netatmo.utils import configure_logging, logger
from .reservations import StaticReservationFeed
from .scenarios import ScenarioStoreError
from .schedule_executor import ScheduleExecutor, executor
from .schedules import ScheduleStoreError, get_schedule_repository
from .schemas import RoomPlan

configure_logging()


def _dump_json(data: object, *, print_fn=print) -> None:
    formatted = json.dumps(data, indent=2, sort_keys=True, default=str)
    print_fn(formatted)


def _parse_instant(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"Invalid ISO timestamp: {value}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def init_db(*, print_fn=print) -> None:
    """Create database tables if they do not already exist."""
    if not is_database_configured():
        raise SystemExit("THERMOPLAN_DB_URL is not set; cannot run database commands.")
    engine = get_engine()
    if engine is None:
        raise SystemExit("Unable to create engine for configured database URL.")
    Base.metadata.create_all(engine)
    print_fn("Database tables ensured.")


def run_due(
    user_id: str | None = None,
    *,
    runner: ScheduleExecutor = executor,
    print_fn=print,
) -> int:
    """Run one due-time pass; returns the number of failed entries."""
    try:
        result = runner.run_once(user_id=user_id)
    except ScheduleStoreError as exc:
        logger.exception("Schedule store failed during run")
        raise SystemExit(f"Schedule store error: {exc}") from exc
    failed = sum(1 for item in result.results if item.status == "failed")
    logger.bind(processed=result.processed_count, failed=failed).info(
        "Due schedule pass finished"
    )
    _dump_json(result.model_dump(mode="json", by_alias=True), print_fn=print_fn)
    return failed


def apply(entry_id: str, *, runner: ScheduleExecutor = executor, print_fn=print) -> None:
    """Apply one entry immediately."""
    try:
        entry = runner.apply_now(entry_id)
    except ScheduleStoreError as exc:
        raise SystemExit(f"Schedule store error: {exc}") from exc
    if entry is None:
        raise SystemExit(f"Schedule {entry_id} not found.")
    _dump_json(entry.model_dump(mode="json", by_alias=True), print_fn=print_fn)


def update(entry_id: str, changes: dict[str, Any], *, print_fn=print) -> None:
    """Apply a manual edit to one entry; any field, including status, may change."""
    if not changes:
        raise SystemExit("No fields provided for update.")
    try:
        entry = get_schedule_repository().update(entry_id, changes)
    except ValidationError as exc:
        raise SystemExit(f"Invalid update: {exc}") from exc
    except ScheduleStoreError as exc:
        raise SystemExit(f"Schedule store error: {exc}") from exc
    if entry is None:
        raise SystemExit(f"Schedule {entry_id} not found.")
    record_event(
        action="schedule_updated",
        subject_type="schedule",
        subject_id=entry_id,
        actor="cli",
        metadata={"changes": {key: str(value) for key, value in changes.items()}},
    )
    _dump_json(entry.model_dump(mode="json", by_alias=True), print_fn=print_fn)


def delete(entry_id: str, *, print_fn=print) -> None:
    try:
        deleted = get_schedule_repository().delete(entry_id)
    except ScheduleStoreError as exc:
        raise SystemExit(f"Schedule store error: {exc}") from exc
    if not deleted:
        raise SystemExit(f"Schedule {entry_id} not found.")
    record_event(
        action="schedule_deleted",
        subject_type="schedule",
        subject_id=entry_id,
        actor="cli",
    )
    print_fn(f"Schedule {entry_id} deleted.")


def _load_room_plans(path: Path) -> list[RoomPlan]:
    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise SystemExit(f"Cannot read reservations file {path}: {exc}") from exc
    if not isinstance(raw, list):
        raise SystemExit(f"Reservations file {path} must hold a JSON list of rooms.")
    try:
        return [RoomPlan.model_validate(item) for item in raw]
    except ValidationError as exc:
        raise SystemExit(f"Invalid reservations file {path}: {exc}") from exc


def plan(
    user_id: str,
    reservations_path: Path,
    *,
    generator: ScheduleGenerator | None = None,
    print_fn=print,
) -> int:
    """Generate schedules for every room listed in a reservations export."""
    plans = _load_room_plans(reservations_path)
    feed = StaticReservationFeed(
        {room.room_mapping.user_room_id: room.reservations for room in plans}
    )
    generator = generator or ScheduleGenerator()
    try:
        created = generator.plan_for_user(
            user_id, feed, [room.room_mapping for room in plans]
        )
    except (ScheduleStoreError, ScenarioStoreError) as exc:
        logger.exception("Store failed while planning schedules")
        raise SystemExit(f"Schedule store error: {exc}") from exc
    logger.bind(user_id=user_id, rooms=len(plans), created=created).info(
        "Planning pass finished"
    )
    _dump_json({"created": created, "rooms": len(plans)}, print_fn=print_fn)
    return created


def list_entries(
    user_id: str, from_time: datetime | None = None, *, print_fn=print
) -> None:
    try:
        entries = get_schedule_repository().list(user_id=user_id, from_time=from_time)
    except ScheduleStoreError as exc:
        raise SystemExit(f"Schedule store error: {exc}") from exc
    if not entries:
        print_fn(f"No schedules found for user '{user_id}'.")
        return
    _dump_json(
        {
            "total": len(entries),
            "schedules": [
                entry.model_dump(mode="json", by_alias=True) for entry in entries
            ],
        },
        print_fn=print_fn,
    )


UPDATE_FIELDS = ("status", "temp", "mode", "start_time", "end_time", "target_room_id", "error")


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Run and inspect reservation-driven thermostat schedules."
    )
    sub = parser.add_subparsers(dest="command", required=True)

    run_parser = sub.add_parser("run-due", help="Apply every due pending schedule.")
    run_parser.add_argument("--user", help="Only process schedules for this user.")

    apply_parser = sub.add_parser("apply", help="Apply one schedule immediately.")
    apply_parser.add_argument("entry_id")

    update_parser = sub.add_parser("update", help="Edit fields of one schedule.")
    update_parser.add_argument("entry_id")
    update_parser.add_argument("--status", choices=["pending", "applied", "failed"])
    update_parser.add_argument("--temp", type=float)
    update_parser.add_argument("--mode", choices=["manual", "home"])
    update_parser.add_argument("--start", dest="start_time", type=_parse_instant)
    update_parser.add_argument("--end", dest="end_time", type=_parse_instant)
    update_parser.add_argument("--target-room", dest="target_room_id")
    update_parser.add_argument("--error")

    delete_parser = sub.add_parser("delete", help="Delete one schedule.")
    delete_parser.add_argument("entry_id")

    list_parser = sub.add_parser("list", help="List a user's schedules.")
    list_parser.add_argument("user_id")
    list_parser.add_argument(
        "--from",
        dest="from_time",
        type=_parse_instant,
        help="Only schedules starting at or after this ISO timestamp.",
    )

    plan_parser = sub.add_parser(
        "plan", help="Generate schedules from a reservations export."
    )
    plan_parser.add_argument("user_id")
    plan_parser.add_argument(
        "--reservations",
        type=Path,
        required=True,
        help="JSON list of {roomMapping, reservations} objects.",
    )

    sub.add_parser("init-db", help="Create database tables.")
    return parser.parse_args(argv)


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    if args.command == "run-due":
        failed = run_due(args.user)
        if failed:
            raise SystemExit(1)
    elif args.command == "apply":
        apply(args.entry_id)
    elif args.command == "update":
        changes = {
            name: getattr(args, name)
            for name in UPDATE_FIELDS
            if getattr(args, name) is not None
        }
        update(args.entry_id, changes)
    elif args.command == "delete":
        delete(args.entry_id)
    elif args.command == "list":
        list_entries(args.user_id, args.from_time)
    elif args.command == "plan":
        plan(args.user_id, args.reservations)
    elif args.command == "init-db":
        init_db()
    else:
        raise SystemExit(f"Unknown command: {args.command}")


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main(sys.argv[1:])


__all__ = [
    "main",
    "run_due",
    "apply",
    "update",
    "delete",
    "list_entries",
    "plan",
    "init_db",
]
