"""
almanac command line: validate definitions, query calendars and preview job runs.
"""

from __future__ import annotations

import argparse
import logging
import shlex
import sys
from datetime import date, datetime, timezone
from pathlib import Path
from typing import List, Optional

from almanac.calendars import CalendarEngine, contains
from almanac.errors import AlmanacError, ParseError
from almanac.parsing import parse_iso_date
from almanac.resolver import flatten
from almanac.schedule import ScheduleEngine
from almanac.store import Snapshot, default_config_path, load_snapshot

LOG_FILE = "almanac.log"
DEFAULT_PREVIEW_COUNT = 5
EXIT_INVALID = 2
UTC = timezone.utc

logger = logging.getLogger("almanac")


def setup_logging(log_file: Optional[str] = LOG_FILE, level: int = logging.INFO) -> logging.Logger:
    if logger.handlers:
        return logger
    logger.setLevel(level)
    formatter = logging.Formatter("%(asctime)s %(levelname)s %(message)s")
    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)
    return logger


def parse_instant(value: Optional[str]) -> datetime:
    if value is None:
        return datetime.now(tz=UTC)
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError as exc:
        raise ParseError(f'Error: --at must be an ISO datetime, got "{value}".') from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def command_validate(config_path: Path) -> int:
    snapshot = load_snapshot(config_path)
    year = date.today().year
    years = range(year, year + 1)
    for ref in snapshot.calendars:
        flatten(snapshot, ref, years)
    for job in snapshot.jobs.values():
        flatten(snapshot, job.calendar, years)

    print(f"Config valid: {config_path}")
    print(f"Calendars: {len(snapshot.calendars)}")
    for ref, definition in snapshot.calendars.items():
        inherits = ", ".join(str(parent) for parent in definition.inherits) or "-"
        print(f"- {ref}: days={definition.dow_text} rules={len(definition.exclude)} inherits={inherits}")
    print(f"Jobs: {len(snapshot.jobs)}")
    for ref, job in snapshot.jobs.items():
        print(f"- {ref}: calendar={job.calendar} cron={job.schedule.start.expression}")
    return 0


def command_check(config_path: Path, calendar: str, day_text: str, owner: Optional[str]) -> int:
    snapshot = load_snapshot(config_path)
    engine = CalendarEngine(snapshot, owner=owner)
    day = parse_iso_date(day_text, "date")
    resolved = engine.resolve(calendar, day)
    if contains(resolved, day):
        print(f"{day.isoformat()}: valid")
        return 0
    reason = resolved.descriptions.get(day) or "outside day-of-week list"
    print(f"{day.isoformat()}: invalid ({reason})")
    return EXIT_INVALID


def command_dates(config_path: Path, calendar: str, start_text: str, end_text: str, owner: Optional[str]) -> int:
    snapshot = load_snapshot(config_path)
    engine = CalendarEngine(snapshot, owner=owner)
    start = parse_iso_date(start_text, "from")
    end = parse_iso_date(end_text, "to")
    for day in engine.list_between(calendar, start, end):
        print(day.isoformat())
    return 0


def command_holidays(config_path: Path, calendar: str, start_text: str, end_text: str, owner: Optional[str]) -> int:
    snapshot = load_snapshot(config_path)
    engine = CalendarEngine(snapshot, owner=owner)
    start = parse_iso_date(start_text, "from")
    end = parse_iso_date(end_text, "to")
    resolved = engine.resolve(calendar, start, end)
    for skip in resolved.skipped:
        if start.year <= skip.year <= end.year:
            logger.warning("%s: rule skipped for %s (%s)", skip.calendar, skip.year, skip.reason)
    for day, description in resolved.holidays(start, end):
        print(f"{day.isoformat()} {description}")
    return 0


def _selected_jobs(snapshot: Snapshot, engine: ScheduleEngine, job_name: Optional[str]) -> List[str]:
    if job_name:
        engine.job(job_name)
        return [job_name]
    if not snapshot.jobs:
        raise AlmanacError("No jobs defined.")
    return [str(ref) for ref in snapshot.jobs]


def command_preview(config_path: Path, job_name: Optional[str], count: int, owner: Optional[str]) -> int:
    snapshot = load_snapshot(config_path)
    engine = ScheduleEngine(snapshot, owner=owner)
    now_utc = datetime.now(tz=UTC)

    for name in _selected_jobs(snapshot, engine, job_name):
        job = engine.job(name)
        schedule = job.schedule
        print("=" * 80)
        print(f"Job: {job.ref}")
        print(f"Calendar: {job.calendar} ({job.timezone_name})")
        print(f"Start: {schedule.start.expression}")
        print(f"Frequency: {schedule.frequency_text or 'none'}")
        print(f"Command: {' '.join(shlex.quote(arg) for arg in job.command)}")
        if job.mailto:
            print(f"Mail to: {', '.join(job.mailto)}")
        print(f"Next {count} run(s):")
        runs = engine.upcoming(name, count, now_utc)
        if not runs:
            print("- none")
        for run_dt in runs:
            print(f"- {run_dt.astimezone(job.timezone).isoformat()}")
    print("=" * 80)
    return 0


def command_due(config_path: Path, job_name: str, at_text: Optional[str], owner: Optional[str]) -> int:
    snapshot = load_snapshot(config_path)
    engine = ScheduleEngine(snapshot, owner=owner)
    at = parse_instant(at_text)
    if engine.is_due(job_name, at):
        print(f"{job_name}: due at {at.isoformat()}")
        return 0
    logger.info("Skipping %s: not due at %s.", job_name, at.isoformat())
    return EXIT_INVALID


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    default_config = default_config_path()
    parser = argparse.ArgumentParser(
        description="almanac calendar and schedule engine",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--config",
        default=str(default_config),
        help=f"Path to definitions YAML (default: {default_config})",
    )
    parser.add_argument("--owner", help="Owner used for unscoped calendar and job names")
    parser.add_argument("--log-file", default=LOG_FILE, help=f"Log file path, empty to disable (default: {LOG_FILE})")
    subparsers = parser.add_subparsers(dest="command", required=True)

    validate_parser = subparsers.add_parser("validate", help="Validate definitions and resolve every calendar")
    validate_parser.add_argument("--config", default=argparse.SUPPRESS, help="Path to definitions YAML")

    check_parser = subparsers.add_parser("check", help="Check whether a date is valid in a calendar")
    check_parser.add_argument("--config", default=argparse.SUPPRESS, help="Path to definitions YAML")
    check_parser.add_argument("calendar", help="Calendar name, user.name or user/name")
    check_parser.add_argument("date", help="Date as YYYY-MM-DD")

    dates_parser = subparsers.add_parser("dates", help="List valid dates of a calendar in a range")
    dates_parser.add_argument("--config", default=argparse.SUPPRESS, help="Path to definitions YAML")
    dates_parser.add_argument("calendar", help="Calendar name, user.name or user/name")
    dates_parser.add_argument("start", metavar="from", help="First date (YYYY-MM-DD), inclusive")
    dates_parser.add_argument("end", metavar="to", help="Last date (YYYY-MM-DD), inclusive")

    holidays_parser = subparsers.add_parser("holidays", help="List excluded dates of a calendar with descriptions")
    holidays_parser.add_argument("--config", default=argparse.SUPPRESS, help="Path to definitions YAML")
    holidays_parser.add_argument("calendar", help="Calendar name, user.name or user/name")
    holidays_parser.add_argument("start", metavar="from", help="First date (YYYY-MM-DD), inclusive")
    holidays_parser.add_argument("end", metavar="to", help="Last date (YYYY-MM-DD), inclusive")

    preview_parser = subparsers.add_parser("preview", help="Show upcoming job runs")
    preview_parser.add_argument("--config", default=argparse.SUPPRESS, help="Path to definitions YAML")
    preview_parser.add_argument("--job", help="Preview a single job by name")
    preview_parser.add_argument("--count", type=int, default=DEFAULT_PREVIEW_COUNT, help="Next run count")

    due_parser = subparsers.add_parser("due", help="Exit 0 if a job runs at the given minute")
    due_parser.add_argument("--config", default=argparse.SUPPRESS, help="Path to definitions YAML")
    due_parser.add_argument("--job", required=True, help="Job name")
    due_parser.add_argument("--at", help="ISO datetime (default: now, naive values are UTC)")

    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    setup_logging(args.log_file or None)
    config_path = Path(args.config or default_config_path()).resolve()

    try:
        if args.command == "validate":
            return command_validate(config_path)
        if args.command == "check":
            return command_check(config_path, args.calendar, args.date, args.owner)
        if args.command == "dates":
            return command_dates(config_path, args.calendar, args.start, args.end, args.owner)
        if args.command == "holidays":
            return command_holidays(config_path, args.calendar, args.start, args.end, args.owner)
        if args.command == "preview":
            if args.count <= 0:
                raise AlmanacError("--count must be >= 1")
            return command_preview(config_path, job_name=args.job, count=args.count, owner=args.owner)
        if args.command == "due":
            return command_due(config_path, args.job, args.at, args.owner)
        raise AlmanacError(f"Unsupported command: {args.command}")
    except AlmanacError as exc:
        logger.error(str(exc))
        return 1
    except Exception as exc:  # pragma: no cover
        logger.exception("Unexpected error: %s", exc)
        return 1
