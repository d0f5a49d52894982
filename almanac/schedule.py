"""
Next-run computation for jobs: calendar gating, cron-like start matching and
fixed-frequency repetition within a day.

Candidate instants are generated as naive local wall-clock times and only then placed in
the job's timezone. Local times skipped by a DST transition never run; repeated local
times run once, on their first occurrence.
"""

from __future__ import annotations

import logging
import threading
from datetime import MAXYEAR, date, datetime, timezone
from itertools import islice
from typing import Iterator, List, Optional
from zoneinfo import ZoneInfo

from almanac.calendars import DateRange, check_cancelled, contains
from almanac.errors import NoMatchFoundError
from almanac.models import Job, JobSchedule
from almanac.resolver import ResolvedCalendar, flatten
from almanac.store import DEFAULT_HORIZON_YEARS, Snapshot

logger = logging.getLogger(__name__)
UTC = timezone.utc


def _ensure_aware_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _is_nonexistent_local(local_dt: datetime, tz: ZoneInfo) -> bool:
    naive = local_dt.replace(tzinfo=None)
    assumed = naive.replace(tzinfo=tz, fold=0)
    roundtrip = assumed.astimezone(UTC).astimezone(tz).replace(tzinfo=None)
    return roundtrip != naive


def _is_ambiguous_local(local_dt: datetime, tz: ZoneInfo) -> bool:
    naive = local_dt.replace(tzinfo=None)
    fold0 = naive.replace(tzinfo=tz, fold=0)
    fold1 = naive.replace(tzinfo=tz, fold=1)
    return fold0.utcoffset() != fold1.utcoffset()


def add_years(day: date, years: int) -> date:
    if day.year + years > MAXYEAR:
        return date.max
    try:
        return day.replace(year=day.year + years)
    except ValueError:
        return day.replace(year=day.year + years, day=28)


def search_window(after: datetime, tz: ZoneInfo, horizon_years: int) -> DateRange:
    """Local days searched for runs after ``after``: its own day up to the horizon."""
    first_day = _ensure_aware_utc(after).astimezone(tz).date()
    return DateRange(first_day, add_years(first_day, horizon_years))


def resolution_years(job: Job, after: datetime, horizon_years: int) -> range:
    window = search_window(after, job.timezone, horizon_years)
    return range(window.start.year, window.end.year + 1)


def day_instants(schedule: JobSchedule, day: date) -> Iterator[datetime]:
    """
    Naive local run times on ``day``, ascending.

    Without a frequency these are the start spec matches. With one, every start match opens
    a run that repeats every ``frequency`` while the start fields other than the minute still
    match on the same day. A later start match always runs and restarts the repetition from
    itself, so ``minute: "0,30"`` with ``20m`` gives 09:00, 09:20, 09:30, 09:50.
    """
    start = schedule.start
    if not start.matches_day(day):
        return
    cursor = start.first_time_on(day)
    while cursor is not None:
        yield cursor
        following = start.next_time_after(cursor, day)
        if schedule.frequency is not None:
            repeat = cursor + schedule.frequency
            if repeat.date() == day and start.in_window(repeat) and (following is None or repeat < following):
                cursor = repeat
                continue
        cursor = following


def iter_runs(
    job: Job,
    resolved: ResolvedCalendar,
    after: datetime,
    tz: Optional[ZoneInfo] = None,
    horizon_years: int = DEFAULT_HORIZON_YEARS,
    cancel: Optional[threading.Event] = None,
    deadline: Optional[float] = None,
) -> Iterator[datetime]:
    """Run instants strictly after ``after``, ascending, as aware UTC datetimes."""
    tz = tz or job.timezone
    after_utc = _ensure_aware_utc(after)
    for day in search_window(after_utc, tz, horizon_years):
        check_cancelled(cancel, deadline)
        if not contains(resolved, day):
            continue
        for naive in day_instants(job.schedule, day):
            local = naive.replace(tzinfo=tz)
            if _is_nonexistent_local(local, tz):
                continue
            instant = local.astimezone(UTC)
            if instant > after_utc:
                yield instant


def next_run(
    job: Job,
    resolved: ResolvedCalendar,
    after: datetime,
    tz: Optional[ZoneInfo] = None,
    horizon_years: int = DEFAULT_HORIZON_YEARS,
    cancel: Optional[threading.Event] = None,
    deadline: Optional[float] = None,
) -> datetime:
    """
    First run instant strictly after ``after``, as an aware UTC datetime.

    Days are walked in ``tz`` (the job's timezone by default) for ``horizon_years``;
    ``resolved`` must cover that span. Raises NoMatchFoundError past the horizon and
    SearchCancelled when ``cancel`` is set or ``deadline`` passes.
    """
    runs = iter_runs(job, resolved, after, tz, horizon_years, cancel, deadline)
    instant = next(runs, None)
    if instant is None:
        window = search_window(after, tz or job.timezone, horizon_years)
        raise NoMatchFoundError(
            f"Error: no run of {job.ref} between {window.start.isoformat()} and {window.end.isoformat()}."
        )
    return instant


def next_run_times(
    job: Job,
    resolved: ResolvedCalendar,
    count: int,
    now: datetime,
    horizon_years: int = DEFAULT_HORIZON_YEARS,
) -> List[datetime]:
    return list(islice(iter_runs(job, resolved, now, horizon_years=horizon_years), count))


def is_valid_run_instant(
    job: Job,
    resolved: ResolvedCalendar,
    instant: datetime,
    tz: Optional[ZoneInfo] = None,
) -> bool:
    """True if the minute containing ``instant`` is a run time of ``job``."""
    tz = tz or job.timezone
    local = _ensure_aware_utc(instant).astimezone(tz).replace(second=0, microsecond=0)
    if _is_ambiguous_local(local, tz) and local.fold == 1:
        return False
    if not contains(resolved, local.date()):
        return False
    naive = local.replace(tzinfo=None)
    for candidate in day_instants(job.schedule, local.date()):
        if candidate == naive:
            return True
        if candidate > naive:
            return False
    return False


class ScheduleEngine:
    """Name-addressed schedule queries against one immutable snapshot."""

    def __init__(self, snapshot: Snapshot, owner: Optional[str] = None, horizon_years: Optional[int] = None):
        self.snapshot = snapshot
        self.owner = owner or snapshot.settings.owner
        self.horizon_years = horizon_years or snapshot.settings.horizon_years

    def job(self, name: str) -> Job:
        return self.snapshot.get_job(self.snapshot.ref(name, self.owner))

    def resolve(self, job: Job, after: datetime) -> ResolvedCalendar:
        return flatten(self.snapshot, job.calendar, resolution_years(job, after, self.horizon_years))

    def next_run(
        self,
        name: str,
        after: datetime,
        cancel: Optional[threading.Event] = None,
        deadline: Optional[float] = None,
    ) -> datetime:
        job = self.job(name)
        instant = next_run(
            job,
            self.resolve(job, after),
            after,
            horizon_years=self.horizon_years,
            cancel=cancel,
            deadline=deadline,
        )
        logger.debug("Next run of %s after %s: %s", job.ref, after.isoformat(), instant.isoformat())
        return instant

    def is_due(self, name: str, at: datetime) -> bool:
        job = self.job(name)
        local_day = _ensure_aware_utc(at).astimezone(job.timezone).date()
        resolved = flatten(self.snapshot, job.calendar, range(local_day.year, local_day.year + 1))
        return is_valid_run_instant(job, resolved, at)

    def upcoming(self, name: str, count: int, now: datetime) -> List[datetime]:
        job = self.job(name)
        return next_run_times(job, self.resolve(job, now), count, now, horizon_years=self.horizon_years)
