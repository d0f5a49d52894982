"""
Parsing and validation of calendar and job definitions from raw mappings.

Every helper takes the ``field_path`` of the value it checks so errors point at the
offending entry, e.g. ``calendars[0].exclude[2].day``.
"""

from __future__ import annotations

import os
import re
import shlex
from datetime import date, datetime, timedelta
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from almanac.cron import MONTH_NAME_TO_NUM, parse_cron_spec
from almanac.errors import InvalidDateError, ParseError
from almanac.models import (
    DOW_CODES,
    NAME_RE,
    WEEKDAY_NAMES,
    CalendarDefinition,
    ExactDate,
    ExclusionRule,
    Job,
    JobSchedule,
    MonthDay,
    MonthWeekdayOffset,
    Observance,
    Ref,
)

INTERVAL_RE = re.compile(r"^(\d+)([smhd])$")
OBSERVANCE_ALIASES = {"none": Observance.NO_ADJUSTMENT}
# Leap year, so February accepts day 29.
_REFERENCE_YEAR = 2000

CALENDAR_KEYS = {"name", "owner", "description", "dow_list", "public", "exclude", "inherits"}
RULE_KEYS = {"date", "month", "day", "dow", "offset", "description", "observed", "since", "until"}
JOB_KEYS = {
    "name",
    "owner",
    "calendar",
    "timezone",
    "schedule",
    "command",
    "environment",
    "mailto",
    "public_acl",
}


def system_timezone() -> Tuple[ZoneInfo, str]:
    local_tz = datetime.now().astimezone().tzinfo
    if isinstance(local_tz, ZoneInfo):
        return local_tz, local_tz.key
    tz_name = os.environ.get("TZ")
    if tz_name:
        try:
            zone = ZoneInfo(tz_name)
            return zone, tz_name
        except (ZoneInfoNotFoundError, ValueError):
            pass
    return ZoneInfo("UTC"), "UTC"


def parse_timezone(name: str, field_path: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as exc:
        raise ParseError(f'Error: Invalid timezone "{name}" at {field_path}.') from exc


def ensure_bool(value: Any, field_path: str, default: bool) -> bool:
    if value is None:
        return default
    if not isinstance(value, bool):
        raise ParseError(f"Error: {field_path} must be true or false.")
    return value


def ensure_int(value: Any, field_path: str, default: int, minimum: int = 1) -> int:
    if value is None:
        return default
    if isinstance(value, bool) or not isinstance(value, int):
        raise ParseError(f"Error: {field_path} must be an integer.")
    if value < minimum:
        raise ParseError(f"Error: {field_path} must be >= {minimum}.")
    return value


def ensure_str(value: Any, field_path: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ParseError(f"Error: {field_path} must be a non-empty string.")
    return value.strip()


def ensure_str_list(value: Any, field_path: str) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        raise ParseError(f"Error: {field_path} must be a string or list of strings.")
    return tuple(ensure_str(item, f"{field_path}[{idx}]") for idx, item in enumerate(value))


def parse_name(value: Any, field_path: str) -> str:
    name = ensure_str(value, field_path)
    if "." in name or "/" in name:
        raise ParseError(f'Error: {field_path} must be a plain name without "." or "/", got "{name}".')
    if not NAME_RE.match(name):
        raise ParseError(f'Error: {field_path} must match [A-Za-z0-9_-]+, got "{name}".')
    return name


def parse_reference(value: Any, default_owner: str, field_path: str) -> Ref:
    """Parse ``name``, ``owner.name`` or ``owner/name`` into a Ref."""
    raw = ensure_str(value, field_path)
    parts = re.split(r"[./]", raw)
    if len(parts) == 1:
        return Ref(default_owner, parse_name(parts[0], field_path))
    if len(parts) != 2:
        raise ParseError(f'Error: {field_path} must be "name", "user.name" or "user/name", got "{raw}".')
    owner, name = parts
    return Ref(parse_name(owner, field_path), parse_name(name, field_path))


def parse_iso_date(value: Any, field_path: str) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        # PyYAML already turns unquoted YYYY-MM-DD into date objects.
        return value
    if not isinstance(value, str):
        raise InvalidDateError(f"Error: {field_path} must be YYYY-MM-DD string.")
    try:
        return date.fromisoformat(value.strip())
    except ValueError as exc:
        raise InvalidDateError(f'Error: {field_path} must be YYYY-MM-DD, got "{value}".') from exc


def normalize_weekday_code(token: Any, field_path: str) -> int:
    if not isinstance(token, str) or not token.strip():
        raise ParseError(f"Error: {field_path} must be a weekday code (M,T,W,R,F,S,U).")
    raw = token.strip()
    if raw.upper() in DOW_CODES and len(raw) == 1:
        return DOW_CODES[raw.upper()]
    if raw.lower() in WEEKDAY_NAMES:
        return WEEKDAY_NAMES.index(raw.lower())
    raise ParseError(f'Error: Invalid weekday "{token}" at {field_path}.')


def parse_dow_list(value: Any, field_path: str) -> frozenset:
    if value is None:
        return frozenset(range(7))
    if not isinstance(value, list):
        raise ParseError(f"Error: {field_path} must be a list of weekday codes.")
    return frozenset(normalize_weekday_code(item, f"{field_path}[{idx}]") for idx, item in enumerate(value))


def normalize_month_token(token: Any, field_path: str) -> int:
    if isinstance(token, bool):
        raise ParseError(f"Error: {field_path} must be month name or number.")
    if isinstance(token, int):
        month = token
    elif isinstance(token, str):
        raw = token.strip().lower()
        if raw in MONTH_NAME_TO_NUM:
            month = MONTH_NAME_TO_NUM[raw]
        elif raw.isdigit():
            month = int(raw)
        else:
            raise ParseError(f'Error: Invalid month "{token}" at {field_path}.')
    else:
        raise ParseError(f"Error: {field_path} must be month name or number.")
    if month < 1 or month > 12:
        raise ParseError(f"Error: {field_path} must be between 1 and 12.")
    return month


def validate_day_of_month(value: Any, month: int, field_path: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ParseError(f"Error: {field_path} must be an integer.")
    try:
        date(_REFERENCE_YEAR, month, value)
    except ValueError as exc:
        raise InvalidDateError(f"Error: {field_path} day {value} does not exist in month {month}.") from exc
    return value


def parse_observance(value: Any, field_path: str) -> Observance:
    if value is None:
        return Observance.NO_ADJUSTMENT
    raw = ensure_str(value, field_path).lower().replace("_", "").replace("-", "").replace(" ", "")
    if raw in OBSERVANCE_ALIASES:
        return OBSERVANCE_ALIASES[raw]
    for policy in Observance:
        if policy.value == raw:
            return policy
    raise ParseError(
        f'Error: {field_path} must be one of Next, Prev, Closest, NoAdjustment, got "{value}".'
    )


def parse_rule(raw: Any, field_path: str) -> ExclusionRule:
    if not isinstance(raw, Mapping):
        raise ParseError(f"Error: {field_path} must be a mapping.")
    unknown = set(raw.keys()) - RULE_KEYS
    if unknown:
        raise ParseError(f"Error: Unknown keys in {field_path}: {sorted(unknown)}.")

    description = raw.get("description") or ""
    if not isinstance(description, str):
        raise ParseError(f"Error: {field_path}.description must be a string.")
    observed = parse_observance(raw.get("observed"), f"{field_path}.observed")

    if "date" in raw:
        extra = set(raw.keys()) & {"month", "day", "dow", "offset", "since", "until"}
        if extra:
            raise ParseError(f'Error: {field_path} cannot mix "date" with {sorted(extra)}.')
        return ExactDate(
            date=parse_iso_date(raw["date"], f"{field_path}.date"),
            description=description,
            observed=observed,
        )

    if "month" not in raw:
        raise ParseError(f'Error: {field_path} requires "date", "month + day" or "month + dow + offset".')
    month = normalize_month_token(raw["month"], f"{field_path}.month")
    since = parse_iso_date(raw["since"], f"{field_path}.since") if raw.get("since") is not None else None
    until = parse_iso_date(raw["until"], f"{field_path}.until") if raw.get("until") is not None else None
    if since and until and since > until:
        raise ParseError(f"Error: {field_path}.since must be <= {field_path}.until.")

    has_day = "day" in raw
    has_dow = "dow" in raw or "offset" in raw
    if has_day and has_dow:
        raise ParseError(f'Error: {field_path} cannot mix "day" with "dow/offset".')
    if has_day:
        return MonthDay(
            month=month,
            day=validate_day_of_month(raw["day"], month, f"{field_path}.day"),
            description=description,
            observed=observed,
            since=since,
            until=until,
        )
    if "dow" in raw and "offset" in raw:
        offset = raw["offset"]
        if isinstance(offset, bool) or not isinstance(offset, int):
            raise ParseError(f"Error: {field_path}.offset must be an integer.")
        if offset == 0:
            raise ParseError(f"Error: {field_path}.offset must be nonzero.")
        return MonthWeekdayOffset(
            month=month,
            weekday=normalize_weekday_code(raw["dow"], f"{field_path}.dow"),
            offset=offset,
            description=description,
            observed=observed,
            since=since,
            until=until,
        )
    raise ParseError(f'Error: {field_path} requires "day" or both "dow" and "offset" with "month".')


def parse_calendar(raw: Any, field_path: str, default_owner: str) -> CalendarDefinition:
    if not isinstance(raw, Mapping):
        raise ParseError(f"Error: {field_path} must be a mapping.")
    unknown = set(raw.keys()) - CALENDAR_KEYS
    if unknown:
        raise ParseError(f"Error: Unknown keys in {field_path}: {sorted(unknown)}.")

    owner = parse_name(raw["owner"], f"{field_path}.owner") if "owner" in raw else default_owner
    ref = Ref(owner, parse_name(raw.get("name"), f"{field_path}.name"))

    description = raw.get("description") or ""
    if not isinstance(description, str):
        raise ParseError(f"Error: {field_path}.description must be a string.")

    exclude_raw = raw.get("exclude") or []
    if not isinstance(exclude_raw, list):
        raise ParseError(f"Error: {field_path}.exclude must be a list.")
    inherits_raw = raw.get("inherits") or []
    if not isinstance(inherits_raw, list):
        raise ParseError(f"Error: {field_path}.inherits must be a list.")

    return CalendarDefinition(
        ref=ref,
        description=description,
        dow_list=parse_dow_list(raw.get("dow_list"), f"{field_path}.dow_list"),
        public=ensure_bool(raw.get("public"), f"{field_path}.public", False),
        exclude=tuple(
            parse_rule(item, f"{field_path}.exclude[{idx}]") for idx, item in enumerate(exclude_raw)
        ),
        inherits=tuple(
            parse_reference(item, owner, f"{field_path}.inherits[{idx}]")
            for idx, item in enumerate(inherits_raw)
        ),
    )


def parse_interval(value: Any, field_path: str) -> Tuple[int, str]:
    if not isinstance(value, str):
        raise ParseError(f"Error: {field_path} must be interval string like 15m or 2h.")
    match = INTERVAL_RE.match(value.strip().lower())
    if not match:
        raise ParseError(f'Error: {field_path} must be in format <number><m|h>, got "{value}".')
    amount = int(match.group(1))
    unit = match.group(2)
    if amount <= 0:
        raise ParseError(f"Error: {field_path} must be > 0.")
    if unit == "s":
        raise ParseError("Error: seconds frequencies are unsupported. Use m or h.")
    if unit == "d":
        raise ParseError(f"Error: {field_path} repeats within a single day; use m or h.")
    return amount, unit


def _interval_delta(amount: int, unit: str) -> timedelta:
    if unit == "m":
        return timedelta(minutes=amount)
    if unit == "h":
        return timedelta(hours=amount)
    raise ParseError(f'Error: Unsupported interval unit "{unit}".')


def parse_job_schedule(raw: Any, field_path: str) -> JobSchedule:
    if not isinstance(raw, Mapping):
        raise ParseError(f"Error: {field_path} must be a mapping.")
    unknown = set(raw.keys()) - {"start", "frequency"}
    if unknown:
        raise ParseError(f"Error: Unknown keys in {field_path}: {sorted(unknown)}.")
    start = parse_cron_spec(raw.get("start"), f"{field_path}.start")
    if raw.get("frequency") is None:
        return JobSchedule(start=start)
    amount, unit = parse_interval(raw["frequency"], f"{field_path}.frequency")
    return JobSchedule(start=start, frequency=_interval_delta(amount, unit), frequency_text=f"{amount}{unit}")


def parse_command(value: Any, field_path: str) -> Tuple[str, ...]:
    if isinstance(value, str):
        # Support shell-style command strings for convenience in YAML.
        args = shlex.split(value)
    elif isinstance(value, list):
        args = []
        for idx, arg in enumerate(value):
            if not isinstance(arg, (str, int, float, bool)):
                raise ParseError(f"Error: {field_path}[{idx}] must be scalar value convertible to string.")
            args.append(str(arg))
    else:
        raise ParseError(f"Error: {field_path} must be a list or shell-style string.")
    if not args:
        raise ParseError(f"Error: {field_path} cannot be empty.")
    return tuple(args)


def parse_environment(value: Any, field_path: str) -> Mapping[str, str]:
    if value is None:
        return MappingProxyType({})
    if not isinstance(value, Mapping):
        raise ParseError(f"Error: {field_path} must be a mapping.")
    env: Dict[str, str] = {}
    for key, item in value.items():
        if not isinstance(key, str) or not key:
            raise ParseError(f"Error: {field_path} keys must be non-empty strings.")
        if not isinstance(item, (str, int, float, bool)):
            raise ParseError(f"Error: {field_path}.{key} must be a scalar value.")
        env[key] = str(item)
    return MappingProxyType(env)


def parse_job(raw: Any, field_path: str, default_owner: str, default_timezone_name: str) -> Job:
    if not isinstance(raw, Mapping):
        raise ParseError(f"Error: {field_path} must be a mapping.")
    unknown = set(raw.keys()) - JOB_KEYS
    if unknown:
        raise ParseError(f"Error: Unknown keys in {field_path}: {sorted(unknown)}.")

    owner = parse_name(raw["owner"], f"{field_path}.owner") if "owner" in raw else default_owner
    ref = Ref(owner, parse_name(raw.get("name"), f"{field_path}.name"))
    timezone_name = raw.get("timezone", default_timezone_name)
    if not isinstance(timezone_name, str):
        raise ParseError(f"Error: {field_path}.timezone must be a timezone string.")

    return Job(
        ref=ref,
        calendar=parse_reference(raw.get("calendar"), owner, f"{field_path}.calendar"),
        timezone=parse_timezone(timezone_name, f"{field_path}.timezone"),
        timezone_name=timezone_name,
        schedule=parse_job_schedule(raw.get("schedule"), f"{field_path}.schedule"),
        command=parse_command(raw.get("command"), f"{field_path}.command"),
        environment=parse_environment(raw.get("environment"), f"{field_path}.environment"),
        mailto=ensure_str_list(raw.get("mailto"), f"{field_path}.mailto"),
        public_acl=ensure_str_list(raw.get("public_acl"), f"{field_path}.public_acl"),
    )


def parse_calendars(raw: Any, field_path: str, default_owner: str) -> List[CalendarDefinition]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ParseError(f"Error: {field_path} must be a list.")
    return [parse_calendar(item, f"{field_path}[{idx}]", default_owner) for idx, item in enumerate(raw)]


def parse_jobs(raw: Any, field_path: str, default_owner: str, default_timezone_name: str) -> List[Job]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ParseError(f"Error: {field_path} must be a list.")
    return [
        parse_job(item, f"{field_path}[{idx}]", default_owner, default_timezone_name)
        for idx, item in enumerate(raw)
    ]
