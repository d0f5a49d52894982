"""
Cron-like start specs: token validation and time-of-day matching backed by croniter.

Matching works on naive local wall-clock datetimes; callers attach the job timezone.
Day-of-month and weekday are combined with AND, unlike classic cron.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Any, Dict, Mapping, Optional

from croniter import CroniterError, croniter

from almanac.errors import ParseError

DAY_NAME_TO_CRON = {
    "sunday": 0,
    "monday": 1,
    "tuesday": 2,
    "wednesday": 3,
    "thursday": 4,
    "friday": 5,
    "saturday": 6,
}
MONTH_NAME_TO_NUM = {
    "january": 1,
    "february": 2,
    "march": 3,
    "april": 4,
    "may": 5,
    "june": 6,
    "july": 7,
    "august": 8,
    "september": 9,
    "october": 10,
    "november": 11,
    "december": 12,
}
CRON_FIELD_RE = re.compile(r"^[0-9*,/\-]+$")
CRON_FIELDS = ("minute", "hour", "day", "month", "weekday")
FIELD_BOUNDS = {
    "minute": (0, 59),
    "hour": (0, 23),
    "day": (1, 31),
    "month": (1, 12),
    "weekday": (0, 7),
}
_SATISFIABILITY_ANCHOR = datetime(2000, 1, 1)


def replace_named_tokens(raw: str, mapping: Dict[str, int], field_path: str) -> str:
    def repl(match: re.Match[str]) -> str:
        token = match.group(0).lower()
        if token not in mapping:
            raise ParseError(f'Error: Invalid token "{token}" at {field_path}.')
        return str(mapping[token])

    return re.sub(r"[A-Za-z]+", repl, raw)


def validate_cron_token(raw: Any, field_path: str, min_value: int, max_value: int) -> str:
    token: str
    if isinstance(raw, bool):
        raise ParseError(f"Error: {field_path} must be string/int cron token.")
    if isinstance(raw, int):
        token = str(raw)
    elif isinstance(raw, str):
        token = raw.strip()
    else:
        raise ParseError(f"Error: {field_path} must be string/int cron token.")
    if not token:
        raise ParseError(f"Error: {field_path} cannot be empty.")
    if not CRON_FIELD_RE.match(token):
        raise ParseError(f'Error: Invalid cron token "{token}" at {field_path}.')

    for part in token.split(","):
        if not part:
            raise ParseError(f'Error: Invalid cron token "{token}" at {field_path}.')
        if "/" in part:
            base, step_str = part.split("/", 1)
            if not step_str.isdigit() or int(step_str) <= 0:
                raise ParseError(f'Error: Invalid step "{part}" at {field_path}.')
            step = int(step_str)
            if base == "*":
                continue
            _validate_range_or_single(base, field_path, min_value, max_value)
            if step > (max_value - min_value + 1):
                raise ParseError(f'Error: Step "{step}" too large at {field_path}.')
            continue
        _validate_range_or_single(part, field_path, min_value, max_value)
    return token


def _validate_range_or_single(token: str, field_path: str, min_value: int, max_value: int) -> None:
    if token == "*":
        return
    if "-" in token:
        left, right = token.split("-", 1)
        if not left.isdigit() or not right.isdigit():
            raise ParseError(f'Error: Invalid range "{token}" at {field_path}.')
        start = int(left)
        end = int(right)
        if start > end:
            raise ParseError(f'Error: Invalid range "{token}" at {field_path}.')
        if start < min_value or end > max_value:
            raise ParseError(
                f'Error: Range "{token}" out of bounds {min_value}-{max_value} at {field_path}.'
            )
        return
    if not token.isdigit():
        raise ParseError(f'Error: Invalid token "{token}" at {field_path}.')
    value = int(token)
    if value < min_value or value > max_value:
        raise ParseError(f'Error: Value "{value}" out of bounds {min_value}-{max_value} at {field_path}.')


@dataclass(frozen=True)
class CronSpec:
    minute: str = "*"
    hour: str = "*"
    day: str = "*"
    month: str = "*"
    weekday: str = "*"

    @property
    def expression(self) -> str:
        return f"{self.minute} {self.hour} {self.day} {self.month} {self.weekday}"

    def matches_day(self, day: date) -> bool:
        expr = f"* * {self.day} {self.month} {self.weekday}"
        return bool(croniter.match(expr, datetime.combine(day, time.min), day_or=False))

    def in_window(self, moment: datetime) -> bool:
        """True if ``moment`` matches every field except the minute."""
        expr = f"* {self.hour} {self.day} {self.month} {self.weekday}"
        return bool(croniter.match(expr, moment, day_or=False))

    def first_time_on(self, day: date) -> Optional[datetime]:
        return self.next_time_after(datetime.combine(day, time.min) - timedelta(minutes=1), day)

    def next_time_after(self, moment: datetime, day: date) -> Optional[datetime]:
        """Next minute/hour match strictly after ``moment`` that still falls on ``day``."""
        iterator = croniter(f"{self.minute} {self.hour} * * *", moment)
        nxt = iterator.get_next(datetime)
        if nxt.date() != day:
            return None
        return nxt


def parse_cron_spec(raw: Any, field_path: str) -> CronSpec:
    if not isinstance(raw, Mapping):
        raise ParseError(f"Error: {field_path} must be a mapping of cron fields.")
    unknown = set(raw.keys()) - set(CRON_FIELDS)
    if unknown:
        raise ParseError(f"Error: Unknown cron fields at {field_path}: {sorted(unknown)}.")
    if not raw:
        raise ParseError(f"Error: {field_path} requires at least one of {list(CRON_FIELDS)}.")

    tokens: Dict[str, str] = {}
    for name in CRON_FIELDS:
        value = raw.get(name, "*")
        path = f"{field_path}.{name}"
        if name == "month" and isinstance(value, str):
            value = replace_named_tokens(value.strip().lower(), MONTH_NAME_TO_NUM, path)
        elif name == "weekday" and isinstance(value, str):
            value = replace_named_tokens(value.strip().lower(), DAY_NAME_TO_CRON, path)
        low, high = FIELD_BOUNDS[name]
        tokens[name] = validate_cron_token(value, path, low, high)
    spec = CronSpec(**tokens)
    try:
        croniter(spec.expression, _SATISFIABILITY_ANCHOR, day_or=False).get_next(datetime)
    except CroniterError as exc:
        raise ParseError(f'Error: {field_path} "{spec.expression}" never matches any date.') from exc
    return spec
