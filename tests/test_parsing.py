from __future__ import annotations

from datetime import date, timedelta

import pytest

from almanac.errors import InvalidDateError, ParseError
from almanac.models import ExactDate, MonthDay, MonthWeekdayOffset, Observance, Ref
from almanac.parsing import (
    parse_calendar,
    parse_dow_list,
    parse_job,
    parse_observance,
    parse_reference,
    parse_rule,
)


def _job(**overrides):
    raw = {
        "name": "nightly",
        "calendar": "work",
        "schedule": {"start": {"minute": 0, "hour": 2}, "frequency": "30m"},
        "command": "python etl.py --full",
    }
    raw.update(overrides)
    return raw


def test_parse_calendar_full_definition() -> None:
    calendar = parse_calendar(
        {
            "name": "personal",
            "description": "My days",
            "dow_list": ["M", "T", "W", "R", "F"],
            "public": True,
            "exclude": [
                {"date": "2021-05-01", "description": "Birthday"},
                {"month": "december", "day": 25, "observed": "Next"},
                {"month": 1, "dow": "monday", "offset": -1},
            ],
            "inherits": ["corp.USHolidays", "corp/CompanyHolidays", "mine"],
        },
        "calendars[0]",
        "alice",
    )
    assert calendar.ref == Ref("alice", "personal")
    assert calendar.dow_text == "MTWRF"
    assert calendar.public is True
    assert calendar.exclude == (
        ExactDate(date(2021, 5, 1), "Birthday"),
        MonthDay(12, 25, observed=Observance.NEXT),
        MonthWeekdayOffset(1, 0, -1),
    )
    assert calendar.inherits == (Ref("corp", "USHolidays"), Ref("corp", "CompanyHolidays"), Ref("alice", "mine"))


def test_missing_dow_list_means_every_day() -> None:
    assert parse_dow_list(None, "dow_list") == frozenset(range(7))
    assert parse_dow_list([], "dow_list") == frozenset()


def test_unknown_weekday_code_rejected() -> None:
    with pytest.raises(ParseError, match="calendars\\[0\\].dow_list\\[1\\]"):
        parse_calendar({"name": "x", "dow_list": ["M", "X"]}, "calendars[0]", "alice")


def test_dotted_calendar_name_rejected() -> None:
    with pytest.raises(ParseError, match="plain name"):
        parse_calendar({"name": "corp.holidays"}, "calendars[0]", "alice")


@pytest.mark.parametrize("raw", ["a.b.c", "a/b/c", ".b", "a/"])
def test_malformed_reference_rejected(raw: str) -> None:
    with pytest.raises(ParseError):
        parse_reference(raw, "alice", "inherits[0]")


@pytest.mark.parametrize("raw", ["Next", "next", "NEXT", "no_adjustment", "NoAdjustment", "no-adjustment", "none"])
def test_observance_spellings_normalize(raw: str) -> None:
    assert parse_observance(raw, "observed") in {Observance.NEXT, Observance.NO_ADJUSTMENT}


def test_unknown_observance_rejected() -> None:
    with pytest.raises(ParseError, match="Next, Prev, Closest, NoAdjustment"):
        parse_observance("Sometimes", "observed")


def test_zero_offset_rejected() -> None:
    with pytest.raises(ParseError, match="nonzero"):
        parse_rule({"month": 1, "dow": "M", "offset": 0}, "exclude[0]")


def test_impossible_day_of_month_rejected() -> None:
    with pytest.raises(InvalidDateError):
        parse_rule({"month": 2, "day": 30}, "exclude[0]")
    with pytest.raises(InvalidDateError):
        parse_rule({"month": 4, "day": 31}, "exclude[0]")
    assert parse_rule({"month": 2, "day": 29}, "exclude[0]") == MonthDay(2, 29)


def test_invalid_exact_date_rejected() -> None:
    with pytest.raises(InvalidDateError):
        parse_rule({"date": "2021-02-30"}, "exclude[0]")


def test_rule_shape_errors() -> None:
    with pytest.raises(ParseError, match="cannot mix"):
        parse_rule({"date": "2021-01-01", "month": 1}, "exclude[0]")
    with pytest.raises(ParseError, match="cannot mix"):
        parse_rule({"month": 1, "day": 1, "dow": "M", "offset": 1}, "exclude[0]")
    with pytest.raises(ParseError, match="requires"):
        parse_rule({"month": 1, "dow": "M"}, "exclude[0]")
    with pytest.raises(ParseError, match="Unknown keys"):
        parse_rule({"month": 1, "day": 1, "weekday": "M"}, "exclude[0]")


def test_since_after_until_rejected() -> None:
    with pytest.raises(ParseError, match="since"):
        parse_rule({"month": 6, "day": 19, "since": "2030-01-01", "until": "2020-01-01"}, "exclude[0]")


def test_parse_job_defaults_and_command_split() -> None:
    job = parse_job(_job(), "jobs[0]", "alice", "UTC")
    assert job.ref == Ref("alice", "nightly")
    assert job.calendar == Ref("alice", "work")
    assert job.timezone_name == "UTC"
    assert job.command == ("python", "etl.py", "--full")
    assert job.schedule.frequency == timedelta(minutes=30)
    assert job.schedule.start.expression == "0 2 * * *"


def test_parse_job_month_and_weekday_names() -> None:
    job = parse_job(
        _job(schedule={"start": {"minute": 0, "hour": 6, "month": "january,july", "weekday": "monday-friday"}}),
        "jobs[0]",
        "alice",
        "UTC",
    )
    assert job.schedule.start.month == "1,7"
    assert job.schedule.start.weekday == "1-5"


def test_invalid_timezone_rejected() -> None:
    with pytest.raises(ParseError, match="Invalid timezone"):
        parse_job(_job(timezone="Mars/Olympus"), "jobs[0]", "alice", "UTC")


@pytest.mark.parametrize("frequency", ["30s", "1d", "0m", "fast"])
def test_bad_frequency_rejected(frequency: str) -> None:
    with pytest.raises(ParseError):
        parse_job(_job(schedule={"start": {"minute": 0}, "frequency": frequency}), "jobs[0]", "alice", "UTC")


@pytest.mark.parametrize(
    "start",
    [
        {"minute": 60},
        {"hour": "5-2"},
        {"minute": "*/0"},
        {"second": 0},
        {},
        {"day": 30, "month": 2},
    ],
)
def test_bad_start_spec_rejected(start) -> None:
    with pytest.raises(ParseError):
        parse_job(_job(schedule={"start": start}), "jobs[0]", "alice", "UTC")


def test_empty_command_rejected() -> None:
    with pytest.raises(ParseError, match="cannot be empty"):
        parse_job(_job(command=[]), "jobs[0]", "alice", "UTC")
