from __future__ import annotations

import calendar
import re
from datetime import date, datetime
from typing import Optional, Tuple

from district_analytics.core.errors import ValidationError


DATE_FORMAT = "%Y-%m-%d"
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_PROGRAM_YEAR_RE = re.compile(r"^(\d{4})-(\d{4})$")


def parse_date(value: str) -> date:
    if not isinstance(value, str) or not _DATE_RE.match(value):
        raise ValidationError(f"Invalid date: {value!r}")
    try:
        return datetime.strptime(value, DATE_FORMAT).date()
    except ValueError as exc:
        raise ValidationError(f"Invalid date: {value!r}") from exc


def format_date(value: date) -> str:
    return value.strftime(DATE_FORMAT)


def is_date_string(value: str) -> bool:
    if not isinstance(value, str) or not _DATE_RE.match(value):
        return False
    try:
        datetime.strptime(value, DATE_FORMAT)
    except ValueError:
        return False
    return True


def get_last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def program_year_start(day: date) -> int:
    """Program years run July 1 to June 30 and are named by their start year."""
    return day.year if day.month >= 7 else day.year - 1


def program_year_for(day: date) -> str:
    start = program_year_start(day)
    return f"{start}-{start + 1}"


def program_year_bounds(program_year: str) -> Tuple[date, date]:
    match = _PROGRAM_YEAR_RE.match(program_year or "")
    if not match or int(match.group(2)) != int(match.group(1)) + 1:
        raise ValidationError(f"Invalid program year: {program_year!r}")
    start = int(match.group(1))
    return date(start, 7, 1), date(start + 1, 6, 30)


def days_between(a: date, b: date) -> int:
    return abs((a - b).days)


def same_day_previous_year(day: date) -> date:
    try:
        return day.replace(year=day.year - 1)
    except ValueError:
        # Feb 29 -> Feb 28
        return day.replace(year=day.year - 1, day=28)


def round1(value: float) -> float:
    return round(value, 1)


def percent_change(current: float, previous: float) -> Optional[float]:
    if previous == 0:
        return None
    return round1((current - previous) / previous * 100)
