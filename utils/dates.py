from datetime import date, datetime
from typing import Tuple
import calendar
import re

YEAR_MONTH_PATTERN = re.compile(r"^(\d{4})-(\d{2})$")

GERMAN_MONTH_NAMES = [
    "Januar", "Februar", "März", "April", "Mai", "Juni",
    "Juli", "August", "September", "Oktober", "November", "Dezember",
]


def add_months(day: date, months: int) -> date:
    """Shift by whole months, clamping the day to the target month's length"""
    month_index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    return day.replace(year=year, month=month, day=min(day.day, calendar.monthrange(year, month)[1]))


def month_start(day: date) -> date:
    return day.replace(day=1)


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    """First and last calendar day of a month, both inclusive"""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def parse_year_month(value: str) -> Tuple[int, int]:
    match = YEAR_MONTH_PATTERN.match(value or "")
    if not match:
        raise ValueError(f"Invalid month {value!r}, expected YYYY-MM")
    year, month = int(match.group(1)), int(match.group(2))
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month {value!r}, expected YYYY-MM")
    return year, month


def format_year_month(year: int, month: int) -> str:
    return f"{year}-{month:02d}"


def german_month_label(year: int, month: int) -> str:
    return f"{GERMAN_MONTH_NAMES[month - 1]} {year}"


def day_start(day: date) -> datetime:
    return datetime.combine(day, datetime.min.time())
