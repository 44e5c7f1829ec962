from __future__ import annotations

import calendar
from datetime import date, timedelta
from typing import Iterator, Tuple

from finledger.models import InvalidPeriod

GROUPINGS = {"day", "week", "month"}


def validate_month(month: int) -> int:
    if not isinstance(month, int) or isinstance(month, bool) or not 1 <= month <= 12:
        raise InvalidPeriod("Month must be between 1 and 12.")
    return month


def month_start(value: date) -> date:
    return value.replace(day=1)


def shift_month(value: date, months: int) -> date:
    month_index = (value.year * 12 + value.month - 1) + months
    year = month_index // 12
    month = month_index % 12 + 1
    return date(year, month, 1)


def shift_month_keep_day(value: date, months: int) -> date:
    month_index = (value.year * 12 + value.month - 1) + months
    year = month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    day = min(value.day, last_day)
    return date(year, month, day)


def month_end(value: date) -> date:
    next_month = shift_month(month_start(value), 1)
    return next_month - timedelta(days=1)


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    first = date(year, validate_month(month), 1)
    return first, month_end(first)


def year_bounds(year: int) -> Tuple[date, date]:
    return date(year, 1, 1), date(year, 12, 31)


def previous_period(year: int, month: int | None) -> Tuple[date, date]:
    if month is None:
        return year_bounds(year - 1)
    previous = shift_month(date(year, validate_month(month), 1), -1)
    return month_bounds(previous.year, previous.month)


def iter_days(start_value: date, end_value: date) -> Iterator[date]:
    cursor = start_value
    while cursor <= end_value:
        yield cursor
        cursor += timedelta(days=1)


def normalize_grouping(value: str) -> str:
    normalized = value.strip().lower()
    if normalized not in GROUPINGS:
        raise InvalidPeriod("Invalid grouping. Use day, week or month.")
    return normalized


def bucket_start(value: date, grouping: str) -> date:
    if grouping == "week":
        return value - timedelta(days=value.weekday())
    if grouping == "month":
        return value.replace(day=1)
    return value
