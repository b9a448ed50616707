# recurring/services/cadence.py

"""
======================================================
PATH: recurring/services/cadence.py
======================================================
CALENDAR ARITHMETIC FOR RECURRING RULES

All month math goes through (year, month, day) and clamp_to_month_length(),
never through day overflow, so Jan 31 + 1 month is Feb 28/29 and not Mar 3.

advance(run_on, cadence, options) -> the run date after `run_on`:
  DAILY    +1 day (interval_days is not applied: one day per due tick)
  WEEKLY   next `weekday` (1..7 days ahead), else +7 * interval_weeks
  MONTHLY  end_of_month > day_of_month > nth_week/nth_weekday > same day
  ANNUAL   +1 year, same month/day (clamped)

Weekdays in options are 0 = Sunday ... 6 = Saturday.

Instants: a run date becomes an aware datetime at midnight. Non-daily
cadences use the tenant's time zone when one is set; daily cadence is
always UTC midnight.
"""

from __future__ import annotations

import calendar
from datetime import date, datetime, time, timedelta, timezone as dt_timezone, tzinfo

DAILY = "DAILY"
WEEKLY = "WEEKLY"
MONTHLY = "MONTHLY"
ANNUAL = "ANNUAL"

CADENCES = (DAILY, WEEKLY, MONTHLY, ANNUAL)


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def clamp_to_month_length(year: int, month: int, day: int) -> date:
    return date(year, month, min(max(day, 1), days_in_month(year, month)))


def add_months(year: int, month: int, count: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + count
    return index // 12, index % 12 + 1


def sunday_weekday(d: date) -> int:
    """0 = Sunday ... 6 = Saturday."""
    return (d.weekday() + 1) % 7


def nth_weekday_of_month(year: int, month: int, nth: int, weekday: int) -> date:
    """
    `nth` occurrence of `weekday` (0 = Sunday) in the month. Past the end of
    a short month it clamps to the month's last day.
    """
    first = date(year, month, 1)
    offset = (weekday - sunday_weekday(first)) % 7
    return clamp_to_month_length(year, month, 1 + offset + (nth - 1) * 7)


def _int_option(options: dict, key: str) -> int | None:
    value = options.get(key)
    if value is None or value == "" or isinstance(value, bool):
        return None
    return int(value)


def advance(run_on: date, cadence: str, options: dict | None = None) -> date:
    options = options or {}

    if cadence == DAILY:
        return run_on + timedelta(days=1)

    if cadence == WEEKLY:
        weekday = _int_option(options, "weekday")
        if weekday is not None:
            delta = (weekday - sunday_weekday(run_on)) % 7
            return run_on + timedelta(days=delta or 7)
        weeks = max(_int_option(options, "interval_weeks") or 1, 1)
        return run_on + timedelta(days=7 * weeks)

    if cadence == MONTHLY:
        year, month = add_months(run_on.year, run_on.month, 1)

        if options.get("end_of_month"):
            return date(year, month, days_in_month(year, month))

        day_of_month = _int_option(options, "day_of_month")
        if day_of_month:
            return clamp_to_month_length(year, month, day_of_month)

        nth_week = _int_option(options, "nth_week")
        nth_weekday = _int_option(options, "nth_weekday")
        if nth_week and nth_week >= 1 and nth_weekday is not None:
            return nth_weekday_of_month(year, month, nth_week, nth_weekday)

        return clamp_to_month_length(year, month, run_on.day)

    if cadence == ANNUAL:
        return clamp_to_month_length(run_on.year + 1, run_on.month, run_on.day)

    raise ValueError(f"Unknown cadence: {cadence!r}")


def occurrences(start: date, cadence: str, options: dict | None = None, count: int = 3,
                *, end_date: date | None = None) -> list[date]:
    """`start` itself, then each advance, up to `count` dates (stops past end_date)."""
    out: list[date] = []
    current = start
    while len(out) < count:
        if end_date and current > end_date:
            break
        out.append(current)
        current = advance(current, cadence, options)
    return out


# ------------------------------------------------------------
# INSTANTS
# ------------------------------------------------------------

def schedule_zone(cadence: str, tz: tzinfo | None) -> tzinfo:
    if cadence == DAILY or tz is None:
        return dt_timezone.utc
    return tz


def midnight(run_on: date, cadence: str, tz: tzinfo | None = None) -> datetime:
    return datetime.combine(run_on, time.min, tzinfo=schedule_zone(cadence, tz))


def run_date_of(instant: datetime, cadence: str, tz: tzinfo | None = None) -> date:
    return instant.astimezone(schedule_zone(cadence, tz)).date()


def local_date(instant: datetime, tz: tzinfo | None = None) -> date:
    return instant.astimezone(tz or dt_timezone.utc).date()
