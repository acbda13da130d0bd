"""
Calendar arithmetic for recurring task rules and report schedules.

Pure functions, no I/O. Weekdays use the 0=Sunday..6=Saturday convention
shared with the dashboard.

Frequencies:
- WEEKLY / BIWEEKLY: +7 / +14 days, optionally snapped to a weekday of the
  Sunday-started week the addition lands in
- MONTHLY / QUARTERLY / SEMIANNUAL: +1 / +3 / +6 calendar months, optionally
  re-anchored to a day of month clamped to the month length
"""
import calendar
import re
from datetime import datetime, time, timedelta


TASK_FREQUENCIES = ("WEEKLY", "MONTHLY", "QUARTERLY", "SEMIANNUAL")
REPORT_FREQUENCIES = ("weekly", "biweekly", "monthly")

_WEEK_STEPS = {"WEEKLY": 7, "BIWEEKLY": 14}
_MONTH_STEPS = {"MONTHLY": 1, "QUARTERLY": 3, "SEMIANNUAL": 6}

_TIME_OF_DAY_RE = re.compile(r"^([0-1]?[0-9]|2[0-3]):([0-5][0-9])$")


def last_day_of_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(d: datetime, n: int) -> datetime:
    month = d.month - 1 + n
    year = d.year + month // 12
    month = month % 12 + 1
    day = min(d.day, last_day_of_month(year, month))
    return d.replace(year=year, month=month, day=day)


def sunday_weekday(d: datetime) -> int:
    """Weekday index with Sunday=0 (Python's weekday() has Monday=0)."""
    return (d.weekday() + 1) % 7


def _check_anchors(day_of_week: int | None, day_of_month: int | None) -> None:
    if day_of_week is not None and not 0 <= day_of_week <= 6:
        raise ValueError(f"day_of_week must be 0..6, got {day_of_week}")
    if day_of_month is not None and not 1 <= day_of_month <= 31:
        raise ValueError(f"day_of_month must be 1..31, got {day_of_month}")


def next_occurrence(
    previous: datetime,
    frequency: str,
    day_of_week: int | None = None,
    day_of_month: int | None = None,
) -> datetime:
    """Return the occurrence after ``previous``.

    The weekday anchor applies to WEEKLY/BIWEEKLY only and the day-of-month
    anchor to month-based frequencies only; the other one is ignored.
    Time of day and tzinfo of ``previous`` are kept.
    """
    _check_anchors(day_of_week, day_of_month)
    freq = frequency.upper()

    if freq in _WEEK_STEPS:
        nxt = previous + timedelta(days=_WEEK_STEPS[freq])
        if day_of_week is not None:
            nxt += timedelta(days=day_of_week - sunday_weekday(nxt))
        return nxt

    if freq in _MONTH_STEPS:
        nxt = add_months(previous, _MONTH_STEPS[freq])
        if day_of_month is not None:
            nxt = nxt.replace(day=min(day_of_month, last_day_of_month(nxt.year, nxt.month)))
        return nxt

    raise ValueError(f"invalid frequency: {frequency}")


def parse_time_of_day(value: str) -> time:
    """Parse "HH:MM" (24h) into a time."""
    m = _TIME_OF_DAY_RE.match(value.strip()) if value else None
    if not m:
        raise ValueError(f"time_of_day must be HH:MM, got {value!r}")
    return time(int(m.group(1)), int(m.group(2)))


def at_time_of_day(d: datetime, time_of_day: str) -> datetime:
    t = parse_time_of_day(time_of_day)
    return d.replace(hour=t.hour, minute=t.minute, second=0, microsecond=0)


def first_run_at(
    frequency: str,
    day_of_week: int | None,
    day_of_month: int | None,
    time_of_day: str,
    now: datetime,
) -> datetime:
    """Initial next_run_at for a report schedule created or edited at ``now``."""
    _check_anchors(day_of_week, day_of_month)
    freq = frequency.upper()
    candidate = at_time_of_day(now, time_of_day)

    if freq in _WEEK_STEPS and day_of_week is not None:
        # biweekly looks ahead over a 14-day window: a weekday already past
        # this week lands 8-13 days out, not in the coming week
        step = _WEEK_STEPS[freq]
        days_until = (day_of_week - sunday_weekday(now)) % step
        if days_until == 0 and candidate <= now:
            return candidate + timedelta(days=step)
        return candidate + timedelta(days=days_until)

    if freq == "MONTHLY" and day_of_month is not None:
        candidate = candidate.replace(
            day=min(day_of_month, last_day_of_month(candidate.year, candidate.month))
        )
        if candidate <= now:
            candidate = add_months(candidate.replace(day=1), 1)
            candidate = candidate.replace(
                day=min(day_of_month, last_day_of_month(candidate.year, candidate.month))
            )
        return candidate

    return candidate + timedelta(days=7)
