"""
Cron parsing and schedule evaluation.

Pure functions: the scheduler passes in the schedule snapshot and its
clock reading, nothing here reads the wall clock.

Missed runs are coalesced.  A schedule that slept through several cron
matches fires once, and its next run becomes the first match strictly
after the firing instant.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta

from mortuary_kernel.domain.clock import as_utc
from mortuary_kernel.exceptions import InvalidCronExpressionError

from mortuary_batch.domain.types import JobSchedule, ScheduleFrequency

# (name, lowest, highest) for the five cron fields, in order.
_FIELDS = (
    ("minute", 0, 59),
    ("hour", 0, 23),
    ("day of month", 1, 31),
    ("month", 1, 12),
    ("day of week", 0, 6),
)

# Longest search for the next match; covers a leap day once a year.
_SEARCH_HORIZON = timedelta(days=366)


@dataclass(frozen=True)
class CronSpec:
    """A parsed ``minute hour day-of-month month day-of-week`` expression.

    Day of week follows cron: 0 is Sunday.  Both day fields must match.
    """

    minutes: frozenset[int]
    hours: frozenset[int]
    days_of_month: frozenset[int]
    months: frozenset[int]
    days_of_week: frozenset[int]


def _expand(term: str, name: str, low: int, high: int) -> range:
    """One comma-separated term: ``*``, ``n``, ``a-b``, each optionally ``/step``."""
    base, _, step_text = term.partition("/")
    step = int(step_text) if step_text else 1
    if step < 1:
        raise ValueError(f"{name}: step must be positive, got {step_text}")

    if base == "*":
        start, stop = low, high
    elif "-" in base:
        first, _, last = base.partition("-")
        start, stop = int(first), int(last)
    else:
        start = int(base)
        # "5/15" means every 15 starting at 5; a bare "5" is just 5.
        stop = high if step_text else start

    if start > stop:
        raise ValueError(f"{name}: range {start}-{stop} is reversed")
    if start < low or stop > high:
        raise ValueError(f"{name}: {start}-{stop} outside {low}-{high}")
    return range(start, stop + 1, step)


def parse_cron(expression: str) -> CronSpec:
    """Parse a five-field cron expression.

    Raises:
        InvalidCronExpressionError: wrong field count, bad syntax, or a value
            out of range.
    """
    parts = (expression or "").split()
    if len(parts) != len(_FIELDS):
        raise InvalidCronExpressionError(
            expression, f"expected {len(_FIELDS)} fields, got {len(parts)}"
        )

    fields = []
    try:
        for text, (name, low, high) in zip(parts, _FIELDS):
            values: set[int] = set()
            for term in text.split(","):
                if not term:
                    raise ValueError(f"{name}: empty list element")
                values.update(_expand(term, name, low, high))
            fields.append(frozenset(values))
    except ValueError as exc:
        raise InvalidCronExpressionError(expression, str(exc)) from exc

    return CronSpec(*fields)


def matches_cron(spec: CronSpec, moment: datetime) -> bool:
    moment = as_utc(moment)
    # datetime.weekday() counts from Monday; cron counts from Sunday.
    weekday = (moment.weekday() + 1) % 7
    return (
        moment.month in spec.months
        and moment.day in spec.days_of_month
        and weekday in spec.days_of_week
        and moment.hour in spec.hours
        and moment.minute in spec.minutes
    )


def next_cron_match(spec: CronSpec, after: datetime) -> datetime:
    """First whole minute strictly after ``after`` that matches ``spec``.

    Whole days and hours that cannot match are skipped rather than scanned
    minute by minute.

    Raises:
        InvalidCronExpressionError: nothing matches within a year
            (e.g. ``0 0 31 2 *``).
    """
    after = as_utc(after)
    limit = after + _SEARCH_HORIZON
    candidate = after.replace(second=0, microsecond=0) + timedelta(minutes=1)

    while candidate <= limit:
        weekday = (candidate.weekday() + 1) % 7
        if (
            candidate.month not in spec.months
            or candidate.day not in spec.days_of_month
            or weekday not in spec.days_of_week
        ):
            candidate = candidate.replace(hour=0, minute=0) + timedelta(days=1)
        elif candidate.hour not in spec.hours:
            candidate = candidate.replace(minute=0) + timedelta(hours=1)
        elif candidate.minute not in spec.minutes:
            candidate += timedelta(minutes=1)
        else:
            return candidate

    raise InvalidCronExpressionError(
        "<parsed>", f"no match within a year after {after.isoformat()}"
    )


def should_fire(schedule: JobSchedule, as_of: datetime) -> bool:
    """Whether ``schedule`` is due at ``as_of``.

    ON_DEMAND never fires on its own.  ONCE fires a single time, at or after
    ``next_run_at``.  CRON fires once ``as_of`` reaches ``next_run_at``; a
    cron schedule with an unusable expression never fires.
    """
    if not schedule.is_active or schedule.frequency is ScheduleFrequency.ON_DEMAND:
        return False

    if schedule.frequency is ScheduleFrequency.ONCE and schedule.last_run_at is not None:
        return False

    if schedule.frequency is ScheduleFrequency.CRON:
        try:
            parse_cron(schedule.cron_expression or "")
        except InvalidCronExpressionError:
            return False

    return schedule.next_run_at is None or as_utc(as_of) >= as_utc(schedule.next_run_at)


def compute_next_run(
    frequency: ScheduleFrequency,
    last_run_at: datetime | None,
    cron_expression: str | None = None,
    base_time: datetime | None = None,
) -> datetime | None:
    """Next firing instant after ``base_time`` (or ``last_run_at``).

    Returns None for ONCE and ON_DEMAND, and when there is no base time.

    Raises:
        InvalidCronExpressionError: CRON with a malformed expression.
    """
    if frequency is not ScheduleFrequency.CRON:
        return None
    base = base_time or last_run_at
    if base is None:
        return None
    return next_cron_match(parse_cron(cron_expression or ""), base)
