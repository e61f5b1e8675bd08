"""
Pure occurrence calculation for recurrence rules.

Contract:
    ``next_occurrence(rule, after)`` returns the smallest on-rule date
    strictly later than ``after``, or ``None`` once ``rule.end_date`` is
    passed.  PURE -- no I/O, no clock; "today" always comes from the caller.

Architecture: recurring_engine/domain.  ZERO I/O.

Cadence:
    Occurrences are anchored.  The anchor is the first on-rule date on or
    after ``start_date``; every later occurrence is the anchor plus a whole
    number of periods.  Day-based rules (daily, weekly, biweekly) step in
    days.  Month-based rules (monthly, quarterly, yearly) step in calendar
    months and land on ``day_of_month``, clamped to the month's last day.
    Clamping is computed per month from ``day_of_month``, never from the
    previous occurrence, so Jan 31 -> Feb 29 -> Mar 31 -> Apr 30.

Weekday convention:
    0=Sunday, 1=Monday, ..., 6=Saturday.
    Python date.weekday(): 0=Monday, ..., 6=Sunday.
"""

from __future__ import annotations

import calendar
from collections.abc import Iterator
from datetime import date, timedelta

from recurring_engine.domain.types import (
    MONTH_FREQUENCIES,
    WEEKDAY_FREQUENCIES,
    Frequency,
    RecurrenceRule,
)

_ONE_DAY = timedelta(days=1)


# =============================================================================
# Helpers
# =============================================================================


def sunday_weekday(day: date) -> int:
    """Weekday of ``day`` with 0=Sunday."""
    return (day.weekday() + 1) % 7


def _add_months(year: int, month: int, months: int) -> tuple[int, int]:
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def clamped_day(year: int, month: int, day_of_month: int) -> date:
    """``day_of_month`` in the given month, clamped to the month's last day."""
    last = calendar.monthrange(year, month)[1]
    return date(year, month, min(day_of_month, last))


def period_days(rule: RecurrenceRule) -> int:
    """Length in days of one period of a day-based rule."""
    if rule.frequency == Frequency.DAILY:
        return rule.interval
    if rule.frequency == Frequency.WEEKLY:
        return 7 * rule.interval
    if rule.frequency == Frequency.BIWEEKLY:
        return 14 * rule.interval
    raise ValueError(f"{rule.frequency.value} is not a day-based frequency")


def period_months(rule: RecurrenceRule) -> int:
    """Length in months of one period of a month-based rule."""
    if rule.frequency == Frequency.MONTHLY:
        return rule.interval
    if rule.frequency == Frequency.QUARTERLY:
        return 3 * rule.interval
    if rule.frequency == Frequency.YEARLY:
        return 12 * rule.interval
    raise ValueError(f"{rule.frequency.value} is not a month-based frequency")


def anchor_date(rule: RecurrenceRule) -> date:
    """First on-rule date on or after ``rule.start_date`` (ignores end_date)."""
    start = rule.start_date

    if rule.frequency in WEEKDAY_FREQUENCIES:
        offset = (rule.day_of_week - sunday_weekday(start)) % 7
        return start + timedelta(days=offset)

    if rule.frequency in MONTH_FREQUENCIES:
        candidate = clamped_day(start.year, start.month, rule.day_of_month)
        if candidate >= start:
            return candidate
        year, month = _add_months(start.year, start.month, 1)
        return clamped_day(year, month, rule.day_of_month)

    return start


def _month_occurrence(anchor: date, months: int, day_of_month: int) -> date:
    year, month = _add_months(anchor.year, anchor.month, months)
    return clamped_day(year, month, day_of_month)


# =============================================================================
# Occurrence calculation (pure)
# =============================================================================


def next_occurrence(rule: RecurrenceRule, after: date) -> date | None:
    """Smallest occurrence strictly later than ``after``.

    Returns ``None`` when that occurrence would fall after ``rule.end_date``.
    Seed with ``start_date - 1 day`` to make ``start_date`` itself eligible
    (see ``first_occurrence``).
    """
    anchor = anchor_date(rule)

    if after < anchor:
        candidate = anchor
    elif rule.frequency in MONTH_FREQUENCIES:
        step = period_months(rule)
        months_since = (after.year - anchor.year) * 12 + (after.month - anchor.month)
        k = months_since // step
        candidate = _month_occurrence(anchor, k * step, rule.day_of_month)
        if candidate <= after:
            candidate = _month_occurrence(anchor, (k + 1) * step, rule.day_of_month)
    else:
        step = period_days(rule)
        k = (after - anchor).days // step + 1
        candidate = anchor + timedelta(days=k * step)

    if rule.end_date is not None and candidate > rule.end_date:
        return None
    return candidate


def first_occurrence(rule: RecurrenceRule) -> date | None:
    """First occurrence of the rule, ``start_date`` included."""
    return next_occurrence(rule, rule.start_date - _ONE_DAY)


def occurrence_on_or_after(rule: RecurrenceRule, day: date) -> date | None:
    """First occurrence on or after ``day`` (never before ``start_date``)."""
    return next_occurrence(rule, day - _ONE_DAY)


def is_occurrence(rule: RecurrenceRule, day: date) -> bool:
    """True if ``day`` is one of the rule's occurrences."""
    return occurrence_on_or_after(rule, day) == day


def iter_occurrences(
    rule: RecurrenceRule,
    after: date | None = None,
    limit: int | None = None,
) -> Iterator[date]:
    """Yield successive occurrences strictly later than ``after``.

    ``after`` defaults to the day before ``start_date``.  Stops at
    ``end_date`` or after ``limit`` occurrences, whichever comes first;
    an unbounded rule with no ``limit`` yields forever.
    """
    cursor = after if after is not None else rule.start_date - _ONE_DAY
    produced = 0
    while limit is None or produced < limit:
        occurrence = next_occurrence(rule, cursor)
        if occurrence is None:
            return
        yield occurrence
        produced += 1
        cursor = occurrence
