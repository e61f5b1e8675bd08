"""
Schedule lifecycle state machine.

A schedule starts ACTIVE.  Users pause, resume and cancel it; the
execution engine completes it when the rule runs out of occurrences.
COMPLETED and CANCELLED are terminal.  Only ACTIVE schedules are
claimed by the sweep or by run-now.

PAUSED -> COMPLETED exists only for an execution that was already past
its claim when the pause landed and turned out to be the last occurrence.
"""

from __future__ import annotations

from datetime import date
from enum import Enum, unique
from uuid import UUID

from backoffice_config.schema import ResumePolicy
from backoffice_kernel.exceptions import InvalidStatusTransitionError

from recurring_engine.domain.occurrence import occurrence_on_or_after
from recurring_engine.domain.types import RecurrenceRule, ScheduleStatus


@unique
class ScheduleAction(str, Enum):
    """User or engine action that changes a schedule's status."""

    PAUSE = "pause"
    RESUME = "resume"
    CANCEL = "cancel"
    COMPLETE = "complete"


# Allowed status transitions (from -> set of valid next states)
ALLOWED_TRANSITIONS: dict[ScheduleStatus, frozenset[ScheduleStatus]] = {
    ScheduleStatus.ACTIVE: frozenset(
        {ScheduleStatus.PAUSED, ScheduleStatus.COMPLETED, ScheduleStatus.CANCELLED}
    ),
    ScheduleStatus.PAUSED: frozenset(
        {ScheduleStatus.ACTIVE, ScheduleStatus.COMPLETED, ScheduleStatus.CANCELLED}
    ),
    ScheduleStatus.COMPLETED: frozenset(),  # Terminal
    ScheduleStatus.CANCELLED: frozenset(),  # Terminal
}

# Statuses a user action may start from.  COMPLETE is engine-driven.
_ACTION_SOURCES: dict[ScheduleAction, frozenset[ScheduleStatus]] = {
    ScheduleAction.PAUSE: frozenset({ScheduleStatus.ACTIVE}),
    ScheduleAction.RESUME: frozenset({ScheduleStatus.PAUSED}),
    ScheduleAction.CANCEL: frozenset({ScheduleStatus.ACTIVE, ScheduleStatus.PAUSED}),
    ScheduleAction.COMPLETE: frozenset({ScheduleStatus.ACTIVE, ScheduleStatus.PAUSED}),
}

_ACTION_TARGETS: dict[ScheduleAction, ScheduleStatus] = {
    ScheduleAction.PAUSE: ScheduleStatus.PAUSED,
    ScheduleAction.RESUME: ScheduleStatus.ACTIVE,
    ScheduleAction.CANCEL: ScheduleStatus.CANCELLED,
    ScheduleAction.COMPLETE: ScheduleStatus.COMPLETED,
}

TERMINAL_STATUSES = frozenset({ScheduleStatus.COMPLETED, ScheduleStatus.CANCELLED})


def validate_transition(current: ScheduleStatus, target: ScheduleStatus) -> bool:
    """Check if a status transition is valid."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def is_terminal(status: ScheduleStatus) -> bool:
    return status in TERMINAL_STATUSES


def is_executable(status: ScheduleStatus) -> bool:
    """Only ACTIVE schedules may be claimed."""
    return status == ScheduleStatus.ACTIVE


def apply_action(
    current: ScheduleStatus,
    action: ScheduleAction,
    schedule_id: UUID | None = None,
) -> ScheduleStatus:
    """Return the status ``action`` leads to from ``current``.

    Raises:
        InvalidStatusTransitionError: if the action is not allowed.
    """
    target = _ACTION_TARGETS[action]
    if current not in _ACTION_SOURCES[action] or not validate_transition(current, target):
        raise InvalidStatusTransitionError(
            str(schedule_id) if schedule_id else None,
            current.value,
            action.value,
        )
    return target


def resume_next_run_date(
    rule: RecurrenceRule,
    next_run_date: date | None,
    today: date,
    policy: ResumePolicy,
) -> date | None:
    """Cursor a paused schedule resumes with.

    A cursor on or after ``today`` is kept.  A past cursor is kept under
    RUN_MISSED_ONCE (the sweep executes it once, then rolls forward) and
    replaced by the first occurrence on or after ``today`` under
    SKIP_MISSED.  ``None`` means no occurrence remains and the schedule
    completes instead of resuming.  The cursor never moves backwards.
    """
    if next_run_date is None:
        return None
    if next_run_date >= today:
        return next_run_date
    if policy == ResumePolicy.RUN_MISSED_ONCE:
        return next_run_date
    return occurrence_on_or_after(rule, today)
