"""
recurring_engine.domain -- Pure types, rule validation, occurrence
calculation and the schedule state machine.

ZERO I/O.  All types are frozen dataclasses.
"""

from recurring_engine.domain.lifecycle import (
    ALLOWED_TRANSITIONS,
    ScheduleAction,
    apply_action,
    is_executable,
    is_terminal,
    resume_next_run_date,
    validate_transition,
)
from recurring_engine.domain.occurrence import (
    first_occurrence,
    is_occurrence,
    iter_occurrences,
    next_occurrence,
    occurrence_on_or_after,
)
from recurring_engine.domain.rules import validate_draft, validate_rule, validate_templates
from recurring_engine.domain.types import (
    Claim,
    ClaimDenied,
    DenialReason,
    ExecutionResult,
    ExecutionStatus,
    Frequency,
    JobHistoryEntry,
    RecurrenceRule,
    RecurringSchedule,
    ScheduleDraft,
    ScheduleItem,
    ScheduleStatus,
    SweepReport,
    TemplateUpdate,
    Trigger,
    UNSET,
)

__all__ = [
    "ALLOWED_TRANSITIONS",
    "Claim",
    "ClaimDenied",
    "DenialReason",
    "ExecutionResult",
    "ExecutionStatus",
    "Frequency",
    "JobHistoryEntry",
    "RecurrenceRule",
    "RecurringSchedule",
    "ScheduleAction",
    "ScheduleDraft",
    "ScheduleItem",
    "ScheduleStatus",
    "SweepReport",
    "TemplateUpdate",
    "Trigger",
    "UNSET",
    "apply_action",
    "first_occurrence",
    "is_executable",
    "is_occurrence",
    "is_terminal",
    "iter_occurrences",
    "next_occurrence",
    "occurrence_on_or_after",
    "resume_next_run_date",
    "validate_draft",
    "validate_rule",
    "validate_templates",
]
