"""
recurring_engine.domain.types -- Pure frozen dataclasses for recurring schedules.

ZERO I/O.

Frozen dataclasses with enum status fields and tuples for immutable
collections, shared by the occurrence calculator, the execution engine,
the claim coordinator, and the HTTP layer.

Invariants enforced:
    - All DTOs are frozen dataclasses (immutable).
    - Money is ``Decimal``; occurrence dates are ``date`` (no time-of-day).
    - ``JobHistoryEntry`` is keyed by (schedule_id, scheduled_for): the
      idempotency key for execution.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID


class _Unset(Enum):
    UNSET = "unset"


# Marks a field the caller did not send, as opposed to an explicit None.
UNSET = _Unset.UNSET


# =============================================================================
# Enums
# =============================================================================


class Frequency(str, Enum):
    """Recurrence frequency of a schedule."""

    DAILY = "daily"
    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


WEEKDAY_FREQUENCIES = frozenset({Frequency.WEEKLY, Frequency.BIWEEKLY})
MONTH_FREQUENCIES = frozenset({Frequency.MONTHLY, Frequency.QUARTERLY, Frequency.YEARLY})


class ScheduleStatus(str, Enum):
    """Schedule lifecycle status."""

    ACTIVE = "active"  # Eligible for sweep and run-now
    PAUSED = "paused"  # Cursor frozen until resumed
    COMPLETED = "completed"  # No occurrence left before end_date (terminal)
    CANCELLED = "cancelled"  # Stopped by a user (terminal)


class ExecutionStatus(str, Enum):
    """Outcome of one attempt to execute an occurrence."""

    EXECUTED = "executed"  # Job (and invoice) created, cursor advanced
    ALREADY_EXECUTED = "already_executed"  # History row existed; no new rows
    DENIED = "denied"  # Nothing to do (not active, stale date, claim held)
    FAILED = "failed"  # Rolled back; occurrence remains due


class DenialReason(str, Enum):
    """Why a claim (or an execution) was refused."""

    NOT_FOUND = "not_found"
    NOT_ACTIVE = "not_active"
    STALE_OCCURRENCE = "stale_occurrence"
    CLAIM_HELD = "claim_held"


class Trigger(str, Enum):
    """What started an execution."""

    SWEEP = "sweep"
    MANUAL = "manual"


# =============================================================================
# Rule and templates
# =============================================================================


@dataclass(frozen=True)
class RecurrenceRule:
    """Declarative recurrence rule.

    ``day_of_week`` uses 0 = Sunday ... 6 = Saturday.  It is required for
    weekly/biweekly rules; ``day_of_month`` (1-31) is required for
    monthly/quarterly/yearly rules.  Both bounds are inclusive.
    """

    frequency: Frequency
    start_date: date
    interval: int = 1
    day_of_week: int | None = None
    day_of_month: int | None = None
    end_date: date | None = None


@dataclass(frozen=True)
class ScheduleItem:
    """One invoice line template.  ``amount`` defaults to quantity * unit_price."""

    description: str
    quantity: Decimal
    unit_price: Decimal
    amount: Decimal | None = None

    def __post_init__(self) -> None:
        if self.amount is None:
            object.__setattr__(self, "amount", self.quantity * self.unit_price)


@dataclass(frozen=True)
class ScheduleDraft:
    """Everything needed to create a schedule."""

    business_id: UUID
    customer_id: UUID
    name: str
    rule: RecurrenceRule
    job_title: str
    job_description: str | None = None
    estimated_duration: int | None = None  # Minutes
    service_id: UUID | None = None
    staff_id: UUID | None = None
    auto_create_invoice: bool = False
    invoice_amount: Decimal | None = None
    invoice_tax: Decimal | None = None
    invoice_notes: str | None = None
    items: tuple[ScheduleItem, ...] = ()


@dataclass(frozen=True)
class TemplateUpdate:
    """Changes to a schedule's job/invoice templates.

    Fields left ``UNSET`` keep their current value; ``None`` clears a
    nullable field.  ``items`` replaces the whole sequence when given
    (``None`` or ``()`` removes every item).  The recurrence rule is not
    editable.
    """

    name: str | _Unset = UNSET
    job_title: str | _Unset = UNSET
    job_description: str | None | _Unset = UNSET
    estimated_duration: int | None | _Unset = UNSET
    service_id: UUID | None | _Unset = UNSET
    staff_id: UUID | None | _Unset = UNSET
    auto_create_invoice: bool | _Unset = UNSET
    invoice_amount: Decimal | None | _Unset = UNSET
    invoice_tax: Decimal | None | _Unset = UNSET
    invoice_notes: str | None | _Unset = UNSET
    items: tuple[ScheduleItem, ...] | None | _Unset = UNSET

    def changes(self) -> dict[str, object]:
        """The fields the caller set, explicit ``None`` included."""
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }


# =============================================================================
# Persistent state snapshots
# =============================================================================


@dataclass(frozen=True)
class RecurringSchedule:
    """Immutable snapshot of a recurring schedule row."""

    id: UUID
    business_id: UUID
    customer_id: UUID
    name: str
    rule: RecurrenceRule
    status: ScheduleStatus
    job_title: str
    next_run_date: date | None = None
    last_run_date: date | None = None
    job_description: str | None = None
    estimated_duration: int | None = None
    service_id: UUID | None = None
    staff_id: UUID | None = None
    auto_create_invoice: bool = False
    invoice_amount: Decimal | None = None
    invoice_tax: Decimal | None = None
    invoice_notes: str | None = None
    items: tuple[ScheduleItem, ...] = ()
    total_jobs_created: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def invoice_total_amount(self) -> Decimal:
        """Invoice amount before tax: the explicit amount, else the item sum."""
        if self.invoice_amount is not None:
            return self.invoice_amount
        return sum((item.amount for item in self.items), Decimal("0"))


@dataclass(frozen=True)
class JobHistoryEntry:
    """One executed occurrence (append-only)."""

    id: UUID
    schedule_id: UUID
    job_id: UUID
    scheduled_for: date
    invoice_id: UUID | None = None
    created_at: datetime | None = None


# =============================================================================
# Claim and execution outcomes
# =============================================================================


@dataclass(frozen=True)
class Claim:
    """Exclusive, storage-verified right to execute one occurrence."""

    schedule_id: UUID
    occurrence_date: date
    token: str
    expires_at: datetime


@dataclass(frozen=True)
class ClaimDenied:
    """Benign refusal: nothing to do for this occurrence right now."""

    schedule_id: UUID
    occurrence_date: date
    reason: DenialReason
    current_status: ScheduleStatus | None = None
    current_next_run_date: date | None = None


@dataclass(frozen=True)
class ExecutionResult:
    """Result of executing (or declining to execute) one occurrence.

    ``error_code`` holds the exception code for ``failed`` results and the
    denial reason for ``denied`` results.
    """

    schedule_id: UUID
    occurrence_date: date
    status: ExecutionStatus
    job_id: UUID | None = None
    invoice_id: UUID | None = None
    next_run_date: date | None = None
    schedule_status: ScheduleStatus | None = None
    error_code: str | None = None
    error_message: str | None = None

    @property
    def is_noop(self) -> bool:
        return self.status in (ExecutionStatus.ALREADY_EXECUTED, ExecutionStatus.DENIED)


@dataclass(frozen=True)
class SweepReport:
    """Summary of one sweep tick."""

    as_of: date
    due: int = 0
    executed: int = 0
    already_executed: int = 0
    denied: int = 0
    failed: int = 0
    timed_out: int = 0
    results: tuple[ExecutionResult, ...] = ()
