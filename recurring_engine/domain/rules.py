"""
Recurrence rule and schedule draft validation.

Contract:
    ``validate_rule()`` and ``validate_draft()`` either return ``None`` or
    raise a ``RuleError`` subclass.  They run at schedule creation (and on
    template updates) so the execution path never sees a malformed rule.

Architecture: recurring_engine/domain.  ZERO I/O.

Failure modes:
    - InvalidRecurrenceRuleError -- frequency/interval/day fields or
      bounds are inconsistent.
    - InvalidScheduleError -- job/invoice templates are unusable, or the
      rule has no occurrence at all between its bounds.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from backoffice_kernel.exceptions import InvalidRecurrenceRuleError, InvalidScheduleError

from recurring_engine.domain.occurrence import first_occurrence
from recurring_engine.domain.types import (
    MONTH_FREQUENCIES,
    WEEKDAY_FREQUENCIES,
    Frequency,
    RecurrenceRule,
    ScheduleDraft,
    ScheduleItem,
)

_ZERO = Decimal("0")


def _is_int(value: object) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_rule(rule: RecurrenceRule) -> None:
    """Reject a malformed recurrence rule.

    Raises:
        InvalidRecurrenceRuleError: naming the offending field.
    """
    if not isinstance(rule.frequency, Frequency):
        valid = [f.value for f in Frequency]
        raise InvalidRecurrenceRuleError(
            "frequency", f"must be one of {valid}, got {rule.frequency!r}"
        )

    if not _is_int(rule.interval) or rule.interval < 1:
        raise InvalidRecurrenceRuleError(
            "interval", f"must be a positive integer, got {rule.interval!r}"
        )

    if rule.frequency in WEEKDAY_FREQUENCIES:
        if rule.day_of_week is None:
            raise InvalidRecurrenceRuleError(
                "day_of_week", f"required for {rule.frequency.value} schedules"
            )
        if not _is_int(rule.day_of_week) or not 0 <= rule.day_of_week <= 6:
            raise InvalidRecurrenceRuleError(
                "day_of_week", f"must be 0 (Sunday) to 6 (Saturday), got {rule.day_of_week!r}"
            )
    elif rule.day_of_week is not None:
        raise InvalidRecurrenceRuleError(
            "day_of_week", f"not allowed for {rule.frequency.value} schedules"
        )

    if rule.frequency in MONTH_FREQUENCIES:
        if rule.day_of_month is None:
            raise InvalidRecurrenceRuleError(
                "day_of_month", f"required for {rule.frequency.value} schedules"
            )
        if not _is_int(rule.day_of_month) or not 1 <= rule.day_of_month <= 31:
            raise InvalidRecurrenceRuleError(
                "day_of_month", f"must be between 1 and 31, got {rule.day_of_month!r}"
            )
    elif rule.day_of_month is not None:
        raise InvalidRecurrenceRuleError(
            "day_of_month", f"not allowed for {rule.frequency.value} schedules"
        )

    if rule.end_date is not None and rule.end_date < rule.start_date:
        raise InvalidRecurrenceRuleError(
            "end_date",
            f"{rule.end_date.isoformat()} is before start_date {rule.start_date.isoformat()}",
        )


def validate_items(items: Iterable[ScheduleItem]) -> None:
    """Reject blank descriptions and negative quantities, prices or amounts."""
    for position, item in enumerate(items):
        field = f"items[{position}]"
        if not item.description or not item.description.strip():
            raise InvalidScheduleError(field, "description cannot be empty")
        if item.quantity < _ZERO:
            raise InvalidScheduleError(field, "quantity cannot be negative")
        if item.unit_price < _ZERO:
            raise InvalidScheduleError(field, "unit_price cannot be negative")
        if item.amount < _ZERO:
            raise InvalidScheduleError(field, "amount cannot be negative")


def validate_templates(
    *,
    name: str,
    job_title: str,
    estimated_duration: int | None,
    auto_create_invoice: bool,
    invoice_amount: Decimal | None,
    invoice_tax: Decimal | None,
    items: tuple[ScheduleItem, ...],
) -> None:
    """Validate the job and invoice templates of a schedule."""
    if not name or not name.strip():
        raise InvalidScheduleError("name", "cannot be empty")
    if not job_title or not job_title.strip():
        raise InvalidScheduleError("job_title", "cannot be empty")
    if estimated_duration is not None and estimated_duration < 0:
        raise InvalidScheduleError("estimated_duration", "cannot be negative")
    if invoice_amount is not None and invoice_amount < _ZERO:
        raise InvalidScheduleError("invoice_amount", "cannot be negative")
    if invoice_tax is not None and invoice_tax < _ZERO:
        raise InvalidScheduleError("invoice_tax", "cannot be negative")

    validate_items(items)

    if auto_create_invoice and invoice_amount is None and not items:
        raise InvalidScheduleError(
            "auto_create_invoice", "requires invoice_amount or at least one item"
        )


def validate_draft(draft: ScheduleDraft) -> None:
    """Validate a complete schedule draft (rule first, then templates).

    Raises:
        InvalidRecurrenceRuleError: if the rule is malformed.
        InvalidScheduleError: if a template is unusable or the rule has
            no occurrence between ``start_date`` and ``end_date``.
    """
    validate_rule(draft.rule)
    validate_templates(
        name=draft.name,
        job_title=draft.job_title,
        estimated_duration=draft.estimated_duration,
        auto_create_invoice=draft.auto_create_invoice,
        invoice_amount=draft.invoice_amount,
        invoice_tax=draft.invoice_tax,
        items=draft.items,
    )
    if first_occurrence(draft.rule) is None:
        raise InvalidScheduleError(
            "end_date", "rule has no occurrence between start_date and end_date"
        )
