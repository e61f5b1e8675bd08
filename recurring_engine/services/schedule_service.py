"""
RecurringScheduleService -- facade for everything outside the sweep.

Contract:
    Create, read, edit templates, preview, run now, pause, resume and
    cancel schedules.  Each method opens and closes its own sessions and
    returns frozen DTOs.  Run-now goes through ``OccurrenceRunner``
    exactly like the sweep.

Architecture: recurring_engine/services.  Used by the HTTP router and by
    scripts; composes ScheduleRepository, OccurrenceRunner and the pure
    domain (rules, occurrence calculator, state machine).

Invariants enforced:
    - RuleError is raised at creation; a malformed rule is never stored.
    - Status changes go through ``apply_action`` and are written with a
      guarded UPDATE on the status that was read.  A lost race is re-read
      and retried once before ``StaleStateError`` reaches the caller.
    - Resume never moves the cursor backwards (``resume_policy``).
    - Cancel is terminal and clears the cursor; history is kept.

Failure modes:
    - ScheduleNotFoundError, InvalidStatusTransitionError, RuleError.
    - ExecutionFailureError -- run-now execution failed and was rolled back.
"""

from __future__ import annotations

import time
from datetime import date
from typing import Any, Callable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from backoffice_config.schema import EngineSettings
from backoffice_kernel.db.engine import session_scope
from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.exceptions import (
    ExecutionFailureError,
    InvalidScheduleError,
    InvalidStatusTransitionError,
    ScheduleNotFoundError,
    StaleStateError,
)
from backoffice_kernel.logging_config import get_logger

from recurring_engine.domain.lifecycle import (
    ScheduleAction,
    apply_action,
    is_terminal,
    resume_next_run_date,
)
from recurring_engine.domain.occurrence import iter_occurrences, occurrence_on_or_after
from recurring_engine.domain.rules import validate_draft, validate_templates
from recurring_engine.domain.types import (
    DenialReason,
    ExecutionResult,
    ExecutionStatus,
    JobHistoryEntry,
    RecurringSchedule,
    ScheduleDraft,
    ScheduleStatus,
    TemplateUpdate,
    Trigger,
)
from recurring_engine.services.repository import ScheduleRepository
from recurring_engine.services.runner import OccurrenceRunner

logger = get_logger("recurring.schedule_service")

_RUN_NOW_POLL_SECONDS = 0.05

_TEMPLATE_FIELDS = (
    "name",
    "job_title",
    "job_description",
    "estimated_duration",
    "service_id",
    "staff_id",
    "auto_create_invoice",
    "invoice_amount",
    "invoice_tax",
    "invoice_notes",
)


class RecurringScheduleService:
    """Schedule lifecycle and manual execution."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        runner: OccurrenceRunner,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
        actor_id: UUID | None = None,
    ):
        self._session_factory = session_factory
        self._runner = runner
        self._clock = clock or SystemClock()
        self._settings = settings or EngineSettings()
        self._actor_id = actor_id or uuid4()

    # -------------------------------------------------------------------------
    # Create / read
    # -------------------------------------------------------------------------

    def create_schedule(
        self,
        draft: ScheduleDraft,
        actor_id: UUID | None = None,
    ) -> RecurringSchedule:
        """Validate and store a new ACTIVE schedule.

        The first cursor is the first occurrence on or after both
        ``start_date`` and today; a start date in the past does not
        produce a backlog.

        Raises:
            InvalidRecurrenceRuleError: if the rule is malformed.
            InvalidScheduleError: if a template is unusable or no
                occurrence remains.
        """
        validate_draft(draft)

        from_date = max(draft.rule.start_date, self._clock.today())
        next_run_date = occurrence_on_or_after(draft.rule, from_date)
        if next_run_date is None:
            raise InvalidScheduleError("end_date", "no occurrence remains on or after today")

        with session_scope(self._session_factory) as session:
            model = ScheduleRepository(session).add(draft, next_run_date, actor_id or self._actor_id)
            schedule = model.to_dto()

        logger.info(
            "recurring_schedule_created",
            extra={
                "schedule_id": str(schedule.id),
                "business_id": str(schedule.business_id),
                "frequency": schedule.rule.frequency.value,
                "next_run_date": schedule.next_run_date,
            },
        )
        return schedule

    def get_schedule(self, schedule_id: UUID) -> RecurringSchedule:
        """Raises ScheduleNotFoundError if absent."""
        with session_scope(self._session_factory) as session:
            schedule = ScheduleRepository(session).get(schedule_id)
        if schedule is None:
            raise ScheduleNotFoundError(str(schedule_id))
        return schedule

    def list_schedules(self, business_id: UUID) -> list[RecurringSchedule]:
        with session_scope(self._session_factory) as session:
            return ScheduleRepository(session).list_for_business(business_id)

    def get_history(self, schedule_id: UUID) -> list[JobHistoryEntry]:
        """Executed occurrences of a schedule, oldest first."""
        with session_scope(self._session_factory) as session:
            repo = ScheduleRepository(session)
            if repo.get_model(schedule_id) is None:
                raise ScheduleNotFoundError(str(schedule_id))
            return repo.list_history(schedule_id)

    def preview_occurrences(self, schedule_id: UUID, count: int = 5) -> list[date]:
        """The next ``count`` dates the schedule would run on, cursor first."""
        if count < 1:
            raise InvalidScheduleError("count", "must be positive")
        schedule = self.get_schedule(schedule_id)
        if schedule.next_run_date is None or is_terminal(schedule.status):
            return []
        return [schedule.next_run_date] + list(
            iter_occurrences(schedule.rule, after=schedule.next_run_date, limit=count - 1)
        )

    # -------------------------------------------------------------------------
    # Template edits
    # -------------------------------------------------------------------------

    def update_templates(
        self,
        schedule_id: UUID,
        update: TemplateUpdate,
        actor_id: UUID | None = None,
    ) -> RecurringSchedule:
        """Apply job/invoice template changes.  Later occurrences use them.

        Raises:
            ScheduleNotFoundError: if absent.
            InvalidStatusTransitionError: if the schedule is terminal.
            InvalidScheduleError: if the merged templates are unusable.
        """
        actor = actor_id or self._actor_id

        with session_scope(self._session_factory) as session:
            repo = ScheduleRepository(session)
            model = repo.get_model(schedule_id)
            if model is None:
                raise ScheduleNotFoundError(str(schedule_id))
            status = ScheduleStatus(model.status)
            if is_terminal(status):
                raise InvalidStatusTransitionError(str(schedule_id), status.value, "update")

            current = model.to_dto()
            changes = update.changes()
            if changes.get("auto_create_invoice", False) is None:
                raise InvalidScheduleError("auto_create_invoice", "cannot be null")
            merged: dict[str, Any] = {
                field: changes.get(field, getattr(current, field)) for field in _TEMPLATE_FIELDS
            }
            replace_items = "items" in changes
            items = tuple(changes["items"] or ()) if replace_items else current.items

            validate_templates(
                name=merged["name"],
                job_title=merged["job_title"],
                estimated_duration=merged["estimated_duration"],
                auto_create_invoice=merged["auto_create_invoice"],
                invoice_amount=merged["invoice_amount"],
                invoice_tax=merged["invoice_tax"],
                items=items,
            )

            for field, value in merged.items():
                setattr(model, field, value)
            model.updated_by_id = actor
            if replace_items:
                repo.replace_items(model, items, actor)
            session.flush()
            schedule = model.to_dto()

        logger.info(
            "recurring_schedule_updated",
            extra={
                "schedule_id": str(schedule_id),
                "changed_fields": sorted(changes),
            },
        )
        return schedule

    # -------------------------------------------------------------------------
    # Manual execution
    # -------------------------------------------------------------------------

    def run_now(
        self,
        schedule_id: UUID,
        occurrence_date: date | None = None,
        actor_id: UUID | None = None,
    ) -> ExecutionResult:
        """Execute the schedule's current occurrence immediately.

        Targets ``occurrence_date`` when given, else the current cursor
        (even if it lies in the future).  If another execution holds the
        claim, waits up to ``run_now_wait_seconds`` for it to commit and
        returns its result as ``already_executed``.

        Raises:
            ScheduleNotFoundError: if absent.
            ExecutionFailureError: if execution failed and was rolled back.
        """
        schedule = self.get_schedule(schedule_id)
        target = occurrence_date or schedule.next_run_date
        if target is None:
            return ExecutionResult(
                schedule_id=schedule_id,
                occurrence_date=schedule.last_run_date or self._clock.today(),
                status=ExecutionStatus.DENIED,
                schedule_status=schedule.status,
                error_code=DenialReason.NOT_ACTIVE.value,
            )

        logger.info(
            "recurring_run_now_requested",
            extra={"schedule_id": str(schedule_id), "occurrence_date": target},
        )
        result = self._runner.run(
            schedule_id, target, Trigger.MANUAL, actor_id=actor_id or self._actor_id,
        )

        if (
            result.status == ExecutionStatus.DENIED
            and result.error_code == DenialReason.CLAIM_HELD.value
        ):
            result = self._wait_for_execution(schedule_id, target) or result

        if result.status == ExecutionStatus.FAILED:
            raise ExecutionFailureError(
                str(schedule_id),
                target.isoformat(),
                result.error_code,
                result.error_message or "execution failed",
            )
        return result

    def _wait_for_execution(self, schedule_id: UUID, occurrence_date: date) -> ExecutionResult | None:
        deadline = time.monotonic() + self._settings.run_now_wait_seconds
        while True:
            executed = self._runner.engine.lookup_executed(schedule_id, occurrence_date)
            if executed is not None:
                return executed
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                return None
            time.sleep(min(_RUN_NOW_POLL_SECONDS, remaining))

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def pause(self, schedule_id: UUID, actor_id: UUID | None = None) -> RecurringSchedule:
        return self._transition(schedule_id, ScheduleAction.PAUSE, actor_id)

    def resume(self, schedule_id: UUID, actor_id: UUID | None = None) -> RecurringSchedule:
        return self._transition(schedule_id, ScheduleAction.RESUME, actor_id)

    def cancel(self, schedule_id: UUID, actor_id: UUID | None = None) -> RecurringSchedule:
        return self._transition(schedule_id, ScheduleAction.CANCEL, actor_id)

    def _transition(
        self,
        schedule_id: UUID,
        action: ScheduleAction,
        actor_id: UUID | None,
    ) -> RecurringSchedule:
        actor = actor_id or self._actor_id
        try:
            return self._apply_transition(schedule_id, action, actor)
        except StaleStateError:
            # Re-read once; a second lost race goes to the caller.
            logger.info(
                "recurring_schedule_transition_retry",
                extra={"schedule_id": str(schedule_id), "action": action.value},
            )
            return self._apply_transition(schedule_id, action, actor)

    def _apply_transition(
        self,
        schedule_id: UUID,
        action: ScheduleAction,
        actor_id: UUID,
    ) -> RecurringSchedule:
        schedule = self.get_schedule(schedule_id)
        target = apply_action(schedule.status, action, schedule_id)

        cursor: dict[str, Any] = {}
        if action == ScheduleAction.CANCEL:
            cursor["next_run_date"] = None
        elif action == ScheduleAction.RESUME:
            resumed = resume_next_run_date(
                schedule.rule,
                schedule.next_run_date,
                self._clock.today(),
                self._settings.resume_policy,
            )
            cursor["next_run_date"] = resumed
            if resumed is None:
                target = apply_action(schedule.status, ScheduleAction.COMPLETE, schedule_id)

        with session_scope(self._session_factory) as session:
            ScheduleRepository(session).update_status(
                schedule_id, schedule.status, target, actor_id=actor_id, **cursor,
            )

        logger.info(
            "recurring_schedule_status_changed",
            extra={
                "schedule_id": str(schedule_id),
                "action": action.value,
                "from_status": schedule.status.value,
                "to_status": target.value,
                "next_run_date": cursor.get("next_run_date", schedule.next_run_date),
            },
        )
        return self.get_schedule(schedule_id)
