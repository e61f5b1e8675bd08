"""
ExecutionEngine -- all-or-nothing execution of one occurrence.

Contract:
    ``execute(schedule_id, occurrence_date)`` creates the Job, optionally
    the Invoice, one history row, and advances the schedule cursor, all in
    one transaction it owns.  Returns an ``ExecutionResult``; it never
    raises for an execution failure.

Architecture: recurring_engine/services.  Calls the Job and Invoice domain
    services through injected factories that bind them to the engine's
    session, so their writes share its transaction.

Invariants enforced:
    - Idempotency: an existing history row for (schedule_id,
      occurrence_date) short-circuits to ``already_executed`` with the
      original job/invoice ids.  A unique violation on the history insert
      (a concurrent winner) is treated the same way.
    - Atomicity: any failure rolls back Job, Invoice, history row and
      cursor together.  The occurrence stays due.
    - Monotonic cursor: the cursor only moves forward from the value on
      the locked row (compare-and-swap).
    - A claimed occurrence completes even if the schedule is paused or
      cancelled mid-execution; the cursor then advances from the new status.
    - All timestamps from the injected Clock.

Failure modes:
    - ``failed`` result -- a collaborator raised (JobCreationError,
      InvoiceCreationError) or the database failed.  Logged as
      ``recurring_execution_failed`` with schedule id and occurrence date.
    - ``denied`` result -- schedule missing, terminal, or its cursor is no
      longer at ``occurrence_date``.
"""

from __future__ import annotations

import time
from datetime import date, timedelta
from decimal import Decimal
from typing import Callable
from uuid import UUID

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backoffice_config.schema import EngineSettings
from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.exceptions import (
    BackofficeError,
    DuplicateOccurrenceError,
    StaleStateError,
)
from backoffice_kernel.logging_config import get_logger
from backoffice_modules.invoicing.models import InvoiceLine, InvoiceRequest
from backoffice_modules.invoicing.service import InvoiceService
from backoffice_modules.jobs.models import JobRequest
from backoffice_modules.jobs.service import JobService

from recurring_engine.domain.lifecycle import ScheduleAction, apply_action
from recurring_engine.domain.occurrence import next_occurrence, occurrence_on_or_after
from recurring_engine.domain.types import (
    Claim,
    DenialReason,
    ExecutionResult,
    ExecutionStatus,
    JobHistoryEntry,
    RecurringSchedule,
    ScheduleStatus,
)
from recurring_engine.services.repository import ScheduleRepository

logger = get_logger("recurring.executor")

_UNEXPECTED_ERROR = "UNEXPECTED_ERROR"


class ExecutionEngine:
    """Executes one occurrence of one schedule per call.

    Contract:
        - Caller holds a ``Claim`` for the occurrence (pass it in when the
          schedule may have been paused or cancelled after claiming).
        - Opens, commits or rolls back, and closes its own session.

    Non-goals:
        - Does NOT claim or release -- that is ``OccurrenceRunner``'s job.
        - Does NOT send notifications; Job/Invoice creation are the only
          side effects.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
        job_service_factory: Callable[[Session], JobService] = JobService,
        invoice_service_factory: Callable[[Session], InvoiceService] = InvoiceService,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._settings = settings or EngineSettings()
        self._job_service_factory = job_service_factory
        self._invoice_service_factory = invoice_service_factory

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def execute(
        self,
        schedule_id: UUID,
        occurrence_date: date,
        *,
        actor_id: UUID,
        claim: Claim | None = None,
    ) -> ExecutionResult:
        """Execute ``occurrence_date`` of ``schedule_id`` exactly once."""
        start_time = time.monotonic()
        session = self._session_factory()
        try:
            result = self._execute_in_session(
                session, schedule_id, occurrence_date, actor_id, claim,
            )
            if result.status == ExecutionStatus.EXECUTED:
                session.commit()
            else:
                session.rollback()

        except (DuplicateOccurrenceError, IntegrityError) as exc:
            # A concurrent execution committed the same occurrence first.
            session.rollback()
            session.close()
            result = self.lookup_executed(schedule_id, occurrence_date)
            if result is None:
                result = self._failed(schedule_id, occurrence_date, exc)

        except StaleStateError as exc:
            session.rollback()
            logger.info(
                "recurring_execution_stale",
                extra={
                    "schedule_id": str(schedule_id),
                    "occurrence_date": occurrence_date.isoformat(),
                    "expected": exc.expected,
                },
            )
            result = self._denied(schedule_id, occurrence_date, DenialReason.STALE_OCCURRENCE)

        except Exception as exc:
            session.rollback()
            result = self._failed(schedule_id, occurrence_date, exc)

        finally:
            session.close()

        if result.status == ExecutionStatus.EXECUTED:
            logger.info(
                "recurring_occurrence_executed",
                extra={
                    "schedule_id": str(schedule_id),
                    "occurrence_date": occurrence_date.isoformat(),
                    "job_id": str(result.job_id),
                    "invoice_id": str(result.invoice_id) if result.invoice_id else None,
                    "next_run_date": result.next_run_date,
                    "schedule_status": result.schedule_status.value,
                    "duration_ms": int((time.monotonic() - start_time) * 1000),
                },
            )
        return result

    def lookup_executed(
        self,
        schedule_id: UUID,
        occurrence_date: date,
    ) -> ExecutionResult | None:
        """``already_executed`` result for a committed occurrence, else None."""
        session = self._session_factory()
        try:
            repo = ScheduleRepository(session)
            entry = repo.get_history(schedule_id, occurrence_date)
            if entry is None:
                return None
            return self._already_executed(entry, repo.get(schedule_id))
        finally:
            session.rollback()
            session.close()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _execute_in_session(
        self,
        session: Session,
        schedule_id: UUID,
        occurrence_date: date,
        actor_id: UUID,
        claim: Claim | None,
    ) -> ExecutionResult:
        repo = ScheduleRepository(session)

        # Idempotency check
        existing = repo.get_history(schedule_id, occurrence_date)
        if existing is not None:
            return self._already_executed(existing, repo.get(schedule_id))

        model = repo.get_model_for_update(schedule_id)
        if model is None:
            return self._denied(schedule_id, occurrence_date, DenialReason.NOT_FOUND)
        schedule = model.to_dto()
        claim_token = claim.token if claim is not None else None

        reason = self._check_executable(schedule, occurrence_date, model.claim_token, claim_token)
        if reason is not None:
            return self._denied(
                schedule_id, occurrence_date, reason,
                next_run_date=schedule.next_run_date,
                schedule_status=schedule.status,
            )

        job_id = self._job_service_factory(session).create_job(
            JobRequest(
                business_id=schedule.business_id,
                customer_id=schedule.customer_id,
                title=schedule.job_title,
                scheduled_date=occurrence_date,
                description=schedule.job_description,
                staff_id=schedule.staff_id,
                service_id=schedule.service_id,
                estimated_duration=schedule.estimated_duration,
                recurring_schedule_id=schedule.id,
            ),
            actor_id,
        )

        invoice_id = None
        if schedule.auto_create_invoice:
            invoice_id = self._invoice_service_factory(session).create_invoice(
                self._invoice_request(schedule, occurrence_date),
                [
                    InvoiceLine(
                        description=item.description,
                        quantity=item.quantity,
                        unit_price=item.unit_price,
                        amount=item.amount,
                    )
                    for item in schedule.items
                ],
                job_id,
                actor_id,
            )

        repo.insert_history(schedule.id, occurrence_date, job_id, invoice_id, actor_id)

        # Advance from the row as it is now: a pause or cancel may have landed
        # since the first read.  A held claim still lets the occurrence finish.
        model = repo.get_model_for_update(schedule_id)
        if model is None:
            raise StaleStateError("RecurringSchedule", str(schedule_id), "row present")
        current = model.to_dto()
        if self._check_executable(current, occurrence_date, model.claim_token, claim_token) is not None:
            raise StaleStateError(
                "RecurringSchedule",
                str(schedule_id),
                f"next_run_date={occurrence_date} status={schedule.status.value}",
            )

        new_next, new_status = self._advance(current, occurrence_date)
        repo.compare_and_swap_next_run(
            current.id,
            current.next_run_date,
            new_next,
            expected_status=current.status,
            new_status=new_status,
            last_run_date=occurrence_date,
            actor_id=actor_id,
            claim_token=claim_token if current.status != ScheduleStatus.ACTIVE else None,
        )

        return ExecutionResult(
            schedule_id=schedule.id,
            occurrence_date=occurrence_date,
            status=ExecutionStatus.EXECUTED,
            job_id=job_id,
            invoice_id=invoice_id,
            next_run_date=new_next,
            schedule_status=new_status,
        )

    @staticmethod
    def _check_executable(
        schedule: RecurringSchedule,
        occurrence_date: date,
        held_token: str | None,
        claim_token: str | None,
    ) -> DenialReason | None:
        """None if the occurrence may run, else the reason it may not.

        ACTIVE needs the cursor at ``occurrence_date``.  PAUSED and
        CANCELLED only run an occurrence whose claim was granted before the
        status changed, proven by the claim token still on the row.
        """
        holds_claim = claim_token is not None and held_token == claim_token

        if schedule.status == ScheduleStatus.COMPLETED:
            return DenialReason.NOT_ACTIVE

        if schedule.status == ScheduleStatus.CANCELLED:
            if not holds_claim:
                return DenialReason.NOT_ACTIVE
            if schedule.last_run_date is not None and schedule.last_run_date >= occurrence_date:
                return DenialReason.STALE_OCCURRENCE
            return None

        if schedule.status == ScheduleStatus.PAUSED and not holds_claim:
            return DenialReason.NOT_ACTIVE

        if schedule.next_run_date != occurrence_date:
            return DenialReason.STALE_OCCURRENCE
        return None

    def _advance(
        self,
        schedule: RecurringSchedule,
        occurrence_date: date,
    ) -> tuple[date | None, ScheduleStatus]:
        """Cursor and status after ``occurrence_date`` has executed.

        Unless ``catch_up_missed`` is set, a next occurrence that is already
        in the past is rolled forward to the first one on or after today.
        """
        if schedule.status == ScheduleStatus.CANCELLED:
            return None, ScheduleStatus.CANCELLED

        new_next = next_occurrence(schedule.rule, occurrence_date)
        today = self._clock.today()
        if new_next is not None and new_next < today and not self._settings.catch_up_missed:
            new_next = occurrence_on_or_after(schedule.rule, today)

        if new_next is None:
            return None, apply_action(schedule.status, ScheduleAction.COMPLETE, schedule.id)
        return new_next, schedule.status

    def _invoice_request(self, schedule: RecurringSchedule, occurrence_date: date) -> InvoiceRequest:
        return InvoiceRequest(
            business_id=schedule.business_id,
            customer_id=schedule.customer_id,
            amount=schedule.invoice_total_amount,
            tax=schedule.invoice_tax if schedule.invoice_tax is not None else Decimal("0"),
            issue_date=occurrence_date,
            due_date=occurrence_date + timedelta(days=self._settings.invoice_payment_terms_days),
            notes=schedule.invoice_notes,
            recurring_schedule_id=schedule.id,
        )

    @staticmethod
    def _already_executed(
        entry: JobHistoryEntry,
        schedule: RecurringSchedule | None,
    ) -> ExecutionResult:
        return ExecutionResult(
            schedule_id=entry.schedule_id,
            occurrence_date=entry.scheduled_for,
            status=ExecutionStatus.ALREADY_EXECUTED,
            job_id=entry.job_id,
            invoice_id=entry.invoice_id,
            next_run_date=schedule.next_run_date if schedule is not None else None,
            schedule_status=schedule.status if schedule is not None else None,
        )

    @staticmethod
    def _denied(
        schedule_id: UUID,
        occurrence_date: date,
        reason: DenialReason,
        next_run_date: date | None = None,
        schedule_status: ScheduleStatus | None = None,
    ) -> ExecutionResult:
        return ExecutionResult(
            schedule_id=schedule_id,
            occurrence_date=occurrence_date,
            status=ExecutionStatus.DENIED,
            next_run_date=next_run_date,
            schedule_status=schedule_status,
            error_code=reason.value,
        )

    @staticmethod
    def _failed(schedule_id: UUID, occurrence_date: date, exc: Exception) -> ExecutionResult:
        error_code = exc.code if isinstance(exc, BackofficeError) else _UNEXPECTED_ERROR
        logger.error(
            "recurring_execution_failed",
            extra={
                "schedule_id": str(schedule_id),
                "occurrence_date": occurrence_date.isoformat(),
                "error_code": error_code,
            },
            exc_info=exc,
        )
        return ExecutionResult(
            schedule_id=schedule_id,
            occurrence_date=occurrence_date,
            status=ExecutionStatus.FAILED,
            error_code=error_code,
            error_message=str(exc),
        )
