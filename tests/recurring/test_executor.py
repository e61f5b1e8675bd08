"""
Tests for recurring_engine.services.executor -- ExecutionEngine.

Validates all-or-nothing execution of one occurrence: Job + Invoice +
history row + cursor advance commit together or not at all, repeated
execution is a no-op, the cursor only moves forward, and schedules
complete when their rule runs out.

Uses file-backed SQLite with real ORM models.
"""

from dataclasses import replace
from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import create_engine, update
from sqlalchemy.orm import sessionmaker

from backoffice_kernel.db.engine import session_scope
from backoffice_kernel.exceptions import InvoiceCreationError
from backoffice_modules.invoicing.orm import InvoiceModel
from backoffice_modules.invoicing.service import InvoiceService
from backoffice_modules.jobs.orm import JobModel
from backoffice_modules.jobs.service import JobService

from recurring_engine.domain.types import (
    DenialReason,
    ExecutionStatus,
    Frequency,
    ScheduleItem,
    ScheduleStatus,
)
from recurring_engine.models.schedule import RecurringJobHistoryModel, RecurringScheduleModel
from recurring_engine.services.executor import ExecutionEngine
from recurring_engine.services.repository import ScheduleRepository


# =============================================================================
# Collaborator doubles
# =============================================================================


class FailingInvoiceService:
    """Invoice domain that always refuses (e.g. a tax lookup is down)."""

    def __init__(self, session):
        self._session = session

    def create_invoice(self, request, lines, job_id, actor_id):
        raise InvoiceCreationError("tax service unavailable", job_id=str(job_id))


class ExplodingJobService:
    """Job domain that fails with an untyped error."""

    def __init__(self, session):
        self._session = session

    def create_job(self, request, actor_id):
        raise RuntimeError("connection reset")


def _read(session_factory, fn):
    session = session_factory()
    try:
        return fn(session)
    finally:
        session.rollback()
        session.close()


def _schedule(schedule_service, schedule_id):
    return schedule_service.get_schedule(schedule_id)


# =============================================================================
# Successful execution
# =============================================================================


class TestExecute:
    def test_creates_job_and_advances_cursor(
        self, execution_engine, create_schedule, schedule_service, session_factory, actor_id,
    ):
        schedule = create_schedule(job_description="Skim, brush, vacuum", estimated_duration=45)

        result = execution_engine.execute(schedule.id, date(2024, 1, 1), actor_id=actor_id)

        assert result.status == ExecutionStatus.EXECUTED
        assert result.job_id is not None
        assert result.invoice_id is None
        assert result.next_run_date == date(2024, 1, 2)
        assert result.schedule_status == ScheduleStatus.ACTIVE

        job = _read(session_factory, lambda s: JobService(s).get_job(result.job_id))
        assert job.title == "Pool cleaning"
        assert job.description == "Skim, brush, vacuum"
        assert job.estimated_duration == 45
        assert job.scheduled_date == date(2024, 1, 1)
        assert job.recurring_schedule_id == schedule.id

        stored = _schedule(schedule_service, schedule.id)
        assert stored.next_run_date == date(2024, 1, 2)
        assert stored.last_run_date == date(2024, 1, 1)
        assert stored.total_jobs_created == 1

        history = schedule_service.get_history(schedule.id)
        assert [(h.scheduled_for, h.job_id) for h in history] == [(date(2024, 1, 1), result.job_id)]

    def test_creates_invoice_from_items(
        self, execution_engine, create_schedule, session_factory, settings, actor_id,
    ):
        schedule = create_schedule(
            auto_create_invoice=True,
            invoice_tax=Decimal("8.25"),
            invoice_notes="Thank you",
            items=(
                ScheduleItem("Weekly service", Decimal("1"), Decimal("100.00")),
                ScheduleItem("Chlorine", Decimal("2"), Decimal("12.50")),
            ),
        )

        result = execution_engine.execute(schedule.id, date(2024, 1, 1), actor_id=actor_id)

        invoice = _read(session_factory, lambda s: InvoiceService(s).get_invoice(result.invoice_id))
        assert invoice.job_id == result.job_id
        assert invoice.recurring_schedule_id == schedule.id
        assert invoice.amount == Decimal("125.00")
        assert invoice.tax == Decimal("8.25")
        assert invoice.total == Decimal("133.25")
        assert invoice.notes == "Thank you"
        assert invoice.due_date == date(2024, 1, 1) + timedelta(days=settings.invoice_payment_terms_days)
        assert [line.description for line in invoice.lines] == ["Weekly service", "Chlorine"]

    def test_explicit_invoice_amount_wins(self, execution_engine, create_schedule, session_factory, actor_id):
        schedule = create_schedule(
            auto_create_invoice=True,
            invoice_amount=Decimal("80.00"),
            items=(ScheduleItem("Weekly service", Decimal("1"), Decimal("100.00")),),
        )

        result = execution_engine.execute(schedule.id, date(2024, 1, 1), actor_id=actor_id)

        invoice = _read(session_factory, lambda s: InvoiceService(s).get_invoice(result.invoice_id))
        assert invoice.amount == Decimal("80.00")
        assert invoice.total == Decimal("80.00")

    def test_logs_execution(self, execution_engine, create_schedule, captured_logs, actor_id):
        schedule = create_schedule()

        execution_engine.execute(schedule.id, date(2024, 1, 1), actor_id=actor_id)

        records = [r for r in captured_logs() if r["message"] == "recurring_occurrence_executed"]
        assert len(records) == 1
        assert records[0]["schedule_id"] == str(schedule.id)
        assert records[0]["occurrence_date"] == "2024-01-01"
        assert "duration_ms" in records[0]


# =============================================================================
# Idempotency and monotonicity
# =============================================================================


class TestIdempotency:
    def test_second_execution_is_noop(self, execution_engine, create_schedule, count_rows, actor_id):
        schedule = create_schedule()

        first = execution_engine.execute(schedule.id, date(2024, 1, 1), actor_id=actor_id)
        second = execution_engine.execute(schedule.id, date(2024, 1, 1), actor_id=actor_id)

        assert second.status == ExecutionStatus.ALREADY_EXECUTED
        assert second.is_noop
        assert second.job_id == first.job_id
        assert second.next_run_date == date(2024, 1, 2)
        assert count_rows(JobModel) == 1
        assert count_rows(RecurringJobHistoryModel, schedule_id=schedule.id) == 1

    def test_lookup_executed(self, execution_engine, create_schedule, actor_id):
        schedule = create_schedule()
        assert execution_engine.lookup_executed(schedule.id, date(2024, 1, 1)) is None

        executed = execution_engine.execute(schedule.id, date(2024, 1, 1), actor_id=actor_id)

        found = execution_engine.lookup_executed(schedule.id, date(2024, 1, 1))
        assert found.status == ExecutionStatus.ALREADY_EXECUTED
        assert found.job_id == executed.job_id


class TestMonotonicCursor:
    def test_date_other_than_cursor_denied(
        self, execution_engine, create_schedule, schedule_service, count_rows, actor_id,
    ):
        schedule = create_schedule()

        result = execution_engine.execute(schedule.id, date(2024, 1, 5), actor_id=actor_id)

        assert result.status == ExecutionStatus.DENIED
        assert result.error_code == DenialReason.STALE_OCCURRENCE.value
        assert _schedule(schedule_service, schedule.id).next_run_date == date(2024, 1, 1)
        assert count_rows(JobModel) == 0

    def test_cursor_never_moves_back(self, execution_engine, create_schedule, schedule_service, actor_id):
        schedule = create_schedule()
        for day in (1, 2, 3):
            execution_engine.execute(schedule.id, date(2024, 1, day), actor_id=actor_id)

        replay = execution_engine.execute(schedule.id, date(2024, 1, 2), actor_id=actor_id)

        assert replay.status == ExecutionStatus.ALREADY_EXECUTED
        assert _schedule(schedule_service, schedule.id).next_run_date == date(2024, 1, 4)

    def test_unknown_schedule(self, execution_engine, actor_id):
        result = execution_engine.execute(uuid4(), date(2024, 1, 1), actor_id=actor_id)

        assert result.status == ExecutionStatus.DENIED
        assert result.error_code == DenialReason.NOT_FOUND.value


# =============================================================================
# Atomicity
# =============================================================================


class TestAtomicity:
    def test_invoice_failure_rolls_back_job(
        self, session_factory, clock, settings, create_schedule, schedule_service, count_rows,
        captured_logs, actor_id,
    ):
        engine = ExecutionEngine(
            session_factory, clock, settings, invoice_service_factory=FailingInvoiceService,
        )
        schedule = create_schedule(auto_create_invoice=True, invoice_amount=Decimal("120.00"))

        result = engine.execute(schedule.id, date(2024, 1, 1), actor_id=actor_id)

        assert result.status == ExecutionStatus.FAILED
        assert result.error_code == "INVOICE_CREATION_FAILED"
        assert count_rows(JobModel) == 0
        assert count_rows(InvoiceModel) == 0
        assert count_rows(RecurringJobHistoryModel) == 0
        stored = _schedule(schedule_service, schedule.id)
        assert stored.next_run_date == date(2024, 1, 1)
        assert stored.total_jobs_created == 0

        failures = [r for r in captured_logs() if r["message"] == "recurring_execution_failed"]
        assert failures[0]["schedule_id"] == str(schedule.id)
        assert failures[0]["error_code"] == "INVOICE_CREATION_FAILED"

    def test_failed_occurrence_can_run_again(
        self, session_factory, clock, settings, execution_engine, create_schedule, actor_id,
    ):
        failing = ExecutionEngine(
            session_factory, clock, settings, invoice_service_factory=FailingInvoiceService,
        )
        schedule = create_schedule(auto_create_invoice=True, invoice_amount=Decimal("120.00"))
        failing.execute(schedule.id, date(2024, 1, 1), actor_id=actor_id)

        retry = execution_engine.execute(schedule.id, date(2024, 1, 1), actor_id=actor_id)

        assert retry.status == ExecutionStatus.EXECUTED
        assert retry.invoice_id is not None

    def test_untyped_error_reported_as_unexpected(
        self, session_factory, clock, settings, create_schedule, count_rows, actor_id,
    ):
        engine = ExecutionEngine(
            session_factory, clock, settings, job_service_factory=ExplodingJobService,
        )
        schedule = create_schedule()

        result = engine.execute(schedule.id, date(2024, 1, 1), actor_id=actor_id)

        assert result.status == ExecutionStatus.FAILED
        assert result.error_code == "UNEXPECTED_ERROR"
        assert result.error_message == "connection reset"
        assert count_rows(RecurringJobHistoryModel) == 0


# =============================================================================
# Termination and missed occurrences
# =============================================================================


class TestTermination:
    def test_end_date_completes_after_last_occurrence(
        self, execution_engine, create_schedule, schedule_service, actor_id,
    ):
        # Tuesdays Jan 2, Jan 9; the third (Jan 16) falls after end_date.
        schedule = create_schedule(
            frequency=Frequency.WEEKLY,
            day_of_week=2,
            start_date=date(2024, 1, 2),
            end_date=date(2024, 1, 15),
        )

        first = execution_engine.execute(schedule.id, date(2024, 1, 2), actor_id=actor_id)
        last = execution_engine.execute(schedule.id, date(2024, 1, 9), actor_id=actor_id)
        after = execution_engine.execute(schedule.id, date(2024, 1, 16), actor_id=actor_id)

        assert first.schedule_status == ScheduleStatus.ACTIVE
        assert last.status == ExecutionStatus.EXECUTED
        assert last.next_run_date is None
        assert last.schedule_status == ScheduleStatus.COMPLETED
        assert after.status == ExecutionStatus.DENIED
        assert after.error_code == DenialReason.NOT_ACTIVE.value
        assert len(schedule_service.get_history(schedule.id)) == 2


class TestMissedOccurrences:
    def test_rolls_forward_to_today(
        self, execution_engine, create_schedule, clock, actor_id,
    ):
        schedule = create_schedule()
        clock.set_date(date(2024, 1, 10))

        result = execution_engine.execute(schedule.id, date(2024, 1, 1), actor_id=actor_id)

        assert result.next_run_date == date(2024, 1, 10)

    def test_catch_up_walks_every_occurrence(
        self, session_factory, clock, settings, create_schedule, actor_id,
    ):
        engine = ExecutionEngine(
            session_factory, clock, replace(settings, catch_up_missed=True),
        )
        schedule = create_schedule()
        clock.set_date(date(2024, 1, 10))

        result = engine.execute(schedule.id, date(2024, 1, 1), actor_id=actor_id)

        assert result.next_run_date == date(2024, 1, 2)


# =============================================================================
# Pause / cancel racing an in-flight claim
# =============================================================================


class TestStatusChangeDuringExecution:
    def test_claimed_occurrence_completes_after_pause(
        self, execution_engine, claims, create_schedule, schedule_service, actor_id,
    ):
        schedule = create_schedule()
        claim = claims.try_claim(schedule.id, date(2024, 1, 1))
        schedule_service.pause(schedule.id)

        result = execution_engine.execute(schedule.id, date(2024, 1, 1), actor_id=actor_id, claim=claim)

        assert result.status == ExecutionStatus.EXECUTED
        assert result.schedule_status == ScheduleStatus.PAUSED
        stored = _schedule(schedule_service, schedule.id)
        assert stored.status == ScheduleStatus.PAUSED
        assert stored.next_run_date == date(2024, 1, 2)

    def test_unclaimed_execution_of_paused_schedule_denied(
        self, execution_engine, create_schedule, schedule_service, actor_id,
    ):
        schedule = create_schedule()
        schedule_service.pause(schedule.id)

        result = execution_engine.execute(schedule.id, date(2024, 1, 1), actor_id=actor_id)

        assert result.status == ExecutionStatus.DENIED
        assert result.error_code == DenialReason.NOT_ACTIVE.value

    def test_claimed_occurrence_completes_after_cancel(
        self, execution_engine, claims, create_schedule, schedule_service, actor_id,
    ):
        schedule = create_schedule()
        claim = claims.try_claim(schedule.id, date(2024, 1, 1))
        schedule_service.cancel(schedule.id)

        result = execution_engine.execute(schedule.id, date(2024, 1, 1), actor_id=actor_id, claim=claim)

        assert result.status == ExecutionStatus.EXECUTED
        stored = _schedule(schedule_service, schedule.id)
        assert stored.status == ScheduleStatus.CANCELLED
        assert stored.next_run_date is None
        assert stored.last_run_date == date(2024, 1, 1)
        assert stored.total_jobs_created == 1


class StatusFlippingJobService(JobService):
    """Job domain during which another writer changes the schedule's status.

    Stands in for a pause or cancel that commits after the executor has
    read the schedule but before it advances the cursor.
    """

    def __init__(self, session, schedule_id, status, clear_cursor=False):
        super().__init__(session)
        self._schedule_id = schedule_id
        self._status = status
        self._clear_cursor = clear_cursor

    def create_job(self, request, actor_id):
        values = {"status": self._status.value}
        if self._clear_cursor:
            values["next_run_date"] = None
        self._session.execute(
            update(RecurringScheduleModel)
            .where(RecurringScheduleModel.id == self._schedule_id)
            .values(**values)
        )
        return super().create_job(request, actor_id)


class TestStatusChangeAfterRead:
    def _engine(self, session_factory, clock, settings, schedule_id, status, clear_cursor=False):
        return ExecutionEngine(
            session_factory, clock, settings,
            job_service_factory=lambda s: StatusFlippingJobService(
                s, schedule_id, status, clear_cursor,
            ),
        )

    def test_pause_mid_execution_lets_claimed_occurrence_finish(
        self, session_factory, clock, settings, claims, create_schedule,
        schedule_service, count_rows, actor_id,
    ):
        schedule = create_schedule()
        claim = claims.try_claim(schedule.id, date(2024, 1, 1))
        engine = self._engine(session_factory, clock, settings, schedule.id, ScheduleStatus.PAUSED)

        result = engine.execute(schedule.id, date(2024, 1, 1), actor_id=actor_id, claim=claim)

        assert result.status == ExecutionStatus.EXECUTED
        assert result.schedule_status == ScheduleStatus.PAUSED
        stored = _schedule(schedule_service, schedule.id)
        assert stored.status == ScheduleStatus.PAUSED
        assert stored.next_run_date == date(2024, 1, 2)
        assert stored.total_jobs_created == 1
        assert count_rows(JobModel) == 1
        assert count_rows(RecurringJobHistoryModel, schedule_id=schedule.id) == 1

    def test_cancel_mid_execution_lets_claimed_occurrence_finish(
        self, session_factory, clock, settings, claims, create_schedule,
        schedule_service, count_rows, actor_id,
    ):
        schedule = create_schedule()
        claim = claims.try_claim(schedule.id, date(2024, 1, 1))
        engine = self._engine(
            session_factory, clock, settings, schedule.id, ScheduleStatus.CANCELLED,
            clear_cursor=True,
        )

        result = engine.execute(schedule.id, date(2024, 1, 1), actor_id=actor_id, claim=claim)

        assert result.status == ExecutionStatus.EXECUTED
        stored = _schedule(schedule_service, schedule.id)
        assert stored.status == ScheduleStatus.CANCELLED
        assert stored.next_run_date is None
        assert stored.last_run_date == date(2024, 1, 1)
        assert count_rows(JobModel) == 1

    def test_pause_mid_execution_without_claim_rolls_back(
        self, session_factory, clock, settings, create_schedule,
        schedule_service, count_rows, actor_id,
    ):
        schedule = create_schedule()
        engine = self._engine(session_factory, clock, settings, schedule.id, ScheduleStatus.PAUSED)

        result = engine.execute(schedule.id, date(2024, 1, 1), actor_id=actor_id)

        assert result.status == ExecutionStatus.DENIED
        assert count_rows(JobModel) == 0
        assert count_rows(RecurringJobHistoryModel) == 0
        assert _schedule(schedule_service, schedule.id).next_run_date == date(2024, 1, 1)


# =============================================================================
# Unique history constraint as the last line of defence
# =============================================================================


class WinnerFirstJobService(JobService):
    """Another worker commits the same occurrence just before this job is written."""

    def __init__(self, session, winner_factory, winner):
        super().__init__(session)
        self._winner_factory = winner_factory
        self._winner = winner

    def create_job(self, request, actor_id):
        with session_scope(self._winner_factory) as other:
            job_id = JobService(other).create_job(request, actor_id)
            ScheduleRepository(other).insert_history(
                request.recurring_schedule_id, request.scheduled_date, job_id, None, actor_id,
            )
        self._winner["job_id"] = job_id
        return super().create_job(request, actor_id)


@pytest.fixture
def deferred_session_factory(db_engine):
    """Sessions on plain pysqlite transactions (BEGIN deferred to the first write).

    The executor's reads then take no lock, so a second connection can
    commit between its idempotency check and its history insert.
    """
    engine = create_engine(db_engine.url, connect_args={"check_same_thread": False})
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


class TestHistoryUniqueConstraint:
    def test_duplicate_insert_reports_winner(
        self, deferred_session_factory, clock, settings, create_schedule, count_rows,
        captured_logs, actor_id,
    ):
        schedule = create_schedule()
        winner = {}
        engine = ExecutionEngine(
            deferred_session_factory, clock, settings,
            job_service_factory=lambda s: WinnerFirstJobService(s, deferred_session_factory, winner),
        )

        result = engine.execute(schedule.id, date(2024, 1, 1), actor_id=actor_id)

        assert result.status == ExecutionStatus.ALREADY_EXECUTED
        assert result.job_id == winner["job_id"]
        assert count_rows(JobModel) == 1
        assert count_rows(RecurringJobHistoryModel, schedule_id=schedule.id) == 1
        assert not [r for r in captured_logs() if r["message"] == "recurring_execution_failed"]
