"""
Concurrent execution of the same occurrence.

N threads released together by a Barrier race to execute one occurrence.
Exactly one creates the Job (and Invoice); every other caller sees a
no-op, and exactly one history row exists afterwards.

SQLite serializes writers with BEGIN IMMEDIATE, so these tests exercise
lock waits between threads rather than true parallel commits.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal
from threading import Barrier

import pytest

from backoffice_modules.invoicing.orm import InvoiceModel
from backoffice_modules.jobs.orm import JobModel

from recurring_engine.domain.types import ExecutionStatus, Trigger
from recurring_engine.models.schedule import RecurringJobHistoryModel

pytestmark = pytest.mark.slow_locks

THREADS = 8


def _race(fn, n=THREADS):
    barrier = Barrier(n)

    def _worker(i):
        barrier.wait()
        return fn(i)

    with ThreadPoolExecutor(max_workers=n) as pool:
        return list(pool.map(_worker, range(n)))


class TestExecuteRace:
    def test_direct_executions_create_one_job(
        self, execution_engine, create_schedule, count_rows, actor_id,
    ):
        schedule = create_schedule(auto_create_invoice=True, invoice_amount=Decimal("75.00"))

        results = _race(
            lambda i: execution_engine.execute(schedule.id, date(2024, 1, 1), actor_id=actor_id)
        )

        executed = [r for r in results if r.status == ExecutionStatus.EXECUTED]
        assert len(executed) == 1
        assert all(
            r.status == ExecutionStatus.ALREADY_EXECUTED
            for r in results if r is not executed[0]
        )
        assert {r.job_id for r in results} == {executed[0].job_id}
        assert {r.invoice_id for r in results} == {executed[0].invoice_id}
        assert count_rows(JobModel) == 1
        assert count_rows(InvoiceModel) == 1
        assert count_rows(RecurringJobHistoryModel) == 1

    def test_claimed_runs_create_one_job(self, runner, create_schedule, count_rows):
        schedule = create_schedule()

        results = _race(lambda i: runner.run(schedule.id, date(2024, 1, 1), Trigger.SWEEP))

        executed = [r for r in results if r.status == ExecutionStatus.EXECUTED]
        assert len(executed) == 1
        assert all(r.status != ExecutionStatus.FAILED for r in results)
        assert count_rows(JobModel) == 1
        assert count_rows(RecurringJobHistoryModel, schedule_id=schedule.id) == 1


class TestRunNowRace:
    def test_two_run_now_calls_share_one_result(
        self, schedule_service, create_schedule, count_rows,
    ):
        schedule = create_schedule(auto_create_invoice=True, invoice_amount=Decimal("150.00"))

        results = _race(lambda i: schedule_service.run_now(schedule.id, date(2024, 1, 1)), n=2)

        statuses = sorted(r.status.value for r in results)
        assert statuses == ["already_executed", "executed"]
        assert results[0].job_id == results[1].job_id
        assert results[0].invoice_id == results[1].invoice_id
        assert count_rows(JobModel) == 1
        assert count_rows(InvoiceModel) == 1

    def test_run_now_racing_sweep(self, schedule_service, sweep, create_schedule, count_rows):
        schedule = create_schedule()

        def _call(i):
            if i == 0:
                return sweep.tick()
            return schedule_service.run_now(schedule.id, date(2024, 1, 1))

        _race(_call, n=2)

        assert count_rows(JobModel) == 1
        assert schedule_service.get_schedule(schedule.id).next_run_date == date(2024, 1, 2)
