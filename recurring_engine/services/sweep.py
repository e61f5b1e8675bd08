"""
SweepScheduler -- periodic driver for due recurring schedules.

Contract:
    ``tick()`` lists ACTIVE schedules whose cursor is on or before today,
    runs each through ``OccurrenceRunner`` on a worker pool, and returns a
    ``SweepReport``.  One schedule's failure or timeout never stops the
    others; the schedule simply stays due for the next tick.

Architecture: recurring_engine/services.  Reads due schedules through
    ScheduleRepository, executes through OccurrenceRunner.

Invariants enforced:
    - "Today" comes from the injected Clock.
    - Each schedule gets a bounded wait (``execution_timeout_seconds``);
      a stuck execution is abandoned, not awaited.
    - Graceful shutdown: the stop signal is honoured between schedules.

Non-goals:
    - NOT a leader-elected scheduler.  Several instances may sweep the same
      database; claims and the history constraint keep that safe.
"""

from __future__ import annotations

import threading
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import date
from typing import Callable

from sqlalchemy.orm import Session

from backoffice_config.schema import EngineSettings
from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.logging_config import get_logger

from recurring_engine.domain.types import (
    ExecutionResult,
    ExecutionStatus,
    RecurringSchedule,
    SweepReport,
    Trigger,
)
from recurring_engine.services.repository import ScheduleRepository
from recurring_engine.services.runner import OccurrenceRunner

logger = get_logger("recurring.sweep")


class SweepScheduler:
    """In-process polling sweep over due schedules.

    Contract:
        - ``tick()`` runs one sweep (public for testing and for the CLI).
        - ``start()`` / ``stop()`` for background thread operation.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        runner: OccurrenceRunner,
        clock: Clock | None = None,
        settings: EngineSettings | None = None,
    ):
        settings = settings or EngineSettings()
        self._session_factory = session_factory
        self._runner = runner
        self._clock = clock or SystemClock()
        self._interval = settings.sweep_interval_seconds
        self._max_workers = settings.sweep_max_workers
        self._timeout = settings.execution_timeout_seconds
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def tick(self) -> SweepReport:
        """Execute every due schedule once."""
        as_of = self._clock.today()
        due = self._list_due(as_of)
        logger.info("sweep_started", extra={"as_of": as_of, "due": len(due)})

        results: list[ExecutionResult] = []
        counts = {status: 0 for status in ExecutionStatus}
        timed_out = 0

        pool = ThreadPoolExecutor(
            max_workers=self._max_workers,
            thread_name_prefix="recurring-sweep",
        )
        try:
            submitted: list[tuple[RecurringSchedule, Future]] = []
            for schedule in due:
                if self._stop_event.is_set():
                    break
                submitted.append((
                    schedule,
                    pool.submit(
                        self._runner.run,
                        schedule.id,
                        schedule.next_run_date,
                        Trigger.SWEEP,
                    ),
                ))

            for schedule, future in submitted:
                try:
                    result = future.result(timeout=self._timeout)
                except FutureTimeoutError:
                    future.cancel()
                    timed_out += 1
                    logger.warning(
                        "sweep_schedule_timed_out",
                        extra={
                            "schedule_id": str(schedule.id),
                            "occurrence_date": schedule.next_run_date,
                            "timeout_seconds": self._timeout,
                        },
                    )
                    continue
                except Exception:
                    counts[ExecutionStatus.FAILED] += 1
                    logger.exception(
                        "recurring_execution_failed",
                        extra={
                            "schedule_id": str(schedule.id),
                            "occurrence_date": schedule.next_run_date,
                        },
                    )
                    continue

                results.append(result)
                counts[result.status] += 1
        finally:
            # Abandon stuck executions instead of waiting on them.
            pool.shutdown(wait=False, cancel_futures=True)

        report = SweepReport(
            as_of=as_of,
            due=len(due),
            executed=counts[ExecutionStatus.EXECUTED],
            already_executed=counts[ExecutionStatus.ALREADY_EXECUTED],
            denied=counts[ExecutionStatus.DENIED],
            failed=counts[ExecutionStatus.FAILED],
            timed_out=timed_out,
            results=tuple(results),
        )
        logger.info(
            "sweep_completed",
            extra={
                "as_of": as_of,
                "due": report.due,
                "executed": report.executed,
                "already_executed": report.already_executed,
                "denied": report.denied,
                "failed": report.failed,
                "timed_out": report.timed_out,
            },
        )
        return report

    def start(self) -> None:
        """Start sweeping in a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="recurring-sweep-scheduler",
            daemon=True,
        )
        self._thread.start()
        logger.info("sweep_scheduler_started", extra={"interval_seconds": self._interval})

    def stop(self, timeout: float = 30.0) -> None:
        """Signal stop and wait for the current tick to finish.

        Args:
            timeout: Max seconds to wait for the thread to finish.
        """
        self._stop_event.set()
        if self._thread is not None and self._thread.is_alive():
            self._thread.join(timeout=timeout)
        logger.info("sweep_scheduler_stopped")

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    # -------------------------------------------------------------------------
    # Internal
    # -------------------------------------------------------------------------

    def _run_loop(self) -> None:
        """Background polling loop.  Exits when the stop event is set."""
        while not self._stop_event.is_set():
            try:
                self.tick()
            except Exception:
                logger.exception("sweep_tick_failed")
            self._stop_event.wait(timeout=self._interval)

    def _list_due(self, as_of: date) -> list[RecurringSchedule]:
        session = self._session_factory()
        try:
            return ScheduleRepository(session).list_due(as_of)
        finally:
            session.rollback()
            session.close()
