"""
OccurrenceRunner -- the one path from a trigger to an execution.

Contract:
    ``run(schedule_id, occurrence_date, trigger)`` claims the occurrence,
    executes it, and releases the claim (release in ``finally``).  Both
    the sweep and manual run-now enter here; nothing calls the execution
    engine without a claim.

Architecture: recurring_engine/services.  Composes ClaimCoordinator and
    ExecutionEngine.

Failure modes:
    - Never raises for a denied claim or a failed execution; both come
      back as an ``ExecutionResult``.
"""

from __future__ import annotations

from datetime import date
from uuid import UUID, uuid4

from backoffice_kernel.logging_config import LogContext, get_logger

from recurring_engine.domain.types import (
    ClaimDenied,
    ExecutionResult,
    ExecutionStatus,
    Trigger,
)
from recurring_engine.services.claims import ClaimCoordinator
from recurring_engine.services.executor import ExecutionEngine

logger = get_logger("recurring.runner")


class OccurrenceRunner:
    """Claim -> execute -> release for one occurrence."""

    def __init__(
        self,
        claims: ClaimCoordinator,
        engine: ExecutionEngine,
        actor_id: UUID | None = None,
    ):
        self._claims = claims
        self._engine = engine
        self._actor_id = actor_id or uuid4()

    @property
    def engine(self) -> ExecutionEngine:
        return self._engine

    def run(
        self,
        schedule_id: UUID,
        occurrence_date: date,
        trigger: Trigger = Trigger.SWEEP,
        actor_id: UUID | None = None,
    ) -> ExecutionResult:
        actor = actor_id or self._actor_id
        with LogContext.bind(
            schedule_id=str(schedule_id),
            occurrence_date=occurrence_date.isoformat(),
            trigger=trigger.value,
            actor_id=str(actor),
        ):
            outcome = self._claims.try_claim(schedule_id, occurrence_date)
            if isinstance(outcome, ClaimDenied):
                return self._denied(outcome)

            try:
                return self._engine.execute(
                    schedule_id, occurrence_date, actor_id=actor, claim=outcome,
                )
            finally:
                self._claims.release(outcome)

    def _denied(self, denied: ClaimDenied) -> ExecutionResult:
        executed = self._engine.lookup_executed(denied.schedule_id, denied.occurrence_date)
        if executed is not None:
            logger.info(
                "schedule_claim_denied",
                extra={"reason": denied.reason.value, "already_executed": True},
            )
            return executed

        logger.info(
            "schedule_claim_denied",
            extra={
                "reason": denied.reason.value,
                "current_status": denied.current_status.value if denied.current_status else None,
                "current_next_run_date": denied.current_next_run_date,
            },
        )
        return ExecutionResult(
            schedule_id=denied.schedule_id,
            occurrence_date=denied.occurrence_date,
            status=ExecutionStatus.DENIED,
            next_run_date=denied.current_next_run_date,
            schedule_status=denied.current_status,
            error_code=denied.reason.value,
        )
