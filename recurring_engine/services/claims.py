"""
ClaimCoordinator -- storage-backed execution claims.

Contract:
    ``try_claim(schedule_id, occurrence_date)`` returns a ``Claim`` only if
    one guarded UPDATE finds the schedule ACTIVE, its cursor at
    ``occurrence_date``, and no unexpired claim marker.  Otherwise it
    returns a ``ClaimDenied`` value; denial is not an error.

Architecture: recurring_engine/services.  Each call runs in its own short
    transaction, so claims are visible to every worker and every server
    instance sharing the database.

Invariants enforced:
    - A claim is only granted for the schedule's current cursor, so one
      schedule's occurrences are claimed in non-decreasing date order.
    - Markers of crashed workers expire after ``claim_ttl_seconds``.
    - ``release()`` only clears a marker whose token still matches.

Non-goals:
    - The claim is NOT the correctness boundary.  The history uniqueness
      constraint inside ``ExecutionEngine.execute`` is.
"""

from __future__ import annotations

from datetime import date, timedelta
from typing import Callable
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from backoffice_kernel.db.engine import session_scope
from backoffice_kernel.domain.clock import Clock, SystemClock
from backoffice_kernel.logging_config import get_logger

from recurring_engine.domain.types import (
    Claim,
    ClaimDenied,
    DenialReason,
    ScheduleStatus,
)
from recurring_engine.models.schedule import RecurringScheduleModel
from recurring_engine.services.repository import ScheduleRepository

logger = get_logger("recurring.claims")


def denial_reason(model: RecurringScheduleModel | None, occurrence_date: date) -> DenialReason:
    """Explain why a claim on ``occurrence_date`` could not be written."""
    if model is None:
        return DenialReason.NOT_FOUND
    if model.status != ScheduleStatus.ACTIVE.value:
        return DenialReason.NOT_ACTIVE
    if model.next_run_date != occurrence_date:
        return DenialReason.STALE_OCCURRENCE
    return DenialReason.CLAIM_HELD


class ClaimCoordinator:
    """Grants and releases per-occurrence execution claims."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        clock: Clock | None = None,
        ttl_seconds: int = 300,
    ):
        self._session_factory = session_factory
        self._clock = clock or SystemClock()
        self._ttl = timedelta(seconds=ttl_seconds)

    def try_claim(self, schedule_id: UUID, occurrence_date: date) -> Claim | ClaimDenied:
        token = uuid4().hex
        now = self._clock.now()
        expires_at = now + self._ttl

        with session_scope(self._session_factory) as session:
            repo = ScheduleRepository(session)
            if repo.try_acquire_claim(schedule_id, occurrence_date, token, now, expires_at):
                logger.debug(
                    "schedule_claimed",
                    extra={
                        "schedule_id": str(schedule_id),
                        "occurrence_date": occurrence_date.isoformat(),
                        "expires_at": expires_at.isoformat(),
                    },
                )
                return Claim(
                    schedule_id=schedule_id,
                    occurrence_date=occurrence_date,
                    token=token,
                    expires_at=expires_at,
                )

            model = repo.get_model(schedule_id)
            reason = denial_reason(model, occurrence_date)
            return ClaimDenied(
                schedule_id=schedule_id,
                occurrence_date=occurrence_date,
                reason=reason,
                current_status=ScheduleStatus(model.status) if model is not None else None,
                current_next_run_date=model.next_run_date if model is not None else None,
            )

    def release(self, claim: Claim) -> bool:
        """Clear the claim marker.  Returns False if it was already taken over."""
        with session_scope(self._session_factory) as session:
            released = ScheduleRepository(session).release_claim(claim.schedule_id, claim.token)

        if not released:
            logger.warning(
                "schedule_claim_lost",
                extra={
                    "schedule_id": str(claim.schedule_id),
                    "occurrence_date": claim.occurrence_date.isoformat(),
                },
            )
        return released
