"""
ScheduleRepository -- storage access for schedules, items and history.

Contract:
    Session-bound reads and guarded writes.  Every write that depends on
    the schedule's current state is a single UPDATE with the expected
    state in its WHERE clause; zero rows matched means another writer got
    there first and surfaces as ``StaleStateError``.

Architecture: recurring_engine/services.  Imports from
    recurring_engine.models and recurring_engine.domain.

Invariants enforced:
    - ``insert_history`` flushes immediately so the UNIQUE (schedule_id,
      scheduled_for) constraint is checked inside the caller's transaction.
    - ``compare_and_swap_next_run`` only moves the cursor from the value
      the caller read.
    - Does NOT call ``session.commit()`` -- caller controls boundaries.

Failure modes:
    - DuplicateOccurrenceError -- history row already exists.  The
      session must be rolled back by the caller.
    - StaleStateError -- a guarded UPDATE matched no row.
"""

from __future__ import annotations

from datetime import date, datetime
from uuid import UUID, uuid4

from sqlalchemy import and_, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backoffice_kernel.exceptions import DuplicateOccurrenceError, StaleStateError
from backoffice_kernel.logging_config import get_logger

from recurring_engine.domain.types import (
    JobHistoryEntry,
    RecurringSchedule,
    ScheduleDraft,
    ScheduleItem,
    ScheduleStatus,
    UNSET,
)
from recurring_engine.models.schedule import (
    RecurringJobHistoryModel,
    RecurringScheduleItemModel,
    RecurringScheduleModel,
)

logger = get_logger("recurring.repository")


class ScheduleRepository:
    """Reads and guarded writes over the recurring schedule tables."""

    def __init__(self, session: Session):
        self._session = session

    # -------------------------------------------------------------------------
    # Schedules
    # -------------------------------------------------------------------------

    def get_model(self, schedule_id: UUID) -> RecurringScheduleModel | None:
        return self._session.get(RecurringScheduleModel, schedule_id)

    def get_model_for_update(self, schedule_id: UUID) -> RecurringScheduleModel | None:
        """Load (or refresh) the schedule row, locked until the transaction ends.

        PostgreSQL takes a row lock, so a pause or cancel waits for the
        execution to commit.  SQLite ignores FOR UPDATE; its BEGIN IMMEDIATE
        transactions already hold the database write lock.
        """
        return self._session.execute(
            select(RecurringScheduleModel)
            .where(RecurringScheduleModel.id == schedule_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get(self, schedule_id: UUID) -> RecurringSchedule | None:
        model = self.get_model(schedule_id)
        return model.to_dto() if model is not None else None

    def list_for_business(self, business_id: UUID) -> list[RecurringSchedule]:
        models = self._session.execute(
            select(RecurringScheduleModel)
            .where(RecurringScheduleModel.business_id == business_id)
            .order_by(RecurringScheduleModel.created_at, RecurringScheduleModel.name)
        ).scalars().all()
        return [m.to_dto() for m in models]

    def list_due(self, as_of: date, limit: int | None = None) -> list[RecurringSchedule]:
        """Active schedules with ``next_run_date <= as_of``, oldest cursor first."""
        stmt = (
            select(RecurringScheduleModel)
            .where(
                RecurringScheduleModel.status == ScheduleStatus.ACTIVE.value,
                RecurringScheduleModel.next_run_date.is_not(None),
                RecurringScheduleModel.next_run_date <= as_of,
            )
            .order_by(RecurringScheduleModel.next_run_date, RecurringScheduleModel.id)
        )
        if limit is not None:
            stmt = stmt.limit(limit)
        return [m.to_dto() for m in self._session.execute(stmt).scalars().all()]

    def add(
        self,
        draft: ScheduleDraft,
        next_run_date: date,
        actor_id: UUID,
    ) -> RecurringScheduleModel:
        """Insert a new ACTIVE schedule with its items and flush."""
        rule = draft.rule
        model = RecurringScheduleModel(
            id=uuid4(),
            business_id=draft.business_id,
            customer_id=draft.customer_id,
            service_id=draft.service_id,
            staff_id=draft.staff_id,
            name=draft.name,
            frequency=rule.frequency.value,
            interval=rule.interval,
            day_of_week=rule.day_of_week,
            day_of_month=rule.day_of_month,
            start_date=rule.start_date,
            end_date=rule.end_date,
            next_run_date=next_run_date,
            last_run_date=None,
            job_title=draft.job_title,
            job_description=draft.job_description,
            estimated_duration=draft.estimated_duration,
            auto_create_invoice=draft.auto_create_invoice,
            invoice_amount=draft.invoice_amount,
            invoice_tax=draft.invoice_tax,
            invoice_notes=draft.invoice_notes,
            status=ScheduleStatus.ACTIVE.value,
            total_jobs_created=0,
            created_by_id=actor_id,
        )
        self._session.add(model)
        self.replace_items(model, draft.items, actor_id)
        self._session.flush()
        return model

    def replace_items(
        self,
        model: RecurringScheduleModel,
        items: tuple[ScheduleItem, ...],
        actor_id: UUID,
    ) -> None:
        """Replace the schedule's item sequence, preserving the given order."""
        if model.items:
            model.items.clear()
            # Flush the deletes before re-using positions.
            self._session.flush()
        for position, item in enumerate(items):
            model.items.append(
                RecurringScheduleItemModel(
                    position=position,
                    description=item.description,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    amount=item.amount,
                    created_by_id=actor_id,
                )
            )

    def compare_and_swap_next_run(
        self,
        schedule_id: UUID,
        expected: date | None,
        new: date | None,
        *,
        expected_status: ScheduleStatus,
        new_status: ScheduleStatus,
        last_run_date: date,
        actor_id: UUID,
        increment_jobs: bool = True,
        claim_token: str | None = None,
    ) -> None:
        """Advance the cursor if it still reads ``expected``.

        Raises:
            StaleStateError: if the cursor, status or claim token moved.
        """
        conditions = [
            RecurringScheduleModel.id == schedule_id,
            RecurringScheduleModel.status == expected_status.value,
        ]
        if expected is None:
            conditions.append(RecurringScheduleModel.next_run_date.is_(None))
        else:
            conditions.append(RecurringScheduleModel.next_run_date == expected)
        if claim_token is not None:
            conditions.append(RecurringScheduleModel.claim_token == claim_token)

        values = {
            "next_run_date": new,
            "last_run_date": last_run_date,
            "status": new_status.value,
            "updated_by_id": actor_id,
        }
        if increment_jobs:
            values["total_jobs_created"] = RecurringScheduleModel.total_jobs_created + 1

        result = self._session.execute(
            update(RecurringScheduleModel)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleStateError(
                "RecurringSchedule",
                str(schedule_id),
                f"next_run_date={expected} status={expected_status.value}",
            )

        logger.debug(
            "schedule_cursor_advanced",
            extra={
                "schedule_id": str(schedule_id),
                "from_date": expected,
                "to_date": new,
                "status": new_status.value,
            },
        )

    def update_status(
        self,
        schedule_id: UUID,
        expected_status: ScheduleStatus,
        new_status: ScheduleStatus,
        *,
        actor_id: UUID,
        next_run_date: date | None | object = UNSET,
    ) -> None:
        """Change status (and optionally the cursor) if status still reads ``expected_status``.

        Raises:
            StaleStateError: if the status changed since it was read.
        """
        values: dict = {"status": new_status.value, "updated_by_id": actor_id}
        if next_run_date is not UNSET:
            values["next_run_date"] = next_run_date

        result = self._session.execute(
            update(RecurringScheduleModel)
            .where(
                RecurringScheduleModel.id == schedule_id,
                RecurringScheduleModel.status == expected_status.value,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise StaleStateError(
                "RecurringSchedule", str(schedule_id), f"status={expected_status.value}"
            )

    # -------------------------------------------------------------------------
    # Claim marker
    # -------------------------------------------------------------------------

    def try_acquire_claim(
        self,
        schedule_id: UUID,
        occurrence_date: date,
        token: str,
        now: datetime,
        expires_at: datetime,
    ) -> bool:
        """Write the claim marker if the schedule is ACTIVE at ``occurrence_date`` and unclaimed."""
        result = self._session.execute(
            update(RecurringScheduleModel)
            .where(
                RecurringScheduleModel.id == schedule_id,
                RecurringScheduleModel.status == ScheduleStatus.ACTIVE.value,
                RecurringScheduleModel.next_run_date == occurrence_date,
                or_(
                    RecurringScheduleModel.claim_token.is_(None),
                    RecurringScheduleModel.claim_expires_at.is_(None),
                    RecurringScheduleModel.claim_expires_at <= now,
                ),
            )
            .values(claim_token=token, claim_expires_at=expires_at)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    def release_claim(self, schedule_id: UUID, token: str) -> bool:
        """Clear the claim marker if ``token`` still holds it."""
        result = self._session.execute(
            update(RecurringScheduleModel)
            .where(
                and_(
                    RecurringScheduleModel.id == schedule_id,
                    RecurringScheduleModel.claim_token == token,
                )
            )
            .values(claim_token=None, claim_expires_at=None)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # -------------------------------------------------------------------------
    # History
    # -------------------------------------------------------------------------

    def insert_history(
        self,
        schedule_id: UUID,
        scheduled_for: date,
        job_id: UUID,
        invoice_id: UUID | None,
        actor_id: UUID,
    ) -> JobHistoryEntry:
        """Append a history row and flush.

        Raises:
            DuplicateOccurrenceError: if (schedule_id, scheduled_for) exists.
        """
        model = RecurringJobHistoryModel(
            id=uuid4(),
            schedule_id=schedule_id,
            job_id=job_id,
            invoice_id=invoice_id,
            scheduled_for=scheduled_for,
            created_by_id=actor_id,
        )
        self._session.add(model)
        try:
            self._session.flush()
        except IntegrityError as exc:
            raise DuplicateOccurrenceError(str(schedule_id), scheduled_for.isoformat()) from exc
        return model.to_dto()

    def get_history(self, schedule_id: UUID, scheduled_for: date) -> JobHistoryEntry | None:
        model = self._session.execute(
            select(RecurringJobHistoryModel).where(
                RecurringJobHistoryModel.schedule_id == schedule_id,
                RecurringJobHistoryModel.scheduled_for == scheduled_for,
            )
        ).scalar_one_or_none()
        return model.to_dto() if model is not None else None

    def list_history(self, schedule_id: UUID) -> list[JobHistoryEntry]:
        models = self._session.execute(
            select(RecurringJobHistoryModel)
            .where(RecurringJobHistoryModel.schedule_id == schedule_id)
            .order_by(RecurringJobHistoryModel.scheduled_for)
        ).scalars().all()
        return [m.to_dto() for m in models]
