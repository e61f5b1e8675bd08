"""
ORM models for recurring schedule persistence.

Contract:
    RecurringScheduleModel, RecurringScheduleItemModel and
    RecurringJobHistoryModel persist schedules, their invoice line
    templates, and one row per executed occurrence.  Each has ``to_dto()``.

Architecture: recurring_engine/models.  Imports from backoffice_kernel.db.base only.

Invariants enforced:
    - UNIQUE (schedule_id, scheduled_for) on recurring_job_history: the
      idempotency key and the final at-most-once backstop.
    - History rows are append-only: UPDATE and DELETE raise
      ImmutabilityViolationError from ORM listeners.
    - claim_token / claim_expires_at hold the claim marker written by the
      claim coordinator's guarded UPDATE.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    event,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backoffice_kernel.db.base import TrackedBase, UUIDString
from backoffice_kernel.exceptions import ImmutabilityViolationError
from backoffice_kernel.logging_config import get_logger

if TYPE_CHECKING:
    from recurring_engine.domain.types import (
        JobHistoryEntry,
        RecurringSchedule,
        ScheduleItem,
    )

logger = get_logger("recurring.models")


class RecurringScheduleModel(TrackedBase):
    """Persistent recurring schedule (rule, cursor, templates, claim marker)."""

    __tablename__ = "recurring_schedules"

    __table_args__ = (
        Index("ix_recurring_schedules_business_id", "business_id"),
        Index("ix_recurring_schedules_due", "status", "next_run_date"),
    )

    business_id: Mapped[UUID] = mapped_column(nullable=False)
    customer_id: Mapped[UUID] = mapped_column(nullable=False)
    service_id: Mapped[UUID | None] = mapped_column(nullable=True)
    staff_id: Mapped[UUID | None] = mapped_column(nullable=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)

    # Recurrence rule
    frequency: Mapped[str] = mapped_column(String(20), nullable=False)
    interval: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    day_of_week: Mapped[int | None] = mapped_column(Integer, nullable=True)
    day_of_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    start_date: Mapped[date] = mapped_column(nullable=False)
    end_date: Mapped[date | None] = mapped_column(nullable=True)

    # Cursor
    next_run_date: Mapped[date | None] = mapped_column(nullable=True)
    last_run_date: Mapped[date | None] = mapped_column(nullable=True)

    # Job template
    job_title: Mapped[str] = mapped_column(String(255), nullable=False)
    job_description: Mapped[str | None] = mapped_column(Text, nullable=True)
    estimated_duration: Mapped[int | None] = mapped_column(Integer, nullable=True)

    # Invoice template
    auto_create_invoice: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    invoice_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    invoice_tax: Mapped[Decimal | None] = mapped_column(nullable=True)
    invoice_notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    status: Mapped[str] = mapped_column(String(20), default="active", nullable=False)
    total_jobs_created: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Claim marker
    claim_token: Mapped[str | None] = mapped_column(String(64), nullable=True)
    claim_expires_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )

    items: Mapped[list["RecurringScheduleItemModel"]] = relationship(
        "RecurringScheduleItemModel",
        back_populates="schedule",
        order_by="RecurringScheduleItemModel.position",
        cascade="all, delete-orphan",
    )

    def to_dto(self) -> RecurringSchedule:
        from recurring_engine.domain.types import (
            Frequency,
            RecurrenceRule,
            RecurringSchedule,
            ScheduleStatus,
        )

        return RecurringSchedule(
            id=self.id,
            business_id=self.business_id,
            customer_id=self.customer_id,
            name=self.name,
            rule=RecurrenceRule(
                frequency=Frequency(self.frequency),
                start_date=self.start_date,
                interval=self.interval,
                day_of_week=self.day_of_week,
                day_of_month=self.day_of_month,
                end_date=self.end_date,
            ),
            status=ScheduleStatus(self.status),
            job_title=self.job_title,
            next_run_date=self.next_run_date,
            last_run_date=self.last_run_date,
            job_description=self.job_description,
            estimated_duration=self.estimated_duration,
            service_id=self.service_id,
            staff_id=self.staff_id,
            auto_create_invoice=self.auto_create_invoice,
            invoice_amount=self.invoice_amount,
            invoice_tax=self.invoice_tax,
            invoice_notes=self.invoice_notes,
            items=tuple(item.to_dto() for item in self.items),
            total_jobs_created=self.total_jobs_created,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )


class RecurringScheduleItemModel(TrackedBase):
    """Invoice line template of a schedule, ordered by ``position``."""

    __tablename__ = "recurring_schedule_items"

    __table_args__ = (
        UniqueConstraint("schedule_id", "position", name="uq_recurring_schedule_items_position"),
    )

    schedule_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("recurring_schedules.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    schedule: Mapped["RecurringScheduleModel"] = relationship(
        "RecurringScheduleModel",
        back_populates="items",
        foreign_keys=[schedule_id],
    )

    def to_dto(self) -> ScheduleItem:
        from recurring_engine.domain.types import ScheduleItem

        return ScheduleItem(
            description=self.description,
            quantity=self.quantity,
            unit_price=self.unit_price,
            amount=self.amount,
        )


class RecurringJobHistoryModel(TrackedBase):
    """One executed occurrence.  Append-only; unique per (schedule, date)."""

    __tablename__ = "recurring_job_history"

    __table_args__ = (
        UniqueConstraint(
            "schedule_id",
            "scheduled_for",
            name="uq_recurring_job_history_occurrence",
        ),
        Index("ix_recurring_job_history_job_id", "job_id"),
    )

    schedule_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("recurring_schedules.id"),
        nullable=False,
    )
    job_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("jobs.id"),
        nullable=False,
    )
    invoice_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("invoices.id"),
        nullable=True,
    )
    scheduled_for: Mapped[date] = mapped_column(nullable=False)

    def to_dto(self) -> JobHistoryEntry:
        from recurring_engine.domain.types import JobHistoryEntry

        return JobHistoryEntry(
            id=self.id,
            schedule_id=self.schedule_id,
            job_id=self.job_id,
            invoice_id=self.invoice_id,
            scheduled_for=self.scheduled_for,
            created_at=self.created_at,
        )


# =============================================================================
# Append-only enforcement
# =============================================================================


def _reject_history_change(operation: str):
    def _listener(mapper, connection, target):
        logger.error(
            "immutability_violation_blocked",
            extra={
                "entity_type": "RecurringJobHistory",
                "entity_id": str(target.id),
                "operation": operation,
            },
        )
        raise ImmutabilityViolationError(
            entity_type="RecurringJobHistory",
            entity_id=str(target.id),
            operation=operation.lower(),
        )

    return _listener


event.listen(RecurringJobHistoryModel, "before_update", _reject_history_change("UPDATE"))
event.listen(RecurringJobHistoryModel, "before_delete", _reject_history_change("DELETE"))
