"""
Jobs ORM Models (``backoffice_modules.jobs.orm``).

Architecture position
---------------------
**Modules layer** -- persistence.  Imports from ``backoffice_kernel.db.base``
and sibling ``models.py``.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from backoffice_kernel.db.base import TrackedBase


class JobModel(TrackedBase):
    """
    ORM model for jobs.

    Guarantees:
        - status defaults to ``pending``.
        - recurring_schedule_id is set only for jobs created by a schedule.
    """

    __tablename__ = "jobs"

    __table_args__ = (
        Index("idx_jobs_business_id", "business_id"),
        Index("idx_jobs_recurring_schedule_id", "recurring_schedule_id"),
    )

    business_id: Mapped[UUID] = mapped_column(nullable=False)
    customer_id: Mapped[UUID] = mapped_column(nullable=False)
    staff_id: Mapped[UUID | None] = mapped_column(nullable=True)
    service_id: Mapped[UUID | None] = mapped_column(nullable=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    scheduled_date: Mapped[date] = mapped_column(nullable=False)
    estimated_duration: Mapped[int | None] = mapped_column(nullable=True)
    status: Mapped[str] = mapped_column(String(50), default="pending", nullable=False)
    recurring_schedule_id: Mapped[UUID | None] = mapped_column(nullable=True)

    def to_dto(self):
        """Convert ORM model to frozen dataclass."""
        from backoffice_modules.jobs.models import Job, JobStatus

        return Job(
            id=self.id,
            business_id=self.business_id,
            customer_id=self.customer_id,
            title=self.title,
            scheduled_date=self.scheduled_date,
            status=JobStatus(self.status),
            description=self.description,
            staff_id=self.staff_id,
            service_id=self.service_id,
            estimated_duration=self.estimated_duration,
            recurring_schedule_id=self.recurring_schedule_id,
        )
