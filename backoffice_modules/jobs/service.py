"""
Jobs Service (``backoffice_modules.jobs.service``).

Responsibility
--------------
Creates job records inside the caller's transaction.

Contract
--------
* ``create_job()`` validates the request, adds the row, and flushes so
  the id is assigned and database errors surface synchronously.
* Does NOT call ``session.commit()`` -- the caller owns the boundary, so a
  later failure in the same transaction removes the job again.

Failure modes
-------------
* ``JobCreationError`` for an invalid request or a database error on flush.
"""

from __future__ import annotations

from uuid import UUID, uuid4

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backoffice_kernel.exceptions import JobCreationError
from backoffice_kernel.logging_config import get_logger
from backoffice_modules.jobs.models import Job, JobRequest, JobStatus
from backoffice_modules.jobs.orm import JobModel

logger = get_logger("modules.jobs.service")


class JobService:
    """Creates and reads jobs."""

    def __init__(self, session: Session):
        self._session = session

    def create_job(self, request: JobRequest, actor_id: UUID) -> UUID:
        """Create a ``pending`` job and return its id."""
        schedule_ref = str(request.recurring_schedule_id) if request.recurring_schedule_id else None
        if not request.title or not request.title.strip():
            raise JobCreationError("title cannot be empty", schedule_id=schedule_ref)
        if request.estimated_duration is not None and request.estimated_duration < 0:
            raise JobCreationError("estimated_duration cannot be negative", schedule_id=schedule_ref)

        job_id = uuid4()
        model = JobModel(
            id=job_id,
            business_id=request.business_id,
            customer_id=request.customer_id,
            staff_id=request.staff_id,
            service_id=request.service_id,
            title=request.title,
            description=request.description,
            scheduled_date=request.scheduled_date,
            estimated_duration=request.estimated_duration,
            status=JobStatus.PENDING.value,
            recurring_schedule_id=request.recurring_schedule_id,
            created_by_id=actor_id,
        )
        self._session.add(model)
        try:
            self._session.flush()
        except SQLAlchemyError as exc:
            raise JobCreationError(str(exc), schedule_id=schedule_ref) from exc

        logger.info(
            "job_created",
            extra={
                "job_id": str(job_id),
                "scheduled_date": request.scheduled_date.isoformat(),
                "recurring_schedule_id": schedule_ref,
            },
        )
        return job_id

    def get_job(self, job_id: UUID) -> Job | None:
        model = self._session.get(JobModel, job_id)
        return model.to_dto() if model is not None else None
