"""
Tests for JobService -- job creation inside the caller's transaction.
"""

from datetime import date
from uuid import uuid4

import pytest

from backoffice_kernel.db.engine import session_scope
from backoffice_kernel.exceptions import JobCreationError
from backoffice_modules.jobs.models import JobRequest, JobStatus
from backoffice_modules.jobs.orm import JobModel
from backoffice_modules.jobs.service import JobService


def _request(**overrides) -> JobRequest:
    values = dict(
        business_id=uuid4(),
        customer_id=uuid4(),
        title="Window cleaning",
        scheduled_date=date(2024, 3, 15),
        estimated_duration=90,
    )
    values.update(overrides)
    return JobRequest(**values)


class TestCreateJob:
    def test_create_and_read(self, session_factory, actor_id):
        schedule_id = uuid4()
        request = _request(recurring_schedule_id=schedule_id, description="All floors")

        with session_scope(session_factory) as session:
            job_id = JobService(session).create_job(request, actor_id)
        with session_scope(session_factory) as session:
            job = JobService(session).get_job(job_id)

        assert job.id == job_id
        assert job.status == JobStatus.PENDING
        assert job.title == "Window cleaning"
        assert job.scheduled_date == date(2024, 3, 15)
        assert job.estimated_duration == 90
        assert job.recurring_schedule_id == schedule_id

    def test_get_unknown_returns_none(self, session_factory):
        with session_scope(session_factory) as session:
            assert JobService(session).get_job(uuid4()) is None

    def test_caller_owns_commit(self, session_factory, count_rows, actor_id):
        session = session_factory()
        try:
            JobService(session).create_job(_request(), actor_id)
            session.rollback()
        finally:
            session.close()

        assert count_rows(JobModel) == 0

    def test_logs_creation(self, session_factory, captured_logs, actor_id):
        with session_scope(session_factory) as session:
            job_id = JobService(session).create_job(_request(), actor_id)

        created = [r for r in captured_logs() if r["message"] == "job_created"]
        assert created[0]["job_id"] == str(job_id)
        assert created[0]["scheduled_date"] == "2024-03-15"


class TestValidation:
    @pytest.mark.parametrize("title", ["", "   "])
    def test_empty_title(self, session_factory, count_rows, actor_id, title):
        with pytest.raises(JobCreationError) as exc_info:
            with session_scope(session_factory) as session:
                JobService(session).create_job(_request(title=title), actor_id)

        assert exc_info.value.code == "JOB_CREATION_FAILED"
        assert count_rows(JobModel) == 0

    def test_negative_duration(self, session_factory, actor_id):
        with pytest.raises(JobCreationError, match="estimated_duration"):
            with session_scope(session_factory) as session:
                JobService(session).create_job(_request(estimated_duration=-5), actor_id)
