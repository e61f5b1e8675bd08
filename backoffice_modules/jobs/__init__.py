"""
Jobs Module.

Creates work-order records.  The recurring schedule engine is one of the
callers; it does not own a job's lifecycle after creation.
"""

from backoffice_modules.jobs.models import Job, JobRequest, JobStatus
from backoffice_modules.jobs.service import JobService

__all__ = ["Job", "JobRequest", "JobStatus", "JobService"]
