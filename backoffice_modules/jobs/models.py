"""
Jobs Domain Models (``backoffice_modules.jobs.models``).

Responsibility
--------------
Frozen dataclass value objects for work orders: the creation request and
the created record.

Architecture position
---------------------
**Modules layer** -- pure data definitions with ZERO I/O.
"""

from dataclasses import dataclass
from datetime import date
from enum import Enum
from uuid import UUID


class JobStatus(str, Enum):
    """Job lifecycle states."""
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    WAITING_PARTS = "waiting_parts"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass(frozen=True)
class JobRequest:
    """Everything needed to create a job."""
    business_id: UUID
    customer_id: UUID
    title: str
    scheduled_date: date
    description: str | None = None
    staff_id: UUID | None = None
    service_id: UUID | None = None
    estimated_duration: int | None = None  # minutes
    recurring_schedule_id: UUID | None = None


@dataclass(frozen=True)
class Job:
    """A created job."""
    id: UUID
    business_id: UUID
    customer_id: UUID
    title: str
    scheduled_date: date
    status: JobStatus
    description: str | None = None
    staff_id: UUID | None = None
    service_id: UUID | None = None
    estimated_duration: int | None = None
    recurring_schedule_id: UUID | None = None
