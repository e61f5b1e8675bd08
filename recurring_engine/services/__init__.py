"""
recurring_engine.services -- repository, claims, execution, sweep and the
schedule service facade.
"""

from recurring_engine.services.claims import ClaimCoordinator
from recurring_engine.services.executor import ExecutionEngine
from recurring_engine.services.repository import ScheduleRepository
from recurring_engine.services.runner import OccurrenceRunner
from recurring_engine.services.schedule_service import RecurringScheduleService
from recurring_engine.services.sweep import SweepScheduler

__all__ = [
    "ClaimCoordinator",
    "ExecutionEngine",
    "OccurrenceRunner",
    "RecurringScheduleService",
    "ScheduleRepository",
    "SweepScheduler",
]
