"""
recurring_engine.models -- ORM models for recurring schedule persistence.
"""

from recurring_engine.models.schedule import (
    RecurringJobHistoryModel,
    RecurringScheduleItemModel,
    RecurringScheduleModel,
)

__all__ = [
    "RecurringJobHistoryModel",
    "RecurringScheduleItemModel",
    "RecurringScheduleModel",
]
