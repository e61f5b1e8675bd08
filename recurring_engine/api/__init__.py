"""
recurring_engine.api -- FastAPI router and app factory.
"""

from recurring_engine.api.app import create_app
from recurring_engine.api.router import get_schedule_service, register_exception_handlers, router

__all__ = [
    "create_app",
    "get_schedule_service",
    "register_exception_handlers",
    "router",
]
