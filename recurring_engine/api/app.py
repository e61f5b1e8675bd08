"""FastAPI application factory for the recurring schedule API."""

from __future__ import annotations

from fastapi import FastAPI

from backoffice_config import load_engine_settings
from backoffice_config.schema import EngineSettings
from backoffice_kernel import __version__
from backoffice_kernel.db.engine import get_session_factory, init_engine_from_url
from backoffice_kernel.logging_config import configure_logging

from recurring_engine.api.router import get_schedule_service, register_exception_handlers, router
from recurring_engine.bootstrap import build_schedule_service
from recurring_engine.services.schedule_service import RecurringScheduleService


def create_app(
    service: RecurringScheduleService | None = None,
    settings: EngineSettings | None = None,
) -> FastAPI:
    """Build the app.  Without ``service``, wires one from settings and the database URL."""
    if service is None:
        settings = settings or load_engine_settings()
        configure_logging(level=settings.log_level)
        init_engine_from_url(settings.database_url)
        service = build_schedule_service(get_session_factory(), settings)

    app = FastAPI(title="Recurring Schedule Engine", version=__version__)
    app.include_router(router)
    app.dependency_overrides[get_schedule_service] = lambda: service
    register_exception_handlers(app)
    return app
