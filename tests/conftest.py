"""
Pytest fixtures for the recurring schedule engine test suite.

Provides:
- A file-backed SQLite database per test (tables created from the ORM)
- A DeterministicClock pinned to 2024-01-01 12:00 UTC
- The engine assembled the same way bootstrap does it
- Draft/schedule factories and a row counter

SQLite runs with BEGIN IMMEDIATE transactions (see build_engine), so the
concurrency tests exercise real lock contention between threads.
"""

import json
import logging
from dataclasses import replace
from datetime import date, datetime, timezone
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.orm import sessionmaker

from backoffice_config.schema import EngineSettings
from backoffice_kernel.db.engine import build_engine, create_tables
from backoffice_kernel.domain.clock import DeterministicClock
from backoffice_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)

from recurring_engine.bootstrap import build_runner, build_schedule_service
from recurring_engine.domain.types import Frequency, RecurrenceRule, ScheduleDraft
from recurring_engine.services.claims import ClaimCoordinator
from recurring_engine.services.executor import ExecutionEngine
from recurring_engine.services.sweep import SweepScheduler


# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()
BUSINESS_ID = uuid4()
CUSTOMER_ID = uuid4()

_RULE_FIELDS = ("frequency", "start_date", "interval", "day_of_week", "day_of_month", "end_date")


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture backoffice logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, schedule_service):
            schedule_service.pause(schedule.id)
            logs = captured_logs()
            assert any(r["message"] == "recurring_schedule_status_changed" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("backoffice")
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture
def db_engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'backoffice.db'}")
    create_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def count_rows(session_factory):
    """Count committed rows of an ORM model, optionally filtered by column values."""

    def _count(model, **filters) -> int:
        s = session_factory()
        try:
            stmt = select(func.count()).select_from(model).filter_by(**filters)
            return s.execute(stmt).scalar_one()
        finally:
            s.rollback()
            s.close()

    return _count


# =============================================================================
# Engine components
# =============================================================================


@pytest.fixture
def actor_id():
    return TEST_ACTOR_ID


@pytest.fixture
def clock():
    return DeterministicClock(datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings():
    return EngineSettings(
        database_url="sqlite://",
        sweep_interval_seconds=1,
        sweep_max_workers=4,
        execution_timeout_seconds=10.0,
        claim_ttl_seconds=300,
        run_now_wait_seconds=2.0,
    )


@pytest.fixture
def execution_engine(session_factory, clock, settings):
    return ExecutionEngine(session_factory, clock, settings)


@pytest.fixture
def claims(session_factory, clock, settings):
    return ClaimCoordinator(session_factory, clock, settings.claim_ttl_seconds)


@pytest.fixture
def runner(session_factory, clock, settings, execution_engine):
    return build_runner(
        session_factory, settings, clock, actor_id=TEST_ACTOR_ID, engine=execution_engine,
    )


@pytest.fixture
def schedule_service(session_factory, clock, settings, runner):
    return build_schedule_service(
        session_factory, settings, clock, runner=runner, actor_id=TEST_ACTOR_ID,
    )


@pytest.fixture
def sweep(session_factory, clock, settings, runner):
    return SweepScheduler(session_factory, runner, clock, settings)


@pytest.fixture
def service_with(session_factory, clock, settings):
    """Build a schedule service with settings overrides and optional engine factories."""

    def _build(engine_kwargs=None, **setting_overrides):
        custom = replace(settings, **setting_overrides)
        engine = ExecutionEngine(session_factory, clock, custom, **(engine_kwargs or {}))
        runner = build_runner(session_factory, custom, clock, actor_id=TEST_ACTOR_ID, engine=engine)
        return build_schedule_service(
            session_factory, custom, clock, runner=runner, actor_id=TEST_ACTOR_ID,
        )

    return _build


# =============================================================================
# Schedule factories
# =============================================================================


def _make_draft(**overrides) -> ScheduleDraft:
    rule_fields = {k: overrides.pop(k) for k in _RULE_FIELDS if k in overrides}
    rule = overrides.pop("rule", None)
    if rule is None:
        rule_fields.setdefault("frequency", Frequency.DAILY)
        rule_fields.setdefault("start_date", date(2024, 1, 1))
        rule = RecurrenceRule(**rule_fields)

    fields = {
        "business_id": BUSINESS_ID,
        "customer_id": CUSTOMER_ID,
        "name": "Pool maintenance",
        "rule": rule,
        "job_title": "Pool cleaning",
    }
    fields.update(overrides)
    return ScheduleDraft(**fields)


@pytest.fixture
def make_draft():
    """
    Build a ScheduleDraft.  Rule fields may be passed flat::

        make_draft(frequency=Frequency.WEEKLY, day_of_week=2, auto_create_invoice=True, ...)
    """
    return _make_draft


@pytest.fixture
def create_schedule(schedule_service):
    """Create and persist a schedule through the service."""

    def _create(**overrides):
        return schedule_service.create_schedule(_make_draft(**overrides))

    return _create
