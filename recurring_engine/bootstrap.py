"""
Settings -> Engine wiring.

Builds the claim coordinator, execution engine, runner, sweep and schedule
service from ``EngineSettings`` and a session factory, so the HTTP app,
the sweep script and tests assemble the engine the same way.

Usage:
    from recurring_engine.bootstrap import build_schedule_service, build_sweep_scheduler

    settings = load_engine_settings()
    init_engine_from_url(settings.database_url)
    service = build_schedule_service(get_session_factory(), settings)
"""

from __future__ import annotations

from typing import Callable
from uuid import UUID, uuid5

from sqlalchemy.orm import Session

from backoffice_config.schema import EngineSettings
from backoffice_kernel.domain.clock import Clock, SystemClock

from recurring_engine.services.claims import ClaimCoordinator
from recurring_engine.services.executor import ExecutionEngine
from recurring_engine.services.runner import OccurrenceRunner
from recurring_engine.services.schedule_service import RecurringScheduleService
from recurring_engine.services.sweep import SweepScheduler

# Stable actor recorded as created_by/updated_by for engine-made rows.
SYSTEM_ACTOR_ID = uuid5(UUID("6f1c2a4e-8d3b-4c57-9a0e-2b7d5f3e1c90"), "recurring-engine")


def build_runner(
    session_factory: Callable[[], Session],
    settings: EngineSettings,
    clock: Clock | None = None,
    actor_id: UUID = SYSTEM_ACTOR_ID,
    engine: ExecutionEngine | None = None,
) -> OccurrenceRunner:
    """Claim coordinator + execution engine behind one runner."""
    clock = clock or SystemClock()
    claims = ClaimCoordinator(session_factory, clock, settings.claim_ttl_seconds)
    engine = engine or ExecutionEngine(session_factory, clock, settings)
    return OccurrenceRunner(claims, engine, actor_id=actor_id)


def build_schedule_service(
    session_factory: Callable[[], Session],
    settings: EngineSettings,
    clock: Clock | None = None,
    runner: OccurrenceRunner | None = None,
    actor_id: UUID = SYSTEM_ACTOR_ID,
) -> RecurringScheduleService:
    clock = clock or SystemClock()
    runner = runner or build_runner(session_factory, settings, clock, actor_id)
    return RecurringScheduleService(session_factory, runner, clock, settings, actor_id=actor_id)


def build_sweep_scheduler(
    session_factory: Callable[[], Session],
    settings: EngineSettings,
    clock: Clock | None = None,
    runner: OccurrenceRunner | None = None,
) -> SweepScheduler:
    clock = clock or SystemClock()
    runner = runner or build_runner(session_factory, settings, clock)
    return SweepScheduler(session_factory, runner, clock, settings)
