"""
HTTP routes for recurring schedules.

Each route maps to one RecurringScheduleService call: a state-machine
transition, a claim+execute (``/run``), or a read.  Errors are rendered by
``register_exception_handlers`` as ``{"error": code, "message": text}``.
"""

from __future__ import annotations

from uuid import UUID

from fastapi import APIRouter, Depends, FastAPI, Query, Request
from fastapi.responses import JSONResponse

from backoffice_kernel.exceptions import (
    BackofficeError,
    ConcurrencyError,
    ExecutionFailureError,
    InvalidStatusTransitionError,
    RuleError,
    ScheduleNotFoundError,
)
from backoffice_kernel.logging_config import get_logger

from recurring_engine.api.schemas import (
    ErrorResponse,
    ExecutionResultResponse,
    JobHistoryResponse,
    PreviewResponse,
    RecurringScheduleCreate,
    RecurringScheduleResponse,
    RecurringScheduleUpdate,
    RunNowRequest,
)
from recurring_engine.services.schedule_service import RecurringScheduleService

logger = get_logger("recurring.api")

router = APIRouter(
    prefix="/recurring-schedules",
    tags=["Recurring Schedules"],
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)


def get_schedule_service() -> RecurringScheduleService:
    """Overridden by the application (``create_app``) or by tests."""
    raise RuntimeError("RecurringScheduleService dependency is not configured")


@router.post("", response_model=RecurringScheduleResponse, status_code=201)
def create_schedule(
    payload: RecurringScheduleCreate,
    service: RecurringScheduleService = Depends(get_schedule_service),
):
    schedule = service.create_schedule(payload.to_draft())
    return RecurringScheduleResponse.from_schedule(schedule)


@router.get("", response_model=list[RecurringScheduleResponse])
def list_schedules(
    business_id: UUID = Query(..., alias="businessId"),
    service: RecurringScheduleService = Depends(get_schedule_service),
):
    return [RecurringScheduleResponse.from_schedule(s) for s in service.list_schedules(business_id)]


@router.get("/{schedule_id}", response_model=RecurringScheduleResponse)
def get_schedule(
    schedule_id: UUID,
    service: RecurringScheduleService = Depends(get_schedule_service),
):
    return RecurringScheduleResponse.from_schedule(service.get_schedule(schedule_id))


@router.get("/{schedule_id}/history", response_model=list[JobHistoryResponse])
def get_history(
    schedule_id: UUID,
    service: RecurringScheduleService = Depends(get_schedule_service),
):
    return [JobHistoryResponse.from_entry(e) for e in service.get_history(schedule_id)]


@router.get("/{schedule_id}/preview", response_model=PreviewResponse)
def preview_occurrences(
    schedule_id: UUID,
    count: int = Query(5, ge=1, le=100),
    service: RecurringScheduleService = Depends(get_schedule_service),
):
    return PreviewResponse(
        scheduleId=schedule_id,
        dates=service.preview_occurrences(schedule_id, count),
    )


@router.patch("/{schedule_id}", response_model=RecurringScheduleResponse)
def update_schedule(
    schedule_id: UUID,
    payload: RecurringScheduleUpdate,
    service: RecurringScheduleService = Depends(get_schedule_service),
):
    schedule = service.update_templates(schedule_id, payload.to_update())
    return RecurringScheduleResponse.from_schedule(schedule)


@router.post("/{schedule_id}/run", response_model=ExecutionResultResponse)
def run_now(
    schedule_id: UUID,
    payload: RunNowRequest | None = None,
    service: RecurringScheduleService = Depends(get_schedule_service),
):
    """Execute now.  ``status`` is executed, already_executed or denied (no-op)."""
    occurrence_date = payload.occurrenceDate if payload is not None else None
    result = service.run_now(schedule_id, occurrence_date)
    return ExecutionResultResponse.from_result(result)


@router.post("/{schedule_id}/pause", response_model=RecurringScheduleResponse)
def pause_schedule(
    schedule_id: UUID,
    service: RecurringScheduleService = Depends(get_schedule_service),
):
    return RecurringScheduleResponse.from_schedule(service.pause(schedule_id))


@router.post("/{schedule_id}/resume", response_model=RecurringScheduleResponse)
def resume_schedule(
    schedule_id: UUID,
    service: RecurringScheduleService = Depends(get_schedule_service),
):
    return RecurringScheduleResponse.from_schedule(service.resume(schedule_id))


@router.delete("/{schedule_id}", response_model=RecurringScheduleResponse)
def cancel_schedule(
    schedule_id: UUID,
    service: RecurringScheduleService = Depends(get_schedule_service),
):
    """Cancel (terminal).  The row and its history are kept."""
    return RecurringScheduleResponse.from_schedule(service.cancel(schedule_id))


# =============================================================================
# Error mapping
# =============================================================================

_STATUS_BY_ERROR: tuple[tuple[type[BackofficeError], int], ...] = (
    (RuleError, 400),
    (ScheduleNotFoundError, 404),
    (InvalidStatusTransitionError, 409),
    (ConcurrencyError, 409),
    (ExecutionFailureError, 500),
)


def error_status(exc: BackofficeError) -> int:
    for error_type, status_code in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status_code
    return 500


async def backoffice_error_handler(request: Request, exc: BackofficeError) -> JSONResponse:
    status_code = error_status(exc)
    log = logger.error if status_code >= 500 else logger.info
    log(
        "api_request_failed",
        extra={
            "path": request.url.path,
            "status_code": status_code,
            "error_code": exc.code,
        },
    )
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.code, "message": str(exc)},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BackofficeError, backoffice_error_handler)
