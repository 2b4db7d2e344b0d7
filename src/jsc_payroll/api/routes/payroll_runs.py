"""Payroll run API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from jsc_payroll.api.dependencies import ActorId, DbSession, Orchestrator
from jsc_payroll.api.schemas import (
    ErrorResponse,
    PayrollRunCreate,
    PayrollRunListResponse,
    PayrollRunResponse,
    PayslipListResponse,
    PayslipResponse,
    RunSummaryResponse,
)
from jsc_payroll.services.payroll_run_service import PayrollRunService, RunResult

router = APIRouter(prefix="/payroll-runs", tags=["payroll-runs"])


def _summary(result: RunResult) -> RunSummaryResponse:
    return RunSummaryResponse(
        run_id=result.run_id,
        period=result.period,
        department_id=result.department_id,
        status=result.status,
        processed_staff_ids=result.processed_staff_ids,
        skipped_staff_ids=result.skipped_staff_ids,
        failed=result.failed,
        warnings=result.warnings,
        has_exceptions=result.has_exceptions,
        gross_amount=result.gross_amount,
        total_deductions=result.total_deductions,
        net_amount=result.net_amount,
    )


# ============================================================================
# Payroll Run processing
# ============================================================================


@router.post(
    "",
    response_model=RunSummaryResponse,
    status_code=status.HTTP_201_CREATED,
    responses={409: {"model": ErrorResponse}, 422: {"model": ErrorResponse}},
)
async def start_payroll_run(
    orchestrator: Orchestrator,
    actor_id: ActorId,
    payload: PayrollRunCreate,
) -> RunSummaryResponse:
    """Process payroll for a period and optional department.

    Staff already paid for the period are skipped; per-staff failures are
    reported in the summary rather than failing the request. An actor_id in
    the body takes precedence over the X-Actor-ID header.
    """
    result = await orchestrator.start_run(
        payload.period, payload.department_id, payload.actor_id or actor_id
    )
    return _summary(result)


@router.get("", response_model=PayrollRunListResponse)
async def list_payroll_runs(
    db: DbSession,
    period: Annotated[str | None, Query(pattern=r"^\d{4}-(0[1-9]|1[0-2])$")] = None,
    department_id: Annotated[UUID | None, Query()] = None,
    run_status: Annotated[str | None, Query(alias="status")] = None,
) -> PayrollRunListResponse:
    """List payroll runs, newest period first."""
    runs = await PayrollRunService(db).list_runs(period, department_id, run_status)
    return PayrollRunListResponse(
        items=[PayrollRunResponse.model_validate(r) for r in runs],
        total=len(runs),
    )


@router.get(
    "/{payroll_run_id}",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_payroll_run(
    db: DbSession,
    payroll_run_id: Annotated[UUID, Path()],
) -> PayrollRunResponse:
    """Get a specific payroll run by ID."""
    payroll_run = await PayrollRunService(db).get_run(payroll_run_id)
    return PayrollRunResponse.model_validate(payroll_run)


@router.get(
    "/{payroll_run_id}/payslips",
    response_model=PayslipListResponse,
    responses={404: {"model": ErrorResponse}},
)
async def list_run_payslips(
    db: DbSession,
    payroll_run_id: Annotated[UUID, Path()],
) -> PayslipListResponse:
    """List the payslips produced by a run."""
    service = PayrollRunService(db)
    await service.get_run(payroll_run_id)
    payslips = await service.list_payslips(payroll_run_id=payroll_run_id)
    return PayslipListResponse(
        items=[PayslipResponse.model_validate(p) for p in payslips],
        total=len(payslips),
    )


# ============================================================================
# Payroll Run State Transitions
# ============================================================================


@router.post(
    "/{payroll_run_id}/submit-review",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def submit_payroll_run_for_review(
    db: DbSession,
    actor_id: ActorId,
    payroll_run_id: Annotated[UUID, Path()],
) -> PayrollRunResponse:
    """Move a processed run to pending_review."""
    payroll_run = await PayrollRunService(db).submit_for_review(payroll_run_id, actor_id)
    await db.commit()
    return PayrollRunResponse.model_validate(payroll_run)


@router.post(
    "/{payroll_run_id}/approve",
    response_model=PayrollRunResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def approve_payroll_run(
    db: DbSession,
    actor_id: ActorId,
    payroll_run_id: Annotated[UUID, Path()],
) -> PayrollRunResponse:
    """Approve a processed or reviewed run."""
    payroll_run = await PayrollRunService(db).approve_run(payroll_run_id, actor_id)
    await db.commit()
    return PayrollRunResponse.model_validate(payroll_run)
