"""Individual adjustment API endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Path, Query, status

from jsc_payroll.api.dependencies import ActorId, DbSession
from jsc_payroll.api.schemas import (
    AdjustmentListResponse,
    AdjustmentResponse,
    AdjustmentUpdate,
    AllowanceCreate,
    DeductionCreate,
    ErrorResponse,
    RepaymentInstallmentResponse,
    RepaymentScheduleResponse,
)
from jsc_payroll.services.adjustment_ledger import AdjustmentLedger

router = APIRouter(tags=["adjustments"])


# ============================================================================
# Creation
# ============================================================================


@router.post(
    "/adjustments/allowances",
    response_model=AdjustmentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ErrorResponse}},
)
async def create_allowance(
    db: DbSession,
    actor_id: ActorId,
    payload: AllowanceCreate,
) -> AdjustmentResponse:
    """Record an allowance; it stays pending until approved."""
    adjustment = await AdjustmentLedger(db).create_allowance(
        staff_id=payload.staff_id,
        allowance_type=payload.allowance_type,
        amount=payload.amount,
        period=payload.period,
        description=payload.description,
        end_period=payload.end_period,
        recurring=payload.recurring,
        created_by=actor_id,
    )
    await db.commit()
    return AdjustmentResponse.model_validate(adjustment)


@router.post(
    "/adjustments/deductions",
    response_model=AdjustmentResponse,
    status_code=status.HTTP_201_CREATED,
    responses={422: {"model": ErrorResponse}},
)
async def create_deduction(
    db: DbSession,
    actor_id: ActorId,
    payload: DeductionCreate,
) -> AdjustmentResponse:
    """Record a deduction; it is active immediately."""
    adjustment = await AdjustmentLedger(db).create_deduction(
        staff_id=payload.staff_id,
        deduction_type=payload.deduction_type,
        amount=payload.amount,
        period=payload.period,
        total_amount=payload.total_amount,
        start_period=payload.start_period,
        end_period=payload.end_period,
        description=payload.description,
        created_by=actor_id,
    )
    await db.commit()
    return AdjustmentResponse.model_validate(adjustment)


# ============================================================================
# Queries
# ============================================================================


@router.get(
    "/adjustments/{adjustment_id}",
    response_model=AdjustmentResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_adjustment(
    db: DbSession,
    adjustment_id: Annotated[UUID, Path()],
) -> AdjustmentResponse:
    adjustment = await AdjustmentLedger(db).get_adjustment(adjustment_id)
    return AdjustmentResponse.model_validate(adjustment)


@router.get(
    "/adjustments/{adjustment_id}/schedule",
    response_model=RepaymentScheduleResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_repayment_schedule(
    db: DbSession,
    adjustment_id: Annotated[UUID, Path()],
) -> RepaymentScheduleResponse:
    """Projected repayments of an amortizing deduction until payoff."""
    adjustment = await AdjustmentLedger(db).get_adjustment(adjustment_id)
    installments = AdjustmentLedger.repayment_schedule(adjustment)
    return RepaymentScheduleResponse(
        adjustment_id=adjustment.adjustment_id,
        remaining_balance=adjustment.remaining_balance,
        installments=[RepaymentInstallmentResponse.model_validate(i) for i in installments],
    )


@router.get("/staff/{staff_id}/adjustments", response_model=AdjustmentListResponse)
async def list_staff_adjustments(
    db: DbSession,
    staff_id: Annotated[UUID, Path()],
    period: Annotated[str | None, Query(pattern=r"^\d{4}-(0[1-9]|1[0-2])$")] = None,
) -> AdjustmentListResponse:
    """List a staff member's adjustments, optionally those covering a period."""
    adjustments = await AdjustmentLedger(db).list_for_staff(staff_id, period)
    return AdjustmentListResponse(
        items=[AdjustmentResponse.model_validate(a) for a in adjustments],
        total=len(adjustments),
    )


# ============================================================================
# Changes and review
# ============================================================================


@router.patch(
    "/adjustments/{adjustment_id}",
    response_model=AdjustmentResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def update_adjustment(
    db: DbSession,
    actor_id: ActorId,
    adjustment_id: Annotated[UUID, Path()],
    payload: AdjustmentUpdate,
) -> AdjustmentResponse:
    adjustment = await AdjustmentLedger(db).update_adjustment(
        adjustment_id,
        amount=payload.amount,
        description=payload.description,
        end_period=payload.end_period,
        actor_id=actor_id,
    )
    await db.commit()
    return AdjustmentResponse.model_validate(adjustment)


@router.post(
    "/adjustments/{adjustment_id}/approve",
    response_model=AdjustmentResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def approve_allowance(
    db: DbSession,
    actor_id: ActorId,
    adjustment_id: Annotated[UUID, Path()],
) -> AdjustmentResponse:
    adjustment = await AdjustmentLedger(db).approve_allowance(adjustment_id, actor_id)
    await db.commit()
    return AdjustmentResponse.model_validate(adjustment)


@router.post(
    "/adjustments/{adjustment_id}/reject",
    response_model=AdjustmentResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def reject_allowance(
    db: DbSession,
    actor_id: ActorId,
    adjustment_id: Annotated[UUID, Path()],
) -> AdjustmentResponse:
    adjustment = await AdjustmentLedger(db).reject_allowance(adjustment_id, actor_id)
    await db.commit()
    return AdjustmentResponse.model_validate(adjustment)


@router.post(
    "/adjustments/{adjustment_id}/cancel",
    response_model=AdjustmentResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def cancel_adjustment(
    db: DbSession,
    actor_id: ActorId,
    adjustment_id: Annotated[UUID, Path()],
) -> AdjustmentResponse:
    adjustment = await AdjustmentLedger(db).cancel_adjustment(adjustment_id, actor_id)
    await db.commit()
    return AdjustmentResponse.model_validate(adjustment)
