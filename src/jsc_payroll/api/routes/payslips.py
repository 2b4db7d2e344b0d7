"""Payslip query endpoints."""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query

from jsc_payroll.api.dependencies import DbSession
from jsc_payroll.api.schemas import PayslipListResponse, PayslipResponse
from jsc_payroll.services.payroll_run_service import PayrollRunService

router = APIRouter(prefix="/payslips", tags=["payslips"])


@router.get("", response_model=PayslipListResponse)
async def list_payslips(
    db: DbSession,
    period: Annotated[str | None, Query(pattern=r"^\d{4}-(0[1-9]|1[0-2])$")] = None,
    staff_id: Annotated[UUID | None, Query()] = None,
) -> PayslipListResponse:
    """List payslips by period and/or staff member."""
    payslips = await PayrollRunService(db).list_payslips(period=period, staff_id=staff_id)
    return PayslipListResponse(
        items=[PayslipResponse.model_validate(p) for p in payslips],
        total=len(payslips),
    )
