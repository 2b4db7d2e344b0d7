"""Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

PERIOD_PATTERN = r"^\d{4}-(0[1-9]|1[0-2])$"


# ============================================================================
# Payroll Run schemas
# ============================================================================


class PayrollRunCreate(BaseModel):
    """Schema for starting a payroll run."""

    period: str = Field(pattern=PERIOD_PATTERN)
    department_id: UUID | None = None
    actor_id: UUID | None = None


class StatutoryRatesResponse(BaseModel):
    """Rates frozen on a payroll run."""

    model_config = ConfigDict(from_attributes=True)

    version: str
    housing: Decimal
    transport: Decimal
    medical: Decimal
    pension: Decimal
    tax: Decimal
    housing_fund: Decimal


class PayrollRunResponse(BaseModel):
    """Schema for payroll run response."""

    model_config = ConfigDict(from_attributes=True)

    payroll_run_id: UUID
    period: str
    department_id: UUID | None = None
    status: str
    total_staff: int
    processed_count: int
    failed_count: int
    gross_amount: Decimal
    total_deductions: Decimal
    net_amount: Decimal
    rates_version: str
    rates: StatutoryRatesResponse
    failures: dict[str, str] = Field(default_factory=dict)
    skipped_staff_ids: list[str] = Field(default_factory=list)
    created_by: UUID | None = None
    approved_by: UUID | None = None
    approved_at: datetime | None = None
    processed_at: datetime | None = None
    created_at: datetime


class PayrollRunListResponse(BaseModel):
    """Schema for listing payroll runs."""

    items: list[PayrollRunResponse]
    total: int


class RunSummaryResponse(BaseModel):
    """Per-run result summary returned when a run completes."""

    run_id: UUID
    period: str
    department_id: UUID | None = None
    status: str
    processed_staff_ids: list[UUID]
    skipped_staff_ids: list[UUID]
    failed: dict[UUID, str]
    warnings: dict[UUID, list[str]]
    has_exceptions: bool
    gross_amount: Decimal
    total_deductions: Decimal
    net_amount: Decimal


# ============================================================================
# Payslip schemas
# ============================================================================


class PayslipLineResponse(BaseModel):
    """Schema for a payslip line."""

    model_config = ConfigDict(from_attributes=True)

    line_type: str
    code: str
    amount: Decimal
    adjustment_id: UUID | None = None
    description: str | None = None


class PayslipResponse(BaseModel):
    """Schema for payslip response."""

    model_config = ConfigDict(from_attributes=True)

    payslip_id: UUID
    staff_id: UUID
    payroll_run_id: UUID
    period: str
    grade_level: int
    step: int
    basic_salary: Decimal
    allowances: dict[str, Decimal]
    deductions: dict[str, Decimal]
    gross_pay: Decimal
    total_deductions: Decimal
    net_pay: Decimal
    deductions_capped: bool
    lines: list[PayslipLineResponse] = Field(default_factory=list)
    created_at: datetime


class PayslipListResponse(BaseModel):
    """Schema for listing payslips."""

    items: list[PayslipResponse]
    total: int


# ============================================================================
# Adjustment schemas
# ============================================================================


class AllowanceCreate(BaseModel):
    """Schema for recording an individual allowance."""

    staff_id: UUID
    allowance_type: str
    amount: Decimal = Field(gt=0)
    period: str = Field(pattern=PERIOD_PATTERN)
    end_period: str | None = Field(default=None, pattern=PERIOD_PATTERN)
    recurring: bool = False
    description: str | None = None


class DeductionCreate(BaseModel):
    """Schema for recording an individual deduction."""

    staff_id: UUID
    deduction_type: str
    amount: Decimal = Field(gt=0)
    period: str = Field(pattern=PERIOD_PATTERN)
    total_amount: Decimal | None = Field(default=None, gt=0)
    start_period: str | None = Field(default=None, pattern=PERIOD_PATTERN)
    end_period: str | None = Field(default=None, pattern=PERIOD_PATTERN)
    description: str | None = None


class AdjustmentUpdate(BaseModel):
    """Schema for editing an adjustment."""

    amount: Decimal | None = Field(default=None, gt=0)
    description: str | None = None
    end_period: str | None = Field(default=None, pattern=PERIOD_PATTERN)


class AdjustmentResponse(BaseModel):
    """Schema for adjustment response."""

    model_config = ConfigDict(from_attributes=True)

    adjustment_id: UUID
    staff_id: UUID
    direction: str
    adjustment_type: str
    amount: Decimal
    total_amount: Decimal | None = None
    remaining_balance: Decimal | None = None
    period: str
    start_period: str | None = None
    end_period: str | None = None
    status: str
    description: str | None = None
    created_by: UUID | None = None
    reviewed_by: UUID | None = None
    reviewed_at: datetime | None = None
    last_applied_period: str | None = None
    created_at: datetime


class AdjustmentListResponse(BaseModel):
    """Schema for listing adjustments."""

    items: list[AdjustmentResponse]
    total: int


class RepaymentInstallmentResponse(BaseModel):
    """Schema for one projected repayment."""

    model_config = ConfigDict(from_attributes=True)

    period: str
    amount: Decimal
    remaining_after: Decimal


class RepaymentScheduleResponse(BaseModel):
    """Schema for an amortizing deduction's projected repayments."""

    adjustment_id: UUID
    remaining_balance: Decimal | None = None
    installments: list[RepaymentInstallmentResponse]


# ============================================================================
# Common schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    context: dict[str, Any] | None = None
