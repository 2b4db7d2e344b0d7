"""Type definitions for the payslip calculation pipeline."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from uuid import UUID


class LineType(str, Enum):
    """Payslip line types."""

    ALLOWANCE = "ALLOWANCE"
    DEDUCTION = "DEDUCTION"


class AdjustmentDirection(str, Enum):
    """Whether an individual adjustment adds to or subtracts from pay."""

    ALLOWANCE = "allowance"
    DEDUCTION = "deduction"


class AdjustmentType(str, Enum):
    """Individual deduction types."""

    LOAN_REPAYMENT = "loan_repayment"
    SALARY_ADVANCE = "salary_advance"
    COOPERATIVE = "cooperative"
    FINE = "fine"
    GARNISHMENT = "garnishment"
    INSURANCE_PREMIUM = "insurance_premium"
    UNION_DUES = "union_dues"
    TRAINING_COST = "training_cost"
    EQUIPMENT_DAMAGE = "equipment_damage"
    OVERPAYMENT_RECOVERY = "overpayment_recovery"
    OTHER = "other"

    @property
    def is_amortizing(self) -> bool:
        return self in AMORTIZING_TYPES


class AllowanceType(str, Enum):
    """Individual allowance types."""

    OVERTIME = "overtime"
    BONUS = "bonus"
    ARREARS = "arrears"
    COMMISSION = "commission"
    SPECIAL_DUTY = "special_duty"
    OTHER = "other"


class AdjustmentStatus(str, Enum):
    """Individual adjustment status values."""

    PENDING = "pending"
    ACTIVE = "active"
    APPLIED = "applied"
    PAID_OFF = "paid_off"
    CANCELLED = "cancelled"


# Deductions repaid against a fixed total
AMORTIZING_TYPES = frozenset(
    {
        AdjustmentType.LOAN_REPAYMENT,
        AdjustmentType.SALARY_ADVANCE,
        AdjustmentType.TRAINING_COST,
        AdjustmentType.OVERPAYMENT_RECOVERY,
        AdjustmentType.COOPERATIVE,
    }
)

TERMINAL_ADJUSTMENT_STATUSES = frozenset(
    {AdjustmentStatus.PAID_OFF, AdjustmentStatus.CANCELLED}
)

# Order in which individual deductions consume the pay left after statutory
# deductions. Court-ordered and disciplinary items come first.
DEDUCTION_PRIORITY: tuple[AdjustmentType, ...] = (
    AdjustmentType.GARNISHMENT,
    AdjustmentType.FINE,
    AdjustmentType.OVERPAYMENT_RECOVERY,
    AdjustmentType.LOAN_REPAYMENT,
    AdjustmentType.SALARY_ADVANCE,
    AdjustmentType.COOPERATIVE,
    AdjustmentType.TRAINING_COST,
    AdjustmentType.EQUIPMENT_DAMAGE,
    AdjustmentType.INSURANCE_PREMIUM,
    AdjustmentType.UNION_DUES,
    AdjustmentType.OTHER,
)


def deduction_rank(adjustment_type: str) -> int:
    """Position of a deduction type in DEDUCTION_PRIORITY."""
    return DEDUCTION_PRIORITY.index(AdjustmentType(adjustment_type))


def is_amortizing(adjustment_type: str) -> bool:
    """Check whether an adjustment type string names an amortizing deduction."""
    return adjustment_type in {t.value for t in AMORTIZING_TYPES}


# ===== Periods =====

_PERIOD_RE = re.compile(r"^(\d{4})-(0[1-9]|1[0-2])$")


def validate_period(period: str) -> str:
    """Validate a YYYY-MM period string, returning it unchanged."""
    if not isinstance(period, str) or not _PERIOD_RE.match(period):
        raise ValueError(f"Invalid period '{period}', expected YYYY-MM")
    return period


def next_period(period: str) -> str:
    """Return the period following the given YYYY-MM period."""
    year, month = (int(part) for part in validate_period(period).split("-"))
    if month == 12:
        return f"{year + 1:04d}-01"
    return f"{year:04d}-{month + 1:02d}"


# ===== Calculation values =====


@dataclass(frozen=True)
class StructuralBreakdown:
    """Fixed-percentage allowances and statutory deductions for one basic salary."""

    housing: Decimal
    transport: Decimal
    medical: Decimal
    pension: Decimal
    tax: Decimal
    housing_fund: Decimal

    @property
    def allowances(self) -> dict[str, Decimal]:
        return {
            "housing": self.housing,
            "transport": self.transport,
            "medical": self.medical,
        }

    @property
    def deductions(self) -> dict[str, Decimal]:
        return {
            "pension": self.pension,
            "tax": self.tax,
            "housing_fund": self.housing_fund,
        }

    @property
    def total_allowances(self) -> Decimal:
        return sum(self.allowances.values(), Decimal("0"))

    @property
    def total_deductions(self) -> Decimal:
        return sum(self.deductions.values(), Decimal("0"))


@dataclass
class LineCandidate:
    """A payslip line before persistence."""

    line_type: LineType
    code: str
    amount: Decimal  # Always non-negative; line_type carries the sign

    # Traceability
    adjustment_id: UUID | None = None
    description: str | None = None


@dataclass(frozen=True)
class AppliedAdjustment:
    """Outcome of applying one adjustment to one period."""

    adjustment_id: UUID
    period: str
    amount: Decimal  # What was actually applied
    requested_amount: Decimal  # Configured per-period amount
    remaining_balance: Decimal | None
    status: str
    limited: bool = False  # True if a pay cap reduced the amount

    @property
    def paid_off(self) -> bool:
        return self.status == AdjustmentStatus.PAID_OFF.value


@dataclass
class PayslipDraft:
    """Assembled payslip for one staff member, ready to persist."""

    staff_id: UUID
    period: str
    grade_level: int
    step: int
    basic_salary: Decimal
    rates_version: str
    lines: list[LineCandidate] = field(default_factory=list)
    gross_pay: Decimal = Decimal("0")
    total_deductions: Decimal = Decimal("0")
    net_pay: Decimal = Decimal("0")
    deductions_capped: bool = False
    applied_adjustments: list[AppliedAdjustment] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def allowance_lines(self) -> list[LineCandidate]:
        return [line for line in self.lines if line.line_type == LineType.ALLOWANCE]

    @property
    def deduction_lines(self) -> list[LineCandidate]:
        return [line for line in self.lines if line.line_type == LineType.DEDUCTION]
