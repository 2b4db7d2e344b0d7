"""Salary table, adjustment ledger, payroll run and payslip models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from jsc_payroll.config import StatutoryRates
from jsc_payroll.models.base import Base, JSONType, Money, TimestampMixin, utcnow

if TYPE_CHECKING:
    from jsc_payroll.models.organization import Department, Staff


# Statuses that hold a (period, scope) slot; at most one run per slot
SCOPE_HOLDING_STATUSES = "status IN ('processing', 'processed', 'pending_review', 'approved')"


# ===== Salary Table =====


class SalaryStructure(Base, TimestampMixin):
    """Basic salary for one (grade level, step) cell of the salary scale."""

    __tablename__ = "salary_structure"

    salary_structure_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    grade_level: Mapped[int] = mapped_column(Integer, nullable=False)
    step: Mapped[int] = mapped_column(Integer, nullable=False)
    basic_salary: Mapped[Decimal] = mapped_column(Money, nullable=False)

    __table_args__ = (
        UniqueConstraint("grade_level", "step", name="salary_structure_grade_step_unique"),
        CheckConstraint(
            "grade_level >= 1 AND grade_level <= 17",
            name="salary_structure_grade_level_check",
        ),
        CheckConstraint("step >= 1 AND step <= 15", name="salary_structure_step_check"),
        CheckConstraint("basic_salary >= 0", name="salary_structure_basic_salary_check"),
    )


# ===== Individual Adjustments =====


class IndividualAdjustment(Base, TimestampMixin):
    """Staff-specific allowance or deduction outside the structural formula."""

    __tablename__ = "individual_adjustment"

    adjustment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    staff_id: Mapped[UUID] = mapped_column(
        ForeignKey("staff.staff_id", ondelete="CASCADE"),
        nullable=False,
    )
    direction: Mapped[str] = mapped_column(String, nullable=False)
    adjustment_type: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_amount: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    remaining_balance: Mapped[Decimal | None] = mapped_column(Money, nullable=True)
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    start_period: Mapped[str | None] = mapped_column(String(7), nullable=True)
    end_period: Mapped[str | None] = mapped_column(String(7), nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_by: Mapped[UUID | None] = mapped_column(nullable=True)
    reviewed_by: Mapped[UUID | None] = mapped_column(nullable=True)
    reviewed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    # Application tracking
    last_applied_period: Mapped[str | None] = mapped_column(String(7), nullable=True)
    payroll_run_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payroll_run.payroll_run_id", ondelete="SET NULL"),
        nullable=True,
    )

    __table_args__ = (
        CheckConstraint(
            "direction IN ('allowance', 'deduction')",
            name="individual_adjustment_direction_check",
        ),
        CheckConstraint(
            "status IN ('pending', 'active', 'applied', 'paid_off', 'cancelled')",
            name="individual_adjustment_status_check",
        ),
        CheckConstraint("amount >= 0", name="individual_adjustment_amount_check"),
        Index("individual_adjustment_staff_period_idx", "staff_id", "period"),
    )

    # Relationships
    staff: Mapped[Staff] = relationship()


# ===== Payroll Run & Payslips =====


class PayrollRun(Base, TimestampMixin):
    """One batch execution covering a period and an optional department scope."""

    __tablename__ = "payroll_run"

    payroll_run_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    department_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("department.department_id"),
        nullable=True,
    )
    scope_key: Mapped[str] = mapped_column(String, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")

    total_staff: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    gross_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    total_deductions: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))
    net_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, default=Decimal("0"))

    # Rates frozen at run start
    rates_version: Mapped[str] = mapped_column(String, nullable=False)
    rates_snapshot: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False)

    # Per-employee exceptions
    failures: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    skipped_staff_ids: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)

    created_by: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_by: Mapped[UUID | None] = mapped_column(nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('draft', 'processing', 'processed', 'approved', 'pending_review')",
            name="payroll_run_status_check",
        ),
        Index(
            "payroll_run_scope_unique",
            "period",
            "scope_key",
            unique=True,
            postgresql_where=text(SCOPE_HOLDING_STATUSES),
            sqlite_where=text(SCOPE_HOLDING_STATUSES),
        ),
    )

    # Relationships
    department: Mapped[Department | None] = relationship()
    payslips: Mapped[list[Payslip]] = relationship(
        back_populates="payroll_run",
        cascade="all, delete-orphan",
    )

    @property
    def rates(self) -> StatutoryRates:
        """Rates the run's payslips were computed with."""
        return StatutoryRates.from_snapshot(self.rates_snapshot)


class Payslip(Base, TimestampMixin):
    """Finalized pay computation for one staff member and period."""

    __tablename__ = "payslip"

    payslip_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    staff_id: Mapped[UUID] = mapped_column(
        ForeignKey("staff.staff_id"),
        nullable=False,
    )
    payroll_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.payroll_run_id", ondelete="CASCADE"),
        nullable=False,
    )
    period: Mapped[str] = mapped_column(String(7), nullable=False)
    grade_level: Mapped[int] = mapped_column(Integer, nullable=False)
    step: Mapped[int] = mapped_column(Integer, nullable=False)
    basic_salary: Mapped[Decimal] = mapped_column(Money, nullable=False)
    allowances: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    deductions: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    gross_pay: Mapped[Decimal] = mapped_column(Money, nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(Money, nullable=False)
    net_pay: Mapped[Decimal] = mapped_column(Money, nullable=False)
    deductions_capped: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        # One payslip per staff member per period, across every run and scope
        UniqueConstraint("staff_id", "period", name="payslip_staff_period_unique"),
        CheckConstraint("net_pay >= 0", name="payslip_net_pay_check"),
    )

    # Relationships
    payroll_run: Mapped[PayrollRun] = relationship(back_populates="payslips")
    staff: Mapped[Staff] = relationship()
    lines: Mapped[list[PayslipLine]] = relationship(
        back_populates="payslip",
        cascade="all, delete-orphan",
        order_by="PayslipLine.position",
    )


class PayslipLine(Base):
    """Single allowance or deduction on a payslip."""

    __tablename__ = "payslip_line"

    payslip_line_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payslip_id: Mapped[UUID] = mapped_column(
        ForeignKey("payslip.payslip_id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, nullable=False)
    line_type: Mapped[str] = mapped_column(String, nullable=False)
    code: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    adjustment_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("individual_adjustment.adjustment_id", ondelete="SET NULL"),
        nullable=True,
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "line_type IN ('ALLOWANCE', 'DEDUCTION')",
            name="payslip_line_type_check",
        ),
        CheckConstraint("amount >= 0", name="payslip_line_amount_check"),
    )

    # Relationships
    payslip: Mapped[Payslip] = relationship(back_populates="lines")


# ===== Audit =====


class AuditEvent(Base, TimestampMixin):
    """Audit trail entry."""

    __tablename__ = "audit_event"

    audit_event_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    actor_user_id: Mapped[UUID | None] = mapped_column(nullable=True)
    entity_type: Mapped[str] = mapped_column(String, nullable=False)
    entity_id: Mapped[UUID] = mapped_column(nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    before_json: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    after_json: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
