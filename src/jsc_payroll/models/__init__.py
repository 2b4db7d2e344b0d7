"""SQLAlchemy models for the JSC payroll engine."""

from jsc_payroll.models.base import Base, TimestampMixin
from jsc_payroll.models.organization import Department, Staff
from jsc_payroll.models.payroll import (
    AuditEvent,
    IndividualAdjustment,
    PayrollRun,
    Payslip,
    PayslipLine,
    SalaryStructure,
)

__all__ = [
    "Base",
    "TimestampMixin",
    # Organization
    "Department",
    "Staff",
    # Payroll
    "SalaryStructure",
    "IndividualAdjustment",
    "PayrollRun",
    "Payslip",
    "PayslipLine",
    "AuditEvent",
]
