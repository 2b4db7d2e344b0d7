"""Payroll engine services."""

from jsc_payroll.services.state_machine import (
    InvalidTransitionError,
    PayrollRunStateMachine,
    PayrollRunStatus,
)
from jsc_payroll.services.adjustment_ledger import AdjustmentLedger
from jsc_payroll.services.payslip_assembler import PayslipAssembler
from jsc_payroll.services.payroll_run_service import (
    PayrollRunOrchestrator,
    PayrollRunService,
    RunResult,
)

__all__ = [
    "PayrollRunStateMachine",
    "PayrollRunStatus",
    "InvalidTransitionError",
    "AdjustmentLedger",
    "PayslipAssembler",
    "PayrollRunOrchestrator",
    "PayrollRunService",
    "RunResult",
]
