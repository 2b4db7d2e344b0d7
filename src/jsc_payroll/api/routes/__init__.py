"""API routes."""

from jsc_payroll.api.routes.adjustments import router as adjustments_router
from jsc_payroll.api.routes.health import router as health_router
from jsc_payroll.api.routes.payroll_runs import router as payroll_runs_router
from jsc_payroll.api.routes.payslips import router as payslips_router

__all__ = ["adjustments_router", "health_router", "payroll_runs_router", "payslips_router"]
