"""Payslip calculation components."""

from jsc_payroll.calculators.line_builder import PayslipLineBuilder
from jsc_payroll.calculators.salary_table import ConfigurationError, SalaryTable
from jsc_payroll.calculators.structural import StructuralCalculator

__all__ = [
    "PayslipLineBuilder",
    "ConfigurationError",
    "SalaryTable",
    "StructuralCalculator",
]
