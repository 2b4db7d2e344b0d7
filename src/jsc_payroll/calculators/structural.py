"""Structural allowances and statutory deductions."""

from __future__ import annotations

from decimal import Decimal

from jsc_payroll.calculators.line_builder import PayslipLineBuilder
from jsc_payroll.calculators.types import LineCandidate, StructuralBreakdown
from jsc_payroll.config import StatutoryRates


class StructuralCalculator:
    """Applies a frozen StatutoryRates set to a basic salary.

    housing, transport and medical are added to gross; pension, tax and
    housing_fund are deducted. Each component is rounded independently.
    """

    def __init__(self, rates: StatutoryRates):
        self.rates = rates

    def compute_structural(self, basic_salary: Decimal) -> StructuralBreakdown:
        """Compute every structural component for one basic salary."""
        if basic_salary < 0:
            raise ValueError(f"basic_salary must be non-negative, got {basic_salary}")

        def pct(rate: Decimal) -> Decimal:
            return PayslipLineBuilder.round_currency(basic_salary * rate)

        return StructuralBreakdown(
            housing=pct(self.rates.housing),
            transport=pct(self.rates.transport),
            medical=pct(self.rates.medical),
            pension=pct(self.rates.pension),
            tax=pct(self.rates.tax),
            housing_fund=pct(self.rates.housing_fund),
        )

    def allowance_lines(self, breakdown: StructuralBreakdown) -> list[LineCandidate]:
        return [
            PayslipLineBuilder.create_allowance_line(code, amount)
            for code, amount in breakdown.allowances.items()
        ]

    def deduction_lines(self, breakdown: StructuralBreakdown) -> list[LineCandidate]:
        return [
            PayslipLineBuilder.create_deduction_line(code, amount)
            for code, amount in breakdown.deductions.items()
        ]
